"""Error taxonomy for the sync engine."""


class SubsyncError(Exception):
    """Base class for engine errors."""


class MalformedRecordError(SubsyncError):
    """A change record can never be applied; it is failed without retry."""

    def __init__(self, record_id: int, reason: str):
        super().__init__(f"Change {record_id} is malformed: {reason}")
        self.record_id = record_id
        self.reason = reason


class StorageError(SubsyncError):
    """The backing store rejected an operation."""


class TransientStorageError(StorageError):
    """Recoverable backend failure, e.g. a locked database."""


class ConflictNotFoundError(SubsyncError):
    """No conflict was ever recorded for the key."""

    def __init__(self, key: str):
        super().__init__(f"No conflict found for key {key}")
        self.key = key


class AlreadyInProgressError(SubsyncError):
    """A manual run was requested while another run is active."""

    def __init__(self) -> None:
        super().__init__("Sync already in progress")


class WebhookDeliveryError(SubsyncError):
    """A webhook endpoint did not accept the change envelope."""

    def __init__(self, endpoint: str, message: str, status_code: int | None = None):
        super().__init__(f"Webhook delivery to {endpoint} failed: {message}")
        self.endpoint = endpoint
        self.status_code = status_code


class PermissionDeniedError(SubsyncError):
    """The caller lacks the capability an administrative operation requires."""

    def __init__(self, capability: str):
        super().__init__(f"Missing capability: {capability}")
        self.capability = capability
