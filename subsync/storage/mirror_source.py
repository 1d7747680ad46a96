"""Read-only file mirror of subscribers, used as the second conflict source."""

import os
import threading
from pathlib import Path
from typing import Any

import structlog
import yaml

from subsync.models.change import Snapshot
from subsync.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()


class YamlMirrorSource:
    """Subscribers mirrored in a YAML file maintained by another tool.

    Expected layout::

        subscribers:
          "+1234567890":
            impi: "001010123456789@ims.mnc001.mcc001.3gppnetwork.org"
            impu: "sip:+1234567890@ims.example.org"
            status: ACTIVE

    The file is re-read whenever its modification time changes.
    """

    name = "mirror"

    def __init__(self, path: str):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._mtime: float | None = None
        self._entries: dict[str, Snapshot] = {}
        log.info("mirror_source_initialized", path=str(self._path))

    def get(self, msisdn: str) -> Snapshot | None:
        """Return the mirrored snapshot for an MSISDN, None when absent."""
        with self._lock:
            self._refresh()
            entry = self._entries.get(msisdn)
        return dict(entry) if entry is not None else None

    def all(self) -> dict[str, Snapshot]:
        with self._lock:
            self._refresh()
            return {msisdn: dict(entry) for msisdn, entry in self._entries.items()}

    def _refresh(self) -> None:
        try:
            mtime = os.path.getmtime(self._path)
        except OSError:
            if self._entries:
                log.warning("mirror_file_missing", path=str(self._path))
            self._entries = {}
            self._mtime = None
            return

        if mtime == self._mtime:
            return

        self._entries = self._parse(self._read_file())
        self._mtime = mtime
        log.info("mirror_reloaded", path=str(self._path), subscriber_count=len(self._entries))

    @exponential_backoff_retry(max_retries=2, base_delay=0.1, max_delay=1.0, exceptions=(OSError,))
    def _read_file(self) -> Any:
        with open(self._path, "r") as f:
            return yaml.safe_load(f)

    @staticmethod
    def _parse(document: Any) -> dict[str, Snapshot]:
        if not document:
            return {}
        if not isinstance(document, dict) or not isinstance(document.get("subscribers", {}), dict):
            raise ValueError("Mirror file must contain a 'subscribers' mapping")

        entries: dict[str, Snapshot] = {}
        for msisdn, fields in (document.get("subscribers") or {}).items():
            snapshot = dict(fields or {})
            snapshot["msisdn"] = str(msisdn)
            entries[str(msisdn)] = snapshot
        return entries
