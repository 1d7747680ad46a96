"""HTTP webhook client for change envelopes."""

import base64
import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable

import requests
import structlog
from requests.exceptions import RequestException

from subsync import __version__
from subsync.exceptions import WebhookDeliveryError
from subsync.models.change import ChangeRecord
from subsync.models.results import WebhookTestResult
from subsync.utils.retry import retry_call

log = structlog.stdlib.get_logger()

USER_AGENT = f"subsync/{__version__}"


def build_change_envelope(record: ChangeRecord) -> dict[str, Any]:
    """Outbound payload for one change: operation, entityId, table, timestamp."""
    return {
        "operation": record.operation.wire_name,
        "entityId": record.entity_id,
        "table": record.entity_type,
        "timestamp": record.captured_at.isoformat(),
    }


def sign_payload(body: bytes, secret: str | None) -> str:
    """Return ``sha256=<base64 HMAC>`` for the body, or an empty string without a secret."""
    if not secret:
        return ""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return "sha256=" + base64.b64encode(digest).decode("ascii")


class WebhookClient:
    """Posts JSON envelopes with a hard timeout and bounded retries per endpoint."""

    def __init__(
        self,
        secret: str | None = None,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            secret: Optional HMAC secret for the X-Webhook-Signature header
            timeout_seconds: Connect and read timeout for each request
            max_retries: Retries after the first failed attempt
            retry_delay_seconds: Initial backoff, doubled on each retry
            session: Optional requests session (a new one is created if None)
            sleep: Sleep function used between retries
        """
        self._secret = secret
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._session = session or requests.Session()
        self._sleep = sleep

    def post(self, endpoint: str, payload: dict[str, Any]) -> int:
        """
        Post once.

        Returns:
            HTTP status code of a 2xx response

        Raises:
            WebhookDeliveryError: On transport errors or non-2xx responses
        """
        body = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Timestamp": str(int(time.time() * 1000)),
        }
        signature = sign_payload(body, self._secret)
        if signature:
            headers["X-Webhook-Signature"] = signature

        try:
            response = self._session.post(
                endpoint, data=body, headers=headers, timeout=self._timeout
            )
        except RequestException as e:
            log.warning("webhook_request_failed", endpoint=endpoint, error=str(e))
            raise WebhookDeliveryError(endpoint, str(e)) from e

        if not 200 <= response.status_code < 300:
            log.warning("webhook_rejected", endpoint=endpoint, status_code=response.status_code)
            raise WebhookDeliveryError(
                endpoint, f"HTTP {response.status_code}", status_code=response.status_code
            )

        log.debug("webhook_delivered", endpoint=endpoint, status_code=response.status_code)
        return response.status_code

    def deliver(self, endpoint: str, payload: dict[str, Any]) -> int:
        """Post with exponential backoff retries; raises WebhookDeliveryError when exhausted."""
        return retry_call(
            self.post,
            endpoint,
            payload,
            max_retries=self._max_retries,
            base_delay=self._retry_delay,
            max_delay=max(self._retry_delay, 30.0),
            exceptions=(WebhookDeliveryError,),
            sleep=self._sleep,
        )

    def test_endpoint(self, endpoint: str) -> WebhookTestResult:
        """Send a single test envelope (no retries) and time it."""
        log.info("testing_webhook_endpoint", endpoint=endpoint)
        payload = {
            "operation": "TEST",
            "entityId": None,
            "table": None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": "This is a test webhook notification",
        }

        start = time.perf_counter()
        try:
            self.post(endpoint, payload)
        except WebhookDeliveryError as e:
            return WebhookTestResult(
                success=False,
                endpoint=endpoint,
                response_time_ms=(time.perf_counter() - start) * 1000,
                message="Webhook test failed",
                error=str(e),
            )

        return WebhookTestResult(
            success=True,
            endpoint=endpoint,
            response_time_ms=(time.perf_counter() - start) * 1000,
            message="Webhook test successful",
        )

    def close(self) -> None:
        self._session.close()
