"""Signed, retrying JSON webhook transport."""

import asyncio
import hashlib
import hmac
import time
from collections.abc import Awaitable, Callable, Collection
from datetime import datetime
from typing import Any

import httpx
import pydantic_core
from pydantic import BaseModel, Field

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import (
    BlockedAddressError,
    DeliveryError,
    DNSResolutionError,
    OutboundDisabledError,
)
from backupalert.core.logging import get_logger
from backupalert.models.notification import utcnow
from backupalert.observability.metrics import WEBHOOK_ATTEMPTS, WEBHOOK_LATENCY
from backupalert.security.address import validate_url
from backupalert.security.connector import safe_async_client

logger = get_logger(__name__, component="transport")

URLValidator = Callable[..., Awaitable[None]]
Sleeper = Callable[[float], Awaitable[Any]]


class WebhookPayload(BaseModel):
    """Body of a generic webhook delivery."""

    event_type: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)


def compute_signature(body: bytes, secret: str) -> str:
    """Return the signature header value for a serialized body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def serialize_payload(payload: Any) -> bytes:
    """Serialize a payload to the exact bytes that are sent and signed."""
    if isinstance(payload, BaseModel):
        return payload.model_dump_json().encode("utf-8")
    return pydantic_core.to_json(payload)


def redact_host(url: str) -> str:
    """Reduce a URL to its host for logging."""
    try:
        return httpx.URL(url).host or "[invalid-url]"
    except (httpx.InvalidURL, TypeError):
        return "[invalid-url]"


class WebhookTransport:
    """POST JSON payloads with optional HMAC signing and bounded retries."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        validator: URLValidator | None = None,
        sleep: Sleeper | None = None,
    ):
        """Initialize transport.

        Args:
            settings: Application settings
            client: HTTP client, defaults to the rebinding-safe client
            validator: URL validator run before the first attempt
            sleep: Backoff sleep, defaults to asyncio.sleep
        """
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self._validate = validator or validate_url
        self._sleep = sleep or asyncio.sleep
        self._air_gap = self._settings.air_gap_mode

    @property
    def air_gap_mode(self) -> bool:
        return self._air_gap

    def set_air_gap_mode(self, enabled: bool) -> None:
        """Enable or disable all outbound delivery."""
        self._air_gap = enabled

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = safe_async_client(self._settings)
        return self._client

    def backoff_delay(self, attempt: int) -> float:
        """Delay slept after a failed attempt before the next one."""
        return self._settings.webhook_backoff_base_seconds * 2 ** (attempt - 1)

    async def send(
        self,
        url: str,
        payload: Any,
        secret: str = "",
        success_statuses: Collection[int] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Deliver a payload to a URL.

        Args:
            url: Destination URL
            payload: Pydantic model or JSON-serializable value
            secret: HMAC secret, no signature header when empty
            success_statuses: Accepted status codes, any 2xx when unset
            headers: Extra request headers

        Returns:
            The successful response

        Raises:
            OutboundDisabledError: Air-gap mode is enabled
            UnsafeDestinationError: Destination rejected by address policy
            DeliveryError: Every attempt failed
        """
        if self._air_gap:
            raise OutboundDisabledError()

        await self._validate(url, require_https=self._settings.webhook_require_https)

        body = serialize_payload(payload)
        request_headers = dict(headers or {})
        request_headers["Content-Type"] = "application/json"
        request_headers["User-Agent"] = f"{self._settings.app_name}/{self._settings.app_version}"
        if secret:
            request_headers[self._settings.webhook_signature_header] = compute_signature(body, secret)

        host = redact_host(url)
        max_attempts = self._settings.webhook_max_attempts
        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                await self._sleep(self.backoff_delay(attempt - 1))

            started = time.perf_counter()
            try:
                response = await self.client.post(url, content=body, headers=request_headers)
            except BlockedAddressError:
                WEBHOOK_ATTEMPTS.labels(outcome="blocked").inc()
                raise
            # Dial-time resolution failures are transient like connect errors
            except (httpx.HTTPError, DNSResolutionError) as e:
                WEBHOOK_ATTEMPTS.labels(outcome="network_error").inc()
                last_error = e
                logger.warning(
                    "Webhook attempt failed",
                    host=host,
                    attempt=attempt,
                    error=type(e).__name__,
                )
                continue
            finally:
                WEBHOOK_LATENCY.observe(time.perf_counter() - started)

            if self._is_success(response.status_code, success_statuses):
                WEBHOOK_ATTEMPTS.labels(outcome="success").inc()
                logger.debug("Webhook delivered", host=host, attempt=attempt, status=response.status_code)
                return response

            WEBHOOK_ATTEMPTS.labels(outcome="status_error").inc()
            last_status = response.status_code
            last_error = DeliveryError(
                f"webhook returned status {response.status_code}",
                status_code=response.status_code,
            )
            logger.warning(
                "Webhook attempt failed",
                host=host,
                attempt=attempt,
                status=response.status_code,
            )

        logger.error("Webhook delivery failed", host=host, attempts=max_attempts, status=last_status)
        raise DeliveryError(
            f"webhook delivery failed after {max_attempts} attempts: {_describe(last_error)}",
            attempts=max_attempts,
            status_code=last_status,
        ) from last_error

    @staticmethod
    def _is_success(status_code: int, success_statuses: Collection[int] | None) -> bool:
        if success_statuses is not None:
            return status_code in success_statuses
        return 200 <= status_code < 300

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _describe(error: Exception | None) -> str:
    if isinstance(error, DeliveryError):
        return str(error)
    if error is None:
        return "no attempt made"
    # httpx messages may embed the request URL
    return type(error).__name__
