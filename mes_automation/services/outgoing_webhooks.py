"""
Outbound webhook relay with bounded retries.

Each attempt is a single POST whose timeout bounds the whole exchange,
headers and body included, not just each socket read. Failed attempts
back off exponentially (base, 2*base, 4*base, ...) before the next one;
there is no sleep after the final attempt. Any 2xx response counts as
delivered.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import requests

from ..core.config import settings
from ..core.errors import error_text


logger = logging.getLogger("outgoing_webhooks")

USER_AGENT = "MES-Automation-Webhook/1.0"
MAX_RESPONSE_BYTES = 64 * 1024
_BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost"}


class OutgoingWebhookError(RuntimeError):
    def __init__(self, message: str, *, attempts: int = 0, last_error: Optional[str] = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


@dataclass
class DeliveryResult:
    url: str
    status: int
    attempts: int
    delivery_id: str
    response_time_ms: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "attempts": self.attempts,
            "delivery_id": self.delivery_id,
            "response_time_ms": self.response_time_ms,
        }


def validate_webhook_url(url: Any, *, allow_private: bool = False) -> str:
    if not isinstance(url, str) or not url.strip():
        raise OutgoingWebhookError("No webhook URL configured")
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise OutgoingWebhookError("Invalid URL format") from exc
    if parsed.scheme not in {"http", "https"}:
        raise OutgoingWebhookError("Only HTTP/HTTPS protocols are allowed")
    hostname = (parsed.hostname or "").lower()
    if not hostname:
        raise OutgoingWebhookError("Invalid URL format")
    if allow_private:
        return url
    if hostname in _BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        raise OutgoingWebhookError("Private/localhost URLs are not allowed")
    try:
        addr = ipaddress.ip_address(hostname)
    except ValueError:
        return url
    if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified or addr.is_reserved:
        raise OutgoingWebhookError("Private/localhost URLs are not allowed")
    return url


def backoff_seconds(attempt: int, base: float) -> float:
    """Delay after failed ``attempt`` (1-based): base, 2*base, 4*base, ..."""
    return base * (2 ** max(attempt - 1, 0))


def _new_delivery_id() -> str:
    return f"del_{uuid.uuid4().hex}"


class _AttemptTimedOut(Exception):
    pass


def _post_within(
    http: requests.Session,
    target: str,
    body: str,
    headers: dict[str, str],
    timeout: float,
    clock: Callable[[], float],
) -> int:
    """POST and drain the response before ``timeout`` seconds have passed in total.

    ``requests`` applies its timeout to each socket operation, so a receiver
    trickling bytes would never trip it; the deadline covers the whole attempt.
    """
    deadline = clock() + timeout
    resp = http.post(target, data=body, headers=headers, timeout=timeout, stream=True)
    try:
        if clock() > deadline:
            raise _AttemptTimedOut()
        received = 0
        # Byte-sized reads return as soon as anything arrives, so the deadline is checked per byte.
        for chunk in resp.iter_content(chunk_size=1):
            if clock() > deadline:
                raise _AttemptTimedOut()
            received += len(chunk)
            if received >= MAX_RESPONSE_BYTES:
                break
        if not 200 <= resp.status_code < 300:
            reason = getattr(resp, "reason", None)
            raise requests.HTTPError(f"HTTP {resp.status_code}: {reason}" if reason else f"HTTP {resp.status_code}")
        return resp.status_code
    finally:
        resp.close()


def deliver_with_retry(
    url: Any,
    payload: Any,
    *,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    timeout_sec: Optional[float] = None,
    max_attempts: Optional[int] = None,
    backoff_base_sec: Optional[float] = None,
    allow_private: Optional[bool] = None,
    clock: Callable[[], float] = time.monotonic,
) -> DeliveryResult:
    """POST ``payload`` as JSON to ``url`` until a 2xx arrives or attempts run out.

    Raises OutgoingWebhookError with the attempt count and the last
    failure reason when every attempt fails.
    """
    timeout = timeout_sec if timeout_sec is not None else settings.outgoing_webhook_timeout_sec
    attempts_allowed = max_attempts if max_attempts is not None else settings.outgoing_webhook_max_attempts
    base = backoff_base_sec if backoff_base_sec is not None else settings.outgoing_webhook_backoff_base_sec
    if allow_private is None:
        allow_private = settings.outgoing_webhook_allow_private_urls
    attempts_allowed = max(1, int(attempts_allowed))

    target = validate_webhook_url(url, allow_private=allow_private)
    if session is not None:
        return _deliver(session, target, payload, sleep, timeout, attempts_allowed, base, clock)
    with requests.Session() as owned:
        return _deliver(owned, target, payload, sleep, timeout, attempts_allowed, base, clock)


def _deliver(
    http: requests.Session,
    target: str,
    payload: Any,
    sleep: Callable[[float], None],
    timeout: float,
    attempts_allowed: int,
    base: float,
    clock: Callable[[], float],
) -> DeliveryResult:
    delivery_id = _new_delivery_id()
    body = json.dumps(payload, default=str)
    last_error = ""

    for attempt in range(1, attempts_allowed + 1):
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Delivery": delivery_id,
            "X-Webhook-Attempt": str(attempt),
        }
        started = clock()
        try:
            status = _post_within(http, target, body, headers, timeout, clock)
            elapsed_ms = int((clock() - started) * 1000)
            logger.info(
                "Outgoing webhook delivered url=%s status=%s attempt=%s delivery_id=%s",
                target,
                status,
                attempt,
                delivery_id,
            )
            return DeliveryResult(
                url=target,
                status=status,
                attempts=attempt,
                delivery_id=delivery_id,
                response_time_ms=elapsed_ms,
            )
        except (requests.Timeout, _AttemptTimedOut):
            last_error = f"Timed out after {timeout:g}s"
        except requests.RequestException as exc:
            last_error = error_text(exc)

        logger.warning(
            "Outgoing webhook attempt failed url=%s attempt=%s/%s delivery_id=%s err=%s",
            target,
            attempt,
            attempts_allowed,
            delivery_id,
            last_error,
        )
        if attempt < attempts_allowed:
            sleep(backoff_seconds(attempt, base))

    raise OutgoingWebhookError(
        f"Failed after {attempts_allowed} attempts - {last_error}",
        attempts=attempts_allowed,
        last_error=last_error,
    )
