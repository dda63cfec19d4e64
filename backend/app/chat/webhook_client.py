"""
webhook_client.py — Outbound delivery of chat turns to the conversational webhook.

Sends one user message plus its session id to the remote webhook and turns
whatever comes back into displayable text. Callers never see an exception:
every failure mode ends up as one of two fixed fallback strings.

Wire protocol:

    POST {WEBHOOK_URL}
    Content-Type: application/json
    Accept: application/json

    {"message": "<text>", "sessionId": "<opaque id>"}

    → 2xx  {"output": "<reply>", ...}
       or  [{"output": "<reply>", ...}, ...]

═══════════════════════════════════════════════════════════════════════════
RETRY POLICY
═══════════════════════════════════════════════════════════════════════════

    attempt 1 ──fail──► wait 1.0s ──► attempt 2 ──fail──► wait 1.0s ──► attempt 3 ──fail──► UNAVAILABLE
        │                                 │                                 │
        └─ 2xx ──► interpret body ◄───────┴─────────────────────────────────┘
                    │
                    ├─ output found          → REPLY
                    └─ empty / bad JSON /    → UNPROCESSABLE (no retry)
                       no "output"

Only transport-level failures are retried: connection errors, timeouts and
any non-2xx status. A delivered but unusable body is deterministic on the
remote side, so it ends the call on the attempt that produced it.

The delay is fixed (no backoff, no jitter) and only sits between attempts.

═══════════════════════════════════════════════════════════════════════════
CANCELLATION
═══════════════════════════════════════════════════════════════════════════

`deliver_result` takes an optional `asyncio.Event` and an optional overall
timeout. When either fires, the in-flight attempt (or the wait before the
next one) is abandoned and the call resolves to UNAVAILABLE.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from backend.app.chat.models import (
    AttemptRecord,
    DeliveryOutcome,
    DeliveryResult,
    OutboundRequest,
)
from backend.app.core.config import Settings
from backend.app.core.errors import DeliveryAbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

REQUEST_HEADERS: Dict[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and fixed inter-attempt delay."""
    max_attempts: int = 3
    delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {self.delay_seconds}")


# ═══════════════════════════════════════════════════════════════════════════
# Response Interpretation
# ═══════════════════════════════════════════════════════════════════════════

def _usable_output(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def extract_reply(data: Any) -> Optional[str]:
    """
    Pull the reply text out of a parsed webhook body.

    Precedence:
        1. a list whose first element is an object with "output"
        2. an object with "output"

    Returns None when neither shape yields a non-empty string.
    """
    if isinstance(data, list):
        if data and isinstance(data[0], dict):
            return _usable_output(data[0].get("output"))
        return None
    if isinstance(data, dict):
        return _usable_output(data.get("output"))
    return None


# ═══════════════════════════════════════════════════════════════════════════
# Delivery Client
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryClient:
    """
    Delivers chat turns to the conversational webhook.

    Holds no per-call state, so one instance can serve concurrent sessions.
    Each `deliver` call keeps at most one request in flight.

    Parameters
    ----------
    endpoint_url : str
        Fixed webhook URL.
    policy : RetryPolicy | None
        Attempt budget and delay; defaults to 3 attempts, 1.0 s apart.
    http_client : httpx.AsyncClient | None
        Shared client (connection pool). When omitted the delivery client
        creates its own on first use and closes it in `close()`.
    timeout_seconds : float
        Per-attempt network timeout.
    sleep : callable | None
        Coroutine function used for the inter-attempt wait
        (defaults to `asyncio.sleep`).
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        sleep: Optional[SleepFn] = None,
    ):
        self.endpoint_url = endpoint_url
        self.policy = policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ── Public API ──

    async def deliver(
        self,
        message: str,
        session_id: str,
        *,
        cancel: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Send one message and return the reply or a fallback text. Never raises."""
        result = await self.deliver_result(
            message, session_id, cancel=cancel, timeout=timeout,
        )
        return result.text

    async def deliver_result(
        self,
        message: str,
        session_id: str,
        *,
        cancel: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> DeliveryResult:
        """
        Send one message and return the tagged outcome.

        Parameters
        ----------
        message : str
            Trimmed, non-empty user text (not validated here).
        session_id : str
            Opaque conversation key, passed through unchanged.
        cancel : asyncio.Event | None
            Setting it aborts the call with UNAVAILABLE.
        timeout : float | None
            Overall budget in seconds across all attempts and waits.

        Returns
        -------
        DeliveryResult
        """
        request = OutboundRequest(message=message, session_id=session_id)
        deadline = None
        if timeout is not None:
            deadline = asyncio.get_running_loop().time() + timeout

        max_attempts = self.policy.max_attempts
        attempts: List[AttemptRecord] = []

        for attempt_num in range(1, max_attempts + 1):
            record = AttemptRecord(attempt=attempt_num)
            attempts.append(record)
            log_extra = {
                "session_id": session_id,
                "attempt": attempt_num,
                "max_attempts": max_attempts,
            }
            start = time.perf_counter()

            try:
                response = await self._guard(
                    lambda: self._post(request), cancel, deadline,
                )
            except DeliveryAbortedError as exc:
                record.error_message = exc.message
                record.duration_ms = (time.perf_counter() - start) * 1000
                logger.warning(
                    "Attempt %d/%d aborted (%s)",
                    attempt_num, max_attempts, exc.reason, extra=log_extra,
                )
                return self._unavailable(request, attempts)
            except httpx.HTTPError as exc:
                record.error_message = f"{type(exc).__name__}: {exc}"
            except Exception as exc:
                logger.exception(
                    "Unexpected error while posting to webhook", extra=log_extra,
                )
                record.error_message = f"{type(exc).__name__}: {exc}"
            else:
                record.status_code = response.status_code
                if response.is_success:
                    record.duration_ms = (time.perf_counter() - start) * 1000
                    return self._interpret(response.text, request, attempts)
                record.error_message = f"HTTP error status {response.status_code}"

            record.duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(
                "Attempt %d/%d failed: %s",
                attempt_num, max_attempts, record.error_message,
                extra={**log_extra, "status_code": record.status_code},
            )

            if attempt_num < max_attempts:
                delay = self.policy.delay_seconds
                logger.info("Retrying in %.1fs", delay, extra=log_extra)
                try:
                    await self._guard(lambda: self._sleep(delay), cancel, deadline)
                except DeliveryAbortedError as exc:
                    logger.warning(
                        "Retry wait aborted (%s); skipping remaining attempts",
                        exc.reason, extra=log_extra,
                    )
                    return self._unavailable(request, attempts)

        logger.error(
            "All %d attempts failed. Last error: %s",
            max_attempts, attempts[-1].error_message,
            extra={"session_id": session_id, "outcome": DeliveryOutcome.UNAVAILABLE.value},
        )
        return self._unavailable(request, attempts)

    # ── Internals ──

    async def _post(self, request: OutboundRequest) -> httpx.Response:
        client = await self._get_client()
        return await client.post(
            self.endpoint_url,
            json=request.to_wire(),
            headers=REQUEST_HEADERS,
            timeout=self.timeout_seconds,
        )

    async def _guard(
        self,
        factory: Callable[[], Awaitable[T]],
        cancel: Optional[asyncio.Event],
        deadline: Optional[float],
    ) -> T:
        """Await `factory()` unless the cancel event fires or the deadline passes."""
        if cancel is not None and cancel.is_set():
            raise DeliveryAbortedError("cancelled")
        if cancel is None and deadline is None:
            return await factory()

        remaining = None
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise DeliveryAbortedError("timed out")

        task = asyncio.ensure_future(factory())
        watched = {task}
        waiter = None
        if cancel is not None:
            waiter = asyncio.ensure_future(cancel.wait())
            watched.add(waiter)

        try:
            done, _ = await asyncio.wait(
                watched, timeout=remaining, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if waiter is not None:
                waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        if waiter is not None and waiter in done:
            raise DeliveryAbortedError("cancelled")
        raise DeliveryAbortedError("timed out")

    def _interpret(
        self,
        body: str,
        request: OutboundRequest,
        attempts: List[AttemptRecord],
    ) -> DeliveryResult:
        """Map a 2xx body to REPLY or UNPROCESSABLE. Never retried."""
        log_extra = {
            "session_id": request.session_id,
            "attempt": len(attempts),
            "status_code": attempts[-1].status_code,
        }

        if not body or not body.strip():
            logger.warning("Empty response received from webhook", extra=log_extra)
            return self._unprocessable(request, attempts)

        try:
            data = json.loads(body)
        except (ValueError, RecursionError) as exc:
            logger.error("Error parsing webhook response: %s", exc, extra=log_extra)
            return self._unprocessable(request, attempts)

        reply = extract_reply(data)
        if reply is None:
            logger.warning(
                "Webhook response has no usable 'output': %.200s", body, extra=log_extra,
            )
            return self._unprocessable(request, attempts)

        logger.info(
            "Webhook replied on attempt %d (%d chars)",
            len(attempts), len(reply),
            extra={**log_extra, "outcome": DeliveryOutcome.REPLY.value},
        )
        return DeliveryResult.reply(reply, request.session_id, attempts)

    @staticmethod
    def _unprocessable(request: OutboundRequest, attempts: List[AttemptRecord]) -> DeliveryResult:
        return DeliveryResult.fallback(
            DeliveryOutcome.UNPROCESSABLE, request.session_id, attempts,
        )

    @staticmethod
    def _unavailable(request: OutboundRequest, attempts: List[AttemptRecord]) -> DeliveryResult:
        return DeliveryResult.fallback(
            DeliveryOutcome.UNAVAILABLE, request.session_id, attempts,
        )


def build_delivery_client(
    settings: Settings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    sleep: Optional[SleepFn] = None,
) -> DeliveryClient:
    """Build a DeliveryClient from application settings."""
    return DeliveryClient(
        settings.WEBHOOK_URL,
        policy=RetryPolicy(
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            delay_seconds=settings.WEBHOOK_RETRY_DELAY_SECONDS,
        ),
        http_client=http_client,
        timeout_seconds=settings.WEBHOOK_TIMEOUT_SECONDS,
        sleep=sleep,
    )
