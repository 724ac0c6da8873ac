"""Per-role deadline around request processing.

The guard bounds what the caller perceives, not what the server does: when the
deadline fires first the caller gets a 408 and, unless ``cancel_on_timeout`` is
set, the continuation keeps running to completion in the background. Its late
response is discarded by the response slot.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from query_gateway.errors import QueryTimeoutError
from query_gateway.utils.logging_utils import get_logger
from query_gateway.utils.validators import query_timeout_for

logger = get_logger("timeout")


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


class ResponseSlot:
    """Holds at most one response. ``write`` is a check-and-set, never check-then-set."""

    def __init__(self):
        self._lock = threading.Lock()
        self._response: Optional[GatewayResponse] = None

    def write(self, response: GatewayResponse) -> bool:
        with self._lock:
            if self._response is not None:
                return False
            self._response = response
            return True

    @property
    def responded(self) -> bool:
        return self._response is not None

    @property
    def response(self) -> Optional[GatewayResponse]:
        return self._response


def timeout_response(timeout_ms: int) -> GatewayResponse:
    error = QueryTimeoutError(
        f"Query timeout exceeded: no response within {timeout_ms} ms",
        detail={"timeoutMs": timeout_ms},
    )
    body = error.to_dict()
    body["message"] = "The request took too long and was abandoned; it may still complete on the server."
    return GatewayResponse(status_code=QueryTimeoutError.status_code, body=body)


class TimeoutGuard:
    def __init__(
        self,
        timeout_for: Callable[[str], int] = query_timeout_for,
        cancel_on_timeout: bool = False,
    ):
        self.timeout_for = timeout_for
        self.cancel_on_timeout = cancel_on_timeout
        # Strong references to continuations still running after their deadline
        self._orphans: Set[asyncio.Task] = set()

    async def run(
        self,
        role: str,
        proceed: Callable[[], Awaitable[GatewayResponse]],
    ) -> GatewayResponse:
        """Race ``proceed()`` against the role's deadline; exactly one response comes back."""
        timeout_ms = self.timeout_for(role)
        slot = ResponseSlot()
        task = asyncio.ensure_future(proceed())

        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)

        if task in done:
            # Raises if the continuation failed; the caller's error handling maps it.
            response = task.result()
            if response is None:
                response = GatewayResponse(500, {"error": "No response produced", "code": "INTERNAL_ERROR"})
            slot.write(response)
        else:
            if slot.write(timeout_response(timeout_ms)):
                logger.warning("Request timed out after %d ms (role=%s)", timeout_ms, role)
            if self.cancel_on_timeout:
                task.cancel()
            self._orphans.add(task)
            task.add_done_callback(lambda t: self._settle_late(t, slot))

        return slot.response

    def _settle_late(self, task: asyncio.Task, slot: ResponseSlot) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            logger.info("Timed-out continuation cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error("Timed-out continuation failed: %s", error)
            return
        if not slot.write(task.result()):
            logger.info("Discarded late response from timed-out continuation")

    @property
    def pending(self) -> int:
        return len(self._orphans)

    async def drain(self) -> None:
        """Wait for continuations that outlived their deadline."""
        if self._orphans:
            await asyncio.gather(*list(self._orphans), return_exceptions=True)
