"""Audit trail for gateway requests.

``AuditService`` is long-lived and owns persistence plus the read-only
projections. Each request gets its own ``AuditRecorder`` so checkpoints from
concurrent requests never mix.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from query_gateway.errors import GatewayError, PersistenceError
from query_gateway.models.audit import AuditLogEntry, ErrorDetail, PerformanceStats, QueryOutcome
from query_gateway.services.document_store import DocumentStore
from query_gateway.utils.logging_utils import get_logger

logger = get_logger("audit")

QUERY_GENERATION = "queryGeneration"
QUERY_EXECUTION = "queryExecution"


def _rounded(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


def _duration(start: float, end: float) -> float:
    return round((end - start) * 1000, 2)


def _format_error(error: Any) -> Optional[ErrorDetail]:
    if error is None:
        return None
    if isinstance(error, GatewayError):
        return ErrorDetail(message=error.message, type=type(error).__name__, code=error.code)
    if isinstance(error, BaseException):
        return ErrorDetail(message=str(error) or type(error).__name__, type=type(error).__name__)
    if isinstance(error, dict):
        return ErrorDetail(
            message=str(error.get("error") or error.get("message") or error),
            type=str(error.get("type", "ErrorResponse")),
            code=error.get("code"),
        )
    return ErrorDetail(message=str(error), type="Error")


class AuditRecorder:
    """
    Tracks one request: Idle -> Tracking -> Checkpointed* -> Logged.

    Checkpoints are independent named points measured from the start; they are
    not required to arrive in any order.
    """

    def __init__(self, service: "AuditService", clock: Callable[[], float] = time.perf_counter):
        self.service = service
        self._clock = clock
        self.start_time: Optional[float] = None
        self.checkpoints: Dict[str, float] = {}
        self.state = "idle"

    def start_tracking(self) -> None:
        self.start_time = self._clock()
        self.checkpoints.clear()
        self.state = "tracking"

    def mark_checkpoint(self, name: str) -> None:
        if self.start_time is None:
            self.start_tracking()
        self.checkpoints[name] = self._clock()
        self.state = "checkpointed"

    def performance(self, token_count: int = 0) -> PerformanceStats:
        end = self._clock()
        start = self.start_time if self.start_time is not None else end
        generated = self.checkpoints.get(QUERY_GENERATION)
        executed = self.checkpoints.get(QUERY_EXECUTION)
        return PerformanceStats(
            total_duration_ms=_duration(start, end),
            query_generation_ms=_duration(start, generated) if generated is not None else 0.0,
            query_execution_ms=(
                _duration(generated, executed) if generated is not None and executed is not None else 0.0
            ),
            token_count=token_count,
        )

    def log_query(
        self,
        subject_id: str,
        role: str,
        natural_language_query: str,
        resolved_query: Any,
        raw_response: Any,
        collection: str,
        token_count: int = 0,
        error: Any = None,
    ) -> Optional[AuditLogEntry]:
        """Build the entry and hand it off for persistence. Never awaits the write."""
        if self.state == "logged":
            logger.debug("Audit already logged for this request; ignoring duplicate")
            return None

        detail = _format_error(error)
        entry = AuditLogEntry(
            subject_id=subject_id,
            timestamp=datetime.now(timezone.utc),
            natural_language_query=natural_language_query,
            resolved_query=resolved_query if resolved_query is not None else {},
            raw_response=raw_response,
            collection=collection or "unknown",
            performance=self.performance(token_count),
            outcome=QueryOutcome(
                role=role,
                status="error" if detail else "success",
                error_detail=detail,
            ),
        )
        self.state = "logged"
        self.service.submit(entry)
        return entry


class AuditService:
    def __init__(
        self,
        store: DocumentStore,
        collection: str = "auditlogs",
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.store = store
        self.collection = collection
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    def start_tracking(self) -> AuditRecorder:
        recorder = AuditRecorder(self, clock=self._clock)
        recorder.start_tracking()
        return recorder

    def submit(self, entry: AuditLogEntry) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.persist(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def persist(self, entry: AuditLogEntry) -> bool:
        try:
            await self.store.insert_one(self.collection, entry.to_document())
            return True
        except Exception as e:
            failure = PersistenceError(f"Failed to create audit log: {e}")
            logger.error("%s (subject=%s, collection=%s)", failure, entry.subject_id, entry.collection)
            return False

    async def drain(self) -> None:
        """Wait for audit writes still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _match(self, subject_id: Optional[str]) -> Dict[str, Any]:
        return {"subjectId": subject_id} if subject_id else {}

    async def get_query_stats(self, subject_id: Optional[str] = None) -> Dict[str, Any]:
        pipeline = [
            {"$match": self._match(subject_id)},
            {"$group": {
                "_id": None,
                "totalQueries": {"$sum": 1},
                "avgDurationMs": {"$avg": "$performance.totalDurationMs"},
                "avgTokenCount": {"$avg": "$performance.tokenCount"},
                "successCount": {"$sum": {"$cond": [{"$eq": ["$outcome.status", "success"]}, 1, 0]}},
            }},
        ]
        groups = await self.store.aggregate(self.collection, pipeline)
        if not groups or not groups[0].get("totalQueries"):
            return {"totalQueries": 0, "avgDurationMs": None, "avgTokenCount": None, "successRate": None}

        stats = groups[0]
        total = stats["totalQueries"]
        return {
            "totalQueries": total,
            "avgDurationMs": _rounded(stats.get("avgDurationMs")),
            "avgTokenCount": _rounded(stats.get("avgTokenCount")),
            "successRate": round(stats.get("successCount", 0) / total * 100, 2),
        }

    async def get_recent_queries(self, subject_id: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        return await self.store.find(
            self.collection,
            self._match(subject_id),
            {"rawResponse": 0},
            sort=[("timestamp", -1)],
            limit=limit,
        )

    async def get_performance_metrics(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Per-day duration and error counts, grouped by UTC calendar day."""
        pipeline = [
            {"$match": {"timestamp": {"$gte": start, "$lte": end}}},
            {"$group": {
                "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$timestamp"}},
                "avgDurationMs": {"$avg": "$performance.totalDurationMs"},
                "maxDurationMs": {"$max": "$performance.totalDurationMs"},
                "totalQueries": {"$sum": 1},
                "errorCount": {"$sum": {"$cond": [{"$eq": ["$outcome.status", "error"]}, 1, 0]}},
            }},
            {"$sort": {"_id": 1}},
        ]
        groups = await self.store.aggregate(self.collection, pipeline)
        return [
            {
                "date": group["_id"],
                "avgDurationMs": _rounded(group.get("avgDurationMs")),
                "maxDurationMs": group.get("maxDurationMs"),
                "totalQueries": group["totalQueries"],
                "errorCount": group["errorCount"],
            }
            for group in groups
        ]
