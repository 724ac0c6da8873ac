from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from query_gateway.models.base import Document


class PerformanceStats(Document):
    total_duration_ms: float = 0.0
    query_generation_ms: float = 0.0
    query_execution_ms: float = 0.0
    token_count: int = 0


class ErrorDetail(Document):
    message: str
    type: str
    code: Optional[str] = None


class QueryOutcome(Document):
    role: str
    status: str  # success | error
    error_detail: Optional[ErrorDetail] = None


class AuditLogEntry(Document):
    """One completed request. Append-only."""

    subject_id: str
    timestamp: datetime
    natural_language_query: str
    resolved_query: Any = Field(default_factory=dict)
    raw_response: Any = None
    collection: str
    performance: PerformanceStats
    outcome: QueryOutcome
