from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from query_gateway.models.base import Document


class Entity(Document):
    name: str
    value: str
    type: str


class Interpretation(Document):
    intent: str
    entities: List[Entity] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    confidence: float


class UsedIndex(Document):
    name: str
    key_spec: Dict[str, Any]
    kind: str
    efficiency: float


class Complexity(Document):
    time_complexity: str = Field(alias="class")
    documents_examined: int
    indexes_used: int


class ExecutionAnalysis(Document):
    used_indexes: List[UsedIndex] = Field(default_factory=list)
    complexity: Complexity
    execution_stats: Optional[Dict[str, Any]] = None


class IndexRecommendation(Document):
    fields: List[str]
    reason: str


class Suggestions(Document):
    alternative_phrasing: List[str] = Field(default_factory=list)
    optimization_tips: List[str] = Field(default_factory=list)
    recommended_indexes: List[IndexRecommendation] = Field(default_factory=list)


class OriginalQuery(Document):
    text: str
    timestamp: datetime


class ExplanationMetadata(Document):
    collection: str
    duration_ms: float
    status: str


class QueryExplanationRecord(Document):
    query_id: str
    original_query: OriginalQuery
    interpretation: Interpretation
    execution: ExecutionAnalysis
    suggestions: Suggestions
    metadata: ExplanationMetadata
