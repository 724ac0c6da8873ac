import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId

from query_gateway.errors import AnalysisError, PersistenceError
from query_gateway.models.explanation import (
    ExplanationMetadata,
    OriginalQuery,
    QueryExplanationRecord,
)
from query_gateway.services.document_store import DocumentStore
from query_gateway.services.execution_analyzer import ExecutionAnalyzer
from query_gateway.services.query_interpreter import QueryInterpreter
from query_gateway.services.suggestion_engine import SuggestionEngine
from query_gateway.utils.logging_utils import get_logger

logger = get_logger("explanation")


class ExplanationService:
    """
    Composes interpretation, execution analysis and suggestions into one
    stored explanation record.

    Execution data is the point of an explanation, so a failed analysis fails
    the whole call and nothing is stored. A failed write is only logged: the
    caller still receives the record.
    """

    def __init__(
        self,
        store: DocumentStore,
        interpreter: QueryInterpreter,
        analyzer: ExecutionAnalyzer,
        suggestions: SuggestionEngine,
        collection: str = "queryexplanations",
    ):
        self.store = store
        self.interpreter = interpreter
        self.analyzer = analyzer
        self.suggestions = suggestions
        self.collection = collection

    async def explain_query(self, text: str, resolved_query: Any, collection: str) -> QueryExplanationRecord:
        started = time.perf_counter()
        query_id = str(ObjectId())
        timestamp = datetime.now(timezone.utc)

        interpretation = self.interpreter.interpret_query(text)
        try:
            execution, suggestions = await asyncio.gather(
                self.analyzer.analyze_execution(resolved_query, collection),
                self.suggestions.generate_suggestions(text, resolved_query, collection),
            )
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(f"Explanation failed for '{collection}': {e}") from e

        record = QueryExplanationRecord(
            query_id=query_id,
            original_query=OriginalQuery(text=text, timestamp=timestamp),
            interpretation=interpretation,
            execution=execution,
            suggestions=suggestions,
            metadata=ExplanationMetadata(
                collection=collection,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                status="success",
            ),
        )

        try:
            await self.store.insert_one(self.collection, record.to_document())
        except Exception as e:
            logger.error("%s", PersistenceError(f"Failed to store explanation {query_id}: {e}"))

        return record

    async def get_explanation(self, query_id: str) -> Optional[QueryExplanationRecord]:
        document = await self.store.find_one(self.collection, {"queryId": query_id})
        if document is None:
            return None
        return QueryExplanationRecord.model_validate(document)
