from datetime import datetime
from typing import Any, Dict, List

from bson import ObjectId

from query_gateway.services.document_store import DocumentStore
from query_gateway.utils.logging_utils import get_logger
from query_gateway.utils.query_optimizer import format_mql_for_display

logger = get_logger("executor")

MAX_RESULTS = 1000


def stringify_ids(data: Any) -> Any:
    """Convert ObjectId and datetime values for JSON serialization."""
    if isinstance(data, list):
        return [stringify_ids(item) for item in data]
    if isinstance(data, dict):
        return {k: stringify_ids(v) for k, v in data.items()}
    if isinstance(data, ObjectId):
        return str(data)
    if isinstance(data, datetime):
        return data.isoformat()
    return data


class QueryExecutor:
    """Runs prepared read-only envelopes against the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def execute(self, mql: Dict[str, Any], collection: str) -> List[Dict[str, Any]]:
        logger.debug("Executing on %s:\n%s", collection, format_mql_for_display(mql))
        operation = str(mql.get("operation", "find")).lower()

        if operation == "aggregate":
            results = await self.store.aggregate(collection, mql.get("pipeline") or [])
        else:
            sort = mql.get("sort")
            if isinstance(sort, dict):
                sort = list(sort.items())
            results = await self.store.find(
                collection,
                mql.get("query") or {},
                mql.get("projection"),
                sort=sort,
                limit=min(int(mql.get("limit") or MAX_RESULTS), MAX_RESULTS),
            )

        return stringify_ids(results)
