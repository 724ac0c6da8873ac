from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pymongo import AsyncMongoClient

from query_gateway.utils.logging_utils import get_logger
from query_gateway.utils.query_optimizer import is_envelope, query_filter

logger = get_logger("store")


class DocumentStore(Protocol):
    """The storage operations the gateway relies on."""

    async def count_documents(self, collection: str, filter: Optional[Mapping[str, Any]] = None) -> int: ...

    async def list_indexes(self, collection: str) -> List[Dict[str, Any]]: ...

    async def explain(self, collection: str, resolved_query: Any, verbosity: str = "executionStats") -> Dict[str, Any]: ...

    async def find(
        self,
        collection: str,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]: ...

    async def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Dict[str, Any]]: ...

    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]: ...

    async def insert_one(self, collection: str, document: Dict[str, Any]) -> Any: ...


def explain_command(collection: str, resolved_query: Any, verbosity: str) -> Dict[str, Any]:
    """Build the ``explain`` command for either a bare filter or a find/aggregate envelope."""
    if is_envelope(resolved_query) and str(resolved_query.get("operation", "find")).lower() == "aggregate":
        inner: Dict[str, Any] = {
            "aggregate": collection,
            "pipeline": resolved_query.get("pipeline") or [],
            "cursor": {},
        }
    else:
        inner = {"find": collection, "filter": query_filter(resolved_query)}
        if is_envelope(resolved_query):
            for key in ("projection", "sort", "limit"):
                if resolved_query.get(key):
                    inner[key] = resolved_query[key]
    return {"explain": inner, "verbosity": verbosity}


class MongoDocumentStore:
    """DocumentStore backed by the PyMongo async client."""

    def __init__(self, connection_string: str, database_name: str):
        self.client = AsyncMongoClient(connection_string)
        self.db = self.client[database_name]
        self.database_name = database_name

    async def count_documents(self, collection: str, filter: Optional[Mapping[str, Any]] = None) -> int:
        return await self.db[collection].count_documents(dict(filter or {}))

    async def list_indexes(self, collection: str) -> List[Dict[str, Any]]:
        cursor = await self.db[collection].list_indexes()
        indexes = await cursor.to_list()
        return [dict(index) for index in indexes]

    async def explain(self, collection: str, resolved_query: Any, verbosity: str = "executionStats") -> Dict[str, Any]:
        return await self.db.command(explain_command(collection, resolved_query, verbosity))

    async def find(
        self,
        collection: str,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(dict(filter or {}), projection)
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list()

    async def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.db[collection].find_one(dict(filter))

    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        cursor = await self.db[collection].aggregate(pipeline)
        return await cursor.to_list()

    async def insert_one(self, collection: str, document: Dict[str, Any]) -> Any:
        result = await self.db[collection].insert_one(document)
        return result.inserted_id

    async def close(self) -> None:
        await self.client.close()
        logger.info("MongoDB connection closed")
