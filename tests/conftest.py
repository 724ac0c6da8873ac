"""Pytest configuration for the query gateway test suite."""

from __future__ import annotations

import copy
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


def _ensure_test_env() -> None:
    """Seed required environment variables before settings are imported."""
    os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
    os.environ.setdefault("JWT_SECRET", "gateway-test-secret-0123456789abcdef")
    os.environ.setdefault("LLM_PROVIDER", "none")


_ensure_test_env()

import pytest  # noqa: E402

from query_gateway.services.token_verifier import JwtTokenVerifier  # noqa: E402

_MISSING = object()


def _lookup(document: Mapping[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    for path, expected in filter.items():
        actual = _lookup(document, path)
        if isinstance(expected, Mapping) and expected and all(k.startswith("$") for k in expected):
            for op, operand in expected.items():
                if actual is _MISSING:
                    return False
                if op == "$gte" and not actual >= operand:
                    return False
                if op == "$lte" and not actual <= operand:
                    return False
                if op == "$gt" and not actual > operand:
                    return False
                if op == "$lt" and not actual < operand:
                    return False
                if op == "$eq" and actual != operand:
                    return False
        elif actual is _MISSING or actual != expected:
            return False
    return True


def _evaluate(document: Mapping[str, Any], expression: Any) -> Any:
    """The small slice of aggregation expressions the gateway's pipelines use."""
    if isinstance(expression, str) and expression.startswith("$"):
        value = _lookup(document, expression[1:])
        return None if value is _MISSING else value
    if isinstance(expression, Mapping):
        if "$cond" in expression:
            condition, then, otherwise = expression["$cond"]
            return _evaluate(document, then if _evaluate(document, condition) else otherwise)
        if "$eq" in expression:
            left, right = expression["$eq"]
            return _evaluate(document, left) == _evaluate(document, right)
        if "$dateToString" in expression:
            spec = expression["$dateToString"]
            return _evaluate(document, spec["date"]).strftime(spec["format"])
    return expression


def _group(docs: List[Dict[str, Any]], spec: Mapping[str, Any]) -> List[Dict[str, Any]]:
    buckets: Dict[Any, List[Dict[str, Any]]] = {}
    for doc in docs:
        buckets.setdefault(_evaluate(doc, spec["_id"]), []).append(doc)

    groups = []
    for key, members in buckets.items():
        group: Dict[str, Any] = {"_id": key}
        for field, accumulator in spec.items():
            if field == "_id":
                continue
            [(op, operand)] = accumulator.items()
            values = [_evaluate(doc, operand) for doc in members]
            numbers = [v for v in values if isinstance(v, (int, float))]
            if op == "$sum":
                group[field] = sum(numbers)
            elif op == "$avg":
                group[field] = sum(numbers) / len(numbers) if numbers else None
            elif op == "$max":
                group[field] = max(numbers) if numbers else None
        groups.append(group)
    return groups


class InMemoryStore:
    """DocumentStore double with canned explain output and failure injection."""

    def __init__(self) -> None:
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        self.indexes: Dict[str, List[Dict[str, Any]]] = {}
        self.explain_outputs: Dict[str, Dict[str, Any]] = {}
        self.counts: Dict[str, int] = {}
        self.failures: Dict[str, Exception] = {}
        self.explain_calls: List[Tuple[str, Any, str]] = []
        self.calls: List[Tuple[str, str]] = []

    def fail(self, method: str, error: Optional[Exception] = None) -> None:
        self.failures[method] = error or RuntimeError(f"{method} unavailable")

    def _check(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def count_documents(self, collection: str, filter: Optional[Mapping[str, Any]] = None) -> int:
        self._check("count_documents")
        if collection in self.counts:
            return self.counts[collection]
        return len([d for d in self.collections.get(collection, []) if _matches(d, filter or {})])

    async def list_indexes(self, collection: str) -> List[Dict[str, Any]]:
        self._check("list_indexes")
        return copy.deepcopy(self.indexes.get(collection, [{"name": "_id_", "key": {"_id": 1}}]))

    async def explain(self, collection: str, resolved_query: Any, verbosity: str = "executionStats") -> Dict[str, Any]:
        self._check("explain")
        self.explain_calls.append((collection, resolved_query, verbosity))
        return copy.deepcopy(self.explain_outputs.get(collection, collscan_explain(0, 0)))

    async def find(
        self,
        collection: str,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        self._check("find")
        self.calls.append(("find", collection))
        docs = [copy.deepcopy(d) for d in self.collections.get(collection, []) if _matches(d, filter or {})]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: _lookup(d, key), reverse=direction < 0)
        if limit:
            docs = docs[:limit]
        excluded = [k for k, v in (projection or {}).items() if v == 0]
        for doc in docs:
            for key in excluded:
                doc.pop(key, None)
        return docs

    async def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        self._check("find_one")
        docs = await self.find(collection, filter, limit=1)
        return docs[0] if docs else None

    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        self._check("aggregate")
        self.calls.append(("aggregate", collection))
        docs = list(self.collections.get(collection, []))
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$count" in stage:
                docs = [{stage["$count"]: len(docs)}]
            elif "$limit" in stage:
                docs = docs[:stage["$limit"]]
            elif "$group" in stage:
                docs = _group(docs, stage["$group"])
            elif "$sort" in stage:
                for key, direction in reversed(list(stage["$sort"].items())):
                    docs.sort(key=lambda d: _lookup(d, key), reverse=direction < 0)
        return copy.deepcopy(docs)

    async def insert_one(self, collection: str, document: Dict[str, Any]) -> Any:
        self._check("insert_one")
        stored = copy.deepcopy(document)
        self.collections.setdefault(collection, []).append(stored)
        return len(self.collections[collection])


def collscan_explain(docs_examined: int, returned: int) -> Dict[str, Any]:
    """Explain output for a plan that used no index."""
    return {
        "queryPlanner": {"winningPlan": {"stage": "COLLSCAN"}},
        "executionStats": {
            "nReturned": returned,
            "totalDocsExamined": docs_examined,
            "totalKeysExamined": 0,
            "executionTimeMillis": 1,
        },
    }


def ixscan_explain(index_name: str, docs_examined: int, returned: int) -> Dict[str, Any]:
    """Explain output for FETCH over a single IXSCAN."""
    return {
        "queryPlanner": {
            "winningPlan": {
                "stage": "FETCH",
                "inputStage": {"stage": "IXSCAN", "indexName": index_name},
            }
        },
        "executionStats": {
            "nReturned": returned,
            "totalDocsExamined": docs_examined,
            "totalKeysExamined": docs_examined,
            "executionTimeMillis": 2,
        },
    }


def sbe_explain(index_name: str, docs_examined: int, returned: int) -> Dict[str, Any]:
    """Explain output from the slot-based engine: the plan tree sits under ``queryPlan``."""
    return {
        "explainVersion": "2",
        "queryPlanner": {
            "winningPlan": {
                "queryPlan": {
                    "stage": "FETCH",
                    "inputStage": {"stage": "IXSCAN", "indexName": index_name},
                },
                "slotBasedPlan": {"slots": "$$RESULT=s11", "stages": "[2] nlj inner [] [s4]"},
            }
        },
        "executionStats": {
            "nReturned": returned,
            "totalDocsExamined": docs_examined,
            "totalKeysExamined": docs_examined,
            "executionTimeMillis": 1,
        },
    }


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def verifier() -> JwtTokenVerifier:
    return JwtTokenVerifier("gateway-test-secret-0123456789abcdef")
