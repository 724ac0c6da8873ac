import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from query_gateway.services.document_store import DocumentStore
from query_gateway.utils.logging_utils import get_logger
from query_gateway.utils.nlp_processor import NLPProcessor

logger = get_logger("translator")

SYSTEM_PROMPT = (
    "You translate natural language questions into MongoDB queries. "
    "Answer with one raw JSON object and nothing else, shaped as "
    '{"operation": "find", "query": {...}, "projection": {...}, "sort": {...}, "limit": N} '
    'or {"operation": "aggregate", "pipeline": [...]}. '
    "Only read operations are allowed."
)

COMPARISONS = [
    (r"(?:greater than|more than|over|above)", "$gt"),
    (r"(?:less than|under|below)", "$lt"),
    (r"(?:at least)", "$gte"),
    (r"(?:at most)", "$lte"),
]


@dataclass(frozen=True)
class Translation:
    resolved_query: Dict[str, Any]
    raw_response: Any
    token_count: int


class QueryTranslator:
    """
    Turns free text into a resolved query envelope.

    Uses the configured LLM when there is one and falls back to keyword rules
    otherwise, or when the model's answer holds no usable JSON.
    """

    def __init__(
        self,
        store: DocumentStore,
        llm: Any = None,
        llm_metadata: Optional[Dict[str, Any]] = None,
        nlp: Optional[NLPProcessor] = None,
        sample_size: int = 3,
    ):
        self.store = store
        self.llm = llm
        self.llm_metadata = llm_metadata or {"provider": "rule_based", "model": "keyword_rules"}
        self.nlp = nlp or NLPProcessor()
        self.sample_size = sample_size
        self.schema_cache: Dict[str, List[str]] = {}

    async def translate(self, natural_query: str, collection: str) -> Translation:
        if self.llm is None:
            mql = self._build_rule_based_mql(natural_query)
            return Translation(mql, {"provider": "rule_based"}, self.nlp.count_tokens(natural_query))

        prompt = await self._build_query_prompt(natural_query, collection)
        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]
        logger.info("Invoking LLM (%s / %s)", self.llm_metadata["provider"], self.llm_metadata["model"])
        response = await asyncio.to_thread(self.llm.invoke, messages)

        content = getattr(response, "content", str(response))
        mql = self._extract_mql_from_response(content)
        if mql is None:
            logger.warning("No JSON query in LLM response; using keyword rules")
            mql = self._build_rule_based_mql(natural_query)
        else:
            mql = self._fix_mql(mql)

        usage = getattr(response, "usage_metadata", None) or {}
        token_count = usage.get("total_tokens") or self.nlp.count_tokens(SYSTEM_PROMPT, prompt, content)
        raw = {"provider": self.llm_metadata["provider"], "model": self.llm_metadata["model"], "content": content}
        return Translation(mql, raw, int(token_count))

    async def _get_collection_fields(self, collection: str) -> List[str]:
        """Field names seen in a small sample of the collection."""
        if collection in self.schema_cache:
            return self.schema_cache[collection]
        try:
            sample = await self.store.find(collection, {}, limit=self.sample_size)
        except Exception as e:
            logger.warning("Error getting schema for %s: %s", collection, e)
            return []
        fields: List[str] = []
        for doc in sample:
            for key in doc:
                if key not in fields:
                    fields.append(key)
        self.schema_cache[collection] = fields
        return fields

    async def _build_query_prompt(self, natural_query: str, collection: str) -> str:
        fields = await self._get_collection_fields(collection)
        return (
            f"Collection: {collection}\n"
            f"Known fields: {', '.join(fields) if fields else 'unknown'}\n"
            f"Question: {natural_query}\n"
            "Return the JSON query now."
        )

    def _extract_mql_from_response(self, content: Any) -> Optional[Dict[str, Any]]:
        """Extract a MongoDB query object from LLM output."""
        if isinstance(content, list):
            # Handle cases where response is a list of content blocks
            content = "".join(
                block["text"] if isinstance(block, dict) and "text" in block else str(block)
                for block in content
            )
        content = str(content)

        candidates = re.findall(r'```(?:json)?\s*(.*?)\s*```', content, re.DOTALL) or [content]
        for candidate in candidates:
            start = candidate.find("{")
            while start != -1:
                parsed = self._parse_balanced(candidate, start)
                if isinstance(parsed, dict):
                    return parsed
                start = candidate.find("{", start + 1)
        return None

    @staticmethod
    def _parse_balanced(text: str, start: int) -> Optional[Any]:
        depth = 0
        for i in range(start, len(text)):
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
                if depth == 0:
                    snippet = text[start:i + 1]
                    try:
                        return json.loads(snippet)
                    except json.JSONDecodeError:
                        # Remove trailing commas and retry
                        try:
                            return json.loads(re.sub(r',\s*([\]}])', r'\1', snippet))
                        except json.JSONDecodeError:
                            return None
        return None

    def _fix_mql(self, mql: Dict[str, Any]) -> Dict[str, Any]:
        """Fix common LLM mistakes in MQL structure"""
        fix_keys = {
            "$sort": "sort",
            "$limit": "limit",
            "$projection": "projection",
            "$project": "projection",
            "$filter": "query",
            "$query": "query",
            "filter": "query",
        }
        for old_key, new_key in fix_keys.items():
            if old_key in mql and new_key not in mql:
                mql[new_key] = mql.pop(old_key)

        # The target collection comes from the request, never from the model
        mql.pop("collection", None)

        if "pipeline" in mql and "operation" not in mql:
            mql["operation"] = "aggregate"
        mql.setdefault("operation", "find")

        query = mql.get("query")
        if isinstance(query, dict):
            # If query is just a single key '$match', it's actually just the filter
            if len(query) == 1 and "$match" in query:
                mql["query"] = query["$match"]
            # Aggregation stages inside a find filter mean the model wanted a pipeline
            elif any(op in query for op in ["$group", "$unwind", "$lookup"]) and mql["operation"] == "find":
                mql["operation"] = "aggregate"
                stages = [{op: query.pop(op)} for op in ["$lookup", "$unwind", "$group"] if op in query]
                mql["pipeline"] = ([{"$match": query}] if query else []) + stages
                mql.pop("query")

        # Cannot mix 1 and 0 in a projection except for _id
        projection = mql.get("projection")
        if isinstance(projection, dict):
            inclusions = [k for k, v in projection.items() if v == 1 and k != "_id"]
            exclusions = [k for k, v in projection.items() if v == 0 and k != "_id"]
            if inclusions and exclusions:
                logger.debug("Fixed mixed projection: removed exclusions %s", exclusions)
                mql["projection"] = {k: v for k, v in projection.items() if v == 1 or k == "_id"}

        return mql

    def _build_rule_based_mql(self, natural_query: str) -> Dict[str, Any]:
        """Deterministic filter from "<field> <comparison> <number>" and "<field> is <value>" phrases."""
        text = natural_query or ""
        query: Dict[str, Any] = {}

        for phrase, op in COMPARISONS:
            for match in re.finditer(rf"(\w+)\s+(?:is\s+)?{phrase}\s+(\d+(?:\.\d+)?)", text, re.IGNORECASE):
                field, value = match.group(1).lower(), match.group(2)
                number = float(value) if "." in value else int(value)
                query.setdefault(field, {})[op] = number

        for match in re.finditer(r"(\w+)\s+(?:is|=|equals)\s+[\"']([^\"']+)[\"']", text, re.IGNORECASE):
            query[match.group(1).lower()] = match.group(2)

        limit_match = re.search(r"\b(?:top|first|limit)\s+(\d+)", text, re.IGNORECASE)

        if re.search(r"\bhow many\b|\bcount\b", text, re.IGNORECASE):
            pipeline: List[Dict[str, Any]] = [{"$match": query}] if query else []
            pipeline.append({"$count": "count"})
            return {"operation": "aggregate", "pipeline": pipeline}

        mql: Dict[str, Any] = {"operation": "find", "query": query}
        if limit_match:
            mql["limit"] = min(int(limit_match.group(1)), 100)
        return mql
