from typing import Any, Dict, List

from query_gateway.models.explanation import IndexRecommendation, Suggestions
from query_gateway.services.document_store import DocumentStore
from query_gateway.utils.query_optimizer import (
    extract_query_fields,
    has_large_in_array,
    has_unanchored_regex,
    is_full_collection_scan,
    query_filter,
)
from query_gateway.utils.similarity import dice_coefficient

MAX_ALTERNATIVES = 3
SIMILARITY_THRESHOLD = 0.6
CORPUS_SIZE = 100

LEXICAL_REWRITES = [
    ("greater than", "more than"),
    ("less than", "under"),
]

FULL_SCAN_TIP = "Consider adding an index to avoid full collection scan"
REGEX_TIP = "Use anchored regex patterns (^) for better performance"
LARGE_IN_TIP = "Consider breaking large $in/$nin queries into smaller batches"


def _index_fields(index: Dict[str, Any]) -> List[str]:
    return list((index.get("key") or {}).keys())


def _covers(field: str, index_fields: List[str]) -> bool:
    return field in index_fields or f"{field}_1" in index_fields or f"{field}_-1" in index_fields


class SuggestionEngine:
    def __init__(self, store: DocumentStore, explanation_collection: str = "queryexplanations"):
        self.store = store
        self.explanation_collection = explanation_collection

    async def generate_suggestions(self, text: str, resolved_query: Any, collection: str) -> Suggestions:
        query = query_filter(resolved_query)
        return Suggestions(
            alternative_phrasing=await self.generate_alternative_phrasing(text),
            optimization_tips=self.generate_optimization_tips(query),
            recommended_indexes=await self.suggest_indexes(query, collection),
        )

    async def find_similar_successful_queries(self, text: str) -> List[str]:
        recent = await self.store.find(
            self.explanation_collection,
            {"metadata.status": "success"},
            {"originalQuery.text": 1},
            sort=[("originalQuery.timestamp", -1)],
            limit=CORPUS_SIZE,
        )
        scored = []
        for record in recent:
            past = (record.get("originalQuery") or {}).get("text")
            if not past:
                continue
            similarity = dice_coefficient(text, past)
            if similarity > SIMILARITY_THRESHOLD:
                scored.append((similarity, past))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [past for _, past in scored[:MAX_ALTERNATIVES]]

    async def generate_alternative_phrasing(self, text: str) -> List[str]:
        alternatives = await self.find_similar_successful_queries(text)
        for phrase, replacement in LEXICAL_REWRITES:
            if phrase in text:
                alternatives.append(text.replace(phrase, replacement, 1))

        unique: List[str] = []
        for alternative in alternatives:
            if alternative not in unique:
                unique.append(alternative)
        return unique[:MAX_ALTERNATIVES]

    def generate_optimization_tips(self, query: Dict[str, Any]) -> List[str]:
        tips = []
        if is_full_collection_scan(query):
            tips.append(FULL_SCAN_TIP)
        if has_unanchored_regex(query):
            tips.append(REGEX_TIP)
        if has_large_in_array(query):
            tips.append(LARGE_IN_TIP)
        return tips

    async def suggest_indexes(self, query: Dict[str, Any], collection: str) -> List[IndexRecommendation]:
        fields = extract_query_fields(query)
        if not fields:
            return []

        existing = [_index_fields(index) for index in await self.store.list_indexes(collection)]
        suggestions: List[IndexRecommendation] = []

        for field in fields:
            if not any(_covers(field, index_fields) for index_fields in existing):
                suggestions.append(IndexRecommendation(
                    fields=[field],
                    reason=f"Frequently queried field '{field}' is not indexed",
                ))

        if len(fields) > 1:
            jointly_covered = any(all(_covers(f, index_fields) for f in fields) for index_fields in existing)
            if not jointly_covered:
                suggestions.append(IndexRecommendation(
                    fields=fields,
                    reason=f"Consider a compound index for frequently combined fields: {', '.join(fields)}",
                ))

        return suggestions
