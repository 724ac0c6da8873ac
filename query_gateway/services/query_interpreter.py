import re
from typing import List, Tuple

from query_gateway.models.explanation import Entity, Interpretation

# Checked in order; the first match decides the intent.
INTENT_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"find|search|get|retrieve", re.IGNORECASE), "READ"),
    (re.compile(r"count|sum|average|mean", re.IGNORECASE), "AGGREGATE"),
    (re.compile(r"update|modify|change", re.IGNORECASE), "UPDATE"),
    (re.compile(r"delete|remove", re.IGNORECASE), "DELETE"),
    (re.compile(r"create|insert|add", re.IGNORECASE), "CREATE"),
]

CONDITION_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b(?:greater than|more than|over|above)\b", re.IGNORECASE), "GREATER_THAN"),
    (re.compile(r"\b(?:less than|under|below)\b", re.IGNORECASE), "LESS_THAN"),
    (re.compile(r"\b(?:equal to|exactly|precisely)\b", re.IGNORECASE), "EQUALS"),
    (re.compile(r"\bbetween\b", re.IGNORECASE), "BETWEEN"),
    (re.compile(r"\b(?:not|except|exclud\w*)\b", re.IGNORECASE), "NOT"),
]

DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4}")
NUMBER_PATTERN = re.compile(r"\b\d+(?:\.\d+)?\b")
STRING_PATTERN = re.compile(r"\"([^\"]+)\"|'([^']+)'")

BASE_CONFIDENCE = 0.5
INTENT_BONUS = 0.2
ENTITY_BONUS = 0.1
MAX_SCORED_ENTITIES = 3
SHORT_QUERY_LENGTH = 5
SHORT_QUERY_PENALTY = 0.2


class QueryInterpreter:
    """
    Heuristic reading of a natural language query.

    Keyword and pattern matching only; there is no parsing. Intent keywords
    match anywhere in the text ("together" reads as ``get``), conditions only
    as whole words. ``floor_at_zero`` clamps the score for callers that tune
    the weights below zero.
    """

    def __init__(self, floor_at_zero: bool = False):
        self.floor_at_zero = floor_at_zero

    def interpret_query(self, text: str) -> Interpretation:
        intent = self.detect_intent(text)
        entities = self.extract_entities(text)
        conditions = self.identify_conditions(text)
        return Interpretation(
            intent=intent,
            entities=entities,
            conditions=conditions,
            confidence=self.calculate_confidence(text, intent, entities),
        )

    def detect_intent(self, text: str) -> str:
        for pattern, intent in INTENT_PATTERNS:
            if pattern.search(text):
                return intent
        return "UNKNOWN"

    def extract_entities(self, text: str) -> List[Entity]:
        entities: List[Entity] = []

        date_spans = []
        for match in DATE_PATTERN.finditer(text):
            date_spans.append(match.span())
            entities.append(Entity(name="date", value=match.group(), type="DATE"))

        for match in NUMBER_PATTERN.finditer(text):
            start, end = match.span()
            # Digits inside a date were already captured as part of the DATE
            if any(s <= start and end <= e for s, e in date_spans):
                continue
            entities.append(Entity(name="number", value=match.group(), type="NUMBER"))

        for match in STRING_PATTERN.finditer(text):
            value = match.group(1) if match.group(1) is not None else match.group(2)
            entities.append(Entity(name="string", value=value, type="STRING"))

        return entities

    def identify_conditions(self, text: str) -> List[str]:
        return [condition for pattern, condition in CONDITION_PATTERNS if pattern.search(text)]

    def calculate_confidence(self, text: str, intent: str, entities: List[Entity]) -> float:
        confidence = BASE_CONFIDENCE
        if intent != "UNKNOWN":
            confidence += INTENT_BONUS
        confidence += ENTITY_BONUS * min(len(entities), MAX_SCORED_ENTITIES)
        if len(text) < SHORT_QUERY_LENGTH:
            confidence -= SHORT_QUERY_PENALTY
        confidence = round(min(confidence, 1.0), 4)
        if self.floor_at_zero:
            confidence = max(confidence, 0.0)
        return confidence
