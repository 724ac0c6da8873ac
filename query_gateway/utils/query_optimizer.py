import json
import re
from datetime import datetime
from typing import Any, Dict, List

from bson import ObjectId, Regex

LARGE_IN_ARRAY_THRESHOLD = 50
LOGICAL_OPERATORS = {"$and", "$or", "$nor"}


def is_envelope(mql: Any) -> bool:
    """True for translator output ({"operation": ..., "query"/"pipeline": ...}) as opposed to a bare filter."""
    return isinstance(mql, dict) and ("operation" in mql or "pipeline" in mql)


def query_filter(mql: Any) -> Dict[str, Any]:
    """
    Extract the filter document the database will match on.

    Bare filters are returned as-is. For find envelopes this is ``query``; for
    aggregate envelopes it is the leading ``$match`` stages merged together.
    """
    if not isinstance(mql, dict):
        return {}
    if not is_envelope(mql):
        return mql

    if str(mql.get("operation", "find")).lower() == "aggregate":
        merged: Dict[str, Any] = {}
        for stage in mql.get("pipeline") or []:
            if not isinstance(stage, dict) or "$match" not in stage:
                break
            if isinstance(stage["$match"], dict):
                merged.update(stage["$match"])
        return merged

    query = mql.get("query") or {}
    return query if isinstance(query, dict) else {}


def optimize_mql(mql: Dict[str, Any], default_limit: int = 100) -> Dict[str, Any]:
    """
    Optimize MongoDB query by adding sensible defaults.

    Args:
        mql: MongoDB query envelope
        default_limit: Default limit to apply if not present

    Returns:
        Optimized MQL query
    """
    if not isinstance(mql, dict):
        return mql

    operation = str(mql.get("operation", "find")).lower()

    # Add default limit if not present
    if operation == "find" and "limit" not in mql:
        mql["limit"] = default_limit

    if operation == "aggregate":
        pipeline = mql.get("pipeline") or []
        if not any(isinstance(stage, dict) and "$limit" in stage for stage in pipeline):
            mql["pipeline"] = list(pipeline) + [{"$limit": default_limit}]

    # Optimize projection if possible
    if "projection" in mql and isinstance(mql["projection"], dict):
        # Ensure _id is included unless explicitly excluded
        if "_id" not in mql["projection"]:
            mql["projection"]["_id"] = 1

    return mql


def convert_dates(obj: Any) -> Any:
    """Recursively convert {"$date": ...} Extended JSON and ISO date strings to datetimes."""
    if isinstance(obj, dict):
        if "$date" in obj and len(obj) == 1 and isinstance(obj["$date"], str):
            parsed = _parse_iso(obj["$date"])
            return parsed if parsed is not None else obj
        return {k: convert_dates(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [convert_dates(item) for item in obj]
    if isinstance(obj, str) and len(obj) >= 10 and (obj[4:5] == "-" or obj.endswith("Z")):
        parsed = _parse_iso(obj)
        return parsed if parsed is not None else obj
    return obj


def _parse_iso(value: str):
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def convert_objectids(obj: Any, key_path: str = "") -> Any:
    """Recursively convert ObjectId-like strings on id/reference field paths."""
    if isinstance(obj, dict):
        converted = {}
        for k, v in obj.items():
            next_path = f"{key_path}.{k}" if key_path else str(k)
            converted[k] = convert_objectids(v, next_path)
        return converted

    if isinstance(obj, list):
        return [convert_objectids(item, key_path) for item in obj]

    if isinstance(obj, str) and len(obj) == 24 and ObjectId.is_valid(obj):
        # Convert only for likely id/reference field paths, not arbitrary strings.
        parts = key_path.split(".") if key_path else [""]
        leaf = parts[-1].lower()
        if leaf in {"$in", "$nin", "$eq", "$ne"} and len(parts) > 1:
            leaf = parts[-2].lower()
        id_leafs = {"_id", "id", "userid", "customerid", "productid", "categoryid"}
        if leaf in id_leafs or leaf.endswith("_id"):
            return ObjectId(obj)

    return obj


def prepare_mql(mql: Dict[str, Any], default_limit: int = 100) -> Dict[str, Any]:
    """Normalize translator output into something the database accepts."""
    mql = optimize_mql(dict(mql), default_limit=default_limit)
    for key in ("query", "pipeline"):
        if key in mql:
            mql[key] = convert_objectids(convert_dates(mql[key]))
    return mql


def is_full_collection_scan(query: Dict[str, Any]) -> bool:
    """Empty filter, or nothing but a legacy ``$query`` wrapper."""
    if not isinstance(query, dict):
        return False
    return len(query) == 0 or (len(query) == 1 and "$query" in query)


def _is_unanchored(pattern: Any) -> bool:
    if isinstance(pattern, (re.Pattern, Regex)):
        pattern = pattern.pattern
    return isinstance(pattern, str) and not pattern.startswith("^")


def has_unanchored_regex(obj: Any) -> bool:
    """Any regex in the (nested) query whose pattern does not start with ``^``."""
    if isinstance(obj, (re.Pattern, Regex)):
        return _is_unanchored(obj)
    if isinstance(obj, dict):
        if "$regex" in obj and _is_unanchored(obj["$regex"]):
            return True
        return any(has_unanchored_regex(v) for v in obj.values())
    if isinstance(obj, list):
        return any(has_unanchored_regex(v) for v in obj)
    return False


def has_large_in_array(obj: Any, threshold: int = LARGE_IN_ARRAY_THRESHOLD) -> bool:
    """Any ``$in``/``$nin`` clause listing more than ``threshold`` values."""
    if isinstance(obj, dict):
        for op in ("$in", "$nin"):
            values = obj.get(op)
            if isinstance(values, list) and len(values) > threshold:
                return True
        return any(has_large_in_array(v, threshold) for v in obj.values())
    if isinstance(obj, list):
        return any(has_large_in_array(v, threshold) for v in obj)
    return False


def extract_query_fields(query: Any, prefix: str = "") -> List[str]:
    """
    Leaf field paths referenced by a filter, dot-joined, in first-seen order.

    Operator keys are skipped; ``$and``/``$or``/``$nor`` branches are searched
    for the fields they constrain.
    """
    fields: List[str] = []

    def add(path: str) -> None:
        if path not in fields:
            fields.append(path)

    if not isinstance(query, dict):
        return fields

    for key, value in query.items():
        if key in LOGICAL_OPERATORS and isinstance(value, list):
            for branch in value:
                for path in extract_query_fields(branch, prefix):
                    add(path)
            continue
        if key.startswith("$"):
            continue

        full_path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and any(not k.startswith("$") for k in value):
            for path in extract_query_fields(value, full_path):
                add(path)
        else:
            add(full_path)

    return fields


def format_mql_for_display(mql: Dict[str, Any]) -> str:
    """
    Format MQL query for user-friendly display.

    Args:
        mql: MongoDB query object

    Returns:
        Formatted string representation
    """
    try:
        return json.dumps(mql, indent=2, default=str)
    except (TypeError, ValueError):
        return str(mql)
