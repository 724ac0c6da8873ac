import re
from typing import Any, Dict, Optional, Tuple

from query_gateway.config import settings
from query_gateway.models.permissions import Role

# Lexical screen for destructive intent. Best-effort only: it inspects words,
# not meaning, so "erase everything" passes and "remove duplicates" does not.
RESTRICTED_OPERATIONS = [
    re.compile(r"\bdrop\b", re.IGNORECASE),
    re.compile(r"\bdelete\b", re.IGNORECASE),
    re.compile(r"\bremove\b", re.IGNORECASE),
    re.compile(r"\btruncate\b", re.IGNORECASE),
    re.compile(r"\bdestroy\b", re.IGNORECASE),
]

ROLE_TIMEOUTS_MS = {
    Role.ADMIN.value: 30000,
    Role.USER.value: 15000,
    Role.READONLY.value: 10000,
}
DEFAULT_TIMEOUT_MS = 5000


def is_query_safe(query: str, role: str) -> bool:
    """
    Decide whether a natural language query may run for this role.

    Admins may run anything; every other role is refused when the text
    mentions a restricted operation as a whole word.
    """
    if role == Role.ADMIN.value:
        return True
    return not any(pattern.search(query) for pattern in RESTRICTED_OPERATIONS)


def query_timeout_for(role: str) -> int:
    """Deadline in milliseconds for requests made under ``role``."""
    return ROLE_TIMEOUTS_MS.get(role, DEFAULT_TIMEOUT_MS)


# Statement-chaining patterns that never belong in a question
INJECTION_PATTERNS = [
    re.compile(r";\s*drop\s+", re.IGNORECASE),
    re.compile(r";\s*truncate\s+", re.IGNORECASE),
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"exec(?:ute)?\s*\(", re.IGNORECASE),
]

# Server-side code and write stages, blocked at any depth of a resolved query
BLOCKED_OPERATORS = frozenset({"$where", "$eval", "$function", "$accumulator", "$out", "$merge"})
READ_OPERATIONS = frozenset({"find", "aggregate"})

CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def validate_natural_query(query: str) -> Tuple[bool, str]:
    """
    Check a natural language query before it reaches the translator.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not query or not query.strip():
        return False, "Query cannot be empty"

    if len(query) > settings.max_query_length:
        return False, f"Query cannot exceed {settings.max_query_length} characters"

    if any(pattern.search(query) for pattern in INJECTION_PATTERNS):
        return False, "Query contains potentially dangerous patterns"

    return True, ""


def _blocked_operator(node: Any) -> Optional[str]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key in BLOCKED_OPERATORS:
                return key
            found = _blocked_operator(value)
            if found:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _blocked_operator(item)
            if found:
                return found
    return None


def validate_mql_safety(mql: Dict[str, Any]) -> Tuple[bool, str]:
    """
    Check a resolved query envelope before it is executed.

    Returns:
        tuple: (is_safe, error_message)
    """
    if not isinstance(mql, dict):
        return False, "Resolved query must be an object"

    blocked = _blocked_operator(mql)
    if blocked:
        return False, f"Dangerous operation '{blocked}' is not allowed"

    operation = str(mql.get("operation", "find")).lower()
    if operation not in READ_OPERATIONS:
        return False, f"Operation '{operation}' is not allowed. Only 'find' and 'aggregate' are supported."

    return True, ""


def sanitize_query(query: str) -> str:
    """Strip control characters and surrounding whitespace."""
    return CONTROL_CHARACTERS.sub("", query).strip()
