import time
from typing import Callable, Dict, FrozenSet, Mapping, Optional

from query_gateway.models.permissions import Principal, Role, RoleGrant, WILDCARD
from query_gateway.services.token_verifier import TokenVerifier
from query_gateway.utils.cache import TTLCache
from query_gateway.utils.logging_utils import get_logger

logger = get_logger("permissions")

# Static policy: collection access by role
ROLE_POLICY: Dict[str, FrozenSet[str]] = {
    Role.ADMIN.value: frozenset({WILDCARD}),
    Role.USER.value: frozenset({"users", "conversations", "queries"}),
    Role.READONLY.value: frozenset({"queries"}),
}


def grant_for_role(role: str, policy: Mapping[str, FrozenSet[str]] = ROLE_POLICY) -> RoleGrant:
    """Build the grant for a declared role; unknown roles get no collections."""
    return RoleGrant(role=role, allowed_collections=policy.get(role, frozenset()))


def has_collection_access(grant: RoleGrant, collection: str) -> bool:
    """Literal membership only; ``*`` is the sole wildcard."""
    return WILDCARD in grant.allowed_collections or collection in grant.allowed_collections


class PermissionStore:
    """
    Resolves bearer tokens to role grants.

    Token checks are always performed; only the token-to-grant derivation is
    cached per subject. Concurrent resolutions of the same subject may both
    miss and both insert: the grant is a pure function of the role, so the
    last write wins harmlessly.

    The key is the subject alone. A fresh token that declares a different
    role for a cached subject keeps the cached grant, and with it the old
    role's timeout, until the entry expires or ``invalidate`` is called.
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        capacity: int = 500,
        ttl_seconds: float = 15 * 60,
        policy: Optional[Mapping[str, FrozenSet[str]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.verifier = verifier
        self.policy = dict(policy) if policy is not None else ROLE_POLICY
        self.cache: TTLCache[RoleGrant] = TTLCache(capacity=capacity, ttl=ttl_seconds, clock=clock)
        self.derivations = 0

    def resolve_principal(self, token: str) -> Principal:
        claims = self.verifier.verify(token)
        grant = self.cache.get(claims.subject_id)
        if grant is None:
            grant = grant_for_role(claims.role, self.policy)
            self.derivations += 1
            self.cache.set(claims.subject_id, grant)
            logger.debug("Derived grant for subject %s (role=%s)", claims.subject_id, claims.role)
        return Principal(subject_id=claims.subject_id, grant=grant)

    def resolve(self, token: str) -> RoleGrant:
        return self.resolve_principal(token).grant

    has_collection_access = staticmethod(has_collection_access)

    def invalidate(self, subject_id: str) -> None:
        self.cache.invalidate(subject_id)

    def clear(self) -> None:
        self.cache.clear()

    def cache_info(self) -> Dict[str, float]:
        return self.cache.info()
