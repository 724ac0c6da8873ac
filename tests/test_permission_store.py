"""Unit tests for permission resolution, grant caching and token verification."""

from __future__ import annotations

import time

import jwt
import pytest

from query_gateway.errors import ExpiredTokenError, InvalidTokenError
from query_gateway.models.permissions import RoleGrant
from query_gateway.services.permission_store import (
    PermissionStore,
    grant_for_role,
    has_collection_access,
)
from query_gateway.utils.cache import TTLCache

SECRET = "gateway-test-secret-0123456789abcdef"


def _store(verifier, clock, **kwargs) -> PermissionStore:
    """Return a permission store driven by the fake clock."""
    return PermissionStore(verifier, clock=clock, **kwargs)


def test_admin_grant_is_wildcard() -> None:
    grant = grant_for_role("admin")
    assert grant.allowed_collections == frozenset({"*"})


def test_unknown_role_gets_no_collections() -> None:
    grant = grant_for_role("auditor")
    assert grant.role == "auditor"
    assert grant.allowed_collections == frozenset()
    assert not has_collection_access(grant, "queries")


@pytest.mark.parametrize("collection", ["users", "queries", "anything", "system.profile"])
def test_wildcard_grants_every_collection(collection: str) -> None:
    assert has_collection_access(RoleGrant(role="admin", allowed_collections=frozenset({"*"})), collection)


def test_explicit_grant_requires_exact_membership() -> None:
    grant = grant_for_role("user")
    assert has_collection_access(grant, "users")
    assert has_collection_access(grant, "conversations")
    assert not has_collection_access(grant, "user")
    assert not has_collection_access(grant, "users_archive")
    assert not has_collection_access(grant, "*")


def test_grant_is_immutable() -> None:
    grant = grant_for_role("readonly")
    with pytest.raises(Exception):
        grant.role = "admin"


def test_resolve_returns_grant_for_declared_role(verifier, clock) -> None:
    store = _store(verifier, clock)
    principal = store.resolve_principal(verifier.issue("u-1", "readonly"))
    assert principal.subject_id == "u-1"
    assert principal.role == "readonly"
    assert principal.grant.allowed_collections == frozenset({"queries"})


def test_repeated_resolution_within_ttl_hits_cache(verifier, clock) -> None:
    store = _store(verifier, clock)
    token = verifier.issue("u-1", "user")

    store.resolve(token)
    clock.advance(14 * 60)
    store.resolve(token)

    assert store.derivations == 1
    assert store.cache_info()["hits"] == 1


def test_resolution_after_ttl_rederives_grant(verifier, clock) -> None:
    store = _store(verifier, clock)
    token = verifier.issue("u-1", "user")

    store.resolve(token)
    clock.advance(15 * 60)
    grant = store.resolve(token)

    assert store.derivations == 2
    assert grant == grant_for_role("user")


def test_capacity_evicts_least_recently_used(verifier, clock) -> None:
    store = _store(verifier, clock, capacity=2)
    first, second, third = (verifier.issue(f"u-{i}", "user") for i in range(3))

    store.resolve(first)
    store.resolve(second)
    store.resolve(first)  # u-0 is now most recently used
    store.resolve(third)  # evicts u-1

    assert "u-0" in store.cache
    assert "u-1" not in store.cache
    assert "u-2" in store.cache


def test_invalid_token_is_rejected_even_when_subject_cached(verifier, clock) -> None:
    store = _store(verifier, clock)
    store.resolve(verifier.issue("u-1", "admin"))

    forged = jwt.encode({"userId": "u-1", "role": "admin"}, "wrong-secret-0123456789abcdef012345", algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        store.resolve(forged)


def test_expired_token_raises_expired_error(verifier) -> None:
    token = jwt.encode(
        {"userId": "u-1", "role": "user", "exp": int(time.time()) - 10},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(ExpiredTokenError):
        verifier.verify(token)


def test_token_without_role_is_invalid(verifier) -> None:
    token = jwt.encode({"userId": "u-1"}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        verifier.verify(token)


def test_sub_claim_is_accepted_as_subject(verifier) -> None:
    token = jwt.encode({"sub": "u-9", "role": "user"}, SECRET, algorithm="HS256")
    assert verifier.verify(token).subject_id == "u-9"


def test_empty_token_is_invalid(verifier) -> None:
    with pytest.raises(InvalidTokenError):
        verifier.verify("")


def test_invalidate_forces_rederivation(verifier, clock) -> None:
    store = _store(verifier, clock)
    token = verifier.issue("u-1", "user")
    store.resolve(token)
    store.invalidate("u-1")
    store.resolve(token)
    assert store.derivations == 2


def test_cache_expiry_and_clear(clock) -> None:
    cache: TTLCache[str] = TTLCache(capacity=4, ttl=10, clock=clock)
    cache.set("a", "1")
    clock.advance(9.9)
    assert cache.get("a") == "1"
    clock.advance(0.1)
    assert cache.get("a") is None
    cache.set("b", "2")
    cache.clear()
    assert len(cache) == 0


def test_cache_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        TTLCache(capacity=0)


def test_role_change_applies_after_invalidate(verifier, clock) -> None:
    store = _store(verifier, clock)
    store.resolve(verifier.issue("u-1", "readonly"))

    promoted = verifier.issue("u-1", "admin")
    assert store.resolve(promoted).role == "readonly"

    store.invalidate("u-1")
    assert store.resolve(promoted).role == "admin"
