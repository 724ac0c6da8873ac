"""Tests for resolved-query preparation and the explain command builder."""

from __future__ import annotations

from datetime import datetime, timezone

from bson import ObjectId

from query_gateway.services.document_store import explain_command
from query_gateway.utils.query_optimizer import prepare_mql, query_filter

OID = "65a1f0c2e4b0a1b2c3d4e5f6"


def test_query_filter_shapes() -> None:
    assert query_filter({"a": 1}) == {"a": 1}
    assert query_filter({"operation": "find", "query": {"b": 2}}) == {"b": 2}
    assert query_filter({
        "operation": "aggregate",
        "pipeline": [{"$match": {"a": 1}}, {"$match": {"b": 2}}, {"$group": {"_id": "$c"}}, {"$match": {"z": 0}}],
    }) == {"a": 1, "b": 2}
    assert query_filter("not a query") == {}


def test_prepare_find_adds_limit_and_converts_values() -> None:
    prepared = prepare_mql({
        "operation": "find",
        "query": {
            "_id": OID,
            "userId": {"$in": [OID]},
            "createdAt": {"$gte": "2024-01-02T00:00:00Z"},
            "note": OID,
        },
    })

    assert prepared["limit"] == 100
    query = prepared["query"]
    assert query["_id"] == ObjectId(OID)
    assert query["userId"]["$in"] == [ObjectId(OID)]
    assert query["createdAt"]["$gte"] == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert query["note"] == OID


def test_prepare_aggregate_appends_limit_once() -> None:
    prepared = prepare_mql({"operation": "aggregate", "pipeline": [{"$match": {}}]}, default_limit=25)
    assert prepared["pipeline"][-1] == {"$limit": 25}

    again = prepare_mql(prepared, default_limit=25)
    assert again["pipeline"].count({"$limit": 25}) == 1


def test_prepare_does_not_mutate_input() -> None:
    original = {"operation": "find", "query": {"a": 1}}
    prepare_mql(original)
    assert original == {"operation": "find", "query": {"a": 1}}


def test_explain_command_for_find_envelope() -> None:
    command = explain_command(
        "users",
        {"operation": "find", "query": {"age": {"$gt": 3}}, "sort": {"age": -1}, "limit": 5},
        "executionStats",
    )
    assert command == {
        "explain": {"find": "users", "filter": {"age": {"$gt": 3}}, "sort": {"age": -1}, "limit": 5},
        "verbosity": "executionStats",
    }


def test_explain_command_for_bare_filter_and_pipeline() -> None:
    assert explain_command("users", {"name": "Ada"}, "queryPlanner")["explain"] == {
        "find": "users",
        "filter": {"name": "Ada"},
    }
    assert explain_command("users", {"operation": "aggregate", "pipeline": [{"$count": "n"}]}, "executionStats")[
        "explain"
    ] == {"aggregate": "users", "pipeline": [{"$count": "n"}], "cursor": {}}
