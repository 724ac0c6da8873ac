"""Tests for natural language to query translation."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from query_gateway.agents.query_translator import QueryTranslator


class FakeLLM:
    """Records prompts and answers with a canned reply."""

    def __init__(self, content: Any, usage: Any = None) -> None:
        self.content = content
        self.usage = usage
        self.calls: List[list] = []

    def invoke(self, messages: list) -> SimpleNamespace:
        self.calls.append(messages)
        return SimpleNamespace(content=self.content, usage_metadata=self.usage)


@pytest.fixture
def translator(store) -> QueryTranslator:
    return QueryTranslator(store)


@pytest.mark.asyncio
async def test_rule_based_comparison(translator: QueryTranslator) -> None:
    translation = await translator.translate("find users with age greater than 30", "users")

    assert translation.resolved_query == {"operation": "find", "query": {"age": {"$gt": 30}}}
    assert translation.raw_response == {"provider": "rule_based"}
    assert translation.token_count == 7


@pytest.mark.asyncio
async def test_rule_based_equality_and_limit(translator: QueryTranslator) -> None:
    translation = await translator.translate('top 500 orders where status is "open" and total below 9.5', "orders")

    assert translation.resolved_query == {
        "operation": "find",
        "query": {"total": {"$lt": 9.5}, "status": "open"},
        "limit": 100,
    }


@pytest.mark.asyncio
async def test_rule_based_count(translator: QueryTranslator) -> None:
    translation = await translator.translate("how many users have age at least 18", "users")

    assert translation.resolved_query == {
        "operation": "aggregate",
        "pipeline": [{"$match": {"age": {"$gte": 18}}}, {"$count": "count"}],
    }


@pytest.mark.asyncio
async def test_llm_answer_in_code_block(store) -> None:
    store.collections["users"] = [{"_id": 1, "name": "Ada", "age": 36}]
    llm = FakeLLM(
        'Here you go:\n```json\n{"operation": "find", "filter": {"age": {"$gt": 30}}, "collection": "x",}\n```',
        usage={"input_tokens": 40, "output_tokens": 15, "total_tokens": 55},
    )
    translator = QueryTranslator(store, llm=llm, llm_metadata={"provider": "openai", "model": "gpt-4o-mini"})

    translation = await translator.translate("users older than 30", "users")

    assert translation.resolved_query == {"operation": "find", "query": {"age": {"$gt": 30}}}
    assert translation.token_count == 55
    assert translation.raw_response["provider"] == "openai"

    [messages] = llm.calls
    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    assert "Known fields: _id, name, age" in messages[1].content


@pytest.mark.asyncio
async def test_llm_without_json_falls_back_to_rules(store) -> None:
    llm = FakeLLM("I cannot help with that.")
    translator = QueryTranslator(store, llm=llm, llm_metadata={"provider": "local", "model": "gemma"})

    translation = await translator.translate("orders with total over 10", "orders")

    assert translation.resolved_query == {"operation": "find", "query": {"total": {"$gt": 10}}}
    assert translation.token_count > 0


def test_extract_from_content_blocks(translator: QueryTranslator) -> None:
    content = [{"type": "text", "text": 'Answer: {"operation": "aggregate", "pipeline": [{"$match": {"a": 1}}]}'}]
    assert translator._extract_mql_from_response(content) == {
        "operation": "aggregate",
        "pipeline": [{"$match": {"a": 1}}],
    }


def test_extract_skips_unparseable_braces(translator: QueryTranslator) -> None:
    content = 'Use {this} shape: {"query": {"a": 1}}'
    assert translator._extract_mql_from_response(content) == {"query": {"a": 1}}


def test_fix_mql_unwraps_match_and_infers_aggregate(translator: QueryTranslator) -> None:
    assert translator._fix_mql({"query": {"$match": {"a": 1}}}) == {"query": {"a": 1}, "operation": "find"}
    assert translator._fix_mql({"pipeline": [{"$count": "n"}]}) == {
        "pipeline": [{"$count": "n"}],
        "operation": "aggregate",
    }


def test_fix_mql_moves_stages_into_pipeline(translator: QueryTranslator) -> None:
    fixed = translator._fix_mql({
        "operation": "find",
        "query": {"status": "open", "$group": {"_id": "$owner", "n": {"$sum": 1}}},
    })
    assert fixed == {
        "operation": "aggregate",
        "pipeline": [{"$match": {"status": "open"}}, {"$group": {"_id": "$owner", "n": {"$sum": 1}}}],
    }


def test_fix_mql_drops_exclusions_from_mixed_projection(translator: QueryTranslator) -> None:
    fixed = translator._fix_mql({"query": {}, "$project": {"name": 1, "password": 0, "_id": 0}})
    assert fixed["projection"] == {"name": 1, "_id": 0}
