"""
Tests for wire and memory API models.
"""
import json

import pytest
from pydantic import ValidationError

from zkstash_sdk.models import (
    CreateMemoriesRequest, CreateMemoriesResponse, PaymentOption, SearchMemoriesRequest
)
from conftest import TEST_RECIPIENT


class TestPaymentOption:
    @pytest.mark.parametrize("amount,decimals,expected", [
        ("10000", 6, 10000),
        ("0.01", 6, 10000),
        ("1.5", 6, 1500000),
        ("0", 6, 0),
    ])
    def test_atomic_amount(self, amount, decimals, expected):
        option = PaymentOption(network="base", amount=amount, recipient=TEST_RECIPIENT)
        assert option.atomic_amount(decimals) == expected

    def test_excess_precision(self):
        option = PaymentOption(network="base", amount="0.0000001", recipient=TEST_RECIPIENT)
        with pytest.raises(ValueError):
            option.atomic_amount(6)

    @pytest.mark.parametrize("fields", [
        {"network": "base", "amount": "-1", "recipient": TEST_RECIPIENT},
        {"network": "base", "amount": "NaN", "recipient": TEST_RECIPIENT},
        {"network": " ", "amount": "1", "recipient": TEST_RECIPIENT},
        {"network": "base", "amount": "1", "recipient": ""},
    ])
    def test_invalid(self, fields):
        with pytest.raises(ValidationError):
            PaymentOption.model_validate(fields)

    def test_unknown_fields_are_kept(self):
        option = PaymentOption.model_validate({
            "network": "base", "amount": "1", "payTo": TEST_RECIPIENT, "mimeType": "application/json",
        })
        assert option.unknown_fields == ["mimeType"]


class TestCreateMemoriesRequest:
    def test_body_uses_wire_names(self):
        request = CreateMemoriesRequest(
            agentId="agent-1",
            subjectId="user-9",
            conversation=[{"role": "user", "content": "I like tea"}],
        )
        body = request.to_body()
        assert b" " not in body.replace(b"I like tea", b"")
        assert json.loads(body) == {
            "agentId": "agent-1",
            "subjectId": "user-9",
            "conversation": [{"role": "user", "content": "I like tea"}],
        }

    def test_direct_memories(self):
        request = CreateMemoriesRequest.model_validate({
            "agentId": "agent-1",
            "memories": [{"kind": "preference", "data": {"drink": "tea"}, "expiresAt": 1}],
        })
        assert json.loads(request.to_body())["memories"][0]["expiresAt"] == 1

    @pytest.mark.parametrize("payload", [
        {"agentId": "agent-1"},
        {"agentId": "agent-1", "conversation": [], "memories": []},
        {"agentId": "", "memories": [{"kind": "k", "data": {}}]},
        {"memories": [{"kind": "k", "data": {}}]},
    ])
    def test_invalid(self, payload):
        with pytest.raises(ValidationError):
            CreateMemoriesRequest.model_validate(payload)


def test_search_query_params_skip_empty():
    request = SearchMemoriesRequest(query="tea", agentId="agent-1", kind="", limit=0, mode="hybrid")
    assert request.to_query_params() == {"query": "tea", "agentId": "agent-1", "mode": "hybrid"}


def test_create_response_tolerates_extra_fields():
    response = CreateMemoriesResponse.model_validate({
        "success": True, "created": [{"id": "m1", "kind": "note", "score": 0.9}], "credits": 3,
    })
    assert response.created[0].id == "m1"
    assert response.updated == []
