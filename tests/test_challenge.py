"""
Tests for payment challenge parsing and option selection.
"""
import json
import logging

import pytest

from zkstash_sdk.challenge import parse_challenge, select_option
from zkstash_sdk.exceptions import ChallengeParseError, UnsupportedNetworkError
from zkstash_sdk.models import PaymentOption
from conftest import CHALLENGE_BODY, TEST_RECIPIENT


class TestParseChallenge:
    def test_union_of_field_names(self):
        challenge = parse_challenge(json.dumps(CHALLENGE_BODY).encode())
        assert challenge.x402_version == 1
        assert challenge.error == "Free quota exhausted"
        assert [o.network for o in challenge.accepts] == ["solana-devnet", "base-sepolia"]

        base = challenge.accepts[1]
        assert base.amount == "10000"
        assert base.recipient == TEST_RECIPIENT

    def test_legacy_version_tag(self):
        challenge = parse_challenge({"version": 2, "accepts": []})
        assert challenge.x402_version == 2
        assert challenge.accepts == []

    def test_conflicting_spellings_prefer_x402(self, caplog):
        option = PaymentOption.model_validate({
            "network": "base-sepolia",
            "amount": "1",
            "maxAmountRequired": "2",
            "recipient": "0xaaa",
            "payTo": TEST_RECIPIENT,
        })
        assert option.amount == "2"
        assert option.recipient == TEST_RECIPIENT
        assert "conflicting" in caplog.text

    def test_numeric_amount(self):
        option = PaymentOption.model_validate({"network": "base", "amount": 5000, "recipient": TEST_RECIPIENT})
        assert option.amount == "5000"

    def test_invalid_options_are_dropped(self):
        body = {
            "x402Version": 1,
            "accepts": [
                {"network": "base-sepolia", "recipient": TEST_RECIPIENT},
                {"network": "base-sepolia", "amount": "abc", "recipient": TEST_RECIPIENT},
                {"network": "base-sepolia", "amount": "10", "payTo": TEST_RECIPIENT},
            ],
        }
        challenge = parse_challenge(body)
        assert len(challenge.accepts) == 1
        assert challenge.accepts[0].amount == "10"

    def test_unknown_fields_warned_once(self, caplog):
        body = {"accepts": [{"network": "base-sepolia", "amount": "1", "payTo": TEST_RECIPIENT, "mimeType": "x"}]}
        with caplog.at_level(logging.WARNING):
            parse_challenge(body)
            parse_challenge(body)
        assert caplog.text.count("unrecognized fields") == 1

    @pytest.mark.parametrize("payload", [
        b"not json",
        "[1, 2]",
        {"error": "no accepts"},
        {"accepts": "base"},
        {"x402Version": "one", "accepts": []},
    ])
    def test_malformed(self, payload):
        with pytest.raises(ChallengeParseError):
            parse_challenge(payload)


class TestSelectOption:
    def _options(self):
        return parse_challenge(CHALLENGE_BODY).accepts

    def test_default_preference_is_base_sepolia(self):
        assert select_option(self._options()).network == "base-sepolia"

    def test_preference_order_wins_over_server_order(self):
        option = select_option(self._options(), preferences=["solana-devnet", "base-sepolia"])
        assert option.network == "solana-devnet"

    def test_caip2_matches_alias(self):
        options = [PaymentOption(network="eip155:84532", amount="1", recipient=TEST_RECIPIENT)]
        assert select_option(options, preferences=["base-sepolia"]) is options[0]

    def test_unsupported_family_is_skipped(self):
        option = select_option(
            self._options(), preferences=["solana-devnet", "base-sepolia"], supported_families=["evm"]
        )
        assert option.network == "base-sepolia"

    def test_no_acceptable_network(self):
        with pytest.raises(UnsupportedNetworkError) as exc_info:
            select_option(self._options(), preferences=["base"])
        assert exc_info.value.context["offered"] == ["solana-devnet", "base-sepolia"]
        assert exc_info.value.context["accepted"] == ["base"]

    def test_empty_options(self):
        with pytest.raises(UnsupportedNetworkError):
            select_option([])
