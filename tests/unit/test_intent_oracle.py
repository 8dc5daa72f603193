"""Unit tests for intent classification and payload parsing"""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from eid_agent.errors import OracleError
from eid_agent.models import Intent
from eid_agent.oracle.intent_oracle import ORACLE_ERROR_PROMPT, IntentOracle, parse_intent_payload


def make_client(*texts):
    """genai client double returning the given response texts in order"""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=[MagicMock(text=text) for text in texts])
    return client


class TestParseIntentPayload:
    """Structured output contract"""

    def test_register_payload(self):
        payload = json.dumps({
            "intent": "register_eid",
            "data": {"name": "Jane Doe", "dob": "1990-05-10", "gender": "Female",
                     "phone": "5551234", "address": "1 Main St"},
        })
        result = parse_intent_payload(payload)

        assert result.intent == Intent.REGISTER
        assert result.data.fields()["dob"] == "1990-05-10"
        assert result.missing_info_prompt is None

    def test_unknown_with_missing_info(self):
        result = parse_intent_payload('{"intent": "unknown", "data": {"missingInfo": "What is your E-ID?"}}')

        assert result.intent == Intent.UNKNOWN
        assert result.missing_info_prompt == "What is your E-ID?"
        assert result.data.fields() == {}

    def test_missing_data_defaults_to_empty(self):
        result = parse_intent_payload('{"intent": "download_eid", "data": null}')
        assert result.data.fields() == {}

    def test_unexpected_keys_ignored(self):
        result = parse_intent_payload('{"intent": "download_eid", "data": {"eId": "123456789012", "mood": "ok"}}')
        assert result.data.fields() == {"eId": "123456789012"}

    def test_invalid_json_raises(self):
        with pytest.raises(OracleError):
            parse_intent_payload("not json")

    def test_unknown_intent_value_raises(self):
        with pytest.raises(OracleError):
            parse_intent_payload('{"intent": "delete_eid"}')

    def test_non_object_raises(self):
        with pytest.raises(OracleError):
            parse_intent_payload('["register_eid"]')


class TestIntentOracle:
    """Classification fails open"""

    @pytest.mark.asyncio
    async def test_classify_returns_parsed_result(self):
        client = make_client('{"intent": "download_eid", "data": {"eId": "123456789012"}}')
        oracle = IntentOracle(model="test-model", client=client)

        result = await oracle.classify("download my eid 123456789012")

        assert result.intent == Intent.DOWNLOAD
        assert result.data.eId == "123456789012"
        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["contents"] == "download my eid 123456789012"
        assert kwargs["config"].response_mime_type == "application/json"

    @pytest.mark.asyncio
    async def test_without_api_key_fails_open(self):
        """No key: every message gets the generic retry prompt"""
        oracle = IntentOracle(api_key=None)

        result = await oracle.classify("register me")

        assert oracle.available is False
        assert result.intent == Intent.UNKNOWN
        assert result.missing_info_prompt == ORACLE_ERROR_PROMPT

    @pytest.mark.asyncio
    async def test_malformed_output_retried_then_fails_open(self):
        client = make_client("garbage", "still garbage")
        oracle = IntentOracle(client=client)

        result = await oracle.classify("hello")

        assert result.intent == Intent.UNKNOWN
        assert result.missing_info_prompt == ORACLE_ERROR_PROMPT
        assert client.aio.models.generate_content.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_error_recovers_on_retry(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=[
            RuntimeError("503 unavailable"),
            MagicMock(text='{"intent": "unknown", "data": {"missingInfo": "Which service do you need?"}}'),
        ])
        oracle = IntentOracle(client=client)

        result = await oracle.classify("hi")

        assert result.missing_info_prompt == "Which service do you need?"
