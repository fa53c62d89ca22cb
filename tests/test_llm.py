"""Tests for folio/llm.py"""

import httpx
import pytest
from unittest.mock import MagicMock, patch

from folio.errors import TransportFailure, ValidationFailure
from folio.llm import (
    Err, LLMClient, Ok, SYSTEM_PROMPT, build_request, extract_json_text,
    parse_model_response,
)
from tests.conftest import make_config


class TestParseModelResponse:

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"action": "buy", "confidence": 72, "reasoning": "Strong quarter"}\n```'
        result = parse_model_response(text)

        assert isinstance(result, Ok)
        assert result.value.action == "BUY"
        assert result.value.confidence == 72
        assert result.value.reasoning == "Strong quarter"

    def test_outermost_braces_with_prose(self):
        text = 'Decision: {"action": "HOLD", "confidence": "55%", "reasoning": "Wait"} - done'
        result = parse_model_response(text)

        assert isinstance(result, Ok)
        assert result.value.action == "HOLD"
        assert result.value.confidence == 55

    def test_reasoning_is_optional(self):
        result = parse_model_response('{"action": "SELL", "confidence": 60}')
        assert isinstance(result, Ok)
        assert result.value.reasoning == ""

    def test_confidence_is_clamped_and_rounded(self):
        high = parse_model_response('{"action": "BUY", "confidence": 150}')
        low = parse_model_response('{"action": "BUY", "confidence": -5}')
        frac = parse_model_response('{"action": "BUY", "confidence": 66.6}')

        assert high.value.confidence == 100
        assert low.value.confidence == 0
        assert frac.value.confidence == 67

    def test_long_reasoning_is_truncated(self):
        text = '{"action": "BUY", "confidence": 70, "reasoning": "%s"}' % ("x" * 1500)
        result = parse_model_response(text)
        assert len(result.value.reasoning) == 1000

    @pytest.mark.parametrize("text,fragment", [
        ("", "empty"),
        ("   ", "empty"),
        (None, "empty"),
        ("I think you should buy", "no JSON"),
        ('{"action": "BUY", "confidence": }', "invalid JSON"),
        ('```json\n[1, 2]\n```', "expected object"),
        ('{"action": "STRONG_BUY", "confidence": 80}', "invalid action"),
        ('{"action": 1, "confidence": 80}', "invalid action"),
        ('{"action": "BUY"}', "invalid confidence"),
        ('{"action": "BUY", "confidence": "high"}', "invalid confidence"),
        ('{"action": "BUY", "confidence": NaN}', "invalid confidence"),
        ('{"action": "BUY", "confidence": true}', "invalid confidence"),
        ('{"action": "BUY", "confidence": 80, "reasoning": 5}', "reasoning"),
        ('{"action": "BUY", "confidence": 80, "shares": 100}', "unexpected fields"),
    ])
    def test_rejections(self, text, fragment):
        result = parse_model_response(text)
        assert isinstance(result, Err)
        assert fragment in result.reason

    def test_extract_prefers_fenced_block(self):
        text = '{"ignored": 1}\n```\n{"action": "HOLD", "confidence": 50}\n```'
        assert extract_json_text(text) == '{"action": "HOLD", "confidence": 50}'


class TestBuildRequest:

    def test_request_shape(self):
        cfg = make_config()
        payload = {"symbol": "AAPL", "name": "Apple", "technical_summary": "RSI(14): 55.0"}
        req = build_request(payload, cfg)

        assert req["model"] == cfg.llm.model
        assert req["max_tokens"] == cfg.llm.max_tokens
        assert req["system"] == SYSTEM_PROMPT
        assert len(req["messages"]) == 1
        assert req["messages"][0]["role"] == "user"
        assert "Apple (AAPL)" in req["messages"][0]["content"]
        assert "RSI(14): 55.0" in req["messages"][0]["content"]


class TestLLMClient:

    def _response(self, status=200, body=None):
        resp = MagicMock()
        resp.status_code = status
        resp.text = "error body"
        resp.json.return_value = body if body is not None else {}
        return resp

    def test_unconfigured_raises_transport_failure(self):
        client = LLMClient(make_config())
        assert client.configured is False
        with pytest.raises(TransportFailure):
            client.call({})

    def test_returns_joined_text_blocks(self):
        client = LLMClient(make_config(anthropic_key="test-key"))
        body = {"content": [
            {"type": "text", "text": '{"action": '},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": '"HOLD", "confidence": 50}'},
        ]}
        with patch("folio.llm.httpx.post", return_value=self._response(body=body)) as post:
            text = client.call({"model": "m"})

        assert text == '{"action": "HOLD", "confidence": 50}'
        headers = post.call_args.kwargs["headers"]
        assert headers["x-api-key"] == "test-key"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_non_200_is_transport_failure(self):
        client = LLMClient(make_config(anthropic_key="test-key"))
        with patch("folio.llm.httpx.post", return_value=self._response(status=529)):
            with pytest.raises(TransportFailure, match="529"):
                client.call({})

    def test_timeout_is_transport_failure(self):
        client = LLMClient(make_config(anthropic_key="test-key"))
        with patch("folio.llm.httpx.post", side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(TransportFailure, match="timed out"):
                client.call({})

    def test_connection_error_is_transport_failure(self):
        client = LLMClient(make_config(anthropic_key="test-key"))
        with patch("folio.llm.httpx.post", side_effect=httpx.ConnectError("refused")):
            with pytest.raises(TransportFailure):
                client.call({})

    def test_empty_body_is_validation_failure(self):
        client = LLMClient(make_config(anthropic_key="test-key"))
        with patch("folio.llm.httpx.post", return_value=self._response(body={"content": []})):
            with pytest.raises(ValidationFailure):
                client.call({})

    def test_unreadable_body_is_validation_failure(self):
        client = LLMClient(make_config(anthropic_key="test-key"))
        resp = self._response()
        resp.json.side_effect = ValueError("not json")
        with patch("folio.llm.httpx.post", return_value=resp):
            with pytest.raises(ValidationFailure):
                client.call({})
