"""
Tests for the LLM gateway client: retries, error mapping and JSON extraction.
"""

import pytest
import requests

from rimo import llm_gateway
from rimo.llm_gateway import GatewayError, chat, extract_json


class FakeResponse:

    def __init__(self, status_code, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


def reply(content):
    return FakeResponse(200, {"choices": [{"message": {"content": content}}]})


@pytest.fixture
def gateway(monkeypatch):
    """Queue of canned responses served to requests.post; records each call."""
    queue = []
    calls = []
    sleeps = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(llm_gateway, "LLM_GATEWAY_KEY", "test-key")
    monkeypatch.setattr(llm_gateway.requests, "post", fake_post)
    monkeypatch.setattr(llm_gateway.time, "sleep", sleeps.append)
    return queue, calls, sleeps


class TestChat:

    def test_success(self, gateway):
        queue, calls, _ = gateway
        queue.append(reply("hello"))
        assert chat([{"role": "user", "content": "hi"}], temperature=0) == "hello"
        assert calls[0]["json"]["temperature"] == 0
        assert calls[0]["headers"]["Authorization"] == "Bearer test-key"

    def test_temperature_omitted_when_none(self, gateway):
        queue, calls, _ = gateway
        queue.append(reply("ok"))
        chat([{"role": "user", "content": "hi"}])
        assert "temperature" not in calls[0]["json"]

    def test_retries_server_errors_with_linear_backoff(self, gateway):
        queue, calls, sleeps = gateway
        queue.extend([FakeResponse(500), requests.ConnectionError("down"), reply("finally")])
        assert chat([], max_attempts=3, backoff_seconds=1.5) == "finally"
        assert len(calls) == 3
        assert sleeps == [1.5, 3.0]

    def test_gives_up(self, gateway):
        queue, calls, _ = gateway
        queue.extend([FakeResponse(503), FakeResponse(503)])
        with pytest.raises(GatewayError) as e:
            chat([], max_attempts=2)
        assert e.value.status == 502
        assert len(calls) == 2

    @pytest.mark.parametrize("status,expected", [(429, 429), (402, 402), (400, 502), (401, 502), (403, 502)])
    def test_client_errors_not_retried(self, gateway, status, expected):
        queue, calls, _ = gateway
        queue.extend([FakeResponse(status), reply("never")])
        with pytest.raises(GatewayError) as e:
            chat([], max_attempts=3)
        assert e.value.status == expected
        assert len(calls) == 1

    def test_malformed_body(self, gateway):
        queue, _, _ = gateway
        queue.append(FakeResponse(200, {"choices": []}))
        with pytest.raises(GatewayError):
            chat([])

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(llm_gateway, "LLM_GATEWAY_KEY", None)
        with pytest.raises(GatewayError) as e:
            chat([])
        assert e.value.status == 500


class TestExtractJson:

    def test_fenced(self):
        assert extract_json('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}

    def test_bare(self):
        assert extract_json('{"a": [1, 2]}') == {"a": [1, 2]}

    def test_embedded(self):
        assert extract_json('Sure! {"score": 80} Hope that helps.') == {"score": 80}

    def test_no_json(self):
        with pytest.raises(ValueError):
            extract_json("no structured output here")
