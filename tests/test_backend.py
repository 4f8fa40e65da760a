from __future__ import annotations

import json

import httpx
import pytest

from localagents.backend import BackendClient, ChatResponse, parse_chat_response
from localagents.errors import BackendError
from localagents.models import Message


def _client(handler) -> BackendClient:
    return BackendClient("http://backend:8081/", transport=httpx.MockTransport(handler))


class TestParseChatResponse:
    def test_content_reasoning_and_usage(self):
        resp = parse_chat_response(
            {
                "choices": [{"message": {"content": "hi", "reasoning_content": "think"}}],
                "usage": {"completion_tokens": 7},
            }
        )
        assert resp == ChatResponse(content="hi", reasoning="think", completion_tokens=7)

    def test_missing_fields_default(self):
        resp = parse_chat_response({})
        assert resp.content == ""
        assert resp.is_empty
        assert resp.completion_tokens == 0

    def test_null_content_is_empty(self):
        resp = parse_chat_response({"choices": [{"message": {"content": None}}]})
        assert resp.is_empty

    def test_error_message(self):
        resp = parse_chat_response({"error": {"message": "context overflow"}})
        assert resp.error == "context overflow"


class TestHealth:
    def test_ok_body_is_healthy(self):
        client = _client(lambda req: httpx.Response(200, json={"status": "ok"}))
        assert client.is_healthy() is True

    def test_loading_body_is_unhealthy(self):
        client = _client(lambda req: httpx.Response(200, json={"status": "loading model"}))
        assert client.is_healthy() is False

    def test_connection_error_is_unhealthy(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert _client(handler).is_healthy() is False

    def test_http_error_is_unhealthy(self):
        client = _client(lambda req: httpx.Response(503, text="ok"))
        assert client.is_healthy() is False


class TestListModels:
    def test_sorted_ids(self):
        client = _client(
            lambda req: httpx.Response(200, json={"data": [{"id": "b"}, {"id": "a"}, {}]})
        )
        assert client.list_models() == ["a", "b"]

    def test_unavailable_returns_empty(self):
        client = _client(lambda req: httpx.Response(404))
        assert client.list_models() == []


class TestAvailableSlots:
    def test_counts_idle(self):
        slots = [{"is_processing": False}, {"is_processing": True}, {"is_processing": False}]
        client = _client(lambda req: httpx.Response(200, json=slots))
        assert client.available_slots() == (2, 3)

    def test_disabled_endpoint_returns_none(self):
        client = _client(lambda req: httpx.Response(501))
        assert client.available_slots() is None


class TestChat:
    def test_sends_payload(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "choices": [{"message": {"content": "done"}}],
                    "usage": {"completion_tokens": 3},
                },
            )

        resp = _client(handler).chat(
            model="agents-seed-coder",
            messages=[Message(role="user", content="hi")],
            max_tokens=50,
            temperature=0.1,
            stop=["Observation:"],
        )
        assert resp.content == "done"
        assert seen["path"] == "/v1/chat/completions"
        assert seen["body"]["model"] == "agents-seed-coder"
        assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]
        assert seen["body"]["stop"] == ["Observation:"]
        assert seen["body"]["max_tokens"] == 50

    def test_no_stop_key_when_unset(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": []})

        _client(handler).chat(model="m", messages=[], max_tokens=1, temperature=0.0)
        assert "stop" not in seen["body"]

    def test_timeout_raises_backend_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(BackendError, match="timeout"):
            _client(handler).chat(model="m", messages=[], max_tokens=1, temperature=0.0)

    def test_http_status_raises_backend_error(self):
        client = _client(lambda req: httpx.Response(500))
        with pytest.raises(BackendError, match="HTTP 500"):
            client.chat(model="m", messages=[], max_tokens=1, temperature=0.0)

    def test_non_json_body_raises_backend_error(self):
        client = _client(lambda req: httpx.Response(200, text="<html>"))
        with pytest.raises(BackendError, match="invalid JSON"):
            client.chat(model="m", messages=[], max_tokens=1, temperature=0.0)
