"""
Tests for POST /chat/completions against a mocked LLM upstream.
"""

import json
from unittest.mock import patch

import httpx
import pytest

from backend.errors import UpstreamError, ValidationError
from rag_pipeline.llm_proxy import CompletionProxy, check_preconditions
from rag_pipeline.vector_client import QueryResult

from tests.conftest import FakeStore, UpstreamRecorder, make_proxy

COMPLETION = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "model": "gpt-4o-mini",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "42"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 5, "completion_tokens": 1, "total_tokens": 6},
}

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
    b"data: [DONE]\n\n"
)


def _body(**overrides):
    body = {
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "What is the answer?"},
        ],
        "appId": "app-1",
    }
    body.update(overrides)
    return body


@pytest.fixture
def upstream():
    return UpstreamRecorder(lambda request: httpx.Response(200, json=COMPLETION))


@pytest.fixture
def proxy(upstream):
    proxy = make_proxy(upstream)
    with patch("backend.api.chat.get_completion_proxy", return_value=proxy):
        yield proxy


class TestPreconditions:

    def test_order_api_key_first(self):
        with pytest.raises(ValidationError, match="LLM API key not configured"):
            check_preconditions(None, None, None)

    def test_messages_before_app_id(self):
        with pytest.raises(ValidationError, match='"messages"'):
            check_preconditions("sk", [], None)

    def test_app_id(self):
        with pytest.raises(ValidationError, match='"appId"'):
            check_preconditions("sk", [{"role": "user", "content": "x"}], "")

    def test_all_present(self):
        check_preconditions("sk", [{"role": "user", "content": "x"}], "app")


class TestBufferedCompletion:

    def test_missing_messages_is_400_naming_messages(self, client, proxy, upstream):
        response = client.post("/chat/completions", json={"appId": "app-1"})

        assert response.status_code == 400
        assert "messages" in response.json()["error"]
        assert upstream.requests == []

    def test_missing_app_id_is_400(self, client, proxy):
        body = _body()
        del body["appId"]

        response = client.post("/chat/completions", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == 'Missing "appId" in request body'

    def test_missing_api_key_reported_first(self, client):
        with patch("backend.api.chat.get_completion_proxy", return_value=CompletionProxy(None)):
            response = client.post("/chat/completions", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "LLM API key not configured"

    def test_missing_api_key_reported_before_malformed_messages(self, client):
        with patch("backend.api.chat.get_completion_proxy", return_value=CompletionProxy(None)):
            response = client.post("/chat/completions", json={"messages": "hello", "appId": "a"})

        assert response.status_code == 400
        assert response.json()["error"] == "LLM API key not configured"

    def test_messages_not_a_list_is_400(self, client, proxy, upstream):
        response = client.post("/chat/completions", json=_body(messages="hello"))

        assert response.status_code == 400
        assert response.json()["error"].startswith('Malformed "messages" in request body')
        assert upstream.requests == []

    def test_unknown_role_is_400(self, client, proxy, upstream):
        response = client.post("/chat/completions", json=_body(messages=[{"role": "tool", "content": "x"}]))

        assert response.status_code == 400
        assert response.json()["error"].startswith('Malformed "messages" in request body: 0.role')
        assert upstream.requests == []

    def test_null_content_is_400(self, client, proxy, upstream):
        response = client.post("/chat/completions", json=_body(messages=[{"role": "user", "content": None}]))

        assert response.status_code == 400
        assert "0.content" in response.json()["error"]

    def test_missing_app_id_checked_before_message_shape(self, client, proxy):
        response = client.post("/chat/completions", json={"messages": [{"role": "tool"}]})

        assert response.status_code == 400
        assert response.json()["error"] == 'Missing "appId" in request body'

    def test_extra_message_fields_forwarded(self, client, proxy, upstream):
        messages = [{"role": "user", "content": "hi", "name": "ada"}]
        client.post("/chat/completions", json=_body(messages=messages))

        assert upstream.last_json["messages"] == messages

    def test_upstream_body_returned_verbatim(self, client, proxy, upstream):
        response = client.post("/chat/completions", json=_body(stream=False))

        assert response.status_code == 200
        assert response.json() == COMPLETION

    def test_payload_has_only_messages_model_stream(self, client, proxy, upstream):
        client.post(
            "/chat/completions",
            json=_body(model="gpt-4.1", temperature=0.2, channel="ccc", userId="111"),
        )

        sent = upstream.last_json
        assert set(sent) == {"messages", "model", "stream"}
        assert sent["model"] == "gpt-4.1"
        assert sent["stream"] is False
        assert sent["messages"] == _body()["messages"]
        assert str(upstream.requests[-1].url) == "https://llm.test/v1/chat/completions"

    def test_default_model(self, client, proxy, upstream):
        client.post("/chat/completions", json=_body())
        assert upstream.last_json["model"] == "gpt-4o-mini"

    def test_upstream_error_status_and_payload_relayed(self, client):
        failing = UpstreamRecorder(lambda request: httpx.Response(
            401, json={"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}}
        ))
        with patch("backend.api.chat.get_completion_proxy", return_value=make_proxy(failing)):
            response = client.post("/chat/completions", json=_body())

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Incorrect API key provided"
        assert len(failing.requests) == 1

    def test_upstream_unreachable_is_500(self, client):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with patch("backend.api.chat.get_completion_proxy", return_value=make_proxy(UpstreamRecorder(refuse))):
            response = client.post("/chat/completions", json=_body())

        assert response.status_code == 500
        assert response.json()["error"] == "No response received from LLM API"


class TestRagAugmentation:

    def test_context_inserted_before_last_message(self, client, proxy, upstream):
        store = FakeStore(results=[
            QueryResult(id="2", text="The answer is 42.", timestamp=20, similarity=0.8),
            QueryResult(id="1", text="Deep Thought computed it.", timestamp=10, similarity=0.7),
        ])
        with patch("backend.api.chat.get_vector_store", return_value=store):
            response = client.post("/chat/completions", json=_body(queryRag=True))

        assert response.status_code == 200
        sent = upstream.last_json["messages"]
        assert len(sent) == 3
        assert sent[0] == {"role": "system", "content": "Be brief."}
        assert sent[1]["role"] == "system"
        assert sent[1]["content"].index("Deep Thought") < sent[1]["content"].index("The answer is 42.")
        assert sent[2] == {"role": "user", "content": "What is the answer?"}
        assert store.queries == [("What is the answer?", 5)]

    def test_no_records_fallback_message(self, client, proxy, upstream):
        with patch("backend.api.chat.get_vector_store", return_value=FakeStore()):
            client.post("/chat/completions", json=_body(queryRag=True))

        sent = upstream.last_json["messages"]
        assert '"What is the answer?"' in sent[1]["content"]

    def test_retrieval_failure_degrades_to_plain_prompt(self, client, proxy, upstream):
        store = FakeStore(error=UpstreamError("pinecone down"))
        with patch("backend.api.chat.get_vector_store", return_value=store):
            response = client.post("/chat/completions", json=_body(queryRag=True))

        assert response.status_code == 200
        assert upstream.last_json["messages"] == _body()["messages"]

    def test_store_configuration_failure_degrades(self, client, proxy, upstream):
        with patch("backend.api.chat.get_vector_store", side_effect=RuntimeError("no index")):
            response = client.post("/chat/completions", json=_body(queryRag=True))

        assert response.status_code == 200
        assert len(upstream.last_json["messages"]) == 2

    def test_rag_not_queried_by_default(self, client, proxy, upstream):
        store = FakeStore()
        with patch("backend.api.chat.get_vector_store", return_value=store):
            client.post("/chat/completions", json=_body())
        assert store.queries == []


class TestStreamingCompletion:

    def test_chunks_forwarded_verbatim_with_sse_headers(self, client):
        streaming = UpstreamRecorder(lambda request: httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=SSE_BODY
        ))
        with patch("backend.api.chat.get_completion_proxy", return_value=make_proxy(streaming)):
            response = client.post("/chat/completions", json=_body(stream=True))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.content == SSE_BODY
        assert json.loads(streaming.requests[-1].content)["stream"] is True

    def test_error_before_first_chunk_is_500(self, client):
        async def broken():
            raise httpx.ReadError("upstream reset")
            yield b""  # pragma: no cover

        streaming = UpstreamRecorder(lambda request: httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=broken()
        ))
        with patch("backend.api.chat.get_completion_proxy", return_value=make_proxy(streaming)):
            response = client.post("/chat/completions", json=_body(stream=True))

        assert response.status_code == 500
        assert response.json()["error"] == "Stream error"

    def test_error_mid_stream_aborts_connection(self, client, caplog):
        async def partial():
            yield b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
            raise httpx.ReadError("upstream reset")

        streaming = UpstreamRecorder(lambda request: httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=partial()
        ))
        with patch("backend.api.chat.get_completion_proxy", return_value=make_proxy(streaming)):
            # The error escapes the app once the body has started, so the
            # response is never completed.
            with pytest.raises(Exception):
                client.post("/chat/completions", json=_body(stream=True))

        assert "Stream error: upstream reset" in caplog.text

    def test_upstream_status_error_before_stream(self, client):
        failing = UpstreamRecorder(lambda request: httpx.Response(
            429, json={"error": {"message": "Rate limit reached"}}
        ))
        with patch("backend.api.chat.get_completion_proxy", return_value=make_proxy(failing)):
            response = client.post("/chat/completions", json=_body(stream=True))

        assert response.status_code == 429
        assert response.json()["error"]["message"] == "Rate limit reached"
