import base64
import json

import httpx
import pytest
from openai import AsyncOpenAI

from chatstream.core.exceptions import UpstreamMalformed, UpstreamUnavailable
from chatstream.models.message import MessageRole
from chatstream.services.completion_client import CompletionClient, augment_content, build_history
from chatstream.views.message import Attachment, ChatMessage

HISTORY = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]


def sse(*contents: str) -> bytes:
    frames = [
        f"data: {json.dumps({'choices': [{'delta': {'content': c}}]})}\n\n" for c in contents
    ]
    return ("".join(frames) + "data: [DONE]\n\n").encode()


def make_client(handler) -> CompletionClient:
    openai_client = AsyncOpenAI(
        api_key="test-key",
        base_url="http://upstream.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return CompletionClient(client=openai_client, model="sonar", max_tokens=100, temperature=0.2, system_prompt="be brief")


async def test_stream_completion_yields_increments():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=sse("Hel", "lo"))

    client = make_client(handler)
    assert [inc async for inc in client.stream_completion(HISTORY)] == ["Hel", "lo"]
    assert requests[0]["stream"] is True
    assert requests[0]["model"] == "sonar"
    assert requests[0]["messages"] == HISTORY


async def test_stream_completion_error_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    client = make_client(handler)
    with pytest.raises(UpstreamUnavailable) as excinfo:
        async for _ in client.stream_completion(HISTORY):
            pass
    assert excinfo.value.status_code == 429
    assert "rate limited" in excinfo.value.body


async def test_stream_completion_connection_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(UpstreamUnavailable):
        async for _ in client.stream_completion(HISTORY):
            pass


async def test_complete_returns_content():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is False
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "Four."}}]})

    assert await make_client(handler).complete(HISTORY) == "Four."


@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>gateway</html>"),
    httpx.Response(200, json={"choices": []}),
    httpx.Response(200, json={"choices": [{"message": {"content": None}}]}),
])
async def test_complete_malformed_body(response):
    client = make_client(lambda request: response)
    with pytest.raises(UpstreamMalformed):
        await client.complete(HISTORY)


async def test_complete_error_status():
    client = make_client(lambda request: httpx.Response(500, text="internal"))
    with pytest.raises(UpstreamUnavailable) as excinfo:
        await client.complete(HISTORY)
    assert excinfo.value.status_code == 500


def test_history_only_describes_attachments_of_driving_message():
    old = Attachment(name="old.txt", mime_type="text/plain", text_content="stale")
    encoded = base64.b64encode(b'{"a": 1}').decode()
    data = Attachment(name="data.json", mime_type="application/json", url=f"data:application/json;base64,{encoded}")
    photo = Attachment(name="cat.png", mime_type="image/png", url="https://cdn.test/cat.png")
    messages = [
        ChatMessage(role=MessageRole.USER, content="earlier", attachments=[old]),
        ChatMessage(role=MessageRole.ASSISTANT, content="ok"),
        ChatMessage(role=MessageRole.USER, content="look", attachments=[data, photo]),
    ]

    history = build_history(messages, "sys")

    assert history[0] == {"role": "system", "content": "sys"}
    assert history[1]["content"] == "earlier"
    assert history[3]["content"] == (
        "look\n\n[User has attached the following files:\n"
        'File: data.json\nContent: {"a": 1}\n\n'
        "File: cat.png (image/png)]"
    )
    assert messages[2].content == "look"


def test_augment_without_attachments_is_identity():
    assert augment_content("plain", None) == "plain"
    assert augment_content("plain", []) == "plain"
