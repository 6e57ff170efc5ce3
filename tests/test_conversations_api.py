import json

from chatstream.core.exceptions import UpstreamUnavailable
from chatstream.services.relay_service import ERROR_REPLY

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
BASE = "/api/v1/conversations"


def parse_stream(body: str):
    return [json.loads(line[len("data: "):]) for line in body.split("\n") if line.startswith("data: ")]


async def create(api, title="New Chat", headers=ALICE):
    response = await api.post(f"{BASE}/", json={"title": title}, headers=headers)
    assert response.status_code == 201
    return response.json()


async def test_health(api):
    response = await api.get("/health")
    assert response.json() == {"status": "ok"}


async def test_missing_identity_is_401(api):
    response = await api.get(f"{BASE}/")
    assert response.status_code == 401


async def test_create_returns_summary_projection(api):
    body = await create(api, "Trip planning")
    assert set(body) == {"id", "title", "createdAt", "updatedAt"}
    assert body["title"] == "Trip planning"


async def test_create_without_title_is_400(api):
    assert (await api.post(f"{BASE}/", json={}, headers=ALICE)).status_code == 400
    assert (await api.post(f"{BASE}/", json={"title": "  "}, headers=ALICE)).status_code == 400


async def test_list_only_shows_own_conversations(api):
    mine = await create(api, "mine")
    await create(api, "theirs", headers=BOB)

    listed = (await api.get(f"{BASE}/", headers=ALICE)).json()
    assert [c["id"] for c in listed] == [mine["id"]]
    assert "messages" not in listed[0]


async def test_get_and_delete_are_owner_scoped(api):
    conversation = await create(api)
    url = f"{BASE}/{conversation['id']}"

    assert (await api.get(url, headers=BOB)).status_code == 404
    assert (await api.delete(url, headers=BOB)).status_code == 404

    fetched = await api.get(url, headers=ALICE)
    assert fetched.status_code == 200
    assert fetched.json()["messages"] == []

    assert (await api.delete(url, headers=ALICE)).status_code == 204
    assert (await api.get(url, headers=ALICE)).status_code == 404


async def test_rename(api):
    conversation = await create(api, "before")
    response = await api.patch(f"{BASE}/{conversation['id']}", json={"title": "after"}, headers=ALICE)
    assert response.json()["title"] == "after"
    missing = await api.patch(f"{BASE}/{conversation['id']}", json={"title": "x"}, headers=BOB)
    assert missing.status_code == 404


async def test_exchange_streams_events(api):
    conversation = await create(api)
    response = await api.post(
        f"{BASE}/{conversation['id']}/exchange",
        json={"text": "Can you help me understand recursion please"},
        headers=ALICE,
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_stream(response.text)
    assert [e["type"] for e in events] == ["userMessage", "chunk", "chunk", "chunk", "complete"]
    assert set(events[0]["message"]) == {"role", "content", "timestamp"}
    assert events[1] == {"type": "chunk", "content": "Hello"}
    assert events[-1]["assistantMessage"]["content"] == "Hello, world"
    assert events[-1]["chatTitle"] == "Can you help me understand recursion"

    stored = (await api.get(f"{BASE}/{conversation['id']}", headers=ALICE)).json()
    assert stored["title"] == "Can you help me understand recursion"
    assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]


async def test_exchange_rejections(api):
    conversation = await create(api)
    url = f"{BASE}/{conversation['id']}/exchange"

    assert (await api.post(url, json={"text": "  "}, headers=ALICE)).status_code == 400
    assert (await api.post(url, json={"text": "hi"}, headers=BOB)).status_code == 404
    assert (await api.post(url, json={"text": "hi"})).status_code == 401

    stored = (await api.get(f"{BASE}/{conversation['id']}", headers=ALICE)).json()
    assert stored["messages"] == []


async def test_upstream_failure_is_a_200_stream_with_error_event(api, upstream):
    upstream.fail_before = UpstreamUnavailable("down", status_code=502, body="bad gateway")
    conversation = await create(api)
    response = await api.post(f"{BASE}/{conversation['id']}/exchange", json={"text": "hi"}, headers=ALICE)

    assert response.status_code == 200
    events = parse_stream(response.text)
    assert [e["type"] for e in events] == ["userMessage", "error"]
    assert events[-1]["error"] == "upstream_unavailable"
    assert events[-1]["message"]["content"] == ERROR_REPLY
    assert "bad gateway" not in response.text


async def test_regenerate_through_api(api):
    conversation = await create(api)
    url = f"{BASE}/{conversation['id']}/exchange"
    await api.post(url, json={"text": "2+2?"}, headers=ALICE)

    response = await api.post(url, json={"regenerate": True}, headers=ALICE)
    events = parse_stream(response.text)
    assert events[0]["type"] == "chunk"
    assert events[-1]["type"] == "complete"

    stored = (await api.get(f"{BASE}/{conversation['id']}", headers=ALICE)).json()
    assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]


async def test_edit_truncates_and_regenerates(api, upstream):
    conversation = await create(api)
    url = f"{BASE}/{conversation['id']}"
    await api.post(f"{url}/exchange", json={"text": "first"}, headers=ALICE)
    await api.post(f"{url}/exchange", json={"text": "second"}, headers=ALICE)

    response = await api.post(f"{url}/messages/0/edit", json={"text": "first, edited"}, headers=ALICE)
    events = parse_stream(response.text)
    assert events[-1]["type"] == "complete"

    stored = (await api.get(url, headers=ALICE)).json()
    assert [(m["role"], m["content"]) for m in stored["messages"]] == [
        ("user", "first, edited"),
        ("assistant", "Hello, world"),
    ]
    assert upstream.histories[-1][1:] == [{"role": "user", "content": "first, edited"}]
    assert stored["title"] == "first"


async def test_edit_of_assistant_message_is_400(api):
    conversation = await create(api)
    url = f"{BASE}/{conversation['id']}"
    await api.post(f"{url}/exchange", json={"text": "q"}, headers=ALICE)
    response = await api.post(f"{url}/messages/1/edit", json={"text": "nope"}, headers=ALICE)
    assert response.status_code == 400


async def test_first_message_without_conversation(api):
    response = await api.post(f"{BASE}/exchange", json={"text": "Hello from nowhere"}, headers=ALICE)
    conversation_id = response.headers["X-Conversation-Id"]
    events = parse_stream(response.text)
    assert events[-1]["chatTitle"] == "Hello from nowhere"

    listed = (await api.get(f"{BASE}/", headers=ALICE)).json()
    assert [c["id"] for c in listed] == [conversation_id]


async def test_non_streaming_messages_route(api):
    conversation = await create(api)
    response = await api.post(f"{BASE}/{conversation['id']}/messages", json={"text": "hi"}, headers=ALICE)
    body = response.json()
    assert body["userMessage"]["content"] == "hi"
    assert body["assistantMessage"]["content"] == "Hello, world"
    assert body["chatTitle"] == "hi"
