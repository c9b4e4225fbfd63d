from __future__ import annotations

import asyncio
import json

import pytest
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

import events
from events import UpdateBroker
from workspaces import workspace_updates


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self) -> bool:
        return self.disconnected


@pytest.mark.asyncio
async def test_events_arrive_in_order():
    broker = UpdateBroker()
    queue = broker.subscribe("ws1")
    for i in range(3):
        await broker.broadcast("ws1", "TASK_ADDED", {"n": i})
    received = [queue.get_nowait()["payload"]["n"] for _ in range(3)]
    assert received == [0, 1, 2]


@pytest.mark.asyncio
async def test_workspaces_are_isolated():
    broker = UpdateBroker()
    first = broker.subscribe("ws1")
    second = broker.subscribe("ws2")
    delivered = await broker.broadcast("ws1", "LIST_ADDED", {"id": "l1"})
    assert delivered == 1
    assert first.get_nowait() == {"type": "LIST_ADDED", "payload": {"id": "l1"}}
    assert second.empty()


@pytest.mark.asyncio
async def test_broadcast_without_subscribers():
    broker = UpdateBroker()
    assert await broker.broadcast("nobody", "NEW_MESSAGE", {}) == 0
    assert broker.workspace_subscribers == {}


@pytest.mark.asyncio
async def test_full_queue_drops_subscriber():
    broker = UpdateBroker(queue_size=1)
    slow = broker.subscribe("ws1")
    fast = broker.subscribe("ws1")
    await broker.broadcast("ws1", "A", 1)
    fast.get_nowait()
    delivered = await broker.broadcast("ws1", "B", 2)
    assert delivered == 1
    assert not broker.is_subscribed("ws1", slow)
    assert broker.is_subscribed("ws1", fast)


def test_unsubscribe_forgets_empty_workspace():
    broker = UpdateBroker()
    queue = broker.subscribe("ws1")
    assert broker.subscriber_count("ws1") == 1
    broker.unsubscribe("ws1", queue)
    assert broker.subscriber_count("ws1") == 0
    assert "ws1" not in broker.workspace_subscribers


@pytest.mark.asyncio
async def test_close_workspace_and_disconnect_user():
    broker = UpdateBroker()
    ada = broker.subscribe("ws1", "ada")
    bob = broker.subscribe("ws1", "bob")
    other = broker.subscribe("ws2", "bob")

    broker.disconnect_user("ws1", "bob")
    assert broker.is_subscribed("ws1", ada)
    assert not broker.is_subscribed("ws1", bob)
    assert broker.is_subscribed("ws2", other)
    assert bob not in broker.queue_owners

    broker.close_workspace("ws1")
    assert broker.subscriber_count("ws1") == 0
    assert await broker.broadcast("ws1", "WORKSPACE_UPDATED", {}) == 0
    assert broker.subscriber_count("ws2") == 1

@pytest.mark.asyncio
async def test_stream_yields_events_and_cleans_up():
    broker = UpdateBroker(poll_interval=0.01)
    request = FakeRequest()
    stream = broker.stream(request, "ws1")

    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0.02)
    assert broker.subscriber_count("ws1") == 1

    await broker.broadcast("ws1", "NODE_ADDED", {"id": "n1"})
    frame = await asyncio.wait_for(pending, timeout=1)
    assert json.loads(frame["data"]) == {"type": "NODE_ADDED", "payload": {"id": "n1"}}

    request.disconnected = True
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert broker.subscriber_count("ws1") == 0


@pytest.mark.asyncio
async def test_stream_ends_when_subscriber_is_dropped():
    broker = UpdateBroker(poll_interval=0.01)
    stream = broker.stream(FakeRequest(), "ws1")
    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0.02)

    queue = broker.workspace_subscribers["ws1"][0]
    broker.unsubscribe("ws1", queue)
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(pending, timeout=1)


def test_event_frame_encoding():
    frame = ServerSentEvent(data=json.dumps({"type": "STAGE_ADDED", "payload": {}}), sep="\n").encode()
    assert frame == b'data: {"type": "STAGE_ADDED", "payload": {}}\n\n'


@pytest.mark.asyncio
async def test_updates_endpoint_streams_frames(client, db, make_user, make_workspace):
    ada = make_user("Ada")
    ws = make_workspace(ada)
    request = FakeRequest()
    response = await workspace_updates(ws["id"], request, user={"id": ada["id"]}, db=db)
    assert isinstance(response, EventSourceResponse)

    sent = []

    async def receive():
        await asyncio.Event().wait()

    async def send(message):
        sent.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            request.disconnected = True

    scope = {"type": "http", "method": "GET", "path": f"/api/workspaces/{ws['id']}/updates", "headers": []}
    serving = asyncio.ensure_future(response(scope, receive, send))
    for _ in range(100):
        if events.broker.subscriber_count(ws["id"]):
            break
        await asyncio.sleep(0.01)

    await events.broadcast_workspace(ws["id"], "NEW_MESSAGE", {"content": "hi"})
    await asyncio.wait_for(serving, timeout=5)

    assert sent[0]["type"] == "http.response.start"
    assert sent[0]["status"] == 200
    body = b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
    assert body == b'data: {"type": "NEW_MESSAGE", "payload": {"content": "hi"}}\n\n'
    assert events.broker.subscriber_count(ws["id"]) == 0
