"""Live workspace updates.

Every open ``/updates`` stream owns a queue registered under its workspace id.
Mutation handlers call ``broadcast_workspace`` after their write succeeds and
the envelope ``{"type": ..., "payload": ...}`` is put on each queue in call
order. Nothing is kept for workspaces without subscribers.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Request

from config import settings

logger = logging.getLogger(__name__)


class UpdateBroker:
    def __init__(self, queue_size: int = 100, poll_interval: float = 1.0):
        self.queue_size = queue_size
        self.poll_interval = poll_interval
        self.workspace_subscribers: Dict[str, List[asyncio.Queue]] = {}
        self.queue_owners: Dict[asyncio.Queue, str] = {}

    def subscribe(self, workspace_id: str, user_id: Optional[str] = None) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self.workspace_subscribers.setdefault(workspace_id, []).append(queue)
        if user_id is not None:
            self.queue_owners[queue] = user_id
        logger.debug("Subscriber joined workspace %s (%d open)", workspace_id, self.subscriber_count(workspace_id))
        return queue

    def unsubscribe(self, workspace_id: str, queue: asyncio.Queue) -> None:
        queues = self.workspace_subscribers.get(workspace_id, [])
        if queue in queues:
            queues.remove(queue)
        self.queue_owners.pop(queue, None)
        if not queues and workspace_id in self.workspace_subscribers:
            del self.workspace_subscribers[workspace_id]

    def close_workspace(self, workspace_id: str) -> None:
        """Unsubscribe every stream of a workspace; each ends once its queue drains."""
        for queue in list(self.workspace_subscribers.get(workspace_id, [])):
            self.unsubscribe(workspace_id, queue)

    def disconnect_user(self, workspace_id: str, user_id: str) -> None:
        for queue in list(self.workspace_subscribers.get(workspace_id, [])):
            if self.queue_owners.get(queue) == user_id:
                self.unsubscribe(workspace_id, queue)

    def clear(self) -> None:
        self.workspace_subscribers.clear()
        self.queue_owners.clear()

    def is_subscribed(self, workspace_id: str, queue: asyncio.Queue) -> bool:
        return queue in self.workspace_subscribers.get(workspace_id, [])

    def subscriber_count(self, workspace_id: str) -> int:
        return len(self.workspace_subscribers.get(workspace_id, []))

    async def broadcast(self, workspace_id: str, event_type: str, payload: Any) -> int:
        """Queue an event for every subscriber of ``workspace_id``.

        A subscriber whose queue is full is dropped. Returns the number of
        subscribers the event was queued for.
        """
        event = {"type": event_type, "payload": payload}
        delivered = 0
        for queue in list(self.workspace_subscribers.get(workspace_id, [])):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping slow subscriber on workspace %s", workspace_id)
                self.unsubscribe(workspace_id, queue)
        logger.debug("%s on workspace %s delivered to %d subscriber(s)", event_type, workspace_id, delivered)
        return delivered

    async def stream(
        self, request: Request, workspace_id: str, user_id: Optional[str] = None
    ) -> AsyncIterator[Dict[str, str]]:
        """Server-sent event generator for one client of ``workspace_id``.

        Events already queued are still delivered after the subscriber is
        dropped; the stream ends at the first idle poll after that.
        """
        queue = self.subscribe(workspace_id, user_id)
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    if not self.is_subscribed(workspace_id, queue):
                        break
                    continue
                yield {"data": json.dumps(event)}
        finally:
            self.unsubscribe(workspace_id, queue)


broker = UpdateBroker(queue_size=settings.sse_queue_size)


async def broadcast_workspace(workspace_id: str, event_type: str, payload: Any) -> int:
    return await broker.broadcast(workspace_id, event_type, payload)
