"""In-process hand-off of updated artifacts from the webhook server to the deployer.

Each subscriber owns a bounded queue and a consumer task, so a slow download
never delays the HTTP response. On shutdown the bus can drain what is still
queued before cancelling consumers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine
from uuid import uuid4

from nexus_listener.utils.logging import get_logger
from nexus_listener.webhooks.models import ArtifactLocation

log = get_logger(__name__)


class EventType(str, Enum):
    ARTIFACT_UPDATED = "artifact.updated"


@dataclass
class Event:
    type: EventType
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ArtifactUpdated(Event):
    type: EventType = field(default=EventType.ARTIFACT_UPDATED, init=False)
    location: ArtifactLocation | None = None


Handler = Callable[[Event], Coroutine[Any, Any, None]]


@dataclass
class _Subscription:
    handler: Handler
    queue: asyncio.Queue[Event]
    task: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))


class EventBus:
    def __init__(self, max_queue_size: int = 64) -> None:
        self._max_queue_size = max_queue_size
        self._subscriptions: dict[EventType, list[_Subscription]] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        if self._running:
            raise RuntimeError("subscribe() must be called before start()")
        sub = _Subscription(handler, asyncio.Queue(maxsize=self._max_queue_size))
        self._subscriptions.setdefault(event_type, []).append(sub)

    async def publish(self, event: Event) -> int:
        """Queue ``event`` for every subscriber; returns how many accepted it."""
        delivered = 0
        for sub in self._subscriptions.get(event.type, []):
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                log.warning(
                    "event_dropped_queue_full",
                    event_type=event.type.value,
                    event_id=event.id,
                    subscriber=sub.name,
                )
                continue
            delivered += 1
        if not delivered:
            log.debug("event_not_delivered", event_type=event.type.value, event_id=event.id)
        return delivered

    async def start(self) -> None:
        self._running = True
        for event_type, subs in self._subscriptions.items():
            for sub in subs:
                sub.task = asyncio.create_task(
                    self._consume(sub), name=f"bus-{event_type.value}-{sub.name}"
                )

    async def _consume(self, sub: _Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                await sub.handler(event)
            except Exception:
                log.exception("event_handler_failed", event_id=event.id, subscriber=sub.name)
            finally:
                sub.queue.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for subs in self._subscriptions.values():
            for sub in subs:
                await sub.queue.join()

    async def stop(self, drain_timeout: float = 0.0) -> None:
        """Stop consumers, first giving queued events ``drain_timeout`` seconds."""
        if drain_timeout > 0:
            try:
                await asyncio.wait_for(self.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                log.warning("event_bus_drain_timeout", timeout=drain_timeout)
        self._running = False
        tasks = [
            sub.task
            for subs in self._subscriptions.values()
            for sub in subs
            if sub.task is not None
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.task = None
