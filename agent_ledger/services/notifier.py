"""Server-sent event fan-out for ledger changes.

Each subscriber gets a bounded queue of pre-formatted SSE frames, its own
heartbeat task, and a full snapshot of every category when it connects.
Changes are debounced per category with a cancel-and-reschedule timer.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional

from fastapi.encoders import jsonable_encoder

from agent_ledger import config
from agent_ledger.ledgers.ledger_set import CATEGORIES

logger = logging.getLogger("ledger.notifier")

HEARTBEAT_FRAME = ": heartbeat\n\n"

SnapshotProvider = Callable[[str], Awaitable[Any]]


class SubscriberState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


def format_sse(
    event: Optional[str] = None,
    data: Any = None,
    event_id: Optional[str] = None,
    retry: Optional[int] = None,
) -> str:
    lines: list[str] = []
    if retry is not None:
        lines.append(f"retry: {int(retry)}")
    if event_id is not None:
        lines.append(f"id: {event_id}")
    if event is not None:
        lines.append(f"event: {event}")
    if data is not None:
        payload = data if isinstance(data, str) else json.dumps(jsonable_encoder(data), separators=(",", ":"))
        lines.extend(f"data: {line}" for line in payload.split("\n"))
    return "\n".join(lines) + "\n\n"


class Subscriber:
    def __init__(self, subscriber_id: int, queue_size: int):
        self.id = subscriber_id
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max(1, queue_size))
        self.state = SubscriberState.CONNECTING
        self.heartbeat_task: Optional[asyncio.Task] = None

    def offer(self, frame: str) -> bool:
        if self.state in (SubscriberState.CLOSED, SubscriberState.ERROR):
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def close_queue(self) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)


class ChangeNotifier:
    def __init__(
        self,
        snapshot: SnapshotProvider,
        categories: Iterable[str] = CATEGORIES,
        debounce_seconds: float = config.DEBOUNCE_SECONDS,
        heartbeat_seconds: float = config.HEARTBEAT_SECONDS,
        reconnect_ms: int = config.RECONNECT_MS,
        queue_size: int = config.SUBSCRIBER_QUEUE_SIZE,
    ):
        self.snapshot = snapshot
        self.categories = tuple(categories)
        self.debounce_seconds = debounce_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.reconnect_ms = reconnect_ms
        self.queue_size = queue_size
        self.subscribers: dict[int, Subscriber] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._pushes: set[asyncio.Task] = set()
        self._ids = itertools.count(1)
        self._event_ids = itertools.count(1)

    # ── Subscribers ─────────────────────────────────────────────────

    async def connect(self, last_event_id: Optional[str] = None) -> Subscriber:
        """Register a subscriber and queue the retry hint plus a full snapshot.

        Pushes that land while the snapshot is being taken are queued behind it.
        """
        subscriber = Subscriber(next(self._ids), self.queue_size + len(self.categories) + 1)
        if last_event_id:
            subscriber.state = SubscriberState.RECONNECTING
        self.subscribers[subscriber.id] = subscriber

        subscriber.offer(format_sse(retry=self.reconnect_ms))
        try:
            for category in self.categories:
                data = await self.snapshot(category)
                subscriber.offer(format_sse(category, data, event_id=str(next(self._event_ids))))
        except (asyncio.CancelledError, Exception):
            self.disconnect(subscriber)
            raise

        if subscriber.state in (SubscriberState.CLOSED, SubscriberState.ERROR):
            return subscriber
        subscriber.state = SubscriberState.STREAMING
        subscriber.heartbeat_task = asyncio.create_task(self._heartbeat(subscriber))
        logger.info(f"Subscriber {subscriber.id} streaming ({len(self.subscribers)} connected)")
        return subscriber

    def disconnect(self, subscriber: Subscriber, state: SubscriberState = SubscriberState.CLOSED) -> None:
        """Tear down one subscriber. Other subscribers are unaffected."""
        if subscriber.state == SubscriberState.CLOSED:
            return
        subscriber.state = state
        task = subscriber.heartbeat_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        subscriber.heartbeat_task = None
        self.subscribers.pop(subscriber.id, None)
        subscriber.close_queue()
        subscriber.state = SubscriberState.CLOSED
        logger.info(f"Subscriber {subscriber.id} closed ({len(self.subscribers)} connected)")

    async def events(self, last_event_id: Optional[str] = None) -> AsyncIterator[str]:
        """Connect on first iteration, so a response body that never starts registers nothing."""
        subscriber = await self.connect(last_event_id)
        try:
            async for frame in self.stream(subscriber):
                yield frame
        finally:
            self.disconnect(subscriber)

    async def stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        try:
            while True:
                frame = await subscriber.queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self.disconnect(subscriber)

    async def _heartbeat(self, subscriber: Subscriber) -> None:
        try:
            while subscriber.state == SubscriberState.STREAMING:
                await asyncio.sleep(self.heartbeat_seconds)
                if not subscriber.offer(HEARTBEAT_FRAME):
                    self._drop(subscriber)
                    return
        except asyncio.CancelledError:
            pass

    def _drop(self, subscriber: Subscriber) -> None:
        logger.warning(f"Subscriber {subscriber.id} fell behind, closing its stream")
        self.disconnect(subscriber, SubscriberState.ERROR)

    # ── Change fan-out ──────────────────────────────────────────────

    def notify(self, categories: Iterable[str]) -> None:
        """Schedule a debounced push for each changed category."""
        loop = asyncio.get_running_loop()
        for category in categories:
            if category not in self.categories:
                continue
            timer = self._timers.pop(category, None)
            if timer is not None:
                timer.cancel()
            self._timers[category] = loop.call_later(self.debounce_seconds, self._fire, category)

    def _fire(self, category: str) -> None:
        self._timers.pop(category, None)
        task = asyncio.create_task(self.push(category))
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)

    async def push(self, category: str) -> int:
        """Send the category's current full value to every open subscriber."""
        if not self.subscribers:
            return 0
        data = await self.snapshot(category)
        frame = format_sse(category, data, event_id=str(next(self._event_ids)))
        delivered = 0
        for subscriber in list(self.subscribers.values()):
            if subscriber.state in (SubscriberState.CLOSED, SubscriberState.ERROR):
                continue
            if subscriber.offer(frame):
                delivered += 1
            else:
                self._drop(subscriber)
        return delivered

    def on_sync(self, outcome) -> None:
        self.notify(outcome.categories)

    async def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for subscriber in list(self.subscribers.values()):
            self.disconnect(subscriber)
        if self._pushes:
            await asyncio.gather(*self._pushes, return_exceptions=True)
