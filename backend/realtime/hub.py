"""In-process change notifications keyed by table name.

Session events collect the rows touched by each flush and publish them once
the transaction commits; a rollback discards them. Routes run in a worker
thread, so publishing hands events to the event loop that owns the
subscriptions.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Iterable

from sqlalchemy import event

from backend.core import config

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({'appointments', 'mechanic_quotes', 'mechanic_skipped_appointments'})
_PENDING_KEY = 'realtime_pending_changes'
_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    record_id: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class Subscription:
    def __init__(self, hub: 'ChangeHub', tables: Iterable[str], maxsize: int):
        self.hub = hub
        self.tables = frozenset(tables)
        self.closed = False
        self.maxsize = maxsize
        # One slot beyond maxsize is kept free for the close sentinel.
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)

    def offer(self, change: ChangeEvent) -> None:
        if self.closed or change.table not in self.tables:
            return
        if self._queue.qsize() >= self.maxsize:
            logger.warning('Realtime subscriber fell behind; closing its channel')
            self.mark_closed(drop_pending=True)
            return
        self._queue.put_nowait(change)

    def mark_closed(self, drop_pending: bool = False) -> None:
        """End iteration after the changes already queued, or at once when ``drop_pending``."""
        if self.closed:
            return
        self.closed = True
        if drop_pending:
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        self.hub.unsubscribe(self)


class ChangeHub:
    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size or config.REALTIME_QUEUE_SIZE
        self._subscriptions: set[Subscription] = set()
        self._lock = Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def subscribe(self, tables: Iterable[str]) -> Subscription:
        self._loop = asyncio.get_running_loop()
        subscription = Subscription(self, tables, self.queue_size)
        with self._lock:
            self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(subscription)
        self._dispatch(subscription.mark_closed)

    def publish(self, changes: list[ChangeEvent]) -> None:
        if changes:
            self._dispatch(self._deliver, changes)

    def close(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            self._dispatch(subscription.mark_closed)

    def _deliver(self, changes: list[ChangeEvent]) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            for change in changes:
                subscription.offer(change)

    def _dispatch(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)


def _collect_changes(session, flush_context) -> None:
    pending = session.info.setdefault(_PENDING_KEY, [])
    for instances, event_type in (
        (session.new, 'INSERT'),
        (session.dirty, 'UPDATE'),
        (session.deleted, 'DELETE'),
    ):
        for instance in instances:
            table = getattr(instance, '__tablename__', None)
            if table in WATCHED_TABLES:
                pending.append(ChangeEvent(table, event_type, getattr(instance, 'id', None)))


def install_change_capture(hub: ChangeHub, target) -> callable:
    """Publish committed changes from sessions created by ``target`` to ``hub``.

    ``target`` is a ``sessionmaker`` or ``Session`` class. Returns a callable
    that removes the listeners again.
    """

    def publish_on_commit(session) -> None:
        hub.publish(session.info.pop(_PENDING_KEY, []))

    def discard_on_rollback(session) -> None:
        session.info.pop(_PENDING_KEY, None)

    event.listen(target, 'after_flush', _collect_changes)
    event.listen(target, 'after_commit', publish_on_commit)
    event.listen(target, 'after_rollback', discard_on_rollback)

    def remove() -> None:
        event.remove(target, 'after_flush', _collect_changes)
        event.remove(target, 'after_commit', publish_on_commit)
        event.remove(target, 'after_rollback', discard_on_rollback)

    return remove


change_hub = ChangeHub()
