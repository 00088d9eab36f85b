"""Re-run a dashboard refresh whenever a watched table changes."""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from backend.core import config

logger = logging.getLogger(__name__)


class RealtimeRefresher:
    """Drives ``refresh`` from a change channel opened by ``subscribe``.

    Every change triggers one refresh; the refresh re-reads from the store and
    does not patch local state from the event payload. When the channel closes
    or fails the refresher waits ``reconnect_delay`` seconds and reconnects a
    single time. A second loss ends ``run``; the last refreshed data stays
    where the caller put it.
    """

    max_reconnects = 1

    def __init__(
        self,
        subscribe: Callable[[], AsyncIterator],
        refresh: Callable[[], Awaitable[None]],
        reconnect_delay: float | None = None,
    ):
        self.subscribe = subscribe
        self.refresh = refresh
        self.reconnect_delay = (
            config.REALTIME_RECONNECT_DELAY_SECONDS if reconnect_delay is None else reconnect_delay
        )
        self.reconnects = 0
        self.refresh_count = 0

    async def _listen(self) -> None:
        channel = self.subscribe()
        try:
            async for _change in channel:
                await self.refresh()
                self.refresh_count += 1
        finally:
            close = getattr(channel, 'close', None)
            if close is not None:
                close()

    async def run(self) -> None:
        while True:
            try:
                await self._listen()
                logger.info('Realtime channel closed')
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning('Realtime channel failed: %s', exc)

            if self.reconnects >= self.max_reconnects:
                logger.warning('Realtime channel lost after reconnect; live updates stopped')
                return

            self.reconnects += 1
            await asyncio.sleep(self.reconnect_delay)
            logger.info('Reconnecting realtime channel')
