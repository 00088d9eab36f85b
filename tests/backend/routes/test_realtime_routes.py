import asyncio

from backend.realtime.hub import ChangeHub
from backend.realtime.refresh import RealtimeRefresher
from backend.routes.realtime_routes import stop_listener


def test_stop_listener_waits_for_refresher_to_finish() -> None:
    async def scenario():
        hub = ChangeHub(queue_size=10)
        refreshes = []

        async def refresh() -> None:
            refreshes.append(1)

        refresher = RealtimeRefresher(lambda: hub.subscribe(['appointments']), refresh, reconnect_delay=0)
        listener = asyncio.create_task(refresher.run())
        await asyncio.sleep(0)
        await stop_listener(listener)
        return listener, refreshes

    listener, refreshes = asyncio.run(scenario())

    assert listener.done()
    assert listener.cancelled()
    assert refreshes == []
