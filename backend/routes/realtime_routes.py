import asyncio
import contextlib
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from backend.auth.dependencies import resolve_mechanic, resolve_user
from backend.core.exceptions import StoreError
from backend.database import SessionLocal
from backend.realtime.hub import WATCHED_TABLES, change_hub
from backend.realtime.refresh import RealtimeRefresher
from backend.routes.errors import DATABASE_UNAVAILABLE_DETAIL
from backend.routes.mechanic_routes import build_dashboard_snapshot
from backend.store import AppointmentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['realtime'])


def authenticate_mechanic(token: str) -> int:
    db = SessionLocal()
    try:
        return resolve_mechanic(resolve_user(token, db), db).id
    finally:
        db.close()


def load_snapshot(mechanic_id: int) -> dict:
    db = SessionLocal()
    try:
        snapshot = build_dashboard_snapshot(AppointmentStore(db), mechanic_id)
    finally:
        db.close()
    return {'type': 'snapshot', 'data': snapshot.model_dump(mode='json')}


async def stop_listener(listener: asyncio.Task) -> None:
    listener.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await listener


@router.websocket('/dashboard/ws')
async def dashboard_socket(websocket: WebSocket, token: str = Query(...)):
    try:
        mechanic_id = await run_in_threadpool(authenticate_mechanic, token)
    except HTTPException as exc:
        logger.info('Rejected dashboard socket: %s', exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def refresh() -> None:
        try:
            frame = await run_in_threadpool(load_snapshot, mechanic_id)
        except StoreError as exc:
            logger.warning('Dashboard refresh for mechanic %s failed: %s', mechanic_id, exc)
            frame = {'type': 'error', 'detail': DATABASE_UNAVAILABLE_DETAIL}
        await websocket.send_json(frame)

    await refresh()
    refresher = RealtimeRefresher(lambda: change_hub.subscribe(WATCHED_TABLES), refresh)
    listener = asyncio.create_task(refresher.run())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info('Dashboard socket for mechanic %s disconnected', mechanic_id)
    finally:
        await stop_listener(listener)
