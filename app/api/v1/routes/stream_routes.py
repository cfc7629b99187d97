import asyncio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.enums import EventType
from app.exceptions.errors import ApplicationException
from app.middlewares.identity_gate import principal_for_websocket
from app.services.presence_bus import PresenceBus, Subscription, get_presence_bus
from app.core.logger import get_logger

logger = get_logger("stream_routes")

router = APIRouter(tags=["Realtime"])

CLOSE_UNAUTHENTICATED = 4401
CLOSE_OVERFLOW = 4008


async def _pump(websocket: WebSocket, subscription: Subscription, send_lock: asyncio.Lock) -> None:
    async for event in subscription:
        async with send_lock:
            await websocket.send_json(event.frame())
        if event.type == EventType.STREAM_OVERFLOW:
            await websocket.close(code=CLOSE_OVERFLOW, reason="overflow")
            return


async def _receive(websocket: WebSocket, send_lock: asyncio.Lock) -> None:
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                async with send_lock:
                    await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        return


@router.websocket("/stream")
async def stream(websocket: WebSocket, bus: PresenceBus = Depends(get_presence_bus)):
    """
    Live events for the authenticated principal: `message.created`,
    `message.read` and `assignment.changed` frames of `{type, payload}`.
    After a `stream.overflow` frame the socket closes; reconnect and backfill
    with `GET /messages?after=<cursor>`.
    """
    await websocket.accept()
    try:
        principal = await principal_for_websocket(websocket)
    except ApplicationException as e:
        logger.warning(f"Stream rejected: {e.code}")
        await websocket.send_json({"type": "error", "payload": e.to_dict()})
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason=e.code)
        return

    subscription = bus.subscribe(principal.id)
    logger.info(f"Stream opened for {principal.id}")
    send_lock = asyncio.Lock()
    tasks = [
        asyncio.create_task(_pump(websocket, subscription, send_lock)),
        asyncio.create_task(_receive(websocket, send_lock)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"Stream for {principal.id} failed: {error!r}")
    finally:
        for task in tasks:
            task.cancel()
        subscription.unsubscribe()
        logger.info(f"Stream closed for {principal.id}")
