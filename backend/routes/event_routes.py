import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from backend.core import config
from backend.services.broadcast import AvailabilityBroadcaster
from backend.services.registry import get_broadcaster

router = APIRouter(tags=['events'])

logger = logging.getLogger(__name__)


@router.websocket('/ws')
async def availability_socket(
    websocket: WebSocket,
    doctor_id: int | None = Query(default=None),
    broadcaster: AvailabilityBroadcaster = Depends(get_broadcaster),
):
    # Subscribe before accepting so nothing published after the handshake is missed.
    subscription = broadcaster.subscribe(asyncio.get_running_loop(), doctor_id=doctor_id)
    await websocket.accept()

    async def forward() -> None:
        while True:
            await websocket.send_json(await subscription.get())

    async def drain() -> None:
        # Client messages are ignored; receiving only detects disconnects.
        with contextlib.suppress(WebSocketDisconnect):
            while True:
                await websocket.receive_text()

    tasks = {asyncio.create_task(forward()), asyncio.create_task(drain())}
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task.exception() is not None:
                logger.error(
                    'Availability socket %s closed after an error.',
                    subscription.id,
                    exc_info=task.exception(),
                )
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        broadcaster.unsubscribe(subscription)
        logger.debug('Availability socket %s disconnected.', subscription.id)


@router.get('/stream')
async def availability_stream(
    request: Request,
    doctor_id: int | None = Query(default=None),
    broadcaster: AvailabilityBroadcaster = Depends(get_broadcaster),
):
    subscription = broadcaster.subscribe(asyncio.get_running_loop(), doctor_id=doctor_id)

    async def _gen():
        try:
            yield ': connected\n\n'
            while not await request.is_disconnected():
                try:
                    payload = await asyncio.wait_for(
                        subscription.get(),
                        timeout=config.EVENT_STREAM_KEEPALIVE_SECONDS,
                    )
                except asyncio.TimeoutError:
                    yield ': keepalive\n\n'
                    continue
                yield f"event: {payload['event']}\ndata: {json.dumps(payload)}\n\n"
        finally:
            broadcaster.unsubscribe(subscription)

    return StreamingResponse(_gen(), media_type='text/event-stream')
