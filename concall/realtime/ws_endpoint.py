from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import WebSocket, WebSocketDisconnect

from concall.common.logging import log_event

from .hub import BroadcastHub, ObserverConnection

logger = logging.getLogger(__name__)

# "Try again later": closed by the server because the client fell behind.
OVERFLOW_CLOSE_CODE = 1013


async def _write_loop(ws: WebSocket, conn: ObserverConnection) -> None:
    while True:
        msg = await conn.next_message()
        if msg is None:
            break
        await ws.send_text(msg)
    if conn.dropped_for_overflow:
        with contextlib.suppress(Exception):
            await ws.close(code=OVERFLOW_CLOSE_CODE)


async def serve_observer(ws: WebSocket, hub: BroadcastHub) -> None:
    """
    Attach one websocket to the hub until either side goes away.

    Inbound frames are read and discarded; the read side only exists to notice
    the client disconnecting.
    """
    await ws.accept()
    conn = hub.new_connection()
    hub.register(conn)
    log_event(logger, "ws.observer_connected", conn_id=conn.conn_id)

    writer = asyncio.create_task(_write_loop(ws, conn), name=f"ws-writer-{conn.conn_id}")
    try:
        while True:
            reader = asyncio.ensure_future(ws.receive())
            done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            if writer in done:
                reader.cancel()
                break
            # Text and binary frames alike are ignored.
            msg = reader.result()
            if msg.get("type") == "websocket.disconnect":
                log_event(logger, "ws.observer_disconnected", conn_id=conn.conn_id, code=msg.get("code"))
                break
    except WebSocketDisconnect as e:
        log_event(logger, "ws.observer_disconnected", conn_id=conn.conn_id, code=e.code)
    finally:
        hub.unregister(conn)
        conn.close()
        if not writer.done():
            writer.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await writer
