from __future__ import annotations

import logging

from fastapi import APIRouter, Request, WebSocket
from fastapi.responses import JSONResponse

from concall.common.errors import PersistenceError
from concall.realtime.ws_endpoint import serve_observer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/analytics")
async def get_analytics(request: Request):
    try:
        return await request.app.state.analytics.get_summary()
    except PersistenceError as e:
        return JSONResponse(status_code=500, content={"error": "Failed to get analytics", "details": str(e)})


@router.websocket("/ws/analytics")
async def analytics_stream(websocket: WebSocket):
    await serve_observer(websocket, websocket.app.state.hub)
