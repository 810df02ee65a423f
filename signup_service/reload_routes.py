import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .ws_events import utc_timestamp
from .ws_hub import ReloadHub, WebSocketTransport

logger = logging.getLogger("signup.app")

router = APIRouter()


class ReloadRequest(BaseModel):
    reason: Optional[str] = None
    source: Optional[str] = None


def get_hub(request: Request) -> Optional[ReloadHub]:
    return getattr(request.app.state, "hub", None)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _broadcast_response(hub: Optional[ReloadHub], reload_data: dict, message: str, settings: Settings) -> JSONResponse:
    if hub is None:
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "error": "WebSocket server not available",
                "message": "Reload functionality is not active",
            },
        )
    try:
        stats = hub.broadcast(reload_data)
    except Exception as e:
        logger.error("reload_broadcast_error error=%s", repr(e))
        content = {"success": False, "error": "Failed to send reload notification"}
        if not settings.is_production:
            content["details"] = str(e)
        return JSONResponse(status_code=500, content=content)

    return JSONResponse(
        content={
            "success": True,
            "message": message,
            "stats": stats.to_dict(),
            "data": reload_data,
        }
    )


@router.post("/api/__reload__")
async def trigger_reload(
    body: Optional[ReloadRequest] = None,
    hub: Optional[ReloadHub] = Depends(get_hub),
    settings: Settings = Depends(get_app_settings),
):
    body = body or ReloadRequest()
    logger.info("reload_request source=%s reason=%s", body.source, body.reason)
    reload_data = {
        "reason": body.reason or "Manual reload triggered",
        "source": body.source or "API",
        "timestamp": utc_timestamp(),
    }
    return _broadcast_response(hub, reload_data, "Reload notification sent to all connected clients", settings)


@router.get("/api/__reload__")
async def trigger_reload_get(
    hub: Optional[ReloadHub] = Depends(get_hub),
    settings: Settings = Depends(get_app_settings),
):
    reload_data = {
        "reason": "Test reload via GET request",
        "source": "GET_API",
        "timestamp": utc_timestamp(),
    }
    return _broadcast_response(hub, reload_data, "Test reload notification sent", settings)


@router.websocket("/ws")
async def reload_socket(ws: WebSocket):
    hub: Optional[ReloadHub] = getattr(ws.app.state, "hub", None)
    if hub is None:
        await ws.close(code=1013)
        return

    await ws.accept()
    settings: Settings = ws.app.state.settings
    transport = WebSocketTransport(ws, max_queue=settings.ws_send_queue_size)
    writer = asyncio.create_task(transport.run_writer())
    remote = f"{ws.client.host}:{ws.client.port}" if ws.client else "unknown"
    client_id = hub.accept(transport, remote)
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Frames binaires acceptées: le hub se charge de les rejeter proprement
            raw = message.get("text")
            hub.on_message(client_id, raw if raw is not None else message.get("bytes"))
    except WebSocketDisconnect as e:
        logger.info("ws_disconnect client_id=%s code=%s", client_id, getattr(e, "code", None))
        hub.on_close(client_id)
    except Exception as e:
        logger.error("ws_error client_id=%s error=%s", client_id, repr(e))
        hub.on_error(client_id)
    finally:
        transport.mark_closed()
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
