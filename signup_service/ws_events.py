"""
Live-reload wire protocol.

Every frame is a JSON text object carrying a ``type`` tag.

Server -> client:
- ``connected``: welcome sent once, right after the socket is accepted
- ``reload``: broadcast to every open socket when a reload is triggered
- ``pong``: unicast answer to a ``ping``

Client -> server:
- ``ping``: liveness check; any other tag is accepted and ignored

Usage:
    from signup_service.ws_events import WS_EVENTS, build_reload

    hub.broadcast({"reason": "deploy"})
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field


class ServerEvents:
    """Tags emitted by the hub."""
    CONNECTED = "connected"
    RELOAD = "reload"
    PONG = "pong"


class ClientEvents:
    """Tags understood by the hub."""
    PING = "ping"


class WS_EVENTS:
    SERVER = ServerEvents
    CLIENT = ClientEvents


WELCOME_MESSAGE = "WebSocket connection established"
RELOAD_MESSAGE = "Code changes detected, reloading..."


def utc_timestamp() -> str:
    """ISO-8601 UTC with milliseconds and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ConnectedMessage(BaseModel):
    type: str = Field(default=ServerEvents.CONNECTED)
    clientId: str
    message: str = WELCOME_MESSAGE
    timestamp: str = Field(default_factory=utc_timestamp)


class PongMessage(BaseModel):
    type: str = Field(default=ServerEvents.PONG)
    timestamp: str = Field(default_factory=utc_timestamp)


class PingMessage(BaseModel):
    type: str = Field(default=ClientEvents.PING)
    timestamp: str = Field(default_factory=utc_timestamp)


def build_connected(client_id: str) -> Dict[str, Any]:
    return ConnectedMessage(clientId=client_id).model_dump()


def build_reload(extra: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Reload frame; caller fields are copied as-is and may replace message/timestamp, never the tag."""
    message: Dict[str, Any] = {
        "type": ServerEvents.RELOAD,
        "message": RELOAD_MESSAGE,
        "timestamp": utc_timestamp(),
    }
    message.update(extra or {})
    message["type"] = ServerEvents.RELOAD
    return message


def build_pong() -> Dict[str, Any]:
    return PongMessage().model_dump()


def build_ping() -> Dict[str, Any]:
    return PingMessage().model_dump()


def encode(message: Mapping[str, Any]) -> str:
    return json.dumps(message)


def decode(raw: Any) -> Optional[Dict[str, Any]]:
    """Parse a text/bytes frame into a tagged dict; None when malformed."""
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if not isinstance(raw, str):
            return None
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data
