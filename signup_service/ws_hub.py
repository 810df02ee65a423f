import asyncio
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol

from starlette.websockets import WebSocket, WebSocketState

from . import ws_events
from .ws_events import WS_EVENTS


class TransportSendError(Exception):
    """Raised by a transport when a frame cannot be handed off."""


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send(self, text: str) -> None: ...

    def close(self, code: int = 1000) -> None: ...


@dataclass
class Connection:
    id: str
    transport: Transport
    remote_address: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class BroadcastStats:
    successCount: int = 0
    errorCount: int = 0
    totalClients: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class ReloadHub:
    """Registry of open live-reload sockets with a synchronous fan-out.

    Every mutation of the map and the snapshot taken by ``broadcast`` go through
    one lock, so accept/close/error can race with a broadcast triggered from a
    request handler.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger("signup.ws")
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def client_ids(self) -> List[str]:
        with self._lock:
            return list(self._connections.keys())

    def get(self, client_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(client_id)

    def accept(self, transport: Transport, remote_address: str = "unknown") -> str:
        with self._lock:
            client_id = str(uuid.uuid4())
            while client_id in self._connections:
                client_id = str(uuid.uuid4())
            self._connections[client_id] = Connection(
                id=client_id, transport=transport, remote_address=remote_address
            )
            total = len(self._connections)
        self._logger.info("ws_connect client_id=%s remote=%s total=%s", client_id, remote_address, total)

        try:
            transport.send(ws_events.encode(ws_events.build_connected(client_id)))
        except Exception as e:
            # Le client reste enregistré même si le message de bienvenue échoue
            self._logger.error("ws_welcome_error client_id=%s error=%s", client_id, repr(e))
        return client_id

    def on_message(self, client_id: str, raw: Any) -> None:
        data = ws_events.decode(raw)
        if data is None:
            size = len(raw) if isinstance(raw, (str, bytes, bytearray)) else 0
            self._logger.warning("ws_message_unparseable client_id=%s size=%s", client_id, size)
            return

        msg_type = data.get("type")
        self._logger.debug("ws_message client_id=%s type=%s", client_id, msg_type)
        if msg_type != WS_EVENTS.CLIENT.PING:
            return

        conn = self.get(client_id)
        if conn is None:
            self._logger.debug("ws_ping_unknown_client client_id=%s", client_id)
            return
        try:
            conn.transport.send(ws_events.encode(ws_events.build_pong()))
        except Exception as e:
            self._logger.error("ws_pong_error client_id=%s error=%s", client_id, repr(e))
            self._remove(client_id, reason="send_error")

    def on_close(self, client_id: str) -> None:
        self._remove(client_id, reason="close")

    def on_error(self, client_id: str) -> None:
        self._remove(client_id, reason="error")

    def broadcast(self, extra: Optional[Mapping[str, Any]] = None) -> BroadcastStats:
        message = ws_events.build_reload(extra)
        data = ws_events.encode(message)
        stats = BroadcastStats()

        with self._lock:
            for client_id, conn in list(self._connections.items()):
                if not conn.transport.is_open:
                    # Socket déjà fermé: nettoyage silencieux, pas une erreur
                    del self._connections[client_id]
                    self._logger.debug("ws_broadcast_drop_closed client_id=%s", client_id)
                    continue
                try:
                    conn.transport.send(data)
                    stats.successCount += 1
                except Exception as e:
                    del self._connections[client_id]
                    stats.errorCount += 1
                    self._logger.error("ws_send_error client_id=%s error=%s", client_id, repr(e))
            stats.totalClients = len(self._connections)

        self._logger.info(
            "ws_broadcast type=%s reason=%s sent=%s errors=%s total=%s",
            message.get("type"),
            message.get("reason"),
            stats.successCount,
            stats.errorCount,
            stats.totalClients,
        )
        return stats

    def close_all(self, code: int = 1001) -> int:
        with self._lock:
            conns = list(self._connections.values())
            self._connections.clear()
        for conn in conns:
            try:
                conn.transport.close(code)
            except Exception as e:
                self._logger.error("ws_close_error client_id=%s error=%s", conn.id, repr(e))
        if conns:
            self._logger.info("ws_close_all count=%s", len(conns))
        return len(conns)

    def _remove(self, client_id: str, reason: str) -> None:
        with self._lock:
            removed = self._connections.pop(client_id, None)
            total = len(self._connections)
        if removed is not None:
            self._logger.info("ws_disconnect client_id=%s reason=%s total=%s", client_id, reason, total)


class WebSocketTransport:
    """Starlette socket adapter whose ``send`` never awaits.

    Frames go to a bounded queue drained by ``run_writer``; a hub broadcast
    therefore completes without suspending, and per-socket order is the queue
    order.
    """

    def __init__(self, ws: WebSocket, max_queue: int = 100) -> None:
        self._ws = ws
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._loop = asyncio.get_running_loop()
        self._closed = False
        self._logger = logging.getLogger("signup.ws")

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    def send(self, text: str) -> None:
        if not self.is_open:
            raise TransportSendError("socket_not_open")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._enqueue(text)
        else:
            # Appel depuis un autre thread: on repasse par la loop du socket
            self._loop.call_soon_threadsafe(self._enqueue_or_drop, text)

    def _enqueue(self, text: str) -> None:
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            raise TransportSendError("send_queue_full")

    def _enqueue_or_drop(self, text: str) -> None:
        try:
            self._enqueue(text)
        except TransportSendError as e:
            self._logger.error("ws_send_dropped error=%s", repr(e))
            self.mark_closed()

    def mark_closed(self) -> None:
        self._closed = True

    def close(self, code: int = 1000) -> None:
        self.mark_closed()
        self._loop.call_soon_threadsafe(self._schedule_close, code)

    def _schedule_close(self, code: int) -> None:
        self._loop.create_task(self._close(code))

    async def _close(self, code: int) -> None:
        try:
            if self._ws.application_state == WebSocketState.CONNECTED:
                await self._ws.close(code=code)
        except Exception as e:
            self._logger.debug("ws_close_ignored error=%s", repr(e))

    async def run_writer(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self._ws.send_text(text)
            except Exception as e:
                self._logger.error("ws_writer_error error=%s", repr(e))
                self.mark_closed()
                return
