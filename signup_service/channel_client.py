"""
Client side of the live-reload channel.

``ReloadChannelClient`` keeps one logical connection to the hub's ``/ws``
endpoint, reconnects with a linear backoff when the socket closes, and turns
incoming frames into events (``connected``, ``welcome``, ``reload``, ``pong``,
``message``, ``disconnected``, ``error``).

The socket itself is behind a small transport interface so the client can be
driven by fake transports and a virtual clock in tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import websockets

from . import ws_events
from .events import EventEmitter, Listener
from .scheduler import AsyncioScheduler, ScheduledCall, Scheduler
from .ws_events import WS_EVENTS
from .ws_hub import TransportSendError

logger = logging.getLogger("signup.channel")


class ClientStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class TransportHandlers:
    on_open: Callable[[], None]
    on_message: Callable[[Any], None]
    on_close: Callable[[Optional[int], str], None]
    on_error: Callable[[BaseException], None]


class ClientTransport(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send(self, text: str) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[[str, TransportHandlers], ClientTransport]


class WebsocketsTransport:
    """One connection attempt over the ``websockets`` library.

    Must be created from inside a running event loop; the connection runs in
    its own task and reports through ``handlers``. ``on_close`` fires exactly
    once, whether the connect failed, an open socket went away or the attempt
    was cancelled before it started.
    """

    def __init__(self, url: str, handlers: TransportHandlers, open_timeout: float = 10.0) -> None:
        self.url = url
        self._handlers = handlers
        self._open_timeout = open_timeout
        self._loop = asyncio.get_running_loop()
        self._ws = None
        self._open = False
        self._close_reported = False
        self._task = self._loop.create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    @property
    def is_open(self) -> bool:
        return self._open

    async def _run(self) -> None:
        code: Optional[int] = None
        reason = ""
        try:
            async with websockets.connect(
                self.url,
                open_timeout=self._open_timeout,
                ping_interval=20,
                ping_timeout=20,
            ) as ws:
                self._ws = ws
                self._open = True
                self._handlers.on_open()
                async for raw in ws:
                    self._handlers.on_message(raw)
                code, reason = ws.close_code, ws.close_reason or ""
        except asyncio.CancelledError:
            reason = "cancelled"
        except websockets.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
            reason = e.rcvd.reason if e.rcvd is not None else repr(e)
            self._handlers.on_error(e)
        except Exception as e:
            reason = repr(e)
            self._handlers.on_error(e)
        finally:
            self._open = False
            self._ws = None
            self._report_close(code, reason)

    def _report_close(self, code: Optional[int], reason: str) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self._handlers.on_close(code, reason)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Tâche annulée avant son premier pas: _run n'a jamais exécuté son finally
        self._open = False
        self._report_close(None, "cancelled")

    def send(self, text: str) -> None:
        ws = self._ws
        if ws is None or not self._open:
            raise TransportSendError("socket_not_open")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            task = self._loop.create_task(ws.send(text))
            task.add_done_callback(self._log_send_failure)
        else:
            fut = asyncio.run_coroutine_threadsafe(ws.send(text), self._loop)
            fut.add_done_callback(self._log_send_failure)

    @staticmethod
    def _log_send_failure(fut) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            logger.error("channel_send_failed error=%s", repr(exc))

    def close(self) -> None:
        ws = self._ws
        if ws is not None:
            self._loop.create_task(ws.close())
        elif not self._task.done():
            self._task.cancel()


def _default_notice(message: str) -> None:
    logger.warning("reload_notice message=%s", message)


class ReloadChannelClient:
    """Reconnecting consumer of the hub's broadcasts."""

    def __init__(
        self,
        url: str,
        *,
        reload_action: Callable[[dict], None],
        transport_factory: Optional[TransportFactory] = None,
        scheduler: Optional[Scheduler] = None,
        max_reconnect_attempts: int = 5,
        base_delay: float = 1.0,
        reload_delay: float = 1.0,
        notice: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self.reload_delay = reload_delay
        self.reconnect_attempts = 0
        self.status = ClientStatus.DISCONNECTED
        self.status_text = "Disconnected"
        self.failed = False
        self.client_id: Optional[str] = None

        self._reload_action = reload_action
        self._notice = notice or _default_notice
        self._transport_factory: TransportFactory = transport_factory or WebsocketsTransport
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._emitter = EventEmitter()
        self._transport: Optional[ClientTransport] = None
        self._reconnect_call: Optional[ScheduledCall] = None
        self._generation = 0
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self.status == ClientStatus.CONNECTED

    # ----- subscriptions -----

    def on(self, event: str, callback: Listener) -> None:
        self._emitter.on(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        self._emitter.off(event, callback)

    def emit(self, event: str, data: Any = None) -> None:
        self._emitter.emit(event, data)

    # ----- lifecycle -----

    def connect(self) -> None:
        if self._reconnect_call is not None:
            self._reconnect_call.cancel()
            self._reconnect_call = None
        self._closing = False

        # Le transport précédent devient obsolète: ses callbacks seront ignorés
        self._generation += 1
        gen = self._generation
        previous, self._transport = self._transport, None
        if previous is not None:
            try:
                previous.close()
            except Exception as e:
                logger.error("channel_close_previous_error error=%s", repr(e))

        self._set_status(ClientStatus.CONNECTING, "Connecting...")
        logger.info("channel_connect url=%s attempt=%s", self.url, self.reconnect_attempts)

        handlers = TransportHandlers(
            on_open=lambda: self._handle_open(gen),
            on_message=lambda raw: self._handle_message(gen, raw),
            on_close=lambda code, reason: self._handle_close(gen, code, reason),
            on_error=lambda exc: self._handle_error(gen, exc),
        )
        try:
            self._transport = self._transport_factory(self.url, handlers)
        except Exception as e:
            logger.error("channel_connect_error url=%s error=%s", self.url, repr(e))
            self._transport = None
            self._handle_close(gen, None, repr(e))

    def close(self) -> None:
        """User-initiated close: no reconnect afterwards."""
        self._closing = True
        if self._reconnect_call is not None:
            self._reconnect_call.cancel()
            self._reconnect_call = None
        if self._transport is not None:
            try:
                self._transport.close()
            except Exception as e:
                logger.error("channel_close_error error=%s", repr(e))

    def send(self, data: Any) -> bool:
        transport = self._transport
        if transport is None or not transport.is_open:
            logger.warning("channel_send_skipped reason=not_connected")
            return False
        message = data if isinstance(data, str) else json.dumps(data)
        try:
            transport.send(message)
        except Exception as e:
            logger.error("channel_send_error error=%s", repr(e))
            return False
        logger.debug("channel_send size=%s", len(message))
        return True

    def ping(self) -> bool:
        return self.send(ws_events.build_ping())

    # ----- transport callbacks -----

    def _set_status(self, status: ClientStatus, text: str) -> None:
        self.status = status
        self.status_text = text

    def _handle_open(self, gen: int) -> None:
        if gen != self._generation:
            return
        self.reconnect_attempts = 0
        self.failed = False
        self._set_status(ClientStatus.CONNECTED, "Connected")
        logger.info("channel_connected url=%s", self.url)
        self.emit("connected")

    def _handle_message(self, gen: int, raw: Any) -> None:
        if gen != self._generation:
            return
        data = ws_events.decode(raw)
        if data is None:
            logger.warning("channel_message_unparseable url=%s", self.url)
            return

        msg_type = data.get("type")
        if msg_type == WS_EVENTS.SERVER.RELOAD:
            self._handle_reload(data)
        elif msg_type == WS_EVENTS.SERVER.CONNECTED:
            self.client_id = data.get("clientId")
            logger.info("channel_welcome client_id=%s", self.client_id)
            self.emit("welcome", data)
        elif msg_type == WS_EVENTS.SERVER.PONG:
            self.emit("pong", data)
        else:
            self.emit("message", data)

    def _handle_reload(self, data: dict) -> None:
        logger.info("channel_reload reason=%s source=%s", data.get("reason"), data.get("source"))
        self.emit("reload", data)
        try:
            self._notice(data.get("message") or "Reloading...")
        except Exception as e:
            logger.error("reload_notice_error error=%s", repr(e))
        self._scheduler.call_later(self.reload_delay, lambda: self._run_reload(data))

    def _run_reload(self, data: dict) -> None:
        try:
            self._reload_action(data)
        except Exception:
            logger.exception("reload_action_error")

    def _handle_close(self, gen: int, code: Optional[int], reason: str) -> None:
        if gen != self._generation:
            return
        self._set_status(ClientStatus.DISCONNECTED, "Disconnected")
        logger.info("channel_closed code=%s reason=%s", code, reason)

        if self._closing:
            pass
        elif self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.base_delay * self.reconnect_attempts
            logger.info(
                "channel_reconnect_scheduled attempt=%s max=%s delay_s=%s",
                self.reconnect_attempts,
                self.max_reconnect_attempts,
                delay,
            )
            self._reconnect_call = self._scheduler.call_later(delay, self.connect)
        else:
            self.failed = True
            self._set_status(ClientStatus.DISCONNECTED, "Connection Failed")
            logger.error("channel_reconnect_exhausted max=%s", self.max_reconnect_attempts)

        self.emit("disconnected", {"code": code, "reason": reason})

    def _handle_error(self, gen: int, exc: BaseException) -> None:
        if gen != self._generation:
            return
        self._set_status(ClientStatus.ERROR, "Connection Error")
        logger.error("channel_error url=%s error=%s", self.url, repr(exc))
        self.emit("error", exc)
