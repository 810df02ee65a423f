import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger("signup.events")

Listener = Callable[[Any], None]


class EventEmitter:
    """Minimal synchronous pub/sub: event name -> ordered callbacks."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, callback: Listener) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Listener) -> None:
        callbacks = self._listeners.get(event)
        if not callbacks:
            return
        for index, registered in enumerate(callbacks):
            if registered == callback:
                del callbacks[index]
                break
        if not callbacks:
            self._listeners.pop(event, None)

    def emit(self, event: str, data: Any = None) -> None:
        # Copie: un listener peut se désabonner pendant la diffusion
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(data)
            except Exception:
                logger.exception("listener_error event=%s callback=%r", event, callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
