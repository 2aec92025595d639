"""In-process change notifications."""
import logging
from typing import Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class Signal:
    """Named observer list. Listeners take no arguments and re-read state."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self) -> None:
        logger.debug("Dispatching %s to %d listener(s)", self.name, len(self._listeners))
        for listener in list(self._listeners):
            listener()
