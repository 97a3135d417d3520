from __future__ import annotations

import logging
from typing import Any, Callable, List

from .models import OUTPUT_PORT

PortCallback = Callable[[Any], None]


class OutputPort:
    """Outgoing program port that fans values out to host subscribers."""

    def __init__(self, name: str = OUTPUT_PORT) -> None:
        self.name = name
        self._subscribers: List[PortCallback] = []
        self._logger = logging.getLogger("portcalc.ports")

    @property
    def subscribers(self) -> List[PortCallback]:
        return list(self._subscribers)

    def subscribe(self, callback: PortCallback) -> None:
        self._subscribers.append(callback)
        self._logger.debug(
            "Subscribed to port %s (%d subscriber(s)).",
            self.name,
            len(self._subscribers),
        )

    def unsubscribe(self, callback: PortCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            return
        self._logger.debug("Unsubscribed from port %s.", self.name)

    def send(self, value: Any) -> None:
        # Iterate over a copy; callbacks may unsubscribe themselves.
        subscribers = list(self._subscribers)
        self._logger.debug(
            "Port %s delivering value to %d subscriber(s): %r",
            self.name,
            len(subscribers),
            value,
        )
        for callback in subscribers:
            callback(value)


class Ports:
    def __init__(self) -> None:
        self.output = OutputPort(OUTPUT_PORT)
