from __future__ import annotations

import asyncio
from typing import Any, Dict

from .models import InitMessage, PortMessage


class TransportClosed(Exception):
    """Raised when a port link is used after it was closed."""


_CLOSE_SENTINEL = object()


class PortLink:
    """In-memory link carrying one host ``init`` down and one port message up.

    Messages travel as wire payloads (plain dicts) so both sides only share
    the models' payload format. ``close()`` wakes any side still waiting.
    """

    def __init__(self) -> None:
        self._to_program: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._to_host: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.init_sent = False
        self.output_sent = False
        self.closed = False

    async def send_init(self, init: InitMessage) -> None:
        self._ensure_open()
        if self.init_sent:
            raise RuntimeError("Init already sent on this link.")
        self.init_sent = True
        await self._to_program.put(init.to_payload())

    async def receive_init(self) -> InitMessage:
        payload = await self._receive(self._to_program)
        return InitMessage.from_payload(payload)

    async def send_output(self, message: PortMessage) -> None:
        self._ensure_open()
        if self.output_sent:
            raise RuntimeError("Output already sent on this link.")
        self.output_sent = True
        await self._to_host.put(message.to_payload())

    async def receive_output(self) -> PortMessage:
        payload = await self._receive(self._to_host)
        return PortMessage.from_payload(payload)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for queue in (self._to_program, self._to_host):
            if queue.empty():
                queue.put_nowait(_CLOSE_SENTINEL)

    def _ensure_open(self) -> None:
        if self.closed:
            raise TransportClosed

    async def _receive(self, queue: asyncio.Queue) -> Dict[str, Any]:
        payload = await queue.get()
        if payload is _CLOSE_SENTINEL:
            raise TransportClosed
        return payload
