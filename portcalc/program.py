from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from . import telemetry
from .models import OUTPUT_PORT, InitMessage, PortMessage, ProgramInfo
from .ports import Ports
from .transport import PortLink, TransportClosed

UpdateFunction = Callable[[str], Awaitable[Any] | Any]

# Strong references for instance tasks; the event loop only keeps weak ones.
_background_tasks: Set[asyncio.Task] = set()


class Program:
    """An embeddable computation unit driven by flags and an output port.

    ``update`` receives the flags given to :meth:`init` and returns the value
    that is sent through ``ports.output``. It may be a plain function or a
    coroutine function. Exceptions it raises are logged and reported as a
    ``None`` emission.
    """

    def __init__(
        self,
        update: UpdateFunction,
        *,
        info: Optional[ProgramInfo] = None,
    ) -> None:
        self.update = update
        self.info = info or ProgramInfo(
            name=getattr(update, "__name__", "program"),
            version="0.0.0",
        )
        self._logger = logging.getLogger("portcalc.program")

    def init(self, flags: str) -> "ProgramInstance":
        """Start one instance of the program; requires a running event loop."""
        instance = ProgramInstance(self, flags)
        instance.start()
        self._logger.debug(
            "Initialized program %s with flags=%r",
            self.info.name,
            flags,
        )
        return instance


class ProgramInstance:
    """A running program paired with the host side of its port link.

    The instance runs two tasks: the program side waits for ``init``, computes
    and sends one port message; the host side sends ``init`` and feeds the
    reply into ``ports.output``. Both finish after that single exchange.
    """

    def __init__(self, program: Program, flags: str) -> None:
        self.program = program
        self.flags = flags
        self.ports = Ports()
        self.received_messages: List[Dict[str, Any]] = []
        self.emitted = False

        self._link = PortLink()
        self._program_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._logger = logging.getLogger("portcalc.program")

    @property
    def tasks(self) -> List[asyncio.Task]:
        return [task for task in (self._program_task, self._listener_task) if task]

    def start(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise RuntimeError(
                "Programs can only be initialized inside a running event loop."
            ) from exc
        if self._program_task is not None:
            raise RuntimeError("Program instance already started.")
        self._program_task = loop.create_task(self._serve())
        self._listener_task = loop.create_task(self._listen())
        for task in self.tasks:
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)

    async def shutdown(self) -> None:
        self._link.close()
        for task in self.tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._logger.debug("Program instance %s shut down.", self.program.info.name)

    async def _serve(self) -> None:
        try:
            init = await self._link.receive_init()
        except TransportClosed:
            self._logger.debug("Link closed before init; program exiting.")
            return

        payload = init.to_payload()
        self.received_messages.append(payload)
        telemetry.record_message(role="program", direction="incoming", payload=payload)

        value = await self._run_update(init.flags)
        message = PortMessage(value=value, port=OUTPUT_PORT)
        telemetry.record_message(
            role="program",
            direction="outgoing",
            payload=message.to_payload(),
        )
        try:
            await self._link.send_output(message)
        except TransportClosed:
            self._logger.debug("Link closed before output could be sent.")
            return
        self.emitted = True
        self._logger.debug("Program %s emitted its output.", self.program.info.name)

    async def _run_update(self, flags: str) -> Any:
        try:
            result = self.program.update(flags)
            if inspect.isawaitable(result):
                result = await result
        except Exception:  # noqa: BLE001
            self._logger.exception(
                "Program %s failed while computing flags=%r",
                self.program.info.name,
                flags,
            )
            return None
        self._logger.debug("Program computed value=%r", result)
        return result

    async def _listen(self) -> None:
        init = InitMessage(flags=self.flags)
        try:
            telemetry.record_message(
                role="host",
                direction="outgoing",
                payload=init.to_payload(),
            )
            await self._link.send_init(init)
            message = await self._link.receive_output()
        except TransportClosed:
            self._logger.debug("Link closed; listener exiting.")
            return

        telemetry.record_message(
            role="host",
            direction="incoming",
            payload=message.to_payload(),
        )
        if message.port != self.ports.output.name:
            self._logger.warning("Unknown port %s", message.port)
            return
        try:
            self.ports.output.send(message.value)
        except Exception as exc:  # noqa: BLE001
            self._logger.exception("Port subscriber raised: %s", exc)
