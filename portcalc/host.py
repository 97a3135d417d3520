from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

from .ports import PortCallback

LOG = logging.getLogger("portcalc.host")


class ComputationFailed(Exception):
    """Raised when a program reports a falsy value on its output port."""

    def __init__(self, message: str = "failed") -> None:
        super().__init__(message)


class OutputChannel(Protocol):
    def subscribe(self, callback: PortCallback) -> None:
        ...

    def unsubscribe(self, callback: PortCallback) -> None:
        ...


class ProgramPorts(Protocol):
    output: OutputChannel


class ProgramHandle(Protocol):
    ports: ProgramPorts


class EmbeddableProgram(Protocol):
    def init(self, flags: str) -> ProgramHandle:
        ...


def calc(source: str, *, program: Optional[EmbeddableProgram] = None) -> asyncio.Future:
    """Run ``source`` through one program instance and await its first output.

    The returned future is fulfilled with the first truthy value sent through
    ``ports.output``, or fails with :class:`ComputationFailed` when that value
    is falsy. There is no timeout: if the program never emits, the future
    never settles.
    """
    if program is None:
        from .calculator import build_program

        program = build_program()

    future: asyncio.Future = asyncio.get_running_loop().create_future()
    instance = program.init(source)
    output = instance.ports.output

    def on_output(result: Any) -> None:
        output.unsubscribe(on_output)
        if future.done():
            LOG.debug("Ignoring extra emission for %r: %r", source, result)
            return
        if result:
            LOG.debug("Calculation for %r succeeded: %r", source, result)
            future.set_result(result)
        else:
            LOG.debug("Calculation for %r failed with %r", source, result)
            future.set_exception(ComputationFailed())

    output.subscribe(on_output)
    return future
