from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Iterable, Optional

from . import telemetry
from .host import ComputationFailed, EmbeddableProgram, calc
from .logging_utils import setup_logging

SOURCE = "p1ass(1998, 11 / 24)"

logger = logging.getLogger("portcalc.cli")


def build_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(
        prog="portcalc",
        description=(
            f"Run {SOURCE!r} through the embedded calculator program and "
            "print the value it sends on its output port."
        ),
    )


async def run(source: str = SOURCE, program: Optional[EmbeddableProgram] = None) -> int:
    logger.info("Calculating %r", source)
    try:
        result = await calc(source, program=program)
    except ComputationFailed as exc:
        logger.warning("Calculation for %r failed: %s", source, exc)
        print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    logger.info("Calculation for %r succeeded.", source)
    print(json.dumps(result, indent=2))
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    parser.parse_args(list(argv) if argv is not None else None)

    log_path = setup_logging()
    telemetry.initialize(log_path.parent)
    print(f"Debug log: {log_path}", file=sys.stderr)
    logger.debug("CLI invoked with args: %s", list(argv) if argv is not None else None)

    return asyncio.run(run(SOURCE))


if __name__ == "__main__":
    sys.exit(main())
