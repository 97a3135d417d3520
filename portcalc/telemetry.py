"""JSONL trace of the messages crossing a host/program port link."""

from __future__ import annotations

import itertools
import json
import threading
import time
from pathlib import Path
from typing import Dict, Iterator, Optional

EVENTS_FILE_NAME = "port-events.jsonl"

_lock = threading.Lock()
_log_path: Optional[Path] = None
_sequence: Iterator[int] = itertools.count()


def initialize(log_dir: Path) -> Path:
    """Start a fresh trace file in ``log_dir``; tracing is off until called."""
    global _log_path, _sequence
    with _lock:
        log_dir.mkdir(parents=True, exist_ok=True)
        _log_path = (log_dir / EVENTS_FILE_NAME).resolve()
        _log_path.write_text("", encoding="utf-8")
        _sequence = itertools.count()
        return _log_path


def reset() -> None:
    """Stop tracing."""
    global _log_path
    with _lock:
        _log_path = None


def record_message(
    *,
    role: str,
    direction: str,
    payload: Dict[str, object],
) -> Optional[Dict[str, object]]:
    """Append one wire payload to the trace; no-op while tracing is off."""
    with _lock:
        if _log_path is None:
            return None
        entry = {
            "seq": next(_sequence),
            "timestamp": time.time(),
            "role": role,
            "direction": direction,
            "method": payload.get("method"),
            "payload": payload,
        }
        with _log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=repr) + "\n")
        return entry
