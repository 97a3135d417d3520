from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

OUTPUT_PORT = "output"


@dataclass(frozen=True)
class ProgramInfo:
    name: str
    version: str
    title: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "name": self.name,
            "version": self.version,
        }
        if self.title is not None:
            payload["title"] = self.title
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProgramInfo":
        return cls(
            name=str(payload.get("name", "")),
            version=str(payload.get("version", "")),
            title=payload.get("title"),
            metadata=dict(payload.get("metadata", {})),
        )


@dataclass(frozen=True)
class InitMessage:
    """Flags handed to a program when it is initialized."""

    flags: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "method": "init",
            "params": {"flags": self.flags},
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InitMessage":
        params = payload.get("params", {})
        if not isinstance(params, dict):
            params = {}
        return cls(flags=str(params.get("flags", "")))


@dataclass(frozen=True)
class PortMessage:
    """A value sent by a program through one of its outgoing ports."""

    value: Any = None
    port: str = OUTPUT_PORT

    def to_payload(self) -> Dict[str, Any]:
        return {
            "method": "ports/output",
            "params": {"port": self.port, "value": self.value},
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PortMessage":
        params = payload.get("params", {})
        if not isinstance(params, dict):
            params = {}
        return cls(
            value=params.get("value"),
            port=str(params.get("port") or OUTPUT_PORT),
        )
