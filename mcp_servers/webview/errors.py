"""
Error taxonomy for the webview bridge.

Every failure that can reach a client is a BridgeError subclass. The `kind`
class attribute is the stable name written to `errorKind` in error envelopes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BridgeError(Exception):
    """Structured error surfaced to socket clients."""

    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    kind = "BridgeError"

    def __str__(self) -> str:
        return self.reason

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.reason, "errorKind": self.kind}
        if self.suggestion:
            out["suggestion"] = self.suggestion
        if self.details:
            out["details"] = self.details
        return out


class TransportError(BridgeError):
    kind = "TransportError"


class UnknownCommand(BridgeError):
    kind = "UnknownCommand"


class WindowNotFound(BridgeError):
    kind = "WindowNotFound"


class ElementNotFound(BridgeError):
    kind = "ElementNotFound"


class BridgeTimeout(BridgeError):
    kind = "Timeout"


class ExecutionError(BridgeError):
    kind = "ExecutionError"


class InvalidParams(ExecutionError):
    pass


_KINDS: dict[str, type[BridgeError]] = {
    cls.kind: cls
    for cls in (TransportError, UnknownCommand, WindowNotFound, ElementNotFound, BridgeTimeout, ExecutionError)
}


def error_from_kind(kind: Any, reason: str, *, details: dict[str, Any] | None = None) -> BridgeError:
    """Rebuild a typed error from an `errorKind` name (webview responses, client side)."""
    cls = _KINDS.get(str(kind or ""), ExecutionError)
    return cls(reason=reason, details=dict(details or {}))


@dataclass
class PartialResult:
    """Warning attached to a screenshot that succeeded with some nested frames omitted."""

    total_frames: int
    omitted_frames: int

    kind = "PartialResult"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": f"{self.omitted_frames} of {self.total_frames} embedded frame(s) were not composited",
            "totalFrames": self.total_frames,
            "omittedFrames": self.omitted_frames,
        }


__all__ = [
    "BridgeError",
    "BridgeTimeout",
    "ElementNotFound",
    "ExecutionError",
    "InvalidParams",
    "PartialResult",
    "TransportError",
    "UnknownCommand",
    "WindowNotFound",
    "error_from_kind",
]
