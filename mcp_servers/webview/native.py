"""Commands answered by the host itself (no webview round trip)."""

from __future__ import annotations

import os
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .scripts import WEBVIEW_SCRIPT_VERSION

if TYPE_CHECKING:
    from .dispatch import DispatchSession

NativeHandler = Callable[["DispatchSession", dict[str, Any]], Awaitable[Any]]


async def ping(session: DispatchSession, params: dict[str, Any]) -> dict[str, Any]:
    return {
        "pong": True,
        "pid": os.getpid(),
        "timeMs": int(time.time() * 1000),
        "runtimeVersion": WEBVIEW_SCRIPT_VERSION,
        "pending": len(session.bridge.pending),
    }


async def list_windows(session: DispatchSession, params: dict[str, Any]) -> dict[str, Any]:
    bus = session.dispatcher.bus
    return {"windows": await bus.windows(), "defaultWindow": bus.default_label}


NATIVE_COMMANDS: dict[str, NativeHandler] = {
    "ping": ping,
    "list_windows": list_windows,
}


__all__ = ["NATIVE_COMMANDS", "NativeHandler", "list_windows", "ping"]
