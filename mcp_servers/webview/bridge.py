"""
Request/response correlation over the one-way webview event bus.

Each client connection owns one `WebviewBridge`. For every delegated command
the bridge:
1. registers a pending entry with a deadline timer,
2. emits `<event>` to the target window with a fresh `correlationId`,
3. settles the entry when `<event>-response` arrives (or the deadline fires).

Every entry settles exactly once: the response path and the timer both go
through `_settle`, which ignores an entry that is already done. A response for
an unknown or already expired entry is logged and dropped.

Responses without a correlation id (older webview handlers) are matched by
window label and event through the bus-wide `FallbackRouter`, so each one
settles a single entry even when several connections wait on the same event.

Nothing is ever sent into the webview to cancel a handler; on timeout or
teardown only the host-side wait is abandoned.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .bus import EventBus
from .errors import BridgeError, BridgeTimeout, TransportError, error_from_kind

logger = logging.getLogger("mcp.webview.bridge")


def response_event(event: str) -> str:
    return f"{event}-response"


def new_correlation_id() -> str:
    return f"req-{uuid.uuid4().hex}"


@dataclass(slots=True)
class PendingEntry:
    correlation_id: str
    label: str
    event: str
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None
    created_at: float = field(default=0.0)


class PendingRequests:
    """Correlation table: correlation id -> pending entry."""

    def __init__(self) -> None:
        self._entries: dict[str, PendingEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._entries

    def add(self, entry: PendingEntry) -> None:
        if entry.correlation_id in self._entries:
            raise ValueError(f"duplicate correlation id: {entry.correlation_id}")
        self._entries[entry.correlation_id] = entry

    def pop(self, correlation_id: str) -> PendingEntry | None:
        return self._entries.pop(correlation_id, None)

    def has_event(self, event: str) -> bool:
        return any(entry.event == event for entry in self._entries.values())

    def pop_oldest(self, label: str, event: str) -> PendingEntry | None:
        """Match a response that carries no correlation id (window label + event)."""
        for cid, entry in self._entries.items():
            if entry.label == label and entry.event == event:
                return self._entries.pop(cid)
        return None

    def drain(self) -> list[PendingEntry]:
        entries = list(self._entries.values())
        self._entries.clear()
        return entries


def _settle(entry: PendingEntry, *, result: Any = None, error: BaseException | None = None) -> bool:
    if entry.timer is not None:
        entry.timer.cancel()
        entry.timer = None
    fut = entry.future
    if fut.done():
        return False
    if error is not None:
        fut.set_exception(error)
    else:
        fut.set_result(result)
    return True


def error_from_response(message: dict[str, Any]) -> BridgeError:
    error = message.get("error")
    if isinstance(error, str) and error:
        reason = error
    elif error in (None, False, ""):
        reason = "Unknown error occurred"
    else:
        reason = str(error)
    details = message.get("details") if isinstance(message.get("details"), dict) else None
    return error_from_kind(message.get("errorKind"), reason, details=details)


def _deliver(entry: PendingEntry, msg: dict[str, Any]) -> None:
    if msg.get("success") is False:
        _settle(entry, error=error_from_response(msg))
    else:
        _settle(entry, result=msg.get("data"))


def _as_message(message: Any) -> dict[str, Any]:
    return message if isinstance(message, dict) else {"success": True, "data": message}


class FallbackRouter:
    """Routes responses that carry no correlation id.

    There is one router per bus, shared by every bridge on it. An id-less
    response settles exactly one entry: the oldest pending request for that
    window and event across all connections. The router only listens while it
    tracks entries.
    """

    _routers: weakref.WeakKeyDictionary[EventBus, FallbackRouter] = weakref.WeakKeyDictionary()

    def __init__(self, bus: EventBus) -> None:
        self.bus = bus
        self.pending = PendingRequests()
        self._unlisteners: dict[str, Callable[[], None]] = {}

    @classmethod
    def for_bus(cls, bus: EventBus) -> FallbackRouter:
        router = cls._routers.get(bus)
        if router is None:
            router = cls(bus)
            cls._routers[bus] = router
        return router

    def track(self, entry: PendingEntry) -> None:
        self.pending.add(entry)
        if entry.event not in self._unlisteners:
            self._unlisteners[entry.event] = self.bus.listen(
                response_event(entry.event),
                lambda label, message, _event=entry.event: self._on_response(_event, label, message),
            )

    def discard(self, entry: PendingEntry) -> None:
        self.pending.pop(entry.correlation_id)
        if not self.pending.has_event(entry.event):
            unlisten = self._unlisteners.pop(entry.event, None)
            if unlisten is not None:
                unlisten()

    def _on_response(self, event: str, label: str, message: Any) -> None:
        msg = _as_message(message)
        cid = msg.get("correlationId")
        if isinstance(cid, str) and cid:
            return
        entry = self.pending.pop_oldest(label, event)
        if entry is None:
            logger.debug("dropped uncorrelated response event=%s label=%s", event, label)
            return
        _deliver(entry, msg)


class WebviewBridge:
    def __init__(self, bus: EventBus, *, name: str = "bridge") -> None:
        self.bus = bus
        self.name = name
        self.pending = PendingRequests()
        self.fallback = FallbackRouter.for_bus(bus)
        self._unlisteners: dict[str, Callable[[], None]] = {}
        self._closed = False

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    async def request(self, label: str, event: str, payload: dict[str, Any], *, timeout: float) -> Any:
        """Emit `event` to `label` and wait for its correlated response.

        Returns the response `data`; raises BridgeTimeout, TransportError or the
        typed error carried by an unsuccessful response.
        """
        if self._closed:
            raise TransportError(reason="Connection closed")

        self._ensure_listener(event)

        loop = asyncio.get_running_loop()
        entry = PendingEntry(
            correlation_id=new_correlation_id(),
            label=label,
            event=event,
            future=loop.create_future(),
            created_at=loop.time(),
        )
        self.pending.add(entry)
        self.fallback.track(entry)
        entry.timer = loop.call_later(max(0.0, float(timeout)), self._expire, entry, float(timeout))

        try:
            try:
                await self.bus.emit(label, event, {**payload, "correlationId": entry.correlation_id})
            except BridgeError as exc:
                _settle(entry, error=exc)
            except Exception as exc:  # noqa: BLE001
                _settle(entry, error=TransportError(reason=f"Failed to emit {event} to {label}: {exc}"))
            return await entry.future
        finally:
            self.pending.pop(entry.correlation_id)
            self.fallback.discard(entry)
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None

    def _expire(self, entry: PendingEntry, timeout: float) -> None:
        self.pending.pop(entry.correlation_id)
        self.fallback.discard(entry)
        if _settle(
            entry,
            error=BridgeTimeout(
                reason=f"Timeout waiting for {response_event(entry.event)} from {entry.label} after {timeout:g}s",
                details={"event": entry.event, "window": entry.label, "timeoutSeconds": timeout},
            ),
        ):
            logger.info("%s timeout event=%s label=%s cid=%s", self.name, entry.event, entry.label, entry.correlation_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Responses
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_listener(self, event: str) -> None:
        if event in self._unlisteners:
            return
        self._unlisteners[event] = self.bus.listen(
            response_event(event),
            lambda label, message, _event=event: self._on_response(_event, label, message),
        )

    def _on_response(self, event: str, label: str, message: Any) -> None:
        msg = _as_message(message)
        cid = msg.get("correlationId")
        if not isinstance(cid, str) or not cid:
            # id-less responses go through the shared FallbackRouter
            return
        entry = self.pending.pop(cid)
        if entry is None:
            logger.debug("%s dropped response event=%s label=%s cid=%s", self.name, event, label, cid)
            return
        _deliver(entry, msg)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def close(self) -> int:
        """Unsubscribe and fail every still-pending wait. Returns how many were dropped."""
        self._closed = True
        for unlisten in self._unlisteners.values():
            unlisten()
        self._unlisteners.clear()
        dropped = 0
        for entry in self.pending.drain():
            self.fallback.discard(entry)
            if _settle(entry, error=TransportError(reason="Connection closed before the webview responded")):
                dropped += 1
        if dropped:
            logger.info("%s closed with %d pending request(s) discarded", self.name, dropped)
        return dropped


__all__ = [
    "FallbackRouter",
    "PendingEntry",
    "PendingRequests",
    "WebviewBridge",
    "error_from_response",
    "new_correlation_id",
    "response_event",
]
