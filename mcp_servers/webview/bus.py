"""
Host <-> webview event bus.

The host and a webview only exchange asynchronous named events:
- `emit(label, event, payload)` delivers an event to one window and returns as
  soon as it was handed over (it never waits for a handler);
- `listen(event, handler)` subscribes to events emitted by any window; the
  handler receives `(label, payload)`.

`CdpEventBus` (cdp.py) implements this over the DevTools protocol.
`LocalEventBus` keeps both ends in-process; webview-side handlers are Python
coroutines registered on a `LocalWebview`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

from .errors import TransportError, WindowNotFound

logger = logging.getLogger("mcp.webview.bus")

EventHandler = Callable[[str, Any], None]
WebviewHandler = Callable[["LocalWebview", Any], Awaitable[None]]


class EventBus:
    """Interface shared by every bus implementation."""

    default_label = "main"

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventHandler]] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Host-side subscription
    # ─────────────────────────────────────────────────────────────────────────

    def listen(self, event: str, handler: EventHandler) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(handler)

        def _unlisten() -> None:
            handlers = self._listeners.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._listeners.pop(event, None)

        return _unlisten

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(v) for v in self._listeners.values())

    def deliver(self, label: str, event: str, payload: Any) -> None:
        """Fan an event emitted by a webview out to host listeners."""
        handlers = list(self._listeners.get(event, []))
        if not handlers:
            logger.debug("event_without_listener event=%s label=%s", event, label)
            return
        for handler in handlers:
            try:
                handler(label, payload)
            except Exception:
                logger.exception("event_listener_failed event=%s", event)

    # ─────────────────────────────────────────────────────────────────────────
    # Windows + emit (implementation specific)
    # ─────────────────────────────────────────────────────────────────────────

    async def windows(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def resolve_label(self, label: str | None) -> str:
        raise NotImplementedError

    async def emit(self, label: str, event: str, payload: Any) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LocalWebview:
    """In-process stand-in for a webview: named handlers plus an emit back to the host."""

    def __init__(self, bus: LocalEventBus, label: str, *, title: str = "", url: str = "") -> None:
        self.bus = bus
        self.label = label
        self.title = title
        self.url = url
        self._handlers: dict[str, WebviewHandler] = {}
        self.received: list[tuple[str, Any]] = []

    def on(self, event: str, handler: WebviewHandler) -> None:
        self._handlers[event] = handler

    def has_handler(self, event: str) -> bool:
        return event in self._handlers

    async def emit(self, event: str, payload: Any) -> None:
        # Delivery is asynchronous on the host side as well.
        await asyncio.sleep(0)
        self.bus.deliver(self.label, event, payload)

    async def _run(self, event: str, payload: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            return
        try:
            await handler(self, payload)
        except Exception:
            logger.exception("local_webview_handler_failed label=%s event=%s", self.label, event)


class LocalEventBus(EventBus):
    def __init__(self, *, default_label: str = "main") -> None:
        super().__init__()
        self.default_label = default_label
        self._webviews: dict[str, LocalWebview] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def add_webview(self, label: str, *, title: str = "", url: str = "") -> LocalWebview:
        view = LocalWebview(self, label, title=title, url=url)
        self._webviews[label] = view
        return view

    def remove_webview(self, label: str) -> None:
        self._webviews.pop(label, None)

    async def windows(self) -> list[dict[str, Any]]:
        return [{"label": v.label, "title": v.title, "url": v.url} for v in self._webviews.values()]

    async def resolve_label(self, label: str | None) -> str:
        wanted = (label or self.default_label).strip() or self.default_label
        if wanted in self._webviews:
            return wanted
        raise WindowNotFound(
            reason=f"Window not found: {wanted}",
            suggestion="Call list_windows to see the available labels",
            details={"available": sorted(self._webviews)},
        )

    async def emit(self, label: str, event: str, payload: Any) -> None:
        if self._closed:
            raise TransportError(reason="Event bus is closed")
        view = self._webviews.get(label)
        if view is None:
            raise WindowNotFound(reason=f"Window not found: {label}")
        view.received.append((event, payload))
        # Fire and forget: the handler runs on its own, the host never awaits it.
        task = asyncio.get_running_loop().create_task(view._run(event, payload))  # noqa: SLF001
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with suppress(asyncio.CancelledError, Exception):
                await task


__all__ = ["EventBus", "EventHandler", "LocalEventBus", "LocalWebview"]
