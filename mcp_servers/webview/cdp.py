"""
Event bus over the Chrome DevTools Protocol.

Each page target exposed by the application's remote debugging endpoint is a
window. The bus:
- discovers targets from `/json/list` and assigns labels;
- attaches to a target on first use (own websocket per target), installs the
  in-webview runtime and the `__webviewMcpEmit` binding;
- emits by evaluating `__webviewMcp.dispatch(event, payload)` (the handler runs
  on its own, the evaluate only acknowledges delivery);
- turns `Runtime.bindingCalled` events back into host-side events.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .bus import EventBus
from .config import BridgeConfig
from .errors import TransportError, WindowNotFound
from .scripts import BINDING_NAME, WEBVIEW_SCRIPT_SOURCE, WEBVIEW_SCRIPT_VERSION

logger = logging.getLogger("mcp.webview.cdp")

_PAGE_TYPES = {"page", "webview", "app"}


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The webview host requires the 'websockets' Python package. Install it (pip install websockets)."
        ) from exc


def _http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from URL."""
    from urllib.error import URLError
    from urllib.request import urlopen

    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (URLError, OSError, ValueError) as e:
        raise TransportError(
            reason=f"CDP endpoint unavailable: {url}: {e}",
            suggestion="Start the application with --remote-debugging-port or set MCP_WEBVIEW_APP_COMMAND",
        ) from e


class CdpConnection:
    """Async CDP websocket connection (one per target)."""

    def __init__(self, ws: Any, ws_url: str) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self._next_id = 1
        self._pending: dict[int, asyncio.Future] = {}
        self._event_sink: Callable[[dict[str, Any]], None] | None = None
        self._on_close: Callable[[], None] | None = None
        self._reader: asyncio.Task | None = None
        self.closed = False

    @classmethod
    async def open(cls, ws_url: str, *, timeout: float = 5.0) -> CdpConnection:
        websockets = _import_websockets()
        try:
            ws = await websockets.connect(ws_url, ping_interval=None, open_timeout=timeout, max_size=None)
        except Exception as exc:  # noqa: BLE001
            raise TransportError(reason=f"Failed to connect to {ws_url}: {exc}") from exc
        conn = cls(ws, ws_url)
        conn._reader = asyncio.get_running_loop().create_task(conn._read_loop())
        return conn

    def set_event_sink(self, sink: Callable[[dict[str, Any]], None] | None) -> None:
        self._event_sink = sink

    def set_close_callback(self, callback: Callable[[], None] | None) -> None:
        self._on_close = callback

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float = 10.0) -> dict[str, Any]:
        """Send CDP command and wait for its result."""
        if self.closed:
            raise TransportError(reason=f"CDP connection closed ({method})")
        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            await self.ws.send(json.dumps(msg))
            resp = await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(reason=f"CDP {method} timed out after {timeout:g}s") from exc
        except TransportError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TransportError(reason=f"CDP {method} failed: {exc}") from exc
        finally:
            self._pending.pop(msg_id, None)

        if isinstance(resp.get("error"), dict):
            err = resp["error"]
            raise TransportError(reason=f"CDP {method} error: {err.get('message', err)}")
        result = resp.get("result")
        return result if isinstance(result, dict) else {}

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except ValueError:
                    continue
                if not isinstance(data, dict):
                    continue
                if "id" in data:
                    fut = self._pending.get(data.get("id"))
                    if fut is not None and not fut.done():
                        fut.set_result(data)
                    continue
                sink = self._event_sink
                if sink is not None and isinstance(data.get("method"), str):
                    try:
                        sink(data)
                    except Exception:
                        logger.exception("cdp_event_sink_failed method=%s", data.get("method"))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.info("cdp_connection_lost url=%s error=%s", self.ws_url, exc)
        finally:
            self._mark_closed()

    def _mark_closed(self) -> None:
        if self.closed:
            return
        self.closed = True
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(TransportError(reason="CDP connection closed"))
        self._pending.clear()
        if self._on_close is not None:
            self._on_close()

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self.ws.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._reader
        self._mark_closed()


@dataclass
class CdpTarget:
    target_id: str
    title: str
    url: str
    ws_url: str
    label: str
    conn: CdpConnection | None = None

    def describe(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "title": self.title,
            "url": self.url,
            "targetId": self.target_id,
            "attached": self.conn is not None and not self.conn.closed,
        }


def _matches(target: dict[str, Any], matcher: str) -> bool:
    if target.get("id") == matcher:
        return True
    return matcher in str(target.get("title") or "") or matcher in str(target.get("url") or "")


def assign_labels(pages: list[dict[str, Any]], window_labels: dict[str, str]) -> dict[str, str]:
    """Map target id -> label.

    Configured matchers claim targets first (in configuration order); every other
    target is labelled by its id.
    """
    labels: dict[str, str] = {}
    for label, matcher in window_labels.items():
        for page in pages:
            tid = str(page.get("id") or "")
            if tid and tid not in labels and _matches(page, matcher):
                labels[tid] = label
                break
    for page in pages:
        tid = str(page.get("id") or "")
        if tid and tid not in labels:
            labels[tid] = tid
    return labels


class CdpEventBus(EventBus):
    def __init__(self, config: BridgeConfig, *, fetch_json: Callable[[str], Any] | None = None) -> None:
        super().__init__()
        self.config = config
        self.default_label = config.default_window
        self._fetch_json = fetch_json or _http_get_json
        self._targets: dict[str, CdpTarget] = {}
        self._attach_locks: dict[str, asyncio.Lock] = {}
        self._closed = False

    # ─────────────────────────────────────────────────────────────────────────
    # Targets
    # ─────────────────────────────────────────────────────────────────────────

    async def refresh(self) -> list[CdpTarget]:
        raw = await asyncio.to_thread(self._fetch_json, f"{self.config.cdp_endpoint}/json/list")
        pages = [
            t
            for t in (raw if isinstance(raw, list) else [])
            if isinstance(t, dict) and t.get("type") in _PAGE_TYPES and t.get("webSocketDebuggerUrl") and t.get("id")
        ]
        labels = assign_labels(pages, self.config.window_labels)

        fresh: dict[str, CdpTarget] = {}
        for page in pages:
            tid = str(page["id"])
            prev = self._targets.get(tid)
            target = CdpTarget(
                target_id=tid,
                title=str(page.get("title") or ""),
                url=str(page.get("url") or ""),
                ws_url=str(page["webSocketDebuggerUrl"]),
                label=labels[tid],
                conn=prev.conn if prev is not None else None,
            )
            fresh[tid] = target
            if target.conn is not None:
                target.conn.set_event_sink(self._sink_for(target))

        for tid, gone in self._targets.items():
            if tid not in fresh and gone.conn is not None:
                logger.info("cdp_target_gone id=%s label=%s", tid, gone.label)
                await gone.conn.close()
        self._targets = fresh
        return list(fresh.values())

    def _find(self, label: str) -> CdpTarget | None:
        for target in self._targets.values():
            if target.label == label:
                return target
        return self._targets.get(label)

    def _lookup(self, label: str) -> CdpTarget | None:
        target = self._find(label)
        if target is None and label == self.default_label and self._targets:
            # Default window falls back to the first page target.
            target = next(iter(self._targets.values()))
        return target

    async def windows(self) -> list[dict[str, Any]]:
        targets = await self.refresh()
        out = [t.describe() for t in targets]
        if out and not any(w["label"] == self.default_label for w in out):
            out[0] = {**out[0], "aliases": [self.default_label]}
        return out

    async def resolve_label(self, label: str | None) -> str:
        wanted = (label or self.default_label).strip() or self.default_label
        target = self._lookup(wanted)
        if target is None:
            await self.refresh()
            target = self._lookup(wanted)
        if target is None:
            raise WindowNotFound(
                reason=f"Window not found: {wanted}",
                suggestion="Call list_windows to see the available labels",
                details={"available": sorted(t.label for t in self._targets.values())},
            )
        return target.label

    # ─────────────────────────────────────────────────────────────────────────
    # Attach + runtime injection
    # ─────────────────────────────────────────────────────────────────────────

    def _sink_for(self, target: CdpTarget) -> Callable[[dict[str, Any]], None]:
        def _sink(message: dict[str, Any]) -> None:
            if message.get("method") != "Runtime.bindingCalled":
                return
            params = message.get("params") or {}
            if params.get("name") != BINDING_NAME:
                return
            try:
                envelope = json.loads(params.get("payload") or "")
            except ValueError:
                logger.debug("binding_payload_invalid label=%s", target.label)
                return
            if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
                return
            self.deliver(target.label, envelope["event"], envelope.get("payload"))

        return _sink

    async def _attach(self, target: CdpTarget) -> CdpConnection:
        lock = self._attach_locks.setdefault(target.target_id, asyncio.Lock())
        async with lock:
            if target.conn is not None and not target.conn.closed:
                return target.conn
            conn = await CdpConnection.open(target.ws_url)
            conn.set_event_sink(self._sink_for(target))

            def _closed(t: CdpTarget = target, c: CdpConnection = conn) -> None:
                if t.conn is c:
                    t.conn = None

            conn.set_close_callback(_closed)
            try:
                await conn.send("Runtime.enable")
                await conn.send("Runtime.addBinding", {"name": BINDING_NAME})
                await conn.send("Page.addScriptToEvaluateOnNewDocument", {"source": WEBVIEW_SCRIPT_SOURCE})
                await self._inject(conn)
            except Exception:
                await conn.close()
                raise
            target.conn = conn
            logger.info(
                "cdp_attached label=%s id=%s runtime=%s", target.label, target.target_id, WEBVIEW_SCRIPT_VERSION
            )
            return conn

    @staticmethod
    async def _inject(conn: CdpConnection) -> None:
        await conn.send("Runtime.evaluate", {"expression": WEBVIEW_SCRIPT_SOURCE, "returnByValue": True})

    async def emit(self, label: str, event: str, payload: Any) -> None:
        if self._closed:
            raise TransportError(reason="Event bus is closed")
        target = self._lookup(label)
        if target is None:
            raise WindowNotFound(reason=f"Window not found: {label}")
        conn = await self._attach(target)

        expression = (
            "(globalThis.__webviewMcp && typeof globalThis.__webviewMcp.dispatch === 'function')"
            f" ? globalThis.__webviewMcp.dispatch({json.dumps(event)}, {json.dumps(payload)}) : false"
        )
        for attempt in range(2):
            result = await conn.send("Runtime.evaluate", {"expression": expression, "returnByValue": True})
            if result.get("exceptionDetails"):
                text = (result["exceptionDetails"] or {}).get("text") or "evaluation failed"
                raise TransportError(reason=f"Failed to deliver {event} to {label}: {text}")
            if (result.get("result") or {}).get("value") is True:
                return
            if attempt == 0:
                # The page navigated before the new-document script ran; install again.
                logger.debug("runtime_missing label=%s event=%s", label, event)
                await self._inject(conn)
        raise TransportError(reason=f"Webview runtime unavailable in {label}")

    async def close(self) -> None:
        self._closed = True
        for target in self._targets.values():
            if target.conn is not None:
                await target.conn.close()
                target.conn = None


__all__ = ["CdpConnection", "CdpEventBus", "CdpTarget", "assign_labels"]
