from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from mcp_servers.webview.cdp import CdpConnection, CdpEventBus, assign_labels
from mcp_servers.webview.config import BridgeConfig
from mcp_servers.webview.errors import TransportError, WindowNotFound
from mcp_servers.webview.scripts import BINDING_NAME, WEBVIEW_SCRIPT_SOURCE

PAGES = [
    {"id": "T1", "type": "page", "title": "Main", "url": "app://index.html", "webSocketDebuggerUrl": "ws://x/T1"},
    {"id": "T2", "type": "page", "title": "Settings", "url": "app://settings.html", "webSocketDebuggerUrl": "ws://x/T2"},
    {"id": "W1", "type": "service_worker", "title": "sw", "url": "app://sw.js", "webSocketDebuggerUrl": "ws://x/W1"},
    {"id": "T3", "type": "page", "title": "Detached", "url": "about:blank"},
]


class FakeWs:
    """Websocket double: answers CDP commands through `reply(msg) -> result`."""

    def __init__(self, reply) -> None:
        self.reply = reply
        self.sent: list[dict[str, Any]] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        msg = json.loads(raw)
        self.sent.append(msg)
        await self._inbox.put(json.dumps({"id": msg["id"], "result": self.reply(msg)}))

    def push_event(self, method: str, params: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps({"method": method, "params": params}))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self._inbox.put_nowait(None)


def _connect(ws: FakeWs) -> CdpConnection:
    conn = CdpConnection(ws, "ws://fake")
    conn._reader = asyncio.get_running_loop().create_task(conn._read_loop())  # noqa: SLF001
    return conn


def test_assign_labels_prefers_configured_matchers() -> None:
    labels = assign_labels(PAGES[:2], {"main": "index.html", "prefs": "Settings"})
    assert labels == {"T1": "main", "T2": "prefs"}

    # A matcher claims at most one target; unclaimed targets keep their id.
    labels = assign_labels(PAGES[:2], {"main": "app://"})
    assert labels == {"T1": "main", "T2": "T2"}


def test_refresh_filters_targets_and_default_label_aliases_first_page() -> None:
    async def _main() -> None:
        bus = CdpEventBus(BridgeConfig(), fetch_json=lambda _url: PAGES)
        windows = await bus.windows()
        assert [w["targetId"] for w in windows] == ["T1", "T2"]
        assert windows[0]["aliases"] == ["main"]
        assert await bus.resolve_label(None) == "T1"
        assert await bus.resolve_label("T2") == "T2"

        with pytest.raises(WindowNotFound) as excinfo:
            await bus.resolve_label("ghost")
        assert excinfo.value.details["available"] == ["T1", "T2"]

    asyncio.run(_main())


def test_configured_labels_resolve() -> None:
    async def _main() -> None:
        config = BridgeConfig(window_labels={"main": "index.html", "settings": "settings.html"})
        bus = CdpEventBus(config, fetch_json=lambda _url: PAGES)
        windows = await bus.windows()
        assert [w["label"] for w in windows] == ["main", "settings"]
        assert "aliases" not in windows[0]
        assert await bus.resolve_label("settings") == "settings"

    asyncio.run(_main())


def test_unreachable_endpoint_is_a_transport_error() -> None:
    def _down(_url: str) -> Any:
        raise TransportError(reason="CDP endpoint unavailable")

    async def _main() -> None:
        bus = CdpEventBus(BridgeConfig(), fetch_json=_down)
        with pytest.raises(TransportError):
            await bus.resolve_label("main")

    asyncio.run(_main())


def test_connection_routes_results_and_events() -> None:
    async def _main() -> None:
        ws = FakeWs(lambda msg: {"echo": msg["method"]})
        conn = _connect(ws)
        events: list[dict[str, Any]] = []
        conn.set_event_sink(events.append)

        assert await conn.send("Runtime.enable") == {"echo": "Runtime.enable"}
        ws.push_event("Runtime.consoleAPICalled", {"type": "log"})
        await asyncio.sleep(0.01)
        assert events[0]["method"] == "Runtime.consoleAPICalled"

        await conn.close()
        assert conn.closed
        with pytest.raises(TransportError):
            await conn.send("Runtime.enable")

    asyncio.run(_main())


def test_binding_calls_become_host_events() -> None:
    async def _main() -> None:
        bus = CdpEventBus(BridgeConfig(), fetch_json=lambda _url: PAGES)
        targets = await bus.refresh()
        got: list[tuple[str, Any]] = []
        bus.listen("execute-js-response", lambda label, payload: got.append((label, payload)))

        sink = bus._sink_for(targets[0])  # noqa: SLF001
        body = {"event": "execute-js-response", "payload": {"correlationId": "req-1", "success": True, "data": "2"}}
        sink({"method": "Runtime.bindingCalled", "params": {"name": BINDING_NAME, "payload": json.dumps(body)}})
        sink({"method": "Runtime.bindingCalled", "params": {"name": "otherBinding", "payload": json.dumps(body)}})
        sink({"method": "Runtime.bindingCalled", "params": {"name": BINDING_NAME, "payload": "{broken"}})

        assert got == [("T1", body["payload"])]

    asyncio.run(_main())


def test_emit_reinjects_runtime_once() -> None:
    async def _main() -> None:
        answers = iter([False, True])

        def _reply(msg: dict[str, Any]) -> dict[str, Any]:
            expr = (msg.get("params") or {}).get("expression", "")
            if "__webviewMcp.dispatch(" in expr:
                return {"result": {"type": "boolean", "value": next(answers)}}
            return {}

        ws = FakeWs(_reply)
        bus = CdpEventBus(BridgeConfig(), fetch_json=lambda _url: PAGES)
        await bus.refresh()
        conn = _connect(ws)
        bus._targets["T1"].conn = conn  # noqa: SLF001

        await bus.emit("T1", "execute-js", {"code": "1", "correlationId": "req-1"})
        methods = [m["method"] for m in ws.sent]
        assert methods == ["Runtime.evaluate", "Runtime.evaluate", "Runtime.evaluate"]
        assert '"correlationId": "req-1"' in ws.sent[0]["params"]["expression"]
        assert ws.sent[1]["params"]["expression"] == WEBVIEW_SCRIPT_SOURCE
        await bus.close()

    asyncio.run(_main())


def test_emit_fails_when_runtime_never_installs() -> None:
    async def _main() -> None:
        ws = FakeWs(lambda msg: {"result": {"type": "boolean", "value": False}})
        bus = CdpEventBus(BridgeConfig(), fetch_json=lambda _url: PAGES)
        await bus.refresh()
        bus._targets["T1"].conn = _connect(ws)  # noqa: SLF001
        with pytest.raises(TransportError) as excinfo:
            await bus.emit("T1", "got-dom-content", {})
        assert "runtime unavailable" in excinfo.value.reason
        await bus.close()

    asyncio.run(_main())
