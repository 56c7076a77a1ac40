from __future__ import annotations

import asyncio
import base64
import threading
import time
from pathlib import Path
from typing import Any

import pytest

from mcp_servers.webview.errors import BridgeTimeout, ElementNotFound


class FakeClient:
    def __init__(self, answers: dict[str, Any]) -> None:
        self.answers = answers
        self.calls: list[tuple[str, Any]] = []

    def request(self, command: str, params: Any = None, *, timeout: float | None = None) -> Any:
        self.calls.append((command, params))
        answer = self.answers[command]
        if isinstance(answer, Exception):
            raise answer
        return answer


def _server(answers: dict[str, Any]):
    from mcp_servers.webview.config import BridgeConfig
    from mcp_servers.webview.main import McpServer

    out: list[dict[str, Any]] = []
    client = FakeClient(answers)
    return McpServer(BridgeConfig(), client=client, write=out.append), client, out


def test_initialize_and_tools_list(monkeypatch) -> None:
    monkeypatch.delenv("MCP_WEBVIEW_TOOLS", raising=False)
    server, _client, out = _server({})

    server.dispatch({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2024-11-05"}})
    assert out[-1]["result"]["protocolVersion"] == "2024-11-05"
    assert out[-1]["result"]["serverInfo"]["name"] == "webview"

    server.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert len(out) == 1

    server.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    names = {t["name"] for t in out[-1]["result"]["tools"]}
    assert names == {
        "get_dom",
        "capture_screenshot",
        "get_element_position",
        "send_text_to_element",
        "execute_js",
        "manage_local_storage",
        "iframe_rpc",
        "list_windows",
    }
    for tool in out[-1]["result"]["tools"]:
        assert tool["inputSchema"]["type"] == "object"

    monkeypatch.setenv("MCP_WEBVIEW_TOOLS", "get_dom, execute_js")
    server.dispatch({"jsonrpc": "2.0", "id": 3, "method": "tools/list"})
    assert [t["name"] for t in out[-1]["result"]["tools"]] == ["get_dom", "execute_js"]


def test_unknown_method_and_ping() -> None:
    server, _client, out = _server({})
    server.dispatch({"jsonrpc": "2.0", "id": 9, "method": "resources/list"})
    assert out[-1]["error"]["code"] == -32601
    server.dispatch({"jsonrpc": "2.0", "id": 10, "method": "ping"})
    assert out[-1] == {"jsonrpc": "2.0", "id": 10, "result": {}}


def test_tool_call_forwards_arguments() -> None:
    server, client, out = _server({"execute_js": "42", "list_windows": {"windows": [], "defaultWindow": "main"}})

    server.dispatch(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "execute_js", "arguments": {"code": "6*7"}}}
    )
    assert client.calls[-1] == ("execute_js", {"code": "6*7"})
    assert out[-1]["result"] == {"content": [{"type": "text", "text": "42"}], "isError": False}

    server.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "list_windows"}})
    assert '"defaultWindow": "main"' in out[-1]["result"]["content"][0]["text"]


def test_tool_errors_are_is_error_results() -> None:
    server, _client, out = _server(
        {"get_element_position": ElementNotFound(reason="Element with id 'x' not found", details={"selectorType": "id"})}
    )
    server.dispatch(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/call",
            "params": {"name": "get_element_position", "arguments": {"selector_type": "id", "selector_value": "x"}},
        }
    )
    result = out[-1]["result"]
    assert result["isError"] is True
    assert "ElementNotFound" in result["content"][0]["text"]

    server.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "format_disk"}})
    assert out[-1]["result"]["isError"] is True
    assert "Unknown tool" in out[-1]["result"]["content"][0]["text"]


def test_screenshot_becomes_image_content() -> None:
    jpeg = b"\xff\xd8\xff\xe0fake"
    b64 = base64.b64encode(jpeg).decode()
    server, _client, _out = _server(
        {
            "capture_screenshot": {
                "data": f"data:image/jpeg;base64,{b64}",
                "mimeType": "image/jpeg",
                "width": 800,
                "height": 600,
                "bytes": len(jpeg),
                "warnings": [{"kind": "PartialResult", "message": "1 of 2 embedded frame(s) were not composited"}],
            }
        }
    )
    result = server.call_tool("capture_screenshot", {"max_width": 800})
    text, image = result.to_content_list()
    assert image == {"type": "image", "data": b64, "mimeType": "image/jpeg"}
    assert text["text"].startswith("800x600 image/jpeg")
    assert "not composited" in text["text"]
    assert "data" not in result.data


def test_sync_client_against_running_host(tmp_path: Path) -> None:
    if not hasattr(asyncio, "start_unix_server"):
        pytest.skip("unix sockets unavailable")

    from mcp_servers.webview.bus import LocalEventBus, LocalWebview
    from mcp_servers.webview.client import SyncBridgeClient
    from mcp_servers.webview.config import BridgeConfig
    from mcp_servers.webview.host import run_host

    config = BridgeConfig(socket_type="unix", socket_path=str(tmp_path / "host.sock"), request_timeout=5.0)
    state: dict[str, Any] = {}
    ready = threading.Event()

    async def _dom(view: LocalWebview, payload: Any) -> None:
        await view.emit(
            "got-dom-content-response",
            {"correlationId": payload["correlationId"], "success": True, "data": "<html><body>hi</body></html>"},
        )

    async def _serve() -> None:
        bus = LocalEventBus()
        bus.add_webview("main").on("got-dom-content", _dom)
        state["loop"] = asyncio.get_running_loop()
        state["stop"] = asyncio.Event()
        on_ready = state["loop"].create_future()
        on_ready.add_done_callback(lambda _f: ready.set())
        await run_host(config, bus=bus, stop_event=state["stop"], on_ready=on_ready)

    thread = threading.Thread(target=lambda: asyncio.run(_serve()), daemon=True)
    thread.start()
    assert ready.wait(5.0)

    client = SyncBridgeClient(config)
    try:
        assert client.request("get_dom") == "<html><body>hi</body></html>"
        assert client.request("ping")["pong"] is True
        # No position handler in this webview: the client gives up first.
        with pytest.raises(BridgeTimeout):
            client.request("get_element_position", {"selector_type": "id", "selector_value": "nope"}, timeout=0.3)
    finally:
        client.close()
        state["loop"].call_soon_threadsafe(state["stop"].set)
        thread.join(timeout=5.0)

    deadline = time.time() + 2.0
    while (tmp_path / "host.sock").exists() and time.time() < deadline:
        time.sleep(0.05)
    assert not (tmp_path / "host.sock").exists()
