from __future__ import annotations

import asyncio
import json
import socket
import struct
from pathlib import Path
from typing import Any

import pytest

from mcp_servers.webview.bus import LocalEventBus, LocalWebview
from mcp_servers.webview.client import BridgeClient
from mcp_servers.webview.config import BridgeConfig
from mcp_servers.webview.dispatch import CommandDispatcher
from mcp_servers.webview.errors import ElementNotFound, UnknownCommand
from mcp_servers.webview.transport import TransportListener


def _bus() -> LocalEventBus:
    bus = LocalEventBus()
    view = bus.add_webview("main")

    async def _js(v: LocalWebview, payload: Any) -> None:
        # "sleep:<ms>" answers after a delay, anything else right away.
        code = str(payload.get("code") or "")
        if code.startswith("sleep:"):
            await asyncio.sleep(int(code.split(":", 1)[1]) / 1000)
        await v.emit("execute-js-response", {"correlationId": payload["correlationId"], "success": True, "data": code})

    async def _missing(v: LocalWebview, payload: Any) -> None:
        await v.emit(
            "get-element-position-response",
            {
                "correlationId": payload["correlationId"],
                "success": False,
                "error": "Element not found",
                "errorKind": "ElementNotFound",
            },
        )

    view.on("execute-js", _js)
    view.on("get-element-position", _missing)
    return bus


async def _start(config: BridgeConfig, bus: LocalEventBus | None = None) -> tuple[TransportListener, BridgeConfig]:
    listener = TransportListener(CommandDispatcher(bus or _bus(), config), config)
    await listener.start()
    if config.socket_type == "tcp":
        config = BridgeConfig(socket_type="tcp", tcp_port=int(listener.port or 0), framing=config.framing)
    return listener, config


def test_tcp_roundtrip_and_typed_errors() -> None:
    async def _main() -> None:
        listener, client_config = await _start(BridgeConfig(socket_type="tcp", tcp_port=0))
        try:
            async with BridgeClient(client_config) as client:
                assert await client.request("execute_js", {"code": "1+1"}) == "1+1"
                with pytest.raises(ElementNotFound):
                    await client.request("get_element_position", {"selector_type": "id", "selector_value": "x"})
                with pytest.raises(UnknownCommand):
                    await client.request("no_such_command")
        finally:
            await listener.close()

    asyncio.run(_main())


def test_unix_socket_is_private_and_replaces_stale_socket(tmp_path: Path) -> None:
    if not hasattr(asyncio, "start_unix_server"):
        pytest.skip("unix sockets unavailable")

    sock_path = tmp_path / "run" / "webview.sock"

    # A leftover socket file from a crashed host.
    sock_path.parent.mkdir(parents=True)
    stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    stale.bind(str(sock_path))
    stale.close()
    assert sock_path.exists()

    async def _main() -> None:
        config = BridgeConfig(socket_type="unix", socket_path=str(sock_path))
        second, _ = await _start(config)
        try:
            assert sock_path.exists()
            assert (sock_path.stat().st_mode & 0o777) == 0o600
            async with BridgeClient(config) as client:
                pong = await client.request("ping")
                assert pong["pong"] is True
        finally:
            await second.close()
        assert not sock_path.exists()

    asyncio.run(_main())


def test_refuses_to_replace_regular_file(tmp_path: Path) -> None:
    if not hasattr(asyncio, "start_unix_server"):
        pytest.skip("unix sockets unavailable")

    path = tmp_path / "not-a-socket"
    path.write_text("keep me")

    async def _main() -> None:
        listener = TransportListener(CommandDispatcher(_bus(), BridgeConfig()), BridgeConfig(socket_path=str(path)))
        with pytest.raises(RuntimeError):
            await listener.start()

    asyncio.run(_main())
    assert path.read_text() == "keep me"


def test_pipelined_responses_come_back_as_ready() -> None:
    async def _main() -> None:
        listener, client_config = await _start(BridgeConfig(socket_type="tcp", tcp_port=0))
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", client_config.tcp_port)
            writer.write(json.dumps({"id": "slow", "command": "execute_js", "params": {"code": "sleep:200"}}).encode() + b"\n")
            writer.write(json.dumps({"id": "fast", "command": "execute_js", "params": {"code": "fast"}}).encode() + b"\n")
            await writer.drain()

            first = json.loads(await asyncio.wait_for(reader.readline(), 2.0))
            second = json.loads(await asyncio.wait_for(reader.readline(), 2.0))
            assert first["id"] == "fast"
            assert second["id"] == "slow"
            assert second["data"] == "sleep:200"
            writer.close()
        finally:
            await listener.close()

    asyncio.run(_main())


def test_malformed_frames_get_error_envelopes_and_connection_survives() -> None:
    async def _main() -> None:
        listener, client_config = await _start(BridgeConfig(socket_type="tcp", tcp_port=0))
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", client_config.tcp_port)
            writer.write(b"{not json\n")
            writer.write(b'{"id": 5}\n')
            writer.write(b"\n")
            writer.write(b'{"id": 6, "command": "ping"}\n')
            await writer.drain()

            bad_json = json.loads(await asyncio.wait_for(reader.readline(), 2.0))
            assert bad_json["id"] is None
            assert bad_json["success"] is False
            assert bad_json["errorKind"] == "ExecutionError"
            assert bad_json["error"].startswith("Invalid JSON request")
            missing = json.loads(await asyncio.wait_for(reader.readline(), 2.0))
            assert missing["id"] == 5
            assert missing["success"] is False
            ok = json.loads(await asyncio.wait_for(reader.readline(), 2.0))
            assert ok["id"] == 6
            assert ok["success"] is True
            writer.close()
        finally:
            await listener.close()

    asyncio.run(_main())


def test_length_prefixed_framing() -> None:
    async def _main() -> None:
        listener, client_config = await _start(BridgeConfig(socket_type="tcp", tcp_port=0, framing="length"))
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", client_config.tcp_port)
            body = json.dumps({"id": 1, "command": "execute_js", "params": {"code": "ünïcode"}}).encode()
            writer.write(struct.pack("<I", len(body)) + body)
            await writer.drain()

            (length,) = struct.unpack("<I", await asyncio.wait_for(reader.readexactly(4), 2.0))
            reply = json.loads(await reader.readexactly(length))
            assert reply == {"id": 1, "success": True, "data": "ünïcode"}

            async with BridgeClient(client_config) as client:
                assert await client.request("execute_js", {"code": "via client"}) == "via client"
            writer.close()
        finally:
            await listener.close()

    asyncio.run(_main())

@pytest.mark.parametrize("length", [0, 8_000_001])
def test_bad_length_prefix_is_reported_before_close(length: int) -> None:
    async def _main() -> None:
        listener, client_config = await _start(BridgeConfig(socket_type="tcp", tcp_port=0, framing="length"))
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", client_config.tcp_port)
            writer.write(struct.pack("<I", length))
            await writer.drain()

            (size,) = struct.unpack("<I", await asyncio.wait_for(reader.readexactly(4), 2.0))
            reply = json.loads(await reader.readexactly(size))
            assert reply["id"] is None
            assert reply["success"] is False
            assert reply["errorKind"] == "ExecutionError"
            assert reply["error"].startswith(f"Invalid frame length {length}")
            assert await asyncio.wait_for(reader.read(), 2.0) == b""
            writer.close()
        finally:
            await listener.close()

    asyncio.run(_main())



def test_disconnect_cancels_only_that_connections_requests() -> None:
    async def _main() -> None:
        bus = _bus()
        listener, client_config = await _start(BridgeConfig(socket_type="tcp", tcp_port=0), bus)
        try:
            _reader, writer = await asyncio.open_connection("127.0.0.1", client_config.tcp_port)
            writer.write(json.dumps({"id": 1, "command": "execute_js", "params": {"code": "sleep:300"}}).encode() + b"\n")
            await writer.drain()
            await asyncio.sleep(0.05)
            assert listener.connection_count == 1

            async with BridgeClient(client_config) as client:
                writer.close()
                await asyncio.sleep(0.05)
                assert listener.connection_count == 1
                assert await client.request("execute_js", {"code": "still here"}) == "still here"
            await asyncio.sleep(0.05)
            assert listener.connection_count == 0
            # Only the closed connection's listener was registered and it is gone.
            assert bus.listener_count("execute-js-response") == 0
        finally:
            await listener.close()
            await bus.close()

    asyncio.run(_main())
