"""
Socket clients for the webview host.

`BridgeClient` is the asyncio client: one persistent connection, any number of
concurrent requests (pipelined; responses are matched by id).

`SyncBridgeClient` wraps it for blocking callers (the MCP stdio adapter): the
client's event loop runs on a daemon thread and calls cross over with
`run_coroutine_threadsafe`.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import json
import logging
import threading
import time
from typing import Any

from .config import BridgeConfig
from .errors import BridgeTimeout, TransportError, error_from_kind
from .protocol import FrameCodec, MalformedRequest

logger = logging.getLogger("mcp.webview.client")


class BridgeClient:
    def __init__(self, config: BridgeConfig | None = None) -> None:
        self.config = config or BridgeConfig.from_env()
        self.codec = FrameCodec(self.config.framing)
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task | None = None
        self._write_lock: asyncio.Lock | None = None
        self._pending: dict[Any, asyncio.Future] = {}
        self._next_id = 1

    @property
    def connected(self) -> bool:
        return self._writer is not None and self._read_task is not None and not self._read_task.done()

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            if self.config.socket_type == "unix" and hasattr(asyncio, "open_unix_connection"):
                reader, writer = await asyncio.open_unix_connection(self.config.socket_path)
            else:
                reader, writer = await asyncio.open_connection(self.config.tcp_host, self.config.tcp_port)
        except OSError as exc:
            raise TransportError(
                reason=f"Cannot connect to webview host at {self.config.describe_listener()}: {exc}",
                suggestion="Start the host with webview-mcp-host",
            ) from exc
        self._reader, self._writer = reader, writer
        self._write_lock = asyncio.Lock()
        self._read_task = asyncio.get_running_loop().create_task(self._read_loop(reader))

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                try:
                    frame = await self.codec.read_frame(reader)
                except MalformedRequest as exc:
                    logger.debug("client dropped bad frame: %s", exc.reason)
                    if exc.fatal:
                        return
                    continue
                if frame is None:
                    return
                if not frame:
                    continue
                try:
                    msg = json.loads(frame.decode("utf-8"))
                except (UnicodeDecodeError, ValueError):
                    logger.debug("client dropped undecodable frame")
                    continue
                if not isinstance(msg, dict):
                    continue
                fut = self._pending.pop(msg.get("id"), None)
                if fut is not None and not fut.done():
                    fut.set_result(msg)
        except (ConnectionError, OSError) as exc:
            logger.debug("client read failed: %s", exc)
        finally:
            for fut in self._pending.values():
                if not fut.done():
                    fut.set_exception(TransportError(reason="Connection to webview host closed"))
            self._pending.clear()

    async def request_raw(self, command: str, params: Any = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Send one request and return the raw response envelope."""
        await self.connect()
        assert self._writer is not None and self._write_lock is not None
        req_id = self._next_id
        self._next_id += 1
        fut = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut

        envelope: dict[str, Any] = {"id": req_id, "command": command}
        if params is not None:
            envelope["params"] = params
        try:
            async with self._write_lock:
                await self.codec.write(self._writer, envelope)
        except (ConnectionError, OSError) as exc:
            self._pending.pop(req_id, None)
            raise TransportError(reason=f"Failed to send {command}: {exc}") from exc

        limit = self.config.request_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(fut, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise BridgeTimeout(reason=f"No response for {command} within {limit:g}s") from exc
        finally:
            self._pending.pop(req_id, None)

    async def request(self, command: str, params: Any = None, *, timeout: float | None = None) -> Any:
        """Send one request; return `data` or raise the typed error from the envelope."""
        msg = await self.request_raw(command, params, timeout=timeout)
        if msg.get("success"):
            return msg.get("data")
        details = msg.get("details") if isinstance(msg.get("details"), dict) else None
        raise error_from_kind(msg.get("errorKind"), str(msg.get("error") or "Unknown error"), details=details)

    async def close(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is not None:
            with contextlib.suppress(Exception):
                writer.close()
                await writer.wait_closed()
        if self._read_task is not None:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await asyncio.wait_for(self._read_task, timeout=1.0)
            self._read_task = None

    async def __aenter__(self) -> BridgeClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


class SyncBridgeClient:
    """Blocking facade over BridgeClient (event loop on a daemon thread)."""

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self.config = config or BridgeConfig.from_env()
        self._client = BridgeClient(self.config)
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    def start(self, *, wait_timeout: float = 5.0) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._ready.clear()
            t = threading.Thread(target=self._run_thread, name="webview-mcp-client", daemon=True)
            self._thread = t
            t.start()
        if not self._ready.wait(timeout=max(0.05, float(wait_timeout))):
            raise RuntimeError("Webview client loop failed to start")

    def _run_thread(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(self._client.close())
            loop.close()
            self._loop = None

    def request(self, command: str, params: Any = None, *, timeout: float | None = None) -> Any:
        self.start()
        loop = self._loop
        if loop is None:
            raise TransportError(reason="Webview client loop is not running")
        limit = self.config.request_timeout if timeout is None else timeout
        fut = asyncio.run_coroutine_threadsafe(self._client.request(command, params, timeout=limit), loop)
        deadline = time.time() + limit + 1.0
        try:
            return fut.result(timeout=max(0.1, deadline - time.time()))
        except concurrent.futures.TimeoutError as exc:
            fut.cancel()
            raise BridgeTimeout(reason=f"No response for {command} within {limit:g}s") from exc

    def close(self, *, timeout: float = 2.0) -> None:
        loop = self._loop
        if loop is not None:
            with contextlib.suppress(Exception):
                asyncio.run_coroutine_threadsafe(self._client.close(), loop).result(timeout=timeout)
            loop.call_soon_threadsafe(loop.stop)
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        self._thread = None


__all__ = ["BridgeClient", "SyncBridgeClient"]
