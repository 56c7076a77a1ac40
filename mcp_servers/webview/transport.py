"""
Socket listener.

One asyncio server (Unix domain socket or TCP). For every connection:
- a DispatchSession (own bridge, own pending table),
- one task per request, so responses are written as soon as they are ready
  (pipelining, any order) under a per-connection write lock,
- on disconnect: in-flight tasks are cancelled and the session is drained.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import BridgeConfig
from .dispatch import CommandDispatcher, DispatchSession
from .protocol import MAX_FRAME_BYTES, FrameCodec, MalformedRequest, Request, Response, parse_request

logger = logging.getLogger("mcp.webview.transport")


@dataclass(slots=True)
class _Connection:
    name: str
    writer: asyncio.StreamWriter
    session: DispatchSession
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    tasks: set[asyncio.Task] = field(default_factory=set)


def _remove_stale_socket(path: Path) -> None:
    try:
        st = path.lstat()
    except FileNotFoundError:
        return
    if not stat.S_ISSOCK(st.st_mode):
        raise RuntimeError(f"Refusing to replace non-socket file at {path}")
    path.unlink()


class TransportListener:
    def __init__(self, dispatcher: CommandDispatcher, config: BridgeConfig) -> None:
        self.dispatcher = dispatcher
        self.config = config
        self.codec = FrameCodec(config.framing)
        self._server: asyncio.AbstractServer | None = None
        self._connections: dict[str, _Connection] = {}
        self._socket_path: Path | None = None
        self._next_conn = 1
        self.address: str = ""

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> str:
        kind = self.config.socket_type
        if kind == "unix" and not hasattr(asyncio, "start_unix_server"):
            logger.warning(
                "Unix domain sockets are unavailable on this platform; listening on tcp://%s:%s instead",
                self.config.tcp_host,
                self.config.tcp_port,
            )
            kind = "tcp"

        # StreamReader limit bounds one ndjson line.
        limit = MAX_FRAME_BYTES + 1
        if kind == "unix":
            path = Path(self.config.socket_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            _remove_stale_socket(path)
            self._server = await asyncio.start_unix_server(self._handle_connection, path=str(path), limit=limit)
            with contextlib.suppress(OSError):
                path.chmod(0o600)
            self._socket_path = path
            self.address = f"unix://{path}"
        else:
            self._server = await asyncio.start_server(
                self._handle_connection, host=self.config.tcp_host, port=self.config.tcp_port, limit=limit
            )
            sock = self._server.sockets[0] if self._server.sockets else None
            port = sock.getsockname()[1] if sock is not None else self.config.tcp_port
            self.address = f"tcp://{self.config.tcp_host}:{port}"

        logger.info("listening on %s (framing=%s)", self.address, self.codec.framing)
        return self.address

    @property
    def port(self) -> int | None:
        if self._server is None or not self._server.sockets or self._socket_path is not None:
            return None
        return int(self._server.sockets[0].getsockname()[1])

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def close(self) -> None:
        server = self._server
        self._server = None
        if server is not None:
            server.close()
        for conn in list(self._connections.values()):
            with contextlib.suppress(Exception):
                conn.writer.close()
        if server is not None:
            with contextlib.suppress(Exception):
                await asyncio.wait_for(server.wait_closed(), timeout=2.0)
        if self._socket_path is not None:
            with contextlib.suppress(OSError):
                self._socket_path.unlink()
            self._socket_path = None

    # ─────────────────────────────────────────────────────────────────────────
    # Connections
    # ─────────────────────────────────────────────────────────────────────────

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        name = f"conn-{self._next_conn}"
        self._next_conn += 1
        conn = _Connection(name=name, writer=writer, session=self.dispatcher.open_session(name))
        self._connections[name] = conn
        logger.info("%s connected", name)
        try:
            await self._read_loop(conn, reader)
        except (ConnectionError, OSError) as exc:
            logger.info("%s read failed: %s", name, exc)
        finally:
            await self._teardown(conn)

    async def _read_loop(self, conn: _Connection, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                frame = await self.codec.read_frame(reader)
            except MalformedRequest as exc:
                await self._send(conn, Response.failure(None, exc))
                if exc.fatal:
                    logger.info("%s closing after bad frame: %s", conn.name, exc.reason)
                    return
                continue
            if frame is None:
                return
            if not frame:
                continue
            try:
                request = parse_request(frame)
            except MalformedRequest as exc:
                await self._send(conn, Response.failure(exc.request_id, exc))
                continue

            task = asyncio.get_running_loop().create_task(self._run(conn, request))
            conn.tasks.add(task)
            task.add_done_callback(conn.tasks.discard)

    async def _run(self, conn: _Connection, request: Request) -> None:
        response = await conn.session.handle(request)
        await self._send(conn, response)

    async def _send(self, conn: _Connection, response: Response) -> None:
        payload: dict[str, Any] = response.to_dict()
        async with conn.write_lock:
            try:
                await self.codec.write(conn.writer, payload)
            except (ConnectionError, OSError) as exc:
                logger.debug("%s dropped response id=%r: %s", conn.name, response.id, exc)

    async def _teardown(self, conn: _Connection) -> None:
        self._connections.pop(conn.name, None)
        tasks = list(conn.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        dropped = conn.session.close()
        with contextlib.suppress(Exception):
            conn.writer.close()
            await conn.writer.wait_closed()
        logger.info("%s disconnected (cancelled=%d, pending_dropped=%d)", conn.name, len(tasks), dropped)


__all__ = ["TransportListener"]
