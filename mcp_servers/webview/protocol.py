"""
Socket envelopes and framing.

Request:  {"id": <any>, "command": "<name>", "params": {...} | "<string>"}
Response: {"id": <echo>, "success": true, "data": <any>}
          {"id": <echo>, "success": false, "error": "<message>", "errorKind": "<kind>"}

Two symmetric framings are supported on the same envelopes:
- ndjson: one JSON document per line
- length: 4-byte little-endian length prefix + UTF-8 JSON
"""

from __future__ import annotations

import asyncio
import json
import struct
from dataclasses import dataclass
from typing import Any

from .errors import BridgeError, ExecutionError, InvalidParams

MAX_FRAME_BYTES = 8_000_000


@dataclass(frozen=True, slots=True)
class Request:
    id: Any
    command: str
    params: Any = None


@dataclass(frozen=True, slots=True)
class Response:
    id: Any
    success: bool
    data: Any = None
    error: str | None = None
    error_kind: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def ok(cls, request_id: Any, data: Any) -> Response:
        return cls(id=request_id, success=True, data=data)

    @classmethod
    def failure(cls, request_id: Any, exc: BaseException) -> Response:
        if isinstance(exc, BridgeError):
            return cls(
                id=request_id,
                success=False,
                error=exc.reason,
                error_kind=exc.kind,
                details=exc.details or None,
            )
        return cls(id=request_id, success=False, error=str(exc) or type(exc).__name__, error_kind=ExecutionError.kind)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "success": self.success}
        if self.success:
            out["data"] = self.data
            return out
        out["error"] = self.error or "Unknown error"
        if self.error_kind:
            out["errorKind"] = self.error_kind
        if self.details:
            out["details"] = self.details
        return out


class MalformedRequest(InvalidParams):
    """A frame that cannot be routed; `request_id` is kept when it could be recovered.

    `fatal` marks a framing error after which the stream cannot be read further.
    """

    request_id: Any = None
    fatal: bool = False


def parse_request(raw: bytes) -> Request:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedRequest(reason=f"Invalid JSON request: {exc}") from exc

    if not isinstance(obj, dict):
        raise MalformedRequest(reason="Request must be a JSON object")

    req_id = obj.get("id")
    command = obj.get("command")
    if not isinstance(command, str) or not command.strip():
        err = MalformedRequest(reason="Request is missing 'command'")
        err.request_id = req_id
        raise err
    return Request(id=req_id, command=command.strip(), params=obj.get("params"))


def encode_message(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class FrameCodec:
    """Reads and writes raw frames for one framing mode."""

    def __init__(self, framing: str = "ndjson") -> None:
        self.framing = "length" if framing == "length" else "ndjson"

    async def read_frame(self, reader: asyncio.StreamReader) -> bytes | None:
        """Return the next frame body (b"" for a blank line) or None on EOF.

        Raises MalformedRequest for an oversized ndjson line; the line is discarded
        and the stream stays usable. A zero or oversized length prefix raises a
        fatal MalformedRequest.
        """
        if self.framing == "length":
            try:
                header = await reader.readexactly(4)
            except asyncio.IncompleteReadError:
                return None
            (length,) = struct.unpack("<I", header)
            if length <= 0 or length > MAX_FRAME_BYTES:
                # The stream cannot be resynchronised after a bad length.
                err = MalformedRequest(reason=f"Invalid frame length {length} (expected 1..{MAX_FRAME_BYTES} bytes)")
                err.fatal = True
                raise err
            try:
                return await reader.readexactly(int(length))
            except asyncio.IncompleteReadError:
                return None

        try:
            line = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            line = exc.partial
            if not line:
                return None
        except asyncio.LimitOverrunError:
            await _discard_line(reader)
            raise MalformedRequest(reason=f"Request frame exceeds {MAX_FRAME_BYTES} bytes") from None
        return line.strip()

    def pack(self, payload: dict[str, Any]) -> bytes:
        raw = encode_message(payload)
        if self.framing == "length":
            return struct.pack("<I", len(raw)) + raw
        return raw + b"\n"

    async def write(self, writer: asyncio.StreamWriter, payload: dict[str, Any]) -> None:
        writer.write(self.pack(payload))
        await writer.drain()


async def _discard_line(reader: asyncio.StreamReader) -> None:
    while True:
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as exc:
            await reader.readexactly(exc.consumed)
        except asyncio.IncompleteReadError:
            return


__all__ = [
    "MAX_FRAME_BYTES",
    "FrameCodec",
    "MalformedRequest",
    "Request",
    "Response",
    "encode_message",
    "parse_request",
]
