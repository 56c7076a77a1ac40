"""
Tool registry for the MCP adapter.

Every tool forwards its arguments to the host command of the same name; a few
tools reshape the host's data into MCP content (screenshots become images).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .contract import tool_names
from .types import ToolResult

if TYPE_CHECKING:
    from ..client import SyncBridgeClient

logger = logging.getLogger("mcp.webview.registry")

HandlerFunc = Callable[["SyncBridgeClient", str, dict[str, Any]], ToolResult]


def forward(client: SyncBridgeClient, name: str, arguments: dict[str, Any]) -> ToolResult:
    data = client.request(name, arguments)
    if isinstance(data, str):
        return ToolResult.text(data)
    return ToolResult.json(data)


def capture_screenshot(client: SyncBridgeClient, name: str, arguments: dict[str, Any]) -> ToolResult:
    data = client.request(name, arguments)
    if not isinstance(data, dict):
        return ToolResult.json(data)
    data_url = str(data.get("data") or "")
    _, _, b64 = data_url.partition(",")
    meta = {k: v for k, v in data.items() if k != "data"}
    summary = f"{meta.get('width')}x{meta.get('height')} {meta.get('mimeType')} ({meta.get('bytes')} bytes)"
    for warning in meta.get("warnings") or []:
        summary += f"\nwarning: {warning.get('message')}"
    if meta.get("path"):
        summary += f"\nsaved: {meta['path']}"
    return ToolResult.with_image(summary, b64, str(meta.get("mimeType") or "image/jpeg"), data=meta)


class ToolRegistry:
    """Registry for tool handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerFunc] = {}

    def register(self, name: str, handler: HandlerFunc) -> None:
        self._handlers[name] = handler

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, client: SyncBridgeClient, arguments: dict[str, Any]) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown tool: {name}")
        return handler(client, name, arguments)


def create_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    for name in tool_names():
        registry.register(name, forward)
    registry.register("capture_screenshot", capture_screenshot)
    return registry


__all__ = ["ToolRegistry", "capture_screenshot", "create_default_registry", "forward"]
