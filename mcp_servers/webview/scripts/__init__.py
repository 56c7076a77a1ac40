"""In-webview JavaScript shipped with the host."""

from __future__ import annotations

from .capture import FRAME_CAPTURE_TIMEOUT_MS
from .frames import DEFAULT_IFRAME_RPC_TIMEOUT_MS, FRAME_AGENT_SCRIPT_SOURCE, FRAME_AGENT_SCRIPT_VERSION
from .runtime import BINDING_NAME, WEBVIEW_SCRIPT_SOURCE, WEBVIEW_SCRIPT_VERSION

__all__ = [
    "BINDING_NAME",
    "DEFAULT_IFRAME_RPC_TIMEOUT_MS",
    "FRAME_AGENT_SCRIPT_SOURCE",
    "FRAME_AGENT_SCRIPT_VERSION",
    "FRAME_CAPTURE_TIMEOUT_MS",
    "WEBVIEW_SCRIPT_SOURCE",
    "WEBVIEW_SCRIPT_VERSION",
]
