from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .paths import default_socket_path

_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    # Above CRITICAL: nothing is emitted.
    "silent": logging.CRITICAL + 10,
}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def parse_window_labels(raw: str | None) -> dict[str, str]:
    """Parse `label=matcher,label2=matcher2` into a mapping.

    A matcher is compared against a page target's id, then as a substring of its
    title and url.
    """
    out: dict[str, str] = {}
    for part in (raw or "").split(","):
        label, sep, matcher = part.partition("=")
        label = label.strip()
        matcher = matcher.strip()
        if sep and label and matcher:
            out[label] = matcher
    return out


@dataclass
class BridgeConfig:
    socket_type: str = "unix"
    socket_path: str = ""
    tcp_host: str = "127.0.0.1"
    tcp_port: int = 9223
    framing: str = "ndjson"
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    window_labels: dict[str, str] = field(default_factory=dict)
    default_window: str = "main"
    iframe_selector: str = "iframe"
    log_level: str = "info"
    app_command: list[str] = field(default_factory=list)
    request_timeout: float = 60.0

    @staticmethod
    def normalize_socket_type(raw: str | None) -> str:
        kind = (raw or "").strip().lower()
        if kind in {"tcp", "inet", "network"}:
            return "tcp"
        return "unix"

    @staticmethod
    def normalize_framing(raw: str | None) -> str:
        kind = (raw or "").strip().lower()
        if kind in {"length", "length-prefixed", "lp", "binary"}:
            return "length"
        return "ndjson"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        socket_path = (os.environ.get("MCP_WEBVIEW_SOCKET_PATH") or "").strip()
        app_raw = (os.environ.get("MCP_WEBVIEW_APP_COMMAND") or "").strip()
        return cls(
            socket_type=cls.normalize_socket_type(os.environ.get("MCP_WEBVIEW_SOCKET")),
            socket_path=socket_path or str(default_socket_path()),
            tcp_host=(os.environ.get("MCP_WEBVIEW_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            tcp_port=_env_int("MCP_WEBVIEW_PORT", 9223),
            framing=cls.normalize_framing(os.environ.get("MCP_WEBVIEW_FRAMING")),
            cdp_host=(os.environ.get("MCP_WEBVIEW_CDP_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=_env_int("MCP_WEBVIEW_CDP_PORT", 9222),
            window_labels=parse_window_labels(os.environ.get("MCP_WEBVIEW_WINDOWS")),
            default_window=(os.environ.get("MCP_WEBVIEW_DEFAULT_WINDOW") or "main").strip() or "main",
            iframe_selector=(os.environ.get("MCP_WEBVIEW_IFRAME_SELECTOR") or "iframe").strip() or "iframe",
            log_level=(os.environ.get("MCP_WEBVIEW_LOG_LEVEL") or "info").strip().lower(),
            app_command=app_raw.split() if app_raw else [],
            request_timeout=_env_float("MCP_WEBVIEW_REQUEST_TIMEOUT", 60.0),
        )

    @property
    def cdp_endpoint(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def logging_level(self) -> int:
        return _LOG_LEVELS.get(self.log_level, logging.INFO)

    def describe_listener(self) -> str:
        if self.socket_type == "tcp":
            return f"tcp://{self.tcp_host}:{self.tcp_port}"
        return f"unix://{self.socket_path}"


def configure_logging(config: BridgeConfig) -> None:
    """Route all `mcp.webview.*` logging to stderr (stdout carries protocol frames)."""
    logging.basicConfig(
        level=config.logging_level(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    logging.getLogger("mcp.webview").setLevel(config.logging_level())
