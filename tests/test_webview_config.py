from __future__ import annotations

import logging

_ENV = [
    "MCP_WEBVIEW_SOCKET",
    "MCP_WEBVIEW_SOCKET_PATH",
    "MCP_WEBVIEW_HOST",
    "MCP_WEBVIEW_PORT",
    "MCP_WEBVIEW_FRAMING",
    "MCP_WEBVIEW_CDP_HOST",
    "MCP_WEBVIEW_CDP_PORT",
    "MCP_WEBVIEW_WINDOWS",
    "MCP_WEBVIEW_DEFAULT_WINDOW",
    "MCP_WEBVIEW_IFRAME_SELECTOR",
    "MCP_WEBVIEW_LOG_LEVEL",
    "MCP_WEBVIEW_APP_COMMAND",
    "MCP_WEBVIEW_REQUEST_TIMEOUT",
    "MCP_WEBVIEW_RUNTIME_DIR",
]


def _clear(monkeypatch) -> None:
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch, tmp_path) -> None:
    from mcp_servers.webview.config import BridgeConfig

    _clear(monkeypatch)
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))

    cfg = BridgeConfig.from_env()
    assert cfg.socket_type == "unix"
    assert cfg.socket_path == str(tmp_path / "webview-mcp" / "webview-mcp.sock")
    assert cfg.framing == "ndjson"
    assert cfg.cdp_endpoint == "http://127.0.0.1:9222"
    assert cfg.default_window == "main"
    assert cfg.iframe_selector == "iframe"
    assert cfg.window_labels == {}
    assert cfg.app_command == []
    assert cfg.request_timeout == 60.0
    assert cfg.logging_level() == logging.INFO


def test_env_overrides(monkeypatch) -> None:
    from mcp_servers.webview.config import BridgeConfig

    _clear(monkeypatch)
    monkeypatch.setenv("MCP_WEBVIEW_SOCKET", "TCP")
    monkeypatch.setenv("MCP_WEBVIEW_PORT", "7001")
    monkeypatch.setenv("MCP_WEBVIEW_FRAMING", "length-prefixed")
    monkeypatch.setenv("MCP_WEBVIEW_CDP_PORT", "not-a-number")
    monkeypatch.setenv("MCP_WEBVIEW_WINDOWS", "main=index.html, settings = Settings ,broken,=x")
    monkeypatch.setenv("MCP_WEBVIEW_APP_COMMAND", "/opt/app/bin/app --flag")
    monkeypatch.setenv("MCP_WEBVIEW_LOG_LEVEL", "SILENT")

    cfg = BridgeConfig.from_env()
    assert cfg.describe_listener() == "tcp://127.0.0.1:7001"
    assert cfg.framing == "length"
    assert cfg.cdp_port == 9222
    assert cfg.window_labels == {"main": "index.html", "settings": "Settings"}
    assert cfg.app_command == ["/opt/app/bin/app", "--flag"]
    assert cfg.logging_level() > logging.CRITICAL


def test_runtime_dir_prefers_explicit_env(monkeypatch, tmp_path) -> None:
    from mcp_servers.webview import paths

    monkeypatch.setenv("MCP_WEBVIEW_RUNTIME_DIR", str(tmp_path / "rt"))
    p = paths.runtime_dir()
    assert p == tmp_path / "rt"
    assert p.exists()
    assert paths.default_socket_path() == tmp_path / "rt" / "webview-mcp.sock"


def test_runtime_dir_infers_run_user(monkeypatch, tmp_path) -> None:
    from mcp_servers.webview import paths

    monkeypatch.delenv("MCP_WEBVIEW_RUNTIME_DIR", raising=False)
    monkeypatch.delenv("XDG_RUNTIME_DIR", raising=False)
    monkeypatch.setattr(paths, "_infer_xdg_runtime_dir", lambda _uid: tmp_path)

    p = paths.runtime_dir()
    assert p.exists()
    assert p.name == "webview-mcp"


def test_runtime_dir_falls_back_to_tmp(monkeypatch) -> None:
    from mcp_servers.webview import paths

    monkeypatch.delenv("MCP_WEBVIEW_RUNTIME_DIR", raising=False)
    monkeypatch.delenv("XDG_RUNTIME_DIR", raising=False)
    monkeypatch.setattr(paths, "_infer_xdg_runtime_dir", lambda _uid: None)

    p = paths.runtime_dir(create=False)
    assert p.parent.as_posix() == "/tmp"
    assert p.name.startswith("webview-mcp-")
