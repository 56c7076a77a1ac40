from __future__ import annotations

import os
from pathlib import Path

SOCKET_NAME = "webview-mcp.sock"


def _infer_xdg_runtime_dir(uid: int | None) -> Path | None:
    if uid is None or uid < 0:
        return None
    try:
        candidate = Path("/run") / "user" / str(uid)
        if candidate.exists() and candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK):
            return candidate
    except OSError:
        return None
    return None


def _runtime_root() -> Path:
    raw = os.environ.get("MCP_WEBVIEW_RUNTIME_DIR")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()

    xdg = os.environ.get("XDG_RUNTIME_DIR")
    if isinstance(xdg, str) and xdg.strip():
        return Path(xdg.strip()).expanduser() / "webview-mcp"

    uid = os.getuid() if hasattr(os, "getuid") else None
    inferred = _infer_xdg_runtime_dir(uid)
    if inferred is not None:
        return inferred / "webview-mcp"
    suffix = str(uid) if isinstance(uid, int) and uid >= 0 else "user"
    return Path("/tmp") / f"webview-mcp-{suffix}"


def runtime_dir(*, create: bool = True) -> Path:
    p = _runtime_root()
    if create:
        p.mkdir(parents=True, exist_ok=True)
    return p


def default_socket_path() -> Path:
    # Keep paths short: some platforms have strict AF_UNIX path length limits.
    return runtime_dir(create=False) / SOCKET_NAME
