"""Helpers that keep request logs short and free of secrets.

Used by the dispatcher when logging command lines.
"""

from __future__ import annotations

from typing import Any

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "session",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

_SENSITIVE_EXACT = {
    # Avoid false-positives like "author"/"authorship".
    "auth",
}

# Params whose content is large or user-provided; only the length is logged.
_BULKY_KEYS = {"code", "text", "value", "args", "data"}

MAX_LOGGED_STR = 120


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def _short(value: Any) -> Any:
    if isinstance(value, str):
        if value.startswith("data:"):
            return f"<data-url len={len(value)}>"
        if len(value) > MAX_LOGGED_STR:
            return value[:MAX_LOGGED_STR] + f"… <len={len(value)}>"
    return value


def redact_params(params: Any) -> Any:
    """Loggable view of socket params."""
    if not isinstance(params, dict):
        return _short(params)
    out: dict[str, Any] = {}
    for key, value in params.items():
        if is_sensitive_key(str(key)):
            out[key] = "<redacted>"
        elif key in _BULKY_KEYS:
            size = len(value) if isinstance(value, (str, list, dict)) else None
            out[key] = f"<{type(value).__name__} len={size}>" if size is not None else f"<{type(value).__name__}>"
        else:
            out[key] = _short(value)
    # A storage key can name a secret ("authToken"); hide the value it carries.
    if isinstance(params.get("key"), str) and is_sensitive_key(params["key"]):
        out["key"] = "<redacted>"
    return out


__all__ = ["is_sensitive_key", "redact_params"]
