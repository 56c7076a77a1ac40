"""
Delegated command definitions.

A `WebviewCommand` knows how to turn socket params into the event payload sent
to the webview (validating them first), which deadline applies, and how to
shape the webview's response data for the client.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import BridgeConfig
from .errors import ExecutionError, InvalidParams
from .scripts import DEFAULT_IFRAME_RPC_TIMEOUT_MS
from .screenshot import DEFAULT_MAX_WIDTH, DEFAULT_QUALITY, clamp_quality, process_capture

SELECTOR_TYPES = ("id", "class", "tag", "text")
STORAGE_ACTIONS = ("get", "set", "remove", "clear", "keys")
DEFAULT_TYPING_DELAY_MS = 20
IFRAME_RPC_GRACE_SECONDS = 2.0

PayloadBuilder = Callable[[dict[str, Any], BridgeConfig], tuple[dict[str, Any], float | None]]
ResultShaper = Callable[[Any, dict[str, Any]], Any]


@dataclass(frozen=True)
class WebviewCommand:
    name: str
    event: str
    timeout: float
    build: PayloadBuilder
    shape: ResultShaper | None = None
    # shape() does CPU-bound work (image decoding) and runs in a worker thread.
    blocking: bool = False

    def prepare(self, params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float]:
        payload, timeout = self.build(params, config)
        return payload, float(timeout if timeout is not None else self.timeout)

    def finish(self, data: Any, params: dict[str, Any]) -> Any:
        return self.shape(data, params) if self.shape is not None else data


# ─────────────────────────────────────────────────────────────────────────────
# Param helpers
# ─────────────────────────────────────────────────────────────────────────────


def normalize_params(command: str, params: Any) -> dict[str, Any]:
    """Socket params as a dict. `get_dom` (and screenshots) also accept a bare window label."""
    if params is None:
        return {}
    if isinstance(params, dict):
        return params
    if isinstance(params, str) and command in {"get_dom", "capture_screenshot"}:
        return {"window_label": params}
    raise InvalidParams(reason=f"Invalid params for {command}: expected an object")


def window_label_of(params: dict[str, Any]) -> str | None:
    raw = params.get("window_label")
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise InvalidParams(reason="window_label must be a string")
    return raw.strip() or None


def _required_str(params: dict[str, Any], key: str, *, allow_empty: bool = False) -> str:
    value = params.get(key)
    if not isinstance(value, str) or (not allow_empty and not value):
        raise InvalidParams(reason=f"Missing or invalid '{key}' (expected a {'string' if allow_empty else 'non-empty string'})")
    return value


def _optional_int(params: dict[str, Any], key: str, *, minimum: int) -> int | None:
    value = params.get(key)
    if value is None:
        return None
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or int(value) != value
    ):
        raise InvalidParams(reason=f"'{key}' must be an integer")
    if value < minimum:
        raise InvalidParams(reason=f"'{key}' must be >= {minimum}")
    return int(value)


def _timeout_override(params: dict[str, Any]) -> float | None:
    ms = _optional_int(params, "timeout_ms", minimum=1)
    return ms / 1000.0 if ms is not None else None


def _selector(params: dict[str, Any]) -> dict[str, Any]:
    selector_type = params.get("selector_type")
    if selector_type not in SELECTOR_TYPES:
        raise InvalidParams(
            reason=f"Unsupported selector type: {selector_type}",
            suggestion=f"Use one of: {', '.join(SELECTOR_TYPES)}",
        )
    return {"selectorType": selector_type, "selectorValue": _required_str(params, "selector_value")}


# ─────────────────────────────────────────────────────────────────────────────
# Builders + shapers
# ─────────────────────────────────────────────────────────────────────────────


def _build_get_dom(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    return {}, None


def _shape_get_dom(data: Any, params: dict[str, Any]) -> str:
    if not isinstance(data, str) or not data:
        raise ExecutionError(reason="Retrieved DOM string is empty")
    return data


def _build_local_storage(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    action = params.get("action")
    if action not in STORAGE_ACTIONS:
        raise InvalidParams(
            reason=f"Unsupported localStorage action: {action}",
            suggestion=f"Use one of: {', '.join(STORAGE_ACTIONS)}",
        )
    key = params.get("key")
    if key is not None and not isinstance(key, str):
        raise InvalidParams(reason="'key' must be a string")
    value = params.get("value")
    if action in {"set", "remove"} and not key:
        raise InvalidParams(reason=f"Key is required for {action} operation")
    if action == "set" and value is None:
        raise InvalidParams(reason="Value is required for set operation")
    payload: dict[str, Any] = {"action": action}
    if key is not None:
        payload["key"] = key
    if value is not None:
        payload["value"] = value
    return payload, None


def _build_execute_js(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    return {"code": _required_str(params, "code")}, _timeout_override(params)


def _build_element_position(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    payload = _selector(params)
    payload["shouldClick"] = bool(params.get("should_click", False))
    return payload, None


def _build_send_text(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    payload = _selector(params)
    payload["text"] = _required_str(params, "text", allow_empty=True)
    delay = _optional_int(params, "delay_ms", minimum=0)
    payload["delayMs"] = DEFAULT_TYPING_DELAY_MS if delay is None else delay
    return payload, _timeout_override(params)


def _build_screenshot(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    quality = params.get("quality", DEFAULT_QUALITY)
    if isinstance(quality, bool) or not isinstance(quality, (int, float)) or not math.isfinite(quality):
        raise InvalidParams(reason="'quality' must be a number between 1 and 100")
    max_width = _optional_int(params, "max_width", minimum=1)
    output_path = params.get("output_path")
    if output_path is not None and (not isinstance(output_path, str) or not output_path.strip()):
        raise InvalidParams(reason="'output_path' must be a non-empty string")
    return {
        "quality": clamp_quality(quality),
        "maxWidth": DEFAULT_MAX_WIDTH if max_width is None else max_width,
    }, None


def _shape_screenshot(data: Any, params: dict[str, Any]) -> dict[str, Any]:
    max_width = params.get("max_width")
    return process_capture(
        data,
        quality=clamp_quality(params.get("quality", DEFAULT_QUALITY)),
        max_width=int(max_width) if max_width is not None else DEFAULT_MAX_WIDTH,
        output_path=params.get("output_path"),
    )


def _build_iframe_rpc(params: dict[str, Any], config: BridgeConfig) -> tuple[dict[str, Any], float | None]:
    method = _required_str(params, "method")
    args = params.get("args")
    if args is None:
        args = []
    elif not isinstance(args, list):
        args = [args]
    timeout_ms = _optional_int(params, "timeout_ms", minimum=1)
    if timeout_ms is None:
        timeout_ms = DEFAULT_IFRAME_RPC_TIMEOUT_MS
    selector = params.get("frame_selector")
    if selector is not None and (not isinstance(selector, str) or not selector.strip()):
        raise InvalidParams(reason="'frame_selector' must be a non-empty CSS selector")
    return {
        "method": method,
        "args": args,
        "timeoutMs": timeout_ms,
        "frameSelector": (selector or config.iframe_selector).strip(),
    }, timeout_ms / 1000.0 + IFRAME_RPC_GRACE_SECONDS


def is_real_error(error: Any) -> bool:
    """null, false and "" do not count as an RPC error."""
    if error is None or error is False:
        return False
    if isinstance(error, str):
        return bool(error)
    return True


def _shape_iframe_rpc(data: Any, params: dict[str, Any]) -> dict[str, Any]:
    body = data if isinstance(data, dict) else {"result": data}
    error = body.get("error")
    if is_real_error(error):
        message = error if isinstance(error, str) else json.dumps(error, ensure_ascii=False)
        return {"success": False, "result": None, "error": message}
    return {"success": True, "result": body.get("result"), "error": None}


WEBVIEW_COMMANDS: dict[str, WebviewCommand] = {
    cmd.name: cmd
    for cmd in (
        WebviewCommand("get_dom", "got-dom-content", 5.0, _build_get_dom, _shape_get_dom),
        WebviewCommand("manage_local_storage", "get-local-storage", 5.0, _build_local_storage),
        WebviewCommand("execute_js", "execute-js", 5.0, _build_execute_js),
        WebviewCommand("get_element_position", "get-element-position", 5.0, _build_element_position),
        WebviewCommand("send_text_to_element", "send-text-to-element", 30.0, _build_send_text),
        WebviewCommand(
            "capture_screenshot", "capture-screenshot", 30.0, _build_screenshot, _shape_screenshot, blocking=True
        ),
        WebviewCommand(
            "iframe_rpc",
            "iframe-rpc",
            DEFAULT_IFRAME_RPC_TIMEOUT_MS / 1000.0 + IFRAME_RPC_GRACE_SECONDS,
            _build_iframe_rpc,
            _shape_iframe_rpc,
        ),
    )
}


__all__ = [
    "SELECTOR_TYPES",
    "STORAGE_ACTIONS",
    "WEBVIEW_COMMANDS",
    "WebviewCommand",
    "is_real_error",
    "normalize_params",
    "window_label_of",
]
