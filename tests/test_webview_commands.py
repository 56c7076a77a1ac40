from __future__ import annotations

import pytest

from mcp_servers.webview.commands import WEBVIEW_COMMANDS, is_real_error, normalize_params
from mcp_servers.webview.config import BridgeConfig
from mcp_servers.webview.errors import InvalidParams
from mcp_servers.webview.redaction import is_sensitive_key, redact_params


def _prepare(name: str, params: dict, config: BridgeConfig | None = None) -> tuple[dict, float]:
    return WEBVIEW_COMMANDS[name].prepare(params, config or BridgeConfig())


def test_event_names_and_default_deadlines() -> None:
    expected = {
        "get_dom": ("got-dom-content", 5.0),
        "manage_local_storage": ("get-local-storage", 5.0),
        "execute_js": ("execute-js", 5.0),
        "get_element_position": ("get-element-position", 5.0),
        "send_text_to_element": ("send-text-to-element", 30.0),
        "capture_screenshot": ("capture-screenshot", 30.0),
        "iframe_rpc": ("iframe-rpc", 12.0),
    }
    assert {name: (c.event, c.timeout) for name, c in WEBVIEW_COMMANDS.items()} == expected


def test_timeout_overrides() -> None:
    assert _prepare("execute_js", {"code": "1", "timeout_ms": 250})[1] == 0.25
    assert _prepare("send_text_to_element", {"selector_type": "id", "selector_value": "a", "text": "", "timeout_ms": 90000})[1] == 90.0
    payload, timeout = _prepare("iframe_rpc", {"method": "m", "timeout_ms": 3000})
    assert payload["timeoutMs"] == 3000
    assert timeout == 5.0


def test_iframe_rpc_defaults_to_configured_selector() -> None:
    payload, _ = _prepare("iframe_rpc", {"method": "getState", "args": "solo"}, BridgeConfig(iframe_selector="#preview"))
    assert payload == {"method": "getState", "args": ["solo"], "timeoutMs": 10000, "frameSelector": "#preview"}


def test_send_text_defaults() -> None:
    payload, timeout = _prepare("send_text_to_element", {"selector_type": "text", "selector_value": "Name", "text": ""})
    assert payload == {"selectorType": "text", "selectorValue": "Name", "text": "", "delayMs": 20}
    assert timeout == 30.0


def test_element_position_should_click_defaults_false() -> None:
    payload, _ = _prepare("get_element_position", {"selector_type": "class", "selector_value": "btn"})
    assert payload["shouldClick"] is False


def test_screenshot_params_are_clamped() -> None:
    payload, _ = _prepare("capture_screenshot", {"quality": 250})
    assert payload == {"quality": 100, "maxWidth": 1920}
    with pytest.raises(InvalidParams):
        _prepare("capture_screenshot", {"max_width": 0})
    with pytest.raises(InvalidParams):
        _prepare("capture_screenshot", {"output_path": "  "})


@pytest.mark.parametrize(
    ("params", "message"),
    [
        ({"action": "set", "value": "v"}, "Key is required for set operation"),
        ({"action": "remove"}, "Key is required for remove operation"),
        ({"action": "set", "key": "k"}, "Value is required for set operation"),
    ],
)
def test_local_storage_validation(params: dict, message: str) -> None:
    with pytest.raises(InvalidParams) as excinfo:
        _prepare("manage_local_storage", params)
    assert excinfo.value.reason == message


def test_local_storage_passes_non_string_values_through() -> None:
    payload, _ = _prepare("manage_local_storage", {"action": "set", "key": "prefs", "value": {"dark": True}})
    assert payload == {"action": "set", "key": "prefs", "value": {"dark": True}}


def test_normalize_params() -> None:
    assert normalize_params("get_dom", None) == {}
    assert normalize_params("get_dom", "settings") == {"window_label": "settings"}
    assert normalize_params("capture_screenshot", "main") == {"window_label": "main"}
    with pytest.raises(InvalidParams):
        normalize_params("execute_js", "document.title")


@pytest.mark.parametrize(
    ("error", "expected"),
    [(None, False), (False, False), ("", False), ("boom", True), ({"code": 1}, True), (0, True)],
)
def test_is_real_error(error: object, expected: bool) -> None:
    assert is_real_error(error) is expected


def test_iframe_rpc_non_string_error_is_json() -> None:
    shape = WEBVIEW_COMMANDS["iframe_rpc"].finish
    assert shape({"error": {"code": 7}}, {}) == {"success": False, "result": None, "error": '{"code": 7}'}
    assert shape({"result": [1, 2], "error": False}, {}) == {"success": True, "result": [1, 2], "error": None}


def test_redaction_hides_secrets_and_bulk() -> None:
    assert is_sensitive_key("authToken")
    assert is_sensitive_key("auth")
    assert not is_sensitive_key("author")

    safe = redact_params(
        {
            "code": "localStorage.getItem('x')",
            "selector_value": "q" * 500,
            "password": "hunter2",
            "window_label": "main",
        }
    )
    assert safe["code"] == "<str len=25>"
    assert safe["selector_value"].endswith("<len=500>")
    assert safe["password"] == "<redacted>"
    assert safe["window_label"] == "main"

    storage = redact_params({"action": "set", "key": "sessionId", "value": "abc"})
    assert storage["key"] == "<redacted>"
    assert storage["value"] == "<str len=3>"
    assert redact_params("data:image/jpeg;base64,AAAA") == "<data-url len=27>"


@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_numbers_are_invalid_params(value: float) -> None:
    with pytest.raises(InvalidParams):
        _prepare("execute_js", {"code": "1", "timeout_ms": value})
    with pytest.raises(InvalidParams):
        _prepare("send_text_to_element", {"selector_type": "id", "selector_value": "a", "text": "", "delay_ms": value})
    with pytest.raises(InvalidParams):
        _prepare("capture_screenshot", {"max_width": value})
    with pytest.raises(InvalidParams):
        _prepare("capture_screenshot", {"quality": value})


def test_frame_agent_entry_point_prints_the_script(capsys) -> None:
    from mcp_servers.webview.scripts import FRAME_AGENT_SCRIPT_SOURCE, frames

    frames.main()
    out = capsys.readouterr().out
    assert out == FRAME_AGENT_SCRIPT_SOURCE
    assert "__webviewMcpFrame" in out
