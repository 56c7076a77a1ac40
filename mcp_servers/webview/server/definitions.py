"""
MCP tool definitions.

One tool per host command. Argument names are the socket params verbatim, so a
tool call is forwarded to the host without renaming.
"""

from __future__ import annotations

from typing import Any

_SCHEMA = "http://json-schema.org/draft-07/schema#"

_WINDOW_LABEL: dict[str, Any] = {
    "type": "string",
    "description": "Window label (default: the configured default window, usually 'main')",
}

_SELECTOR_PROPERTIES: dict[str, Any] = {
    "selector_type": {
        "type": "string",
        "enum": ["id", "class", "tag", "text"],
        "description": "How selector_value is interpreted",
    },
    "selector_value": {"type": "string", "description": "Element id, class name, tag name or text content"},
}

# ═══════════════════════════════════════════════════════════════════════════════
# PERCEPTION
# ═══════════════════════════════════════════════════════════════════════════════

GET_DOM_TOOL: dict[str, Any] = {
    "name": "get_dom",
    "description": """Return the full serialized HTML of a webview window.
USAGE:
- Main window: get_dom()
- Other window: get_dom(window_label="settings")
Returns an error while the document is still loading.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {"window_label": _WINDOW_LABEL},
        "additionalProperties": False,
    },
}

CAPTURE_SCREENSHOT_TOOL: dict[str, Any] = {
    "name": "capture_screenshot",
    "description": """Capture the visible viewport of a webview window as JPEG.
USAGE:
- Default: capture_screenshot()
- Smaller image: capture_screenshot(quality=60, max_width=1024)
- Save to disk: capture_screenshot(output_path="/tmp/shot.jpg")
Embedded iframes are composited when they cooperate; omitted frames are
reported as a warning, not an error.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "window_label": _WINDOW_LABEL,
            "quality": {
                "type": "integer",
                "minimum": 1,
                "maximum": 100,
                "default": 85,
                "description": "JPEG quality (default: 85)",
            },
            "max_width": {
                "type": "integer",
                "minimum": 1,
                "default": 1920,
                "description": "Maximum image width in pixels (default: 1920)",
            },
            "output_path": {"type": "string", "description": "Also write the JPEG to this path"},
        },
        "additionalProperties": False,
    },
}

GET_ELEMENT_POSITION_TOOL: dict[str, Any] = {
    "name": "get_element_position",
    "description": """Locate an element and return its viewport center; optionally click it.
USAGE:
- By id: get_element_position(selector_type="id", selector_value="submit")
- By text and click: get_element_position(selector_type="text", selector_value="Save", should_click=true)
RESPONSE EXAMPLE:
{"x": 120, "y": 48, "element": {"tag": "BUTTON", "id": "submit"}, "clicked": false}""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "window_label": _WINDOW_LABEL,
            **_SELECTOR_PROPERTIES,
            "should_click": {"type": "boolean", "default": False, "description": "Click the element center"},
        },
        "required": ["selector_type", "selector_value"],
        "additionalProperties": False,
    },
}

# ═══════════════════════════════════════════════════════════════════════════════
# INPUT
# ═══════════════════════════════════════════════════════════════════════════════

SEND_TEXT_TOOL: dict[str, Any] = {
    "name": "send_text_to_element",
    "description": """Focus an element and type text into it, character by character.
Works with inputs, textareas, contenteditable regions and Lexical/Slate editors.
USAGE:
- send_text_to_element(selector_type="id", selector_value="search", text="hello")
- Faster typing: send_text_to_element(..., delay_ms=0)""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "window_label": _WINDOW_LABEL,
            **_SELECTOR_PROPERTIES,
            "text": {"type": "string", "description": "Text to type (may be empty)"},
            "delay_ms": {
                "type": "integer",
                "minimum": 0,
                "default": 20,
                "description": "Delay between characters in ms (default: 20)",
            },
            "timeout_ms": {"type": "integer", "minimum": 1, "description": "Override the 30s deadline"},
        },
        "required": ["selector_type", "selector_value", "text"],
        "additionalProperties": False,
    },
}

# ═══════════════════════════════════════════════════════════════════════════════
# SCRIPTING
# ═══════════════════════════════════════════════════════════════════════════════

EXECUTE_JS_TOOL: dict[str, Any] = {
    "name": "execute_js",
    "description": """Evaluate JavaScript in a webview window and return the result as a string.
USAGE:
- Expression: execute_js(code="document.title")
- Statements: execute_js(code="const n = 2; return n * 21")
Promises are awaited. Objects are returned as JSON text.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "window_label": _WINDOW_LABEL,
            "code": {"type": "string", "description": "JavaScript expression or statements"},
            "timeout_ms": {"type": "integer", "minimum": 1, "description": "Override the 5s deadline"},
        },
        "required": ["code"],
        "additionalProperties": False,
    },
}

MANAGE_LOCAL_STORAGE_TOOL: dict[str, Any] = {
    "name": "manage_local_storage",
    "description": """Read or modify a window's localStorage.
USAGE:
- All entries: manage_local_storage(action="get")
- One entry: manage_local_storage(action="get", key="token")
- Write: manage_local_storage(action="set", key="theme", value="dark")
- Delete: manage_local_storage(action="remove", key="theme")
- Wipe: manage_local_storage(action="clear")
- Keys: manage_local_storage(action="keys")""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "window_label": _WINDOW_LABEL,
            "action": {"type": "string", "enum": ["get", "set", "remove", "clear", "keys"]},
            "key": {"type": "string", "description": "Entry key (required for set/remove)"},
            "value": {"description": "Value for set (non-strings are stored as JSON)"},
        },
        "required": ["action"],
        "additionalProperties": False,
    },
}

IFRAME_RPC_TOOL: dict[str, Any] = {
    "name": "iframe_rpc",
    "description": """Call a method exposed by a document embedded in an iframe.
The embedded document must load the frame agent and expose the method with
__webviewMcpFrame.expose(name, fn).
USAGE:
- iframe_rpc(method="getState")
- iframe_rpc(method="add", args=[1, 2], frame_selector="#preview", timeout_ms=3000)
RESPONSE EXAMPLE:
{"success": true, "result": 3, "error": null}""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "window_label": _WINDOW_LABEL,
            "method": {"type": "string", "description": "Exposed method name"},
            "args": {"type": "array", "description": "Positional arguments", "default": []},
            "frame_selector": {"type": "string", "description": "CSS selector of the target iframe"},
            "timeout_ms": {
                "type": "integer",
                "minimum": 1,
                "default": 10000,
                "description": "Time the frame has to answer (default: 10000)",
            },
        },
        "required": ["method"],
        "additionalProperties": False,
    },
}

LIST_WINDOWS_TOOL: dict[str, Any] = {
    "name": "list_windows",
    "description": """List the webview windows the host can reach, with their labels.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    },
}


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    GET_DOM_TOOL,
    CAPTURE_SCREENSHOT_TOOL,
    GET_ELEMENT_POSITION_TOOL,
    SEND_TEXT_TOOL,
    EXECUTE_JS_TOOL,
    MANAGE_LOCAL_STORAGE_TOOL,
    IFRAME_RPC_TOOL,
    LIST_WINDOWS_TOOL,
]

__all__ = ["TOOL_DEFINITIONS"]
