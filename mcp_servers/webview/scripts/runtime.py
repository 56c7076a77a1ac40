from __future__ import annotations

from .capture import CAPTURE_JS
from .elements import ELEMENTS_JS
from .frames import IFRAME_RPC_JS

WEBVIEW_SCRIPT_VERSION = "2"
BINDING_NAME = "__webviewMcpEmit"

# NOTE: This script is self-contained and idempotent. It runs in the top-level
# document only and exposes `globalThis.__webviewMcp` with:
# - dispatch(event, payload): schedule the handler for `event` and return true
#   immediately; the handler's outcome is emitted later as `<event>-response`
#   through the host binding, echoing `payload.correlationId`.
# - emit(event, payload): send any event to the host.
#
# Every handler produces exactly one response: the dispatch wrapper turns a
# returned value into {success: true, data} and a thrown error into
# {success: false, error, errorKind}.
WEBVIEW_SCRIPT_SOURCE = (
    r"""
(() => {
  const VERSION = "__VERSION__";
  const BINDING = "__BINDING__";
  const g = globalThis;

  try {
    if (g.window && g.window.top !== g.window) {
      return { ok: false, reason: "subframe", version: VERSION };
    }
  } catch (_e) {
    // cross-origin parent: treat as a subframe
    return { ok: false, reason: "subframe", version: VERSION };
  }
  if (g.__webviewMcp && g.__webviewMcp.__version === VERSION) {
    return { ok: true, already: true, version: VERSION };
  }

  function emit(event, payload) {
    const fn = g[BINDING];
    if (typeof fn !== "function") throw new Error("Host binding is not available");
    fn(JSON.stringify({ event, payload: payload === undefined ? null : payload }));
  }

  function errorMessage(e) {
    return e instanceof Error ? e.toString() : String(e);
  }
"""
    + ELEMENTS_JS
    + CAPTURE_JS
    + IFRAME_RPC_JS
    + r"""
  function stringifyResult(value) {
    if (value === undefined) return "undefined";
    if (value === null) return "null";
    if (typeof value === "object") {
      try {
        const json = JSON.stringify(value);
        return json === undefined ? String(value) : json;
      } catch (_e) {
        return String(value);
      }
    }
    return String(value);
  }

  function compile(code) {
    try {
      return new Function(`return (${code}\n)`);
    } catch (e) {
      if (!(e instanceof SyntaxError)) throw e;
      return new Function(code);
    }
  }

  function localStorageOp(action, key, value) {
    const hasKey = key !== undefined && key !== null && key !== "";
    switch (action) {
      case "get": {
        if (!hasKey) {
          const items = {};
          for (let i = 0; i < localStorage.length; i++) {
            const k = localStorage.key(i);
            if (k !== null) items[k] = localStorage.getItem(k) ?? "";
          }
          return items;
        }
        return localStorage.getItem(String(key));
      }
      case "set":
        if (!hasKey) throw new Error("Key is required for set operation");
        if (value === undefined || value === null) throw new Error("Value is required for set operation");
        localStorage.setItem(String(key), typeof value === "string" ? value : JSON.stringify(value));
        return null;
      case "remove":
        if (!hasKey) throw new Error("Key is required for remove operation");
        localStorage.removeItem(String(key));
        return null;
      case "clear":
        localStorage.clear();
        return null;
      case "keys":
        return Object.keys(localStorage);
      default:
        throw new Error(`Unsupported localStorage action: ${action}`);
    }
  }

  const handlers = {
    "got-dom-content": async () => {
      if (document.readyState === "complete" || document.readyState === "interactive") {
        return document.documentElement.outerHTML;
      }
      return "";
    },

    "get-local-storage": async (p) => localStorageOp(p.action, p.key, p.value),

    "execute-js": async (p) => {
      const code = typeof p === "string" ? p : String(p.code ?? "");
      let result = compile(code)();
      if (result && typeof result.then === "function") result = await result;
      return { result: stringifyResult(result), type: typeof result };
    },

    "get-element-position": async (p) => {
      const { element, notes, matchCount } = findElement(p.selectorType, p.selectorValue);
      return { ...elementPosition(element, !!p.shouldClick), diagnostics: notes, matchCount };
    },

    "send-text-to-element": async (p) => {
      const { element, notes, matchCount } = findElement(p.selectorType, p.selectorValue);
      const delay = p.delayMs === undefined || p.delayMs === null ? 20 : p.delayMs;
      return { element: await typeText(element, p.text, delay), diagnostics: notes, matchCount };
    },

    "capture-screenshot": async (p) => captureViewport({ quality: p.quality, maxWidth: p.maxWidth }),

    "iframe-rpc": async (p) => callFrame(p.frameSelector, p.method, p.args, p.timeoutMs),
  };

  function respond(event, correlationId, body) {
    try {
      emit(`${event}-response`, { correlationId, ...body });
      return;
    } catch (e) {
      console.error("[webview-mcp] failed to emit response:", event, e);
      // Data JSON cannot encode (BigInt, cycles): still answer exactly once.
      const fallback =
        body.success === false
          ? { success: false, error: String(body.error), errorKind: body.errorKind || "ExecutionError" }
          : { success: false, error: `Response not serializable: ${errorMessage(e)}`, errorKind: "ExecutionError" };
      try {
        emit(`${event}-response`, { correlationId, ...fallback });
      } catch (e2) {
        console.error("[webview-mcp] failed to emit error response:", event, e2);
      }
    }
  }

  function dispatch(event, payload) {
    const p = payload && typeof payload === "object" ? payload : { value: payload };
    const correlationId = typeof p.correlationId === "string" ? p.correlationId : null;
    const handler = handlers[event];
    setTimeout(() => {
      if (!handler) {
        respond(event, correlationId, {
          success: false,
          error: `No webview handler for event: ${event}`,
          errorKind: "ExecutionError",
        });
        return;
      }
      Promise.resolve()
        .then(() => handler(p))
        .then(
          (data) => respond(event, correlationId, { success: true, data: data === undefined ? null : data }),
          (err) =>
            respond(event, correlationId, {
              success: false,
              error: errorMessage(err),
              errorKind: (err && err.kind) || "ExecutionError",
              details: err && err.details ? err.details : undefined,
            })
        );
    }, 0);
    return true;
  }

  g.__webviewMcp = {
    __version: VERSION,
    dispatch,
    emit,
    events: Object.keys(handlers),
  };
  return { ok: true, version: VERSION };
})();
"""
).replace("__VERSION__", WEBVIEW_SCRIPT_VERSION).replace("__BINDING__", BINDING_NAME)
