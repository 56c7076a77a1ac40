from __future__ import annotations

import sys

from .capture import CAPTURE_JS

FRAME_AGENT_SCRIPT_VERSION = "1"
DEFAULT_IFRAME_RPC_TIMEOUT_MS = 10_000

# Parent-side iframe RPC (JS fragment, inlined into the webview runtime).
#
# callFrame(frameSelector, method, args, timeoutMs) posts
#   {type: "call", id, method, args}
# into the frame and resolves with the first {type: "call-result", id, ...}
# reply carrying the same id, or {error: "Timeout after Nms"}.
IFRAME_RPC_JS = r"""
  const DEFAULT_IFRAME_RPC_TIMEOUT_MS = __DEFAULT_IFRAME_RPC_TIMEOUT_MS__;

  function callFrame(frameSelector, method, args, timeoutMs) {
    const selector = frameSelector || "iframe";
    let iframe = null;
    try {
      iframe = document.querySelector(selector);
    } catch (_e) {
      throw kindError("ExecutionError", `Invalid frame selector: ${selector}`);
    }
    if (!iframe || !iframe.contentWindow) {
      throw kindError("ElementNotFound", `No iframe found for selector "${selector}"`);
    }
    const target = iframe.contentWindow;
    const limit = Math.max(1, Number(timeoutMs) || DEFAULT_IFRAME_RPC_TIMEOUT_MS);
    const id = newCaptureId("rpc");
    return new Promise((resolve) => {
      let timer = null;
      function onMessage(event) {
        const msg = event.data;
        if (!msg || msg.type !== "call-result" || msg.id !== id) return;
        window.removeEventListener("message", onMessage);
        clearTimeout(timer);
        resolve({ result: msg.result === undefined ? null : msg.result, error: msg.error === undefined ? null : msg.error });
      }
      timer = setTimeout(() => {
        window.removeEventListener("message", onMessage);
        resolve({ result: null, error: `Timeout after ${limit}ms` });
      }, limit);
      window.addEventListener("message", onMessage);
      try {
        target.postMessage({ type: "call", id, method, args: args === undefined ? [] : args }, "*");
      } catch (e) {
        window.removeEventListener("message", onMessage);
        clearTimeout(timer);
        resolve({ result: null, error: e instanceof Error ? e.toString() : String(e) });
      }
    });
  }
""".replace("__DEFAULT_IFRAME_RPC_TIMEOUT_MS__", str(DEFAULT_IFRAME_RPC_TIMEOUT_MS))


# Script for embedded documents. Include it in a frame to make it cooperate
# with screenshots (capture-preview) and iframe_rpc (call). Embedders ship it
# as a static asset, e.g. `webview-mcp-frame-agent > public/webview-frame-agent.js`
# and `<script src="/webview-frame-agent.js"></script>` in the frame document.
#
# Methods are registered by the embedding page:
#   globalThis.__webviewMcpFrame.expose("getState", () => store.getState());
FRAME_AGENT_SCRIPT_SOURCE = (
    r"""
(() => {
  const VERSION = "__VERSION__";
  const g = globalThis;
  if (g.__webviewMcpFrame && g.__webviewMcpFrame.__version === VERSION) {
    return { ok: true, already: true, version: VERSION };
  }
  const methods = (g.__webviewMcpFrame && g.__webviewMcpFrame.methods) || Object.create(null);
"""
    + CAPTURE_JS
    + r"""
  function reply(source, message) {
    try {
      (source || window.parent).postMessage(message, "*");
    } catch (e) {
      console.warn("[webview-mcp] frame reply failed:", e);
    }
  }

  async function onMessage(event) {
    const msg = event.data;
    if (!msg || typeof msg !== "object" || typeof msg.type !== "string") return;
    if (msg.type === "call") {
      const fn = methods[msg.method];
      if (typeof fn !== "function") {
        reply(event.source, { type: "call-result", id: msg.id, error: `Unknown method: ${msg.method}` });
        return;
      }
      try {
        const args = Array.isArray(msg.args) ? msg.args : msg.args === undefined ? [] : [msg.args];
        const result = await fn(...args);
        reply(event.source, { type: "call-result", id: msg.id, result: result === undefined ? null : result });
      } catch (e) {
        reply(event.source, { type: "call-result", id: msg.id, error: e instanceof Error ? e.toString() : String(e) });
      }
      return;
    }
    if (msg.type === "capture-preview") {
      try {
        const shot = await captureViewport({ quality: msg.quality, maxWidth: msg.maxWidth });
        reply(event.source, { type: "capture-preview-result", id: msg.id, success: true, data: shot.data });
      } catch (e) {
        reply(event.source, {
          type: "capture-preview-result",
          id: msg.id,
          success: false,
          error: e instanceof Error ? e.toString() : String(e),
        });
      }
    }
  }

  if (g.__webviewMcpFrame && g.__webviewMcpFrame.__listener) {
    window.removeEventListener("message", g.__webviewMcpFrame.__listener);
  }
  window.addEventListener("message", onMessage);
  g.__webviewMcpFrame = {
    __version: VERSION,
    __listener: onMessage,
    methods,
    expose(name, fn) {
      methods[String(name)] = fn;
    },
    unexpose(name) {
      delete methods[String(name)];
    },
  };
  return { ok: true, version: VERSION };
})();
"""
).replace("__VERSION__", FRAME_AGENT_SCRIPT_VERSION)


def main() -> None:
    """Print the frame agent script, for embedders to serve alongside their frames."""
    sys.stdout.write(FRAME_AGENT_SCRIPT_SOURCE)


if __name__ == "__main__":
    main()
