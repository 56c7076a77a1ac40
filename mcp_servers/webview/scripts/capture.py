from __future__ import annotations

FRAME_CAPTURE_TIMEOUT_MS = 5000

# Viewport capture engine (JS fragment shared by the webview runtime and the
# frame agent).
#
# captureViewport({quality, maxWidth}) resolves to
#   {data, width, height, tier, frames: {total, composited, omitted}}
#
# Base layer: tier 1 (clone + inlined styles rasterised through an SVG
# foreignObject), tier 2 (manual walk of images/text/canvases) when tier 1
# fails. Embedded frames are all asked for their own capture at once (each
# bounded by FRAME_CAPTURE_TIMEOUT_MS) and drawn on top in document order.
CAPTURE_JS = r"""
  const FRAME_CAPTURE_TIMEOUT_MS = __FRAME_CAPTURE_TIMEOUT_MS__;
  const MAX_CHILDREN_PER_LEVEL = 500;
  const INLINE_STYLE_PROPS = [
    "background-color", "background-image", "color", "font-family", "font-size",
    "font-weight", "line-height", "text-align", "padding", "margin", "border",
    "border-radius", "display", "flex-direction", "justify-content", "align-items",
    "position", "top", "left", "right", "bottom", "width", "height", "max-width",
    "max-height", "min-width", "min-height", "overflow", "opacity", "transform",
    "box-shadow", "text-shadow",
  ];
  const TEXT_TAGS = "h1, h2, h3, h4, h5, h6, p, span, a, li, td, th, label, button";

  function newCaptureId(prefix) {
    return `${prefix}-${Date.now()}-${Math.random().toString(36).slice(2, 11)}`;
  }

  function loadImage(src) {
    return new Promise((resolve, reject) => {
      const img = new Image();
      img.onload = () => resolve(img);
      img.onerror = () => reject(new Error("Failed to load image"));
      img.src = src;
    });
  }

  function inlineStyles(clone, source) {
    const style = getComputedStyle(source);
    for (const prop of INLINE_STYLE_PROPS) {
      const value = style.getPropertyValue(prop);
      if (value) clone.style.setProperty(prop, value);
    }
    const src = source.children;
    const dst = clone.children;
    const n = Math.min(src.length, dst.length, MAX_CHILDREN_PER_LEVEL);
    for (let i = 0; i < n; i++) {
      if (src[i] instanceof HTMLElement && dst[i] instanceof HTMLElement) {
        inlineStyles(dst[i], src[i]);
      }
    }
  }

  async function renderCloneTier(ctx, width, height) {
    const clone = document.body.cloneNode(true);
    inlineStyles(clone, document.body);
    clone.querySelectorAll("script").forEach((el) => el.remove());
    clone.querySelectorAll("iframe").forEach((el) => el.remove());
    const bodyXml = new XMLSerializer().serializeToString(clone);
    const svg =
      `<svg xmlns="http://www.w3.org/2000/svg" width="${width}" height="${height}">` +
      `<foreignObject width="100%" height="100%">` +
      `<body xmlns="http://www.w3.org/1999/xhtml" style="margin:0;padding:0;">${bodyXml}</body>` +
      `</foreignObject></svg>`;
    const img = await loadImage("data:image/svg+xml;charset=utf-8," + encodeURIComponent(svg));
    ctx.drawImage(img, 0, 0);
  }

  function visibleIn(rect, width, height) {
    return rect.width > 0 && rect.height > 0 && rect.top < height && rect.left < width;
  }

  function renderWalkTier(ctx, width, height) {
    for (const img of document.querySelectorAll("img")) {
      try {
        if (!img.complete || img.naturalWidth <= 0) continue;
        const rect = img.getBoundingClientRect();
        if (visibleIn(rect, width, height)) ctx.drawImage(img, rect.left, rect.top, rect.width, rect.height);
      } catch (_e) {
        // tainted or broken image
      }
    }
    for (const el of document.querySelectorAll(TEXT_TAGS)) {
      try {
        const rect = el.getBoundingClientRect();
        if (!visibleIn(rect, width, height)) continue;
        const text = (el.textContent || "").trim();
        if (!text || text.length >= 500) continue;
        const style = getComputedStyle(el);
        const fontSize = parseFloat(style.fontSize) || 14;
        ctx.font = `${style.fontWeight} ${fontSize}px ${style.fontFamily}`;
        ctx.fillStyle = style.color || "#000000";
        ctx.fillText(text.substring(0, 100), rect.left, rect.top + fontSize);
      } catch (_e) {
        // skip element
      }
    }
    for (const cvs of document.querySelectorAll("canvas")) {
      try {
        const rect = cvs.getBoundingClientRect();
        if (visibleIn(rect, width, height)) ctx.drawImage(cvs, rect.left, rect.top, rect.width, rect.height);
      } catch (_e) {
        // skip canvas
      }
    }
  }

  function requestFramePreview(iframe, quality, maxWidth) {
    const target = iframe.contentWindow;
    if (!target) return Promise.resolve(null);
    const id = newCaptureId("capture");
    return new Promise((resolve) => {
      let timer = null;
      function onMessage(event) {
        const msg = event.data;
        if (!msg || msg.type !== "capture-preview-result" || msg.id !== id) return;
        window.removeEventListener("message", onMessage);
        clearTimeout(timer);
        resolve(msg.success && typeof msg.data === "string" && msg.data ? msg.data : null);
      }
      timer = setTimeout(() => {
        window.removeEventListener("message", onMessage);
        resolve(null);
      }, FRAME_CAPTURE_TIMEOUT_MS);
      window.addEventListener("message", onMessage);
      try {
        target.postMessage({ type: "capture-preview", id, quality, maxWidth }, "*");
      } catch (_e) {
        window.removeEventListener("message", onMessage);
        clearTimeout(timer);
        resolve(null);
      }
    });
  }

  function collectFrames() {
    const out = [];
    for (const iframe of document.querySelectorAll("iframe")) {
      const rect = iframe.getBoundingClientRect();
      if (rect.width > 0 && rect.height > 0) out.push({ iframe, rect });
    }
    return out;
  }

  async function loadFrameImages(frames, quality, maxWidth) {
    const urls = await Promise.all(frames.map((f) => requestFramePreview(f.iframe, quality, maxWidth)));
    return Promise.all(
      urls.map((url) => (url ? loadImage(url).catch(() => null) : Promise.resolve(null)))
    );
  }

  async function paint(width, height, scale, useClone, frames, images) {
    const canvas = document.createElement("canvas");
    canvas.width = Math.round(width * scale);
    canvas.height = Math.round(height * scale);
    const ctx = canvas.getContext("2d");
    if (!ctx) throw new Error("Failed to get canvas 2d context");
    ctx.scale(scale, scale);
    const bg = document.body ? getComputedStyle(document.body).backgroundColor : "";
    ctx.fillStyle = bg && bg !== "rgba(0, 0, 0, 0)" && bg !== "transparent" ? bg : "#ffffff";
    ctx.fillRect(0, 0, width, height);

    let tier = 2;
    if (useClone && document.body) {
      try {
        await renderCloneTier(ctx, width, height);
        tier = 1;
      } catch (e) {
        console.warn("[webview-mcp] clone render failed, walking the DOM instead:", e);
      }
    }
    if (tier === 2) renderWalkTier(ctx, width, height);

    let composited = 0;
    for (let i = 0; i < frames.length; i++) {
      const img = images[i];
      if (!img) continue;
      const { rect } = frames[i];
      try {
        ctx.drawImage(img, rect.left, rect.top, rect.width, rect.height);
        composited += 1;
      } catch (_e) {
        // frame image unusable
      }
    }
    return { canvas, tier, composited };
  }

  async function captureViewport(opts) {
    const quality = Math.min(100, Math.max(1, Number(opts && opts.quality) || 85));
    const maxWidth = Math.max(1, Number(opts && opts.maxWidth) || 1920);
    const width = window.innerWidth;
    const height = window.innerHeight;
    const scale = width > maxWidth ? maxWidth / width : 1;

    const frames = collectFrames();
    const images = await loadFrameImages(frames, quality, maxWidth);

    let painted = await paint(width, height, scale, true, frames, images);
    let data;
    try {
      data = painted.canvas.toDataURL("image/jpeg", quality / 100);
    } catch (e) {
      // Some engines taint the canvas after drawing a foreignObject image.
      painted = await paint(width, height, scale, false, frames, images);
      data = painted.canvas.toDataURL("image/jpeg", quality / 100);
    }
    return {
      data,
      width: painted.canvas.width,
      height: painted.canvas.height,
      tier: painted.tier,
      frames: { total: frames.length, composited: painted.composited, omitted: frames.length - painted.composited },
    };
  }
""".replace("__FRAME_CAPTURE_TIMEOUT_MS__", str(FRAME_CAPTURE_TIMEOUT_MS))
