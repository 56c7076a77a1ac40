from __future__ import annotations

# Element lookup + text injection (JS fragment, inlined into the webview runtime).
#
# findElement(selectorType, selectorValue) -> {element, notes, matchCount}, or
# throws an ElementNotFound-kind error carrying the lookup diagnostics.
#
# typeText(element, text, delayMs) picks one typing strategy from a capability
# probe and falls back to direct assignment when the strategy throws.
ELEMENTS_JS = r"""
  function kindError(kind, message) {
    const err = new Error(message);
    err.kind = kind;
    return err;
  }

  function sleep(ms) {
    return new Promise((resolve) => setTimeout(resolve, ms));
  }

  function isTextField(el) {
    return el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement;
  }

  function findElementByText(text) {
    const all = document.querySelectorAll("*");
    for (const el of all) {
      if (el.textContent && el.textContent.trim() === text) return el;
      if (isTextField(el) && el.placeholder === text) return el;
      if (el.getAttribute("title") === text) return el;
      if (el.getAttribute("aria-label") === text) return el;
    }
    for (const el of all) {
      if (el.textContent && el.textContent.trim().includes(text)) return el;
      if (isTextField(el) && el.placeholder && el.placeholder.includes(text)) return el;
      const title = el.getAttribute("title");
      if (title && title.includes(text)) return el;
      const aria = el.getAttribute("aria-label");
      if (aria && aria.includes(text)) return el;
    }
    return null;
  }

  function textDiagnostics(text) {
    const notes = [];
    const partial = Array.from(document.querySelectorAll("*")).filter(
      (el) => el.textContent && el.textContent.includes(text)
    );
    if (partial.length > 0) {
      notes.push(`Found ${partial.length} elements containing part of the text.`);
      notes.push(
        `First element with partial match: ${partial[0].tagName}, text="${(partial[0].textContent || "").trim().slice(0, 200)}"`
      );
    }
    const similar = Array.from(document.querySelectorAll("input, textarea")).filter(
      (el) => el.placeholder && el.placeholder.includes(text)
    );
    if (similar.length > 0) {
      notes.push(`Found ${similar.length} input elements with similar placeholders.`);
      notes.push(`First input with similar placeholder: ${similar[0].tagName}, placeholder="${similar[0].placeholder}"`);
    }
    return notes;
  }

  function findElement(selectorType, selectorValue) {
    const value = String(selectorValue ?? "");
    let element = null;
    let matchCount = 0;
    const notes = [];
    switch (selectorType) {
      case "id":
        element = document.getElementById(value);
        if (!element) notes.push(`No element found with id="${value}"`);
        break;
      case "class":
      case "tag": {
        const found =
          selectorType === "class" ? document.getElementsByClassName(value) : document.getElementsByTagName(value);
        element = found.length > 0 ? found[0] : null;
        matchCount = found.length;
        if (!element) {
          notes.push(`No elements found with ${selectorType}="${value}" (total matching: 0)`);
        } else if (found.length > 1) {
          notes.push(`Found ${found.length} elements with ${selectorType}="${value}", using the first one`);
        }
        break;
      }
      case "text":
        element = findElementByText(value);
        if (!element) {
          notes.push(`No element found with text="${value}"`);
          notes.push(...textDiagnostics(value));
        }
        break;
      default:
        throw kindError("ExecutionError", `Unsupported selector type: ${selectorType}`);
    }
    if (!element) {
      const err = kindError("ElementNotFound", `Element with ${selectorType}="${value}" not found. ${notes.join(" ")}`.trim());
      err.details = { selectorType, selectorValue: value, diagnostics: notes };
      throw err;
    }
    return { element, notes, matchCount: Math.max(1, matchCount) };
  }

  function describeElement(el) {
    return {
      tag: el.tagName,
      classes: typeof el.className === "string" ? el.className : String(el.getAttribute("class") || ""),
      id: el.id,
      text: (el.textContent || "").trim(),
      placeholder: el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement ? el.placeholder : undefined,
    };
  }

  function clickAt(el, x, y) {
    try {
      for (const type of ["mousedown", "mouseup", "click"]) {
        el.dispatchEvent(
          new MouseEvent(type, { bubbles: true, cancelable: true, view: window, clientX: x, clientY: y })
        );
      }
      return { success: true, elementTag: el.tagName, position: { x, y } };
    } catch (e) {
      return { success: false, error: e instanceof Error ? e.toString() : String(e) };
    }
  }

  function elementPosition(el, shouldClick) {
    const rect = el.getBoundingClientRect();
    const viewportX = rect.left + rect.width / 2;
    const viewportY = rect.top + rect.height / 2;
    const docX = viewportX + window.scrollX;
    const docY = viewportY + window.scrollY;
    const clickResult = shouldClick ? clickAt(el, viewportX, viewportY) : null;
    return {
      x: docX,
      y: docY,
      element: describeElement(el),
      clicked: !!shouldClick,
      clickResult,
      debug: {
        elementRect: {
          x: rect.x, y: rect.y, left: rect.left, top: rect.top,
          right: rect.right, bottom: rect.bottom, width: rect.width, height: rect.height,
        },
        viewportCenter: { x: viewportX, y: viewportY },
        documentCenter: { x: docX, y: docY },
        window: {
          innerSize: { width: window.innerWidth, height: window.innerHeight },
          scrollPosition: { x: window.scrollX, y: window.scrollY },
        },
      },
    };
  }

  // ── typing strategies ────────────────────────────────────────────────────

  function keyInit(ch) {
    return { key: ch, code: /^[a-z]$/i.test(ch) ? `Key${ch.toUpperCase()}` : "", bubbles: true, cancelable: true, composed: true };
  }

  function textInsertEvent(type, ch) {
    return new InputEvent(type, { bubbles: true, cancelable: true, inputType: "insertText", data: ch });
  }

  function probeTyping(el) {
    if (isTextField(el)) return "native-input";
    if (el.isContentEditable) {
      if (el.hasAttribute("data-lexical-editor")) return "lexical";
      if (el.querySelector('[data-slate-editor="true"]') !== null) return "slate";
      return "generic-editable";
    }
    return "plain";
  }

  async function typeNativeInput(el, chars, delayMs) {
    el.focus();
    await sleep(50);
    el.value = "";
    el.dispatchEvent(new Event("input", { bubbles: true, cancelable: true }));
    el.dispatchEvent(new Event("change", { bubbles: true, cancelable: true }));
    await sleep(50);
    let prefix = "";
    for (let i = 0; i < chars.length; i++) {
      const ch = chars[i];
      prefix += ch;
      el.dispatchEvent(new KeyboardEvent("keydown", keyInit(ch)));
      el.value = prefix;
      el.dispatchEvent(new Event("input", { bubbles: true, cancelable: true }));
      el.dispatchEvent(new KeyboardEvent("keyup", keyInit(ch)));
      if (delayMs > 0 && i < chars.length - 1) await sleep(delayMs);
    }
    el.dispatchEvent(new Event("change", { bubbles: true, cancelable: true }));
  }

  async function typeGenericEditable(el, chars, delayMs) {
    el.focus();
    await sleep(50);
    el.innerHTML = "";
    el.dispatchEvent(new InputEvent("input", { bubbles: true, cancelable: true }));
    await sleep(50);
    for (let i = 0; i < chars.length; i++) {
      const ch = chars[i];
      el.dispatchEvent(new KeyboardEvent("keydown", keyInit(ch)));
      const selection = window.getSelection();
      const range = document.createRange();
      range.selectNodeContents(el);
      range.collapse(false);
      selection?.removeAllRanges();
      selection?.addRange(range);
      const node = document.createTextNode(ch);
      range.insertNode(node);
      range.setStartAfter(node);
      range.setEndAfter(node);
      selection?.removeAllRanges();
      selection?.addRange(range);
      el.dispatchEvent(textInsertEvent("input", ch));
      el.dispatchEvent(new KeyboardEvent("keyup", keyInit(ch)));
      if (delayMs > 0 && i < chars.length - 1) await sleep(delayMs);
    }
    el.dispatchEvent(new Event("change", { bubbles: true }));
  }

  function placeCaretAtEnd(node) {
    const selection = window.getSelection();
    if (!selection) return;
    const range = document.createRange();
    range.selectNodeContents(node);
    range.collapse(false);
    selection.removeAllRanges();
    selection.addRange(range);
  }

  async function typeLexical(el, chars, delayMs) {
    el.focus();
    await sleep(100);
    const paragraphs = el.querySelectorAll("p");
    if (paragraphs.length > 0) {
      for (const p of paragraphs) p.innerHTML = "<br>";
    } else {
      el.innerHTML = "<p><br></p>";
    }
    el.dispatchEvent(new InputEvent("input", { bubbles: true, cancelable: true }));
    await sleep(100);
    const paragraph = el.querySelector("p") || el;
    placeCaretAtEnd(paragraph);
    for (let i = 0; i < chars.length; i++) {
      const ch = chars[i];
      const active = document.activeElement;
      const target = active && el.contains(active) ? active : paragraph;
      const before = textInsertEvent("beforeinput", ch);
      target.dispatchEvent(before);
      target.dispatchEvent(new KeyboardEvent("keydown", keyInit(ch)));
      if (!before.defaultPrevented) document.execCommand("insertText", false, ch);
      target.dispatchEvent(textInsertEvent("input", ch));
      target.dispatchEvent(new KeyboardEvent("keyup", keyInit(ch)));
      if (delayMs > 0 && i < chars.length - 1) await sleep(delayMs);
    }
  }

  async function typeSlate(el, chars, delayMs) {
    el.focus();
    await sleep(100);
    const editable = el.querySelector('[contenteditable="true"]') || el;
    if (editable instanceof HTMLElement) editable.focus();
    placeCaretAtEnd(editable);
    document.execCommand("selectAll", false, undefined);
    document.execCommand("delete", false, undefined);
    await sleep(50);
    for (let i = 0; i < chars.length; i++) {
      const ch = chars[i];
      const target = document.activeElement || editable;
      target.dispatchEvent(new KeyboardEvent("keydown", keyInit(ch)));
      document.execCommand("insertText", false, ch);
      target.dispatchEvent(textInsertEvent("input", ch));
      target.dispatchEvent(new KeyboardEvent("keyup", keyInit(ch)));
      if (delayMs > 0 && i < chars.length - 1) await sleep(delayMs);
    }
  }

  function assignPlain(el, text) {
    if (isTextField(el)) {
      el.value = text;
    } else {
      el.textContent = text;
    }
    el.dispatchEvent(new Event("input", { bubbles: true }));
  }

  const TYPING_STRATEGIES = {
    "native-input": typeNativeInput,
    "generic-editable": typeGenericEditable,
    lexical: typeLexical,
    slate: typeSlate,
  };

  async function typeText(el, text, delayMs) {
    const value = String(text ?? "");
    const chars = Array.from(value);
    const delay = Math.max(0, Number(delayMs) || 0);
    let strategy = probeTyping(el);
    const run = TYPING_STRATEGIES[strategy];
    if (run) {
      try {
        await run(el, chars, delay);
      } catch (e) {
        console.warn("[webview-mcp] typing strategy failed, assigning directly:", strategy, e);
        strategy = "plain";
        assignPlain(el, value);
      }
    } else {
      assignPlain(el, value);
    }
    if (isTextField(el) && el.value !== value) {
      el.value = value;
      el.dispatchEvent(new Event("input", { bubbles: true }));
      el.dispatchEvent(new Event("change", { bubbles: true }));
    }
    return {
      tag: el.tagName,
      classes: typeof el.className === "string" ? el.className : "",
      id: el.id,
      type: el instanceof HTMLInputElement ? el.type : null,
      text: value,
      isEditable: isTextField(el) || !!el.isContentEditable,
      strategy,
    };
  }
"""
