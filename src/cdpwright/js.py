"""
Page-side expression building.

Every function the library runs in the page lives here, along with the code
that turns a function source plus JSON-encoded arguments into a
Runtime.evaluate expression. Selectors and values never get spliced into
source text.
"""
import json
from typing import Any


def serialize_argument(value: Any) -> str:
    """JSON-encode one argument for embedding in an expression."""
    try:
        encoded = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise TypeError(f"Argument is not JSON serializable: {value!r}") from e
    # U+2028/U+2029 are valid JSON but terminate lines in older JS parsers.
    return encoded.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")


def call_expression(function_source: str, *args: Any) -> str:
    """Return ``(function_source)(arg0, arg1, ...)`` with arguments JSON-encoded."""
    source = function_source.strip()
    encoded = ", ".join(serialize_argument(arg) for arg in args)
    return f"({source})({encoded})"


def is_function_source(text: str) -> bool:
    """Heuristic used by Page.evaluate to tell a function from a bare expression."""
    source = text.strip()
    if source.startswith(("function", "async function", "async (", "async(")):
        return True
    if source.startswith("("):
        depth = 0
        for index, char in enumerate(source):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth == 0:
                    return source[index + 1:].lstrip().startswith("=>")
        return False
    head = source.split("=>", 1)[0].strip()
    return "=>" in source and head.isidentifier()


ELEMENT_EXISTS = """
selector => document.querySelector(selector) !== null
"""

ELEMENT_VISIBLE = """
selector => {
    const element = document.querySelector(selector);
    if (!element) return false;
    const style = window.getComputedStyle(element);
    if (style.display === 'none' ||
        style.visibility === 'hidden' ||
        style.opacity === '0') {
        return false;
    }
    const rect = element.getBoundingClientRect();
    return rect.width > 0 &&
           rect.height > 0 &&
           rect.top < window.innerHeight &&
           rect.left < window.innerWidth &&
           rect.bottom > 0 &&
           rect.right > 0;
}
"""

READY_STATE = "document.readyState"

PROBE_REQUESTS = """
urls => Promise.all(urls.map(url => fetch(url).catch(() => null))).then(() => true)
"""

EXPOSE_BINDING = """
(bindingName, name) => {
    const binding = window[bindingName];
    const state = window.__cdpwright || (window.__cdpwright = {seq: 0, callbacks: new Map()});
    window[name] = (...args) => new Promise((resolve, reject) => {
        const seq = ++state.seq;
        state.callbacks.set(seq, {resolve, reject});
        binding(JSON.stringify({name, seq, args}));
    });
    return true;
}
"""

DELIVER_BINDING_RESULT = """
(seq, result, error) => {
    const state = window.__cdpwright;
    const callback = state && state.callbacks.get(seq);
    if (!callback) return false;
    state.callbacks.delete(seq);
    if (error !== null) callback.reject(new Error(error));
    else callback.resolve(result);
    return true;
}
"""

SET_CONTENT = """
html => { document.open(); document.write(html); document.close(); }
"""

# =============================================================================
# Element scripts (first argument is always the selector)
# =============================================================================

ELEMENT_CENTER = """
selector => {
    const element = document.querySelector(selector);
    if (!element) return null;
    element.scrollIntoView({block: 'center', inline: 'center'});
    const rect = element.getBoundingClientRect();
    return {x: rect.left + rect.width / 2, y: rect.top + rect.height / 2};
}
"""

FOCUS_ELEMENT = """
selector => {
    const element = document.querySelector(selector);
    if (!element) return false;
    element.focus();
    return true;
}
"""

CLEAR_ELEMENT = """
selector => {
    const element = document.querySelector(selector);
    if (!element) return false;
    element.focus();
    if (element instanceof HTMLInputElement || element instanceof HTMLTextAreaElement) {
        element.value = '';
        element.dispatchEvent(new Event('input', { bubbles: true }));
    } else if (element.isContentEditable) {
        element.textContent = '';
    }
    return true;
}
"""

READ_PROPERTY = """
(selector, property) => {
    const element = document.querySelector(selector);
    if (!element) return {found: false};
    return {found: true, value: element[property]};
}
"""

READ_ATTRIBUTE = """
(selector, name) => {
    const element = document.querySelector(selector);
    if (!element) return {found: false};
    return {found: true, value: element.getAttribute(name)};
}
"""

BOUNDING_BOX = """
selector => {
    const element = document.querySelector(selector);
    if (!element) return null;
    const rect = element.getBoundingClientRect();
    return {x: rect.left, y: rect.top, width: rect.width, height: rect.height};
}
"""

SELECT_OPTIONS = """
(selector, values) => {
    const element = document.querySelector(selector);
    if (!element) return null;
    if (!(element instanceof HTMLSelectElement)) throw new Error('Element is not a <select>');
    const selected = [];
    for (const option of element.options) {
        option.selected = values.includes(option.value) || values.includes(option.label);
        if (option.selected) {
            selected.push(option.value);
            if (!element.multiple) break;
        }
    }
    element.dispatchEvent(new Event('input', { bubbles: true }));
    element.dispatchEvent(new Event('change', { bubbles: true }));
    return selected;
}
"""

SELECTED_OPTIONS = """
selector => {
    const element = document.querySelector(selector);
    if (!element) return null;
    if (!(element instanceof HTMLSelectElement)) return [];
    return Array.from(element.selectedOptions).map(option => ({value: option.value, text: option.text}));
}
"""

HIGHLIGHT_ELEMENT = """
(selector, durationMs) => {
    const element = document.querySelector(selector);
    if (!element) return false;
    const previous = element.style.outline;
    element.style.outline = '3px solid red';
    setTimeout(() => { element.style.outline = previous; }, durationMs);
    return true;
}
"""

# =============================================================================
# Injected tags
# =============================================================================

ADD_SCRIPT_URL = """
url => new Promise((resolve, reject) => {
    const script = document.createElement('script');
    script.type = 'text/javascript';
    script.src = url;
    script.onload = () => resolve(true);
    script.onerror = () => reject(new Error(`Failed to load script: ${url}`));
    (document.head || document.documentElement).appendChild(script);
})
"""

ADD_SCRIPT_CONTENT = """
content => {
    const script = document.createElement('script');
    script.type = 'text/javascript';
    script.text = content;
    (document.head || document.documentElement).appendChild(script);
    return true;
}
"""

ADD_STYLE_URL = """
url => new Promise((resolve, reject) => {
    const link = document.createElement('link');
    link.rel = 'stylesheet';
    link.href = url;
    link.onload = () => resolve(true);
    link.onerror = () => reject(new Error(`Failed to load stylesheet: ${url}`));
    (document.head || document.documentElement).appendChild(link);
})
"""

ADD_STYLE_CONTENT = """
content => {
    const style = document.createElement('style');
    style.type = 'text/css';
    style.appendChild(document.createTextNode(content));
    (document.head || document.documentElement).appendChild(style);
    return true;
}
"""
