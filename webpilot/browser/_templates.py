"""JavaScript code templates for the MCP browser context.

This module contains the JavaScript fragments that are embedded into the
generated Playwright code run through `browser_run_code`.
"""

# Extract the visible DOM as a flat node map: {map: {id: node}, rootId}
# Used by: DomService.get_clickable_elements
DOM_TREE_JS = """
    const evalPage = await targetPage.evaluate((args) => {
      const map = {};
      let nextId = 0;
      let highlightIndex = 0;
      const expansion = args.viewportExpansion;

      const SKIP_TAGS = new Set(['script', 'style', 'noscript', 'svg', 'meta', 'link', 'head', 'template']);
      const INTERACTIVE_TAGS = new Set(['a', 'button', 'input', 'select', 'textarea', 'details', 'summary', 'option', 'label']);
      const INTERACTIVE_ROLES = new Set([
        'button', 'link', 'checkbox', 'radio', 'tab', 'menuitem', 'option',
        'switch', 'textbox', 'combobox', 'searchbox', 'slider'
      ]);

      function getXPath(el) {
        const parts = [];
        while (el && el.nodeType === Node.ELEMENT_NODE) {
          let index = 1;
          let sibling = el.previousElementSibling;
          while (sibling) {
            if (sibling.tagName === el.tagName) index++;
            sibling = sibling.previousElementSibling;
          }
          const tag = el.tagName.toLowerCase();
          parts.unshift(index > 1 ? `${tag}[${index}]` : tag);
          el = el.parentElement;
        }
        return parts.join('/');
      }

      function isVisible(el) {
        const style = window.getComputedStyle(el);
        return el.offsetWidth > 0 && el.offsetHeight > 0 &&
          style.visibility !== 'hidden' && style.display !== 'none';
      }

      function isInteractive(el) {
        const tag = el.tagName.toLowerCase();
        if (INTERACTIVE_TAGS.has(tag)) return !el.disabled;
        const role = el.getAttribute('role');
        if (role && INTERACTIVE_ROLES.has(role)) return true;
        if (el.hasAttribute('onclick') || el.getAttribute('contenteditable') === 'true') return true;
        const tabindex = el.getAttribute('tabindex');
        return tabindex !== null && tabindex !== '-1';
      }

      function isInExpandedViewport(rect) {
        if (expansion === -1) return true;
        return rect.bottom >= -expansion && rect.top <= window.innerHeight + expansion &&
          rect.right >= -expansion && rect.left <= window.innerWidth + expansion;
      }

      function isTopElement(el, rect) {
        const cx = rect.left + rect.width / 2;
        const cy = rect.top + rect.height / 2;
        if (cx < 0 || cy < 0 || cx > window.innerWidth || cy > window.innerHeight) return true;
        const top = document.elementFromPoint(cx, cy);
        return top === el || (top !== null && el.contains(top));
      }

      function coordinates(rect, dx, dy) {
        const point = (x, y) => ({ x: x + dx, y: y + dy });
        return {
          top_left: point(rect.left, rect.top),
          top_right: point(rect.right, rect.top),
          bottom_left: point(rect.left, rect.bottom),
          bottom_right: point(rect.right, rect.bottom),
          center: point(rect.left + rect.width / 2, rect.top + rect.height / 2),
          width: rect.width,
          height: rect.height
        };
      }

      function walk(node) {
        if (node.nodeType === Node.TEXT_NODE) {
          const text = node.textContent.trim();
          if (!text) return null;
          const id = String(nextId++);
          map[id] = {
            type: 'TEXT_NODE',
            text: text,
            isVisible: node.parentElement ? isVisible(node.parentElement) : false
          };
          return id;
        }
        if (node.nodeType !== Node.ELEMENT_NODE) return null;

        const tag = node.tagName.toLowerCase();
        if (SKIP_TAGS.has(tag)) return null;

        const rect = node.getBoundingClientRect();
        const visible = isVisible(node);
        const interactive = visible && isInteractive(node);
        const top = visible && isTopElement(node, rect);
        const inViewport = isInExpandedViewport(rect);

        const attributes = {};
        for (const attr of node.attributes) attributes[attr.name] = attr.value;

        const data = {
          tagName: tag,
          xpath: getXPath(node),
          attributes: attributes,
          children: [],
          isVisible: visible,
          isInteractive: interactive,
          isTopElement: top,
          isInViewport: inViewport,
          shadowRoot: !!node.shadowRoot,
          highlightIndex: null
        };

        if (interactive && top && inViewport) {
          data.highlightIndex = highlightIndex++;
          data.viewportCoordinates = coordinates(rect, 0, 0);
          data.pageCoordinates = coordinates(rect, window.scrollX, window.scrollY);
          data.viewport = {
            width: window.innerWidth,
            height: window.innerHeight,
            scrollX: window.scrollX,
            scrollY: window.scrollY
          };
        }

        const id = String(nextId++);
        map[id] = data;

        const childNodes = node.shadowRoot
          ? [...node.shadowRoot.childNodes, ...node.childNodes]
          : [...node.childNodes];
        for (const child of childNodes) {
          const childId = walk(child);
          if (childId !== null) data.children.push(childId);
        }
        return id;
      }

      const rootId = walk(document.body);
      return { map: map, rootId: rootId };
    }, __ARGS__);

    return JSON.stringify(evalPage);
"""

# Pixels of content above and below the current viewport
SCROLL_INFO_JS = """
    const info = await targetPage.evaluate(() => {
      const scrollY = window.scrollY;
      const viewportHeight = window.innerHeight;
      const totalHeight = document.documentElement.scrollHeight;
      return {
        pixels_above: Math.round(scrollY),
        pixels_below: Math.max(Math.round(totalHeight - (scrollY + viewportHeight)), 0)
      };
    });
    return JSON.stringify({ success: true, ...info });
"""


def build_async_function(body: str, page_finder: str = "const targetPage = page;") -> str:
    """
    Build complete async Playwright function.

    Args:
        body: Main function body (JavaScript code) operating on `targetPage`
        page_finder: JavaScript that declares `targetPage`

    Returns:
        Complete async (page) => { ... } function
    """
    return f"""async (page) => {{
  try {{
{page_finder}
{body}
  }} catch (error) {{
    return JSON.stringify({{
      success: false,
      error: error.message,
      errorType: error.name
    }});
  }}
}}"""


def js_string(value: str) -> str:
    """Escape a Python string for embedding inside single-quoted JS."""
    return (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
