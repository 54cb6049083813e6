"""Browser driver used by the agent.

`BrowserContext` is the interface the step loop and the actions talk to.
`McpBrowserContext` implements it by generating Playwright code that runs
through the Playwright MCP `browser_run_code` tool.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from webpilot.browser._executor import BrowserExecutor
from webpilot.browser._templates import SCROLL_INFO_JS, js_string
from webpilot.browser.views import (
    BrowserConnectionError,
    BrowserError,
    BrowserState,
    TabInfo,
    URLNotAllowedError,
)
from webpilot.dom.service import DomService
from webpilot.dom.views import DOMElementNode
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)


class BrowserContextConfig(BaseModel):
    """
    Timing and navigation policy of a browser context.

    All waits are in seconds.
    """

    minimum_wait_page_load_time: float = 0.5
    wait_for_network_idle_page_load_time: float = 1.0
    maximum_wait_page_load_time: float = 5.0
    wait_between_actions: float = 0.5
    allowed_domains: Optional[list[str]] = None
    # -1 labels the whole page, 0 only the visible viewport
    viewport_expansion: int = 500
    include_dynamic_attributes: bool = True
    action_timeout_ms: int = Field(default=10000, ge=0)


class BrowserContext(ABC):
    """
    Driver interface consumed by the agent.

    Every method may fail; failures surface as `BrowserError` subclasses and
    `BrowserConnectionError` means the browser is gone for good.
    """

    def __init__(self, config: Optional[BrowserContextConfig] = None):
        self.config = config or BrowserContextConfig()

    async def __aenter__(self) -> "BrowserContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @abstractmethod
    async def get_state(self, use_vision: bool = False) -> BrowserState:
        """Capture a fresh snapshot of the current page."""

    @abstractmethod
    async def get_current_url(self) -> str:
        ...

    @abstractmethod
    async def navigate_to(self, url: str) -> None:
        ...

    @abstractmethod
    async def go_back(self) -> None:
        ...

    @abstractmethod
    async def go_forward(self) -> None:
        ...

    @abstractmethod
    async def refresh_page(self) -> None:
        ...

    @abstractmethod
    async def click_element_node(self, element_node: DOMElementNode) -> Optional[str]:
        """Click an element, returns a download path when the click saved a file."""

    @abstractmethod
    async def input_text_element_node(
        self, element_node: DOMElementNode, text: str
    ) -> None:
        ...

    @abstractmethod
    async def get_tabs_info(self) -> list[TabInfo]:
        ...

    @abstractmethod
    async def switch_to_tab(self, page_id: int) -> None:
        """Switch to a tab by index, negative indices count from the end."""

    @abstractmethod
    async def create_new_tab(self, url: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def take_screenshot(self, full_page: bool = False) -> Optional[str]:
        """Base64 PNG of the current tab, or None when unsupported."""

    @abstractmethod
    async def send_keys(self, keys: str) -> None:
        ...

    @abstractmethod
    async def scroll(self, amount: Optional[int] = None, down: bool = True) -> None:
        """Scroll by `amount` pixels, one page when None."""

    @abstractmethod
    async def scroll_to_text(self, text: str) -> bool:
        """Scroll the first visible occurrence of `text` into view."""

    @abstractmethod
    async def get_page_text(self) -> str:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def _wait_for_stable_network(self) -> None:
        """Hook for drivers that can observe network activity."""

    def is_url_allowed(self, url: str) -> bool:
        """
        Check a URL against the allow-list.

        A host is allowed when it equals an allowed domain or is one of its
        subdomains. Everything is allowed when no allow-list is configured.
        """
        if not self.config.allowed_domains:
            return True

        try:
            domain = (urlparse(url).hostname or "").lower()
        except ValueError as e:
            logger.error(f"Error checking URL allowlist for {url}: {e}")
            return False

        # about:blank and friends carry no host
        if not domain:
            return url.startswith("about:")

        for allowed_domain in self.config.allowed_domains:
            allowed = allowed_domain.lower()
            if domain == allowed or domain.endswith(f".{allowed}"):
                return True
        return False

    async def check_and_handle_navigation(self) -> None:
        """
        Leave a page outside the allow-list.

        Raises:
            URLNotAllowedError: Always, after trying to go back, when the
                                current URL is not allowed
        """
        url = await self.get_current_url()
        if self.is_url_allowed(url):
            return

        logger.warning(f"Navigation to non-allowed URL detected: {url}")
        try:
            await self.go_back()
        except BrowserConnectionError:
            raise
        except BrowserError as e:
            logger.error(f"Failed to go back after detecting non-allowed URL: {e}")
        raise URLNotAllowedError(f"Navigation to non-allowed URL: {url}")

    async def wait_for_page_load(self, timeout_overwrite: Optional[float] = None) -> None:
        """
        Let the page settle before a snapshot.

        Waiting for the network is bounded by the maximum wait; the whole call
        always takes at least the minimum wait.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            await asyncio.wait_for(
                self._wait_for_stable_network(),
                timeout=self.config.maximum_wait_page_load_time,
            )
        except asyncio.TimeoutError:
            logger.warning("Network did not stabilize in time")
        except BrowserConnectionError:
            raise
        except BrowserError as e:
            logger.warning(f"Page load failed, continuing... ({e})")

        try:
            await self.check_and_handle_navigation()
        except URLNotAllowedError as e:
            logger.warning(f"Page load left a non-allowed page, continuing... ({e})")

        elapsed = loop.time() - start_time
        minimum = timeout_overwrite or self.config.minimum_wait_page_load_time
        remaining = max(minimum - elapsed, 0)
        if remaining > 0:
            logger.debug(f"Waiting {remaining:.2f}s for page to settle")
            await asyncio.sleep(remaining)


class McpBrowserContext(BrowserContext):
    """
    Browser context over a Playwright MCP server.

    Elements are located by their snapshot xpath. The target tab is tracked by
    the executor so every generated script resolves its own `targetPage`.
    """

    def __init__(
        self, browser_run_code_tool: Any, config: Optional[BrowserContextConfig] = None
    ):
        super().__init__(config)
        self.executor = BrowserExecutor(browser_run_code_tool)
        self.dom_service = DomService(self.executor)

    async def _run(self, body: str) -> dict:
        try:
            return await self.executor.run_json(body)
        except RuntimeError as e:
            raise BrowserError(str(e)) from e

    async def _wait_for_stable_network(self) -> None:
        idle_ms = int(self.config.wait_for_network_idle_page_load_time * 1000)
        max_ms = int(self.config.maximum_wait_page_load_time * 1000)
        await self._run(
            f"""
    try {{
      await targetPage.waitForLoadState('networkidle', {{ timeout: {max_ms} }});
    }} catch (e) {{
      // Long polling pages never go idle
    }}
    await targetPage.waitForTimeout({idle_ms});
    return JSON.stringify({{ success: true }});
"""
        )

    async def get_state(self, use_vision: bool = False) -> BrowserState:
        """
        Capture the DOM, scroll position and tabs of the target tab.

        Args:
            use_vision: Also capture a screenshot

        Returns:
            BrowserState valid for the current step only
        """
        await self.wait_for_page_load()

        dom_state = await self.dom_service.get_clickable_elements(
            viewport_expansion=self.config.viewport_expansion
        )
        page_info = await self._run(
            "    return JSON.stringify({ success: true, url: targetPage.url(), "
            "title: await targetPage.title() });"
        )
        scroll_info = await self._run(SCROLL_INFO_JS)
        screenshot = await self.take_screenshot() if use_vision else None

        return BrowserState(
            element_tree=dom_state.element_tree,
            selector_map=dom_state.selector_map,
            url=page_info.get("url", ""),
            title=page_info.get("title", ""),
            tabs=await self.get_tabs_info(),
            screenshot=screenshot,
            pixels_above=scroll_info.get("pixels_above", 0),
            pixels_below=scroll_info.get("pixels_below", 0),
        )

    async def get_current_url(self) -> str:
        result = await self._run(
            "    return JSON.stringify({ success: true, url: targetPage.url() });"
        )
        return result.get("url", "")

    async def navigate_to(self, url: str) -> None:
        """
        Navigate the target tab.

        Raises:
            URLNotAllowedError: If the URL is outside the allow-list
        """
        if not self.is_url_allowed(url):
            raise URLNotAllowedError(f"Navigation to non-allowed URL: {url}")

        await self._run(
            f"""
    await targetPage.goto('{js_string(url)}', {{
      waitUntil: 'domcontentloaded',
      timeout: 15000
    }});
    return JSON.stringify({{ success: true, url: targetPage.url() }});
"""
        )
        logger.info(f"Navigated to {url}")

    async def go_back(self) -> None:
        await self._run(
            """
    await targetPage.goBack({ timeout: 10000, waitUntil: 'domcontentloaded' });
    return JSON.stringify({ success: true, url: targetPage.url() });
"""
        )

    async def go_forward(self) -> None:
        await self._run(
            """
    await targetPage.goForward({ timeout: 10000, waitUntil: 'domcontentloaded' });
    return JSON.stringify({ success: true, url: targetPage.url() });
"""
        )

    async def refresh_page(self) -> None:
        await self._run(
            """
    await targetPage.reload({ waitUntil: 'domcontentloaded' });
    return JSON.stringify({ success: true });
"""
        )

    async def click_element_node(self, element_node: DOMElementNode) -> Optional[str]:
        """
        Click an element located by xpath.

        Falls back to a DOM click when Playwright reports the element as
        covered or outside the viewport.

        Raises:
            BrowserError: If the element is gone or the click failed
            URLNotAllowedError: If the click navigated outside the allow-list
        """
        locator = BrowserExecutor.locator_for_xpath(element_node.xpath)
        timeout = self.config.action_timeout_ms
        try:
            await self._run(
                f"""
    const element = {locator}.first();
    if (await element.count() === 0) {{
      return JSON.stringify({{ success: false, error: 'Element not found' }});
    }}
    await element.scrollIntoViewIfNeeded({{ timeout: 1000 }}).catch(() => {{}});
    try {{
      await element.click({{ timeout: {timeout} }});
    }} catch (clickError) {{
      if (clickError.message.includes('intercept') || clickError.message.includes('outside')) {{
        await element.evaluate((el) => el.click());
      }} else {{
        throw clickError;
      }}
    }}
    await targetPage.waitForLoadState('domcontentloaded').catch(() => {{}});
    return JSON.stringify({{ success: true, url: targetPage.url() }});
"""
            )
        except BrowserError as e:
            raise BrowserError(f"Failed to click element: {element_node} ({e})") from e

        await self.check_and_handle_navigation()
        return None

    async def input_text_element_node(
        self, element_node: DOMElementNode, text: str
    ) -> None:
        """
        Replace the content of an input or contenteditable element.

        Raises:
            BrowserError: If the element is gone or not editable
        """
        locator = BrowserExecutor.locator_for_xpath(element_node.xpath)
        try:
            await self._run(
                f"""
    const element = {locator}.first();
    if (await element.count() === 0) {{
      return JSON.stringify({{ success: false, error: 'Element not found' }});
    }}
    await element.scrollIntoViewIfNeeded({{ timeout: 1000 }}).catch(() => {{}});
    const editable = await element.evaluate(
      (el) => el.isContentEditable && !(el.readOnly || el.disabled)
    );
    if (editable) {{
      await element.evaluate((el) => {{ el.textContent = ''; }});
      await element.pressSequentially('{js_string(text)}', {{ delay: 5 }});
    }} else {{
      await element.fill('{js_string(text)}');
    }}
    return JSON.stringify({{ success: true }});
"""
            )
        except BrowserError as e:
            raise BrowserError(
                f"Failed to input text into index {element_node.highlight_index}: {e}"
            ) from e

    async def get_tabs_info(self) -> list[TabInfo]:
        result = await self._run(
            """
    const pages = page.context().pages();
    const tabs = [];
    for (let i = 0; i < pages.length; i++) {
      tabs.push({ page_id: i, url: pages[i].url(), title: await pages[i].title() });
    }
    return JSON.stringify({ success: true, tabs: tabs });
"""
        )
        return [TabInfo.model_validate(tab) for tab in result.get("tabs", [])]

    async def switch_to_tab(self, page_id: int) -> None:
        """
        Make a tab the target of all following operations.

        Raises:
            BrowserError: If there is no such tab
        """
        result = await self._run(
            f"""
    const pages = page.context().pages();
    let index = {page_id};
    if (index < 0) index = pages.length + index;
    if (index < 0 || index >= pages.length) {{
      return JSON.stringify({{
        success: false,
        error: `No tab found with page_id: {page_id}`
      }});
    }}
    await pages[index].bringToFront();
    return JSON.stringify({{ success: true, index: index }});
"""
        )
        self.executor.set_target_page(result["index"])
        await self.check_and_handle_navigation()
        logger.info(f"Switched to tab {result['index']}")

    async def create_new_tab(self, url: Optional[str] = None) -> None:
        if url and not self.is_url_allowed(url):
            raise URLNotAllowedError(f"Cannot open non-allowed URL: {url}")

        goto = ""
        if url:
            goto = (
                f"    await newPage.goto('{js_string(url)}', "
                "{ waitUntil: 'domcontentloaded', timeout: 15000 });"
            )
        result = await self._run(
            f"""
    const newPage = await page.context().newPage();
{goto}
    const pages = page.context().pages();
    return JSON.stringify({{ success: true, index: pages.indexOf(newPage) }});
"""
        )
        self.executor.set_target_page(result["index"])
        logger.info(f"Opened new tab {result['index']}")

    async def take_screenshot(self, full_page: bool = False) -> Optional[str]:
        full_page_js = "true" if full_page else "false"
        result = await self._run(
            f"""
    const buffer = await targetPage.screenshot({{
      fullPage: {full_page_js},
      animations: 'disabled'
    }});
    return JSON.stringify({{ success: true, screenshot: buffer.toString('base64') }});
"""
        )
        return result.get("screenshot")

    async def send_keys(self, keys: str) -> None:
        await self._run(
            f"""
    const keys = '{js_string(keys)}';
    try {{
      await targetPage.keyboard.press(keys);
    }} catch (e) {{
      if (!String(e).includes('Unknown key')) throw e;
      for (const key of keys) {{
        await targetPage.keyboard.press(key);
      }}
    }}
    return JSON.stringify({{ success: true }});
"""
        )

    async def scroll(self, amount: Optional[int] = None, down: bool = True) -> None:
        delta = "window.innerHeight" if amount is None else str(abs(int(amount)))
        if not down:
            delta = f"-{delta}"
        await self._run(
            f"""
    await targetPage.evaluate(() => window.scrollBy(0, {delta}));
    return JSON.stringify({{ success: true }});
"""
        )

    async def scroll_to_text(self, text: str) -> bool:
        escaped = js_string(text)
        result = await self._run(
            f"""
    const locators = [
      targetPage.getByText('{escaped}', {{ exact: false }}),
      targetPage.locator('text={escaped}')
    ];
    for (const locator of locators) {{
      try {{
        if (await locator.count() > 0 && await locator.first().isVisible()) {{
          await locator.first().scrollIntoViewIfNeeded();
          await targetPage.waitForTimeout(500);
          return JSON.stringify({{ success: true, found: true }});
        }}
      }} catch (e) {{
        continue;
      }}
    }}
    return JSON.stringify({{ success: true, found: false }});
"""
        )
        return bool(result.get("found"))

    async def get_page_text(self) -> str:
        result = await self._run(
            """
    const text = await targetPage.evaluate(() => document.body ? document.body.innerText : '');
    return JSON.stringify({ success: true, text: text });
"""
        )
        return result.get("text", "")

    async def close(self) -> None:
        # The MCP server owns the browser; only the tab tracking is reset
        self.executor.set_target_page(None)
        logger.info("Browser context closed")

