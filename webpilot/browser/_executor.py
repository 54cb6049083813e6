"""BrowserExecutor for executing Playwright code via MCP."""

import json
import re
from typing import Any, Optional

from webpilot.browser._templates import build_async_function, js_string
from webpilot.browser.views import BrowserConnectionError
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)

# Failures that mean the browser itself is gone, not that one script failed
CONNECTION_ERROR_MARKERS = (
    "target closed",
    "browser has been closed",
    "browser closed",
    "connection closed",
    "econnrefused",
    "websocket",
)


class BrowserExecutor:
    """
    Holds the MCP browser_run_code tool for one browser session.

    Tab Management Strategy:
    MCP's internal current tab does not follow pages created from inside
    browser_run_code, so the executor tracks the index of the target tab and
    every script resolves `targetPage` from the context pages itself.
    """

    def __init__(self, browser_run_code_tool: Any):
        """
        Args:
            browser_run_code_tool: The browser_run_code tool from MCP server
        """
        self._browser_run_code_tool = browser_run_code_tool
        self._target_page_index: Optional[int] = None
        logger.info("BrowserExecutor initialized with browser_run_code tool")

    @staticmethod
    def _extract_json_from_mcp_response(text: str) -> str:
        """
        Extract JSON from MCP markdown response format.

        @playwright/mcp returns responses in markdown format:
        ```
        ### Result
        "{\"success\":true,...}"

        ### Ran Playwright code
        await (async (page) => {...
        ```

        Args:
            text: Raw MCP response text

        Returns:
            Extracted JSON string, or original text if no Result block found
        """
        if "### Result" not in text:
            return text

        # The JSON is escaped and wrapped in quotes
        match = re.search(r'### Result\s*\n"(.*?)"(?:\s*\n|$)', text, re.DOTALL)
        if not match:
            match = re.search(r"### Result\s*\n(.+?)(?:\n###|$)", text, re.DOTALL)
            if match:
                return match.group(1).strip()
            return text

        escaped_json = match.group(1)

        try:
            # The result is a JSON string literal; decoding it yields the payload
            unescaped = json.loads(f'"{escaped_json}"')
            json.loads(unescaped)
            return unescaped
        except json.JSONDecodeError:
            logger.warning(
                f"Failed to unescape JSON, using original: {escaped_json[:100]}..."
            )
            return escaped_json

    @staticmethod
    def _result_to_text(result: Any) -> str:
        # MCP tool may return str, a list of content blocks or a dict
        if isinstance(result, str):
            return result
        if isinstance(result, list):
            texts = []
            for item in result:
                if isinstance(item, dict) and "text" in item:
                    texts.append(item["text"])
                elif isinstance(item, str):
                    texts.append(item)
            return "\n".join(texts) if texts else str(result)
        if isinstance(result, dict):
            if "text" in result:
                return result["text"]
            if "content" in result:
                return str(result["content"])
        return str(result)

    async def execute(self, code: str) -> str:
        """
        Execute Playwright JavaScript code via browser_run_code MCP tool.

        Args:
            code: Playwright JavaScript code in format:
                  async (page) => { ... return result; }

        Returns:
            Result of code execution as string (JSON)

        Raises:
            BrowserConnectionError: If the browser or the MCP server is gone
        """
        logger.debug(f"Executing Playwright code: {code[:100]}...")

        try:
            result = await self._browser_run_code_tool.ainvoke({"code": code})
        except Exception as e:
            message = str(e).lower()
            if any(marker in message for marker in CONNECTION_ERROR_MARKERS):
                raise BrowserConnectionError(f"Browser connection lost: {e}") from e
            raise

        raw_text = self._result_to_text(result)
        extracted = self._extract_json_from_mcp_response(raw_text)
        logger.debug(f"Extracted result: {extracted[:200]}...")

        lowered = extracted.lower()
        if any(marker in lowered for marker in CONNECTION_ERROR_MARKERS[:3]):
            raise BrowserConnectionError(f"Browser connection lost: {extracted[:200]}")

        return extracted

    async def run(self, body: str) -> str:
        """Wrap a script body operating on `targetPage` and execute it."""
        return await self.execute(build_async_function(body, self.get_page_finder_code()))

    async def run_json(self, body: str) -> dict:
        """
        Execute a script body and decode its JSON result.

        Raises:
            RuntimeError: If the script reported success=false
        """
        raw = await self.run(body)
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            raise RuntimeError(f"Unexpected browser response: {raw[:200]}")

        if isinstance(parsed, dict) and parsed.get("success") is False:
            raise RuntimeError(parsed.get("error") or "Browser script failed")
        return parsed

    def set_target_page(self, page_index: Optional[int]) -> None:
        """
        Set the target tab for subsequent operations.

        Args:
            page_index: Index into context.pages(), None for MCP's current page
        """
        self._target_page_index = page_index
        logger.debug(f"Target page set to: {page_index}")

    def get_target_page(self) -> Optional[int]:
        return self._target_page_index

    def get_page_finder_code(self) -> str:
        """
        Generate JavaScript code to find the target page.

        Returns JS code that sets `targetPage` variable to the correct page.
        """
        if self._target_page_index is None:
            return "    const targetPage = page;"

        return f"""
    const allPages = page.context().pages();
    let targetPage = allPages[{self._target_page_index}];
    if (!targetPage) {{
        // Fallback to last page (most recently created) or default page
        targetPage = allPages.length > 0 ? allPages[allPages.length - 1] : page;
    }}
"""

    @staticmethod
    def locator_for_xpath(xpath: str) -> str:
        """JS expression locating an element by its absolute xpath."""
        return f"targetPage.locator('xpath=/{js_string(xpath.lstrip('/'))}')"
