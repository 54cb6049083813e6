import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from webpilot.browser._executor import BrowserExecutor
from webpilot.browser.context import BrowserContextConfig, McpBrowserContext
from webpilot.browser.views import (
    BrowserConnectionError,
    BrowserError,
    BrowserStateHistory,
    TabInfo,
    URLNotAllowedError,
)

from conftest import FakeBrowser


def _restricted_browser(**config) -> FakeBrowser:
    return FakeBrowser(
        BrowserContextConfig(
            allowed_domains=["example.com"],
            minimum_wait_page_load_time=0,
            maximum_wait_page_load_time=0.1,
            **config,
        )
    )


@pytest.mark.parametrize(
    "url, allowed",
    [
        ("https://example.com/", True),
        ("https://EXAMPLE.com/path", True),
        ("https://shop.example.com/cart", True),
        ("https://notexample.com/", False),
        ("https://example.com.evil.io/", False),
        ("about:blank", True),
        ("file:///etc/passwd", False),
    ],
)
def test_is_url_allowed(url, allowed):
    assert _restricted_browser().is_url_allowed(url) is allowed


def test_everything_allowed_without_allow_list(browser):
    assert browser.is_url_allowed("https://anything.io/")


def test_non_allowed_page_goes_back_and_raises():
    browser = _restricted_browser()
    browser.url = "https://evil.io/"

    with pytest.raises(URLNotAllowedError):
        asyncio.run(browser.check_and_handle_navigation())
    assert browser.history_back == 1
    assert browser.url == "https://example.com/"


def test_allowed_page_is_left_alone():
    browser = _restricted_browser()

    asyncio.run(browser.check_and_handle_navigation())

    assert browser.history_back == 0


def test_wait_for_page_load_recovers_from_non_allowed_page():
    browser = _restricted_browser()
    browser.url = "https://evil.io/"

    asyncio.run(browser.wait_for_page_load())

    assert browser.history_back == 1


def test_wait_for_page_load_is_bounded():
    browser = _restricted_browser()

    async def never_idle():
        await asyncio.sleep(10)

    browser._wait_for_stable_network = never_idle

    async def timed():
        loop = asyncio.get_running_loop()
        start = loop.time()
        await browser.wait_for_page_load()
        return loop.time() - start

    assert asyncio.run(timed()) < 2


def test_wait_for_page_load_pads_to_minimum_wait():
    browser = _restricted_browser()
    browser.config.minimum_wait_page_load_time = 0.2

    async def timed():
        loop = asyncio.get_running_loop()
        start = loop.time()
        await browser.wait_for_page_load()
        return loop.time() - start

    assert asyncio.run(timed()) >= 0.19


def test_state_history_uses_tab_alias():
    history = BrowserStateHistory(
        url="https://example.com/",
        title="t",
        tabs=[TabInfo(page_id=0, url="https://example.com/", title="t")],
    )

    data = history.to_dict()

    assert data["tab"][0]["page_id"] == 0
    assert BrowserStateHistory.model_validate(data).tabs == history.tabs


def _tool(*responses):
    tool = AsyncMock()
    tool.ainvoke.side_effect = list(responses)
    return tool


def test_executor_extracts_result_block():
    payload = json.dumps({"success": True, "url": "https://example.com/"})
    text = f"### Result\n{json.dumps(payload)}\n\n### Ran Playwright code\nawait page"

    assert BrowserExecutor._extract_json_from_mcp_response(text) == payload


def test_executor_maps_connection_errors():
    executor = BrowserExecutor(_tool(RuntimeError("Target closed")))

    with pytest.raises(BrowserConnectionError):
        asyncio.run(executor.execute("async (page) => {}"))


def test_executor_propagates_other_errors():
    executor = BrowserExecutor(_tool(RuntimeError("syntax error")))

    with pytest.raises(RuntimeError, match="syntax error"):
        asyncio.run(executor.execute("async (page) => {}"))


def test_executor_run_json_reports_script_failure():
    executor = BrowserExecutor(_tool(json.dumps({"success": False, "error": "no element"})))

    with pytest.raises(RuntimeError, match="no element"):
        asyncio.run(executor.run_json("return 1;"))


def test_executor_targets_tracked_page():
    tool = _tool(json.dumps({"success": True}))
    executor = BrowserExecutor(tool)
    executor.set_target_page(2)

    asyncio.run(executor.run_json("return JSON.stringify({ success: true });"))

    code = tool.ainvoke.call_args.args[0]["code"]
    assert "allPages[2]" in code
    assert executor.get_target_page() == 2


def test_mcp_context_reads_url():
    tool = _tool([{"type": "text", "text": json.dumps({"success": True, "url": "https://a.com/"})}])
    context = McpBrowserContext(tool)

    assert asyncio.run(context.get_current_url()) == "https://a.com/"


def test_mcp_context_blocks_non_allowed_navigation():
    tool = _tool()
    context = McpBrowserContext(tool, BrowserContextConfig(allowed_domains=["example.com"]))

    with pytest.raises(URLNotAllowedError):
        asyncio.run(context.navigate_to("https://evil.io/"))
    tool.ainvoke.assert_not_called()


def test_mcp_context_wraps_script_failures():
    context = McpBrowserContext(_tool(json.dumps({"success": False, "error": "timeout"})))

    with pytest.raises(BrowserError, match="timeout"):
        asyncio.run(context.go_back())
