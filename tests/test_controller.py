import asyncio
from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage
from pydantic import BaseModel

from webpilot.agent.views import ActionResult
from webpilot.browser.views import ElementNotFoundError
from webpilot.controller.registry import Registry
from webpilot.controller.service import Controller
from webpilot.controller.views import ActionContext


@pytest.fixture
def controller():
    return Controller()


@pytest.fixture
def context(page):
    _, selector_map = page
    return ActionContext(selector_map=selector_map)


def _act(controller, browser, context, **action):
    action_model = controller.registry.create_action_model()
    return asyncio.run(controller.act(action_model(**action), browser, context))


def test_default_catalog(controller):
    assert set(controller.registry.actions) == {
        "done",
        "search_google",
        "go_to_url",
        "go_back",
        "wait",
        "click_element",
        "input_text",
        "switch_tab",
        "open_tab",
        "extract_content",
        "scroll_down",
        "scroll_up",
        "send_keys",
        "scroll_to_text",
    }
    description = controller.registry.get_prompt_description()
    assert "click_element" in description
    assert "index" in description


def test_excluded_actions_are_not_registered():
    controller = Controller(exclude_actions=["search_google", "wait"])

    assert not controller.registry.has_action("search_google")
    assert not controller.registry.has_action("wait")
    assert controller.registry.has_action("done")


def test_unknown_action_is_an_error_result(browser):
    result = asyncio.run(Controller().registry.execute_action("fly", {}, browser))

    assert result.error == "Action fly is not registered"


def test_invalid_params_are_an_error_result(controller, browser):
    result = asyncio.run(
        controller.registry.execute_action("click_element", {"index": "abc"}, browser)
    )

    assert result.error is not None
    assert "click_element" in result.error
    assert browser.clicked == []


def test_click_element(controller, browser, context):
    result = _act(controller, browser, context, click_element={"index": 1})

    assert [e.tag_name for e in browser.clicked] == ["button"]
    assert result.include_in_memory
    assert "Clicked button with index 1: Submit" in result.extracted_content


def test_click_unknown_index_raises(controller, browser, context):
    with pytest.raises(ElementNotFoundError):
        _act(controller, browser, context, click_element={"index": 42})
    assert browser.clicked == []


def test_click_switches_to_new_tab(controller, browser, context):
    browser.open_tab_on_click = True

    result = _act(controller, browser, context, click_element={"index": 3})

    assert "New tab opened" in result.extracted_content
    assert browser.url == "about:blank"


def test_input_text_with_secret(controller, browser, page):
    _, selector_map = page
    context = ActionContext(selector_map=selector_map, sensitive_data={"pw": "hunter2"})

    result = _act(
        controller, browser, context, input_text={"index": 2, "text": "<secret>pw</secret>"}
    )

    assert browser.typed == [("html/body/div/input[1]", "hunter2")]
    assert result.extracted_content == "Input sensitive data into index 2"


def test_done(controller, browser, context):
    result = _act(controller, browser, context, done={"text": "finished", "success": False})

    assert result.is_done
    assert result.success is False
    assert result.extracted_content == "finished"


def test_navigation_actions(controller, browser, context):
    _act(controller, browser, context, go_to_url={"url": "https://example.org/"})
    assert browser.url == "https://example.org/"

    _act(controller, browser, context, search_google={"query": "python asyncio"})
    assert browser.url.startswith("https://www.google.com/search?q=python+asyncio")

    result = _act(controller, browser, context, go_back={})
    assert browser.history_back == 1
    assert result.extracted_content == "Navigated back"


def test_scroll_actions(controller, browser, context):
    _act(controller, browser, context, scroll_down={})
    _act(controller, browser, context, scroll_up={"amount": 300})

    assert browser.scrolls == [(None, True), (300, False)]


def test_scroll_to_text_reports_missing_text(controller, browser, context):
    found = _act(controller, browser, context, scroll_to_text={"text": "Welcome"})
    missing = _act(controller, browser, context, scroll_to_text={"text": "Nope"})

    assert found.extracted_content == "Scrolled to text: Welcome"
    assert "not found" in missing.extracted_content


def test_extract_content_uses_page_extraction_llm(controller, browser, page):
    _, selector_map = page
    llm = AsyncMock()
    llm.ainvoke.return_value = AIMessage(content='{"title": "Welcome"}')
    context = ActionContext(selector_map=selector_map, page_extraction_llm=llm)

    result = _act(controller, browser, context, extract_content={"goal": "title"})

    prompt = llm.ainvoke.call_args.args[0]
    assert "Extraction goal: title" in prompt
    assert "Welcome Submit Next page" in prompt
    assert '{"title": "Welcome"}' in result.extracted_content
    assert result.include_in_memory


def test_extract_content_without_llm_returns_page_text(controller, browser, context):
    result = _act(controller, browser, context, extract_content={"goal": "anything"})

    assert "Welcome Submit Next page" in result.extracted_content
    assert not result.include_in_memory


def test_custom_action_return_values_are_normalized(browser):
    registry = Registry()

    class EchoAction(BaseModel):
        text: str

    @registry.action("Echo text", param_model=EchoAction)
    async def echo(params: EchoAction, browser, context):
        return params.text

    @registry.action("Do nothing")
    async def noop(params, browser, context):
        return None

    echoed = asyncio.run(registry.execute_action("echo", {"text": "hi"}, browser))
    nothing = asyncio.run(registry.execute_action("noop", {"ignored": 1}, browser))

    assert echoed == ActionResult(extracted_content="hi")
    assert nothing == ActionResult()


def test_handler_exceptions_propagate(browser):
    registry = Registry()

    @registry.action("Always fails")
    async def explode(params, browser, context):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(registry.execute_action("explode", {}, browser))
