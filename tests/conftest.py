"""Shared fakes: an in-memory browser and page trees."""

import json
from typing import Optional

import pytest

from webpilot.browser.context import BrowserContext, BrowserContextConfig
from webpilot.browser.views import BrowserState, TabInfo
from webpilot.dom.views import DOMElementNode, DOMTextNode, SelectorMap


def make_page(offset: int = 0, button_xpath: str = "html/body/div/button[1]"):
    """
    Page with a heading text, a button, a text input and a link.

    `offset` shifts every highlight index, as if new elements appeared above.
    """
    button = DOMElementNode(
        tag_name="button",
        xpath=button_xpath,
        attributes={"class": "primary"},
        is_visible=True,
        is_interactive=True,
        is_top_element=True,
        highlight_index=1 + offset,
        children=[DOMTextNode(text="Submit", is_visible=True)],
    )
    search_input = DOMElementNode(
        tag_name="input",
        xpath="html/body/div/input[1]",
        attributes={"type": "text", "name": "q", "placeholder": "Search"},
        is_visible=True,
        is_interactive=True,
        is_top_element=True,
        highlight_index=2 + offset,
    )
    link = DOMElementNode(
        tag_name="a",
        xpath="html/body/a[1]",
        attributes={"href": "/next"},
        is_visible=True,
        is_interactive=True,
        is_top_element=True,
        highlight_index=3 + offset,
        children=[DOMTextNode(text="Next page", is_visible=True)],
    )
    form = DOMElementNode(
        tag_name="div",
        xpath="html/body/div",
        is_visible=True,
        children=[button, search_input],
    )
    body = DOMElementNode(
        tag_name="body",
        xpath="html/body",
        is_visible=True,
        children=[DOMTextNode(text="Welcome", is_visible=True), form, link],
    )
    root = DOMElementNode(tag_name="html", xpath="html", is_visible=True, children=[body])
    selector_map: SelectorMap = {
        button.highlight_index: button,
        search_input.highlight_index: search_input,
        link.highlight_index: link,
    }
    return root, selector_map


class FakeBrowser(BrowserContext):
    """BrowserContext that records calls instead of driving a browser."""

    def __init__(self, config: Optional[BrowserContextConfig] = None, **page_kwargs):
        super().__init__(
            config
            or BrowserContextConfig(
                wait_between_actions=0,
                minimum_wait_page_load_time=0,
                maximum_wait_page_load_time=0.1,
            )
        )
        self.page_kwargs = page_kwargs
        self.url = "https://example.com/"
        self.tabs = [TabInfo(page_id=0, url=self.url, title="Example")]
        self.history_back = 0
        self.clicked: list[DOMElementNode] = []
        self.typed: list[tuple[str, str]] = []
        self.scrolls: list[tuple[Optional[int], bool]] = []
        self.keys: list[str] = []
        self.state_error: Optional[Exception] = None
        self.click_error: Optional[Exception] = None
        self.open_tab_on_click = False
        self.snapshots = 0
        self.closed = False

    async def get_state(self, use_vision: bool = False) -> BrowserState:
        self.snapshots += 1
        if self.state_error is not None:
            raise self.state_error
        root, selector_map = make_page(**self.page_kwargs)
        return BrowserState(
            element_tree=root,
            selector_map=selector_map,
            url=self.url,
            title="Example",
            tabs=list(self.tabs),
            screenshot="iVBORw0KGgo=" if use_vision else None,
        )

    async def get_current_url(self) -> str:
        return self.url

    async def navigate_to(self, url: str) -> None:
        self.url = url

    async def go_back(self) -> None:
        self.history_back += 1
        self.url = "https://example.com/"

    async def go_forward(self) -> None:
        pass

    async def refresh_page(self) -> None:
        pass

    async def click_element_node(self, element_node: DOMElementNode) -> Optional[str]:
        if self.click_error is not None:
            raise self.click_error
        self.clicked.append(element_node)
        if self.open_tab_on_click:
            self.tabs.append(TabInfo(page_id=len(self.tabs), url="about:blank", title=""))
        return None

    async def input_text_element_node(self, element_node: DOMElementNode, text: str) -> None:
        self.typed.append((element_node.xpath, text))

    async def get_tabs_info(self) -> list[TabInfo]:
        return list(self.tabs)

    async def switch_to_tab(self, page_id: int) -> None:
        self.url = self.tabs[page_id].url

    async def create_new_tab(self, url: Optional[str] = None) -> None:
        self.tabs.append(TabInfo(page_id=len(self.tabs), url=url or "about:blank", title=""))
        self.url = url or "about:blank"

    async def take_screenshot(self, full_page: bool = False) -> Optional[str]:
        return None

    async def send_keys(self, keys: str) -> None:
        self.keys.append(keys)

    async def scroll(self, amount: Optional[int] = None, down: bool = True) -> None:
        self.scrolls.append((amount, down))

    async def scroll_to_text(self, text: str) -> bool:
        return text == "Welcome"

    async def get_page_text(self) -> str:
        return "Welcome Submit Next page"

    async def close(self) -> None:
        self.closed = True


def model_response(actions: list[dict], next_goal: str = "continue") -> str:
    """JSON text of a model answer for the raw tool calling method."""
    return json.dumps(
        {
            "current_state": {
                "evaluation_previous_goal": "Success",
                "memory": "",
                "next_goal": next_goal,
            },
            "action": actions,
        }
    )


@pytest.fixture
def page():
    return make_page()


@pytest.fixture
def browser():
    return FakeBrowser()
