"""Controller: the default browser action catalog."""

import asyncio
from typing import Optional
from urllib.parse import quote_plus

from langchain_core.prompts import PromptTemplate

from webpilot.agent.views import ActionResult
from webpilot.browser.context import BrowserContext
from webpilot.browser.views import ElementNotFoundError
from webpilot.controller.registry import Registry
from webpilot.controller.views import (
    ActionContext,
    ActionModel,
    ClickElementAction,
    DoneAction,
    ExtractPageContentAction,
    GoToUrlAction,
    InputTextAction,
    NoParamsAction,
    OpenTabAction,
    ScrollAction,
    ScrollToTextAction,
    SearchGoogleAction,
    SendKeysAction,
    SwitchTabAction,
    WaitAction,
)
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)

EXTRACTION_PROMPT = (
    "Your task is to extract the content of the page. You will be given a page "
    "and a goal and you should extract all relevant information around this goal "
    "from the page. If the goal is vague, summarize the page. Respond in json "
    "format. Extraction goal: {goal}, Page: {page}"
)


def _resolve_element(context: ActionContext, index: int):
    if index not in context.selector_map:
        raise ElementNotFoundError(
            f"Element with index {index} does not exist - retry or use alternative actions"
        )
    return context.selector_map[index]


class Controller:
    """
    Registers the default actions and dispatches named actions to them.

    Args:
        exclude_actions: Action names to leave out of the catalog
    """

    def __init__(self, exclude_actions: Optional[list[str]] = None):
        self.registry = Registry(exclude_actions)
        self._register_default_actions()

    def _register_default_actions(self) -> None:
        registry = self.registry

        @registry.action(
            "Complete task - with return text and if the task is finished (success=True) "
            "or not yet completely finished (success=False), because last step is reached",
            param_model=DoneAction,
        )
        async def done(params: DoneAction, browser: BrowserContext, context: ActionContext):
            return ActionResult(
                is_done=True, success=params.success, extracted_content=params.text
            )

        # Basic Navigation Actions
        @registry.action(
            "Search the query in Google in the current tab, the query should be a search "
            "query like humans search in Google, concrete and not vague or super long. "
            "More the single most important items.",
            param_model=SearchGoogleAction,
        )
        async def search_google(
            params: SearchGoogleAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.navigate_to(
                f"https://www.google.com/search?q={quote_plus(params.query)}&udm=14"
            )
            msg = f'Searched for "{params.query}" in Google'
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action("Navigate to URL in the current tab", param_model=GoToUrlAction)
        async def go_to_url(
            params: GoToUrlAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.navigate_to(params.url)
            msg = f"Navigated to {params.url}"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action("Go back", param_model=NoParamsAction)
        async def go_back(
            params: NoParamsAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.go_back()
            msg = "Navigated back"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action("Wait for x seconds default 3", param_model=WaitAction)
        async def wait(params: WaitAction, browser: BrowserContext, context: ActionContext):
            msg = f"Waiting for {params.seconds} seconds"
            logger.info(msg)
            await asyncio.sleep(params.seconds)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        # Element Interaction Actions
        @registry.action("Click element by index", param_model=ClickElementAction)
        async def click_element(
            params: ClickElementAction, browser: BrowserContext, context: ActionContext
        ):
            element_node = _resolve_element(context, params.index)

            if element_node.get_file_upload_element() is not None:
                msg = (
                    f"Index {params.index} - has an element which opens file upload "
                    "dialog. To upload files please use a specific function to upload files"
                )
                logger.info(msg)
                return ActionResult(extracted_content=msg, include_in_memory=True)

            initial_tabs = len(await browser.get_tabs_info())
            download_path = await browser.click_element_node(element_node)
            if download_path:
                msg = f"Downloaded file to {download_path}"
            else:
                msg = (
                    f"Clicked button with index {params.index}: "
                    f"{element_node.get_all_text_till_next_clickable_element(max_depth=2)}"
                )
            logger.info(msg)
            logger.debug(f"Element xpath: {element_node.xpath}")

            if len(await browser.get_tabs_info()) > initial_tabs:
                new_tab_msg = "New tab opened - switching to it"
                msg += f" - {new_tab_msg}"
                logger.info(new_tab_msg)
                await browser.switch_to_tab(-1)

            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action(
            "Input text into a input interactive element", param_model=InputTextAction
        )
        async def input_text(
            params: InputTextAction, browser: BrowserContext, context: ActionContext
        ):
            element_node = _resolve_element(context, params.index)
            await browser.input_text_element_node(element_node, params.text)

            if context.sensitive_data:
                msg = f"Input sensitive data into index {params.index}"
            else:
                msg = f"Input {params.text} into index {params.index}"
            logger.info(msg)
            logger.debug(f"Element xpath: {element_node.xpath}")
            return ActionResult(extracted_content=msg, include_in_memory=True)

        # Tab Management Actions
        @registry.action("Switch tab", param_model=SwitchTabAction)
        async def switch_tab(
            params: SwitchTabAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.switch_to_tab(params.page_id)
            msg = f"Switched to tab {params.page_id}"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action("Open url in new tab", param_model=OpenTabAction)
        async def open_tab(
            params: OpenTabAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.create_new_tab(params.url)
            msg = f"Opened new tab with {params.url}"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        # Content Actions
        @registry.action(
            "Extract page content to retrieve specific information from the page, e.g. "
            "all company names, a specific description, all information about, links "
            "with companies in structured format or simply links",
            param_model=ExtractPageContentAction,
        )
        async def extract_content(
            params: ExtractPageContentAction,
            browser: BrowserContext,
            context: ActionContext,
        ):
            content = await browser.get_page_text()

            if context.page_extraction_llm is None:
                msg = f"Extracted from page\n: {content}\n"
                logger.info(msg)
                return ActionResult(extracted_content=msg)

            template = PromptTemplate(
                input_variables=["goal", "page"], template=EXTRACTION_PROMPT
            )
            try:
                output = await context.page_extraction_llm.ainvoke(
                    template.format(goal=params.goal, page=content)
                )
                msg = f"Extracted from page\n: {output.content}\n"
                logger.info(msg)
                return ActionResult(extracted_content=msg, include_in_memory=True)
            except Exception as e:
                logger.warning(f"Error extracting content with the model: {e}")
                msg = f"Extracted from page\n: {content}\n"
                return ActionResult(extracted_content=msg)

        # Scroll Actions
        @registry.action(
            "Scroll down the page by pixel amount - if no amount is specified, scroll down one page",
            param_model=ScrollAction,
        )
        async def scroll_down(
            params: ScrollAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.scroll(params.amount)
            amount = f"{params.amount} pixels" if params.amount is not None else "one page"
            msg = f"Scrolled down the page by {amount}"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action(
            "Scroll up the page by pixel amount - if no amount is specified, scroll up one page",
            param_model=ScrollAction,
        )
        async def scroll_up(
            params: ScrollAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.scroll(params.amount, down=False)
            amount = f"{params.amount} pixels" if params.amount is not None else "one page"
            msg = f"Scrolled up the page by {amount}"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action(
            "Send strings of special keys like Escape, Backspace, Insert, PageDown, "
            "Delete, Enter, Shortcuts such as `Control+o`, `Control+Shift+T` are "
            "supported as well. This gets used in keyboard.press.",
            param_model=SendKeysAction,
        )
        async def send_keys(
            params: SendKeysAction, browser: BrowserContext, context: ActionContext
        ):
            await browser.send_keys(params.keys)
            msg = f"Sent keys: {params.keys}"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

        @registry.action(
            "If you dont find something which you want to interact with, scroll to it",
            param_model=ScrollToTextAction,
        )
        async def scroll_to_text(
            params: ScrollToTextAction, browser: BrowserContext, context: ActionContext
        ):
            if await browser.scroll_to_text(params.text):
                msg = f"Scrolled to text: {params.text}"
            else:
                msg = f"Text '{params.text}' not found or not visible on page"
            logger.info(msg)
            return ActionResult(extracted_content=msg, include_in_memory=True)

    def action(self, description: str, **kwargs):
        """Decorator for registering custom actions"""
        return self.registry.action(description, **kwargs)

    async def act(
        self,
        action: ActionModel,
        browser_context: BrowserContext,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        """
        Execute one named action.

        Args:
            action: Single-key action object from the model output
            browser_context: Browser to act on
            context: Run-scoped values, including the step's selector map

        Returns:
            ActionResult of the action
        """
        return await self.registry.execute_action(
            action.name, action.params, browser_context, context
        )
