"""Сообщение с текущим состоянием браузера."""

from datetime import datetime
from typing import Optional

from langchain_core.messages import HumanMessage

from webpilot.agent.views import ActionResult, AgentStepInfo
from webpilot.browser.views import BrowserState


class AgentMessagePrompt:
    """Renders a BrowserState plus last action results into a user message."""

    def __init__(
        self,
        state: BrowserState,
        result: Optional[list[ActionResult]] = None,
        include_attributes: Optional[list[str]] = None,
        step_info: Optional[AgentStepInfo] = None,
    ):
        self.state = state
        self.result = result
        self.include_attributes = include_attributes or []
        self.step_info = step_info

    def _elements_text(self) -> str:
        elements_text = self.state.element_tree.clickable_elements_to_string(
            include_attributes=self.include_attributes
        )
        if not elements_text:
            return "empty page"

        if self.state.pixels_above > 0:
            elements_text = (
                f"... {self.state.pixels_above} pixels above - scroll or extract "
                f"content to see more ...\n{elements_text}"
            )
        else:
            elements_text = f"[Start of page]\n{elements_text}"

        if self.state.pixels_below > 0:
            elements_text = (
                f"{elements_text}\n... {self.state.pixels_below} pixels below - "
                "scroll or extract content to see more ..."
            )
        else:
            elements_text = f"{elements_text}\n[End of page]"

        return elements_text

    def get_user_message(self, use_vision: bool = True) -> HumanMessage:
        """
        Build the state message.

        Args:
            use_vision: Attach the screenshot when the state has one

        Returns:
            HumanMessage with text, or text plus image parts
        """
        step_info_description = ""
        if self.step_info:
            step_info_description = (
                f"Current step: {self.step_info.step_number + 1}/{self.step_info.max_steps}\n"
            )
        time_str = datetime.now().strftime("%Y-%m-%d %H:%M")
        step_info_description += f"Current date and time: {time_str}"

        tabs = "\n".join(
            f"- page_id={tab.page_id}: {tab.title} ({tab.url})" for tab in self.state.tabs
        )

        state_description = f"""
[Task history memory ends]
[Current state starts here]
The following is one-time information - if you need to remember it write it to memory:
Current url: {self.state.url}
Available tabs:
{tabs}
Interactive elements from top layer of the current page inside the viewport:
{self._elements_text()}
{step_info_description}
"""

        if self.result:
            for i, result in enumerate(self.result):
                if result.extracted_content:
                    state_description += (
                        f"\nAction result {i + 1}/{len(self.result)}: "
                        f"{result.extracted_content}"
                    )
                if result.error:
                    # only the last line of an error
                    error = result.error.split("\n")[-1]
                    state_description += (
                        f"\nAction error {i + 1}/{len(self.result)}: ...{error}"
                    )

        if self.state.screenshot and use_vision:
            return HumanMessage(
                content=[
                    {"type": "text", "text": state_description},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/png;base64,{self.state.screenshot}"
                        },
                    },
                ]
            )

        return HumanMessage(content=state_description)
