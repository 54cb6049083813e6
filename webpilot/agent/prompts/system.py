"""Системный промпт агента."""

from typing import Optional

from langchain_core.messages import SystemMessage

from webpilot.agent.prompts.browser_rules import (
    BASE_PROMPT,
    BROWSER_RULES,
    INPUT_FORMAT,
    RESPONSE_FORMAT,
)


class SystemPrompt:
    """
    Builds the system message from the rules and the action catalog.

    Args:
        action_description: Registry description of the available actions
        max_actions_per_step: Upper bound of actions in one response
        override_system_message: Replaces the built-in rules entirely
        extend_system_message: Appended to the rules
    """

    def __init__(
        self,
        action_description: str,
        max_actions_per_step: int = 10,
        override_system_message: Optional[str] = None,
        extend_system_message: Optional[str] = None,
    ):
        self.default_action_description = action_description
        self.max_actions_per_step = max_actions_per_step

        if override_system_message:
            prompt = override_system_message
        else:
            prompt = "\n\n".join(
                [
                    BASE_PROMPT,
                    INPUT_FORMAT,
                    RESPONSE_FORMAT.format(max_actions=max_actions_per_step),
                    BROWSER_RULES,
                    f"## Доступные действия\n\n{action_description}",
                ]
            )

        if extend_system_message:
            prompt += f"\n{extend_system_message}"

        self.system_message = SystemMessage(content=prompt)

    def get_system_message(self) -> SystemMessage:
        return self.system_message
