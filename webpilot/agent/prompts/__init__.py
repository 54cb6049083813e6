"""Промпты агента: системный промпт и сообщение о состоянии страницы."""

from webpilot.agent.prompts.browser_rules import (
    BASE_PROMPT,
    BROWSER_RULES,
    INPUT_FORMAT,
    RESPONSE_FORMAT,
)
from webpilot.agent.prompts.state import AgentMessagePrompt
from webpilot.agent.prompts.system import SystemPrompt

__all__ = [
    # Модули
    "BASE_PROMPT",
    "INPUT_FORMAT",
    "RESPONSE_FORMAT",
    "BROWSER_RULES",
    # Построители сообщений
    "SystemPrompt",
    "AgentMessagePrompt",
]
