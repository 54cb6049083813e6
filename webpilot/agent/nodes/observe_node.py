"""Observation node - captures the page and adds it to the prompt."""

import time
from typing import TYPE_CHECKING

from langgraph.types import Command

from webpilot.agent.state import AgentStepState
from webpilot.agent.views import ActionResult, AgentError, AgentStepInfo
from webpilot.browser.views import BrowserConnectionError
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.agent.service import Agent

logger = setup_logger(__name__)


def create_observe_node(agent: "Agent"):
    """
    Factory to create the observe node.

    Args:
        agent: Agent owning the browser context and message manager

    Returns:
        Observe node function that returns Command for routing
    """

    async def observe_node(state: AgentStepState) -> Command:
        """
        Capture a fresh snapshot and render it as the current state message.

        Returns Command with:
        - update: browser_state, step_start_time
        - goto: "think", or "record" when the snapshot failed
        """
        step_start_time = time.time()
        logger.info(f"Step {agent.state.n_steps}")

        step_info = None
        if not state.get("single_step"):
            step_info = AgentStepInfo(
                step_number=state.get("steps_taken", 0),
                max_steps=state.get("max_steps", 0),
            )

        try:
            browser_state = await agent.browser_context.get_state(
                use_vision=agent.settings.use_vision
            )
        except BrowserConnectionError as e:
            logger.error(f"Browser connection lost: {e}")
            return Command(
                update={
                    "step_start_time": step_start_time,
                    "browser_state": None,
                    "result": [ActionResult(error=AgentError.format_error(e))],
                    "fatal": True,
                },
                goto="record",
            )
        except Exception as e:
            logger.error(f"Failed to capture browser state: {e}")
            return Command(
                update={
                    "step_start_time": step_start_time,
                    "browser_state": None,
                    "result": [
                        ActionResult(
                            error=AgentError.format_error(e), include_in_memory=True
                        )
                    ],
                },
                goto="record",
            )

        agent.message_manager.add_state_message(
            browser_state,
            agent.state.last_result,
            step_info,
            use_vision=agent.settings.use_vision,
        )
        logger.debug(
            f"State captured: {browser_state.url} with "
            f"{len(browser_state.selector_map)} interactive elements"
        )

        return Command(
            update={"step_start_time": step_start_time, "browser_state": browser_state},
            goto="think",
        )

    return observe_node
