"""Execution node - runs the chosen actions against the browser."""

from typing import TYPE_CHECKING

from langgraph.types import Command

from webpilot.agent.state import AgentStepState
from webpilot.agent.views import ActionResult, AgentError
from webpilot.browser.views import BrowserConnectionError
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.agent.service import Agent

logger = setup_logger(__name__)


def create_act_node(agent: "Agent"):
    """
    Factory to create the act node.

    Args:
        agent: Agent owning the controller and browser context

    Returns:
        Act node function that returns Command for routing
    """

    async def act_node(state: AgentStepState) -> Command:
        """
        Execute the actions of the model output in order.

        Indices are resolved against the selector map of the snapshot the
        prompt was built from.

        Returns Command with:
        - update: result (one entry per attempted action)
        - goto: "record"
        """
        model_output = state["model_output"]
        browser_state = state.get("browser_state")
        selector_map = browser_state.selector_map if browser_state else {}

        try:
            result = await agent.multi_act(model_output.action, selector_map)
        except BrowserConnectionError as e:
            logger.error(f"Browser connection lost: {e}")
            return Command(
                update={"result": [ActionResult(error=AgentError.format_error(e))], "fatal": True},
                goto="record",
            )

        return Command(update={"result": result}, goto="record")

    return act_node
