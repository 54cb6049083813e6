"""Recording node - appends the finished step to the run history."""

import time
from typing import TYPE_CHECKING

from langgraph.types import Command

from webpilot.agent.state import AgentStepState
from webpilot.agent.views import AgentHistory, StepMetadata
from webpilot.browser.views import BrowserStateHistory
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.agent.service import Agent

logger = setup_logger(__name__)


def create_record_node(agent: "Agent"):
    """
    Factory to create the record node.

    Args:
        agent: Agent owning the run state

    Returns:
        Record node function that returns Command for routing
    """

    def record_node(state: AgentStepState) -> Command:
        """
        Append one AgentHistory entry and update the failure counter.

        Returns Command with:
        - update: steps_taken, cleared step values
        - goto: "gate"
        """
        run_state = agent.state
        model_output = state.get("model_output")
        browser_state = state.get("browser_state")
        result = list(state.get("result") or [])

        if model_output is not None and browser_state is not None:
            interacted_elements = AgentHistory.get_interacted_element(
                model_output, browser_state.selector_map
            )
        elif model_output is not None:
            interacted_elements = [None] * len(model_output.action)
        else:
            interacted_elements = []

        state_history = BrowserStateHistory(
            url=browser_state.url if browser_state else "",
            title=browser_state.title if browser_state else "",
            tabs=browser_state.tabs if browser_state else [],
            interacted_element=interacted_elements,
            screenshot=browser_state.screenshot if browser_state else None,
        )
        metadata = StepMetadata(
            step_start_time=state.get("step_start_time", time.time()),
            step_end_time=time.time(),
            input_tokens=state.get("input_tokens", 0),
            step_number=run_state.n_steps,
        )
        run_state.history.history.append(
            AgentHistory(
                model_output=model_output,
                result=result,
                state=state_history,
                metadata=metadata,
            )
        )

        if any(r.error for r in result):
            run_state.consecutive_failures += 1
            logger.warning(
                f"Step {run_state.n_steps} failed "
                f"({run_state.consecutive_failures}/{agent.settings.max_failures})"
            )
        else:
            run_state.consecutive_failures = 0

        run_state.last_result = result
        run_state.n_steps += 1

        return Command(
            update={
                "steps_taken": state.get("steps_taken", 0) + 1,
                "browser_state": None,
                "model_output": None,
            },
            goto="gate",
        )

    return record_node
