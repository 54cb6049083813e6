"""Step boundary node - decides whether the run continues."""

import asyncio
from typing import TYPE_CHECKING

from langgraph.graph import END
from langgraph.types import Command

from webpilot.agent.state import AgentStepState
from webpilot.agent.views import AgentStatus
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.agent.service import Agent

logger = setup_logger(__name__)

PAUSE_POLL_INTERVAL = 0.2


def create_gate_node(agent: "Agent"):
    """
    Factory to create the gate node.

    Pause and stop requests, completion and exhaustion are only observed
    here, between two steps.

    Args:
        agent: Agent owning the run state

    Returns:
        Gate node function that returns Command for routing
    """

    async def gate_node(state: AgentStepState) -> Command:
        """
        Evaluate stop conditions before the next step.

        Returns Command with:
        - goto: "observe" to run a step, END to finish the invocation
        """
        steps_taken = state.get("steps_taken", 0)
        run_state = agent.state

        if await agent.external_interrupt_requested():
            run_state.stopped = True

        while run_state.paused and not run_state.stopped:
            if run_state.status != AgentStatus.PAUSED:
                agent.set_status(AgentStatus.PAUSED)
            await asyncio.sleep(PAUSE_POLL_INTERVAL)

        if run_state.stopped:
            agent.set_status(AgentStatus.STOPPED)
            return Command(goto=END)

        if state.get("fatal"):
            agent.set_status(AgentStatus.FAILED)
            return Command(goto=END)

        if steps_taken > 0 and run_state.history.is_done():
            agent.set_status(AgentStatus.DONE)
            return Command(goto=END)

        if run_state.consecutive_failures >= agent.settings.max_failures:
            logger.error(
                f"Stopping due to {agent.settings.max_failures} consecutive failures"
            )
            agent.set_status(AgentStatus.FAILED)
            return Command(goto=END)

        if state.get("single_step"):
            if steps_taken >= 1:
                return Command(goto=END)
        elif steps_taken >= state.get("max_steps", 0):
            logger.info("Failed to complete task in maximum steps")
            agent.set_status(AgentStatus.FAILED)
            return Command(goto=END)

        if steps_taken > 0 and run_state.consecutive_failures > 0:
            logger.info(f"Waiting {agent.settings.retry_delay}s before retrying")
            await asyncio.sleep(agent.settings.retry_delay)

        agent.set_status(AgentStatus.RUNNING)
        return Command(update={"result": [], "model_output": None}, goto="observe")

    return gate_node
