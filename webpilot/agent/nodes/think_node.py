"""Core reasoning node - the model decides the next actions."""

from typing import TYPE_CHECKING

from langgraph.types import Command

from webpilot.agent.message_manager.utils import save_conversation
from webpilot.agent.state import AgentStepState
from webpilot.agent.views import ActionResult, AgentError
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.agent.service import Agent

logger = setup_logger(__name__)


def create_think_node(agent: "Agent"):
    """
    Factory to create the think node.

    Args:
        agent: Agent owning the model and message manager

    Returns:
        Think node function that returns Command for routing
    """

    async def think_node(state: AgentStepState) -> Command:
        """
        Call the model with the bounded history and parse its output.

        The state message of this step is removed again afterwards, so the
        history holds one state message at most.

        Returns Command with:
        - update: model_output, input_tokens (or an error result)
        - goto: "act", or "record" when the output could not be parsed
        """
        message_manager = agent.message_manager
        input_messages = message_manager.get_messages()
        input_tokens = message_manager.get_total_tokens()

        try:
            model_output = await agent.get_next_action(input_messages)
        except Exception as e:
            message_manager.remove_last_state_message()
            error_msg = AgentError.format_error(e)
            logger.error(f"Model output rejected: {error_msg}")
            return Command(
                update={
                    "input_tokens": input_tokens,
                    "model_output": None,
                    "result": [ActionResult(error=error_msg, include_in_memory=True)],
                },
                goto="record",
            )

        browser_state = state.get("browser_state")
        try:
            await agent.notify_new_step(browser_state, model_output)
        except Exception as e:
            logger.error(f"New step callback failed: {e}", exc_info=True)

        if agent.settings.save_conversation_path:
            target = f"{agent.settings.save_conversation_path}_{agent.state.n_steps}.txt"
            try:
                save_conversation(input_messages, model_output, target)
            except OSError as e:
                logger.error(f"Could not save conversation to {target}: {e}")

        message_manager.remove_last_state_message()
        message_manager.add_model_output(model_output)

        return Command(
            update={"input_tokens": input_tokens, "model_output": model_output},
            goto="act",
        )

    return think_node
