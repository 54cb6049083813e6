"""State definition for the agent step graph."""

from typing import Optional

from typing_extensions import TypedDict

from webpilot.agent.views import ActionResult, AgentOutput
from webpilot.browser.views import BrowserState


class AgentStepState(TypedDict, total=False):
    """
    Step-scoped values passed between graph nodes.

    The run record (AgentState) is owned by the Agent; the graph only carries
    what one step produces and the bounds of the current invocation.
    """

    # Invocation bounds
    max_steps: int  # Steps allowed for this run() call
    single_step: bool  # Stop after one step (Agent.step)
    steps_taken: int  # Steps recorded during this invocation

    # Current step
    step_start_time: float
    browser_state: Optional[BrowserState]  # Snapshot the prompt was built from
    input_tokens: int
    model_output: Optional[AgentOutput]
    result: list[ActionResult]
    fatal: bool  # Browser connection lost, no further steps
