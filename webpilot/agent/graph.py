"""LangGraph step loop with Command API and modular nodes."""

from typing import TYPE_CHECKING

from langgraph.graph import START, StateGraph

from webpilot.agent.nodes import (
    create_act_node,
    create_gate_node,
    create_observe_node,
    create_record_node,
    create_think_node,
)
from webpilot.agent.state import AgentStepState
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.agent.service import Agent

logger = setup_logger(__name__)

# gate -> observe -> think -> act -> record
NODES_PER_STEP = 5


def create_step_graph(agent: "Agent"):
    """
    Create the step loop of an agent.

    Architecture:
    - Uses Command returns instead of conditional edges
    - Each node decides its own next destination
    - The graph state only carries step-scoped values; the run record is
      owned by the agent

    Flow:
        START → gate → observe → think → act → record → gate → ... → END

    Failed snapshots and unparseable model output skip straight to record,
    so every attempted step leaves one history entry.

    Args:
        agent: Agent whose browser, model and controller the nodes use

    Returns:
        Compiled LangGraph graph
    """
    workflow = StateGraph(AgentStepState)

    # Add all nodes (NO EDGES - nodes use Command to route!)
    workflow.add_node("gate", create_gate_node(agent))
    workflow.add_node("observe", create_observe_node(agent))
    workflow.add_node("think", create_think_node(agent))
    workflow.add_node("act", create_act_node(agent))
    workflow.add_node("record", create_record_node(agent))

    # Only define entry point - rest is Command-based
    workflow.add_edge(START, "gate")

    graph = workflow.compile()
    logger.debug("Step graph compiled with 5 nodes")
    return graph


def recursion_limit_for(max_steps: int) -> int:
    """Graph supersteps needed for `max_steps` steps plus the final gate."""
    return (max_steps + 1) * NODES_PER_STEP + 10
