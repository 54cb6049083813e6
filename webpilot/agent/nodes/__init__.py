"""Export all node factory functions."""

from webpilot.agent.nodes.act_node import create_act_node
from webpilot.agent.nodes.gate_node import create_gate_node
from webpilot.agent.nodes.observe_node import create_observe_node
from webpilot.agent.nodes.record_node import create_record_node
from webpilot.agent.nodes.think_node import create_think_node

__all__ = [
    "create_gate_node",
    "create_observe_node",
    "create_think_node",
    "create_act_node",
    "create_record_node",
]
