"""Agent data model: action results, model output, step history and run state."""

import json
import traceback
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    create_model,
    field_serializer,
    model_validator,
)

from webpilot.agent.message_manager.views import MessageManagerState
from webpilot.browser.views import BrowserStateHistory
from webpilot.controller.views import ActionModel
from webpilot.dom.history_tree_processor import DOMHistoryElement, HistoryTreeProcessor
from webpilot.dom.views import SelectorMap

ToolCallingMethod = Literal["auto", "function_calling", "json_mode", "raw"]

DEFAULT_INCLUDE_ATTRIBUTES = [
    "title",
    "type",
    "name",
    "role",
    "tabindex",
    "aria-label",
    "placeholder",
    "value",
    "alt",
    "aria-expanded",
]


class AgentSettings(BaseModel):
    """Options for the Agent"""

    use_vision: bool = True
    save_conversation_path: Optional[str] = None
    save_history_path: Optional[str] = None
    max_failures: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=10, ge=0)
    max_input_tokens: int = Field(default=128000, gt=0)
    max_actions_per_step: int = Field(default=10, ge=1)
    tool_calling_method: ToolCallingMethod = "auto"
    include_attributes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INCLUDE_ATTRIBUTES)
    )
    message_context: Optional[str] = None
    available_file_paths: Optional[list[str]] = None
    override_system_message: Optional[str] = None
    extend_system_message: Optional[str] = None


class AgentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AgentStepInfo:
    step_number: int
    max_steps: int

    def is_last_step(self) -> bool:
        """Check if this is the last step"""
        return self.step_number >= self.max_steps - 1


class ActionResult(BaseModel):
    """Result of executing an action"""

    model_config = ConfigDict(frozen=True)

    is_done: Optional[bool] = False
    success: Optional[bool] = None
    extracted_content: Optional[str] = None
    error: Optional[str] = None
    include_in_memory: bool = False


class StepMetadata(BaseModel):
    """Metadata for a single step including timing and token information"""

    step_start_time: float
    step_end_time: float
    input_tokens: int
    step_number: int

    @property
    def duration_seconds(self) -> float:
        return self.step_end_time - self.step_start_time


class AgentBrain(BaseModel):
    """Current state of the agent"""

    evaluation_previous_goal: str
    memory: str
    next_goal: str


class AgentOutput(BaseModel):
    """
    Structured answer of the model: its brain plus the actions to run.

    Use `type_with_custom_actions` to bind the action field to the actions of
    a registry.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    current_state: AgentBrain
    action: list[ActionModel] = Field(
        ..., description="List of actions to execute", min_length=1
    )

    @field_serializer("action")
    def _serialize_actions(self, action: list[ActionModel]) -> list[dict[str, Any]]:
        return [a.to_dict() for a in action]

    @staticmethod
    def type_with_custom_actions(
        custom_actions: type[ActionModel],
    ) -> type["AgentOutput"]:
        """Extend actions with custom actions"""
        return create_model(
            "AgentOutput",
            __base__=AgentOutput,
            action=(
                list[custom_actions],
                Field(..., description="List of actions to execute", min_length=1),
            ),
            __module__=AgentOutput.__module__,
        )


class AgentHistory(BaseModel):
    """History item for agent actions"""

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    model_output: Optional[AgentOutput] = None
    result: list[ActionResult] = Field(default_factory=list)
    state: BrowserStateHistory
    metadata: Optional[StepMetadata] = None

    @model_validator(mode="after")
    def _fill_interacted_elements(self) -> "AgentHistory":
        # One slot per action keeps model actions and elements paired
        if self.model_output is not None and not self.state.interacted_element:
            self.state.interacted_element = [None] * len(self.model_output.action)
        return self

    @staticmethod
    def get_interacted_element(
        model_output: AgentOutput, selector_map: SelectorMap
    ) -> list[Optional[DOMHistoryElement]]:
        elements: list[Optional[DOMHistoryElement]] = []
        for action in model_output.action:
            index = action.get_index()
            if index is not None and index in selector_map:
                elements.append(
                    HistoryTreeProcessor.convert_dom_element_to_history_element(
                        selector_map[index]
                    )
                )
            else:
                elements.append(None)
        return elements

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_output": (
                self.model_output.model_dump(mode="json") if self.model_output else None
            ),
            "result": [r.model_dump(mode="json") for r in self.result],
            "state": self.state.to_dict(),
            "metadata": self.metadata.model_dump(mode="json") if self.metadata else None,
        }


class AgentHistoryList(BaseModel):
    """List of agent history items"""

    history: list[AgentHistory] = Field(default_factory=list)

    def total_duration_seconds(self) -> float:
        """Get total duration of all steps in seconds"""
        return sum(h.metadata.duration_seconds for h in self.history if h.metadata)

    def total_input_tokens(self) -> int:
        """
        Get total tokens used across all steps.

        Note: These are from the approximate token counting of the message manager.
        """
        return sum(h.metadata.input_tokens for h in self.history if h.metadata)

    def input_token_usage(self) -> list[int]:
        """Get token usage for each step"""
        return [h.metadata.input_tokens for h in self.history if h.metadata]

    def __str__(self) -> str:
        return f"AgentHistoryList(all_results={self.action_results()}, all_model_outputs={self.model_actions()})"

    def __repr__(self) -> str:
        return self.__str__()

    def to_dict(self) -> dict[str, Any]:
        return {"history": [h.to_dict() for h in self.history]}

    def save_to_file(self, filepath: Union[str, Path]) -> None:
        """Save history to JSON file with proper serialization"""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    @classmethod
    def load_from_file(
        cls,
        filepath: Union[str, Path],
        output_model: Optional[type[AgentOutput]] = None,
    ) -> "AgentHistoryList":
        """
        Load history from JSON file.

        Args:
            filepath: File written by `save_to_file`
            output_model: AgentOutput bound to a registry's actions; the plain
                          AgentOutput accepts any named action

        Returns:
            AgentHistoryList equivalent to the saved one
        """
        with Path(filepath).open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data, output_model)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], output_model: Optional[type[AgentOutput]] = None
    ) -> "AgentHistoryList":
        output_model = output_model or AgentOutput
        history = []
        for entry in data.get("history", []):
            entry = dict(entry)
            if entry.get("model_output") is not None:
                entry["model_output"] = output_model.model_validate(entry["model_output"])
            history.append(AgentHistory.model_validate(entry))
        return cls(history=history)

    def last_action(self) -> Optional[dict[str, Any]]:
        """Last action in history"""
        if self.history and self.history[-1].model_output:
            return self.history[-1].model_output.action[-1].to_dict()
        return None

    def errors(self) -> list[Optional[str]]:
        """Get all errors from history, with None for steps without errors"""
        errors = []
        for h in self.history:
            step_errors = [r.error for r in h.result if r.error]
            # first error of the step only
            errors.append(step_errors[0] if step_errors else None)
        return errors

    def has_errors(self) -> bool:
        """Check if the agent has any non-None errors"""
        return any(error is not None for error in self.errors())

    def final_result(self) -> Optional[str]:
        """Final result from history"""
        if self.history and self.history[-1].result:
            return self.history[-1].result[-1].extracted_content
        return None

    def is_done(self) -> bool:
        """Check if the agent is done"""
        if self.history and self.history[-1].result:
            return bool(self.history[-1].result[-1].is_done)
        return False

    def is_successful(self) -> Optional[bool]:
        """Success of the final result, None while the agent is not done"""
        if self.history and self.history[-1].result:
            last_result = self.history[-1].result[-1]
            if last_result.is_done:
                return last_result.success
        return None

    def urls(self) -> list[Optional[str]]:
        """Get all URLs from history"""
        return [h.state.url if h.state.url else None for h in self.history]

    def screenshots(self) -> list[Optional[str]]:
        """Get all screenshots from history"""
        return [h.state.screenshot for h in self.history]

    def action_names(self) -> list[str]:
        """Get all action names from history"""
        return [next(iter(action)) for action in self.model_actions()]

    def model_thoughts(self) -> list[AgentBrain]:
        """Get all thoughts from history"""
        return [h.model_output.current_state for h in self.history if h.model_output]

    def model_outputs(self) -> list[AgentOutput]:
        """Get all model outputs from history"""
        return [h.model_output for h in self.history if h.model_output]

    def model_actions(self) -> list[dict[str, Any]]:
        """
        All actions in (step, action) order, each with the element it hit.

        Raises:
            ValueError: If a step's actions and interacted elements differ in
                        length
        """
        outputs = []
        for h in self.history:
            if not h.model_output:
                continue
            for action, interacted_element in zip(
                h.model_output.action, h.state.interacted_element, strict=True
            ):
                output = action.to_dict()
                output["interacted_element"] = interacted_element
                outputs.append(output)
        return outputs

    def action_results(self) -> list[ActionResult]:
        """Get all results from history"""
        return [r for h in self.history for r in h.result]

    def extracted_content(self) -> list[str]:
        """Get all extracted content from history"""
        return [r.extracted_content for h in self.history for r in h.result if r.extracted_content]

    def model_actions_filtered(
        self, include: Optional[list[str]] = None
    ) -> list[dict[str, Any]]:
        """Get all model actions from history as JSON"""
        include = include or []
        result = []
        for action in self.model_actions():
            name = next(iter(action))
            if name in include:
                result.append(action)
        return result

    def number_of_steps(self) -> int:
        """Get the number of steps in the history"""
        return len(self.history)


class AgentState(BaseModel):
    """
    Mutable record of one run, owned by the Agent.

    Its JSON form is the checkpoint a run can be resumed from.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    agent_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    n_steps: int = 1
    consecutive_failures: int = 0
    last_result: Optional[list[ActionResult]] = None
    history: AgentHistoryList = Field(default_factory=AgentHistoryList)
    status: AgentStatus = AgentStatus.IDLE
    paused: bool = False
    stopped: bool = False
    message_manager_state: MessageManagerState = Field(
        default_factory=MessageManagerState
    )

    def to_json(self) -> str:
        data = self.model_dump(mode="json", exclude={"history", "message_manager_state"})
        data["history"] = self.history.to_dict()
        data["message_manager_state"] = self.message_manager_state.to_dict()
        return json.dumps(data, ensure_ascii=False)

    @classmethod
    def from_json(
        cls, raw: str, output_model: Optional[type[AgentOutput]] = None
    ) -> "AgentState":
        data = json.loads(raw)
        history = AgentHistoryList.from_dict(data.pop("history", {}), output_model)
        message_manager_state = MessageManagerState.from_dict(
            data.pop("message_manager_state", {})
        )
        return cls(
            **data,
            history=history,
            message_manager_state=message_manager_state,
        )


class ModelOutputParseError(ValueError):
    """Model response could not be parsed into an AgentOutput"""


class AgentError:
    """Container for agent error handling"""

    VALIDATION_ERROR = "Invalid model output format. Please follow the correct schema."
    RATE_LIMIT_ERROR = "Rate limit reached. Waiting before retry."
    NO_VALID_ACTION = "No valid action found"

    @staticmethod
    def format_error(error: Exception, include_trace: bool = False) -> str:
        """Format error message based on error type and optionally include trace"""
        if isinstance(error, (ValidationError, ModelOutputParseError)):
            return f"{AgentError.VALIDATION_ERROR}\nDetails: {str(error)}"
        if include_trace:
            return f"{str(error)}\nStacktrace:\n{traceback.format_exc()}"
        return f"{str(error)}"
