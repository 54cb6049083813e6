"""Token-accounted conversation history."""

from typing import TYPE_CHECKING, Any, Callable, Optional

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    messages_from_dict,
    messages_to_dict,
)
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

if TYPE_CHECKING:
    from webpilot.agent.views import AgentOutput


class MessageMetadata(BaseModel):
    """Metadata for a message"""

    tokens: int = 0


class ManagedMessage(BaseModel):
    """A message with its metadata"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    message: BaseMessage
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    @field_serializer("message")
    def _serialize_message(self, message: BaseMessage) -> dict[str, Any]:
        return messages_to_dict([message])[0]

    @field_validator("message", mode="before")
    @classmethod
    def _validate_message(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return messages_from_dict([value])[0]
        return value


class MessageHistory(BaseModel):
    """
    Ordered prompt history with a running token total.

    `current_tokens` is kept equal to the sum of the metadata tokens of the
    present messages by every insert and removal.
    """

    messages: list[ManagedMessage] = Field(default_factory=list)
    current_tokens: int = 0

    def add_message(
        self,
        message: BaseMessage,
        metadata: MessageMetadata,
        position: Optional[int] = None,
    ) -> None:
        """Add message with metadata to history"""
        if position is None:
            self.messages.append(ManagedMessage(message=message, metadata=metadata))
        else:
            self.messages.insert(
                position, ManagedMessage(message=message, metadata=metadata)
            )
        self.current_tokens += metadata.tokens

    def add_model_output(
        self,
        output: "AgentOutput",
        tool_id: int,
        count_tokens: Optional[Callable[[BaseMessage], int]] = None,
    ) -> None:
        """
        Add the model output as a tool call with its (empty) tool response.

        Args:
            output: Parsed model output
            tool_id: Id shared by the call and its response
            count_tokens: Token estimate per message, 0 when omitted
        """
        tool_calls = [
            {
                "name": "AgentOutput",
                "args": output.model_dump(mode="json", exclude_unset=True),
                "id": str(tool_id),
                "type": "tool_call",
            }
        ]
        msg = AIMessage(content="", tool_calls=tool_calls)
        tool_message = ToolMessage(content="", tool_call_id=str(tool_id))

        count_tokens = count_tokens or (lambda _: 0)
        self.add_message(msg, MessageMetadata(tokens=count_tokens(msg)))
        self.add_message(tool_message, MessageMetadata(tokens=count_tokens(tool_message)))

    def get_messages(self) -> list[BaseMessage]:
        """Get all messages"""
        return [m.message for m in self.messages]

    def get_total_tokens(self) -> int:
        """Get total tokens in history"""
        return self.current_tokens

    def remove_oldest_message(self) -> bool:
        """
        Remove the oldest non-system message.

        Returns:
            False if only system messages are left
        """
        for i, msg in enumerate(self.messages):
            if not isinstance(msg.message, SystemMessage):
                self.current_tokens -= msg.metadata.tokens
                self.messages.pop(i)
                return True
        return False

    def remove_last_state_message(self) -> None:
        """Remove last state message from history"""
        if len(self.messages) > 2 and isinstance(self.messages[-1].message, HumanMessage):
            self.current_tokens -= self.messages[-1].metadata.tokens
            self.messages.pop()

    def truncate(self, max_tokens: int) -> int:
        """
        Evict oldest-first until the history fits `max_tokens`.

        The system message and at least one message always survive, so the
        result may still exceed the budget.

        Returns:
            Number of removed messages
        """
        removed = 0
        while self.current_tokens > max_tokens and len(self.messages) > 1:
            if not self.remove_oldest_message():
                break
            removed += 1
        return removed


class MessageManagerState(BaseModel):
    """Holds the state for MessageManager"""

    history: MessageHistory = Field(default_factory=MessageHistory)
    tool_id: int = 1

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageManagerState":
        return cls.model_validate(data)
