"""Message manager: builds the bounded prompt the model sees each step."""

from typing import Optional

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_core.messages.utils import count_tokens_approximately
from pydantic import BaseModel, Field

from webpilot.agent.message_manager.utils import convert_input_messages
from webpilot.agent.message_manager.views import MessageMetadata, MessageManagerState
from webpilot.agent.prompts import AgentMessagePrompt
from webpilot.agent.views import (
    DEFAULT_INCLUDE_ATTRIBUTES,
    ActionResult,
    AgentOutput,
    AgentStepInfo,
)
from webpilot.browser.views import BrowserState
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)


class MessageManagerSettings(BaseModel):
    max_input_tokens: int = 128000
    # Fixed estimate for one attached screenshot
    image_tokens: int = 800
    include_attributes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INCLUDE_ATTRIBUTES)
    )
    message_context: Optional[str] = None
    sensitive_data: Optional[dict[str, str]] = None
    available_file_paths: Optional[list[str]] = None
    model_name: Optional[str] = None


class MessageManager:
    """
    Owns the conversation of one run.

    The state (MessageManagerState) is passed in by the agent so that it is
    part of the agent checkpoint; a fresh state gets the initial messages.
    """

    def __init__(
        self,
        task: str,
        system_message: SystemMessage,
        settings: Optional[MessageManagerSettings] = None,
        state: Optional[MessageManagerState] = None,
    ):
        self.task = task
        self.settings = settings or MessageManagerSettings()
        self.state = state if state is not None else MessageManagerState()
        self.system_prompt = system_message

        # Only initialize messages if state is empty
        if len(self.state.history.messages) == 0:
            self._init_messages()

    def _init_messages(self) -> None:
        """Initialize the message history with system message, context, task, and other initial messages"""
        self._add_message_with_tokens(self.system_prompt)

        if self.settings.message_context:
            context_message = HumanMessage(
                content="Context for the task" + self.settings.message_context
            )
            self._add_message_with_tokens(context_message)

        task_message = HumanMessage(
            content=f'Your ultimate task is: """{self.task}""". If you achieved your ultimate task, stop everything and use the done action in the next step to complete the task. If not, continue as usual.'
        )
        self._add_message_with_tokens(task_message)

        if self.settings.sensitive_data:
            info = f"Here are placeholders for sensitve data: {list(self.settings.sensitive_data.keys())}"
            info += "To use them, write <secret>the placeholder name</secret>"
            self._add_message_with_tokens(HumanMessage(content=info))

        placeholder_message = HumanMessage(content="Example output:")
        self._add_message_with_tokens(placeholder_message)

        tool_calls = [
            {
                "name": "AgentOutput",
                "args": {
                    "current_state": {
                        "evaluation_previous_goal": "Success - I opend the first page",
                        "memory": "Starting with the new task. I have completed 1/10 steps",
                        "next_goal": "Click on company a",
                    },
                    "action": [{"click_element": {"index": 0}}],
                },
                "id": str(self.state.tool_id),
                "type": "tool_call",
            }
        ]
        example_tool_call = AIMessage(content="", tool_calls=tool_calls)
        self._add_message_with_tokens(example_tool_call)
        self.add_tool_message(content="Browser started")

        placeholder_message = HumanMessage(content="[Your task history memory starts here]")
        self._add_message_with_tokens(placeholder_message)

        if self.settings.available_file_paths:
            filepaths_msg = HumanMessage(
                content=f"Here are file paths you can use: {self.settings.available_file_paths}"
            )
            self._add_message_with_tokens(filepaths_msg)

    def add_new_task(self, new_task: str) -> None:
        content = f'Now you have a new task: """{new_task}""". Continue from where you are; the previous task is finished. If you achieved the new task, use the done action.'
        msg = HumanMessage(content=content)
        self._add_message_with_tokens(msg)
        self.task = new_task

    def add_state_message(
        self,
        state: BrowserState,
        result: Optional[list[ActionResult]] = None,
        step_info: Optional[AgentStepInfo] = None,
        use_vision: bool = True,
    ) -> None:
        """
        Add the current browser state as the last message.

        Results marked `include_in_memory` become permanent messages; the
        other results are shown once inside the state message.
        """
        remaining: Optional[list[ActionResult]] = None
        if result:
            remaining = []
            for r in result:
                if not r.include_in_memory:
                    remaining.append(r)
                    continue
                if r.extracted_content:
                    msg = HumanMessage(content="Action result: " + str(r.extracted_content))
                    self._add_message_with_tokens(msg)
                if r.error:
                    last_line = r.error.split("\n")[-1]
                    msg = HumanMessage(content="Action error: " + last_line)
                    self._add_message_with_tokens(msg)

        state_message = AgentMessagePrompt(
            state,
            remaining,
            include_attributes=self.settings.include_attributes,
            step_info=step_info,
        ).get_user_message(use_vision)
        self._add_message_with_tokens(state_message)

    def add_model_output(self, model_output: AgentOutput) -> None:
        """Add model output as AI message"""
        self.state.history.add_model_output(
            model_output, self.state.tool_id, self._count_tokens
        )
        self.state.tool_id += 1

    def add_tool_message(self, content: str) -> None:
        """Add tool message to history"""
        msg = ToolMessage(content=content, tool_call_id=str(self.state.tool_id))
        self.state.tool_id += 1
        self._add_message_with_tokens(msg)

    def get_messages(self) -> list[BaseMessage]:
        """
        Get the prompt for the next model call.

        The history is truncated to the token budget first, then converted
        for models that cannot take tool messages.
        """
        self.cut_messages()

        msg = self.state.history.get_messages()
        total_input_tokens = 0
        logger.debug(f"Messages in history: {len(self.state.history.messages)}:")
        for m in self.state.history.messages:
            total_input_tokens += m.metadata.tokens
            logger.debug(f"{m.message.__class__.__name__} - Token count: {m.metadata.tokens}")
        logger.debug(f"Total input tokens: {total_input_tokens}")

        return convert_input_messages(msg, self.settings.model_name)

    def cut_messages(self) -> None:
        """Evict oldest messages until the history fits the token budget"""
        removed = self.state.history.truncate(self.settings.max_input_tokens)
        if removed:
            logger.info(
                f"Removed {removed} oldest messages to fit {self.settings.max_input_tokens} tokens"
            )
        total = self.state.history.get_total_tokens()
        if total > self.settings.max_input_tokens:
            logger.warning(
                f"History still exceeds the budget: {total}/{self.settings.max_input_tokens} tokens"
            )

    def remove_last_state_message(self) -> None:
        """Remove last state message from history"""
        self.state.history.remove_last_state_message()

    def get_total_tokens(self) -> int:
        return self.state.history.get_total_tokens()

    def _add_message_with_tokens(
        self, message: BaseMessage, position: Optional[int] = None
    ) -> None:
        """Add message with token count metadata"""
        if self.settings.sensitive_data:
            message = self._filter_sensitive_data(message)

        token_count = self._count_tokens(message)
        metadata = MessageMetadata(tokens=token_count)
        self.state.history.add_message(message, metadata, position)

    def _filter_sensitive_data(self, message: BaseMessage) -> BaseMessage:
        """Filter out sensitive data from the message"""

        def replace_sensitive(value: str) -> str:
            for key, val in (self.settings.sensitive_data or {}).items():
                if val:
                    value = value.replace(val, f"<secret>{key}</secret>")
            return value

        if isinstance(message.content, str):
            return message.model_copy(
                update={"content": replace_sensitive(message.content)}
            )
        if isinstance(message.content, list):
            content = []
            for item in message.content:
                if isinstance(item, dict) and "text" in item:
                    item = {**item, "text": replace_sensitive(item["text"])}
                content.append(item)
            return message.model_copy(update={"content": content})
        return message

    def _count_tokens(self, message: BaseMessage) -> int:
        """Approximate token count; each attached image costs a fixed amount"""
        if not isinstance(message.content, list):
            return int(count_tokens_approximately([message]))

        text_parts = []
        images = 0
        for item in message.content:
            if isinstance(item, dict) and "image_url" in item:
                images += 1
            elif isinstance(item, dict) and "text" in item:
                text_parts.append(item["text"])
            elif isinstance(item, str):
                text_parts.append(item)

        text_message = message.model_copy(update={"content": "\n".join(text_parts)})
        return int(count_tokens_approximately([text_message])) + images * self.settings.image_tokens
