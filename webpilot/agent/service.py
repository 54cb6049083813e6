"""Agent: owns one run and drives the step graph."""

import asyncio
import copy
import inspect
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage

from webpilot.agent.graph import create_step_graph, recursion_limit_for
from webpilot.agent.message_manager.service import (
    MessageManager,
    MessageManagerSettings,
)
from webpilot.agent.message_manager.utils import extract_json_from_model_output
from webpilot.agent.prompts import SystemPrompt
from webpilot.agent.views import (
    ActionResult,
    AgentError,
    AgentHistory,
    AgentHistoryList,
    AgentOutput,
    AgentSettings,
    AgentState,
    AgentStatus,
    ModelOutputParseError,
)
from webpilot.browser.context import BrowserContext
from webpilot.browser.views import BrowserConnectionError, BrowserState
from webpilot.controller.service import Controller
from webpilot.controller.views import ActionContext, ActionModel
from webpilot.dom.history_tree_processor import DOMHistoryElement, HistoryTreeProcessor
from webpilot.dom.views import SelectorMap
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_HISTORY_FILE = "AgentHistory.json"

NewStepCallback = Callable[[BrowserState, AgentOutput, int], Union[None, Awaitable[None]]]
DoneCallback = Callable[[AgentHistoryList], Union[None, Awaitable[None]]]
ExternalStatusCallback = Callable[[], Awaitable[bool]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Agent:
    """
    Browser agent for one task.

    The agent owns the run record (AgentState) and hands it to the graph
    nodes by reference. A run started with `injected_agent_state` continues
    from that checkpoint.

    Args:
        task: Natural language task
        llm: Chat model deciding the actions
        browser_context: Browser the actions run against
        controller: Action catalog, the default actions when None
        settings: Agent options
        sensitive_data: Placeholder name to secret value, masked in prompts
        page_extraction_llm: Model for extract_content, defaults to `llm`
        injected_agent_state: Checkpoint to resume from
        register_new_step_callback: Called with (state, output, step) after
                                    each model decision
        register_done_callback: Called with the history when a run ends
        register_external_agent_status_raise_error_callback: Returns True
                                    to stop the run at the next boundary
    """

    def __init__(
        self,
        task: str,
        llm: BaseChatModel,
        browser_context: BrowserContext,
        controller: Optional[Controller] = None,
        settings: Optional[AgentSettings] = None,
        sensitive_data: Optional[dict[str, str]] = None,
        page_extraction_llm: Optional[BaseChatModel] = None,
        injected_agent_state: Optional[AgentState] = None,
        register_new_step_callback: Optional[NewStepCallback] = None,
        register_done_callback: Optional[DoneCallback] = None,
        register_external_agent_status_raise_error_callback: Optional[
            ExternalStatusCallback
        ] = None,
    ):
        self.task = task
        self.llm = llm
        self.browser_context = browser_context
        self.controller = controller or Controller()
        self.settings = settings or AgentSettings()
        self.sensitive_data = sensitive_data
        self.page_extraction_llm = page_extraction_llm or llm
        self.state = injected_agent_state or AgentState()

        self.register_new_step_callback = register_new_step_callback
        self.register_done_callback = register_done_callback
        self.register_external_agent_status_raise_error_callback = (
            register_external_agent_status_raise_error_callback
        )

        # Action and output models bound to this controller's catalog
        self.ActionModel = self.controller.registry.create_action_model()
        self.AgentOutput = AgentOutput.type_with_custom_actions(self.ActionModel)

        self.model_name = self._get_model_name()
        self.tool_calling_method = self._resolve_tool_calling_method()

        system_prompt = SystemPrompt(
            action_description=self.controller.registry.get_prompt_description(),
            max_actions_per_step=self.settings.max_actions_per_step,
            override_system_message=self.settings.override_system_message,
            extend_system_message=self.settings.extend_system_message,
        )
        self.message_manager = MessageManager(
            task=task,
            system_message=system_prompt.get_system_message(),
            settings=MessageManagerSettings(
                max_input_tokens=self.settings.max_input_tokens,
                include_attributes=self.settings.include_attributes,
                message_context=self.settings.message_context,
                sensitive_data=sensitive_data,
                available_file_paths=self.settings.available_file_paths,
                model_name=self.model_name,
            ),
            state=self.state.message_manager_state,
        )

        self.graph = create_step_graph(self)
        logger.info(
            f"Agent {self.state.agent_id} created: model={self.model_name}, "
            f"tool_calling_method={self.tool_calling_method}, "
            f"vision={self.settings.use_vision}"
        )

    def _get_model_name(self) -> Optional[str]:
        for attr in ("model_name", "model"):
            value = getattr(self.llm, attr, None)
            if isinstance(value, str):
                return value
        return None

    def _resolve_tool_calling_method(self) -> str:
        method = self.settings.tool_calling_method
        if method != "auto":
            return method
        # Reasoning models answer in text only
        if self.model_name and (
            self.model_name == "deepseek-reasoner" or "deepseek-r1" in self.model_name
        ):
            return "raw"
        return "function_calling"

    def set_status(self, status: AgentStatus) -> None:
        if self.state.status != status:
            logger.info(f"Agent status: {self.state.status.value} -> {status.value}")
            self.state.status = status

    async def external_interrupt_requested(self) -> bool:
        if self.register_external_agent_status_raise_error_callback is None:
            return False
        return bool(await self.register_external_agent_status_raise_error_callback())

    async def get_next_action(self, input_messages: list[BaseMessage]) -> AgentOutput:
        """
        Ask the model for the next actions.

        Raises:
            ModelOutputParseError: If the response has no valid AgentOutput
        """
        if self.tool_calling_method == "raw":
            response = await self.llm.ainvoke(input_messages)
            try:
                parsed_json = extract_json_from_model_output(str(response.content))
                parsed = self.AgentOutput(**parsed_json)
            except ValueError as e:
                raise ModelOutputParseError(f"Could not parse response: {e}") from e
        else:
            structured_llm = self.llm.with_structured_output(
                self.AgentOutput, include_raw=True, method=self.tool_calling_method
            )
            response: dict[str, Any] = await structured_llm.ainvoke(input_messages)
            parsed = response.get("parsed")
            if parsed is None:
                raise ModelOutputParseError(
                    f"Could not parse response: {response.get('parsing_error')}"
                )

        if len(parsed.action) > self.settings.max_actions_per_step:
            logger.warning(
                f"Model returned {len(parsed.action)} actions, "
                f"keeping the first {self.settings.max_actions_per_step}"
            )
            parsed.action = parsed.action[: self.settings.max_actions_per_step]

        self._log_response(parsed)
        return parsed

    def _log_response(self, response: AgentOutput) -> None:
        brain = response.current_state
        if "Success" in brain.evaluation_previous_goal:
            emoji = "👍"
        elif "Failed" in brain.evaluation_previous_goal:
            emoji = "⚠"
        else:
            emoji = "🤷"
        logger.info(f"{emoji} Eval: {brain.evaluation_previous_goal}")
        logger.info(f"🧠 Memory: {brain.memory}")
        logger.info(f"🎯 Next goal: {brain.next_goal}")
        for i, action in enumerate(response.action):
            logger.info(
                f"🛠️  Action {i + 1}/{len(response.action)}: "
                f"{action.to_dict()}"
            )

    async def notify_new_step(
        self, browser_state: Optional[BrowserState], model_output: AgentOutput
    ) -> None:
        if self.register_new_step_callback is None:
            return
        await _maybe_await(
            self.register_new_step_callback(
                browser_state, model_output, self.state.n_steps
            )
        )

    async def multi_act(
        self, actions: list[ActionModel], selector_map: SelectorMap
    ) -> list[ActionResult]:
        """
        Execute actions in order, stopping at the first error or done.

        Raises:
            BrowserConnectionError: The browser is gone, the run cannot go on
        """
        results: list[ActionResult] = []
        context = ActionContext(
            selector_map=selector_map,
            page_extraction_llm=self.page_extraction_llm,
            sensitive_data=self.sensitive_data,
            available_file_paths=self.settings.available_file_paths,
        )

        for i, action in enumerate(actions):
            if i > 0:
                await asyncio.sleep(self.browser_context.config.wait_between_actions)

            try:
                result = await self.controller.act(action, self.browser_context, context)
            except BrowserConnectionError:
                raise
            except Exception as e:
                logger.error(f"Action {i + 1}/{len(actions)} failed: {e}")
                result = ActionResult(
                    error=AgentError.format_error(e),
                    success=False,
                    include_in_memory=True,
                )

            results.append(result)
            if result.error:
                logger.warning(f"Action {action.name} returned error: {result.error}")
            logger.debug(f"Executed action {i + 1}/{len(actions)}: {action.name}")

            if result.error or result.is_done:
                if i < len(actions) - 1:
                    logger.info(f"Skipping {len(actions) - i - 1} remaining actions")
                break

        return results

    async def run(self, max_steps: int = 100) -> AgentHistoryList:
        """
        Execute the task with at most `max_steps` steps.

        Returns:
            History of the whole run, including steps of earlier invocations
        """
        logger.info(f"🚀 Starting task: {self.task}")
        self._clear_stop_request()
        try:
            await self.graph.ainvoke(
                {"max_steps": max_steps, "steps_taken": 0, "single_step": False},
                config={"recursion_limit": recursion_limit_for(max_steps)},
            )

            if self.state.history.is_done():
                if self.state.history.is_successful():
                    logger.info("✅ Task completed successfully")
                else:
                    logger.info("❌ Task completed without success")
            return self.state.history
        finally:
            if self.settings.save_history_path:
                self.save_history(self.settings.save_history_path)
            if self.register_done_callback is not None:
                await _maybe_await(self.register_done_callback(self.state.history))

    async def step(self) -> Optional[AgentHistory]:
        """
        Execute a single step.

        Returns:
            The recorded step, or None when the agent was stopped
        """
        self._clear_stop_request()
        steps_before = len(self.state.history.history)
        await self.graph.ainvoke(
            {"max_steps": 1, "steps_taken": 0, "single_step": True},
            config={"recursion_limit": recursion_limit_for(1)},
        )
        if len(self.state.history.history) > steps_before:
            return self.state.history.history[-1]
        return None

    def _clear_stop_request(self) -> None:
        # A stop ends the invocation it was raised in, later runs start fresh
        if self.state.stopped:
            logger.info("Clearing stop request of the previous run")
            self.state.stopped = False

    def pause(self) -> None:
        """Pause the run at the next step boundary"""
        logger.info("🔄 Pausing agent")
        self.state.paused = True

    def resume(self) -> None:
        logger.info("▶️ Resuming agent")
        self.state.paused = False

    def stop(self) -> None:
        """Stop the run at the next step boundary"""
        logger.info("⏹️ Stopping agent")
        self.state.stopped = True

    def add_new_task(self, new_task: str) -> None:
        """Continue the same conversation with a follow-up task"""
        self.task = new_task
        self.message_manager.add_new_task(new_task)

    def save_history(self, file_path: Optional[Union[str, Path]] = None) -> None:
        if not file_path:
            file_path = DEFAULT_HISTORY_FILE
        self.state.history.save_to_file(file_path)
        logger.info(f"History saved to {file_path}")

    async def rerun_history(
        self,
        history: AgentHistoryList,
        max_retries: int = 3,
        skip_failures: bool = True,
        delay_between_actions: float = 2.0,
    ) -> list[ActionResult]:
        """
        Replay the actions of a recorded run.

        Elements are re-identified in the fresh page by their hashes, so the
        replay survives highlight indices that shifted.

        Args:
            history: Recorded run to replay
            max_retries: Attempts per step
            skip_failures: Continue with the next step when a step keeps failing
            delay_between_actions: Seconds to wait after each replayed step

        Returns:
            Results of all replayed actions

        Raises:
            RuntimeError: If a step fails `max_retries` times and
                          `skip_failures` is False
        """
        results: list[ActionResult] = []

        for i, history_item in enumerate(history.history):
            goal = (
                history_item.model_output.current_state.next_goal
                if history_item.model_output
                else ""
            )
            logger.info(f"Replaying step {i + 1}/{len(history.history)}: goal: {goal}")

            if not history_item.model_output or not history_item.model_output.action:
                logger.warning(f"Step {i + 1}: No action to replay, skipping")
                results.append(ActionResult(error="No action to replay"))
                continue

            retry_count = 0
            while retry_count < max_retries:
                try:
                    step_results = await self._execute_history_step(
                        history_item, delay_between_actions
                    )
                    results.extend(step_results)
                    break
                except BrowserConnectionError:
                    raise
                except Exception as e:
                    retry_count += 1
                    if retry_count == max_retries:
                        error_msg = f"Step {i + 1} failed after {max_retries} attempts: {e}"
                        logger.error(error_msg)
                        if not skip_failures:
                            raise RuntimeError(error_msg) from e
                        results.append(ActionResult(error=error_msg))
                    else:
                        logger.warning(
                            f"Step {i + 1} failed (attempt {retry_count}/{max_retries}), retrying..."
                        )
                        await asyncio.sleep(delay_between_actions)

        return results

    async def _execute_history_step(
        self, history_item: AgentHistory, delay: float
    ) -> list[ActionResult]:
        """Execute one recorded step against a fresh snapshot"""
        browser_state = await self.browser_context.get_state(use_vision=False)

        updated_actions = []
        for i, action in enumerate(history_item.model_output.action):
            updated_action = self._update_action_indices(
                history_item.state.interacted_element[i], action, browser_state
            )
            if updated_action is None:
                raise ValueError(f"Could not find matching element {i} in current page")
            updated_actions.append(updated_action)

        result = await self.multi_act(updated_actions, browser_state.selector_map)
        await asyncio.sleep(delay)
        return result

    def _update_action_indices(
        self,
        historical_element: Optional[DOMHistoryElement],
        action: ActionModel,
        browser_state: BrowserState,
    ) -> Optional[ActionModel]:
        """
        Point an action at the element's index in the current tree.

        Returns:
            The action with its index rewritten, the action itself when it
            targets no element, or None when the element is gone
        """
        if historical_element is None or browser_state.element_tree is None:
            return action

        current_element = HistoryTreeProcessor.find_history_element_in_tree(
            historical_element, browser_state.element_tree
        )
        if current_element is None or current_element.highlight_index is None:
            return None

        old_index = action.get_index()
        if old_index != current_element.highlight_index:
            action = copy.deepcopy(action)
            action.set_index(current_element.highlight_index)
            logger.info(
                f"Element moved in DOM, updated index from {old_index} "
                f"to {current_element.highlight_index}"
            )
        return action

    async def load_and_rerun(
        self, history_file: Optional[Union[str, Path]] = None, **kwargs
    ) -> list[ActionResult]:
        """
        Load a saved history file and replay it.

        Args:
            history_file: Path to the history file, AgentHistory.json by default
            **kwargs: Passed to rerun_history
        """
        if not history_file:
            history_file = DEFAULT_HISTORY_FILE
        history = AgentHistoryList.load_from_file(history_file, self.AgentOutput)
        return await self.rerun_history(history, **kwargs)
