"""Action registry: name -> (description, parameter model, handler)."""

import json
import re
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field, ValidationError, create_model

from webpilot.agent.views import ActionResult
from webpilot.controller.views import ActionContext, ActionModel, NoParamsAction
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)

SECRET_PATTERN = re.compile(r"<secret>(.*?)</secret>")

ActionHandler = Callable[..., Awaitable[Union[ActionResult, str, None]]]


class ActionValidationError(ValueError):
    """Parameters given by the model do not fit the action's parameter model"""


class RegisteredAction(BaseModel):
    """Model for a registered action"""

    name: str
    description: str
    function: Callable
    param_model: type[BaseModel]

    model_config = {"arbitrary_types_allowed": True}

    def prompt_description(self) -> str:
        """Get a description of the action for the prompt"""
        skip_keys = {"title"}
        schema = self.param_model.model_json_schema()
        params = {
            name: {k: v for k, v in details.items() if k not in skip_keys}
            for name, details in schema.get("properties", {}).items()
        }
        return f"{self.description}: \n{{{self.name}: {json.dumps(params)}}}"


class Registry:
    """
    Table of actions the model may call.

    Filled once at startup and only read afterwards, so one registry can be
    shared by concurrent runs.
    """

    def __init__(self, exclude_actions: Optional[list[str]] = None):
        self.actions: dict[str, RegisteredAction] = {}
        self.exclude_actions = list(exclude_actions or [])

    def action(
        self,
        description: str,
        param_model: Optional[type[BaseModel]] = None,
    ) -> Callable[[ActionHandler], ActionHandler]:
        """
        Decorator registering a handler under its function name.

        Handlers are called as `handler(params, browser, context)` and return
        an ActionResult, a string (extracted content) or None.
        """

        def decorator(func: ActionHandler) -> ActionHandler:
            if func.__name__ in self.exclude_actions:
                logger.debug(f"Action excluded: {func.__name__}")
                return func

            self.actions[func.__name__] = RegisteredAction(
                name=func.__name__,
                description=description,
                function=func,
                param_model=param_model or NoParamsAction,
            )
            return func

        return decorator

    def has_action(self, action_name: str) -> bool:
        return action_name in self.actions

    async def execute_action(
        self,
        action_name: str,
        params: dict[str, Any],
        browser: Any,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        """
        Validate parameters and run one action.

        Args:
            action_name: Key of the action object
            params: Raw parameters from the model
            browser: BrowserContext to act on
            context: Run-scoped values (selector map, secrets, ...)

        Returns:
            ActionResult; unknown names and invalid parameters come back as
            error results

        Raises:
            Exception: Whatever the handler raises
        """
        if action_name not in self.actions:
            logger.warning(f"Unregistered action requested: {action_name}")
            return ActionResult(
                error=f"Action {action_name} is not registered",
                include_in_memory=True,
            )

        registered = self.actions[action_name]
        context = context or ActionContext()

        try:
            validated = self._validate_params(registered, params)
        except ActionValidationError as e:
            logger.warning(f"Invalid parameters for {action_name}: {e}")
            return ActionResult(error=str(e), include_in_memory=True)

        if context.sensitive_data:
            validated = self._replace_sensitive_data(validated, context.sensitive_data)

        result = await registered.function(validated, browser, context)
        return self._normalize_result(action_name, result)

    @staticmethod
    def _validate_params(
        registered: RegisteredAction, params: Optional[dict[str, Any]]
    ) -> BaseModel:
        try:
            return registered.param_model.model_validate(params or {})
        except ValidationError as e:
            raise ActionValidationError(
                f"Invalid parameters for action {registered.name}: {e}"
            ) from e

    @staticmethod
    def _replace_sensitive_data(
        params: BaseModel, sensitive_data: dict[str, str]
    ) -> BaseModel:
        """Replace `<secret>name</secret>` placeholders with their values."""

        def replace_secrets(value: Any) -> Any:
            if isinstance(value, str):
                for placeholder in SECRET_PATTERN.findall(value):
                    if placeholder in sensitive_data:
                        value = value.replace(
                            f"<secret>{placeholder}</secret>",
                            sensitive_data[placeholder],
                        )
                    else:
                        logger.warning(f"No value for secret placeholder {placeholder}")
                return value
            if isinstance(value, dict):
                return {k: replace_secrets(v) for k, v in value.items()}
            if isinstance(value, list):
                return [replace_secrets(v) for v in value]
            return value

        return type(params).model_validate(replace_secrets(params.model_dump()))

    @staticmethod
    def _normalize_result(action_name: str, result: Any) -> ActionResult:
        if isinstance(result, ActionResult):
            return result
        if isinstance(result, str):
            return ActionResult(extracted_content=result)
        if result is None:
            return ActionResult()
        raise TypeError(
            f"Invalid action result type {type(result).__name__} from {action_name}"
        )

    def create_action_model(
        self, include_actions: Optional[list[str]] = None
    ) -> type[ActionModel]:
        """
        Build an ActionModel subclass with one optional field per action.

        Args:
            include_actions: Restrict the model to these names

        Returns:
            Pydantic model used to validate and describe model actions
        """
        fields: dict[str, Any] = {
            name: (
                Optional[action.param_model],
                Field(default=None, description=action.description),
            )
            for name, action in self.actions.items()
            if include_actions is None or name in include_actions
        }
        return create_model("ActionModel", __base__=ActionModel, **fields)

    def get_prompt_description(self) -> str:
        """Get a description of all actions for the prompt"""
        return "\n".join(
            action.prompt_description() for action in self.actions.values()
        )
