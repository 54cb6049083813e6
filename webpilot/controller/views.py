"""Action parameter models and the named action object."""

from dataclasses import dataclass, field
from typing import Any, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from pydantic import BaseModel, ConfigDict, Field, model_validator

from webpilot.dom.views import SelectorMap


class DoneAction(BaseModel):
    text: str
    success: bool = True


class SearchGoogleAction(BaseModel):
    query: str


class GoToUrlAction(BaseModel):
    url: str


class ClickElementAction(BaseModel):
    index: int
    xpath: Optional[str] = None


class InputTextAction(BaseModel):
    index: int
    text: str
    xpath: Optional[str] = None


class SwitchTabAction(BaseModel):
    page_id: int


class OpenTabAction(BaseModel):
    url: str


class ScrollAction(BaseModel):
    amount: Optional[int] = None


class SendKeysAction(BaseModel):
    keys: str


class ScrollToTextAction(BaseModel):
    text: str


class ExtractPageContentAction(BaseModel):
    goal: str


class WaitAction(BaseModel):
    seconds: float = Field(default=3, ge=0)


class NoParamsAction(BaseModel):
    """Accepts and discards any input, for actions without parameters."""

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def ignore_all_inputs(cls, values: Any) -> dict:
        return {}


class ActionModel(BaseModel):
    """
    One named action chosen by the model: `{"click_element": {"index": 3}}`.

    The registry derives a subclass with one optional field per registered
    action. The base class accepts any single key so that histories load
    without knowing the action catalog.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    @model_validator(mode="after")
    def _exactly_one_action(self) -> "ActionModel":
        chosen = [k for k, v in self._all_fields().items() if v is not None]
        if len(chosen) != 1:
            raise ValueError(
                f"Each action must name exactly one action, got {chosen or 'none'}"
            )
        return self

    def _all_fields(self) -> dict[str, Any]:
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(self.model_extra or {})
        return values

    @property
    def name(self) -> str:
        for key, value in self._all_fields().items():
            if value is not None:
                return key
        raise ValueError("Action has no name")

    @property
    def params(self) -> dict[str, Any]:
        value = self._all_fields()[self.name]
        if isinstance(value, BaseModel):
            return value.model_dump()
        return dict(value) if isinstance(value, dict) else {}

    def get_index(self) -> Optional[int]:
        """Highlight index the action targets, None if it targets no element."""
        index = self.params.get("index")
        return int(index) if index is not None else None

    def set_index(self, index: int) -> None:
        """Point the action at another highlight index."""
        value = self._all_fields()[self.name]
        if isinstance(value, BaseModel) and "index" in type(value).model_fields:
            value.index = index
        elif isinstance(value, dict) and "index" in value:
            value["index"] = index

    def to_dict(self) -> dict[str, Any]:
        return {self.name: self.params}


@dataclass
class ActionContext:
    """
    Run-scoped values handed to every action handler.

    `selector_map` belongs to the snapshot the acting model output was
    produced from.
    """

    selector_map: SelectorMap = field(default_factory=dict)
    page_extraction_llm: Optional[BaseChatModel] = None
    sensitive_data: Optional[dict[str, str]] = None
    available_file_paths: Optional[list[str]] = None
