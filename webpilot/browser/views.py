"""Browser state snapshots and driver errors."""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from webpilot.dom.history_tree_processor import DOMHistoryElement
from webpilot.dom.views import DOMState


class TabInfo(BaseModel):
    """Represents information about a browser tab"""

    page_id: int
    url: str
    title: str


@dataclass
class BrowserState(DOMState):
    """Live snapshot of the current page, valid for one step only."""

    url: str = ""
    title: str = ""
    tabs: list[TabInfo] = field(default_factory=list)
    screenshot: Optional[str] = None
    pixels_above: int = 0
    pixels_below: int = 0
    browser_errors: list[str] = field(default_factory=list)


class BrowserStateHistory(BaseModel):
    """
    Persisted part of a BrowserState.

    `interacted_element` has one slot per action of the step; a slot is None
    when the action did not target an element.
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str = ""
    title: str = ""
    tabs: list[TabInfo] = Field(default_factory=list, alias="tab")
    interacted_element: list[Optional[DOMHistoryElement]] = Field(default_factory=list)
    screenshot: Optional[str] = None

    @field_validator("interacted_element", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BrowserError(Exception):
    """Base class for all browser errors"""


class URLNotAllowedError(BrowserError):
    """Error raised when a URL is not allowed"""


class ElementNotFoundError(BrowserError):
    """Highlight index is not part of the snapshot the action was chosen from"""


class BrowserConnectionError(BrowserError):
    """Browser crashed or the connection to it is lost; fatal for the run"""
