"""DOM snapshot model.

A snapshot is rebuilt once per step from the live page. The tree owns its
children top-down; every node keeps a weak, non-owning link back to its parent
that is only used for upward queries (branch path, highlighted ancestors).
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from webpilot.dom.history_tree_processor import HashedDomElement


class Coordinates(BaseModel):
    x: float
    y: float


class CoordinateSet(BaseModel):
    """Bounding box of an element in page or viewport coordinates."""

    top_left: Coordinates
    top_right: Coordinates
    bottom_left: Coordinates
    bottom_right: Coordinates
    center: Coordinates
    width: float
    height: float


class ViewportInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    width: float
    height: float
    scroll_x: Optional[float] = Field(default=None, alias="scrollX")
    scroll_y: Optional[float] = Field(default=None, alias="scrollY")


class DOMBaseNode:
    """Common part of element and text nodes."""

    def __init__(self, is_visible: bool, parent: Optional["DOMElementNode"] = None):
        self.is_visible = is_visible
        self._parent_ref: Optional[Callable[[], Optional["DOMElementNode"]]] = None
        self.parent = parent

    @property
    def parent(self) -> Optional["DOMElementNode"]:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @parent.setter
    def parent(self, value: Optional["DOMElementNode"]) -> None:
        self._parent_ref = weakref.ref(value) if value is not None else None


class DOMTextNode(DOMBaseNode):
    type = "TEXT_NODE"

    def __init__(
        self, text: str, is_visible: bool, parent: Optional["DOMElementNode"] = None
    ):
        super().__init__(is_visible, parent)
        self.text = text

    def has_parent_with_highlight_index(self) -> bool:
        """Whether some ancestor is already labeled for the model."""
        current = self.parent
        while current is not None:
            if current.highlight_index is not None:
                return True
            current = current.parent
        return False

    def is_parent_in_viewport(self) -> bool:
        parent = self.parent
        return parent.is_in_viewport if parent is not None else False

    def is_parent_top_element(self) -> bool:
        parent = self.parent
        return parent.is_top_element if parent is not None else False

    def __repr__(self) -> str:
        return f"DOMTextNode({self.text!r})"


class DOMElementNode(DOMBaseNode):
    """
    Element of a page snapshot.

    `highlight_index` is set only for elements the model may act on; indices
    are unique within one snapshot and are what `action.index` refers to.
    """

    def __init__(
        self,
        tag_name: str,
        xpath: str,
        attributes: Optional[dict[str, str]] = None,
        children: Optional[list[DOMNode]] = None,
        is_visible: bool = False,
        parent: Optional["DOMElementNode"] = None,
        is_interactive: bool = False,
        is_top_element: bool = False,
        is_in_viewport: bool = False,
        shadow_root: bool = False,
        highlight_index: Optional[int] = None,
        viewport_coordinates: Optional[CoordinateSet] = None,
        page_coordinates: Optional[CoordinateSet] = None,
        viewport_info: Optional[ViewportInfo] = None,
    ):
        super().__init__(is_visible, parent)
        self.tag_name = tag_name
        self.xpath = xpath
        self.attributes = dict(attributes or {})
        self.children: list[DOMNode] = []
        self.is_interactive = is_interactive
        self.is_top_element = is_top_element
        self.is_in_viewport = is_in_viewport
        self.shadow_root = shadow_root
        self.highlight_index = highlight_index
        self.viewport_coordinates = viewport_coordinates
        self.page_coordinates = page_coordinates
        self.viewport_info = viewport_info

        for child in children or []:
            self.add_child(child)

    def add_child(self, child: DOMNode) -> None:
        """
        Attach a child node.

        Raises:
            ValueError: If the child already belongs to another element
        """
        current_parent = child.parent
        if current_parent is not None and current_parent is not self:
            raise ValueError(
                f"Node {child!r} already has parent <{current_parent.tag_name}>"
            )
        child.parent = self
        self.children.append(child)

    def __str__(self) -> str:
        tag_str = f"<{self.tag_name}"
        for key, value in self.attributes.items():
            tag_str += f' {key}="{value}"'
        tag_str += ">"

        extras = []
        if self.is_interactive:
            extras.append("interactive")
        if self.is_top_element:
            extras.append("top")
        if self.shadow_root:
            extras.append("shadow-root")
        if self.highlight_index is not None:
            extras.append(f"highlight:{self.highlight_index}")
        if self.is_in_viewport:
            extras.append("in-viewport")

        if extras:
            tag_str += f" [{', '.join(extras)}]"

        return tag_str

    def __repr__(self) -> str:
        return f"DOMElementNode({self})"

    @property
    def hash(self) -> "HashedDomElement":
        from webpilot.dom.history_tree_processor import HistoryTreeProcessor

        return HistoryTreeProcessor.hash_dom_element(self)

    def get_all_text_till_next_clickable_element(self, max_depth: int = -1) -> str:
        """
        Collect text below this element without entering labeled descendants.

        Args:
            max_depth: Depth bound relative to this element, -1 for unbounded

        Returns:
            Text parts joined by newlines
        """
        text_parts: list[str] = []

        def collect_text(node: DOMNode, current_depth: int) -> None:
            if max_depth != -1 and current_depth > max_depth:
                return

            # Nested clickable elements get their own line
            if (
                isinstance(node, DOMElementNode)
                and node is not self
                and node.highlight_index is not None
            ):
                return

            if isinstance(node, DOMTextNode):
                text_parts.append(node.text)
            elif isinstance(node, DOMElementNode):
                for child in node.children:
                    collect_text(child, current_depth + 1)

        collect_text(self, 0)
        return "\n".join(text_parts).strip()

    def clickable_elements_to_string(
        self, include_attributes: Optional[list[str]] = None
    ) -> str:
        """
        Serialize the tree into the element list sent to the model.

        One `[index]<tag attr1;attr2>text/>` line per highlighted element in
        document order, plus visible text that no highlighted ancestor owns.

        Args:
            include_attributes: Attribute names whose values are shown

        Returns:
            Newline separated listing
        """
        formatted_text: list[str] = []

        def process_node(node: DOMNode) -> None:
            if isinstance(node, DOMElementNode):
                if node.highlight_index is not None:
                    text = node.get_all_text_till_next_clickable_element()
                    attributes_str = ""
                    if include_attributes:
                        # dict.fromkeys keeps first-seen order while deduplicating
                        values = list(
                            dict.fromkeys(
                                value
                                for key, value in node.attributes.items()
                                if key in include_attributes and value != node.tag_name
                            )
                        )
                        if text in values:
                            values.remove(text)
                        attributes_str = ";".join(values)

                    line = f"[{node.highlight_index}]<{node.tag_name} {attributes_str}"
                    if text:
                        line += f">{text}"
                    line += "/>"
                    formatted_text.append(line)

                for child in node.children:
                    process_node(child)

            elif isinstance(node, DOMTextNode):
                if not node.has_parent_with_highlight_index() and node.is_visible:
                    formatted_text.append(node.text)

        process_node(self)
        return "\n".join(formatted_text)

    def get_file_upload_element(
        self, check_siblings: bool = True
    ) -> Optional["DOMElementNode"]:
        if self.tag_name == "input" and self.attributes.get("type") == "file":
            return self

        for child in self.children:
            if isinstance(child, DOMElementNode):
                result = child.get_file_upload_element(check_siblings=False)
                if result is not None:
                    return result

        parent = self.parent
        if check_siblings and parent is not None:
            for sibling in parent.children:
                if sibling is not self and isinstance(sibling, DOMElementNode):
                    result = sibling.get_file_upload_element(check_siblings=False)
                    if result is not None:
                        return result

        return None


DOMNode = Union[DOMElementNode, DOMTextNode]

SelectorMap = dict[int, DOMElementNode]


@dataclass
class DOMState:
    """Tree of one snapshot plus its highlight index lookup."""

    element_tree: DOMElementNode
    selector_map: SelectorMap
