"""Re-identification of DOM elements across snapshots.

Elements recorded in history are detached from any live tree, so identity is
expressed as three digests (branch path, attributes, xpath). Two elements are
the same logical element iff all three digests match.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from webpilot.dom.views import CoordinateSet, DOMElementNode, ViewportInfo
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)

VALID_CLASS_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*$")

# Stable attributes that are safe to use in generated CSS selectors
SAFE_ATTRIBUTES = {
    "id",
    "name",
    "type",
    "placeholder",
    "aria-label",
    "aria-labelledby",
    "aria-describedby",
    "role",
    "for",
    "autocomplete",
    "required",
    "readonly",
    "alt",
    "title",
    "src",
    "href",
    "target",
}

DYNAMIC_ATTRIBUTES = {"data-id", "data-qa", "data-cy", "data-testid"}


@dataclass(frozen=True)
class HashedDomElement:
    """Hash components of a DOM element for comparison."""

    branch_path_hash: str
    attributes_hash: str
    xpath_hash: str


class DOMHistoryElement(BaseModel):
    """Parent-independent, serializable copy of one interacted element."""

    tag_name: str
    xpath: str
    highlight_index: Optional[int] = None
    entire_parent_branch_path: list[str] = Field(default_factory=list)
    attributes: dict[str, str] = Field(default_factory=dict)
    shadow_root: bool = False
    css_selector: Optional[str] = None
    page_coordinates: Optional[CoordinateSet] = None
    viewport_coordinates: Optional[CoordinateSet] = None
    viewport_info: Optional[ViewportInfo] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class HistoryTreeProcessor:
    """Hashing and lookup helpers shared by history recording and replay."""

    @staticmethod
    def convert_dom_element_to_history_element(
        dom_element: DOMElementNode,
    ) -> DOMHistoryElement:
        parent_branch_path = HistoryTreeProcessor.get_parent_branch_path(dom_element)
        css_selector = HistoryTreeProcessor.enhanced_css_selector_for_element(
            dom_element
        )
        return DOMHistoryElement(
            tag_name=dom_element.tag_name,
            xpath=dom_element.xpath,
            highlight_index=dom_element.highlight_index,
            entire_parent_branch_path=parent_branch_path,
            attributes=dict(dom_element.attributes),
            shadow_root=dom_element.shadow_root,
            css_selector=css_selector,
            page_coordinates=dom_element.page_coordinates,
            viewport_coordinates=dom_element.viewport_coordinates,
            viewport_info=dom_element.viewport_info,
        )

    @staticmethod
    def find_history_element_in_tree(
        dom_history_element: DOMHistoryElement, tree: DOMElementNode
    ) -> Optional[DOMElementNode]:
        """
        Depth-first search for the element recorded in history.

        Only highlighted elements are compared since nothing else is
        addressable by index.

        Returns:
            Matching element of the fresh tree, or None when it is gone
        """
        hashed_dom_history_element = HistoryTreeProcessor.hash_dom_history_element(
            dom_history_element
        )

        def process_node(node: DOMElementNode) -> Optional[DOMElementNode]:
            if node.highlight_index is not None:
                hashed_node = HistoryTreeProcessor.hash_dom_element(node)
                if hashed_node == hashed_dom_history_element:
                    return node
            for child in node.children:
                if isinstance(child, DOMElementNode):
                    result = process_node(child)
                    if result is not None:
                        return result
            return None

        return process_node(tree)

    @staticmethod
    def compare_history_element_and_dom_element(
        dom_history_element: DOMHistoryElement, dom_element: DOMElementNode
    ) -> bool:
        hashed_dom_history_element = HistoryTreeProcessor.hash_dom_history_element(
            dom_history_element
        )
        hashed_dom_element = HistoryTreeProcessor.hash_dom_element(dom_element)
        return hashed_dom_history_element == hashed_dom_element

    @staticmethod
    def hash_dom_history_element(
        dom_history_element: DOMHistoryElement,
    ) -> HashedDomElement:
        branch_path_hash = HistoryTreeProcessor.parent_branch_path_hash(
            dom_history_element.entire_parent_branch_path
        )
        attributes_hash = HistoryTreeProcessor.attributes_hash(
            dom_history_element.attributes
        )
        xpath_hash = HistoryTreeProcessor.xpath_hash(dom_history_element.xpath)
        return HashedDomElement(branch_path_hash, attributes_hash, xpath_hash)

    @staticmethod
    def hash_dom_element(dom_element: DOMElementNode) -> HashedDomElement:
        parent_branch_path = HistoryTreeProcessor.get_parent_branch_path(dom_element)
        branch_path_hash = HistoryTreeProcessor.parent_branch_path_hash(
            parent_branch_path
        )
        attributes_hash = HistoryTreeProcessor.attributes_hash(dom_element.attributes)
        xpath_hash = HistoryTreeProcessor.xpath_hash(dom_element.xpath)
        return HashedDomElement(branch_path_hash, attributes_hash, xpath_hash)

    @staticmethod
    def get_parent_branch_path(dom_element: DOMElementNode) -> list[str]:
        """Tag names from the tree root down to the element itself."""
        parents: list[DOMElementNode] = []
        current: Optional[DOMElementNode] = dom_element
        while current is not None:
            parents.append(current)
            current = current.parent

        parents.reverse()
        return [parent.tag_name for parent in parents]

    @staticmethod
    def parent_branch_path_hash(parent_branch_path: list[str]) -> str:
        return _sha256("/".join(parent_branch_path))

    @staticmethod
    def attributes_hash(attributes: dict[str, str]) -> str:
        return _sha256("".join(f"{key}={value}" for key, value in attributes.items()))

    @staticmethod
    def xpath_hash(xpath: str) -> str:
        return _sha256(xpath)

    @staticmethod
    def text_hash(dom_element: DOMElementNode) -> str:
        return _sha256(dom_element.get_all_text_till_next_clickable_element())

    @staticmethod
    def convert_simple_xpath_to_css_selector(xpath: str) -> str:
        """
        Convert simple XPath expressions to CSS selectors.

        Handles positional indices (`div[2]`), `last()`, `position()>1` and
        custom elements with colons.
        """
        if not xpath:
            return ""

        xpath = xpath.lstrip("/")
        css_parts = []

        for part in xpath.split("/"):
            if not part:
                continue

            if ":" in part and "[" not in part:
                css_parts.append(part.replace(":", r"\:"))
                continue

            if "[" in part:
                base_part = part[: part.find("[")]
                if ":" in base_part:
                    base_part = base_part.replace(":", r"\:")
                index_part = part[part.find("[") :]
                indices = [i.strip("[]") for i in index_part.split("]")[:-1]]

                for idx in indices:
                    if idx.isdigit():
                        base_part += f":nth-of-type({int(idx)})"
                    elif idx == "last()":
                        base_part += ":last-of-type"
                    elif "position()" in idx and ">1" in idx:
                        base_part += ":nth-of-type(n+2)"

                css_parts.append(base_part)
            else:
                css_parts.append(part)

        return " > ".join(css_parts)

    @staticmethod
    def enhanced_css_selector_for_element(
        element: DOMElementNode, include_dynamic_attributes: bool = True
    ) -> str:
        """
        Create a CSS selector for an element from its xpath and stable attributes.

        Args:
            element: Element to describe
            include_dynamic_attributes: Also use classes and data-* test ids

        Returns:
            CSS selector string
        """
        try:
            css_selector = HistoryTreeProcessor.convert_simple_xpath_to_css_selector(
                element.xpath
            )

            if include_dynamic_attributes and element.attributes.get("class"):
                for class_name in element.attributes["class"].split():
                    if VALID_CLASS_NAME.match(class_name):
                        css_selector += f".{class_name}"

            safe_attributes = set(SAFE_ATTRIBUTES)
            if include_dynamic_attributes:
                safe_attributes |= DYNAMIC_ATTRIBUTES

            for attribute, value in element.attributes.items():
                if attribute == "class" or not attribute.strip():
                    continue
                if attribute not in safe_attributes:
                    continue

                safe_attribute = attribute.replace(":", r"\:")

                if value == "":
                    css_selector += f"[{safe_attribute}]"
                elif any(char in value for char in "\"'<>`\n\r\t"):
                    collapsed_value = re.sub(r"\s+", " ", value).strip()
                    safe_value = collapsed_value.replace('"', '\\"')
                    css_selector += f'[{safe_attribute}*="{safe_value}"]'
                else:
                    css_selector += f'[{safe_attribute}="{value}"]'

            return css_selector

        except Exception as e:
            logger.debug(f"Falling back to basic selector for {element}: {e}")
            tag_name = element.tag_name or "*"
            return f"{tag_name}[highlight_index='{element.highlight_index}']"
