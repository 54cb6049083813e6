"""Construction of DOM snapshots from the in-page extraction result."""

import json
from typing import TYPE_CHECKING, Any, Optional

from webpilot.browser._templates import DOM_TREE_JS
from webpilot.browser.views import BrowserError
from webpilot.dom.views import (
    CoordinateSet,
    DOMElementNode,
    DOMNode,
    DOMState,
    DOMTextNode,
    SelectorMap,
    ViewportInfo,
)
from webpilot.utils.logger import setup_logger

if TYPE_CHECKING:
    from webpilot.browser._executor import BrowserExecutor

logger = setup_logger(__name__)


class DomService:
    """Builds one DOMState per call from the page behind an executor."""

    def __init__(self, executor: "BrowserExecutor"):
        self.executor = executor

    async def get_clickable_elements(self, viewport_expansion: int = 0) -> DOMState:
        """
        Extract the current page and build its snapshot.

        Args:
            viewport_expansion: Pixels around the viewport whose elements still
                                get a highlight index (-1 = whole page)

        Returns:
            DOMState with tree and selector map

        Raises:
            BrowserError: If the page could not be evaluated
        """
        body = DOM_TREE_JS.replace(
            "__ARGS__", json.dumps({"viewportExpansion": viewport_expansion})
        )
        raw = await self.executor.run(body)

        try:
            eval_page = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BrowserError(f"DOM extraction returned invalid JSON: {raw[:200]}") from e

        if isinstance(eval_page, dict) and eval_page.get("success") is False:
            raise BrowserError(f"DOM extraction failed: {eval_page.get('error')}")

        return self.build_dom_tree(eval_page)

    @staticmethod
    def build_dom_tree(eval_page: dict[str, Any]) -> DOMState:
        """
        Build the tree from a flat node map.

        Nodes are created in a first pass and linked in a second one, so the
        order of the map entries does not matter.

        Args:
            eval_page: {"map": {id: node_data}, "rootId": id}

        Returns:
            DOMState rooted at `rootId`

        Raises:
            ValueError: If the root is missing or is not an element
        """
        js_node_map: dict[str, Any] = eval_page.get("map") or {}
        js_root_id = eval_page.get("rootId")

        node_map: dict[str, DOMNode] = {}
        children_ids: dict[str, list[str]] = {}
        selector_map: SelectorMap = {}

        for node_id, node_data in js_node_map.items():
            node, child_ids = DomService._parse_node(node_data)
            if node is None:
                continue

            node_map[str(node_id)] = node
            children_ids[str(node_id)] = child_ids

            if isinstance(node, DOMElementNode) and node.highlight_index is not None:
                if node.highlight_index in selector_map:
                    raise ValueError(
                        f"Duplicate highlight index {node.highlight_index} in snapshot"
                    )
                selector_map[node.highlight_index] = node

        for node_id, child_ids in children_ids.items():
            node = node_map[node_id]
            if not isinstance(node, DOMElementNode):
                continue
            for child_id in child_ids:
                child = node_map.get(str(child_id))
                if child is None:
                    continue
                node.add_child(child)

        root = node_map.get(str(js_root_id)) if js_root_id is not None else None
        if root is None or not isinstance(root, DOMElementNode):
            raise ValueError("Failed to parse HTML to dictionary")

        logger.debug(
            f"Built DOM tree: {len(node_map)} nodes, {len(selector_map)} highlighted"
        )
        return DOMState(element_tree=root, selector_map=selector_map)

    @staticmethod
    def _parse_node(
        node_data: Optional[dict[str, Any]],
    ) -> tuple[Optional[DOMNode], list[str]]:
        if not node_data:
            return None, []

        if node_data.get("type") == "TEXT_NODE":
            text_node = DOMTextNode(
                text=node_data.get("text", ""),
                is_visible=bool(node_data.get("isVisible", False)),
            )
            return text_node, []

        viewport = node_data.get("viewport")
        viewport_info = ViewportInfo.model_validate(viewport) if viewport else None

        viewport_coordinates = node_data.get("viewportCoordinates")
        page_coordinates = node_data.get("pageCoordinates")

        element_node = DOMElementNode(
            tag_name=node_data["tagName"],
            xpath=node_data.get("xpath", ""),
            attributes=node_data.get("attributes") or {},
            is_visible=bool(node_data.get("isVisible", False)),
            is_interactive=bool(node_data.get("isInteractive", False)),
            is_top_element=bool(node_data.get("isTopElement", False)),
            is_in_viewport=bool(node_data.get("isInViewport", False)),
            shadow_root=bool(node_data.get("shadowRoot", False)),
            # 0 is a valid index
            highlight_index=node_data.get("highlightIndex"),
            viewport_coordinates=(
                CoordinateSet.model_validate(viewport_coordinates)
                if viewport_coordinates
                else None
            ),
            page_coordinates=(
                CoordinateSet.model_validate(page_coordinates)
                if page_coordinates
                else None
            ),
            viewport_info=viewport_info,
        )

        return element_node, [str(child_id) for child_id in node_data.get("children") or []]
