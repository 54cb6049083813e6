from webpilot.dom.history_tree_processor import HistoryTreeProcessor
from webpilot.dom.views import DOMElementNode, DOMTextNode

from conftest import make_page


def test_hash_is_deterministic(page):
    _, selector_map = page
    for element in selector_map.values():
        history_element = HistoryTreeProcessor.convert_dom_element_to_history_element(
            element
        )
        assert HistoryTreeProcessor.hash_dom_element(
            element
        ) == HistoryTreeProcessor.hash_dom_history_element(history_element)
        assert element.hash == HistoryTreeProcessor.hash_dom_element(element)


def test_branch_path_runs_from_root_to_element(page):
    _, selector_map = page

    assert HistoryTreeProcessor.get_parent_branch_path(selector_map[1]) == [
        "html",
        "body",
        "div",
        "button",
    ]


def test_attribute_change_changes_hash(page):
    _, selector_map = page
    button = selector_map[1]
    before = HistoryTreeProcessor.hash_dom_element(button)

    button.attributes["class"] = "secondary"

    after = HistoryTreeProcessor.hash_dom_element(button)
    assert after.attributes_hash != before.attributes_hash
    assert after != before


def test_xpath_change_changes_hash(page):
    _, selector_map = page
    button = selector_map[1]
    before = HistoryTreeProcessor.hash_dom_element(button)

    button.xpath = "html/body/div/button[2]"

    assert HistoryTreeProcessor.hash_dom_element(button).xpath_hash != before.xpath_hash


def test_ancestor_tag_change_changes_hash(page):
    _, selector_map = page
    button = selector_map[1]
    before = HistoryTreeProcessor.hash_dom_element(button)

    button.parent.tag_name = "form"

    after = HistoryTreeProcessor.hash_dom_element(button)
    assert after.branch_path_hash != before.branch_path_hash


def test_find_element_in_fresh_tree_with_shifted_indices():
    _, old_map = make_page()
    recorded = HistoryTreeProcessor.convert_dom_element_to_history_element(old_map[1])

    new_root, _ = make_page(offset=10)
    found = HistoryTreeProcessor.find_history_element_in_tree(recorded, new_root)

    assert found is not None
    assert found.highlight_index == 11
    assert found.tag_name == "button"
    assert HistoryTreeProcessor.compare_history_element_and_dom_element(recorded, found)


def test_find_element_returns_none_when_element_is_gone():
    _, old_map = make_page()
    recorded = HistoryTreeProcessor.convert_dom_element_to_history_element(old_map[1])

    new_root, _ = make_page(button_xpath="html/body/div/button[3]")

    assert HistoryTreeProcessor.find_history_element_in_tree(recorded, new_root) is None


def test_history_element_round_trips_through_json(page):
    _, selector_map = page
    recorded = HistoryTreeProcessor.convert_dom_element_to_history_element(selector_map[2])

    restored = type(recorded).model_validate(recorded.to_dict())

    assert HistoryTreeProcessor.hash_dom_history_element(
        restored
    ) == HistoryTreeProcessor.hash_dom_history_element(recorded)
    assert restored.entire_parent_branch_path == ["html", "body", "div", "input"]


def test_text_hash_ignores_nested_clickable_text():
    inner = DOMElementNode(
        tag_name="a",
        xpath="html/body/div/a",
        highlight_index=2,
        children=[DOMTextNode(text="changes", is_visible=True)],
    )
    outer = DOMElementNode(
        tag_name="div",
        xpath="html/body/div",
        highlight_index=1,
        children=[DOMTextNode(text="stable", is_visible=True), inner],
    )
    before = HistoryTreeProcessor.text_hash(outer)

    inner.children[0].text = "changed"

    assert HistoryTreeProcessor.text_hash(outer) == before


def test_simple_xpath_to_css_selector():
    convert = HistoryTreeProcessor.convert_simple_xpath_to_css_selector

    assert convert("") == ""
    assert convert("html/body/div[2]/span") == "html > body > div:nth-of-type(2) > span"
    assert convert("/html/body/ul/li[last()]") == "html > body > ul > li:last-of-type"
