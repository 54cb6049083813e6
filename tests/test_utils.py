import logging

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from webpilot.agent.message_manager.utils import (
    convert_input_messages,
    extract_json_from_model_output,
    save_conversation,
)
from webpilot.agent.prompts import SystemPrompt
from webpilot.utils.config import Config, load_config
from webpilot.utils.logger import setup_logger


def test_extract_plain_json():
    assert extract_json_from_model_output('{"a": 1}') == {"a": 1}


def test_extract_json_from_code_block():
    content = 'Here you go:\n```json\n{"action": [{"go_back": {}}]}\n```'

    assert extract_json_from_model_output(content) == {"action": [{"go_back": {}}]}


def test_extract_json_failure():
    with pytest.raises(ValueError, match="Could not parse response"):
        extract_json_from_model_output("no json here")


def _conversation():
    return [
        SystemMessage(content="rules"),
        HumanMessage(content="task"),
        HumanMessage(content="example"),
        AIMessage(content="", tool_calls=[{"name": "AgentOutput", "args": {"x": 1}, "id": "1"}]),
        ToolMessage(content="done", tool_call_id="1"),
        HumanMessage(content="state"),
    ]


def test_convert_keeps_messages_for_tool_calling_models():
    messages = _conversation()

    assert convert_input_messages(messages, "gpt-4o") is messages
    assert convert_input_messages(messages, None) is messages


def test_convert_merges_for_reasoning_models():
    converted = convert_input_messages(_conversation(), "deepseek-r1-distill")

    assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert converted[1].content == "taskexample"
    assert '"AgentOutput"' in converted[2].content
    assert converted[3].content == "donestate"


def test_save_conversation(tmp_path):
    target = tmp_path / "conversations" / "step_1.txt"

    save_conversation(_conversation(), {"action": []}, target)

    text = target.read_text(encoding="utf-8")
    assert " SystemMessage " in text
    assert "RESPONSE" in text


def test_system_prompt_lists_actions():
    prompt = SystemPrompt("click_element: {index}", max_actions_per_step=4)

    content = prompt.get_system_message().content
    assert "click_element: {index}" in content
    assert "4" in content


def test_system_prompt_override_and_extend():
    prompt = SystemPrompt(
        "ignored", override_system_message="Only rules", extend_system_message="Be brief"
    )

    assert prompt.get_system_message().content == "Only rules\nBe brief"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    monkeypatch.setenv("AGENT_MAX_FAILURES", "5")
    monkeypatch.setenv("BROWSER_ALLOWED_DOMAINS", '["example.com"]')

    config = load_config()

    assert isinstance(config, Config)
    assert config.llm_api_key == "sk-test"
    assert config.agent_max_failures == 5
    assert config.browser_allowed_domains == ["example.com"]
    assert config.agent_tool_calling_method == "auto"


def test_setup_logger_is_idempotent():
    first = setup_logger("webpilot.tests.sample", level="DEBUG")
    second = setup_logger("webpilot.tests.sample")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.DEBUG
