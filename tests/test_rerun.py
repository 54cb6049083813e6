import asyncio

import pytest
from langchain_core.language_models import FakeListChatModel

from webpilot.agent.service import Agent
from webpilot.agent.views import AgentSettings

from conftest import FakeBrowser, model_response


def _agent(browser: FakeBrowser, responses=None) -> Agent:
    return Agent(
        task="Submit the form",
        llm=FakeListChatModel(responses=responses or ["unused"]),
        browser_context=browser,
        settings=AgentSettings(tool_calling_method="raw", retry_delay=0, use_vision=False),
    )


@pytest.fixture
def recorded_history(tmp_path):
    browser = FakeBrowser()
    agent = _agent(
        browser,
        [
            model_response([{"click_element": {"index": 1}}]),
            model_response([{"done": {"text": "submitted", "success": True}}]),
        ],
    )
    asyncio.run(agent.run(max_steps=5))
    path = tmp_path / "AgentHistory.json"
    agent.save_history(path)
    return path


def test_rerun_follows_moved_element(recorded_history):
    browser = FakeBrowser(offset=10)
    agent = _agent(browser)

    results = asyncio.run(
        agent.load_and_rerun(recorded_history, delay_between_actions=0)
    )

    assert [e.highlight_index for e in browser.clicked] == [11]
    assert results[-1].is_done
    assert results[-1].extracted_content == "submitted"
    assert not any(r.error for r in results)


def test_rerun_skips_step_whose_element_is_gone(recorded_history):
    browser = FakeBrowser(button_xpath="html/body/div/button[7]")
    agent = _agent(browser)

    results = asyncio.run(
        agent.load_and_rerun(recorded_history, max_retries=2, delay_between_actions=0)
    )

    assert browser.clicked == []
    assert "failed after 2 attempts" in results[0].error
    assert results[-1].is_done


def test_rerun_can_fail_hard(recorded_history):
    browser = FakeBrowser(button_xpath="html/body/div/button[7]")
    agent = _agent(browser)

    with pytest.raises(RuntimeError):
        asyncio.run(
            agent.load_and_rerun(
                recorded_history,
                max_retries=1,
                skip_failures=False,
                delay_between_actions=0,
            )
        )


def test_rerun_skips_steps_without_model_output():
    browser = FakeBrowser()
    source = _agent(browser, ["not json", model_response([{"scroll_down": {}}])])
    asyncio.run(source.run(max_steps=2))

    results = asyncio.run(
        _agent(FakeBrowser()).rerun_history(source.state.history, delay_between_actions=0)
    )

    assert results[0].error == "No action to replay"
    assert results[1].extracted_content == "Scrolled down the page by one page"
