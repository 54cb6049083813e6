import asyncio
from unittest.mock import AsyncMock, patch

from langchain_core.language_models import FakeListChatModel

from webpilot.agent.graph import recursion_limit_for
from webpilot.agent.nodes import gate_node
from webpilot.agent.views import AgentSettings, AgentState, AgentStatus
from webpilot.agent.service import Agent
from webpilot.browser.views import BrowserConnectionError

from conftest import FakeBrowser, model_response

DONE = {"done": {"text": "The answer is 42", "success": True}}


def _agent(responses, browser=None, **kwargs) -> Agent:
    settings = kwargs.pop(
        "settings",
        AgentSettings(tool_calling_method="raw", retry_delay=0, use_vision=False),
    )
    return Agent(
        task="Find the answer",
        llm=FakeListChatModel(responses=responses),
        browser_context=browser or FakeBrowser(),
        settings=settings,
        **kwargs,
    )


def test_done_ends_run_successfully():
    agent = _agent([model_response([{"click_element": {"index": 1}}]), model_response([DONE])])

    history = asyncio.run(agent.run(max_steps=10))

    assert agent.state.status == AgentStatus.DONE
    assert history.number_of_steps() == 2
    assert history.is_done()
    assert history.is_successful()
    assert history.final_result() == "The answer is 42"
    assert agent.state.n_steps == 3
    assert history.history[0].state.interacted_element[0].tag_name == "button"


def test_fail_fast_within_a_step():
    browser = FakeBrowser()
    agent = _agent(
        [
            model_response(
                [
                    {"click_element": {"index": 1}},
                    {"click_element": {"index": 99}},
                    {"click_element": {"index": 3}},
                ]
            )
        ],
        browser=browser,
    )

    step = asyncio.run(agent.step())

    assert [e.tag_name for e in browser.clicked] == ["button"]
    assert len(step.result) == 2
    assert step.result[0].error is None
    assert "Element with index 99 does not exist" in step.result[1].error
    assert step.result[1].success is False
    assert agent.state.consecutive_failures == 1
    assert step.state.interacted_element[1] is None
    assert step.state.interacted_element[2].tag_name == "a"


def test_consecutive_failures_end_run():
    browser = FakeBrowser()
    agent = _agent([model_response([{"click_element": {"index": 99}}])], browser=browser)

    history = asyncio.run(agent.run(max_steps=10))

    assert agent.state.status == AgentStatus.FAILED
    assert history.number_of_steps() == 3
    assert all(history.errors())
    assert browser.snapshots == 3


def test_success_resets_failure_counter():
    agent = _agent(
        [
            model_response([{"click_element": {"index": 99}}]),
            model_response([{"click_element": {"index": 99}}]),
            model_response([{"scroll_down": {}}]),
            model_response([{"click_element": {"index": 99}}]),
            model_response([DONE]),
        ]
    )

    history = asyncio.run(agent.run(max_steps=10))

    assert agent.state.status == AgentStatus.DONE
    assert history.number_of_steps() == 5
    assert agent.state.consecutive_failures == 0


def test_unparseable_output_is_a_failed_step():
    agent = _agent(["I think I should click the button", model_response([DONE])])
    messages_before = len(agent.message_manager.state.history.messages)

    history = asyncio.run(agent.run(max_steps=5))

    first = history.history[0]
    assert first.model_output is None
    assert first.result[0].error.startswith("Invalid model output format")
    assert history.is_done()
    # The parse error is carried into the next prompt
    contents = [str(m.message.content) for m in agent.message_manager.state.history.messages]
    assert any(c.startswith("Action error:") for c in contents[messages_before:])


def test_max_steps_exhausted():
    agent = _agent([model_response([{"scroll_down": {}}])])

    history = asyncio.run(agent.run(max_steps=2))

    assert agent.state.status == AgentStatus.FAILED
    assert history.number_of_steps() == 2
    assert not history.is_done()
    assert not history.has_errors()


def test_lost_browser_connection_is_fatal(tmp_path):
    browser = FakeBrowser()
    browser.state_error = BrowserConnectionError("Target closed")
    path = tmp_path / "history.json"
    settings = AgentSettings(
        tool_calling_method="raw",
        retry_delay=0,
        use_vision=False,
        save_history_path=str(path),
        max_failures=5,
    )
    agent = _agent([model_response([DONE])], browser=browser, settings=settings)

    history = asyncio.run(agent.run(max_steps=10))

    assert agent.state.status == AgentStatus.FAILED
    assert history.number_of_steps() == 1
    assert "Target closed" in history.errors()[0]
    assert path.exists()


def test_connection_lost_during_action_is_fatal():
    browser = FakeBrowser()
    browser.click_error = BrowserConnectionError("Browser has been closed")
    agent = _agent([model_response([{"click_element": {"index": 1}}])], browser=browser)

    history = asyncio.run(agent.run(max_steps=10))

    assert agent.state.status == AgentStatus.FAILED
    assert history.number_of_steps() == 1


def test_external_stop_request():
    async def interrupt() -> bool:
        return True

    agent = _agent(
        [model_response([DONE])],
        register_external_agent_status_raise_error_callback=interrupt,
    )

    history = asyncio.run(agent.run(max_steps=10))

    assert agent.state.status == AgentStatus.STOPPED
    assert history.number_of_steps() == 0


def test_stop_is_observed_between_steps():
    agent = _agent([model_response([{"scroll_down": {}}])])

    def stop_after_first_step(browser_state, model_output, step):
        agent.stop()

    agent.register_new_step_callback = stop_after_first_step

    history = asyncio.run(agent.run(max_steps=10))

    # The step in flight is finished and recorded
    assert history.number_of_steps() == 1
    assert history.history[0].result[0].error is None
    assert agent.state.status == AgentStatus.STOPPED


def test_pause_and_resume():
    agent = _agent([model_response([DONE])])

    async def scenario():
        agent.pause()
        task = asyncio.create_task(agent.run(max_steps=5))
        for _ in range(100):
            if agent.state.status == AgentStatus.PAUSED:
                break
            await asyncio.sleep(0.02)
        paused_status = agent.state.status
        steps_while_paused = agent.state.history.number_of_steps()
        agent.resume()
        history = await task
        return paused_status, steps_while_paused, history

    paused_status, steps_while_paused, history = asyncio.run(scenario())

    assert paused_status == AgentStatus.PAUSED
    assert steps_while_paused == 0
    assert history.is_done()
    assert agent.state.status == AgentStatus.DONE


def test_callbacks_receive_steps_and_history():
    steps = []
    finished = []

    async def on_done(history):
        finished.append(history.number_of_steps())

    agent = _agent(
        [model_response([{"scroll_down": {}}]), model_response([DONE])],
        register_new_step_callback=lambda state, output, n: steps.append(
            (state.url, output.action[0].name, n)
        ),
        register_done_callback=on_done,
    )

    asyncio.run(agent.run(max_steps=5))

    assert steps == [
        ("https://example.com/", "scroll_down", 1),
        ("https://example.com/", "done", 2),
    ]
    assert finished == [2]


def test_actions_are_capped_per_step():
    settings = AgentSettings(
        tool_calling_method="raw", retry_delay=0, use_vision=False, max_actions_per_step=2
    )
    browser = FakeBrowser()
    agent = _agent(
        [model_response([{"scroll_down": {}}] * 4)], browser=browser, settings=settings
    )

    step = asyncio.run(agent.step())

    assert len(step.model_output.action) == 2
    assert len(browser.scrolls) == 2


def test_follow_up_task_continues_after_done():
    agent = _agent([model_response([DONE])])
    asyncio.run(agent.run(max_steps=3))

    agent.add_new_task("Now find another answer")
    history = asyncio.run(agent.run(max_steps=3))

    assert history.number_of_steps() == 2
    assert agent.task == "Now find another answer"


def test_resume_from_checkpoint():
    first = _agent([model_response([{"scroll_down": {}}])])
    asyncio.run(first.step())
    checkpoint = first.state.to_json()

    second = _agent(
        [model_response([DONE])],
        injected_agent_state=AgentState.from_json(checkpoint, first.AgentOutput),
    )
    history = asyncio.run(second.run(max_steps=3))

    assert history.number_of_steps() == 2
    assert history.history[0].model_output.action[0].name == "scroll_down"
    assert second.state.n_steps == 3


def test_recursion_limit_covers_all_steps():
    assert recursion_limit_for(1) >= 2 * 5
    assert recursion_limit_for(100) > 100 * 5


def _stop_after_each_step(agent: Agent):
    def callback(browser_state, model_output, step):
        agent.stop()

    return callback


def test_run_after_stop_continues():
    agent = _agent([model_response([{"scroll_down": {}}]), model_response([DONE])])
    agent.register_new_step_callback = _stop_after_each_step(agent)
    asyncio.run(agent.run(max_steps=5))
    assert agent.state.status == AgentStatus.STOPPED

    agent.register_new_step_callback = None
    history = asyncio.run(agent.run(max_steps=5))

    assert history.number_of_steps() == 2
    assert agent.state.status == AgentStatus.DONE
    assert not agent.state.stopped


def test_checkpoint_taken_after_stop_can_resume():
    first = _agent([model_response([{"scroll_down": {}}])])
    first.register_new_step_callback = _stop_after_each_step(first)
    asyncio.run(first.run(max_steps=5))
    checkpoint = first.state.to_json()

    second = _agent(
        [model_response([DONE])],
        injected_agent_state=AgentState.from_json(checkpoint, first.AgentOutput),
    )
    history = asyncio.run(second.run(max_steps=5))

    assert history.number_of_steps() == 2
    assert second.state.status == AgentStatus.DONE


def test_retry_delay_only_after_failed_step():
    settings = AgentSettings(tool_calling_method="raw", retry_delay=7.5, use_vision=False)
    agent = _agent(
        [
            model_response([{"click_element": {"index": 99}}]),
            model_response([{"scroll_down": {}}]),
            model_response([DONE]),
        ],
        settings=settings,
    )

    with patch.object(gate_node.asyncio, "sleep", new_callable=AsyncMock) as sleep:
        history = asyncio.run(agent.run(max_steps=5))

    assert history.number_of_steps() == 3
    retry_waits = [c for c in sleep.await_args_list if c.args == (7.5,)]
    assert len(retry_waits) == 1


def test_failing_step_callback_does_not_end_run():
    def broken_callback(browser_state, model_output, step):
        raise RuntimeError("display gone")

    agent = _agent(
        [model_response([{"scroll_down": {}}]), model_response([DONE])],
        register_new_step_callback=broken_callback,
    )

    history = asyncio.run(agent.run(max_steps=5))

    assert agent.state.status == AgentStatus.DONE
    assert history.number_of_steps() == 2
    assert not history.has_errors()


def test_conversation_dump_failure_is_not_fatal(tmp_path):
    # A file where the dump directory should be makes every write fail
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    settings = AgentSettings(
        tool_calling_method="raw",
        retry_delay=0,
        use_vision=False,
        save_conversation_path=str(blocker / "conversation"),
    )
    agent = _agent([model_response([DONE])], settings=settings)

    history = asyncio.run(agent.run(max_steps=3))

    assert history.is_done()
    assert agent.state.status == AgentStatus.DONE
