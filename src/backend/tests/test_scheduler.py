import asyncio
import json
from typing import Any, Dict, List, Tuple

import pytest

from forge.agent.scheduler import AllSpecialistsFailedError, FanOutScheduler, batched
from forge.agent.specialists import SPECIALIST_EVIDENCE, SPECIALISTS
from forge.agent.subagent import SubAgentHandler
from forge.agent.tool_loop import ToolUseLoop
from forge.models.schemas import AgentStatus, AnalysisOptions, ResultStatus
from tests.fakes import (
    FakeClaudeService,
    delegation_reply,
    feedback_json,
    network_error,
    scripted,
    text_reply,
)

ITEMS = text_reply(feedback_json("Remote work increases productivity", "Every company"))


def make_scheduler(service, sleep, **kwargs) -> FanOutScheduler:
    kwargs.setdefault("batch_size", 2)
    kwargs.setdefault("batch_delay", 15.0)
    return FanOutScheduler(service, model="test-model", grammar_model="small-model", sleep=sleep, **kwargs)


def statuses_by_agent(events) -> Dict[str, list]:
    by_agent: Dict[str, list] = {}
    for event in events:
        by_agent.setdefault(event.agent_key, []).append(event.status)
    return by_agent


def test_batched_splits_in_order():
    assert batched(list("abcde"), 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert batched(list("ab"), 0) == [["a"], ["b"]]


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size,pauses", [(1, 5), (2, 2), (4, 1), (6, 0)])
async def test_pauses_between_batches_only(document, no_tools, sleep_recorder, batch_size, pauses):
    service = FakeClaudeService(scripted({}, default=ITEMS))
    scheduler = make_scheduler(service, sleep_recorder, batch_size=batch_size)

    results = await scheduler.run(document, no_tools)

    assert len(results) == 6
    assert sleep_recorder.delays == [15.0] * pauses


@pytest.mark.asyncio
async def test_grammar_pass_runs_last_after_a_pause(document, sleep_recorder):
    options = AnalysisOptions(web_search=False, grammar=True)
    service = FakeClaudeService(scripted({}, default=ITEMS))

    results = await make_scheduler(service, sleep_recorder).run(document, options)

    assert len(sleep_recorder.delays) == 3
    assert results[-1].is_grammar
    assert results[-1].key == "grammar"
    grammar_call = service.calls[-1]
    assert grammar_call["step_name"] == "grammar"
    assert grammar_call["payload"]["model"] == "small-model"
    assert "tools" not in grammar_call["payload"]


@pytest.mark.asyncio
async def test_one_network_failure_is_isolated(document, no_tools, sleep_recorder):
    service = FakeClaudeService(scripted(
        {"specialist_clarity": network_error("Network error: connection refused")},
        default=ITEMS,
    ))
    events = []

    results = await make_scheduler(service, sleep_recorder).run(document, no_tools, on_event=events.append)

    assert len(results) == 6
    assert [r.status for r in results].count(ResultStatus.FULFILLED) == 5
    failed = [r for r in results if r.status == ResultStatus.REJECTED]
    assert [r.key for r in failed] == ["clarity"]
    assert failed[0].error == "Network error: connection refused"
    assert failed[0].feedback == []
    assert sum(len(r.feedback) for r in results) == 10


@pytest.mark.asyncio
async def test_event_order_per_specialist(document, no_tools, sleep_recorder):
    service = FakeClaudeService(scripted({"specialist_math": network_error()}, default=ITEMS))
    events = []

    await make_scheduler(service, sleep_recorder).run(document, no_tools, on_event=events.append)

    by_agent = statuses_by_agent(events)
    assert set(by_agent) == {"argument", "evidence", "clarity", "math", "structure", "steelman"}
    for key, statuses in by_agent.items():
        assert statuses[0] == AgentStatus.PENDING
        assert statuses[-1] in (AgentStatus.COMPLETE, AgentStatus.ERROR)
        terminal = [s for s in statuses if s in (AgentStatus.COMPLETE, AgentStatus.ERROR)]
        assert len(terminal) == 1, key
        assert all(s == AgentStatus.RUNNING for s in statuses[1:-1])
    assert by_agent["math"][-1] == AgentStatus.ERROR
    complete = [e for e in events if e.agent_key == "argument"][-1]
    assert complete.detail.items == 2


@pytest.mark.asyncio
async def test_all_failures_raise(document, no_tools, sleep_recorder):
    service = FakeClaudeService(scripted({}, default=network_error()))

    with pytest.raises(AllSpecialistsFailedError) as exc_info:
        await make_scheduler(service, sleep_recorder).run(document, no_tools)

    assert len(exc_info.value.results) == 6
    assert str(exc_info.value) == (
        "All specialist agents failed. Please check your connection settings and try again."
    )


@pytest.mark.asyncio
async def test_grammar_success_does_not_rescue_a_run(document, sleep_recorder):
    service = FakeClaudeService(scripted({"grammar": ITEMS}, default=network_error()))
    options = AnalysisOptions(web_search=False, grammar=True)

    with pytest.raises(AllSpecialistsFailedError):
        await make_scheduler(service, sleep_recorder).run(document, options)


@pytest.mark.asyncio
async def test_unparseable_output_is_an_empty_success(document, no_tools, sleep_recorder):
    service = FakeClaudeService(scripted({}, default=text_reply("The essay looks fine to me.")))

    results = await make_scheduler(service, sleep_recorder).run(document, no_tools)

    assert all(r.status == ResultStatus.FULFILLED and r.feedback == [] for r in results)


@pytest.mark.asyncio
async def test_tool_specialists_go_through_the_loop(document, sleep_recorder):
    service = FakeClaudeService(scripted({}, default=ITEMS))
    options = AnalysisOptions(web_search=True, deep_research=True)
    events = []

    await make_scheduler(service, sleep_recorder).run(document, options, on_event=events.append)

    steps = service.steps()
    assert "evidence_turn1" in steps
    assert "steelman_turn1" in steps
    assert "specialist_argument" in steps
    evidence_payload = next(c["payload"] for c in service.calls if c["step_name"] == "evidence_turn1")
    assert [t["name"] for t in evidence_payload["tools"]] == ["web_search", "research_subagent"]
    tool_events = [e for e in events if e.agent_key == "evidence" and e.detail.tools]
    assert tool_events[0].detail.tools == ["web search", "sub-agents"]


def test_task_capabilities_follow_options():
    scheduler = FanOutScheduler(FakeClaudeService(), model="test-model")

    default = {t.key: t for t in scheduler.build_tasks(AnalysisOptions())}
    assert default["evidence"].uses_search and not default["evidence"].uses_delegation
    assert not default["math"].uses_search
    assert not default["argument"].tools

    deep = {t.key: t for t in scheduler.build_tasks(AnalysisOptions(deep_research=True, math_web_search=True))}
    assert deep["steelman"].uses_delegation
    assert deep["math"].uses_search
    assert "web search" in deep["math"].system_prompt.lower()

    offline = {t.key: t for t in scheduler.build_tasks(AnalysisOptions(web_search=False, math_web_search=True))}
    assert not offline["evidence"].uses_search
    assert offline["math"].uses_search


class SlowService(FakeClaudeService):
    async def create_message(self, payload: Dict[str, Any], step_name: str = ""):
        if step_name == "specialist_structure":
            await asyncio.sleep(1)
        return await super().create_message(payload, step_name)


@pytest.mark.asyncio
async def test_timeout_is_a_specialist_failure(document, no_tools, sleep_recorder):
    service = SlowService(scripted({}, default=ITEMS))
    scheduler = make_scheduler(service, sleep_recorder, agent_timeout=0.05)

    results = await scheduler.run(document, no_tools)

    structure = next(r for r in results if r.key == "structure")
    assert structure.status == ResultStatus.REJECTED
    assert structure.error == "TimeoutError"


class RecordingService(FakeClaudeService):
    """Records when each plain specialist call starts and ends."""

    def __init__(self, handler):
        super().__init__(handler)
        self.timeline: List[Tuple[str, str]] = []

    async def create_message(self, payload: Dict[str, Any], step_name: str = ""):
        if not step_name.startswith("specialist_"):
            return await super().create_message(payload, step_name)
        key = step_name[len("specialist_"):]
        self.timeline.append(("start", key))
        await asyncio.sleep(0.01)
        response = await super().create_message(payload, step_name)
        self.timeline.append(("end", key))
        return response


@pytest.mark.asyncio
async def test_batches_overlap_inside_and_never_across(document, no_tools, sleep_recorder):
    service = RecordingService(scripted({}, default=ITEMS))
    batches = [["argument", "evidence"], ["clarity", "math"], ["structure", "steelman"]]

    results = await make_scheduler(service, sleep_recorder).run(document, no_tools)

    assert [r.key for r in results] == [key for batch in batches for key in batch]
    position = {event: i for i, event in enumerate(service.timeline)}
    assert len(position) == 12
    for batch in batches:
        starts = [position[("start", key)] for key in batch]
        ends = [position[("end", key)] for key in batch]
        assert max(starts) < min(ends)
    for earlier, later in zip(batches, batches[1:]):
        assert max(position[("end", key)] for key in earlier) < min(position[("start", key)] for key in later)


class PacedService(FakeClaudeService):
    async def create_message(self, payload: Dict[str, Any], step_name: str = ""):
        await asyncio.sleep(0.1 if step_name.startswith("subagent_") else 0.01)
        return await super().create_message(payload, step_name)


@pytest.mark.asyncio
async def test_specialist_limit_covers_its_full_delegation_budget(document, sleep_recorder):
    service = PacedService(scripted({
        "evidence_turn": [
            delegation_reply(
                "Check the 40 percent productivity figure",
                "Find studies of companies that adopted remote work",
                "Look for evidence on collaboration costs",
            ),
            ITEMS,
        ],
        "subagent_": text_reply("No study supports the 40 percent figure."),
    }))
    service.timeout, service.max_retries, service.retry_delay = 0.05, 0, 0.0
    tool_loop = ToolUseLoop(
        service,
        SubAgentHandler(service, timeout=0.2),
        model="test-model",
        max_subagents=3,
        max_turns=3,
        extended_thinking=False,
    )
    scheduler = make_scheduler(service, sleep_recorder, tool_loop=tool_loop, specialists=[SPECIALIST_EVIDENCE])
    options = AnalysisOptions(web_search=True, deep_research=True, grammar=False)

    results = await scheduler.run(document, options)

    # three sequential sub-agents outlast every turn's own request limit combined
    assert scheduler.tool_agent_timeout == pytest.approx(3 * 0.05 + 3 * 0.2)
    assert [r.status for r in results] == [ResultStatus.FULFILLED]
    assert len(results[0].feedback) == 2
    assert service.usage.subagents == 3
    assert sum(step.startswith("subagent_") for step in service.steps()) == 3
    tool_results = service.calls[-1]["payload"]["messages"][-1]["content"]
    assert len(tool_results) == 3
    assert not any(block.get("is_error") for block in tool_results)


def test_default_limits_follow_transport_and_delegation_limits():
    service = FakeClaudeService()
    service.timeout, service.max_retries, service.retry_delay = 300.0, 1, 2.0
    tool_loop = ToolUseLoop(service, SubAgentHandler(service, timeout=60.0), max_subagents=3, max_turns=10)

    scheduler = FanOutScheduler(service, tool_loop=tool_loop, model="test-model")

    assert scheduler.agent_timeout == pytest.approx(602.0)
    assert scheduler.tool_agent_timeout == pytest.approx(10 * 602.0 + 3 * 60.0)
    explicit = FanOutScheduler(service, tool_loop=tool_loop, agent_timeout=5.0, tool_agent_timeout=9.0)
    assert (explicit.agent_timeout, explicit.tool_agent_timeout) == (5.0, 9.0)


@pytest.mark.asyncio
async def test_uncategorised_items_take_the_specialist_category(document, no_tools, sleep_recorder):
    reply = text_reply(json.dumps([
        {"quote": "Every company", "title": "Overreach"},
        {"quote": "saw profits rise", "title": "Vague", "category": "Clarity"},
    ]))
    service = FakeClaudeService(scripted({}, default=reply))

    results = await make_scheduler(service, sleep_recorder).run(document, no_tools)

    expected = {spec.key: spec.category.value for spec in SPECIALISTS}
    assert {r.key: r.feedback[0].category for r in results} == expected
    assert all(r.feedback[1].category == "clarity" for r in results)
