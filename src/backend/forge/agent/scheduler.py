"""
Phase 1 — fan-out over the specialists.

Specialists run in fixed-size batches: every task in a batch runs
concurrently, the whole batch is awaited, and the scheduler pauses before
starting the next batch to stay under the API's rate limits. The optional
grammar pass runs alone after the last batch, on the smaller grammar model
and without tools.

A specialist that fails (transport error, timeout, bad output) is reported
as a rejected result and never takes its batch down with it.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from forge.agent import prompts
from forge.agent.specialists import (
    GRAMMAR_SPECIALIST,
    SPECIALISTS,
    SpecialistDef,
    SpecialistTask,
    build_task,
)
from forge.agent.subagent import SubAgentHandler
from forge.agent.tool_loop import DelegationEvent, ToolUseLoop
from forge.config import settings
from forge.models.schemas import (
    AgentStatus,
    AnalysisOptions,
    Category,
    EventDetail,
    FeedbackItem,
    ResultStatus,
    RunEvent,
    SpecialistResult,
)
from forge.services.claude import ClaudeService, describe_error
from forge.services.response import parse_feedback

logger = logging.getLogger(__name__)

# Type for the callback that streams specialist status updates
EventCallback = Callable[[RunEvent], None]
Sleep = Callable[[float], Awaitable[None]]


class AllSpecialistsFailedError(RuntimeError):
    """Every specialist in phase 1 failed; there is nothing to refine."""

    def __init__(self, results: List[SpecialistResult]):
        super().__init__(
            "All specialist agents failed. Please check your connection settings and try again."
        )
        self.results = results


def batched(tasks: Sequence[SpecialistTask], size: int) -> List[List[SpecialistTask]]:
    size = max(1, size)
    return [list(tasks[i:i + size]) for i in range(0, len(tasks), size)]


def with_default_category(items: List[FeedbackItem], category: Category) -> List[FeedbackItem]:
    """Items the model left uncategorised take the category of the specialist that raised them."""
    return [
        item if item.category else item.model_copy(update={"category": category.value})
        for item in items
    ]


def request_time_limit(service: ClaudeService) -> float:
    """Longest one create_message call can take: every attempt times out, plus the retry pauses."""
    return service.timeout * (service.max_retries + 1) + service.retry_delay * service.max_retries


def tool_agent_time_limit(service: ClaudeService, tool_loop: ToolUseLoop) -> float:
    """Every turn plus every allowed sub-agent running to its own limit."""
    return (
        tool_loop.max_turns * request_time_limit(service)
        + tool_loop.max_subagents * tool_loop.subagents.timeout
    )


class FanOutScheduler:
    """
    Runs every specialist once and returns one result per specialist.

    Usage:
        scheduler = FanOutScheduler(service)
        results = await scheduler.run(document, AnalysisOptions(), on_event=print)
    """

    def __init__(
        self,
        service: ClaudeService,
        tool_loop: Optional[ToolUseLoop] = None,
        specialists: Optional[List[SpecialistDef]] = None,
        model: Optional[str] = None,
        grammar_model: Optional[str] = None,
        batch_size: int = 0,
        batch_delay: Optional[float] = None,
        agent_timeout: Optional[float] = None,
        tool_agent_timeout: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.service = service
        self.model = model or settings.model
        self.tool_loop = tool_loop or ToolUseLoop(
            service, SubAgentHandler(service, model=self.model), model=self.model
        )
        self.specialists = specialists if specialists is not None else SPECIALISTS
        self.grammar_model = grammar_model or settings.grammar_model
        self.batch_size = batch_size or settings.agent_batch_size
        self.batch_delay = settings.agent_batch_delay_seconds if batch_delay is None else batch_delay
        self.agent_timeout = (
            agent_timeout or settings.agent_timeout_seconds or request_time_limit(service)
        )
        self.tool_agent_timeout = (
            tool_agent_timeout
            or settings.tool_agent_timeout_seconds
            or tool_agent_time_limit(service, self.tool_loop)
        )
        self._sleep = sleep

    def build_tasks(self, options: AnalysisOptions) -> List[SpecialistTask]:
        return [build_task(spec, options) for spec in self.specialists]

    async def run(
        self,
        document: str,
        options: AnalysisOptions,
        on_event: Optional[EventCallback] = None,
    ) -> List[SpecialistResult]:
        """
        Run all specialists (and the grammar pass, if enabled).

        Raises:
            AllSpecialistsFailedError: no specialist succeeded. The grammar
                pass does not count.
        """
        tasks = self.build_tasks(options)
        for task in tasks:
            self._emit(on_event, task.key, AgentStatus.PENDING)
        if options.grammar:
            self._emit(on_event, GRAMMAR_SPECIALIST.key, AgentStatus.PENDING)

        results: List[SpecialistResult] = []
        batches = batched(tasks, self.batch_size)
        for index, batch in enumerate(batches):
            logger.info(
                f"Phase 1 batch {index + 1}/{len(batches)}: {', '.join(t.name for t in batch)}"
            )
            results.extend(await asyncio.gather(
                *(self._run_specialist(task, document, on_event) for task in batch)
            ))
            if index < len(batches) - 1:
                await self._sleep(self.batch_delay)

        if options.grammar:
            await self._sleep(self.batch_delay)
            results.append(await self._run_grammar(document, on_event))

        succeeded = [r for r in results if not r.is_grammar and r.status == ResultStatus.FULFILLED]
        if not succeeded:
            raise AllSpecialistsFailedError(results)

        logger.info(
            f"Phase 1 done: {len(succeeded)}/{len(tasks)} specialists succeeded, "
            f"{sum(len(r.feedback) for r in succeeded)} items"
        )
        return results

    async def _run_specialist(
        self,
        task: SpecialistTask,
        document: str,
        on_event: Optional[EventCallback],
    ) -> SpecialistResult:
        self._emit(on_event, task.key, AgentStatus.RUNNING)
        start = time.monotonic()
        user_message = prompts.DOCUMENT_FRAMING.format(document=document)

        try:
            if task.tools:
                labels = task.tool_labels
                self._emit(on_event, task.key, AgentStatus.RUNNING, EventDetail(tools=labels))

                def on_delegation(event: DelegationEvent) -> None:
                    if event.kind == "started":
                        detail = EventDetail(
                            tools=labels,
                            subagent=event.objective[:60],
                            subagent_count=event.count,
                        )
                    else:
                        detail = EventDetail(tools=labels, subagent_count=event.count, subagent_done=True)
                    self._emit(on_event, task.key, AgentStatus.RUNNING, detail)

                text = await asyncio.wait_for(
                    self.tool_loop.run(task, user_message, on_delegation=on_delegation),
                    timeout=self.tool_agent_timeout,
                )
            else:
                completion = await asyncio.wait_for(
                    self.service.complete(
                        task.system_prompt,
                        user_message,
                        model=self.model,
                        step_name=f"specialist_{task.key}",
                    ),
                    timeout=self.agent_timeout,
                )
                text = completion.text
            feedback = with_default_category(parse_feedback(text), task.spec.category)
        except Exception as e:
            return self._failed(task.spec, start, e, on_event)

        return self._fulfilled(task.spec, start, feedback, on_event)

    async def _run_grammar(self, document: str, on_event: Optional[EventCallback]) -> SpecialistResult:
        spec = GRAMMAR_SPECIALIST
        self._emit(on_event, spec.key, AgentStatus.RUNNING)
        start = time.monotonic()
        try:
            completion = await asyncio.wait_for(
                self.service.complete(
                    spec.prompt,
                    prompts.GRAMMAR_FRAMING.format(document=document),
                    model=self.grammar_model,
                    step_name="grammar",
                ),
                timeout=self.agent_timeout,
            )
            feedback = with_default_category(parse_feedback(completion.text), spec.category)
        except Exception as e:
            return self._failed(spec, start, e, on_event, is_grammar=True)
        return self._fulfilled(spec, start, feedback, on_event, is_grammar=True)

    def _fulfilled(
        self,
        spec: SpecialistDef,
        start: float,
        feedback: List[FeedbackItem],
        on_event: Optional[EventCallback],
        is_grammar: bool = False,
    ) -> SpecialistResult:
        elapsed = round(time.monotonic() - start)
        logger.info(f"  [{spec.name}] {len(feedback)} items in {elapsed}s")
        self._emit(on_event, spec.key, AgentStatus.COMPLETE, EventDetail(items=len(feedback), elapsed=elapsed))
        return SpecialistResult(
            key=spec.key,
            name=spec.name,
            status=ResultStatus.FULFILLED,
            feedback=feedback,
            is_grammar=is_grammar,
        )

    def _failed(
        self,
        spec: SpecialistDef,
        start: float,
        error: Exception,
        on_event: Optional[EventCallback],
        is_grammar: bool = False,
    ) -> SpecialistResult:
        elapsed = round(time.monotonic() - start)
        message = describe_error(error)
        logger.error(f"Specialist {spec.name} failed: {message}")
        self._emit(on_event, spec.key, AgentStatus.ERROR, EventDetail(error=message, elapsed=elapsed))
        return SpecialistResult(
            key=spec.key,
            name=spec.name,
            status=ResultStatus.REJECTED,
            error=message,
            is_grammar=is_grammar,
        )

    @staticmethod
    def _emit(
        on_event: Optional[EventCallback],
        key: str,
        status: AgentStatus,
        detail: Optional[EventDetail] = None,
    ) -> None:
        if on_event is None:
            return
        try:
            on_event(RunEvent(agent_key=key, status=status, detail=detail or EventDetail()))
        except Exception as e:
            logger.warning(f"Status callback failed for {key}: {e!r}")
