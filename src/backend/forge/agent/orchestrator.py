"""
Analysis Orchestrator — one end-to-end Forge run.

Controls the multi-phase pipeline:
  1. Fan out to the specialists in rate-limited batches (+ grammar pass)
  2. Merge and deduplicate their feedback (aggregator)
  3. Prune and sharpen the merged list (critic)
  then renumber, append grammar items and anchor every quote in the text.

The orchestrator owns the run's state and usage counters, and forwards
specialist status events and phase changes to the caller's callbacks.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import List, Optional

from forge.agent.refinement import PhaseCallback, RefinementPipeline
from forge.agent.scheduler import AllSpecialistsFailedError, EventCallback, FanOutScheduler, Sleep
from forge.models.schemas import (
    AgentState,
    AnalysisOptions,
    AnalysisResult,
    AnalysisState,
    Category,
    ConnectionConfig,
    FeedbackItem,
    Phase,
    RunEvent,
    SpecialistResult,
)
from forge.services.claude import ClaudeService, describe_error
from forge.services.usage import UsageAccumulator, format_cost_range
from forge.tools.matching import compute_document_positions

logger = logging.getLogger(__name__)


class AnalysisOrchestrator:
    """
    Orchestrates a full analysis of one document.

    Usage:
        orchestrator = AnalysisOrchestrator(ConnectionConfig.from_settings())
        result = await orchestrator.run(text, AnalysisOptions(), on_event=print)
        orchestrator.state.agent_states  # latest status per specialist
    """

    def __init__(
        self,
        connection: Optional[ConnectionConfig] = None,
        service: Optional[ClaudeService] = None,
        model: Optional[str] = None,
        scheduler: Optional[FanOutScheduler] = None,
        refinement: Optional[RefinementPipeline] = None,
        sleep: Optional[Sleep] = None,
    ):
        self._owns_service = service is None
        self.service = service or ClaudeService(connection or ConnectionConfig.from_settings())
        self.scheduler = scheduler or FanOutScheduler(
            self.service, model=model, sleep=sleep or asyncio.sleep
        )
        self.refinement = refinement or RefinementPipeline(self.service, model=model)

        # State
        self._state: Optional[AnalysisState] = None

    @property
    def state(self) -> Optional[AnalysisState]:
        return self._state

    @property
    def usage(self) -> UsageAccumulator:
        return self.service.usage

    def get_result(self) -> Optional[AnalysisResult]:
        return self._state.result if self._state else None

    async def run(
        self,
        document: str,
        options: Optional[AnalysisOptions] = None,
        on_event: Optional[EventCallback] = None,
        on_phase: Optional[PhaseCallback] = None,
        analysis_id: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Run phases 1-3 and return the final, anchored feedback.

        Raises:
            AllSpecialistsFailedError: every specialist failed in phase 1.
                The state is marked failed before the error propagates.
        """
        options = options or AnalysisOptions()
        self._state = AnalysisState(
            analysis_id=analysis_id or str(uuid.uuid4())[:8],
            started_at=datetime.utcnow(),
        )
        self.usage.reset()
        start = time.monotonic()
        logger.info(
            f"Analysis {self._state.analysis_id} started: {len(document)} chars, "
            f"options={options.model_dump()}"
        )

        def _on_event(event: RunEvent) -> None:
            self._state.agent_states[event.agent_key] = AgentState(
                status=event.status, **event.detail.model_dump()
            )
            if on_event:
                on_event(event)

        def _on_phase(phase: Phase) -> None:
            self._state.phase = phase
            if on_phase:
                on_phase(phase)

        try:
            _on_phase(Phase.PHASE1)
            results = await self.scheduler.run(document, options, on_event=_on_event)
            feedback = await self.refinement.run(document, results, on_phase=_on_phase)
        except Exception as e:
            self._state.status = "failed"
            self._state.error = describe_error(e)
            self._state.completed_at = datetime.utcnow()
            if isinstance(e, AllSpecialistsFailedError):
                logger.error(f"Analysis {self._state.analysis_id} failed: {e}")
            else:
                logger.exception(f"Analysis {self._state.analysis_id} aborted")
            raise
        finally:
            if self._owns_service:
                await self.service.aclose()

        result = self._build_result(document, options, feedback, results, time.monotonic() - start)
        self._state.result = result
        self._state.status = "complete"
        self._state.completed_at = datetime.utcnow()
        logger.info(
            f"Analysis {self._state.analysis_id} complete: {len(result.feedback)} items "
            f"({result.grammar_count} grammar), {result.usage.total_tokens} tokens "
            f"over {self.usage.call_count} calls, "
            f"{result.total_time_seconds}s"
        )
        return result

    def _build_result(
        self,
        document: str,
        options: AnalysisOptions,
        feedback: List[FeedbackItem],
        results: List[SpecialistResult],
        elapsed: float,
    ) -> AnalysisResult:
        return AnalysisResult(
            feedback=feedback,
            grammar_count=sum(1 for item in feedback if item.category == Category.GRAMMAR.value),
            positions=compute_document_positions(document, feedback),
            agents=results,
            usage=self.usage.snapshot(),
            total_time_seconds=round(elapsed),
            cost_estimate=format_cost_range(options),
        )
