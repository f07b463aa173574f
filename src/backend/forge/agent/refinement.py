"""
Phases 2-3 — merge the specialists' feedback, then filter it.

The aggregator merges and deduplicates everything the specialists found;
the critic then prunes and sharpens the merged list. Both are single
non-tool calls, run one after the other, and each has a local fallback so a
run always ends with best-effort output:

  - aggregator call fails → every specialist's raw items, tagged with the
    specialist that produced them
  - critic call fails     → the aggregator's list, unchanged

Grammar items never go through either pass. They are appended after the
final renumbering with category/severity forced to grammar/suggestion.
"""
from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional

from forge.agent import prompts
from forge.config import settings
from forge.models.schemas import (
    Category,
    FeedbackItem,
    Phase,
    ResultStatus,
    SEVERITY_ORDER,
    Severity,
    SpecialistResult,
)
from forge.services.claude import ClaudeService, describe_error
from forge.services.response import parse_feedback

logger = logging.getLogger(__name__)

PhaseCallback = Callable[[Phase], None]


def _dump(items: List[FeedbackItem]) -> str:
    return json.dumps(
        [item.model_dump(exclude_none=True, exclude_defaults=True) for item in items],
        indent=2,
        ensure_ascii=False,
    )


def _document_block(document: str) -> str:
    return "\n".join(["ORIGINAL TEXT:", '"""', document, '"""', ""])


def renumber(items: List[FeedbackItem], start: int = 1) -> List[FeedbackItem]:
    """Copies of `items` with ids start, start+1, ... in the same order."""
    return [item.model_copy(update={"id": start + i}) for i, item in enumerate(items)]


def fallback_merge(results: List[SpecialistResult]) -> List[FeedbackItem]:
    """Raw concatenation of every successful specialist's items."""
    merged: List[FeedbackItem] = []
    for result in results:
        if result.is_grammar or result.status != ResultStatus.FULFILLED:
            continue
        for item in result.feedback:
            merged.append(item.model_copy(update={"agents": [result.name]}))
    return renumber(merged)


def sort_by_severity(items: List[FeedbackItem]) -> List[FeedbackItem]:
    """Critical first, then important, then suggestions; stable within a level."""
    return sorted(items, key=lambda item: SEVERITY_ORDER.get(item.severity, len(SEVERITY_ORDER)))


def grammar_items(result: Optional[SpecialistResult], start: int) -> List[FeedbackItem]:
    if result is None or result.status != ResultStatus.FULFILLED:
        return []
    return [
        item.model_copy(update={
            "id": start + i,
            "category": Category.GRAMMAR.value,
            "severity": Severity.SUGGESTION.value,
        })
        for i, item in enumerate(result.feedback)
    ]


class RefinementPipeline:
    """
    Merges and filters phase-1 output.

    Usage:
        pipeline = RefinementPipeline(service)
        final_items = await pipeline.run(document, phase1_results)
    """

    def __init__(self, service: ClaudeService, model: Optional[str] = None, max_tokens: int = 0):
        self.service = service
        self.model = model or settings.model
        self.max_tokens = max_tokens or settings.max_tokens

    async def merge(self, document: str, results: List[SpecialistResult]) -> List[FeedbackItem]:
        """Phase 2: one aggregator call over every specialist that produced items."""
        sections = [
            f"=== {r.name} Agent ===\n{_dump(r.feedback)}"
            for r in results
            if r.feedback and not r.is_grammar and r.status == ResultStatus.FULFILLED
        ]
        if not sections:
            return []

        user_message = _document_block(document) + "\nSPECIALIST AGENT OUTPUTS:\n" + "\n\n".join(sections)
        completion = await self.service.complete(
            prompts.AGGREGATOR_PROMPT,
            user_message,
            model=self.model,
            max_tokens=self.max_tokens,
            step_name="aggregator",
        )
        return parse_feedback(completion.text)

    async def filter(self, document: str, items: List[FeedbackItem]) -> List[FeedbackItem]:
        """Phase 3: one critic call that prunes and strengthens `items`."""
        if not items:
            return []

        user_message = _document_block(document) + "\nAGGREGATED FEEDBACK:\n" + _dump(items)
        completion = await self.service.complete(
            prompts.CRITIC_PROMPT,
            user_message,
            model=self.model,
            max_tokens=self.max_tokens,
            step_name="critic",
        )
        return parse_feedback(completion.text)

    async def run(
        self,
        document: str,
        results: List[SpecialistResult],
        on_phase: Optional[PhaseCallback] = None,
    ) -> List[FeedbackItem]:
        """
        Merge, filter, renumber and append grammar items.

        Returns [] without calling the critic when the merge produced
        nothing and there are no grammar items.
        """
        specialist_results = [r for r in results if not r.is_grammar]
        grammar_result = next((r for r in results if r.is_grammar), None)
        has_grammar = bool(grammar_result and grammar_result.feedback)

        if on_phase:
            on_phase(Phase.PHASE2)
        try:
            merged = await self.merge(document, specialist_results)
        except Exception as e:
            logger.warning(f"Aggregator failed, using raw specialist output: {describe_error(e)}")
            merged = fallback_merge(specialist_results)
        logger.info(f"Phase 2: {len(merged)} merged items")

        if not merged and not has_grammar:
            return []

        if on_phase:
            on_phase(Phase.PHASE3)
        final: List[FeedbackItem] = []
        if merged:
            try:
                final = await self.filter(document, merged)
            except Exception as e:
                logger.warning(f"Critic failed, using aggregated output: {describe_error(e)}")
                final = merged
        logger.info(f"Phase 3: {len(final)} items kept")

        final = renumber(final)
        return final + grammar_items(grammar_result, start=len(final) + 1)
