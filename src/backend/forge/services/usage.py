"""
Usage accumulator — run-scoped token, web search and sub-agent counters.

One accumulator is created per analysis run and passed to every call site
(transport, tool loop, sub-agent handler). Specialists in the same batch
and their nested sub-agents share it, so every mutation goes through a lock.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import List

from forge.models.schemas import AnalysisOptions, CallUsage, Usage, UsageSnapshot


@dataclass
class UsageAccumulator:
    input_tokens: int = 0
    output_tokens: int = 0
    web_searches: int = 0
    subagents: int = 0
    calls: List[CallUsage] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def reset(self) -> None:
        with self._lock:
            self.input_tokens = 0
            self.output_tokens = 0
            self.web_searches = 0
            self.subagents = 0
            self.calls = []

    def add_usage(self, usage: Usage, step_name: str = "", model: str = "", latency_ms: int = 0) -> None:
        with self._lock:
            self.input_tokens += usage.input_tokens
            self.output_tokens += usage.output_tokens
            self.calls.append(CallUsage(
                step_name=step_name,
                model=model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                latency_ms=latency_ms,
            ))

    def add_web_searches(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self.web_searches += count

    def add_subagent(self) -> None:
        with self._lock:
            self.subagents += 1

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(
                input_tokens=self.input_tokens,
                output_tokens=self.output_tokens,
                total_tokens=self.input_tokens + self.output_tokens,
                web_searches=self.web_searches,
                subagents=self.subagents,
                calls=list(self.calls),
            )


# ──────────────────────────────────────────────
# Cost estimate (USD range shown before a run)
# ──────────────────────────────────────────────

def estimate_cost_range(options: AnalysisOptions) -> tuple[float, float]:
    """Rough USD cost range for a run with the given options."""
    low, high = 0.15, 0.30
    if options.web_search:
        low, high = 0.20, 0.50
    if options.deep_research:
        low, high = 0.50, 2.00
    if options.grammar:
        low += 0.02
        high += 0.05
    if options.math_web_search:
        low += 0.02
        high += 0.10
    return low, high


def format_cost_range(options: AnalysisOptions) -> str:
    low, high = estimate_cost_range(options)
    return f"${low:.2f}-{high:.2f}"
