"""
Specialist library and per-run task construction.

Each specialist receives the same document but a different system prompt
that focuses it on one analytical lens. Whether a specialist may search the
web or delegate to research sub-agents is decided once, here, from its own
defaults combined with the run's AnalysisOptions.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from forge.agent import prompts
from forge.agent.tool_schemas import subagent_tool, web_search_tool
from forge.models.schemas import AnalysisOptions, Category


@dataclass(frozen=True)
class SpecialistDef:
    """Definition of one analysis specialist."""
    key: str
    name: str
    category: Category
    prompt: str
    web_search: bool = False
    subagents: bool = False
    search_override: Optional[str] = None
    """
    Name of an AnalysisOptions flag that turns web search on for this
    specialist even when the global web_search option is off.
    """


@dataclass(frozen=True)
class SpecialistTask:
    """One specialist's configuration for a single run. Never mutated."""
    spec: SpecialistDef
    system_prompt: str
    uses_search: bool
    uses_delegation: bool

    @property
    def key(self) -> str:
        return self.spec.key

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def tools(self) -> List[Dict[str, Any]]:
        tools = []
        if self.uses_search:
            tools.append(web_search_tool())
        if self.uses_delegation:
            tools.append(subagent_tool())
        return tools

    @property
    def tool_labels(self) -> List[str]:
        labels = []
        if self.uses_search:
            labels.append("web search")
        if self.uses_delegation:
            labels.append("sub-agents")
        return labels


# ──────────────────────────────────────────────
# Specialist library
# ──────────────────────────────────────────────

SPECIALIST_ARGUMENT = SpecialistDef(
    key="argument",
    name="Argument Structure",
    category=Category.ARGUMENT_LOGIC,
    prompt=prompts.ARGUMENT_PROMPT,
)

SPECIALIST_EVIDENCE = SpecialistDef(
    key="evidence",
    name="Evidence & Claims",
    category=Category.EVIDENCE,
    prompt=prompts.EVIDENCE_PROMPT,
    web_search=True,
    subagents=True,
)

SPECIALIST_CLARITY = SpecialistDef(
    key="clarity",
    name="Clarity & Exposition",
    category=Category.CLARITY,
    prompt=prompts.CLARITY_PROMPT,
)

SPECIALIST_MATH = SpecialistDef(
    key="math",
    name="Math & Empirical",
    category=Category.MATH_EMPIRICAL,
    prompt=prompts.MATH_PROMPT,
    search_override="math_web_search",
)

SPECIALIST_STRUCTURE = SpecialistDef(
    key="structure",
    name="Structural Coherence",
    category=Category.STRUCTURE,
    prompt=prompts.STRUCTURE_PROMPT,
)

SPECIALIST_STEELMAN = SpecialistDef(
    key="steelman",
    name="Steelman & Counter",
    category=Category.COUNTERARGUMENT,
    prompt=prompts.STEELMAN_PROMPT,
    web_search=True,
    subagents=True,
)

SPECIALISTS: List[SpecialistDef] = [
    SPECIALIST_ARGUMENT,
    SPECIALIST_EVIDENCE,
    SPECIALIST_CLARITY,
    SPECIALIST_MATH,
    SPECIALIST_STRUCTURE,
    SPECIALIST_STEELMAN,
]

# Mechanical-correctness pass: runs after phase 1 and skips phases 2-3.
GRAMMAR_SPECIALIST = SpecialistDef(
    key="grammar",
    name="Grammar & Mechanics",
    category=Category.GRAMMAR,
    prompt=prompts.GRAMMAR_PROMPT,
)


def build_task(spec: SpecialistDef, options: AnalysisOptions) -> SpecialistTask:
    """Fix a specialist's capabilities for this run."""
    uses_search = options.web_search and spec.web_search
    if spec.search_override and getattr(options, spec.search_override, False):
        uses_search = True
    uses_delegation = options.deep_research and spec.subagents

    system_prompt = prompts.SHARED_PREAMBLE + "\n\n" + spec.prompt
    if uses_search:
        system_prompt += prompts.WEB_SEARCH_PREAMBLE

    return SpecialistTask(
        spec=spec,
        system_prompt=system_prompt,
        uses_search=uses_search,
        uses_delegation=uses_delegation,
    )
