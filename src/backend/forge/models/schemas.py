"""
Domain models for the Forge analysis backend.

These Pydantic models define the structured data flowing through the
multi-phase pipeline: connection settings, analysis options, feedback
items, status events, per-specialist results and the decoded shape of
Messages API responses.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from forge.config import settings


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class ConnectionMode(str, Enum):
    DIRECT = "direct"
    PROXIED = "proxied"


class Severity(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    SUGGESTION = "suggestion"


class Category(str, Enum):
    ARGUMENT_LOGIC = "argument_logic"
    EVIDENCE = "evidence"
    CLARITY = "clarity"
    MATH_EMPIRICAL = "math_empirical"
    STRUCTURE = "structure"
    COUNTERARGUMENT = "counterargument"
    GRAMMAR = "grammar"


class AgentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class ResultStatus(str, Enum):
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class Phase(str, Enum):
    PHASE1 = "phase1"
    PHASE2 = "phase2"
    PHASE3 = "phase3"


SEVERITY_ORDER = {
    Severity.CRITICAL.value: 0,
    Severity.IMPORTANT.value: 1,
    Severity.SUGGESTION.value: 2,
}


# ──────────────────────────────────────────────
# Connection
# ──────────────────────────────────────────────

PLACEHOLDER_API_KEY = "REPLACE_WITH_YOUR_KEY"


class ConnectionConfig(BaseModel):
    """How to reach the Messages API: with a local key, or through a proxy."""
    model_config = ConfigDict(frozen=True)

    mode: ConnectionMode = ConnectionMode.PROXIED
    api_key: Optional[str] = Field(None, description="Credential (direct mode only)")
    proxy_url: Optional[str] = Field(None, description="Proxy base URL (proxied mode only)")

    @field_validator("api_key", "proxy_url", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @property
    def is_ready(self) -> bool:
        if self.mode == ConnectionMode.PROXIED:
            return bool(self.proxy_url)
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY

    def endpoint(self, direct_url: str) -> str:
        if self.mode == ConnectionMode.PROXIED:
            return (self.proxy_url or "").rstrip("/") + "/v1/messages"
        return direct_url

    @classmethod
    def from_settings(cls) -> "ConnectionConfig":
        return cls(
            mode=ConnectionMode(settings.connection_mode),
            api_key=settings.anthropic_api_key or None,
            proxy_url=settings.proxy_url or None,
        )


# ──────────────────────────────────────────────
# Analysis options
# ──────────────────────────────────────────────

class AnalysisOptions(BaseModel):
    web_search: bool = Field(True, description="Let search-capable specialists use web search")
    deep_research: bool = Field(False, description="Let specialists spawn research sub-agents")
    grammar: bool = Field(False, description="Run the grammar & mechanics pass after phase 1")
    math_web_search: bool = Field(False, description="Force web search on for the math specialist")


# ──────────────────────────────────────────────
# Feedback
# ──────────────────────────────────────────────

class Source(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
    title: Optional[str] = None
    finding: Optional[str] = None

    @field_validator("url", "title", "finding", mode="before")
    @classmethod
    def _scalar_text(cls, v):
        if isinstance(v, (int, float, bool)):
            return str(v)
        return v if isinstance(v, str) else None


class FeedbackItem(BaseModel):
    """A single comment anchored to a quoted passage of the document."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    quote: str = ""
    title: str = ""
    category: str = ""
    severity: str = ""
    explanation: str = ""
    suggestion: str = ""
    sources: List[Source] = Field(default_factory=list)
    agents: List[str] = Field(default_factory=list, description="Specialists that raised it")

    @field_validator("category", "severity", mode="before")
    @classmethod
    def _normalise_tag(cls, v):
        if v is None:
            return ""
        if isinstance(v, (int, float, bool)):
            v = str(v)
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        if isinstance(v, str):
            return int(v) if v.strip().isdigit() else None
        if isinstance(v, float) and v.is_integer():
            return int(v)
        if isinstance(v, bool) or not isinstance(v, int):
            return None
        return v

    @field_validator("quote", "title", "explanation", "suggestion", mode="before")
    @classmethod
    def _null_text(cls, v):
        if v is None:
            return ""
        return str(v) if isinstance(v, (int, float, bool)) else v

    @field_validator("sources", mode="before")
    @classmethod
    def _only_source_objects(cls, v):
        if not isinstance(v, list):
            return []
        return [s for s in v if isinstance(s, (dict, Source))]

    @field_validator("agents", mode="before")
    @classmethod
    def _null_list(cls, v):
        return [] if v is None else v


# ──────────────────────────────────────────────
# Status events and per-specialist results
# ──────────────────────────────────────────────

class EventDetail(BaseModel):
    elapsed: Optional[int] = Field(None, description="Seconds since the specialist started")
    items: int = 0
    error: Optional[str] = None
    tools: Optional[List[str]] = None
    subagent: Optional[str] = Field(None, description="Objective of the running sub-agent (truncated)")
    subagent_count: int = 0
    subagent_done: bool = False


class RunEvent(BaseModel):
    """Status update for one specialist, emitted to the caller's callback."""
    agent_key: str
    status: AgentStatus
    detail: EventDetail = Field(default_factory=EventDetail)


class AgentState(EventDetail):
    """Latest known status of one specialist, as shown to clients."""
    status: AgentStatus = AgentStatus.PENDING


class SpecialistResult(BaseModel):
    key: str
    name: str
    status: ResultStatus
    feedback: List[FeedbackItem] = Field(default_factory=list)
    error: Optional[str] = None
    is_grammar: bool = False


# ──────────────────────────────────────────────
# Usage
# ──────────────────────────────────────────────

class Usage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    input_tokens: int = 0
    output_tokens: int = 0

    @field_validator("input_tokens", "output_tokens", mode="before")
    @classmethod
    def _null_zero(cls, v):
        return 0 if v is None else v


class CallUsage(BaseModel):
    """One Messages API call of a run."""
    step_name: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


class UsageSnapshot(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    web_searches: int = 0
    subagents: int = 0
    calls: List[CallUsage] = Field(default_factory=list, description="Per-call ledger, in completion order")


class CompletionResult(BaseModel):
    text: str
    usage: Usage = Field(default_factory=Usage)


# ──────────────────────────────────────────────
# Messages API content blocks
# ──────────────────────────────────────────────

class TextBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    """A client-side tool invocation the caller must answer."""
    model_config = ConfigDict(extra="allow")

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ServerToolUseBlock(BaseModel):
    """A tool invocation executed by the service itself (web search)."""
    model_config = ConfigDict(extra="allow")

    type: Literal["server_tool_use"] = "server_tool_use"
    id: str = ""
    name: str = ""
    input: Dict[str, Any] = Field(default_factory=dict)


class OtherBlock(BaseModel):
    """Thinking traces, search results and anything else we do not interpret."""
    model_config = ConfigDict(extra="allow")

    type: str


ContentBlock = Union[TextBlock, ToolUseBlock, ServerToolUseBlock, OtherBlock]


class MessageResponse(BaseModel):
    """Decoded Messages API response. `raw_content` is echoed back verbatim
    as the assistant turn of a tool-use conversation."""
    id: Optional[str] = None
    model: Optional[str] = None
    stop_reason: Optional[str] = None
    content: List[ContentBlock] = Field(default_factory=list)
    raw_content: List[Dict[str, Any]] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class AnalysisRequest(BaseModel):
    """API request to analyze a document."""
    text: str = Field(..., description="The document to analyze", min_length=50)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    connection: Optional[ConnectionConfig] = Field(
        None, description="Overrides the server's configured connection"
    )
    model: Optional[str] = Field(None, description="Overrides the configured specialist model")


class AnalysisResult(BaseModel):
    """Final output of a run, handed to the presentation layer."""
    feedback: List[FeedbackItem] = Field(default_factory=list)
    grammar_count: int = 0
    positions: Dict[int, int] = Field(default_factory=dict, description="id -> char offset")
    agents: List[SpecialistResult] = Field(default_factory=list)
    usage: UsageSnapshot = Field(default_factory=UsageSnapshot)
    total_time_seconds: int = 0
    cost_estimate: str = ""


class AnalysisState(BaseModel):
    """Full state of one analysis run."""
    analysis_id: str
    status: Literal["running", "complete", "failed"] = "running"
    phase: Optional[Phase] = None
    agent_states: Dict[str, AgentState] = Field(default_factory=dict)
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AnalysisResponse(BaseModel):
    """API response for a submitted analysis."""
    analysis_id: str
    status: str
    message: str
