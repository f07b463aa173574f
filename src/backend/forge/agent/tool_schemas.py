"""
Tool declarations sent with specialist and sub-agent requests.

`web_search` is executed by the API itself; `research_subagent` is a
client tool answered by SubAgentHandler.
"""
from __future__ import annotations

from typing import Any, Dict

from forge.config import settings
from forge.services.claude import WEB_SEARCH_TOOL_TYPE

SUBAGENT_TOOL_NAME = "research_subagent"


def web_search_tool(max_uses: int = 0) -> Dict[str, Any]:
    return {
        "type": WEB_SEARCH_TOOL_TYPE,
        "name": "web_search",
        "max_uses": max_uses or settings.web_search_max_uses,
    }


def subagent_tool(max_subagents: int = 0) -> Dict[str, Any]:
    limit = max_subagents or settings.max_subagents
    return {
        "name": SUBAGENT_TOOL_NAME,
        "description": (
            "Spawn a focused research sub-agent to investigate a specific claim, find "
            "evidence, or explore a question in depth. The sub-agent has web search access "
            "and will return a detailed research report. Use this for claims that require "
            "deep verification beyond a simple web search, e.g. cross-referencing multiple "
            "sources or tracing a claim back to its original study. Do NOT use for simple "
            f"factual lookups (use web_search directly for those). Limit to {limit} "
            "sub-agents per analysis."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "objective": {
                    "type": "string",
                    "description": (
                        "A detailed description of what the sub-agent should research: the "
                        "exact claim to verify, the context from the document, and what "
                        "kind of evidence to look for."
                    ),
                },
                "return_format": {
                    "type": "string",
                    "description": (
                        "What the sub-agent should return, e.g. \"A summary of the current "
                        "evidence for and against this claim, with source URLs\"."
                    ),
                },
            },
            "required": ["objective", "return_format"],
        },
    }
