"""
Research sub-agents spawned by specialists through the research_subagent tool.

Each sub-agent is an independent, single-turn request with its own system
prompt, a smaller output allowance and web search enabled. Its findings go
back to the delegating specialist as plain text.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from forge.agent import prompts
from forge.agent.tool_schemas import web_search_tool
from forge.config import settings
from forge.services.claude import ClaudeService
from forge.services.response import count_web_searches, extract_text

logger = logging.getLogger(__name__)


class SubAgentHandler:
    """Runs one delegated research objective per call."""

    def __init__(
        self,
        service: ClaudeService,
        model: Optional[str] = None,
        max_tokens: int = 0,
        timeout: Optional[float] = None,
    ):
        self.service = service
        self.model = model or settings.model
        self.max_tokens = max_tokens or settings.subagent_max_tokens
        self.timeout = settings.subagent_timeout_seconds if timeout is None else timeout

    async def run(self, objective: str, return_format: str, parent_name: str) -> str:
        """
        Research `objective` and return the findings verbatim.

        Raises whatever the transport raises, or asyncio.TimeoutError; the
        tool loop turns either into an error-flagged tool result.
        """
        system_prompt = prompts.SUBAGENT_SYSTEM_TEMPLATE.format(
            parent_name=parent_name,
            objective=objective,
            return_format=return_format,
        )
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompts.SUBAGENT_USER_MESSAGE}],
            "tools": [web_search_tool()],
        }

        usage = self.service.usage
        usage.add_subagent()
        logger.info(f"  [{parent_name}] sub-agent started: {objective[:80]}")

        response = await asyncio.wait_for(
            self.service.create_message(payload, step_name=f"subagent_{parent_name}"),
            timeout=self.timeout,
        )
        usage.add_web_searches(count_web_searches(response))

        text = extract_text(response)
        logger.info(f"  [{parent_name}] sub-agent finished ({len(text)} chars)")
        return text
