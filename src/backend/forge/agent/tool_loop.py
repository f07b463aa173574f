"""
Tool-use loop — drives one specialist's conversation across turns.

    awaiting-model ──(no tool requests / end_turn)──────────────► done
          │
          └──(tool requests)──► processing-tool-calls ──(results)──► awaiting-model
                                        │
                                        └──(no results)──────────────► done

Web searches are executed by the API and only counted here. Research
sub-agent requests are answered by SubAgentHandler until the specialist's
delegation cap is reached; after that every request gets a synthetic
refusal. `max_turns` bounds the loop even if the model never stops asking.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from forge.agent.specialists import SpecialistTask
from forge.agent.subagent import SubAgentHandler
from forge.agent.tool_schemas import SUBAGENT_TOOL_NAME
from forge.config import settings
from forge.models.schemas import MessageResponse, ToolUseBlock
from forge.services.claude import ClaudeService, describe_error
from forge.services.response import count_web_searches, extract_text, tool_uses

logger = logging.getLogger(__name__)

END_TURN = "end_turn"
PROCEED_INSTRUCTION = "Please complete your analysis with the information already gathered."


@dataclass(frozen=True)
class DelegationEvent:
    kind: str  # "started" | "finished"
    count: int
    objective: str = ""


DelegationCallback = Callable[[DelegationEvent], None]


def _tool_result(tool_use_id: str, content: str, is_error: bool = False) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
    }
    if is_error:
        result["is_error"] = True
    return result


class ToolUseLoop:
    """
    Runs a specialist with tools until it produces its final answer.

    Usage:
        loop = ToolUseLoop(service, SubAgentHandler(service))
        text = await loop.run(task, "Here is the text to analyze: ...")
    """

    def __init__(
        self,
        service: ClaudeService,
        subagents: SubAgentHandler,
        model: Optional[str] = None,
        max_tokens: int = 0,
        max_subagents: Optional[int] = None,
        max_turns: int = 0,
        extended_thinking: Optional[bool] = None,
        thinking_budget_tokens: int = 0,
        thinking_max_tokens: int = 0,
    ):
        self.service = service
        self.subagents = subagents
        self.model = model or settings.model
        self.max_tokens = max_tokens or settings.max_tokens
        self.max_subagents = settings.max_subagents if max_subagents is None else max_subagents
        self.max_turns = max_turns or settings.max_tool_turns
        self.extended_thinking = (
            settings.extended_thinking if extended_thinking is None else extended_thinking
        )
        self.thinking_budget_tokens = thinking_budget_tokens or settings.thinking_budget_tokens
        self.thinking_max_tokens = thinking_max_tokens or settings.thinking_max_tokens

    def _payload(self, task: SpecialistTask, messages: List[Dict[str, Any]], turn: int) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": task.system_prompt,
            "messages": list(messages),
            "tools": task.tools,
        }
        if self.extended_thinking and turn == 0:
            payload["max_tokens"] = self.thinking_max_tokens
            payload["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget_tokens}
        return payload

    async def run(
        self,
        task: SpecialistTask,
        user_message: str,
        on_delegation: Optional[DelegationCallback] = None,
    ) -> str:
        """Return the specialist's final narrative text."""
        messages: List[Dict[str, Any]] = [{"role": "user", "content": user_message}]
        delegations = 0
        response: Optional[MessageResponse] = None

        for turn in range(self.max_turns):
            response = await self.service.create_message(
                self._payload(task, messages, turn),
                step_name=f"{task.key}_turn{turn + 1}",
            )
            self.service.usage.add_web_searches(count_web_searches(response))

            requests = tool_uses(response)
            if not requests or response.stop_reason == END_TURN:
                return extract_text(response)

            results: List[Dict[str, Any]] = []
            for request in requests:
                if request.name != SUBAGENT_TOOL_NAME:
                    logger.debug(f"[{task.name}] ignoring unknown tool request {request.name!r}")
                    continue
                if delegations < self.max_subagents:
                    delegations += 1
                    results.append(await self._delegate(task, request, delegations, on_delegation))
                else:
                    logger.info(f"[{task.name}] sub-agent limit reached ({self.max_subagents})")
                    results.append(_tool_result(
                        request.id,
                        f"Sub-agent limit reached (max {self.max_subagents}). {PROCEED_INSTRUCTION}",
                        is_error=True,
                    ))

            if not results:
                return extract_text(response)

            messages = messages + [
                {"role": "assistant", "content": response.raw_content},
                {"role": "user", "content": results},
            ]

        logger.warning(
            f"[{task.name}] tool loop stopped after {self.max_turns} turns without a final answer"
        )
        return extract_text(response) if response is not None else ""

    async def _delegate(
        self,
        task: SpecialistTask,
        request: ToolUseBlock,
        count: int,
        on_delegation: Optional[DelegationCallback],
    ) -> Dict[str, Any]:
        objective = str(request.input.get("objective", ""))
        return_format = str(request.input.get("return_format", ""))

        if on_delegation:
            on_delegation(DelegationEvent(kind="started", count=count, objective=objective))
        try:
            findings = await self.subagents.run(objective, return_format, task.name)
            result = _tool_result(request.id, findings)
        except Exception as e:
            logger.warning(f"[{task.name}] sub-agent {count} failed: {e!r}")
            result = _tool_result(
                request.id,
                f"Sub-agent failed: {describe_error(e)}. {PROCEED_INSTRUCTION}",
                is_error=True,
            )
        finally:
            if on_delegation:
                on_delegation(DelegationEvent(kind="finished", count=count))
        return result
