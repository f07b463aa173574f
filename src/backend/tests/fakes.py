import json
from typing import Any, Callable, Dict, List, Optional, Union

from forge.models.schemas import ConnectionConfig, ConnectionMode, MessageResponse
from forge.services.claude import ClaudeService, TransientAPIError
from forge.services.response import decode_response

Reply = Union[Dict[str, Any], Exception]
Handler = Callable[[Dict[str, Any], str], Reply]


def feedback_json(*quotes: str, severity: str = "important", category: str = "clarity") -> str:
    return json.dumps([
        {
            "quote": quote,
            "title": f"Issue with {quote[:20]}",
            "category": category,
            "severity": severity,
            "explanation": "Needs work.",
            "suggestion": "Rewrite it.",
        }
        for quote in quotes
    ])


def text_reply(text: str, stop_reason: str = "end_turn", input_tokens: int = 10, output_tokens: int = 5) -> Dict[str, Any]:
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "model": "test-model",
        "stop_reason": stop_reason,
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def delegation_reply(*objectives: str, text: str = "Let me dig deeper.") -> Dict[str, Any]:
    content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    for i, objective in enumerate(objectives):
        content.append({
            "type": "tool_use",
            "id": f"toolu_{objective[:8].replace(' ', '_')}_{i}",
            "name": "research_subagent",
            "input": {"objective": objective, "return_format": "A short summary"},
        })
    return {
        "id": "msg_tools",
        "model": "test-model",
        "stop_reason": "tool_use",
        "content": content,
        "usage": {"input_tokens": 20, "output_tokens": 8},
    }


def web_search_blocks(query: str = "test query") -> List[Dict[str, Any]]:
    return [
        {"type": "server_tool_use", "id": "srvtoolu_1", "name": "web_search", "input": {"query": query}},
        {"type": "web_search_tool_result", "tool_use_id": "srvtoolu_1", "content": []},
    ]


def network_error(message: str = "Network error: connection refused") -> TransientAPIError:
    return TransientAPIError(message)


class FakeClaudeService(ClaudeService):
    """
    ClaudeService with the HTTP layer replaced by a scripted handler.

    The handler receives (payload, step_name) and returns a response body
    dict or an exception to raise. Step names identify the caller:
    "specialist_<key>", "<key>_turn<n>", "subagent_<name>", "grammar",
    "aggregator", "critic".
    """

    def __init__(self, handler: Optional[Handler] = None):
        super().__init__(ConnectionConfig(mode=ConnectionMode.DIRECT, api_key="sk-test-key"))
        self.handler = handler or (lambda payload, step: text_reply("[]"))
        self.calls: List[Dict[str, Any]] = []

    def steps(self) -> List[str]:
        return [call["step_name"] for call in self.calls]

    async def create_message(self, payload: Dict[str, Any], step_name: str = "") -> MessageResponse:
        self.calls.append({"step_name": step_name, "payload": payload})
        reply = self.handler(payload, step_name)
        if isinstance(reply, Exception):
            raise reply
        response = decode_response(reply)
        self.usage.add_usage(response.usage, step_name=step_name, model=str(payload.get("model", "")))
        return response


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def scripted(routes: Dict[str, Union[Reply, List[Reply]]], default: Optional[Reply] = None) -> Handler:
    """
    Build a handler from {step_name_prefix: reply or [replies...]}.

    A list is consumed one reply per call; the last reply repeats.
    """
    counters: Dict[str, int] = {}

    def handler(payload: Dict[str, Any], step_name: str) -> Reply:
        for prefix, reply in routes.items():
            if step_name.startswith(prefix):
                if isinstance(reply, list):
                    index = counters.get(prefix, 0)
                    counters[prefix] = index + 1
                    return reply[min(index, len(reply) - 1)]
                return reply
        if default is not None:
            return default
        raise AssertionError(f"Unexpected call: {step_name}")

    return handler
