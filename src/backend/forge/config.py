"""
Application configuration via environment variables.
"""
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "Forge"
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ]

    # Anthropic Messages API
    anthropic_api_url: str = "https://api.anthropic.com/v1/messages"
    anthropic_version: str = "2023-06-01"
    anthropic_api_key: str = ""
    proxy_url: str = ""  # Worker that injects the key server-side
    connection_mode: str = "proxied"  # "proxied" or "direct"
    # Proxy base URLs a request may name in its own connection settings
    allowed_proxy_urls: List[str] = []

    # Models
    model: str = "claude-sonnet-4-6"
    grammar_model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 16000
    subagent_max_tokens: int = 4000

    # Extended thinking (first turn of a tool loop only)
    extended_thinking: bool = False
    thinking_budget_tokens: int = 10000
    thinking_max_tokens: int = 32000

    # Transport
    request_timeout_seconds: float = 300.0
    retry_delay_seconds: float = 2.0
    max_retries: int = 1

    # Agents
    max_subagents: int = 3
    max_tool_turns: int = 10
    web_search_max_uses: int = 5
    agent_batch_size: int = 2
    agent_batch_delay_seconds: float = 15.0
    subagent_timeout_seconds: float = 60.0
    # 0 derives the limit from the request, turn and delegation limits it contains
    tool_agent_timeout_seconds: float = 0.0
    agent_timeout_seconds: float = 0.0

    # Analyses kept in memory by the REST API
    analysis_ttl_seconds: int = 3600

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "FORGE_",
    }


settings = Settings()
