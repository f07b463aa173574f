"""Health check endpoints."""
import logging

from fastapi import APIRouter

from forge.config import settings
from forge.models.schemas import ConnectionConfig

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}


@router.get("/api/health/config")
async def config_check():
    """Diagnostic endpoint: shows whether the connection is configured (no secrets)."""
    connection = ConnectionConfig.from_settings()
    return {
        "connection_mode": connection.mode.value,
        "connection_ready": connection.is_ready,
        "api_key_set": bool(settings.anthropic_api_key),
        "proxy_url_set": bool(settings.proxy_url),
        "model": settings.model,
        "grammar_model": settings.grammar_model,
        "max_tokens": settings.max_tokens,
        "extended_thinking": settings.extended_thinking,
    }
