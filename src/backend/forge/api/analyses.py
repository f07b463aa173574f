"""
REST API for analysis submission and result retrieval.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Dict, List, Optional, Set

from fastapi import APIRouter, HTTPException

from forge.agent.orchestrator import AnalysisOrchestrator
from forge.config import settings
from forge.models.schemas import (
    AnalysisRequest,
    AnalysisResponse,
    AnalysisState,
    ConnectionConfig,
    ConnectionMode,
)

logger = logging.getLogger(__name__)
router = APIRouter()

# In-memory store for active/completed analyses, evicted after a TTL
_analyses: Dict[str, AnalysisOrchestrator] = {}
_analysis_timestamps: Dict[str, float] = {}
_background_tasks: Set[asyncio.Task] = set()


def _evict_expired_analyses() -> None:
    cutoff = time.time() - settings.analysis_ttl_seconds
    for analysis_id in [k for k, ts in _analysis_timestamps.items() if ts < cutoff]:
        _analyses.pop(analysis_id, None)
        _analysis_timestamps.pop(analysis_id, None)
        logger.info(f"Evicted analysis {analysis_id}")


def proxy_allowed(proxy_url: Optional[str]) -> bool:
    """Only the configured proxy and the allow-listed ones may receive documents."""
    allowed = {url.rstrip("/") for url in settings.allowed_proxy_urls if url}
    if settings.proxy_url:
        allowed.add(settings.proxy_url.rstrip("/"))
    return (proxy_url or "").rstrip("/") in allowed


def resolve_connection(request: AnalysisRequest) -> ConnectionConfig:
    """The request's connection, else the server's; 400 if it is unusable or not allowed."""
    connection = request.connection or ConnectionConfig.from_settings()
    if not connection.is_ready:
        raise HTTPException(
            status_code=400,
            detail=(
                "Connection is not configured: set an API key for direct mode "
                "or a proxy URL for proxied mode."
            ),
        )
    if (
        request.connection is not None
        and connection.mode == ConnectionMode.PROXIED
        and not proxy_allowed(connection.proxy_url)
    ):
        logger.warning(f"Rejected request for unlisted proxy {connection.proxy_url!r}")
        raise HTTPException(status_code=400, detail="Proxy URL is not allowed on this server.")
    return connection


@router.post("/submit", response_model=AnalysisResponse)
async def submit_analysis(request: AnalysisRequest):
    """
    Submit a document for analysis.

    The pipeline runs in the background. Use the WebSocket endpoint or poll
    /api/analyses/{analysis_id} for progress and results.
    """
    connection = resolve_connection(request)
    orchestrator = AnalysisOrchestrator(connection, model=request.model)
    analysis_id = str(uuid.uuid4())[:8]

    async def _run_pipeline():
        try:
            await orchestrator.run(request.text, request.options, analysis_id=analysis_id)
        except Exception as e:
            # Failure is recorded on orchestrator.state
            logger.debug(f"Background analysis {analysis_id} ended with {type(e).__name__}")

    task = asyncio.create_task(_run_pipeline())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    _analyses[analysis_id] = orchestrator
    _analysis_timestamps[analysis_id] = time.time()
    _evict_expired_analyses()

    return AnalysisResponse(
        analysis_id=analysis_id,
        status="running",
        message="Analysis started. Connect to the WebSocket or poll for updates.",
    )


@router.get("/{analysis_id}", response_model=AnalysisState)
async def get_analysis(analysis_id: str):
    """Get the current state and, once finished, the result of an analysis."""
    _evict_expired_analyses()
    orchestrator = _analyses.get(analysis_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"Analysis {analysis_id} not found")
    # The run has not reached its first await yet
    if orchestrator.state is None:
        return AnalysisState(analysis_id=analysis_id)
    return orchestrator.state


@router.get("/", response_model=List[str])
async def list_analyses():
    """List all analysis IDs."""
    _evict_expired_analyses()
    return list(_analyses.keys())
