"""
Forge — FastAPI Backend
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from forge import __version__
from forge.api import analyses, health, ws
from forge.config import settings
from forge.models.schemas import ConnectionConfig

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Forge",
    description="Multi-agent writing analysis: specialist fan-out, merge and critique",
    version=__version__,
    debug=settings.debug,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router, tags=["health"])
app.include_router(analyses.router, prefix="/api/analyses", tags=["analyses"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


@app.on_event("startup")
async def startup():
    """Log configuration (secrets masked) and warn about unusable connections."""
    logger.info("=== Forge Backend Starting ===")
    logger.info(f"  connection_mode   : {settings.connection_mode}")
    logger.info(f"  anthropic_api_url : {settings.anthropic_api_url}")
    logger.info(f"  anthropic_api_key : {_mask(settings.anthropic_api_key)}")
    logger.info(f"  proxy_url         : {settings.proxy_url or '(empty)'}")
    logger.info(f"  model             : {settings.model}")
    logger.info(f"  grammar_model     : {settings.grammar_model}")
    logger.info(f"  batch             : {settings.agent_batch_size} every {settings.agent_batch_delay_seconds:.0f}s")
    logger.info(f"  cors_origins      : {settings.cors_origins}")

    if not ConnectionConfig.from_settings().is_ready:
        logger.warning(
            "Default connection is not ready -- requests must supply their own connection settings!"
        )
