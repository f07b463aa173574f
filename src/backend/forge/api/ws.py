"""
WebSocket endpoint for real-time analysis streaming.

The frontend connects here to watch a run as it happens:
  - Specialist status changes (pending, running, tool/sub-agent activity, done)
  - Phase changes (phase1 → phase2 → phase3)
  - Final feedback, anchors and usage
"""
from __future__ import annotations

import asyncio
import uuid
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from forge.agent.orchestrator import AnalysisOrchestrator
from forge.api.analyses import resolve_connection
from forge.models.schemas import AnalysisRequest, Phase, RunEvent
from forge.services.claude import describe_error

logger = logging.getLogger(__name__)
router = APIRouter()


def event_message(event: RunEvent) -> Dict[str, Any]:
    return {
        "type": "agent_status",
        "agent": event.agent_key,
        "status": event.status.value,
        "detail": event.detail.model_dump(mode="json", exclude_none=True),
    }


@router.websocket("/analyze")
async def analyze_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for real-time analysis.

    Protocol:
      Client sends: JSON with the document and options (AnalysisRequest format)
      Server sends: JSON messages for each status update and the final result

    Message types:
      - {"type": "ack", "analysis_id": "...", "message": "..."}
      - {"type": "agent_status", "agent": "...", "status": "...", "detail": {...}}
      - {"type": "phase", "phase": "phase1" | "phase2" | "phase3"}
      - {"type": "result", "result": {...}}
      - {"type": "complete", "analysis_id": "..."}
      - {"type": "error", "message": "..."}
    """
    await websocket.accept()
    run_task: Optional[asyncio.Task] = None

    try:
        raw = await websocket.receive_text()
        request = AnalysisRequest.model_validate(json.loads(raw))
        connection = resolve_connection(request)

        orchestrator = AnalysisOrchestrator(connection, model=request.model)
        analysis_id = str(uuid.uuid4())[:8]
        queue: asyncio.Queue = asyncio.Queue()

        def on_event(event: RunEvent) -> None:
            queue.put_nowait(event_message(event))

        def on_phase(phase: Phase) -> None:
            queue.put_nowait({"type": "phase", "phase": phase.value})

        run_task = asyncio.create_task(
            orchestrator.run(
                request.text,
                request.options,
                on_event=on_event,
                on_phase=on_phase,
                analysis_id=analysis_id,
            )
        )
        # Sentinel: the run is over, stop draining
        run_task.add_done_callback(lambda _: queue.put_nowait(None))

        await websocket.send_json({
            "type": "ack",
            "analysis_id": analysis_id,
            "message": "Document received. Starting analysis...",
        })

        while True:
            message = await queue.get()
            if message is None:
                break
            await websocket.send_json(message)

        result = run_task.result()
        await websocket.send_json({
            "type": "result",
            "result": result.model_dump(mode="json"),
        })
        await websocket.send_json({
            "type": "complete",
            "analysis_id": analysis_id,
        })

    except WebSocketDisconnect:
        logger.info("Client disconnected")
    except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "message": "Invalid JSON received"})
    except ValidationError as e:
        await websocket.send_json({"type": "error", "message": f"Invalid request: {e.errors()[0]['msg']}"})
    except HTTPException as e:
        await websocket.send_json({"type": "error", "message": e.detail})
    except Exception as e:
        try:
            await websocket.send_json({"type": "error", "message": describe_error(e)})
        except Exception:
            logger.debug("Could not deliver error to client")
    finally:
        if run_task is not None and not run_task.done():
            run_task.cancel()
        try:
            await websocket.close()
        except Exception:
            pass
