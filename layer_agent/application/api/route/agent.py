from typing import Annotated, AsyncIterator
import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from layer_agent.application.api.dependencies import get_orchestrator
from layer_agent.application.api.schema.events import AgentRequest
from layer_agent.domain.orchestration.core.main_agent import AgentOrchestrator
from layer_agent.domain.streaming.abort import AbortHandle

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["agent"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _event_source(orchestrator: AgentOrchestrator, request: AgentRequest) -> AsyncIterator[str]:
    abort = AbortHandle()
    events = orchestrator.stream(
        request.prompt,
        request.conversation_history,
        abort=abort,
        mode=request.mode,
    )
    try:
        async for event in events:
            yield event.to_sse()
    finally:
        abort.abort("client disconnected")
        await events.aclose()


@router.post("/agent")
async def agent_endpoint(
    request: AgentRequest,
    orchestrator: Annotated[AgentOrchestrator, Depends(get_orchestrator)]
):
    """Run the agent loop for one prompt and stream its events"""

    if not request.prompt or not request.prompt.strip():
        return JSONResponse(status_code=400, content={"error": "Missing prompt"})

    logger.info(
        "Agent request",
        mode=request.mode.value,
        history_length=len(request.conversation_history)
    )

    return StreamingResponse(
        _event_source(orchestrator, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
