from contextlib import asynccontextmanager
from typing import Annotated, Optional
from datetime import datetime
import structlog
import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from layer_agent.application.api.dependencies import get_orchestrator
from layer_agent.application.api.route.agent import router as agent_router
from layer_agent.domain.orchestration.core.main_agent import AgentOrchestrator
from layer_agent.infrastructure.config.settings import Settings, get_settings
from layer_agent.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[AgentOrchestrator] = None
) -> FastAPI:
    """Build the local agent service"""

    settings = settings or get_settings()
    orchestrator = orchestrator or AgentOrchestrator(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format)
        logger.info("Agent server started", model=settings.anthropic_model, ready=orchestrator.is_ready())
        if not orchestrator.is_ready():
            logger.warning("ANTHROPIC_API_KEY not set; agent requests will fail")

        yield

        await orchestrator.aclose()
        logger.info("Agent server shutdown")

    app = FastAPI(title="Layer Agent Server", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(agent_router)

    @app.get("/api/health")
    async def health_check(orchestrator: Annotated[AgentOrchestrator, Depends(get_orchestrator)]):
        """Health check endpoint"""
        return {
            "status": "ok",
            "timestamp": datetime.utcnow().isoformat(),
            "ready": orchestrator.is_ready(),
            "metrics": metrics.get_metrics_summary()
        }

    return app


def main():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
