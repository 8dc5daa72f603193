"""FastAPI application hosting the agent socket, health and metrics."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from loguru import logger

from ..analytics.metrics import MetricsTracker
from ..config.settings import AgentSettings, load_settings
from ..oracle.intent_oracle import IntentOracle
from ..session.orchestrator import SessionOrchestrator
from ..workflows.registry import WorkflowRegistry
from .routes import router as agent_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Disconnect every open session (closing its browser) on shutdown."""
    logger.info(f"E-ID agent ready for {app.state.settings.portal_url}")
    try:
        yield
    finally:
        await app.state.orchestrator.shutdown()
        logger.info("E-ID agent stopped")


def create_app(
    settings: Optional[AgentSettings] = None,
    oracle: Optional[IntentOracle] = None,
    registry: Optional[WorkflowRegistry] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Collaborators default to ones built from settings; tests inject fakes.
    """
    settings = settings or load_settings()
    oracle = oracle or IntentOracle(api_key=settings.gemini_api_key, model=settings.gemini_model)
    registry = registry or WorkflowRegistry(settings)

    app = FastAPI(title="E-ID Agent", lifespan=lifespan)
    app.state.settings = settings
    app.state.oracle = oracle
    app.state.orchestrator = SessionOrchestrator(oracle, registry, settings, MetricsTracker())

    @app.get("/health")
    async def health(request: Request):
        orchestrator = request.app.state.orchestrator
        return {
            "ok": True,
            "sessions": len(orchestrator.sessions),
            "oracle_available": request.app.state.oracle.available,
        }

    @app.get("/metrics")
    async def metrics(request: Request):
        orchestrator = request.app.state.orchestrator
        summary = orchestrator.metrics.get_summary()
        summary["active_sessions"] = orchestrator.describe_sessions()
        return summary

    app.include_router(agent_router)
    return app
