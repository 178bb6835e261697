import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .core.config import Settings, settings as default_settings
from .llm_providers import list_available_providers, validate_provider_config, get_provider_config
from .middleware.correlation import CorrelationIDMiddleware, CorrelationIdFilter
from .middleware.error_handler import (
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .middleware.metrics import MetricsMiddleware, get_metrics
from .routers import workflows
from .routers.workflows import WorkflowRegistry
from .workflows.orchestrator import Orchestrator, build_orchestrator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Configure root logging once; every record carries the request's correlation id."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    else:
        root.setLevel(level.upper())
    for handler in root.handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())


def create_app(
    cfg: Optional[Settings] = None,
    orchestrator: Optional[Orchestrator] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        cfg: Settings (defaults to the process settings)
        orchestrator: Pre-built orchestrator (built from cfg if omitted)

    Returns:
        FastAPI app with the orchestrator and workflow registry on app.state
    """
    cfg = cfg or default_settings
    configure_logging(cfg.LOG_LEVEL)
    cfg.validate_production_config()

    app = FastAPI(
        title="Agent Office API",
        description="Multi-agent workflows: news digests, repository changes and general tasks",
        version=__version__,
    )

    orchestrator = orchestrator or build_orchestrator(cfg)
    app.state.settings = cfg
    app.state.orchestrator = orchestrator
    app.state.registry = WorkflowRegistry(orchestrator.bus)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Last added runs first
    app.middleware("http")(MetricsMiddleware())
    app.add_middleware(CorrelationIDMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(workflows.router)

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"Starting Agent Office API {__version__} ({cfg.APP_ENV})")
        validation = validate_provider_config(cfg.COMPLETION_PROVIDER, cfg)
        if not validation["valid"]:
            logger.warning(f"Completion provider not configured, missing {validation['missing']}")
        if not cfg.GITHUB_TOKEN:
            logger.info("GITHUB_TOKEN not set: repository workflows run in suggest-only mode unless a token is supplied")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down Agent Office API...")
        await app.state.orchestrator.aclose()

    @app.get("/health", response_class=ORJSONResponse)
    async def health(request: Request):
        """Health check endpoint."""
        orch: Orchestrator = request.app.state.orchestrator
        return {
            "status": "ok",
            "env": cfg.APP_ENV,
            "version": __version__,
            "features": {
                "completion": orch.executor.invoker.ready,
                "github": bool(cfg.GITHUB_TOKEN),
                "live_headlines": orch.headlines is not None,
            },
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return get_metrics()

    @app.get("/admin/providers", response_class=ORJSONResponse)
    async def get_providers():
        """Get status of the configured completion providers."""
        current = cfg.COMPLETION_PROVIDER
        current_validation = validate_provider_config(current, cfg)
        return {
            "current_provider": current,
            "current_model": get_provider_config(cfg=cfg).model_name,
            "current_valid": current_validation["valid"],
            "current_missing": current_validation["missing"],
            "providers": list_available_providers(cfg),
        }

    @app.get("/admin/connections", response_class=ORJSONResponse)
    async def test_connections(request: Request):
        """Probe the completion endpoint and GitHub with the configured credentials."""
        orch: Orchestrator = request.app.state.orchestrator
        result = {
            "completion": {"success": False, "message": "Completion endpoint not configured"},
            "github": {"success": False, "message": "GITHUB_TOKEN not set"},
        }
        if orch.completion_client is not None:
            result["completion"] = await orch.completion_client.test_connection()
        if cfg.GITHUB_TOKEN:
            github = orch.repository.github_factory(cfg.GITHUB_TOKEN)
            try:
                result["github"] = await github.test_connection()
            finally:
                await github.aclose()
        return result

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn on HOST:PORT."""
    logger.info(f"Starting Agent Office API on {default_settings.HOST}:{default_settings.PORT}")
    uvicorn.run(
        "agent_office.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        log_level=default_settings.LOG_LEVEL.lower(),
    )
