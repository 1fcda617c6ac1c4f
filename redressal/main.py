"""Redressal FastAPI application entry point.

Creates the FastAPI app, configures logging and CORS, includes routers,
maps engine failures to HTTP responses, and manages the lifecycle of the
grievance service and the escalation scheduler.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Final

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from redressal import __version__
from redressal.api.router import api_router
from redressal.errors import GrievanceEngineError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            settings.log_level,
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the grievance engine.

    On startup:
      1. Load the office hierarchy and escalation rules
      2. Connect the persistence backend and hydrate the store
      3. Build the notifier and, if enabled, the categorization assistant
      4. Create the grievance service and the escalation scheduler
      5. Store everything on ``app.state``

    On shutdown:
      - Stop the scheduler.
      - Close the notifier and the persistence backend.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env, persistence=settings.persistence_backend)

    app.state.start_time = time.time()

    # -- 1. Hierarchy and rules ---------------------------------------------
    from redressal.data.seed import build_directory, build_resolver

    directory = build_directory()
    resolver = build_resolver(directory)
    app.state.directory = directory
    app.state.resolver = resolver

    # -- 2. Persistence -----------------------------------------------------
    from redressal.services.store import GrievanceStore, InMemoryPersistence, PersistenceBackend, RedisPersistence

    backend: PersistenceBackend = InMemoryPersistence()
    if settings.persistence_backend == "redis":
        redis_backend = RedisPersistence(settings.redis_url)
        if await redis_backend.ping():
            backend = redis_backend
            logger.info("app.persistence_redis_connected")
        else:
            await redis_backend.close()
            logger.warning("app.persistence_redis_unavailable", fallback="in_memory")
    app.state.persistence = backend

    store = GrievanceStore(backend, timeout_seconds=settings.persistence_timeout_seconds)
    await store.hydrate()

    # -- 3. Notifier and categorizer ----------------------------------------
    from redressal.services.notifications import LogNotifier, Notifier, WebhookNotifier

    notifier: Notifier = LogNotifier()
    if settings.notification_webhook_url:
        notifier = WebhookNotifier(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
        )
        logger.info("app.notifier_webhook_configured")

    from redressal.services.categorizer import CategorySuggester, LLMCategorizer

    suggester: CategorySuggester | None = None
    if settings.llm_categorization_enabled and settings.gcp_project_id:
        from redressal.services.llm import LLMService

        try:
            llm = LLMService(
                project_id=settings.gcp_project_id,
                region=settings.vertex_ai_location,
                model_name=settings.vertex_ai_model,
            )
            suggester = LLMCategorizer(llm)
            logger.info("app.categorizer_initialised", model=settings.vertex_ai_model)
        except Exception:
            logger.warning("app.categorizer_init_failed", exc_info=True)

    # -- 4. Engine, service, scheduler --------------------------------------
    from redressal.services.deadlines import DeadlinePolicy
    from redressal.services.escalation_scheduler import EscalationScheduler
    from redressal.services.grievance_service import GrievanceService
    from redressal.services.transitions import TransitionEngine

    policy = DeadlinePolicy(
        authority_response_days=settings.authority_response_days,
        citizen_auto_close_grace_days=settings.citizen_auto_close_grace_days,
    )
    engine = TransitionEngine(directory, resolver, policy)
    service = GrievanceService(
        engine,
        store,
        directory,
        resolver,
        notifier,
        suggester=suggester,
        notification_timeout_seconds=settings.notification_timeout_seconds,
    )
    scheduler = EscalationScheduler(
        service,
        policy,
        interval_seconds=settings.sweep_interval_seconds,
        enabled=settings.enable_auto_sweep,
    )
    app.state.grievance_service = service
    app.state.escalation_scheduler = scheduler

    # Production deployments are swept by an external clock.
    sweep_task: asyncio.Task | None = None  # type: ignore[type-arg]
    if settings.enable_auto_sweep and not settings.is_production:
        sweep_task = asyncio.create_task(scheduler.start_background_scheduler())
        logger.info("app.escalation_scheduler_started", interval_s=settings.sweep_interval_seconds)

    logger.info("app.startup_complete", grievances=len(store))

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown")
    if sweep_task is not None:
        await scheduler.stop()
    await notifier.close()
    await store.close()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Redressal API",
    description=(
        "Public-grievance redressal engine: routes citizen complaints through "
        "a hierarchy of government offices and escalates them when deadlines lapse."
    ),
    version=__version__,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-API-Key"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Accept", "Authorization", "X-Admin-API-Key"],
    )


# -- Engine failures --------------------------------------------------------

ERROR_STATUS: Final[dict[str, int]] = {
    "invalid_transition": 409,
    "unauthorized": 403,
    "terminal_state": 409,
    "rule_not_found": 422,
    "no_further_escalation": 409,
    "record_not_found": 404,
    "invalid_suggestion": 422,
    "side_effect_failure": 502,
}


@app.exception_handler(GrievanceEngineError)
async def engine_error_handler(request: Request, exc: GrievanceEngineError) -> ORJSONResponse:
    status_code = ERROR_STATUS.get(exc.code, 500)
    logger.info(
        "api.engine_error",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        grievance_id=exc.grievance_id,
    )
    return ORJSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.message, "grievance_id": exc.grievance_id},
    )


# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "Redressal API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "redressal.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
    )
