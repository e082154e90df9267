"""FastAPI entrypoint."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fednode.config import get_settings, validate_settings_for_env
from fednode.db.migrations.runner import run_migrations
from fednode.errors import (
    AuthorizationError,
    ConfigurationError,
    DeliveryError,
    FedNodeError,
    MappingError,
    NotFoundError,
    SchemaValidationError,
    ShapeValidationError,
    TokenError,
    TripleStoreError,
    ValidationError,
)
from fednode.logging import configure_logging
from fednode.routes.api import router as api_router
from fednode.routes.health import router as health_router
from fednode.tasks import get_periodic_scheduler, get_task_runner

logger = logging.getLogger(__name__)

# Most specific first; the first matching class decides the status code.
_ERROR_STATUS: list[tuple[type[FedNodeError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (DeliveryError, 502),
    (TripleStoreError, 503),
    (TokenError, 502),
    (ConfigurationError, 409),
    (MappingError, 500),
]


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level, node_identity=settings.node_identity)
    applied = run_migrations()
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))
    task_runner = get_task_runner()
    periodic = get_periodic_scheduler()
    periodic_task = asyncio.create_task(periodic.run())
    logger.info("Node %s started", settings.node_identity)
    yield
    await periodic.shutdown()
    await periodic_task
    await task_runner.shutdown(timeout_s=float(settings.task_runner_shutdown_timeout_seconds))


app = FastAPI(title="Federated Event Node", version="0.1.0", lifespan=lifespan)


def error_status(exc: FedNodeError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(FedNodeError)
async def _fednode_error_handler(request: Request, exc: FedNodeError) -> JSONResponse:
    status_code = error_status(exc)
    content: dict[str, object] = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, SchemaValidationError):
        content["violations"] = exc.violations
    if isinstance(exc, ShapeValidationError):
        content["report"] = exc.report
    if isinstance(exc, DeliveryError) and exc.message_id:
        content["messageId"] = exc.message_id
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=content)


app.include_router(health_router)
app.include_router(api_router)
