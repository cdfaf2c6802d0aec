import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from user_service.version import __version__
from user_service.api import health, metrics, user
from user_service.core.config import Settings, settings
from user_service.core.database import create_all_tables
from user_service.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from user_service.core.logging import configure_logging
from user_service.core.middleware.metrics import MetricsMiddleware
from user_service.core.middleware.request_id import RequestIdMiddleware
from user_service.core.validation import validate_env
from user_service.features.user_entities.postgres import PostgresStorer
from user_service.features.user_entities.service import UserEntityService
from user_service.features.user_entities.storer import Storer, get_storer

logger = logging.getLogger("user_service")


def create_app(settings_obj: Optional[Settings] = None, storer: Optional[Storer] = None) -> FastAPI:
    """
    Build the FastAPI app and its storer.

    Configuration errors (unsupported storage type, missing DB URL or project
    ID) raise here, before any request can be served.
    """
    cfg = settings_obj or settings
    configure_logging(cfg.ENV, cfg.LOG_LEVEL)
    validate_env(settings_obj=cfg)

    if storer is None:
        storer = get_storer(cfg)
        logger.info("created storer", extra=storer.params.log_fields())
        if isinstance(storer, PostgresStorer):
            create_all_tables(storer.engine)

    service = UserEntityService(
        storer,
        max_user_entities=cfg.MAX_USER_ENTITIES,
        max_entity_users=cfg.MAX_ENTITY_USERS,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting user service (storage={storer.params.type.value})...")
        try:
            yield
        finally:
            storer.close()
            logger.info("Stopping user service...")

    app = FastAPI(title="User Service", version=__version__, lifespan=lifespan)
    app.state.settings = cfg
    app.state.storer = storer
    app.state.user_entity_service = service

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(user.router, tags=["user"])
    app.include_router(health.router, tags=["health"])
    app.include_router(metrics.router, tags=["metrics"])

    return app

