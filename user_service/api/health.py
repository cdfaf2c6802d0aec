"""
Health and readiness endpoints.

Provides lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from user_service.core.database import check_connection, has_user_entity_table
from user_service.features.user_entities.postgres import PostgresStorer

logger = logging.getLogger("user_service")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: for relational storage, DB connectivity + user_entity table."""
    storer = request.app.state.storer
    if not isinstance(storer, PostgresStorer):
        return {"status": "ok", "storage": storer.params.type.value}

    try:
        if not check_connection(storer.engine):
            return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
        if not has_user_entity_table(storer.engine):
            detail = "missing tables: user_entity"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
        return {"status": "ok", "storage": storer.params.type.value}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
