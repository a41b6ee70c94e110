from __future__ import annotations

import sys
import logging
from fastapi import APIRouter
from sqlalchemy import text
import pydantic  # type: ignore

from vaultgate.core.db import engine
from vaultgate.services import session_service

logger = logging.getLogger("vaultgate.api.health")
router = APIRouter()


@router.get("/ping")
def ping():
    logger.info("GET /health/ping")
    return {"ok": True}


@router.get("/db")
def db_health():
    with engine.connect() as conn:
        ok = conn.execute(text("SELECT 1")).scalar() == 1
    logger.info("GET /health/db ok=%s", ok)
    return {"ok": ok, "dialect": engine.dialect.name}


@router.get("/contexts")
def contexts_health():
    """Funnels currently held in memory, one per browsing context."""
    ctxs = [c.to_dict() for c in session_service.list_active()]
    logger.info("GET /health/contexts count=%d", len(ctxs))
    return {
        "ok": True,
        "count": len(ctxs),
        "contexts": ctxs,
        "python": sys.version.split()[0],
        "pydantic": getattr(pydantic, "__version__", "unknown"),
    }

