from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from vaultgate.api import health, leads, vault
from vaultgate.core.config import CORS_ORIGINS
from vaultgate.core.db import create_all
from vaultgate.middleware.request_logger import RequestLoggerMiddleware

# ---- Logging config ---------------------------------------------------------
LOG_LEVEL = os.getenv("VAULT_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s:%(lineno)d - %(message)s",
)
logger = logging.getLogger("vaultgate.main")
logger.info("Starting Vault Gate backend with LOG_LEVEL=%s", LOG_LEVEL)

# ---- FastAPI app ------------------------------------------------------------
app = FastAPI(title="Vault Gate Backend")
app.add_middleware(RequestLoggerMiddleware)

# ---- CORS -------------------------------------------------------------------
# Cookies identify the browsing context, so credentials must be allowed
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- Routers ----------------------------------------------------------------
app.include_router(vault.router,  prefix="/vault",     tags=["Vault"])
app.include_router(leads.router,  prefix="/api/leads", tags=["Leads"])
app.include_router(health.router, prefix="/health",    tags=["Health"])

logger.info("Routers registered.")


# ---- Startup ----------------------------------------------------------------
@app.on_event("startup")
def _startup() -> None:
    # Auto-create tables (safe to run repeatedly)
    create_all()
    logger.info("Startup completed.")
