"""
Remote session service – FastAPI application.

Start with: uvicorn timetrack.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timetrack import __version__
from timetrack.config import get_settings
from timetrack.constants import API_PREFIX
from timetrack.constants import DEVICE_ID_HEADER
from timetrack.constants import SESSIONS_PREFIX
from timetrack.constants import SYNC_PREFIX
from timetrack.constants import USER_CODE_PREFIX
from timetrack.database import initialize_database
from timetrack.routers.metrics import router as metrics_router
from timetrack.routers.sessions import router as sessions_router
from timetrack.routers.sync import router as sync_router
from timetrack.routers.system import router as system_router
from timetrack.routers.user_codes import router as user_codes_router

_settings = get_settings()

# --------------------------------------------------------------------------
# LOGGING CONFIGURATION
# --------------------------------------------------------------------------
#
# - Default log level: INFO
# - Can be set at runtime with LOG_LEVEL env (e.g. LOG_LEVEL=WARNING for CI)
#
_log_level = getattr(logging, _settings.log_level.upper(), logging.INFO)
logging.basicConfig(level=_log_level, format="%(levelname)s - %(name)s - %(message)s")

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", DEVICE_ID_HEADER]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    initialize_database()
    logger.info("Session service ready")
    yield


app = FastAPI(
    title="timetrack API",
    description="Offline-first session sync service",
    version=__version__,
    lifespan=lifespan,
)

cors_origins = _settings.cors_origins


@app.exception_handler(Exception)
async def ensure_cors_on_errors(request: Request, exc: Exception):
    """Ensure CORS headers are included even in error responses."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    origin = request.headers.get("origin", "*")
    allowed = origin if origin in cors_origins or "*" in cors_origins else cors_origins[0]

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers={
            "Access-Control-Allow-Origin": allowed,
            "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
            "Access-Control-Allow-Headers": ", ".join(CORS_HEADERS),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=CORS_METHODS,
    allow_headers=CORS_HEADERS,
)

app.include_router(system_router)
app.include_router(metrics_router)
app.include_router(user_codes_router, prefix=f"{API_PREFIX}{USER_CODE_PREFIX}")
app.include_router(sessions_router, prefix=f"{API_PREFIX}{SESSIONS_PREFIX}")
app.include_router(sync_router, prefix=f"{API_PREFIX}{SYNC_PREFIX}")


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("timetrack.main:app", host="0.0.0.0", port=8000, log_level=_settings.log_level.lower())
