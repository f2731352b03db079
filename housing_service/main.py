import sys

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from common.cache import build_cache

from . import config
from .database import Base, engine, ping
from .errors import register_exception_handlers
from .logging_config import configure_logging
from .routes import admin, auth, reviews, universities

configure_logging()
logger = structlog.get_logger(__name__)

if not config.ACCESS_TOKEN_SECRET:
    logger.error("missing_setting", setting="ACCESS_TOKEN_SECRET")
    sys.exit(1)

# Create tables; a database outage must not stop the process
try:
    Base.metadata.create_all(bind=engine)
except SQLAlchemyError as exc:
    logger.error("database_unavailable", error=str(exc))

app = FastAPI(title="Student Housing Reviews API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

register_exception_handlers(app)

app.state.stats_cache = build_cache(config.STATS_CACHE_TTL_SECONDS, config.REDIS_URL)

app.include_router(auth.router)
app.include_router(universities.router)
app.include_router(reviews.router)
app.include_router(admin.router)


@app.get("/")
def root():
    """
    Service banner.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": config.SERVICE_NAME, "status": "running"}


@app.get("/api/health")
def health():
    """
    Liveness plus database reachability: 200 when healthy, 503 otherwise.
    """
    try:
        ping()
    except SQLAlchemyError as exc:
        logger.warning("health_check_failed", error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "unreachable"},
        )
    return {"status": "healthy", "database": "connected"}


def run():
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run("housing_service.main:app", host="0.0.0.0", port=8000)
