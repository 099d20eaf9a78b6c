import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure structured JSON logging as early as possible so every subsequent
# log record (including import-time warnings) uses the JSON formatter.
from vibephoto.logging_config import RequestIdMiddleware, configure_logging

configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

from vibephoto.api.credits import router as credits_router  # noqa: E402
from vibephoto.api.internal import router as internal_router  # noqa: E402
from vibephoto.api.jobs import router as jobs_router  # noqa: E402
from vibephoto.api.media import router as media_router  # noqa: E402
from vibephoto.api.webhooks import router as webhooks_router  # noqa: E402
from vibephoto.config import settings  # noqa: E402
from vibephoto.database import init_db  # noqa: E402
from vibephoto.wiring import build_services  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up")
    init_db()
    logger.info("Database initialised")
    app.state.services = build_services(settings)
    logger.info(
        "Services ready",
        extra={
            "storage_backend": settings.storage_backend,
            "webhooks_enabled": settings.public_base_url.startswith("https://"),
        },
    )
    yield
    logger.info("Application shutting down")


app = FastAPI(title="VibePhoto API", lifespan=lifespan)

# Request ID middleware must be added BEFORE CORS so every response carries
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

app.include_router(jobs_router)
app.include_router(credits_router)
app.include_router(media_router)
app.include_router(webhooks_router)
app.include_router(internal_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
