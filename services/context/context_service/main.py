import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .logging_filters import SuppressQuietPathFilter
from .middleware.auth import ApiKeyMiddleware
from .routes.context import router as context_router
from .routes.health import router as health_router
from .routes.priority import router as priority_router
from .routes.segment import router as segment_router
from .routes.tokens import router as tokens_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

access_logger = logging.getLogger("uvicorn.access")
if not any(isinstance(f, SuppressQuietPathFilter) for f in access_logger.filters):
    access_logger.addFilter(SuppressQuietPathFilter())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Context service ready (default model=%s, chunk=%d/%d tokens)",
        settings.default_model,
        settings.default_max_chunk_size,
        settings.default_overlap_size,
    )
    yield
    logger.info("Shutting down context service")


app = FastAPI(title="Memory Proxy Context Service", lifespan=lifespan)

# Middleware
app.add_middleware(ApiKeyMiddleware)

# Routes
app.include_router(health_router)
app.include_router(tokens_router)
app.include_router(segment_router)
app.include_router(priority_router)
app.include_router(context_router)
