import hmac
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import settings

logger = logging.getLogger(__name__)

_OPEN_PATHS = frozenset({"/health"})


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key on every route except the health probe."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in _OPEN_PATHS or not settings.context_api_key:
            return await call_next(request)

        provided = request.headers.get("X-API-Key", "")
        if not hmac.compare_digest(provided, settings.context_api_key):
            logger.warning("Rejected %s %s: bad or missing API key", request.method, request.url.path)
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API key"},
            )

        return await call_next(request)
