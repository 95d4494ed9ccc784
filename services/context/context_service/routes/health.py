import logging
from collections.abc import Callable

from fastapi import APIRouter

from ..models import HealthResponse
from ..services import context_assembly, priority, segmentation, token_estimator

logger = logging.getLogger(__name__)

router = APIRouter()


def _segmentation_check() -> bool:
    segments = segmentation.segment(
        "The key idea is simple. Context must fit the budget!",
        {"strategy": "semantic", "max_tokens": 64, "overlap": 8},
    )
    return len(segments) >= 1


def _run(name: str, check: Callable[[], bool]) -> bool:
    try:
        return bool(check())
    except Exception:
        logger.exception("Health check %s failed", name)
        return False


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    components = {
        "token_estimator": _run("token_estimator", token_estimator.self_check),
        "segmentation": _run("segmentation", _segmentation_check),
        "priority": _run("priority", priority.self_check),
        "context_assembly": _run("context_assembly", context_assembly.self_check),
    }
    return HealthResponse(
        status="ok" if all(components.values()) else "degraded",
        components=components,
    )
