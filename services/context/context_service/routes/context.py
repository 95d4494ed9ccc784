import logging

from fastapi import APIRouter, HTTPException

from ..models import OptimizeRequest, OptimizeResponse
from ..services.context_assembly import analyze_optimization, assemble

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/context/optimize", response_model=OptimizeResponse)
async def optimize_context(req: OptimizeRequest) -> OptimizeResponse:
    try:
        result = assemble(
            req.messages,
            req.fragments,
            max_tokens=req.max_tokens,
            model=req.model,
            options=req.options,
            query=req.query,
            context=req.context,
            config=req.priority_config,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    logger.info(
        "Context assembled: %d -> %d tokens (strategy=%s, fragments=%d)",
        result.original_tokens, result.optimized_tokens,
        result.strategy, result.fragments_included,
    )
    return OptimizeResponse(result=result, analysis=analyze_optimization(result))
