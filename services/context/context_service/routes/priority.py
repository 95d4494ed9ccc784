from fastapi import APIRouter

from ..models import RankRequest, RankResponse
from ..services.priority import (
    DEFAULT_PRIORITY_CONFIG,
    analyze_distribution,
    calculate_dynamic_weights,
    rank_mixed,
    select,
)

router = APIRouter()


@router.post("/priority/rank", response_model=RankResponse)
async def rank(req: RankRequest) -> RankResponse:
    config = req.config or DEFAULT_PRIORITY_CONFIG
    if req.context is not None:
        config = calculate_dynamic_weights(req.context, config)

    items = rank_mixed(req.messages, req.fragments, req.query, config)

    selected = None
    if req.token_budget is not None:
        selected = select(items, req.token_budget, req.preserve_types)

    return RankResponse(
        items=items,
        count=len(items),
        selected=selected,
        analysis=analyze_distribution(selected if selected is not None else items),
    )
