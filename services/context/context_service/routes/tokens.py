from fastapi import APIRouter

from ..config import settings
from ..models import TokenCountRequest, TokenCountResponse
from ..services.token_estimator import (
    analyze_distribution,
    count_tokens,
    model_limit,
    remaining_tokens,
)

router = APIRouter()


@router.post("/tokens/count", response_model=TokenCountResponse)
async def count(req: TokenCountRequest) -> TokenCountResponse:
    model = req.model or settings.default_model
    return TokenCountResponse(
        tokens=count_tokens(req.messages),
        model=model,
        model_limit=model_limit(model),
        remaining_tokens=remaining_tokens(req.messages, model, settings.response_reserve_tokens),
        distribution=analyze_distribution(req.messages),
    )
