import logging

from fastapi import APIRouter

from ..models import SegmentRequest, SegmentResponse
from ..services.segmentation import segment, segmentation_stats

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/segment", response_model=SegmentResponse)
async def segment_text(req: SegmentRequest) -> SegmentResponse:
    segments = segment(req.text, req.options)
    logger.info(
        "Segmented %d chars into %d segments (strategy=%s)",
        len(req.text), len(segments), req.options.strategy,
    )
    return SegmentResponse(
        segments=segments,
        count=len(segments),
        stats=segmentation_stats(segments),
    )
