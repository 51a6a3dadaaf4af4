from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..config.settings import Settings
from ..imaging.bayer import BayerPattern
from ..imaging.pipeline import decode_exposure_async
from ..imaging.stretch import calculate_histogram
from .dependencies import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/decode")
async def decode_image(
    request: Request,
    width: int = Query(default=0, ge=0),
    height: int = Query(default=0, ge=0),
    bayer_pattern: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Decode a raw ImageBytes body and report its statistics and histogram."""
    try:
        pattern = BayerPattern.parse(bayer_pattern)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    body = await request.body()
    image = await decode_exposure_async(body, width, height, pattern)
    logger.info("api.image.decoded", size=len(body), width=image.width, height=image.height)
    return {
        "image": image.summary(),
        "histogram": calculate_histogram(image, settings.histogram_bins),
    }
