"""
图片 / 视频生成路由（固定价格计费）。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.deps import get_media_service
from app.jwt_auth import AuthenticatedUser, require_jwt_token
from app.schemas import MediaGenerationRequest, MediaGenerationResponse
from app.services.media_service import MediaKind, MediaResult, MediaService

router = APIRouter(
    tags=["media"],
    prefix="/api/media",
    dependencies=[Depends(require_jwt_token)],
)


def _to_response(result: MediaResult) -> MediaGenerationResponse:
    return MediaGenerationResponse(
        url=result.url,
        prediction_id=result.prediction_id,
        cost=result.cost,
        new_balance=result.new_balance,
        warning=result.warning,
    )


@router.post("/image", response_model=MediaGenerationResponse, response_model_exclude_none=True)
async def generate_image(
    payload: MediaGenerationRequest,
    current_user: AuthenticatedUser = Depends(require_jwt_token),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    result = await service.generate(current_user.id, MediaKind.IMAGE, payload.prompt)
    return _to_response(result)


@router.post("/video", response_model=MediaGenerationResponse, response_model_exclude_none=True)
async def generate_video(
    payload: MediaGenerationRequest,
    current_user: AuthenticatedUser = Depends(require_jwt_token),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    result = await service.generate(current_user.id, MediaKind.VIDEO, payload.prompt)
    return _to_response(result)


__all__ = ["router"]
