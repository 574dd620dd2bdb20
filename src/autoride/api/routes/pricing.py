"""Surge pricing endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...schemas.rides import SurgeUpdateRequest, SurgeUpdateResponse
from ...services.dispatch.service import DispatchService
from ..dependencies import get_dispatch_service

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/surge", response_model=SurgeUpdateResponse, status_code=status.HTTP_200_OK)
async def update_surge(
    payload: SurgeUpdateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> SurgeUpdateResponse:
    value = service.set_surge_multiplier(payload.surge_multiplier, reason=payload.reason)
    return SurgeUpdateResponse(surge_multiplier=value, reason=payload.reason)
