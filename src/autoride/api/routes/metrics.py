"""Dispatch metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...schemas.rides import MetricsResponse
from ...services.dispatch.service import DispatchService
from ..dependencies import get_dispatch_service

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_model=MetricsResponse, status_code=status.HTTP_200_OK)
async def get_metrics(service: DispatchService = Depends(get_dispatch_service)) -> MetricsResponse:
    return MetricsResponse.model_validate(service.metrics())
