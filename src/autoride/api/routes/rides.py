"""Ride request, state and cancellation endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ...schemas.rides import RideRequestModel, RideResponse, SessionStateModel
from ...services.dispatch.errors import (
    NoVehicleAvailableError,
    RideInProgressError,
    RideNotCancellableError,
    RideNotFoundError,
)
from ...services.dispatch.service import DispatchService
from ..dependencies import get_dispatch_service

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post("", response_model=RideResponse, status_code=status.HTTP_201_CREATED)
async def request_ride(
    payload: RideRequestModel,
    service: DispatchService = Depends(get_dispatch_service),
) -> RideResponse:
    try:
        ride = await service.request_ride(payload.pickup_point(), payload.dropoff_point(), user_id=payload.user_id)
    except NoVehicleAvailableError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RideInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception("Ride request failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to dispatch ride: {str(exc)}",
        ) from exc
    return RideResponse.from_ride(ride)


@router.get("/current", response_model=SessionStateModel, status_code=status.HTTP_200_OK)
async def get_current_ride(service: DispatchService = Depends(get_dispatch_service)) -> SessionStateModel:
    ride = service.current_ride
    session = service.active_session
    state = {
        "phase": service.phase.value,
        "taxiStatus": service.taxi_status.value,
        "ride": RideResponse.from_ride(ride) if ride is not None else None,
    }
    if session is not None:
        state.update(
            taxiId=session.vehicle_id,
            leg1Progress=session.leg1_progress,
            leg2Progress=session.leg2_progress,
            leg1Route=session.leg1_route.to_coordinates(),
            leg2Route=session.leg2_route.to_coordinates(),
        )
    return SessionStateModel.model_validate(state)


@router.post("/{ride_id}/cancel", response_model=RideResponse, status_code=status.HTTP_200_OK)
async def cancel_ride(ride_id: str, service: DispatchService = Depends(get_dispatch_service)) -> RideResponse:
    try:
        ride = service.cancel(ride_id)
    except RideNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RideNotCancellableError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RideResponse.from_ride(ride)
