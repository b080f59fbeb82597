"""Front-desk endpoints guarded by a staff bearer session."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.booking_controller import CamelModel, infrastructure_exception
from backend.controllers.dependencies import (
    get_auth_service,
    get_availability_service,
    get_booking_service,
    require_staff,
)
from backend.domain.models import DateRange, Reservation
from backend.services.auth_service import (
    InvalidStaffTokenError,
    StaffAuthService,
    StaffTokenNotConfiguredError,
)
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityStorageError,
    AvailabilityValidationError,
)
from backend.services.booking_service import (
    BookingInfrastructureError,
    BookingNotFoundError,
    BookingService,
)


router = APIRouter(tags=["staff"])


class LoginRequest(BaseModel):
    staff_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class GuestTokenResponse(BaseModel):
    token: str


class CancelBookingRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ReservationResponse(CamelModel):
    booking_id: str
    room_id: str
    check_in: date
    check_out: date
    status: str
    num_guests: int = Field(gt=0)
    source: str
    created_at: str
    cancelled_at: str | None = None
    cancel_reason: str | None = None


class OccupancyRowResponse(CamelModel):
    night: date
    room_type_id: str
    room_type_name: str
    occupied_rooms: int = Field(ge=0)
    total_rooms: int = Field(ge=0)
    occupancy_rate: float = Field(ge=0.0, le=1.0)


class OccupancyResponse(CamelModel):
    start: date
    end: date
    overall_occupancy_rate: float = Field(ge=0.0, le=1.0)
    rows: list[OccupancyRowResponse]


def _reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(
        booking_id=reservation.reservation_id,
        room_id=reservation.room_id,
        check_in=reservation.stay.check_in,
        check_out=reservation.stay.check_out,
        status=reservation.status,
        num_guests=reservation.num_guests,
        source=reservation.source,
        created_at=reservation.created_at,
        cancelled_at=reservation.cancelled_at,
        cancel_reason=reservation.cancel_reason,
    )


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: StaffAuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.staff_token)
        return LoginResponse(access_token=bearer)
    except (StaffTokenNotConfiguredError, InvalidStaffTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


@router.get(
    "/bookings/{booking_id}/token",
    response_model=GuestTokenResponse,
    dependencies=[Depends(require_staff)],
)
def get_booking_token(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
) -> GuestTokenResponse:
    try:
        return GuestTokenResponse(token=service.get_guest_token(booking_id))
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingInfrastructureError as exc:
        raise infrastructure_exception(exc) from exc


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=ReservationResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_staff)],
)
def cancel_booking(
    booking_id: str,
    payload: CancelBookingRequest | None = None,
    service: BookingService = Depends(get_booking_service),
) -> ReservationResponse:
    reason = payload.reason if payload is not None else None
    try:
        return _reservation_response(service.cancel_booking(booking_id, reason))
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingInfrastructureError as exc:
        raise infrastructure_exception(exc) from exc


@router.get(
    "/rooms/{room_id}/reservations",
    response_model=list[ReservationResponse],
    response_model_by_alias=True,
    dependencies=[Depends(require_staff)],
)
def list_room_reservations(
    room_id: str,
    start: date | None = None,
    end: date | None = None,
    service: AvailabilityService = Depends(get_availability_service),
) -> list[ReservationResponse]:
    """Confirmed reservations on one room, optionally limited to ``[start, end)``."""
    window = None
    if start is not None or end is not None:
        if start is None or end is None or start >= end:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="start and end must both be given with start before end",
            )
        window = DateRange(check_in=start, check_out=end)
    try:
        reservations = service.room_reservations(room_id, window)
    except AvailabilityStorageError as exc:
        raise infrastructure_exception(exc) from exc
    return [_reservation_response(reservation) for reservation in reservations]


@router.get(
    "/occupancy",
    response_model=OccupancyResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_staff)],
)
def occupancy(
    start: date = Query(),
    end: date = Query(),
    service: AvailabilityService = Depends(get_availability_service),
) -> OccupancyResponse:
    try:
        report = service.occupancy_report(start, end)
    except AvailabilityValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AvailabilityStorageError as exc:
        raise infrastructure_exception(exc) from exc
    return OccupancyResponse(
        start=date.fromisoformat(report.start),
        end=date.fromisoformat(report.end),
        overall_occupancy_rate=report.overall_occupancy_rate,
        rows=[
            OccupancyRowResponse(
                night=date.fromisoformat(row.night),
                room_type_id=row.room_type_id,
                room_type_name=row.room_type_name,
                occupied_rooms=row.occupied_rooms,
                total_rooms=row.total_rooms,
                occupancy_rate=row.occupancy_rate,
            )
            for row in report.rows
        ],
    )
