"""Public HTTP endpoints: booking creation, availability search, guest access."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.controllers.dependencies import get_availability_service, get_booking_service
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityStorageError,
    AvailabilityValidationError,
)
from backend.services.booking_service import (
    BookingConflictError,
    BookingInfrastructureError,
    BookingNotFoundError,
    BookingRequest,
    BookingService,
    BookingValidationError,
    RoomNotFoundError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])

RETRY_AFTER_SECONDS = "2"


class CamelModel(BaseModel):
    """Accepts both snake_case and the camelCase keys the web client sends."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateBookingRequest(CamelModel):
    room_id: str | None = None
    room_type_id: str | None = None
    check_in: date
    check_out: date
    guest_name: str = Field(min_length=1, max_length=200)
    guest_email: str = Field(min_length=3, max_length=320)
    guest_phone: str | None = Field(default=None, max_length=40)
    num_guests: int = Field(default=1, ge=1)
    special_requests: str = Field(default="", max_length=2000)
    source: str | None = None


class BookingData(CamelModel):
    booking_id: str
    room_id: str
    room_number: str
    check_in: date
    check_out: date
    nights: int = Field(gt=0)
    status: str
    guest_token: str


class CreateBookingResponse(BaseModel):
    success: bool = True
    message: str
    data: BookingData


class RoomTypeAvailabilityResponse(CamelModel):
    room_type_id: str
    name: str
    description: str
    max_occupancy: int = Field(gt=0)
    available_count: int = Field(ge=0)
    room_ids: list[str]


class AvailabilityResponse(BaseModel):
    success: bool = True
    data: list[RoomTypeAvailabilityResponse]


class GuestSummary(BaseModel):
    name: str
    room: str


class GuestBookingSummary(CamelModel):
    id: str
    check_in: date
    check_out: date
    status: str


class VerifyGuestResponse(BaseModel):
    valid: bool = True
    guest: GuestSummary
    booking: GuestBookingSummary


def infrastructure_exception(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


@router.post(
    "/bookings",
    response_model=CreateBookingResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
def create_booking(
    payload: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
) -> CreateBookingResponse:
    """Admit a stay; exactly one of several racing requests for a room wins."""
    try:
        confirmation = service.create_booking(
            BookingRequest(
                check_in=payload.check_in,
                check_out=payload.check_out,
                guest_name=payload.guest_name,
                guest_email=payload.guest_email,
                guest_phone=payload.guest_phone,
                room_id=payload.room_id,
                room_type_id=payload.room_type_id,
                num_guests=payload.num_guests,
                special_requests=payload.special_requests,
                source=payload.source,
            )
        )
        return CreateBookingResponse(
            message=f"Booking confirmed for room {confirmation.room_number}",
            data=BookingData(
                booking_id=confirmation.reservation_id,
                room_id=confirmation.room_id,
                room_number=confirmation.room_number,
                check_in=confirmation.check_in,
                check_out=confirmation.check_out,
                nights=confirmation.nights,
                status=confirmation.status,
                guest_token=confirmation.guest_token,
            ),
        )
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except RoomNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except BookingInfrastructureError as exc:
        raise infrastructure_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
def search_availability(
    check_in: date = Query(alias="checkIn"),
    check_out: date = Query(alias="checkOut"),
    guests: int = Query(default=1, ge=1),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    try:
        results = service.search(check_in=check_in, check_out=check_out, guests=guests)
        return AvailabilityResponse(
            data=[
                RoomTypeAvailabilityResponse(
                    room_type_id=item.room_type_id,
                    name=item.name,
                    description=item.description,
                    max_occupancy=item.max_occupancy,
                    available_count=item.available_count,
                    room_ids=item.room_ids,
                )
                for item in results
            ]
        )
    except AvailabilityValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except AvailabilityStorageError as exc:
        raise infrastructure_exception(exc) from exc


@router.get(
    "/guest/verify",
    response_model=VerifyGuestResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
def verify_guest(
    token: str = Query(min_length=1),
    service: BookingService = Depends(get_booking_service),
) -> VerifyGuestResponse:
    """Resolve a guest token to a booking summary without exposing contact data."""
    try:
        view = service.verify_guest_token(token)
        return VerifyGuestResponse(
            guest=GuestSummary(name=view.guest_name, room=view.room_number),
            booking=GuestBookingSummary(
                id=view.reservation_id,
                check_in=date.fromisoformat(view.check_in),
                check_out=date.fromisoformat(view.check_out),
                status=view.status,
            ),
        )
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BookingInfrastructureError as exc:
        raise infrastructure_exception(exc) from exc
