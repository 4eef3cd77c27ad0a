# bzpark/routers/reservations.py
# Hold-payment reservations
# Thin HTTP layer over ReservationService; errors are mapped by the app's
# BridgeException handler

from fastapi import APIRouter, Request, status

from ..models import ReservationRequest, ReservationResult, SlotAvailability

router = APIRouter(prefix="/api/reservations", tags=["reservations"])


@router.get("/availability", response_model=SlotAvailability)
async def get_availability(request: Request):
    """
    Slot counts and how many new holds can be accepted

    availableForHolding is max(0, availableSlots - pendingHolds).
    """
    return await request.app.state.reservation_service.get_availability()


@router.post("", response_model=ReservationResult, status_code=status.HTTP_201_CREATED)
async def create_reservation(request: Request, reservation: ReservationRequest):
    """
    Submit a hold request for a driver

    Rejected with 409 when no capacity is left for new holds. Upstream
    failures come back as 502 with the backend's message.
    """
    return await request.app.state.reservation_service.submit_reservation(reservation)
