"""
Hold-payment reservation flow

A driver asks for a slot; the request becomes a user record plus a hold
payment that an admin later turns into a slot assignment. The two writes
are separate backend calls and are not rolled back together: a user
without a hold is a valid state (the next attempt reuses it).

The capacity check here is point-in-time. Two drivers submitting at the
same moment can both pass it; the backend is the only place that can
refuse the second hold atomically.
"""
from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import ValidationError

from .availability import build_availability, can_reserve
from .backend_client import BackendClient
from .exceptions import (
    AvailabilityError,
    DataStoreError,
    HoldPaymentCreationError,
    InvalidReservationError,
    NoSlotsAvailableError,
    ServiceLookupError,
    UserCreationError,
)
from .models import HoldPayment, ReservationRequest, ReservationResult, SlotAvailability
from .utils import generate_request_id

logger = structlog.get_logger(__name__)

HOLD_AMOUNT = 30.00
MIN_AMOUNT = 0.01
MAX_AMOUNT = 999.99

SUCCESS_MESSAGE = (
    "Success! Your slot reservation request has been submitted. "
    "The admin will review and assign you an available slot."
)


def format_success_message(snapshot: Optional[Dict[str, Any]]) -> str:
    """Success text, with the backend's availability snapshot when it sent one"""
    if not snapshot:
        return SUCCESS_MESSAGE

    remaining = snapshot.get("remainingSlots", snapshot.get("availableForHolding"))
    return (
        f"{SUCCESS_MESSAGE}\n\nAvailability Update:\n"
        f"- Available slots: {snapshot.get('availableSlots')}\n"
        f"- Pending holds: {snapshot.get('pendingHolds')}\n"
        f"- Remaining slots: {remaining}"
    )


def build_request(
    plate_number: str,
    payment_method: str = "gcash",
    vehicle_type: Optional[str] = None,
) -> ReservationRequest:
    """Validate raw input into a ReservationRequest, reporting the first bad field"""
    try:
        return ReservationRequest(
            plate_number=plate_number,
            payment_method=payment_method,
            vehicle_type=vehicle_type,
        )
    except ValidationError as e:
        error = e.errors()[0]
        field = str(error["loc"][0]) if error.get("loc") else "request"
        message = str(error["msg"]).removeprefix("Value error, ")
        raise InvalidReservationError(field, message) from e


class ReservationService:
    """Availability lookups and hold submission against the backend"""

    def __init__(self, client: BackendClient, hold_amount: float = HOLD_AMOUNT):
        if not MIN_AMOUNT <= hold_amount <= MAX_AMOUNT:
            raise InvalidReservationError(
                "amount", f"Hold amount must be between {MIN_AMOUNT} and {MAX_AMOUNT}"
            )
        self.client = client
        self.hold_amount = hold_amount

    async def get_availability(self) -> SlotAvailability:
        """Current slot counts with availableForHolding derived locally"""
        try:
            data = await self.client.get_hold_availability()
        except DataStoreError as e:
            raise AvailabilityError(e.message) from e

        try:
            return build_availability(data)
        except (TypeError, ValueError) as e:
            raise AvailabilityError(f"Malformed availability data: {e}") from e

    async def resolve_service_id(self, vehicle_type: Optional[str]) -> Optional[int]:
        """
        Map a vehicle type to a service ID, best effort

        A backend answer of "nothing found" (any HTTP status) gives None;
        only an unreachable backend is an error.
        """
        if not vehicle_type:
            return None

        try:
            services = await self.client.find_services_by_vehicle(vehicle_type)
        except DataStoreError as e:
            if e.upstream_status is None:
                raise ServiceLookupError(e.message) from e
            logger.info("service_not_found", vehicle_type=vehicle_type, status_code=e.upstream_status)
            return None

        for service in services:
            service_id = service.get("service_id")
            if service_id is not None:
                return int(service_id)
        return None

    async def ensure_user(self, plate_number: str, service_id: Optional[int]) -> Tuple[int, bool]:
        """
        Create the driver's user record, or reuse it if the plate exists

        Returns (user_id, existing).
        """
        existing = False
        try:
            user = await self.client.create_user(plate_number, service_id)
        except DataStoreError as e:
            if not e.is_conflict:
                raise UserCreationError(e.message) from e

            logger.info("reservation_existing_user", plate_number=plate_number)
            try:
                user = await self.client.get_user_by_plate(plate_number)
            except DataStoreError as lookup_error:
                raise UserCreationError(lookup_error.message) from lookup_error
            existing = True

        user_id = user.get("user_id")
        if user_id is None:
            raise UserCreationError("Backend did not return a user id")
        return int(user_id), existing

    async def submit_reservation(self, request: ReservationRequest) -> ReservationResult:
        """
        Submit a hold request

        Steps: check capacity, resolve service, create/reuse user, create the
        hold payment, then re-read availability for the caller. Each failure
        raises a ReservationError carrying the backend's own message.
        """
        log = logger.bind(request_id=generate_request_id(), plate_number=request.plate_number)

        availability = await self.get_availability()
        if not can_reserve(availability):
            log.info(
                "reservation_rejected_full",
                available_slots=availability.available_slots,
                pending_holds=availability.pending_holds,
            )
            raise NoSlotsAvailableError(availability.available_for_holding)

        service_id = await self.resolve_service_id(request.vehicle_type)
        user_id, existing = await self.ensure_user(request.plate_number, service_id)

        try:
            body = await self.client.create_hold_payment(user_id, self.hold_amount, request.payment_method)
        except DataStoreError as e:
            log.warning("hold_payment_failed", user_id=user_id, error=e.message)
            raise HoldPaymentCreationError(e.message, user_id=user_id) from e

        hold_payment = None
        data = body.get("data")
        if isinstance(data, dict):
            try:
                hold_payment = HoldPayment.model_validate(data)
            except ValidationError as e:
                log.warning("hold_payment_unparsed", user_id=user_id, errors=e.error_count())

        snapshot = body.get("availability")
        if not isinstance(snapshot, dict):
            snapshot = None

        try:
            refreshed = await self.get_availability()
        except AvailabilityError as e:
            # Hold is already created; report success without a fresh count
            log.warning("availability_refresh_failed", error=e.message)
            refreshed = None

        log.info(
            "reservation_submitted",
            user_id=user_id,
            existing_user=existing,
            hold_payment_id=hold_payment.hold_payment_id if hold_payment else None,
            available_for_holding=refreshed.available_for_holding if refreshed else None,
        )

        return ReservationResult(
            user_id=user_id,
            hold_payment=hold_payment,
            service_id=service_id,
            existing_user=existing,
            availability=refreshed,
            message=format_success_message(snapshot),
        )
