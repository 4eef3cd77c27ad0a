"""
Hold availability
How many more reservation holds the lot can accept right now.

Every pending hold will eventually take an available slot, so the capacity
left for new holds is what is free minus what is already promised, never
below zero. The backend also reports availableForHolding; it is recomputed
here from the counts so a stale or buggy backend value cannot open the gate.
"""
from typing import Any, Dict, Optional

import structlog

from .models import SlotAvailability, SlotStatus

logger = structlog.get_logger(__name__)

# Backend slot thresholds, in inches
OCCUPIED_BELOW_IN = 4


def available_for_holding(available_slots: int, pending_holds: int) -> int:
    """max(0, available - pending)"""
    return max(0, int(available_slots) - int(pending_holds))


def _count(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    return max(0, int(value))


def build_availability(data: Dict[str, Any]) -> SlotAvailability:
    """
    Build a SlotAvailability from the backend's availability payload

    Missing counts are treated as zero.
    """
    available = _count(data, "availableSlots")
    pending = _count(data, "pendingHolds")
    derived = available_for_holding(available, pending)

    reported = data.get("availableForHolding")
    if reported is not None and int(reported) != derived:
        logger.warning(
            "availability_mismatch",
            reported=reported,
            derived=derived,
            available_slots=available,
            pending_holds=pending,
        )

    return SlotAvailability(
        total_slots=_count(data, "totalSlots"),
        available_slots=available,
        occupied_slots=_count(data, "occupiedSlots"),
        maintenance_slots=_count(data, "maintenanceSlots"),
        pending_holds=pending,
        completed_holds=_count(data, "completedHolds"),
        available_for_holding=derived,
    )


def can_reserve(availability: Optional[SlotAvailability]) -> bool:
    """Gate for new holds; unknown availability counts as full"""
    if availability is None:
        return False
    return availability.available_for_holding > 0


def slot_status_for_range(sensor_range: Optional[float]) -> SlotStatus:
    """
    Slot state the backend derives from a working sensor's range

    Below 4 in a car is over the sensor, above 4 the slot is free, and
    exactly 4 is treated as a sensor fault.
    """
    if sensor_range is None:
        return SlotStatus.UNKNOWN
    if sensor_range < OCCUPIED_BELOW_IN:
        return SlotStatus.OCCUPIED
    if sensor_range > OCCUPIED_BELOW_IN:
        return SlotStatus.AVAILABLE
    return SlotStatus.MAINTENANCE
