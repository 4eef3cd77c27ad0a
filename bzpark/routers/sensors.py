# bzpark/routers/sensors.py
# Local diagnostics for the serial bridge
# Everything here reads process state; nothing is persisted

from fastapi import APIRouter, Request
from typing import Dict, Any

from ..availability import slot_status_for_range

router = APIRouter(prefix="/api", tags=["sensors"])


@router.get("/sensor", response_model=Dict[str, Any])
async def latest_readings(request: Request):
    """
    Last raw reading per channel, in inches

    Returns {"sensor1In": ..., "sensor2In": ...}; null until a channel
    has reported.
    """
    return request.app.state.processor.latest.to_public()


@router.get("/sensor/status", response_model=Dict[str, Any])
async def reading_status(request: Request):
    """Latest readings with the slot state the backend will derive from them"""
    processor = request.app.state.processor
    sensor1_id, sensor2_id = processor.channel_ids()
    latest = processor.latest

    return {
        "mode": processor.mode,
        "sensor1": {
            "sensorId": sensor1_id,
            "rangeIn": latest.sensor1_in,
            "slotStatus": slot_status_for_range(latest.sensor1_in).value,
        },
        "sensor2": {
            "sensorId": sensor2_id,
            "rangeIn": latest.sensor2_in,
            "slotStatus": slot_status_for_range(latest.sensor2_in).value,
        },
    }


@router.get("/sensor/mapping", response_model=Dict[str, Any])
async def current_mapping(request: Request):
    """Current IP -> sensor mapping without refreshing it"""
    return request.app.state.resolver.to_public()


@router.get("/refresh-mapping", response_model=Dict[str, Any])
async def refresh_mapping(request: Request):
    """
    Re-resolve the sensor mapping now and return it

    Waits for every device lookup to finish before answering.
    """
    resolver = request.app.state.resolver
    await resolver.refresh()
    return resolver.to_public()
