"""
Pydantic models for backend records and API payloads
All models in one place for simplicity

Backend records use the data store's snake_case names. Payloads the bridge
serves itself use the camelCase names the web front end already reads.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

# ============================================================
# Enums
# ============================================================

class SensorStatus(str, Enum):
    """Sensor states"""
    WORKING = "working"
    MAINTENANCE = "maintenance"

class SlotStatus(str, Enum):
    """Parking slot states"""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"  # No reading yet (bridge-side only)

class PaymentMethod(str, Enum):
    """Payment methods accepted for hold payments"""
    GCASH = "gcash"
    PAYMAYA = "paymaya"

ULTRASONIC = "ultrasonic"
MAX_PLATE_LENGTH = 20
MAX_VEHICLE_TYPE_LENGTH = 50

# ============================================================
# Backend Records
# ============================================================

class BackendRecord(BaseModel):
    """Backend rows carry joined columns we don't model"""
    model_config = ConfigDict(extra="ignore")

class ArduinoDevice(BackendRecord):
    """Registered Arduino/ESP8266 controller"""
    arduino_id: int
    ip_address: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None

class Sensor(BackendRecord):
    """Sensor attached to a device"""
    sensor_id: int
    arduino_id: Optional[int] = None
    sensor_type: Optional[str] = None
    sensor_range: Optional[float] = None
    status: Optional[str] = None

    @property
    def is_ultrasonic(self) -> bool:
        return (self.sensor_type or "").lower() == ULTRASONIC

class HoldPayment(BackendRecord):
    """Pending reservation request awaiting slot assignment"""
    hold_payment_id: int
    user_id: int
    amount: float
    payment_method: PaymentMethod
    plate_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ============================================================
# Bridge State
# ============================================================

class CamelModel(BaseModel):
    """Serialized with camelCase aliases, constructed with either name"""
    model_config = ConfigDict(populate_by_name=True)

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

class DeviceSensorMapping(CamelModel):
    """Sensors one device exposes, keyed by IP in the mapping"""
    arduino_id: int = Field(..., alias="arduinoId")
    location: Optional[str] = None
    sensor1_id: Optional[int] = Field(None, alias="sensor1Id")
    sensor2_id: Optional[int] = Field(None, alias="sensor2Id")

class LatestReadings(CamelModel):
    """Last raw reading per channel, in inches"""
    sensor1_in: Optional[int] = Field(None, alias="sensor1In")
    sensor2_in: Optional[int] = Field(None, alias="sensor2In")

class SlotAvailability(CamelModel):
    """Slot counts and the derived capacity for new holds"""
    total_slots: int = Field(0, alias="totalSlots", ge=0)
    available_slots: int = Field(0, alias="availableSlots", ge=0)
    occupied_slots: int = Field(0, alias="occupiedSlots", ge=0)
    maintenance_slots: int = Field(0, alias="maintenanceSlots", ge=0)
    pending_holds: int = Field(0, alias="pendingHolds", ge=0)
    completed_holds: int = Field(0, alias="completedHolds", ge=0)
    available_for_holding: int = Field(0, alias="availableForHolding", ge=0)

# ============================================================
# Reservation Models
# ============================================================

class ReservationRequest(BaseModel):
    """Hold request as submitted by a driver"""
    plate_number: str
    payment_method: PaymentMethod = PaymentMethod.GCASH
    vehicle_type: Optional[str] = None

    @field_validator("plate_number")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        """Plates are stored trimmed and upper-cased"""
        v = v.strip().upper()
        if not v:
            raise ValueError("Please enter a valid plate number")
        if len(v) > MAX_PLATE_LENGTH:
            raise ValueError(f"Plate number must be at most {MAX_PLATE_LENGTH} characters")
        return v

    @field_validator("vehicle_type")
    @classmethod
    def blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if len(v) > MAX_VEHICLE_TYPE_LENGTH:
            raise ValueError(f"Vehicle type must be at most {MAX_VEHICLE_TYPE_LENGTH} characters")
        return v

class ReservationResult(BaseModel):
    """Outcome of a successful hold submission"""
    user_id: int
    hold_payment: Optional[HoldPayment] = None
    service_id: Optional[int] = None
    existing_user: bool = False
    availability: Optional[SlotAvailability] = None
    message: str

# ============================================================
# System Models
# ============================================================

class HealthStatus(BaseModel):
    """Health check response"""
    status: str
    version: str
    timestamp: datetime
    checks: Dict[str, Any]
