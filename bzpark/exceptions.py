"""
Custom exceptions for the bridge and the reservation client
Keep it simple but comprehensive
"""
from typing import Optional


class BridgeException(Exception):
    """Base exception for all bridge errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }

# ============================================================
# Data Store Exceptions
# ============================================================

class DataStoreError(BridgeException):
    """Backend request failed (transport error or non-2xx response)"""

    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None, path: Optional[str] = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        if path:
            details["path"] = path
        super().__init__(
            message=message,
            error_code="DATA_STORE_ERROR",
            details=details
        )
        self.upstream_status = status_code
        self.path = path

    @property
    def is_conflict(self) -> bool:
        """Backend reports the record already exists"""
        return self.upstream_status == 409 or "already exists" in self.message.lower()

class MappingError(BridgeException):
    """Sensor mapping could not be resolved"""
    pass

# ============================================================
# Hardware Exceptions
# ============================================================

class SerialPortError(BridgeException):
    """Serial port could not be opened or read"""

    def __init__(self, port: str, reason: str):
        super().__init__(
            message=f"Serial port {port}: {reason}",
            error_code="SERIAL_PORT_ERROR",
            details={"port": port}
        )
        self.port = port

# ============================================================
# Reservation Exceptions
# ============================================================

class ReservationError(BridgeException):
    """Reservation flow failed; message is shown to the user as-is"""

    status_code = 502

class NoSlotsAvailableError(ReservationError):
    """No capacity left for new holds"""

    status_code = 409

    def __init__(self, available_for_holding: int = 0):
        super().__init__(
            message="No parking slots are currently available for reservation. Please try again later.",
            error_code="NO_SLOTS_AVAILABLE",
            details={"available_for_holding": available_for_holding}
        )

class InvalidReservationError(ReservationError):
    """Reservation request failed client-side validation"""

    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field}
        )
        self.field = field

class AvailabilityError(ReservationError):
    """Availability could not be loaded"""

    def __init__(self, message: str = "Failed to load hold availability"):
        super().__init__(message=message, error_code="AVAILABILITY_ERROR")

class ServiceLookupError(ReservationError):
    """Vehicle type could not be resolved to a service"""

    def __init__(self, message: str = "Failed to look up service"):
        super().__init__(message=message, error_code="SERVICE_LOOKUP_ERROR")

class UserCreationError(ReservationError):
    """User record could not be created or found"""

    def __init__(self, message: str = "Failed to create user account"):
        super().__init__(message=message, error_code="USER_CREATION_ERROR")

class HoldPaymentCreationError(ReservationError):
    """Hold payment record could not be created"""

    def __init__(self, message: str = "Failed to create hold payment", user_id: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="HOLD_PAYMENT_ERROR",
            details={"user_id": user_id} if user_id is not None else {}
        )
        self.user_id = user_id
