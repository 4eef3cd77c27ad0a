"""
Utility functions used across the bridge
Keep these pure functions without side effects
"""
import math
import time
import uuid
from typing import Any, Optional

# ============================================================
# ID Generation
# ============================================================

def generate_request_id() -> str:
    """Generate unique request ID for tracing"""
    return f"req_{uuid.uuid4().hex[:12]}"

# ============================================================
# Numbers
# ============================================================

def round_half_up(value: float) -> int:
    """
    Round to the nearest integer with halves going up

    The sensor firmware and the web front end both round this way, so
    24.5 becomes 25 here too (round() would give 24).

    Examples:
        24.5 -> 25
        24.49 -> 24
        -2.5 -> -2
    """
    return int(math.floor(value + 0.5))


def parse_reading(raw: Any) -> Optional[int]:
    """
    Convert a raw serial value to whole inches

    Returns None for anything that is not a finite number. Booleans are
    rejected even though they are ints in Python.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        number = float(raw)
    elif isinstance(raw, str):
        try:
            number = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return round_half_up(number)

# ============================================================
# Time
# ============================================================

def monotonic_ms() -> float:
    """Monotonic clock in milliseconds, used for rate limiting windows"""
    return time.monotonic() * 1000.0
