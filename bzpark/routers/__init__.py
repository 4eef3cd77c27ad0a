"""
API Routers
"""
from .sensors import router as sensors_router
from .reservations import router as reservations_router

__all__ = ["sensors_router", "reservations_router"]
