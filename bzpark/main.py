"""
BZpark Sensor Bridge - Main Application
Serial ingestion, sensor update forwarding and the reservation API in one process
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

# Local imports
from .config import Settings, get_settings
from .logging_config import configure_logging
from .backend_client import BackendClient
from .sensor_mapping import SensorMappingResolver
from .rate_limiter import SensorRateLimiter, SensorUpdateForwarder
from .ingestion import SerialLineProcessor
from .serial_bridge import SerialBridge, list_serial_ports
from .reservations import ReservationService
from .models import HealthStatus
from .exceptions import BridgeException

# Routers
from .routers import sensors_router, reservations_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    start_serial: bool = True,
) -> FastAPI:
    """
    Build the application

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        transport: Optional httpx transport for the backend client
        start_serial: Open the serial port on startup
    """
    settings = settings or get_settings()

    # ============================================================
    # Application Lifecycle Management
    # ============================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle (startup/shutdown)
        Wires the backend client, mapping, forwarder and serial reader
        """
        configure_logging(settings.log_level, settings.json_logs)
        logger.info(f">> Starting {settings.app_name} v{settings.app_version}")

        client = BackendClient(
            settings.backend_url,
            mapping_timeout=settings.mapping_timeout_seconds,
            sensor_timeout=settings.sensor_put_timeout_seconds,
            reservation_timeout=settings.reservation_timeout_seconds,
            transport=transport,
        )
        app.state.backend_client = client
        logger.info(f"[OK] Backend client ready for {settings.backend_url}")

        # The resolver backs the mapping endpoints even in legacy mode
        resolver = SensorMappingResolver(
            client,
            refresh_interval=settings.mapping_refresh_seconds,
            device_ip=settings.device_ip,
        )
        app.state.resolver = resolver

        limiter = SensorRateLimiter(settings.min_interval_ms, settings.min_change)
        forwarder = SensorUpdateForwarder(client, limiter)
        app.state.forwarder = forwarder

        processor = SerialLineProcessor(
            forwarder,
            resolver=resolver if settings.auto_detect_sensors else None,
            legacy_sensor_ids=settings.legacy_sensor_ids,
            seq_reset_ms=settings.seq_reset_ms,
        )
        app.state.processor = processor

        if settings.auto_detect_sensors:
            await resolver.start()
            logger.info("[OK] Sensor auto-detection enabled")
        else:
            logger.info(
                f"[OK] Legacy routing: sensor1={settings.sensor_id1} sensor2={settings.sensor_id2}"
            )

        app.state.reservation_service = ReservationService(client, hold_amount=settings.hold_amount)
        logger.info("[OK] Reservation service initialized")

        bridge = SerialBridge(
            processor,
            settings.com_port,
            baud_rate=settings.baud_rate,
            reconnect=settings.serial_reconnect,
            reconnect_max_seconds=settings.serial_reconnect_max_seconds,
        )
        app.state.serial_bridge = bridge
        if start_serial:
            logger.info(f"Available serial ports: {list_serial_ports()}")
            await bridge.start()
            logger.info(f"[OK] Serial reader started on {settings.com_port} @ {settings.baud_rate}")

        logger.info(f">> {settings.app_name} v{settings.app_version} is ready")

        yield

        # Shutdown: cleanup resources
        logger.info(">> Shutting down bridge...")

        await bridge.stop()
        await resolver.stop()

        await forwarder.drain()
        logger.info("[OK] Pending sensor updates drained")

        await client.close()
        logger.info("[OK] Backend client closed")

        logger.info(">> Shutdown complete")

    # ============================================================
    # FastAPI Application
    # ============================================================

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Serial-to-backend sensor bridge with hold-payment reservations",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sensors_router)
    app.include_router(reservations_router)

    # ============================================================
    # Exception Handlers
    # ============================================================

    @app.exception_handler(BridgeException)
    async def bridge_exception_handler(request: Request, exc: BridgeException):
        """Handle bridge and reservation exceptions"""
        if exc.status_code >= 500:
            logger.warning(f"{exc.error_code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict()
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = exc.errors()
        message = "Request validation failed"
        if errors:
            message = str(errors[0].get("msg", message)).removeprefix("Value error, ")
        return JSONResponse(
            status_code=422,
            content={
                "error": "VALIDATION_ERROR",
                "message": message,
                "details": jsonable_errors(errors)
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred"
            }
        )

    # ============================================================
    # Health Checks
    # ============================================================

    @app.get("/health", response_model=HealthStatus, tags=["System"])
    async def health_check(request: Request):
        """
        Bridge health

        Degraded when the serial reader is meant to run but the port is
        not open, or when auto-detection has no mapping yet.
        """
        checks = {}
        overall_status = "healthy"

        bridge = request.app.state.serial_bridge
        if bridge.running and bridge.connected:
            checks["serial"] = "connected"
        elif bridge.running:
            checks["serial"] = "reconnecting"
            overall_status = "degraded"
        else:
            checks["serial"] = "stopped"
            if start_serial:
                overall_status = "degraded"

        processor = request.app.state.processor
        sensor1_id, sensor2_id = processor.channel_ids()
        checks["routing"] = {
            "mode": processor.mode,
            "sensor1Id": sensor1_id,
            "sensor2Id": sensor2_id,
        }
        checks["mapping"] = {"devices": len(request.app.state.resolver.mapping)}
        if settings.auto_detect_sensors and processor.mode != "mapped":
            overall_status = "degraded"

        forwarder = request.app.state.forwarder
        checks["forwarder"] = {
            "sent": forwarder.sent_count,
            "suppressed": forwarder.suppressed_count,
            "failed": forwarder.failed_count,
            "inFlight": forwarder.in_flight,
        }

        return HealthStatus(
            status=overall_status,
            version=settings.app_version,
            timestamp=datetime.utcnow(),
            checks=checks
        )

    return app


def jsonable_errors(errors):
    """Strip non-serializable context (exception objects) from pydantic errors"""
    cleaned = []
    for error in errors:
        entry = {k: v for k, v in error.items() if k not in ("ctx", "input", "url")}
        cleaned.append(entry)
    return cleaned


app = create_app()
