"""
Command line entry point

Usage:
    bzpark serve
    bzpark ports
    bzpark availability
    bzpark reserve --plate ABC123 --method gcash --vehicle-type car
"""
import argparse
import asyncio
import sys
from typing import List, Optional

import uvicorn

from .backend_client import BackendClient
from .config import Settings, get_settings
from .exceptions import BridgeException, InvalidReservationError
from .logging_config import configure_logging
from .models import PaymentMethod
from .reservations import ReservationService, build_request
from .serial_bridge import list_serial_ports


def _client(settings: Settings) -> BackendClient:
    return BackendClient(
        settings.backend_url,
        mapping_timeout=settings.mapping_timeout_seconds,
        sensor_timeout=settings.sensor_put_timeout_seconds,
        reservation_timeout=settings.reservation_timeout_seconds,
    )


def serve(settings: Settings) -> int:
    """Run the bridge and the local API until interrupted"""
    if not settings.routing_configured():
        print("❌ Error: set SENSOR_ID1 or enable AUTO_DETECT_SENSORS")
        return 1

    # Imported here so `bzpark ports` works without building the app
    from .main import create_app

    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
    return 0


def ports() -> int:
    """Print serial ports visible to pyserial"""
    found = list_serial_ports()
    if not found:
        print("No serial ports found")
        return 0

    print(f"{'='*40}")
    print("Serial Ports")
    print(f"{'='*40}")
    for device in found:
        print(device)
    print(f"{'='*40}\n")
    return 0


async def show_availability(settings: Settings) -> int:
    async with _client(settings) as client:
        service = ReservationService(client, hold_amount=settings.hold_amount)
        try:
            availability = await service.get_availability()
        except BridgeException as e:
            print(f"❌ Error: {e.message}")
            return 1

    print(f"{'Total slots:':<24}{availability.total_slots}")
    print(f"{'Available slots:':<24}{availability.available_slots}")
    print(f"{'Occupied slots:':<24}{availability.occupied_slots}")
    print(f"{'Maintenance slots:':<24}{availability.maintenance_slots}")
    print(f"{'Pending holds:':<24}{availability.pending_holds}")
    print(f"{'Available for holding:':<24}{availability.available_for_holding}")
    return 0


async def reserve(settings: Settings, plate: str, method: str, vehicle_type: Optional[str]) -> int:
    try:
        request = build_request(plate, method, vehicle_type)
    except InvalidReservationError as e:
        print(f"❌ Error: {e.message}")
        return 2

    async with _client(settings) as client:
        service = ReservationService(client, hold_amount=settings.hold_amount)
        try:
            result = await service.submit_reservation(request)
        except BridgeException as e:
            print(f"❌ Error: {e.message}")
            return 1

    print(f"✅ {result.message}")
    if result.availability is not None:
        print(f"\nAvailable for holding: {result.availability.available_for_holding}")
    return 0


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="bzpark", description="BZpark sensor bridge")
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Serve command
    subparsers.add_parser('serve', help='Run the serial bridge and local API')

    # Ports command
    subparsers.add_parser('ports', help='List available serial ports')

    # Availability command
    subparsers.add_parser('availability', help='Show slot availability for holds')

    # Reserve command
    reserve_parser = subparsers.add_parser('reserve', help='Submit a hold reservation')
    reserve_parser.add_argument('--plate', required=True, help='Vehicle plate number')
    reserve_parser.add_argument(
        '--method',
        default=PaymentMethod.GCASH.value,
        choices=[m.value for m in PaymentMethod],
        help='Payment method',
    )
    reserve_parser.add_argument('--vehicle-type', default=None, help='Vehicle type used to pick a service')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    if args.command != 'serve':
        configure_logging(settings.log_level, settings.json_logs)

    # Run command
    if args.command == 'serve':
        code = serve(settings)
    elif args.command == 'ports':
        code = ports()
    elif args.command == 'availability':
        code = asyncio.run(show_availability(settings))
    else:
        code = asyncio.run(reserve(settings, args.plate, args.method, args.vehicle_type))

    sys.exit(code)


if __name__ == '__main__':
    main()
