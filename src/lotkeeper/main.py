# File: src/lotkeeper/main.py
"""
Command-line entry point for the lot allocation engine

Each sub-command runs one coordinator operation against the configured store
and prints the OperationResult as JSON.
"""

from dataclasses import replace
from typing import List, Optional
import argparse
import json
import logging
import os
import sys

from .config import Settings, STORE_BACKENDS
from .domain.errors import InfrastructureError
from .application.allocation_service import AllocationCoordinator, AllocationCoordinatorFactory
from .application.dtos import OperationResult


EXIT_OK = 0
EXIT_DOMAIN_ERROR = 1
EXIT_INFRASTRUCTURE_ERROR = 2


def setup_logging(settings: Settings) -> logging.Logger:
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_file:
        log_dir = os.path.dirname(settings.log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    return logging.getLogger("lotkeeper")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lotkeeper", description="Parking slot allocation engine")
    parser.add_argument("--store", choices=STORE_BACKENDS, help="Override LOTKEEPER_STORE")
    parser.add_argument("--data-file", help="Override LOTKEEPER_DATA_FILE for the json store")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-lot", help="Create a lot with N empty slots")
    p.add_argument("total_slots", type=int)

    p = sub.add_parser("register", help="Register a vehicle")
    p.add_argument("plate")
    p.add_argument("size", help="small, medium or large")

    p = sub.add_parser("park", help="Park a vehicle at a slot")
    p.add_argument("plate")
    p.add_argument("slot_number", type=int)

    p = sub.add_parser("park-auto", help="Park all unset records of a vehicle in consecutive slots")
    p.add_argument("plate")

    p = sub.add_parser("leave", help="Release a vehicle from a slot")
    p.add_argument("plate")
    p.add_argument("slot_number", type=int)

    sub.add_parser("status", help="Show lot occupancy")

    p = sub.add_parser("plates", help="Plates of parked vehicles of a size")
    p.add_argument("size")

    p = sub.add_parser("slots", help="Slots held by parked vehicles of a size")
    p.add_argument("size")

    p = sub.add_parser("add-slots", help="Append empty slots")
    p.add_argument("amount", type=int)

    p = sub.add_parser("remove-slot", help="Deactivate an empty slot")
    p.add_argument("slot_number", type=int)

    p = sub.add_parser("vehicle", help="Show the records of one plate")
    p.add_argument("plate")

    sub.add_parser("vehicles", help="List every vehicle record")

    return parser


def dispatch(coordinator: AllocationCoordinator, args: argparse.Namespace) -> OperationResult:
    command = args.command
    if command == "create-lot":
        return coordinator.create_lot(args.total_slots)
    if command == "register":
        return coordinator.register_vehicle(args.plate, args.size)
    if command == "park":
        return coordinator.park_vehicle(args.plate, args.slot_number)
    if command == "park-auto":
        return coordinator.park_vehicle_contiguous(args.plate)
    if command == "leave":
        return coordinator.leave_vehicle(args.plate, args.slot_number)
    if command == "status":
        return coordinator.get_status()
    if command == "plates":
        return coordinator.plates_by_size(args.size)
    if command == "slots":
        return coordinator.slots_by_size(args.size)
    if command == "add-slots":
        return coordinator.add_slots(args.amount)
    if command == "remove-slot":
        return coordinator.remove_slot(args.slot_number)
    if command == "vehicle":
        return coordinator.get_vehicle(args.plate)
    if command == "vehicles":
        return coordinator.list_vehicles()
    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = settings or Settings.from_env()
    if args.store:
        settings = replace(settings, store_backend=args.store)
    if args.data_file:
        settings = replace(settings, data_file=args.data_file)

    logger = setup_logging(settings)

    try:
        coordinator = AllocationCoordinatorFactory.create_from_settings(settings)
        try:
            result = dispatch(coordinator, args)
        finally:
            coordinator.close()
    except InfrastructureError as e:
        logger.error(f"Storage failure: {e}")
        print(json.dumps({"success": False, "error_code": "INFRASTRUCTURE_ERROR", "message": str(e)}))
        return EXIT_INFRASTRUCTURE_ERROR

    print(result.to_json(indent=2))
    return EXIT_OK if result.success else EXIT_DOMAIN_ERROR


if __name__ == "__main__":
    sys.exit(main())
