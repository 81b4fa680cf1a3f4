"""
Common utilities for the follow-me demo.

Modules:
    drone_helpers: Connection, health, arm, takeoff and land steps.
    telemetry_manager: Cached telemetry for synchronous readers.
    mavlink_connection: Connection configuration and CLI options.
"""

from .drone_helpers import (
    first_sample,
    connect_drone,
    wait_for_health,
    arm_if_needed,
    takeoff_if_needed,
    land_and_wait,
    setup_logging,
    create_argument_parser,
    is_shutdown_requested,
    reset_shutdown_request,
    setup_signal_handlers,
)

from .telemetry_manager import (
    TelemetryManager,
    PositionData,
    FlightStateData,
)

from .mavlink_connection import (
    ConnectionConfig,
    ConnectionType,
    is_valid_connection_url,
)

__all__ = [
    # drone_helpers
    "first_sample",
    "connect_drone",
    "wait_for_health",
    "arm_if_needed",
    "takeoff_if_needed",
    "land_and_wait",
    "setup_logging",
    "create_argument_parser",
    "is_shutdown_requested",
    "reset_shutdown_request",
    "setup_signal_handlers",
    # telemetry_manager
    "TelemetryManager",
    "PositionData",
    "FlightStateData",
    # mavlink_connection
    "ConnectionConfig",
    "ConnectionType",
    "is_valid_connection_url",
]
