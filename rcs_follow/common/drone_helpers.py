#!/usr/bin/env python3
"""
drone_helpers.py - Common Drone Operations

Provides the MAVSDK building blocks the follow-me demo is glued from:
- Connection and discovery
- Health check polling
- Arm / takeoff only when needed
- Landing with in-air polling
- Logging and signal setup

Every step logs what it is waiting for and reports failure by returning
False. Nothing here retries: a failed command is reported once and the caller
decides how to exit.

Usage:
    from rcs_follow.common import (
        connect_drone,
        wait_for_health,
        arm_if_needed,
        takeoff_if_needed,
        land_and_wait,
    )

    drone = await connect_drone("udp://:14540")
    if drone and await wait_for_health(drone):
        await arm_if_needed(drone)
        await takeoff_if_needed(drone, altitude=2.5)
        ...
        await land_and_wait(drone)
"""

import argparse
import asyncio
import logging
import signal
import time
from typing import AsyncIterator, Optional, TypeVar

from mavsdk.action import ActionError

from rcs_follow.common.mavlink_connection import add_connection_arguments

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global shutdown flag for signal handling
_shutdown_requested = False


def _signal_handler(signum, frame):
    """Handle shutdown signals (Ctrl+C)."""
    global _shutdown_requested
    logger.warning("Shutdown requested (Ctrl+C)")
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """
    Check if shutdown has been requested.

    Returns:
        bool: True if shutdown was requested via signal.
    """
    return _shutdown_requested


def reset_shutdown_request() -> None:
    """Clear the shutdown flag (used between runs in the same process)."""
    global _shutdown_requested
    _shutdown_requested = False


def setup_signal_handlers():
    """Set up signal handlers for graceful shutdown."""
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)


def setup_logging(
    level: int = logging.INFO,
    format_string: str = "%(asctime)s [%(levelname)s] %(message)s",
    datefmt: str = "%H:%M:%S",
) -> logging.Logger:
    """
    Configure logging for drone scripts.

    Args:
        level: Logging level (default: INFO).
        format_string: Log message format.
        datefmt: Date format string.

    Returns:
        logging.Logger: Configured root logger.
    """
    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=datefmt,
    )
    return logging.getLogger()


def create_argument_parser(
    description: str,
    add_verbose: bool = True,
) -> argparse.ArgumentParser:
    """
    Create a standard argument parser with connection options.

    Args:
        description: Script description.
        add_verbose: Add --verbose flag.

    Returns:
        argparse.ArgumentParser: Configured parser.
    """
    parser = argparse.ArgumentParser(description=description)

    if add_verbose:
        parser.add_argument(
            "--verbose",
            "-v",
            action="store_true",
            help="Enable verbose logging",
        )

    add_connection_arguments(parser)

    return parser


async def first_sample(stream: AsyncIterator[T]) -> Optional[T]:
    """
    Read one value from a MAVSDK telemetry stream.

    Args:
        stream: Async iterator such as drone.telemetry.armed().

    Returns:
        The first value, or None if the stream ended without data.
    """
    async for value in stream:
        return value
    return None


async def connect_drone(
    connection_string: str,
    timeout: float = 0.0,
    drone: Optional["System"] = None,
) -> Optional["System"]:
    """
    Connect to a drone and wait until the system is discovered.

    Args:
        connection_string: MAVSDK connection string.
        timeout: Discovery timeout in seconds (0 waits forever).
        drone: Pre-built System instance (a new one is created if None).

    Returns:
        System: Connected MAVSDK System, or None if discovery failed.
    """
    if drone is None:
        from mavsdk import System
        drone = System()

    logger.info(f"Connecting to drone: {connection_string}")
    await drone.connect(system_address=connection_string)

    logger.info("Waiting to discover system...")
    start_time = time.time()
    async for state in drone.core.connection_state():
        if state.is_connected:
            logger.info("Discovered system")
            return drone

        if timeout and time.time() - start_time > timeout:
            logger.error(f"Connection timeout after {timeout}s")
            return None

        if is_shutdown_requested():
            logger.warning("Connection cancelled by user")
            return None

        await asyncio.sleep(0)

    return None


async def wait_for_health(
    drone: "System",
    poll_interval: float = 1.0,
    timeout: float = 0.0,
) -> bool:
    """
    Wait until every health check of the autopilot passes.

    Args:
        drone: Connected MAVSDK System.
        poll_interval: Seconds between "waiting" log lines.
        timeout: Timeout in seconds (0 waits forever).

    Returns:
        bool: True once health_all_ok reports True.
    """
    start_time = time.time()
    last_log = 0.0

    async for all_ok in drone.telemetry.health_all_ok():
        if all_ok:
            logger.info("System is ready")
            return True

        now = time.time()
        if now - last_log >= poll_interval:
            logger.info("Waiting for system to be ready")
            last_log = now

        if timeout and now - start_time > timeout:
            logger.error(f"Health check timeout after {timeout}s")
            return False

        if is_shutdown_requested():
            return False

        await asyncio.sleep(0)

    return False


async def arm_if_needed(drone: "System") -> bool:
    """
    Arm the drone unless it already reports armed.

    Args:
        drone: Connected MAVSDK System.

    Returns:
        bool: True if the drone is armed afterwards.
    """
    armed = await first_sample(drone.telemetry.armed())
    if not armed:
        try:
            await drone.action.arm()
        except ActionError as e:
            logger.error(f"Arming failed: {e}")
            return False
    logger.info("Armed")
    return True


async def takeoff_if_needed(
    drone: "System",
    altitude: float = 2.5,
    reached_altitude: Optional[float] = None,
    timeout: float = 0.0,
) -> bool:
    """
    Take off unless the drone already reports being in the air.

    Waits until relative altitude reaches ``reached_altitude`` (defaults to
    altitude - 0.1 m).

    Args:
        drone: Connected, armed MAVSDK System.
        altitude: Takeoff altitude in meters.
        reached_altitude: Altitude at which takeoff counts as complete.
        timeout: Climb timeout in seconds (0 waits forever).

    Returns:
        bool: True once the drone is in the air.
    """
    if reached_altitude is None:
        reached_altitude = altitude - 0.1

    in_air = await first_sample(drone.telemetry.in_air())
    if not in_air:
        try:
            await drone.action.set_takeoff_altitude(altitude)
            await drone.action.takeoff()
        except ActionError as e:
            logger.error(f"Takeoff failed: {e}")
            return False

        start_time = time.time()
        async for position in drone.telemetry.position():
            if position.relative_altitude_m >= reached_altitude:
                break

            if timeout and time.time() - start_time > timeout:
                logger.error(
                    f"Takeoff timeout at {position.relative_altitude_m:.1f}m"
                )
                return False

            if is_shutdown_requested():
                logger.warning("Takeoff cancelled by user")
                return False

            # Critical: yield immediately to allow other async tasks to run
            await asyncio.sleep(0)

    logger.info("In Air...")
    return True


async def land_and_wait(
    drone: "System",
    poll_interval: float = 1.0,
    timeout: float = 0.0,
) -> bool:
    """
    Land the drone and wait until it reports not in air.

    Args:
        drone: Connected MAVSDK System.
        poll_interval: Seconds between "waiting" log lines.
        timeout: Landing timeout in seconds (0 waits forever).

    Returns:
        bool: True once landed.
    """
    try:
        await drone.action.land()
    except ActionError as e:
        logger.error(f"Landing failed: {e}")
        return False

    start_time = time.time()
    last_log = 0.0
    async for in_air in drone.telemetry.in_air():
        if not in_air:
            logger.info("Landed...")
            return True

        now = time.time()
        if now - last_log >= poll_interval:
            logger.info("waiting until landed")
            last_log = now

        if timeout and now - start_time > timeout:
            logger.warning(f"Landing timeout after {timeout}s")
            return False

        # Critical: yield immediately to allow other tasks to run
        await asyncio.sleep(0)

    return False
