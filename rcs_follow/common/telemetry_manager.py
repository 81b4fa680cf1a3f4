#!/usr/bin/env python3
"""
telemetry_manager.py - Cached Telemetry for MAVSDK

MAVSDK exposes telemetry only as async streams. The location provider calls
back synchronously from the UDP endpoint and needs the drone's latest
position right away, so this module keeps the latest samples in background
tasks and exposes them as plain attributes.

Each reader yields with `await asyncio.sleep(0)` after every sample so the
telemetry loops never starve command RPCs (arm, takeoff, follow_me...).

Usage:
    from rcs_follow.common.telemetry_manager import TelemetryManager

    telemetry = TelemetryManager(drone)
    await telemetry.start()

    if telemetry.has_position:
        print(telemetry.position.latitude_deg)

    telemetry.on_flight_mode(lambda mode: print(mode))

    await telemetry.stop()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass
class PositionData:
    """Latest position telemetry data."""
    latitude_deg: float = 0.0
    longitude_deg: float = 0.0
    absolute_altitude_m: float = 0.0
    relative_altitude_m: float = 0.0
    timestamp: float = 0.0

    @property
    def altitude_m(self) -> float:
        """Alias for relative_altitude_m."""
        return self.relative_altitude_m


@dataclass
class FlightStateData:
    """Latest flight state data."""
    armed: bool = False
    in_air: bool = False
    flight_mode: str = "UNKNOWN"
    timestamp: float = 0.0


class TelemetryManager:
    """
    Caches position and flight state from MAVSDK telemetry streams.

    Attributes:
        position: Latest position data.
        flight_state: Latest flight state data.
    """

    def __init__(self, drone: "System"):
        """
        Initialize the telemetry manager.

        Args:
            drone: MAVSDK System instance.
        """
        self._drone = drone
        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._started = False
        self._flight_mode_callbacks: List[Callable[[str], None]] = []

        self.position = PositionData()
        self.flight_state = FlightStateData()

    @property
    def is_running(self) -> bool:
        """Check if telemetry manager is running."""
        return self._started

    @property
    def has_position(self) -> bool:
        """True once at least one position sample has been received."""
        return self.position.timestamp > 0.0

    def on_flight_mode(self, callback: Callable[[str], None]) -> None:
        """
        Register a callback for every flight mode sample.

        Args:
            callback: Called with the flight mode name (e.g. "FOLLOW_ME").
        """
        self._flight_mode_callbacks.append(callback)

    def clear_flight_mode_callbacks(self) -> None:
        """Drop all flight mode callbacks."""
        self._flight_mode_callbacks = []

    def _notify_flight_mode(self, mode: str) -> None:
        for callback in list(self._flight_mode_callbacks):
            try:
                callback(mode)
            except Exception as e:
                logger.warning(f"Flight mode callback error: {e}")

    async def start(self) -> None:
        """
        Start background telemetry tasks.

        Call this after connecting to the drone.
        """
        if self._started:
            logger.warning("TelemetryManager already started")
            return

        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(self._read_position()),
            asyncio.create_task(self._read_armed()),
            asyncio.create_task(self._read_in_air()),
            asyncio.create_task(self._read_flight_mode()),
        ]
        self._started = True
        logger.debug("TelemetryManager started")

        # Give the streams a moment to deliver first samples
        await asyncio.sleep(0.2)

    async def stop(self) -> None:
        """Stop background telemetry tasks."""
        if not self._started:
            return

        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._started = False
        logger.debug("TelemetryManager stopped")

    async def _read_position(self) -> None:
        """Background task to read position telemetry."""
        try:
            async for pos in self._drone.telemetry.position():
                if self._stop_event.is_set():
                    break

                self.position = PositionData(
                    latitude_deg=pos.latitude_deg,
                    longitude_deg=pos.longitude_deg,
                    absolute_altitude_m=pos.absolute_altitude_m,
                    relative_altitude_m=pos.relative_altitude_m,
                    timestamp=time.time(),
                )

                # Critical: yield control immediately to allow commands to execute
                await asyncio.sleep(0)

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Position telemetry error: {e}")

    async def _read_armed(self) -> None:
        """Read armed state."""
        try:
            async for armed in self._drone.telemetry.armed():
                if self._stop_event.is_set():
                    break
                self.flight_state.armed = armed
                self.flight_state.timestamp = time.time()
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Armed telemetry error: {e}")

    async def _read_in_air(self) -> None:
        """Read in_air state."""
        try:
            async for in_air in self._drone.telemetry.in_air():
                if self._stop_event.is_set():
                    break
                self.flight_state.in_air = in_air
                self.flight_state.timestamp = time.time()
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"In-air telemetry error: {e}")

    async def _read_flight_mode(self) -> None:
        """Read flight mode and fan it out to callbacks."""
        try:
            async for mode in self._drone.telemetry.flight_mode():
                if self._stop_event.is_set():
                    break
                self.flight_state.flight_mode = str(mode)
                self.flight_state.timestamp = time.time()
                self._notify_flight_mode(self.flight_state.flight_mode)
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Flight mode telemetry error: {e}")

    def get_summary(self) -> dict:
        """
        Get a summary of current telemetry state.

        Returns:
            dict: Current telemetry values.
        """
        return {
            "position": {
                "lat": self.position.latitude_deg,
                "lon": self.position.longitude_deg,
                "alt_m": self.position.relative_altitude_m,
            },
            "flight_state": {
                "armed": self.flight_state.armed,
                "in_air": self.flight_state.in_air,
                "mode": self.flight_state.flight_mode,
            },
        }
