"""
Pytest configuration and shared fixtures for the follow-me tests.

This module provides:
- Async test support via pytest-asyncio
- A fake MAVSDK System that behaves like a cooperative PX4 vehicle
- A polling helper for waiting on asynchronous side effects
- The sitl marker, skipped unless RCS_SITL=1
"""

import asyncio
import os
import time
from dataclasses import dataclass
from types import SimpleNamespace

import pytest

from mavsdk.action import ActionError, ActionResult
from mavsdk.follow_me import FollowMeError, FollowMeResult

from rcs_follow.common.drone_helpers import reset_shutdown_request

RUN_SITL = os.environ.get("RCS_SITL") == "1"

# PX4 SITL default home position
HOME_LAT = 47.397742
HOME_LON = 8.545594

STREAM_INTERVAL = 0.01


def pytest_collection_modifyitems(config, items):
    """Skip SITL tests unless explicitly enabled."""
    if RUN_SITL:
        return
    skip_sitl = pytest.mark.skip(reason="set RCS_SITL=1 to run against PX4 SITL")
    for item in items:
        if "sitl" in item.keywords:
            item.add_marker(skip_sitl)


@dataclass
class FakeVehicleState:
    """Mutable vehicle state shared by the fake plugins."""

    connected: bool = True
    unhealthy_samples: int = 0
    armed: bool = False
    in_air: bool = False
    latitude_deg: float = HOME_LAT
    longitude_deg: float = HOME_LON
    absolute_altitude_m: float = 488.0
    relative_altitude_m: float = 0.0
    flight_mode: str = "HOLD"


async def _repeat(sample):
    """Endless telemetry stream yielding sample() at a fixed rate."""
    while True:
        yield sample()
        await asyncio.sleep(STREAM_INTERVAL)


def action_error(origin: str) -> ActionError:
    return ActionError(
        ActionResult(ActionResult.Result.COMMAND_DENIED, "Command denied"),
        origin,
    )


def follow_me_error(origin: str) -> FollowMeError:
    return FollowMeError(
        FollowMeResult(FollowMeResult.Result.COMMAND_DENIED, "Command denied"),
        origin,
    )


class FakeCore:
    def __init__(self, state: FakeVehicleState):
        self._state = state

    def connection_state(self):
        return _repeat(lambda: SimpleNamespace(is_connected=self._state.connected))


class FakeTelemetry:
    def __init__(self, state: FakeVehicleState):
        self._state = state

    async def health_all_ok(self):
        while True:
            if self._state.unhealthy_samples > 0:
                self._state.unhealthy_samples -= 1
                yield False
            else:
                yield True
            await asyncio.sleep(STREAM_INTERVAL)

    def armed(self):
        return _repeat(lambda: self._state.armed)

    def in_air(self):
        return _repeat(lambda: self._state.in_air)

    def flight_mode(self):
        return _repeat(lambda: self._state.flight_mode)

    def position(self):
        return _repeat(lambda: SimpleNamespace(
            latitude_deg=self._state.latitude_deg,
            longitude_deg=self._state.longitude_deg,
            absolute_altitude_m=self._state.absolute_altitude_m,
            relative_altitude_m=self._state.relative_altitude_m,
        ))


class FakeAction:
    def __init__(self, state: FakeVehicleState):
        self._state = state
        self.calls = []
        self.fail = set()
        self.takeoff_altitude = 2.5

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise action_error(f"{name}()")

    async def arm(self):
        self._record("arm")
        self._state.armed = True

    async def set_takeoff_altitude(self, altitude):
        self._record("set_takeoff_altitude")
        self.takeoff_altitude = altitude

    async def takeoff(self):
        self._record("takeoff")
        self._state.in_air = True
        self._state.flight_mode = "TAKEOFF"
        self._state.relative_altitude_m = self.takeoff_altitude

    async def land(self):
        self._record("land")
        self._state.flight_mode = "LAND"
        self._state.in_air = False
        self._state.relative_altitude_m = 0.0


class FakeFollowMe:
    def __init__(self, state: FakeVehicleState):
        self._state = state
        self.calls = []
        self.fail = set()
        self.config = None
        self.targets = []

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise follow_me_error(f"{name}()")

    async def set_config(self, config):
        self._record("set_config")
        self.config = config

    async def start(self):
        self._record("start")
        self._state.flight_mode = "FOLLOW_ME"

    async def stop(self):
        self._record("stop")
        self._state.flight_mode = "HOLD"

    async def set_target_location(self, location):
        self._record("set_target_location")
        self.targets.append(location)


class FakeDrone:
    """Stand-in for mavsdk.System with the plugins the demo uses."""

    def __init__(self, state: FakeVehicleState = None):
        self.state = state or FakeVehicleState()
        self.system_address = None
        self.core = FakeCore(self.state)
        self.telemetry = FakeTelemetry(self.state)
        self.action = FakeAction(self.state)
        self.follow_me = FakeFollowMe(self.state)

    async def connect(self, system_address=None):
        self.system_address = system_address


@pytest.fixture
def fake_drone():
    """
    Fixture providing a fake, healthy, disarmed drone on the ground.

    Returns:
        FakeDrone: Fake MAVSDK System.
    """
    return FakeDrone()


@pytest.fixture(autouse=True)
def clear_shutdown_flag():
    """Make sure no test sees a shutdown request left by another."""
    reset_shutdown_request()
    yield
    reset_shutdown_request()


@pytest.fixture
def wait_until():
    """
    Fixture providing an async polling helper.

    Returns:
        Callable: async wait_until(predicate, timeout=2.0) -> bool
    """
    async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return _wait_until
