#!/usr/bin/env python3
"""
test_follow_me_app.py - Tests for the Follow-Me Sequence

Runs the full connect/arm/takeoff/follow/land sequence against the fake
drone from conftest, feeding it positions over a real UDP socket.

Run with:
    pytest tests/test_follow_me_app.py -v
"""

import asyncio
import math
import signal
import socket

import aiohttp
import pytest

from rcs_follow.common import drone_helpers
from rcs_follow.follow_me.config import (
    ControlServerConfig,
    FollowConfig,
    FollowDirection,
    LocationProviderConfig,
    SafetyConfig,
)
from rcs_follow.follow_me.follow_me_app import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    FollowMeRunner,
    build_follow_me_config,
    build_target_location,
    create_parser,
)
from rcs_follow.follow_me.follow_session import StopReason
from rcs_follow.follow_me.location_provider import (
    LATITUDE_DEG_PER_METER,
    LONGITUDE_DEG_PER_METER,
)
from rcs_follow.follow_me.location_simulator import LocationSender


def make_runner(
    drone,
    max_follow_seconds: float = 30.0,
    provider_port: int = 0,
    control_config: ControlServerConfig = None,
) -> FollowMeRunner:
    """Runner with short polling, bound to a free local port by default."""
    return FollowMeRunner(
        "udp://:14540",
        safety=SafetyConfig(max_follow_seconds=max_follow_seconds, poll_interval_s=0.05),
        provider_config=LocationProviderConfig(host="127.0.0.1", port=provider_port),
        control_config=control_config,
        drone=drone,
    )


def free_tcp_port() -> int:
    """Ask the OS for a TCP port that is currently unused."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def assert_stopped_and_landed(drone) -> None:
    assert drone.follow_me.calls[-1] == "stop"
    assert drone.action.calls[-1] == "land"
    assert drone.state.in_air is False


# =============================================================================
# MAVSDK Conversion Tests
# =============================================================================


class TestMavsdkConversion:
    """Tests for the config/target builders."""

    def test_default_follow_config(self):
        """Test the default follow-me configuration."""
        config = build_follow_me_config(FollowConfig())
        assert config.follow_height_m == 8.0
        assert config.follow_distance_m == 1.0
        assert config.follow_angle_deg == 180.0
        assert config.responsiveness == pytest.approx(0.1)

    def test_follow_direction_behind(self):
        """Test that direction maps onto the follow angle."""
        config = build_follow_me_config(FollowConfig(follow_direction=FollowDirection.BEHIND))
        assert config.follow_angle_deg == 0.0

    def test_target_location(self):
        """Test that altitude and velocity are left unset."""
        target = build_target_location(47.1, 8.2)
        assert target.latitude_deg == 47.1
        assert target.longitude_deg == 8.2
        assert math.isnan(target.absolute_altitude_m)
        assert math.isnan(target.velocity_x_m_s)


# =============================================================================
# Full Sequence Tests
# =============================================================================


class TestFollowSequence:
    """Tests for FollowMeRunner.run()."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_follow_and_land(self, fake_drone, wait_until):
        """Test the happy path: targets filtered, time limit, stop, land."""
        runner = make_runner(fake_drone, max_follow_seconds=1.5)
        task = asyncio.create_task(runner.run())

        assert await wait_until(lambda: runner.provider.is_running, timeout=5)
        state = fake_drone.state

        async with LocationSender(*runner.provider.local_address) as sender:
            sender.send(state.latitude_deg + LATITUDE_DEG_PER_METER, state.longitude_deg)
            sender.send(state.latitude_deg + 50 * LATITUDE_DEG_PER_METER, state.longitude_deg)
            sender.send(state.latitude_deg, state.longitude_deg - 2 * LONGITUDE_DEG_PER_METER)
            assert await wait_until(lambda: runner.provider.stats.received == 3)

        exit_code = await asyncio.wait_for(task, timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert fake_drone.system_address == "udp://:14540"
        assert fake_drone.action.calls == ["arm", "set_takeoff_altitude", "takeoff", "land"]
        assert fake_drone.follow_me.calls == [
            "set_config",
            "start",
            "set_target_location",
            "set_target_location",
            "stop",
        ]
        assert len(fake_drone.follow_me.targets) == 2
        assert runner.position_filter.accepted == 2
        assert runner.position_filter.rejected == 1
        assert runner.targets_sent == 2
        assert runner.session.reason == StopReason.TIME_LIMIT
        assert runner.last_target is not None
        assert fake_drone.state.in_air is False
        assert runner.provider.is_running is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_external_mode_change_exits_without_landing(self, fake_drone, wait_until):
        """Test that the pilot switching modes ends the program, drone untouched."""
        runner = make_runner(fake_drone)
        task = asyncio.create_task(runner.run())

        assert await wait_until(lambda: runner.provider.is_running, timeout=5)
        assert await wait_until(lambda: runner._follow_mode_seen)

        fake_drone.state.flight_mode = "POSITION"
        exit_code = await asyncio.wait_for(task, timeout=5)

        assert exit_code == EXIT_SUCCESS
        assert runner.session.reason == StopReason.FLIGHT_MODE_CHANGED
        assert "land" not in fake_drone.action.calls
        assert "stop" not in fake_drone.follow_me.calls
        assert fake_drone.state.in_air is True

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_already_flying_skips_arm_and_takeoff(self, fake_drone, wait_until):
        """Test that arm and takeoff are skipped when not needed."""
        fake_drone.state.armed = True
        fake_drone.state.in_air = True
        fake_drone.state.relative_altitude_m = 10.0

        runner = make_runner(fake_drone, max_follow_seconds=0.3)
        exit_code = await asyncio.wait_for(runner.run(), timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert fake_drone.action.calls == ["land"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_waits_for_health(self, fake_drone):
        """Test that unhealthy samples delay but do not fail the run."""
        fake_drone.state.unhealthy_samples = 5
        runner = make_runner(fake_drone, max_follow_seconds=0.2)

        exit_code = await asyncio.wait_for(runner.run(), timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert fake_drone.state.unhealthy_samples == 0


class TestAbnormalStops:
    """Stops other than the time limit still stop follow-me and land."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_user_interrupt(self, fake_drone, wait_until):
        """Test that Ctrl+C during the follow phase lands the drone."""
        runner = make_runner(fake_drone)
        task = asyncio.create_task(runner.run())
        assert await wait_until(lambda: runner.provider.is_running, timeout=5)

        drone_helpers._signal_handler(signal.SIGINT, None)
        exit_code = await asyncio.wait_for(task, timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert runner.session.reason == StopReason.USER_INTERRUPT
        assert_stopped_and_landed(fake_drone)

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_provider_port_in_use(self, fake_drone):
        """Test that a provider bind failure ends following and lands."""
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            runner = make_runner(fake_drone, provider_port=blocker.getsockname()[1])

            exit_code = await asyncio.wait_for(runner.run(), timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert runner.session.reason == StopReason.PROVIDER_STOPPED
        assert_stopped_and_landed(fake_drone)

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_http_stop(self, fake_drone, wait_until):
        """Test that POST /stop ends following and lands."""
        port = free_tcp_port()
        runner = make_runner(
            fake_drone,
            control_config=ControlServerConfig(enable_http=True, http_host="127.0.0.1", http_port=port),
        )
        task = asyncio.create_task(runner.run())
        assert await wait_until(lambda: runner.session._http_runner is not None, timeout=5)

        async with aiohttp.ClientSession() as client:
            async with client.post(f"http://127.0.0.1:{port}/stop") as resp:
                assert resp.status == 200
                data = await resp.json()

        exit_code = await asyncio.wait_for(task, timeout=10)

        assert data["changed"] is True
        assert exit_code == EXIT_SUCCESS
        assert runner.session.reason == StopReason.HTTP_API
        assert runner.session._http_runner is None
        assert_stopped_and_landed(fake_drone)

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_http_port_in_use(self, fake_drone):
        """Test that an unusable HTTP port does not leave the drone flying."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            runner = make_runner(
                fake_drone,
                max_follow_seconds=0.3,
                control_config=ControlServerConfig(
                    enable_http=True,
                    http_host="127.0.0.1",
                    http_port=blocker.getsockname()[1],
                ),
            )

            exit_code = await asyncio.wait_for(runner.run(), timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert runner.session.reason == StopReason.TIME_LIMIT
        assert runner.session._http_runner is None
        assert_stopped_and_landed(fake_drone)


class TestFailures:
    """Tests for failing steps (each ends the program with exit 1)."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_follow_me_config_failure(self, fake_drone):
        """Test that a rejected follow-me config ends the run before start."""
        fake_drone.follow_me.fail.add("set_config")
        runner = make_runner(fake_drone)

        assert await runner.run() == EXIT_FAILURE
        assert fake_drone.follow_me.calls == ["set_config"]
        assert "start" not in fake_drone.follow_me.calls

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_target_send_failure_not_counted(self, fake_drone, wait_until):
        """Test that a rejected target counts as accepted but not sent."""
        fake_drone.follow_me.fail.add("set_target_location")
        runner = make_runner(fake_drone, max_follow_seconds=1.0)
        task = asyncio.create_task(runner.run())
        assert await wait_until(lambda: runner.provider.is_running, timeout=5)

        state = fake_drone.state
        async with LocationSender(*runner.provider.local_address) as sender:
            sender.send(state.latitude_deg + LATITUDE_DEG_PER_METER, state.longitude_deg)
            assert await wait_until(lambda: "set_target_location" in fake_drone.follow_me.calls)

        exit_code = await asyncio.wait_for(task, timeout=10)

        assert exit_code == EXIT_SUCCESS
        assert runner.position_filter.accepted == 1
        assert runner.targets_sent == 0
        assert runner.last_target is None
        assert_stopped_and_landed(fake_drone)

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_connection_timeout(self, fake_drone):
        """Test that an undiscovered system fails the run."""
        fake_drone.state.connected = False
        runner = make_runner(fake_drone)
        runner.connect_timeout = 0.1

        assert await runner.run() == EXIT_FAILURE
        assert fake_drone.action.calls == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_arm_failure(self, fake_drone):
        """Test that a denied arm stops the sequence."""
        fake_drone.action.fail.add("arm")
        runner = make_runner(fake_drone)

        assert await runner.run() == EXIT_FAILURE
        assert fake_drone.action.calls == ["arm"]
        assert fake_drone.follow_me.calls == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_takeoff_failure(self, fake_drone):
        """Test that a denied takeoff stops the sequence."""
        fake_drone.action.fail.add("takeoff")
        runner = make_runner(fake_drone)

        assert await runner.run() == EXIT_FAILURE
        assert fake_drone.follow_me.calls == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_follow_me_start_failure(self, fake_drone):
        """Test that a failed follow-me start ends the run without streaming."""
        fake_drone.follow_me.fail.add("start")
        runner = make_runner(fake_drone)

        assert await runner.run() == EXIT_FAILURE
        assert fake_drone.follow_me.calls == ["set_config", "start"]
        assert runner.provider.is_running is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_follow_me_stop_failure(self, fake_drone):
        """Test that a failed follow-me stop skips landing."""
        fake_drone.follow_me.fail.add("stop")
        runner = make_runner(fake_drone, max_follow_seconds=0.2)

        assert await asyncio.wait_for(runner.run(), timeout=10) == EXIT_FAILURE
        assert "land" not in fake_drone.action.calls

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_land_failure(self, fake_drone):
        """Test that a denied land command fails the run."""
        fake_drone.action.fail.add("land")
        runner = make_runner(fake_drone, max_follow_seconds=0.2)

        assert await asyncio.wait_for(runner.run(), timeout=10) == EXIT_FAILURE


# =============================================================================
# Callback Tests
# =============================================================================


class TestCallbacks:
    """Tests for the location and flight mode callbacks in isolation."""

    @pytest.mark.asyncio
    async def test_location_without_drone_position(self, fake_drone):
        """Test that targets are skipped before any drone position arrives."""
        runner = make_runner(fake_drone)
        runner.on_location(47.0, 8.0)

        assert runner.position_filter.rejected == 1
        assert fake_drone.follow_me.targets == []

    @pytest.mark.asyncio
    async def test_location_after_stop_is_ignored(self, fake_drone):
        """Test that nothing is counted once the session is ending."""
        runner = make_runner(fake_drone)
        runner.session.begin()
        runner.session.request_stop(StopReason.TIME_LIMIT)
        runner.on_location(47.0, 8.0)

        assert runner.position_filter.rejected == 0

    @pytest.mark.asyncio
    async def test_mode_before_follow_me_is_ignored(self, fake_drone):
        """Test that the previous mode reported after start() does not stop."""
        runner = make_runner(fake_drone)
        runner.session.begin()

        runner.on_flight_mode("TAKEOFF")
        assert runner.session.stop_requested is False

        runner.on_flight_mode("FOLLOW_ME")
        runner.on_flight_mode("FOLLOW_ME")
        assert runner.session.stop_requested is False

        runner.on_flight_mode("RETURN_TO_LAUNCH")
        assert runner.session.reason == StopReason.FLIGHT_MODE_CHANGED


# =============================================================================
# CLI Tests
# =============================================================================


class TestParser:
    """Tests for the command line parser."""

    def test_defaults(self):
        """Test default option values."""
        args = create_parser().parse_args([])
        assert args.url is None
        assert args.max_follow_seconds == 60.0
        assert args.max_follow_distance == 5.0
        assert args.follow_height == 8.0
        assert args.follow_distance == 1.0
        assert args.follow_direction == "front"
        assert args.rcs_host == "localhost"
        assert args.rcs_port == 65191
        assert args.http_control is False

    def test_positional_url_and_overrides(self):
        """Test the positional URL and a few overrides."""
        args = create_parser().parse_args([
            "udp://:14540",
            "--follow-direction", "behind",
            "--max-follow-seconds", "120",
            "--rcs-port", "7000",
            "--http-control",
        ])
        assert args.url == "udp://:14540"
        assert args.follow_direction == "behind"
        assert args.max_follow_seconds == 120.0
        assert args.rcs_port == 7000
        assert args.http_control is True

    def test_invalid_direction(self):
        """Test that argparse rejects unknown directions."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--follow-direction", "above"])
