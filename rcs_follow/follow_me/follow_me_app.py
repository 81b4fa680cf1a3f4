#!/usr/bin/env python3
"""
follow_me_app.py - Follow the Remote Control Station

Connects to a single drone, arms and launches it, enables the autopilot's
follow-me mode and feeds it target positions received from the remote
control station (RCS) over UDP. After the time limit elapses the drone stops
following and lands. If the pilot switches the drone out of follow-me, the
program exits right away and leaves the drone to the pilot.

Sequence:
    connect -> discover -> health -> arm -> takeoff -> configure follow-me
    -> start -> stream RCS positions -> stop -> land

Usage:
    # SITL (PX4 listens on UDP 14540)
    rcs-follow-me udp://:14540

    # Structured connection options, longer session
    rcs-follow-me -c tcp --tcp-host 192.168.1.10 --max-follow-seconds 120

    # Feed positions from the simulator in another terminal
    rcs-location-sim --rate 2

    # Optional HTTP control
    rcs-follow-me udp://:14540 --http-control
    curl http://127.0.0.1:8081/status
    curl -X POST http://127.0.0.1:8081/stop
"""

import asyncio
import logging
import math
import sys
from typing import Optional, Set

from mavsdk.follow_me import Config, FollowMeError, TargetLocation

from rcs_follow.common.drone_helpers import (
    arm_if_needed,
    connect_drone,
    create_argument_parser,
    land_and_wait,
    setup_logging,
    setup_signal_handlers,
    takeoff_if_needed,
    wait_for_health,
)
from rcs_follow.common.mavlink_connection import (
    ConnectionConfig,
    print_connection_info,
    validate_config,
)
from rcs_follow.common.telemetry_manager import TelemetryManager
from rcs_follow.follow_me.config import (
    ControlServerConfig,
    FollowConfig,
    FollowDirection,
    LocationProviderConfig,
    SafetyConfig,
    get_config_summary,
)
from rcs_follow.follow_me.follow_session import FollowSession, StopReason
from rcs_follow.follow_me.location_provider import LocationProvider
from rcs_follow.follow_me.position_filter import PositionFilter

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

FOLLOW_ME_MODE = "FOLLOW_ME"


def build_follow_me_config(follow: FollowConfig) -> Config:
    """
    Translate FollowConfig into the MAVSDK follow-me Config.

    Args:
        follow: Follow behaviour settings.

    Returns:
        Config: MAVSDK follow-me configuration.
    """
    return Config(
        follow_height_m=follow.follow_height_m,
        follow_distance_m=follow.follow_distance_m,
        responsiveness=follow.responsiveness,
        altitude_mode=Config.FollowAltitudeMode.CONSTANT,
        max_tangential_vel_m_s=follow.max_tangential_vel_m_s,
        follow_angle_deg=follow.follow_direction.follow_angle_deg,
    )


def build_target_location(latitude_deg: float, longitude_deg: float) -> TargetLocation:
    """Target location with altitude and velocity left to the autopilot."""
    return TargetLocation(
        latitude_deg=latitude_deg,
        longitude_deg=longitude_deg,
        absolute_altitude_m=math.nan,
        velocity_x_m_s=math.nan,
        velocity_y_m_s=math.nan,
        velocity_z_m_s=math.nan,
    )


class FollowMeRunner:
    """
    Runs the follow-me sequence against one drone.

    Attributes:
        connection_string: MAVSDK connection string.
        follow: Follow behaviour settings.
        safety: Session limits.
        provider_config: Where the location provider listens.
        drone: MAVSDK System (created on connect if not given).
        provider: Location provider for RCS reports.
        position_filter: Sanity check applied to each report.
        session: Follow session and its stop sources.
        last_target: Last target location accepted by the autopilot.
        targets_sent: Number of targets the autopilot accepted.
    """

    def __init__(
        self,
        connection_string: str,
        follow: Optional[FollowConfig] = None,
        safety: Optional[SafetyConfig] = None,
        provider_config: Optional[LocationProviderConfig] = None,
        control_config: Optional[ControlServerConfig] = None,
        connect_timeout: float = 0.0,
        drone: Optional["System"] = None,
    ):
        self.connection_string = connection_string
        self.follow = follow or FollowConfig()
        self.safety = safety or SafetyConfig()
        self.provider_config = provider_config or LocationProviderConfig()
        self.connect_timeout = connect_timeout

        self.drone = drone
        self.telemetry: Optional[TelemetryManager] = None
        self.provider = LocationProvider()
        self.position_filter = PositionFilter(self.safety.max_follow_distance_m)
        self.session = FollowSession(
            self.safety.max_follow_seconds,
            control_config or ControlServerConfig(),
        )
        self.last_target: Optional[TargetLocation] = None
        self.targets_sent = 0

        self._follow_mode_seen = False
        self._last_mode: Optional[str] = None
        self._pending: Set[asyncio.Task] = set()

    async def run(self) -> int:
        """
        Execute the full sequence.

        Returns:
            int: Process exit code.
        """
        drone = await connect_drone(
            self.connection_string,
            timeout=self.connect_timeout,
            drone=self.drone,
        )
        if drone is None:
            return EXIT_FAILURE
        self.drone = drone

        if not await wait_for_health(drone, poll_interval=self.safety.poll_interval_s):
            return EXIT_FAILURE

        if not await arm_if_needed(drone):
            return EXIT_FAILURE

        if not await takeoff_if_needed(
            drone,
            altitude=self.safety.takeoff_altitude_m,
            reached_altitude=self.safety.takeoff_reached_m,
        ):
            return EXIT_FAILURE

        try:
            await drone.follow_me.set_config(build_follow_me_config(self.follow))
        except FollowMeError as e:
            logger.error(f"Failed to configure FollowMe mode: {e}")
            return EXIT_FAILURE

        try:
            await drone.follow_me.start()
        except FollowMeError as e:
            logger.error(f"Failed to start FollowMe mode: {e}")
            return EXIT_FAILURE

        self.telemetry = TelemetryManager(drone)
        try:
            reason = await self._follow()
        finally:
            await self._teardown()

        if reason == StopReason.FLIGHT_MODE_CHANGED:
            logger.info("Flight mode was changed externally! Exiting.")
            return EXIT_SUCCESS

        try:
            await drone.follow_me.stop()
        except FollowMeError as e:
            logger.error(f"Failed to stop FollowMe mode: {e}")
            return EXIT_FAILURE

        if not await land_and_wait(drone, poll_interval=self.safety.poll_interval_s):
            return EXIT_FAILURE

        return EXIT_SUCCESS

    async def _follow(self) -> StopReason:
        """Stream RCS positions to follow-me until a stop source fires."""
        await self.telemetry.start()
        self.telemetry.on_flight_mode(self.on_flight_mode)

        self.session.add_status_source("filter", self.position_filter.get_status)
        self.session.add_status_source("provider", self.provider.stats.to_dict)
        self.session.add_status_source("telemetry", self.telemetry.get_summary)
        self.session.begin()

        try:
            await self.provider.request_location_updates(
                self.provider_config.host,
                self.provider_config.port,
                self.provider_config.interval_s,
                self.on_location,
            )
        except OSError as e:
            logger.error(
                f"Location provider failed on "
                f"{self.provider_config.host}:{self.provider_config.port}: {e}"
            )

        try:
            await self.session.start_http_server()
        except OSError as e:
            logger.error(
                f"HTTP control server failed on "
                f"{self.session.config.http_host}:{self.session.config.http_port}: {e} "
                f"(continuing without HTTP control)"
            )

        return await self.session.wait(
            poll_interval=self.safety.poll_interval_s,
            is_provider_running=lambda: self.provider.is_running,
        )

    async def _teardown(self) -> None:
        """Stop streaming: provider, pending target sends, telemetry, HTTP."""
        await self.provider.stop()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self.telemetry is not None:
            self.telemetry.clear_flight_mode_callbacks()
            await self.telemetry.stop()
        await self.session.stop_http_server()

        logger.info(
            "Follow session summary: %.0fs, %d targets accepted, %d sent, %d skipped",
            self.session.elapsed,
            self.position_filter.accepted,
            self.targets_sent,
            self.position_filter.rejected,
        )

    def on_location(self, latitude_deg: float, longitude_deg: float) -> None:
        """
        Location provider callback: sanity check and forward a target.

        Args:
            latitude_deg: Target latitude from the RCS.
            longitude_deg: Target longitude from the RCS.
        """
        if self.session.stop_requested:
            return

        if self.telemetry is None or not self.telemetry.has_position:
            self.position_filter.reject()
            logger.warning(
                f"Warning: skipped position {latitude_deg}, {longitude_deg} "
                f"(no drone position yet)"
            )
            return

        position = self.telemetry.position
        if not self.position_filter.accept(
            position.latitude_deg,
            position.longitude_deg,
            latitude_deg,
            longitude_deg,
        ):
            logger.warning(f"Warning: skipped position {latitude_deg}, {longitude_deg}")
            return

        target = build_target_location(latitude_deg, longitude_deg)
        task = asyncio.ensure_future(self._send_target(target))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send_target(self, target: TargetLocation) -> None:
        try:
            await self.drone.follow_me.set_target_location(target)
        except FollowMeError as e:
            logger.error(f"Setting target location failed: {e}")
            return
        self.targets_sent += 1
        self.last_target = target

    def on_flight_mode(self, mode: str) -> None:
        """
        Flight mode callback: end the session if the pilot took over.

        Modes reported before follow-me is first seen are ignored, the
        autopilot may still report the previous mode right after start().
        """
        if mode == FOLLOW_ME_MODE:
            self._follow_mode_seen = True
        elif self._follow_mode_seen and not self.session.stop_requested:
            self.session.request_stop(StopReason.FLIGHT_MODE_CHANGED)

        if mode != self._last_mode:
            self._last_mode = mode
            self._log_vehicle_location(mode, logging.INFO)
        else:
            self._log_vehicle_location(mode, logging.DEBUG)

    def _log_vehicle_location(self, mode: str, level: int) -> None:
        if self.last_target is None:
            logger.log(level, "[FlightMode: %s] No target sent yet.", mode)
            return
        logger.log(
            level,
            "[FlightMode: %s] Vehicle is at: %s, %s degrees.",
            mode,
            self.last_target.latitude_deg,
            self.last_target.longitude_deg,
        )


def create_parser():
    """Build the command line parser."""
    parser = create_argument_parser(
        "Fly a drone in follow-me mode, following positions sent by the "
        "remote control station over UDP"
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="MAVSDK connection URL: tcp://[host][:port], udp://[bind_host][:bind_port] "
             "or serial:///path/to/serial/dev[:baudrate]. "
             "To connect to the simulator use udp://:14540",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=0.0,
        help="Seconds to wait for the drone to be discovered (default: 0 = forever)",
    )

    follow_group = parser.add_argument_group("Follow Options")
    follow_group.add_argument(
        "--follow-height",
        type=float,
        default=8.0,
        help="Follow height in meters (default: 8.0)",
    )
    follow_group.add_argument(
        "--follow-distance",
        type=float,
        default=1.0,
        help="Follow distance in meters (default: 1.0)",
    )
    follow_group.add_argument(
        "--follow-direction",
        choices=[d.name.lower() for d in FollowDirection],
        default="front",
        help="Side of the target to keep to (default: front)",
    )
    follow_group.add_argument(
        "--responsiveness",
        type=float,
        default=0.1,
        help="0.0 = most responsive, 1.0 = smoothest (default: 0.1)",
    )

    safety_group = parser.add_argument_group("Safety Options")
    safety_group.add_argument(
        "--max-follow-seconds",
        type=float,
        default=60.0,
        help="Follow time limit in seconds (default: 60)",
    )
    safety_group.add_argument(
        "--max-follow-distance",
        type=float,
        default=5.0,
        help="Skip targets this many meters or more away on either axis (default: 5.0)",
    )
    safety_group.add_argument(
        "--takeoff-altitude",
        type=float,
        default=2.5,
        help="Takeoff altitude in meters (default: 2.5)",
    )

    rcs_group = parser.add_argument_group("Location Provider Options")
    rcs_group.add_argument(
        "--rcs-host",
        default="localhost",
        help="Address to receive RCS positions on (default: localhost)",
    )
    rcs_group.add_argument(
        "--rcs-port",
        type=int,
        default=65191,
        help="UDP port to receive RCS positions on (default: 65191)",
    )
    rcs_group.add_argument(
        "--rcs-interval",
        type=float,
        default=0.0,
        help="Minimum seconds between forwarded positions (default: 0 = all)",
    )

    http_group = parser.add_argument_group("HTTP Control Options")
    http_group.add_argument(
        "--http-control",
        action="store_true",
        help="Start the HTTP control server (GET /status, POST /stop)",
    )
    http_group.add_argument(
        "--http-host",
        default="127.0.0.1",
        help="HTTP control host (default: 127.0.0.1)",
    )
    http_group.add_argument(
        "--http-port",
        type=int,
        default=8081,
        help="HTTP control port (default: 8081)",
    )

    return parser


def main(argv=None):
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    setup_signal_handlers()

    connection = ConnectionConfig.from_namespace(args)
    if args.url:
        connection.connection_url = args.url

    validation = validate_config(connection)
    for warning in validation["warnings"]:
        logger.warning(warning)
    if not validation["valid"]:
        for error in validation["errors"]:
            logger.error(error)
        parser.print_usage()
        sys.exit(EXIT_FAILURE)

    print_connection_info(connection)

    follow = FollowConfig(
        follow_height_m=args.follow_height,
        follow_distance_m=args.follow_distance,
        follow_direction=FollowDirection[args.follow_direction.upper()],
        responsiveness=args.responsiveness,
    )
    safety = SafetyConfig(
        max_follow_distance_m=args.max_follow_distance,
        max_follow_seconds=args.max_follow_seconds,
        takeoff_altitude_m=args.takeoff_altitude,
        takeoff_reached_m=args.takeoff_altitude - 0.1,
    )
    provider_config = LocationProviderConfig(
        host=args.rcs_host,
        port=args.rcs_port,
        interval_s=args.rcs_interval,
    )
    control_config = ControlServerConfig(
        enable_http=args.http_control,
        http_host=args.http_host,
        http_port=args.http_port,
    )
    print(get_config_summary(follow, safety, provider_config, control_config))

    runner = FollowMeRunner(
        connection.get_connection_string(),
        follow=follow,
        safety=safety,
        provider_config=provider_config,
        control_config=control_config,
        connect_timeout=args.connect_timeout,
    )

    try:
        exit_code = asyncio.run(runner.run())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        exit_code = EXIT_FAILURE

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
