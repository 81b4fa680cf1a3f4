"""
follow_me - Follow the Remote Control Station

Flies a drone in the autopilot's follow-me mode, feeding it target positions
received from the remote control station over UDP.

Main components:
- config: Follow, safety, provider and HTTP control settings
- location_provider: UDP receiver for RCS position reports
- position_filter: Sanity check rejecting implausibly far targets
- follow_session: Session time limit and stop sources (incl. HTTP /stop)
- follow_me_app: The connect/arm/takeoff/follow/land sequence
- location_simulator: Simulated RCS for SITL runs

Usage:
    python -m rcs_follow.follow_me udp://:14540
"""

from rcs_follow.follow_me.config import (
    FOLLOW_CONFIG,
    SAFETY_CONFIG,
    PROVIDER_CONFIG,
    CONTROL_SERVER_CONFIG,
    FollowConfig,
    FollowDirection,
    SafetyConfig,
    LocationProviderConfig,
    ControlServerConfig,
    get_config_summary,
)

from rcs_follow.follow_me.location_provider import (
    LATITUDE_DEG_PER_METER,
    LONGITUDE_DEG_PER_METER,
    LocationReport,
    LocationProvider,
    parse_location_report,
    format_location_report,
)

from rcs_follow.follow_me.position_filter import (
    PositionFilter,
    offset_m,
)

from rcs_follow.follow_me.follow_session import (
    StopReason,
    FollowSession,
)

from rcs_follow.follow_me.follow_me_app import (
    FollowMeRunner,
    build_follow_me_config,
    build_target_location,
)

from rcs_follow.follow_me.location_simulator import (
    LocationSender,
    simulated_path,
)

__all__ = [
    # Config
    "FOLLOW_CONFIG",
    "SAFETY_CONFIG",
    "PROVIDER_CONFIG",
    "CONTROL_SERVER_CONFIG",
    "FollowConfig",
    "FollowDirection",
    "SafetyConfig",
    "LocationProviderConfig",
    "ControlServerConfig",
    "get_config_summary",
    # Location provider
    "LATITUDE_DEG_PER_METER",
    "LONGITUDE_DEG_PER_METER",
    "LocationReport",
    "LocationProvider",
    "parse_location_report",
    "format_location_report",
    # Position filter
    "PositionFilter",
    "offset_m",
    # Session
    "StopReason",
    "FollowSession",
    # App
    "FollowMeRunner",
    "build_follow_me_config",
    "build_target_location",
    # Simulator
    "LocationSender",
    "simulated_path",
]
