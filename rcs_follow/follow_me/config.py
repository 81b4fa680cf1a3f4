#!/usr/bin/env python3
"""
config.py - Follow-Me Configuration Parameters

Centralized configuration for the follow-me demo: how the autopilot follows
the target, the sanity limits applied to incoming positions, where the
location provider listens, and the optional HTTP control server.

Usage:
    from rcs_follow.follow_me.config import FOLLOW_CONFIG, SAFETY_CONFIG
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class FollowDirection(Enum):
    """
    Side of the target the drone keeps to.

    Values are PX4 follow angles (FLW_TGT_FA): 0 = behind, 180 = in front,
    positive angles to the right of the target's heading.
    """

    BEHIND = 0.0
    FRONT = 180.0
    FRONT_RIGHT = 135.0
    FRONT_LEFT = -135.0

    @property
    def follow_angle_deg(self) -> float:
        return self.value


@dataclass
class FollowConfig:
    """
    Configuration passed to the autopilot's follow-me mode.

    Attributes:
        follow_height_m: Height above home the drone keeps while following.
        follow_distance_m: Horizontal distance kept from the target.
        follow_direction: Side of the target the drone keeps to.
        responsiveness: 0.0 (most responsive) to 1.0 (smoothest).
        max_tangential_vel_m_s: Speed limit while orbiting to the follow angle.
    """

    follow_height_m: float = 8.0
    follow_distance_m: float = 1.0
    follow_direction: FollowDirection = FollowDirection.FRONT
    responsiveness: float = 0.1
    max_tangential_vel_m_s: float = 8.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "follow_height_m": self.follow_height_m,
            "follow_distance_m": self.follow_distance_m,
            "follow_direction": self.follow_direction.name,
            "responsiveness": self.responsiveness,
            "max_tangential_vel_m_s": self.max_tangential_vel_m_s,
        }


@dataclass
class SafetyConfig:
    """
    Limits for the follow session.

    Attributes:
        max_follow_distance_m: Reject targets this far or farther on either axis.
        max_follow_seconds: Time limit for the follow phase.
        takeoff_altitude_m: Altitude requested for takeoff.
        takeoff_reached_m: Relative altitude at which takeoff counts as done.
        poll_interval_s: Interval of the blocking wait loops.
    """

    max_follow_distance_m: float = 5.0
    max_follow_seconds: float = 60.0
    takeoff_altitude_m: float = 2.5
    takeoff_reached_m: float = 2.4
    poll_interval_s: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "max_follow_distance_m": self.max_follow_distance_m,
            "max_follow_seconds": self.max_follow_seconds,
            "takeoff_altitude_m": self.takeoff_altitude_m,
            "takeoff_reached_m": self.takeoff_reached_m,
            "poll_interval_s": self.poll_interval_s,
        }


@dataclass
class LocationProviderConfig:
    """
    Where the location provider listens for position reports.

    Attributes:
        host: Address to bind.
        port: UDP port to bind.
        interval_s: Minimum spacing between delivered reports (0 = all).
    """

    host: str = "localhost"
    port: int = 65191
    interval_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "interval_s": self.interval_s,
        }


@dataclass
class ControlServerConfig:
    """
    Optional HTTP control server for the follow session.

    Attributes:
        enable_http: Whether to start the server.
        http_host: Host to bind.
        http_port: Port to bind.
    """

    enable_http: bool = False
    http_host: str = "127.0.0.1"
    http_port: int = 8081

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "enable_http": self.enable_http,
            "http_host": self.http_host,
            "http_port": self.http_port,
        }


# Default configuration instances
FOLLOW_CONFIG = FollowConfig()
SAFETY_CONFIG = SafetyConfig()
PROVIDER_CONFIG = LocationProviderConfig()
CONTROL_SERVER_CONFIG = ControlServerConfig()


def get_config_summary(
    follow: FollowConfig = FOLLOW_CONFIG,
    safety: SafetyConfig = SAFETY_CONFIG,
    provider: LocationProviderConfig = PROVIDER_CONFIG,
    control: ControlServerConfig = CONTROL_SERVER_CONFIG,
) -> str:
    """
    Get a human-readable summary of the configuration.

    Returns:
        str: Formatted configuration summary.
    """
    lines = [
        "=" * 50,
        "Follow-Me Configuration",
        "=" * 50,
        "",
        "Follow Me:",
        f"  Height: {follow.follow_height_m:.1f} m",
        f"  Distance: {follow.follow_distance_m:.1f} m",
        f"  Direction: {follow.follow_direction.name} ({follow.follow_direction.follow_angle_deg:.0f} deg)",
        f"  Responsiveness: {follow.responsiveness:.2f}",
        "",
        "Safety:",
        f"  Max target offset: {safety.max_follow_distance_m:.1f} m",
        f"  Follow time limit: {safety.max_follow_seconds:.0f} s",
        f"  Takeoff altitude: {safety.takeoff_altitude_m:.1f} m",
        "",
        "Location Provider:",
        f"  Listening on udp://{provider.host}:{provider.port}",
        f"  Min interval: {provider.interval_s:.2f} s",
        "",
        "HTTP Control:",
        f"  {'enabled' if control.enable_http else 'disabled'} ({control.http_host}:{control.http_port})",
        "=" * 50,
    ]
    return "\n".join(lines)


if __name__ == "__main__":
    print(get_config_summary())
