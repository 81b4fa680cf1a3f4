#!/usr/bin/env python3
"""
position_filter.py - Sanity Check for Target Positions

Rejects target positions that are implausibly far from the drone. The offset
is measured separately along latitude and longitude using a fixed
degrees-per-meter conversion, which is rough but good enough to throw away
glitched fixes before they reach the autopilot.

A target is accepted only if BOTH axis offsets are strictly below the limit.

Usage:
    from rcs_follow.follow_me.position_filter import PositionFilter

    position_filter = PositionFilter(max_distance_m=5.0)
    if position_filter.accept(drone_lat, drone_lon, target_lat, target_lon):
        ...
"""

import logging
from typing import Any, Dict, Tuple

from rcs_follow.follow_me.location_provider import (
    LATITUDE_DEG_PER_METER,
    LONGITUDE_DEG_PER_METER,
)

logger = logging.getLogger(__name__)


def offset_m(
    current_lat: float,
    current_lon: float,
    target_lat: float,
    target_lon: float,
) -> Tuple[float, float]:
    """
    Absolute per-axis offset between two positions.

    Args:
        current_lat: Drone latitude in degrees.
        current_lon: Drone longitude in degrees.
        target_lat: Target latitude in degrees.
        target_lon: Target longitude in degrees.

    Returns:
        Tuple[float, float]: (north_m, east_m), both non-negative.
    """
    north_m = abs(current_lat - target_lat) / LATITUDE_DEG_PER_METER
    east_m = abs(current_lon - target_lon) / LONGITUDE_DEG_PER_METER
    return north_m, east_m


class PositionFilter:
    """
    Accept/reject gate for target positions.

    Attributes:
        max_distance_m: Per-axis limit in meters (exclusive).
        accepted: Number of accepted targets.
        rejected: Number of rejected targets.
    """

    def __init__(self, max_distance_m: float = 5.0):
        if max_distance_m <= 0:
            raise ValueError(f"max_distance_m must be positive, got {max_distance_m}")
        self.max_distance_m = max_distance_m
        self.accepted = 0
        self.rejected = 0

    def is_within_limit(
        self,
        current_lat: float,
        current_lon: float,
        target_lat: float,
        target_lon: float,
    ) -> bool:
        """Check the limit without touching the counters."""
        north_m, east_m = offset_m(current_lat, current_lon, target_lat, target_lon)
        return north_m < self.max_distance_m and east_m < self.max_distance_m

    def accept(
        self,
        current_lat: float,
        current_lon: float,
        target_lat: float,
        target_lon: float,
    ) -> bool:
        """
        Decide whether a target may be sent to the autopilot.

        Returns:
            bool: True if both axis offsets are below max_distance_m.
        """
        if self.is_within_limit(current_lat, current_lon, target_lat, target_lon):
            self.accepted += 1
            return True

        self.rejected += 1
        logger.debug(
            "Target %.7f, %.7f rejected (offset %.1fm, %.1fm)",
            target_lat,
            target_lon,
            *offset_m(current_lat, current_lon, target_lat, target_lon),
        )
        return False

    def reject(self) -> None:
        """Count a target rejected for lack of a drone position."""
        self.rejected += 1

    def reset(self) -> None:
        """Reset the counters."""
        self.accepted = 0
        self.rejected = 0

    def get_status(self) -> Dict[str, Any]:
        return {
            "max_distance_m": self.max_distance_m,
            "accepted": self.accepted,
            "rejected": self.rejected,
        }
