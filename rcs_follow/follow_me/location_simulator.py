#!/usr/bin/env python3
"""
location_simulator.py - Simulated Remote Control Station

Sends position reports to the follow-me location provider so the demo can be
run against SITL without a real RCS. The simulated target walks a square
around a start point in small steps, slow enough that every step passes the
follow-me sanity check.

Usage:
    # Walk around the PX4 SITL default home position
    python -m rcs_follow.follow_me.location_simulator --lat 47.397742 --lon 8.545594

    # Faster, larger square
    python -m rcs_follow.follow_me.location_simulator --step 1.0 --side 20 --rate 2
"""

import argparse
import asyncio
import logging
import sys
from typing import Iterable, Iterator, Optional, Tuple

from rcs_follow.common.drone_helpers import setup_logging
from rcs_follow.follow_me.location_provider import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    LATITUDE_DEG_PER_METER,
    LONGITUDE_DEG_PER_METER,
    format_location_report,
)

logger = logging.getLogger(__name__)

# PX4 SITL default home position
DEFAULT_START_LAT = 47.397742
DEFAULT_START_LON = 8.545594

# North, east, south, west
_SQUARE_HEADINGS = ((1, 0), (0, 1), (-1, 0), (0, -1))


def simulated_path(
    start_lat: float = DEFAULT_START_LAT,
    start_lon: float = DEFAULT_START_LON,
    step_m: float = 0.5,
    side_m: float = 10.0,
    count: Optional[int] = None,
) -> Iterator[Tuple[float, float]]:
    """
    Yield positions walking a square, starting at the start point.

    Args:
        start_lat: Start latitude in degrees.
        start_lon: Start longitude in degrees.
        step_m: Distance between consecutive positions.
        side_m: Length of each side of the square.
        count: Number of positions to yield (None = endless).

    Yields:
        (latitude_deg, longitude_deg) tuples.
    """
    if step_m <= 0 or side_m <= 0:
        raise ValueError("step_m and side_m must be positive")

    steps_per_side = max(1, int(round(side_m / step_m)))
    north_m = 0.0
    east_m = 0.0
    produced = 0

    while True:
        for d_north, d_east in _SQUARE_HEADINGS:
            for _ in range(steps_per_side):
                if count is not None and produced >= count:
                    return
                yield (
                    start_lat + north_m * LATITUDE_DEG_PER_METER,
                    start_lon + east_m * LONGITUDE_DEG_PER_METER,
                )
                produced += 1
                north_m += d_north * step_m
                east_m += d_east * step_m


class LocationSender:
    """
    Sends position reports to a location provider over UDP.

    Attributes:
        host: Provider host.
        port: Provider port.
        sent: Number of datagrams sent.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self.host = host
        self.port = port
        self.sent = 0
        self._transport: Optional[asyncio.DatagramTransport] = None

    async def open(self) -> None:
        """Create the UDP endpoint."""
        if self._transport is not None:
            return
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol,
            remote_addr=(self.host, self.port),
        )

    def close(self) -> None:
        """Close the UDP endpoint."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    async def __aenter__(self) -> "LocationSender":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def send(
        self,
        latitude_deg: float,
        longitude_deg: float,
        absolute_altitude_m: Optional[float] = None,
    ) -> None:
        """Send one position report."""
        if self._transport is None:
            raise RuntimeError("LocationSender is not open")
        self._transport.sendto(
            format_location_report(latitude_deg, longitude_deg, absolute_altitude_m)
        )
        self.sent += 1

    def send_raw(self, payload: bytes) -> None:
        """Send an arbitrary datagram."""
        if self._transport is None:
            raise RuntimeError("LocationSender is not open")
        self._transport.sendto(payload)
        self.sent += 1

    async def run(
        self,
        path: Iterable[Tuple[float, float]],
        rate_hz: float = 1.0,
    ) -> int:
        """
        Send every position of a path at a fixed rate.

        Args:
            path: Iterable of (latitude_deg, longitude_deg).
            rate_hz: Reports per second.

        Returns:
            int: Number of reports sent.

        Raises:
            ValueError: If rate_hz is not positive.
        """
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")
        interval = 1.0 / rate_hz
        await self.open()
        count = 0
        try:
            for latitude, longitude in path:
                self.send(latitude, longitude)
                count += 1
                logger.debug("Sent position %.7f, %.7f", latitude, longitude)
                await asyncio.sleep(interval)
        finally:
            self.close()
        return count


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Send simulated RCS position reports to the follow-me demo"
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"Provider host (default: {DEFAULT_HOST})")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Provider port (default: {DEFAULT_PORT})")
    parser.add_argument("--lat", type=float, default=DEFAULT_START_LAT, help="Start latitude")
    parser.add_argument("--lon", type=float, default=DEFAULT_START_LON, help="Start longitude")
    parser.add_argument("--step", type=float, default=0.5, help="Step between reports in meters (default: 0.5)")
    parser.add_argument("--side", type=float, default=10.0, help="Square side in meters (default: 10)")
    parser.add_argument("--rate", type=float, default=1.0, help="Reports per second (default: 1)")
    parser.add_argument("--count", type=int, default=None, help="Stop after this many reports")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()
    if args.rate <= 0:
        parser.error("--rate must be positive")

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info(f"Sending positions to udp://{args.host}:{args.port} at {args.rate} Hz")

    path = simulated_path(args.lat, args.lon, args.step, args.side, args.count)
    sender = LocationSender(args.host, args.port)
    try:
        sent = asyncio.run(sender.run(path, args.rate))
    except KeyboardInterrupt:
        sent = sender.sent

    logger.info(f"Sent {sent} reports")
    sys.exit(0)


if __name__ == "__main__":
    main()
