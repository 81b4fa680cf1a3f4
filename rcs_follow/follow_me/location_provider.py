#!/usr/bin/env python3
"""
location_provider.py - UDP Location Provider for the Remote Control Station

Listens for position reports sent by the remote control station (RCS) and
hands every valid one to a callback.

Wire format:
    One UTF-8 datagram per report:

        <latitude_deg>,<longitude_deg>[,<absolute_altitude_m>]

    Fields may be separated by commas and/or whitespace. Anything else is
    counted as malformed and dropped.

Usage:
    from rcs_follow.follow_me.location_provider import LocationProvider

    provider = LocationProvider()
    await provider.request_location_updates(
        "localhost", 65191, 0, lambda lat, lon: print(lat, lon)
    )
    while provider.is_running:
        await asyncio.sleep(1)
    await provider.stop()
"""

import asyncio
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Rough degrees-per-meter conversion used for the position sanity check
LATITUDE_DEG_PER_METER = 0.000009044
LONGITUDE_DEG_PER_METER = 0.000008985

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 65191

_FIELD_SEPARATOR = re.compile(r"[,\s]+")

LocationCallback = Callable[[float, float], None]


@dataclass
class LocationReport:
    """
    A single position report from the RCS.

    Attributes:
        latitude_deg: Latitude in degrees.
        longitude_deg: Longitude in degrees.
        absolute_altitude_m: AMSL altitude, NaN when not reported.
        timestamp: Receive time (time.time()).
    """

    latitude_deg: float
    longitude_deg: float
    absolute_altitude_m: float = math.nan
    timestamp: float = field(default_factory=time.time)

    @property
    def has_altitude(self) -> bool:
        return not math.isnan(self.absolute_altitude_m)


@dataclass
class ProviderStats:
    """Datagram counters for the location provider."""

    received: int = 0
    delivered: int = 0
    malformed: int = 0
    throttled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": self.received,
            "delivered": self.delivered,
            "malformed": self.malformed,
            "throttled": self.throttled,
        }


def parse_location_report(data: bytes) -> LocationReport:
    """
    Parse one datagram into a LocationReport.

    Args:
        data: Raw datagram payload.

    Returns:
        LocationReport: Parsed report stamped with the current time.

    Raises:
        ValueError: If the payload is not a valid position report.
    """
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise ValueError(f"report is not UTF-8: {e}") from e

    fields = [f for f in _FIELD_SEPARATOR.split(text) if f]
    if len(fields) not in (2, 3):
        raise ValueError(f"expected 2 or 3 fields, got {len(fields)}: {text!r}")

    try:
        values = [float(f) for f in fields]
    except ValueError as e:
        raise ValueError(f"non-numeric field in {text!r}") from e

    if not all(math.isfinite(v) for v in values):
        raise ValueError(f"non-finite value in {text!r}")

    latitude, longitude = values[0], values[1]
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"longitude out of range: {longitude}")

    altitude = values[2] if len(values) == 3 else math.nan
    return LocationReport(latitude, longitude, altitude)


def format_location_report(
    latitude_deg: float,
    longitude_deg: float,
    absolute_altitude_m: Optional[float] = None,
) -> bytes:
    """
    Encode a position report datagram.

    Args:
        latitude_deg: Latitude in degrees.
        longitude_deg: Longitude in degrees.
        absolute_altitude_m: Optional AMSL altitude in meters.

    Returns:
        bytes: Datagram payload.
    """
    text = f"{latitude_deg:.8f},{longitude_deg:.8f}"
    if absolute_altitude_m is not None:
        text += f",{absolute_altitude_m:.2f}"
    return text.encode("utf-8")


class _LocationProtocol(asyncio.DatagramProtocol):
    """Forwards datagram events to the owning LocationProvider."""

    def __init__(self, provider: "LocationProvider"):
        self._provider = provider

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self._provider._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Location provider socket error: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._provider._handle_closed(exc)


class LocationProvider:
    """
    Receives RCS position reports over UDP.

    Attributes:
        stats: Datagram counters.
        last_report: Most recent valid report (delivered or throttled).
    """

    LATITUDE_DEG_PER_METER = LATITUDE_DEG_PER_METER
    LONGITUDE_DEG_PER_METER = LONGITUDE_DEG_PER_METER

    def __init__(self):
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._callback: Optional[LocationCallback] = None
        self._interval = 0.0
        self._last_delivery: Optional[float] = None
        self.stats = ProviderStats()
        self.last_report: Optional[LocationReport] = None

    @property
    def is_running(self) -> bool:
        """True while the UDP endpoint is open."""
        return self._transport is not None

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        """Bound (host, port), or None when not running."""
        if self._transport is None:
            return None
        sockname = self._transport.get_extra_info("sockname")
        return sockname[0], sockname[1]

    async def request_location_updates(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        interval: float = 0.0,
        callback: Optional[LocationCallback] = None,
    ) -> None:
        """
        Bind the UDP endpoint and start delivering reports.

        Args:
            host: Address to bind.
            port: UDP port to bind (0 picks a free port).
            interval: Minimum seconds between callbacks (0 delivers every report).
            callback: Called as callback(latitude_deg, longitude_deg).

        Raises:
            RuntimeError: If the provider is already running.
            OSError: If the address cannot be bound.
        """
        if self._transport is not None:
            raise RuntimeError("Location provider already running")
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")

        self._callback = callback
        self._interval = interval
        self._last_delivery = None

        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _LocationProtocol(self),
            local_addr=(host, port),
        )
        self._transport = transport

        bound_host, bound_port = self.local_address
        logger.info(f"Location provider listening on udp://{bound_host}:{bound_port}")

    async def stop(self) -> None:
        """Close the UDP endpoint. Safe to call more than once."""
        transport = self._transport
        if transport is None:
            return
        transport.close()
        self._transport = None
        # Let connection_lost run before returning
        await asyncio.sleep(0)
        logger.info("Location provider stopped")

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.stats.received += 1

        try:
            report = parse_location_report(data)
        except ValueError as e:
            self.stats.malformed += 1
            logger.warning(f"Dropped malformed report from {addr[0]}:{addr[1]}: {e}")
            return

        self.last_report = report

        now = time.monotonic()
        if (
            self._interval > 0
            and self._last_delivery is not None
            and now - self._last_delivery < self._interval
        ):
            self.stats.throttled += 1
            return

        self._last_delivery = now
        self.stats.delivered += 1

        if self._callback is None:
            return
        try:
            self._callback(report.latitude_deg, report.longitude_deg)
        except Exception as e:
            logger.error(f"Location callback error: {e}")

    def _handle_closed(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.error(f"Location provider closed: {exc}")
        self._transport = None
