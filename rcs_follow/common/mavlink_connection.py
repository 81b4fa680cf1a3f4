#!/usr/bin/env python3
"""
mavlink_connection.py - MAVLink Connection Helper Utility

Builds the MAVSDK connection string for the follow-me demo, either from a raw
MAVSDK URL or from structured TCP/UDP/UART settings.

Usage:
    from rcs_follow.common.mavlink_connection import ConnectionConfig

    config = ConnectionConfig.from_env()
    conn_str = config.get_connection_string()

    # Raw URL, as accepted by MAVSDK
    config = ConnectionConfig.from_args(connection_url="udp://:14540")

Environment Variables (overridden by command line options):
    RCS_CONNECTION_URL   - Raw MAVSDK connection URL (wins over everything)
    RCS_CONNECTION_TYPE  - tcp (default), udp or uart
    RCS_TCP_HOST / RCS_TCP_PORT        - default localhost:5760
    RCS_UDP_HOST / RCS_UDP_PORT        - default 0.0.0.0:14540
    RCS_UART_DEVICE / RCS_UART_BAUD    - default /dev/ttyUSB0 @ 57600
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ConnectionType(Enum):
    """MAVLink link types."""
    UART = "uart"
    UDP = "udp"
    TCP = "tcp"


DEFAULTS = {
    "connection_type": "tcp",
    "uart_device": "/dev/ttyUSB0",
    "uart_baud": 57600,
    "udp_host": "0.0.0.0",
    "udp_port": 14540,
    "tcp_host": "localhost",
    "tcp_port": 5760,
}

# Structured field -> (environment variable, type)
_ENV_FIELDS = {
    "uart_device": ("RCS_UART_DEVICE", str),
    "uart_baud": ("RCS_UART_BAUD", int),
    "udp_host": ("RCS_UDP_HOST", str),
    "udp_port": ("RCS_UDP_PORT", int),
    "tcp_host": ("RCS_TCP_HOST", str),
    "tcp_port": ("RCS_TCP_PORT", int),
}

# URL schemes understood by mavsdk_server
URL_SCHEMES = ("tcp://", "tcpout://", "tcpin://", "udp://", "udpin://", "udpout://", "serial://")


def is_valid_connection_url(url: str) -> bool:
    """
    Check that a raw connection URL uses a scheme MAVSDK understands.

    Args:
        url: Connection URL such as "udp://:14540" or "serial:///dev/ttyUSB0:57600".

    Returns:
        bool: True if the URL has a known scheme and a non-empty address part.
    """
    if not url:
        return False
    for scheme in URL_SCHEMES:
        if url.startswith(scheme):
            return len(url) > len(scheme)
    return False


def _parse_type(value: str) -> Optional[ConnectionType]:
    try:
        return ConnectionType(value.lower())
    except ValueError:
        logger.warning("Unknown connection type '%s'", value)
        return None


@dataclass
class ConnectionConfig:
    """
    Where the autopilot is reached.

    Attributes:
        connection_type: Link used when no raw URL is given.
        connection_url: Raw MAVSDK URL. When set, it is used as-is.
        uart_device, uart_baud: Serial link settings.
        udp_host, udp_port: UDP listen address.
        tcp_host, tcp_port: TCP endpoint.
    """
    connection_type: ConnectionType
    connection_url: Optional[str] = None
    uart_device: str = DEFAULTS["uart_device"]
    uart_baud: int = DEFAULTS["uart_baud"]
    udp_host: str = DEFAULTS["udp_host"]
    udp_port: int = DEFAULTS["udp_port"]
    tcp_host: str = DEFAULTS["tcp_host"]
    tcp_port: int = DEFAULTS["tcp_port"]

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        """Configuration from RCS_* environment variables and defaults."""
        conn_type = _parse_type(
            os.environ.get("RCS_CONNECTION_TYPE", DEFAULTS["connection_type"])
        ) or ConnectionType.TCP

        fields = {}
        for name, (env_var, cast) in _ENV_FIELDS.items():
            value = os.environ.get(env_var)
            if value is not None:
                fields[name] = cast(value)

        return cls(
            connection_type=conn_type,
            connection_url=os.environ.get("RCS_CONNECTION_URL") or None,
            **fields,
        )

    @classmethod
    def from_args(
        cls,
        connection_type: str = None,
        connection_url: str = None,
        **overrides,
    ) -> "ConnectionConfig":
        """
        Configuration from explicit values, falling back to from_env().

        Args:
            connection_type: "uart", "udp" or "tcp".
            connection_url: Raw MAVSDK connection URL.
            **overrides: Any structured field (uart_device, tcp_port, ...).
                None values are ignored.

        Returns:
            ConnectionConfig: Configuration with the overrides applied.
        """
        config = cls.from_env()

        if connection_type is not None:
            config.connection_type = _parse_type(connection_type) or config.connection_type
        if connection_url is not None:
            config.connection_url = connection_url

        for name, value in overrides.items():
            if name not in _ENV_FIELDS:
                raise TypeError(f"Unknown connection option: {name}")
            if value is not None:
                setattr(config, name, value)

        return config

    @classmethod
    def from_namespace(cls, args: argparse.Namespace) -> "ConnectionConfig":
        """Build configuration from arguments added by add_connection_arguments()."""
        return cls.from_args(
            connection_type=args.connection_type,
            connection_url=args.connection_url,
            **{name: getattr(args, name) for name in _ENV_FIELDS},
        )

    def get_connection_string(self) -> str:
        """MAVSDK connection string for this configuration."""
        if self.connection_url:
            return self.connection_url
        if self.connection_type == ConnectionType.UART:
            return f"serial://{self.uart_device}:{self.uart_baud}"
        if self.connection_type == ConnectionType.TCP:
            return f"tcp://{self.tcp_host}:{self.tcp_port}"
        # udpin:// listens for the autopilot (udp:// is deprecated)
        return f"udpin://{self.udp_host}:{self.udp_port}"

    def __str__(self) -> str:
        if self.connection_url:
            return f"URL: {self.connection_url}"
        if self.connection_type == ConnectionType.UART:
            return f"UART: {self.uart_device} @ {self.uart_baud} baud"
        if self.connection_type == ConnectionType.TCP:
            return f"TCP: {self.tcp_host}:{self.tcp_port}"
        return f"UDP: {self.udp_host}:{self.udp_port}"


def validate_config(config: ConnectionConfig) -> dict:
    """
    Check a configuration before connecting.

    Args:
        config: ConnectionConfig to validate.

    Returns:
        dict: 'valid' bool plus 'errors' and 'warnings' lists.
    """
    errors = []

    if config.connection_url:
        if not is_valid_connection_url(config.connection_url):
            errors.append(
                f"Unsupported connection URL: {config.connection_url}. "
                f"Expected one of: {', '.join(URL_SCHEMES)}"
            )
    elif config.connection_type == ConnectionType.UART:
        if not os.path.exists(config.uart_device):
            errors.append(f"Serial device not found: {config.uart_device}")
    else:
        kind = config.connection_type.value.upper()
        host, port = (
            (config.tcp_host, config.tcp_port)
            if config.connection_type == ConnectionType.TCP
            else (config.udp_host, config.udp_port)
        )
        if not host:
            errors.append(f"{kind} host not specified")
        if not 1 <= port <= 65535:
            errors.append(f"Invalid {kind} port number: {port}")

    return {"valid": not errors, "errors": errors, "warnings": []}


def add_connection_arguments(parser) -> None:
    """
    Add connection options to an argparse parser.

    Every option defaults to None so that from_namespace() can tell an
    explicit value from the RCS_* environment fallback.

    Args:
        parser: argparse.ArgumentParser to add arguments to.
    """
    group = parser.add_argument_group(
        "Connection Options",
        "Unset options fall back to the RCS_* environment variables.",
    )
    group.add_argument(
        "--connection-url", "-u",
        help="Raw MAVSDK URL, e.g. udp://:14540 (overrides --connection-type)",
    )
    group.add_argument(
        "--connection-type", "-c",
        choices=[t.value for t in ConnectionType],
        help=f"Link type (default: {DEFAULTS['connection_type']})",
    )
    group.add_argument("--uart-device", help="Serial device path")
    group.add_argument("--uart-baud", type=int, help="Serial baud rate")
    group.add_argument("--udp-host", help="UDP listen address")
    group.add_argument("--udp-port", type=int, help="UDP port")
    group.add_argument("--tcp-host", help="TCP host")
    group.add_argument("--tcp-port", type=int, help="TCP port")


def print_connection_info(config: ConnectionConfig) -> None:
    """Print the effective connection for the operator."""
    print("=" * 50)
    print("MAVLink Connection")
    print("=" * 50)
    print(f"  {config}")
    print(f"  Connection String: {config.get_connection_string()}")
    print("=" * 50)


def main():
    """CLI for checking connection configuration."""
    parser = argparse.ArgumentParser(
        description="Show and validate the MAVLink connection the follow-me demo would use"
    )
    add_connection_arguments(parser)
    args = parser.parse_args()

    config = ConnectionConfig.from_namespace(args)
    print_connection_info(config)

    result = validate_config(config)
    for error in result["errors"]:
        print(f"  ✗ {error}")

    sys.exit(0 if result["valid"] else 1)


if __name__ == "__main__":
    main()
