"""
rcs_follow - Follow-Me Demo for MAVSDK

Flies a single PX4 drone in follow-me mode, following target positions
streamed by a remote control station (RCS) over UDP.

Packages:
    rcs_follow/common/     - Shared MAVSDK helpers
        drone_helpers.py      - Connect, health, arm, takeoff, land steps
        telemetry_manager.py  - Cached telemetry for synchronous readers
        mavlink_connection.py - Connection configuration (TCP/UDP/UART/URL)
    rcs_follow/follow_me/  - The follow-me demo
        follow_me_app.py      - Main sequence and CLI
        location_provider.py  - UDP receiver for RCS positions
        position_filter.py    - Target sanity check
        follow_session.py     - Session stop sources and HTTP control
        location_simulator.py - Simulated RCS

Connection Types:
    - Raw URL: rcs-follow-me udp://:14540
    - TCP (default): --tcp-host HOST --tcp-port PORT
    - UDP: -c udp --udp-host HOST --udp-port PORT
    - UART: -c uart --uart-device DEVICE --uart-baud BAUD
"""

__version__ = "0.1.0"
