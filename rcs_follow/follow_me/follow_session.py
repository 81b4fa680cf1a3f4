#!/usr/bin/env python3
"""
follow_session.py - Follow Session Lifetime and Stop Sources

Tracks why the follow phase ends. Several sources can end it:
- Time limit: the follow phase has run for max_follow_seconds
- Flight mode: the pilot switched the drone out of follow-me
- Provider: the location provider stopped receiving
- User interrupt: Ctrl+C / SIGTERM
- HTTP API: POST /stop on the optional control server

The first stop request wins; later ones are ignored so the recorded reason
is the one that actually ended the session.

Usage:
    from rcs_follow.follow_me.follow_session import FollowSession, StopReason

    session = FollowSession(max_follow_seconds=60)
    session.begin()
    reason = await session.wait(is_provider_running=lambda: provider.is_running)

    # Control via HTTP (when enabled):
    # curl http://localhost:8081/status
    # curl -X POST http://localhost:8081/stop
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from aiohttp import web

from rcs_follow.common.drone_helpers import is_shutdown_requested
from rcs_follow.follow_me.config import CONTROL_SERVER_CONFIG, ControlServerConfig

logger = logging.getLogger(__name__)


class StopReason(Enum):
    """Source that ended the follow session."""

    NONE = "none"
    TIME_LIMIT = "time_limit"
    FLIGHT_MODE_CHANGED = "flight_mode_changed"
    PROVIDER_STOPPED = "provider_stopped"
    USER_INTERRUPT = "user_interrupt"
    HTTP_API = "http_api"


@dataclass
class SessionState:
    """
    Current session state.

    Attributes:
        started_at: Monotonic start time (0 before begin()).
        stopped_at: Monotonic stop time (0 while running).
        reason: Why the session stopped.
    """

    started_at: float = 0.0
    stopped_at: float = 0.0
    reason: StopReason = StopReason.NONE


class FollowSession:
    """
    Lifetime of one follow phase.

    Attributes:
        max_follow_seconds: Time limit for the session.
        config: HTTP control server configuration.
        state: Current session state.
    """

    def __init__(
        self,
        max_follow_seconds: float = 60.0,
        config: Optional[ControlServerConfig] = None,
    ):
        self.max_follow_seconds = max_follow_seconds
        self.config = config or CONTROL_SERVER_CONFIG
        self.state = SessionState()

        self._stop_event = asyncio.Event()
        self._status_sources: Dict[str, Callable[[], Dict[str, Any]]] = {}
        self._http_runner: Optional[web.AppRunner] = None

    @property
    def stop_requested(self) -> bool:
        return self.state.reason != StopReason.NONE

    @property
    def reason(self) -> StopReason:
        return self.state.reason

    @property
    def elapsed(self) -> float:
        """Seconds since begin(), frozen once stopped."""
        if not self.state.started_at:
            return 0.0
        end = self.state.stopped_at or time.monotonic()
        return end - self.state.started_at

    def begin(self) -> None:
        """Start the session clock."""
        self.state = SessionState(started_at=time.monotonic())
        self._stop_event.clear()
        logger.debug("Follow session started (limit %.0fs)", self.max_follow_seconds)

    def request_stop(self, reason: StopReason) -> bool:
        """
        Ask the session to end.

        Safe to call from synchronous callbacks.

        Args:
            reason: Source of the request.

        Returns:
            bool: True if this request ended the session, False if it had
            already been stopped.
        """
        if reason == StopReason.NONE:
            raise ValueError("StopReason.NONE cannot stop a session")
        if self.stop_requested:
            return False

        self.state.reason = reason
        self.state.stopped_at = time.monotonic()
        self._stop_event.set()
        logger.info("Follow session ending (reason: %s)", reason.value)
        return True

    async def wait(
        self,
        poll_interval: float = 1.0,
        is_provider_running: Callable[[], bool] = lambda: True,
    ) -> StopReason:
        """
        Block until a stop source fires.

        Args:
            poll_interval: Seconds between checks of the polled sources.
            is_provider_running: Returns False once the location provider stops.

        Returns:
            StopReason: Why the session ended.
        """
        while not self.stop_requested:
            if not is_provider_running():
                self.request_stop(StopReason.PROVIDER_STOPPED)
            elif self.elapsed >= self.max_follow_seconds:
                self.request_stop(StopReason.TIME_LIMIT)
            elif is_shutdown_requested():
                self.request_stop(StopReason.USER_INTERRUPT)
            else:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass

        return self.state.reason

    def add_status_source(self, name: str, source: Callable[[], Dict[str, Any]]) -> None:
        """Include source() under `name` in get_status()."""
        self._status_sources[name] = source

    def get_status(self) -> Dict[str, Any]:
        """
        Get current session status.

        Returns:
            dict: Session state plus every registered status source.
        """
        status = {
            "running": bool(self.state.started_at) and not self.stop_requested,
            "reason": self.state.reason.value,
            "elapsed_s": round(self.elapsed, 2),
            "max_follow_seconds": self.max_follow_seconds,
        }
        for name, source in self._status_sources.items():
            try:
                status[name] = source()
            except Exception as e:
                logger.warning("Status source '%s' error: %s", name, e)
                status[name] = None
        return status

    # -------------------------------------------------------------------------
    # HTTP Server
    # -------------------------------------------------------------------------

    def create_app(self) -> web.Application:
        """Build the aiohttp application for the control server."""
        app = web.Application()
        app.router.add_get("/status", self._handle_status)
        app.router.add_post("/stop", self._handle_stop)
        return app

    async def start_http_server(self) -> None:
        """
        Start the HTTP control server if enabled.

        Raises:
            OSError: If the host/port cannot be bound. The server is left
            stopped.
        """
        if not self.config.enable_http or self._http_runner is not None:
            return

        runner = web.AppRunner(self.create_app())
        await runner.setup()

        site = web.TCPSite(
            runner,
            self.config.http_host,
            self.config.http_port,
        )
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._http_runner = runner

        logger.info(
            "HTTP control server started on http://%s:%d",
            self.config.http_host,
            self.config.http_port,
        )

    async def stop_http_server(self) -> None:
        """Stop the HTTP control server."""
        if self._http_runner:
            await self._http_runner.cleanup()
            self._http_runner = None
            logger.info("HTTP control server stopped")

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Handle GET /status endpoint."""
        return web.json_response(self.get_status())

    async def _handle_stop(self, request: web.Request) -> web.Response:
        """Handle POST /stop endpoint."""
        changed = self.request_stop(StopReason.HTTP_API)
        return web.json_response({
            "success": True,
            "changed": changed,
            "reason": self.state.reason.value,
        })
