"""
Inactivity monitor.

Forces a logout after a period without user activity. Once the idle timer
fires, a warning countdown runs; during the countdown only ``stay()`` or
``logout_now()`` change the outcome.
"""

import asyncio
from typing import Callable, Optional

from shared.logging import get_logger

LOGOUT_INACTIVITY = "inactivity"
LOGOUT_TOKEN_EXPIRED = "token_expired"
LOGOUT_USER = "user"


class InactivityMonitor:
    """asyncio timer policy for idle logout with a warning window."""

    def __init__(
        self,
        timeout_seconds: float,
        warning_seconds: float = 60,
        on_warning: Optional[Callable[[float], None]] = None,
        on_tick: Optional[Callable[[float], None]] = None,
        on_logout: Optional[Callable[[str], None]] = None,
        token_expired: Optional[Callable[[], bool]] = None,
        tick_interval: float = 1.0,
    ):
        self.timeout_seconds = timeout_seconds
        self.warning_seconds = min(warning_seconds, timeout_seconds)
        self.on_warning = on_warning
        self.on_tick = on_tick
        self.on_logout = on_logout
        self.token_expired = token_expired
        self.tick_interval = tick_interval
        self.logger = get_logger("oauth.session.inactivity")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._countdown_handle: Optional[asyncio.TimerHandle] = None
        self._deadline: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._loop is not None

    @property
    def in_warning(self) -> bool:
        return self._deadline is not None

    def start(self) -> None:
        """Arm the idle timer. Must be called from a running event loop."""
        self._loop = asyncio.get_running_loop()
        self._arm_idle()

    def record_activity(self) -> None:
        """Re-arm the idle timer; ignored while the warning countdown runs."""
        if not self.is_running or self.in_warning:
            return
        self._arm_idle()

    def stay(self) -> None:
        """User chose to stay logged in from the warning."""
        if not self.is_running:
            return
        if self.token_expired is not None and self.token_expired():
            self._logout(LOGOUT_TOKEN_EXPIRED)
            return
        self._cancel_countdown()
        self._arm_idle()

    def logout_now(self) -> None:
        self._logout(LOGOUT_USER)

    def stop(self) -> None:
        """Cancel every timer."""
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None
        self._cancel_countdown()
        self._loop = None

    def _arm_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        delay = max(0.0, self.timeout_seconds - self.warning_seconds)
        self._idle_handle = self._loop.call_later(delay, self._on_idle)

    def _on_idle(self) -> None:
        self._idle_handle = None
        self._deadline = self._loop.time() + self.warning_seconds
        self.logger.info("Inactivity warning", remaining_seconds=self.warning_seconds)
        if self.on_warning:
            self.on_warning(self.warning_seconds)
        self._schedule_tick()

    def _schedule_tick(self) -> None:
        remaining = self._deadline - self._loop.time()
        self._countdown_handle = self._loop.call_later(
            max(0.0, min(self.tick_interval, remaining)),
            self._on_tick
        )

    def _on_tick(self) -> None:
        self._countdown_handle = None
        remaining = self._deadline - self._loop.time()
        if remaining <= 0:
            self._logout(LOGOUT_INACTIVITY)
            return
        if self.on_tick:
            self.on_tick(remaining)
        self._schedule_tick()

    def _cancel_countdown(self) -> None:
        if self._countdown_handle is not None:
            self._countdown_handle.cancel()
            self._countdown_handle = None
        self._deadline = None

    def _logout(self, reason: str) -> None:
        self.stop()
        self.logger.info("Forced logout", reason=reason)
        if self.on_logout:
            self.on_logout(reason)
