"""
Rate Limit Service - Per-(caller, action) window accounting.

Consulted before every externally billed operation. Each (caller, action)
key gets a fixed window: the first call opens it, calls are counted until
the limit is reached, and the window resets after window_seconds.

Counters live on the instance (not in module state) and are guarded by an
asyncio.Lock, so every in-flight recipient in a batch sees an atomic
check-and-increment. The clock is injectable for deterministic tests.

Usage:
    from videoreach.services.rate_limit_service import RateLimitService, RateLimitAction

    limiter = RateLimitService()
    await limiter.enforce(RateLimitAction.VIDEO_GENERATION, caller=user_id)  # Raises RateLimitExceeded
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from .models import RateLimitResult

logger = logging.getLogger(__name__)


class RateLimitAction:
    """Rate limited action constants."""
    AI_GENERATION = "ai-generation"
    VIDEO_GENERATION = "video-generation"
    EMAIL_SEND = "email-send"
    CAMPAIGN_CREATE = "campaign-create"
    API_CALL = "api-call"


# action -> (limit, window_seconds)
DEFAULT_LIMITS: Dict[str, Tuple[int, int]] = {
    RateLimitAction.AI_GENERATION: (100, 3600),
    RateLimitAction.VIDEO_GENERATION: (20, 3600),
    RateLimitAction.EMAIL_SEND: (1000, 3600),
    RateLimitAction.CAMPAIGN_CREATE: (10, 3600),
    RateLimitAction.API_CALL: (1000, 60),
}

FALLBACK_LIMIT = (100, 3600)


class RateLimitExceeded(Exception):
    """Raised when a caller exceeds the limit for an action."""

    def __init__(self, action: str, limit: int, window_seconds: int, reset_at: datetime, retry_after_seconds: float):
        self.action = action
        self.limit = limit
        self.window_seconds = window_seconds
        self.reset_at = reset_at
        self.retry_after_seconds = retry_after_seconds

        wait_minutes = max(1, math.ceil(retry_after_seconds / 60))
        window_minutes = max(1, window_seconds // 60)
        super().__init__(
            f"Rate limit exceeded for {action}. "
            f"Limit: {limit} requests per {window_minutes} minutes. "
            f"Try again in {wait_minutes} minute{'s' if wait_minutes > 1 else ''}."
        )


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimitService:
    """
    In-process fixed-window rate limiter keyed by (caller, action).

    Limits default to DEFAULT_LIMITS; pass overrides to the constructor or
    custom_limit/custom_window per call for actions without a default.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, Tuple[int, int]]] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize RateLimitService.

        Args:
            limits: Optional per-action (limit, window_seconds) overrides
            clock: Callable returning epoch seconds
        """
        self._limits = {**DEFAULT_LIMITS, **(limits or {})}
        self._clock = clock
        self._windows: Dict[Tuple[str, str], _Window] = {}
        self._lock = asyncio.Lock()

    def limit_for(
        self,
        action: str,
        custom_limit: Optional[int] = None,
        custom_window: Optional[int] = None
    ) -> Tuple[int, int]:
        """Resolve (limit, window_seconds) for an action."""
        if action in self._limits:
            return self._limits[action]
        return (custom_limit or FALLBACK_LIMIT[0], custom_window or FALLBACK_LIMIT[1])

    async def check(
        self,
        action: str,
        caller: str = "system",
        custom_limit: Optional[int] = None,
        custom_window: Optional[int] = None
    ) -> RateLimitResult:
        """
        Count one call against (caller, action) and report whether it is allowed.

        Args:
            action: Action key (use RateLimitAction constants)
            caller: User or system identity the limit applies to
            custom_limit: Limit for actions without a configured default
            custom_window: Window (seconds) for actions without a configured default

        Returns:
            RateLimitResult with allowed, remaining and reset_at
        """
        limit, window_seconds = self.limit_for(action, custom_limit, custom_window)
        key = (caller, action)

        async with self._lock:
            now = self._clock()
            window = self._windows.get(key)

            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + window_seconds)
                self._windows[key] = window

            if window.count >= limit:
                allowed = False
                remaining = 0
            else:
                window.count += 1
                allowed = True
                remaining = limit - window.count

            reset_at = window.reset_at

        if not allowed:
            logger.debug(f"Rate limit denied {action} for {caller}")

        return RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_at=datetime.fromtimestamp(reset_at, tz=timezone.utc),
            limit=limit,
            window_seconds=window_seconds,
        )

    async def enforce(
        self,
        action: str,
        caller: str = "system",
        custom_limit: Optional[int] = None,
        custom_window: Optional[int] = None
    ) -> RateLimitResult:
        """
        Check a limit and raise if the call is not allowed.

        Raises:
            RateLimitExceeded: With a human-readable wait estimate
        """
        result = await self.check(action, caller, custom_limit, custom_window)
        if not result.allowed:
            retry_after = max(0.0, result.reset_at.timestamp() - self._clock())
            raise RateLimitExceeded(
                action=action,
                limit=result.limit,
                window_seconds=result.window_seconds,
                reset_at=result.reset_at,
                retry_after_seconds=retry_after,
            )
        return result

    def remaining(self, action: str, caller: str = "system") -> Optional[int]:
        """Remaining calls in the current window, or None if no window is open."""
        window = self._windows.get((caller, action))
        if window is None or window.reset_at <= self._clock():
            return None
        limit, _ = self.limit_for(action)
        return max(0, limit - window.count)

    async def purge_expired(self) -> int:
        """Drop closed windows. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, w in self._windows.items() if w.reset_at <= now]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        """Forget every window."""
        self._windows.clear()
