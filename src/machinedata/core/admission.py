"""
Request admission: per-machine and global rate limiting.

Both limiters are fixed-window counters held in process memory. State does
not survive restarts and is not shared between instances.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Optional

import structlog
from fastapi import Request

from ..config import RateLimitSettings
from .exceptions import RateLimitError

logger = structlog.get_logger(__name__)

GLOBAL_KEY = "__global__"


@dataclass
class Window:
    """Request count for one key within the current window."""
    start: float
    count: int


class RateLimiter:
    """
    Fixed-window rate limiter keyed by arbitrary strings.

    Admits at most ``max_requests`` per ``window_seconds`` for each key.
    Expired windows are pruned lazily, at most once per window length.
    """

    def __init__(self, max_requests: int, window_seconds: int, name: str = "limiter") -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self.windows: Dict[str, Window] = {}
        self.lock = asyncio.Lock()
        self._last_prune = time.time()

    async def hit(self, key: str) -> bool:
        """
        Count a request against key.

        Returns True if admitted, False if the key is over its limit.
        """
        async with self.lock:
            now = time.time()
            self._prune(now)

            window = self.windows.get(key)
            if window is None or now - window.start >= self.window_seconds:
                window = Window(start=now, count=0)
                self.windows[key] = window

            if window.count >= self.max_requests:
                return False

            window.count += 1
            return True

    def _prune(self, now: float) -> None:
        if now - self._last_prune < self.window_seconds:
            return
        expired = [key for key, window in self.windows.items() if now - window.start >= self.window_seconds]
        for key in expired:
            del self.windows[key]
        self._last_prune = now
        if expired:
            logger.debug("Pruned expired rate limit windows", limiter=self.name, pruned=len(expired))

    def reset(self) -> None:
        self.windows.clear()


class AdmissionGate:
    """
    Owns the per-machine and global limiters for one application instance.
    """

    def __init__(self, settings: RateLimitSettings) -> None:
        self.machine_limiter = RateLimiter(
            max_requests=settings.machine_max_requests,
            window_seconds=settings.machine_window_seconds,
            name="machine",
        )
        self.global_limiter = RateLimiter(
            max_requests=settings.global_max_requests,
            window_seconds=settings.global_window_seconds,
            name="global",
        )
        logger.info(
            "Admission gate initialized",
            machine_limit=settings.machine_max_requests,
            machine_window_seconds=settings.machine_window_seconds,
            global_limit=settings.global_max_requests,
            global_window_seconds=settings.global_window_seconds,
        )

    async def check_global(self) -> None:
        """Raise RateLimitError if the service-wide limit is exhausted."""
        if not await self.global_limiter.hit(GLOBAL_KEY):
            retry_after = self.global_limiter.window_seconds
            logger.warning("Global rate limit exceeded", retry_after=retry_after)
            raise RateLimitError(
                message="Global rate limit exceeded. Try again in a minute.",
                retry_after=retry_after,
            )

    async def check_machine(self, machine_id: Optional[str], client_host: str) -> None:
        """
        Raise RateLimitError if this machine (or address) is over its limit.
        """
        key = machine_id or client_host
        if not await self.machine_limiter.hit(key):
            retry_after = self.machine_limiter.window_seconds
            logger.warning(
                "Machine rate limit exceeded",
                key=key,
                machine_id=machine_id,
                retry_after=retry_after,
            )
            raise RateLimitError(
                message=(
                    f"Rate limit exceeded. Maximum {self.machine_limiter.max_requests} request"
                    f" per {retry_after} seconds per machine."
                ),
                retry_after=retry_after,
                details={"machineId": machine_id or "unknown"},
            )


def client_address(request: Request) -> str:
    """Best-effort network address of the caller."""
    return request.client.host if request.client else "unknown"


async def enforce_global_rate_limit(request: Request) -> None:
    """
    Router dependency applying the global limit ahead of every API handler.
    """
    gate: Optional[AdmissionGate] = getattr(request.app.state, "admission", None)
    if gate is None:
        logger.warning("Admission gate not initialized")
        return
    await gate.check_global()
