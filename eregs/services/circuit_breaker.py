"""
CircuitBreaker - Stops hammering an eRegulations host that keeps failing.

States:
- CLOSED: fetches pass through
- OPEN: the host is failing, fetches fail fast with CircuitOpenError
- HALF_OPEN: one probe fetch is let through to test recovery

One failure is one whole fetch (all retries exhausted), not one attempt.
Upstream HTTP errors such as 404 mean the host answered, so they count as
successes.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from loguru import logger


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Thresholds shared by every host breaker of a registry."""

    failure_threshold: int = 3  # Failed fetches in a row before opening
    reset_timeout: timedelta = timedelta(seconds=30)  # OPEN -> HALF_OPEN delay


class CircuitBreaker:
    """
    Breaker for one host.

    Usage:
        breaker = registry.get("api-tanzania.eregulations.org")

        if not breaker.can_request():
            raise CircuitOpenError(breaker.host, breaker.get_time_until_reset() or 0)

        try:
            response = await send()
        except TransientNetworkError:
            breaker.record_failure()
            raise
        breaker.record_success()
    """

    def __init__(self, host: str, config: CircuitBreakerConfig | None = None):
        self.host = host
        self.config = config or CircuitBreakerConfig()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None  # time.monotonic()
        self._probing = False

    @property
    def state(self) -> CircuitState:
        """Current state. An OPEN breaker turns HALF_OPEN once its timeout elapsed."""
        if self._state == CircuitState.OPEN and self.get_time_until_reset() == 0:
            self._state = CircuitState.HALF_OPEN
            self._probing = False
            logger.info(f"Circuit for {self.host} is HALF_OPEN, next fetch probes")
        return self._state

    def can_request(self) -> bool:
        """Whether a fetch may go out. In HALF_OPEN this claims the probe slot."""
        state = self.state
        if state == CircuitState.HALF_OPEN and not self._probing:
            self._probing = True
            return True
        return state == CircuitState.CLOSED

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit for {self.host} CLOSED, host recovered")
        self._close()

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._state == CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.config.failure_threshold
        ):
            self._open()

    def abandon(self) -> None:
        """Give back the probe slot of a fetch that was cancelled."""
        self._probing = False

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._probing = False
        logger.warning(
            f"Circuit for {self.host} OPEN after "
            f"{self._consecutive_failures} failed fetches"
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._probing = False

    def get_time_until_reset(self) -> float | None:
        """Seconds left before HALF_OPEN, None unless OPEN."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.reset_timeout.total_seconds() - elapsed)

    def get_status(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "state": self.state.value,
            "failure_count": self._consecutive_failures,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """Lazily created breakers keyed by host."""

    def __init__(self, default_config: CircuitBreakerConfig | None = None):
        self._config = default_config or CircuitBreakerConfig()
        self._by_host: dict[str, CircuitBreaker] = {}

    def get(self, host: str) -> CircuitBreaker:
        breaker = self._by_host.get(host)
        if breaker is None:
            breaker = self._by_host[host] = CircuitBreaker(host, self._config)
        return breaker

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {host: breaker.get_status() for host, breaker in self._by_host.items()}

    def get_open_circuits(self) -> list[str]:
        return [
            host
            for host, breaker in self._by_host.items()
            if breaker.state == CircuitState.OPEN
        ]
