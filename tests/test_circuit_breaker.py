"""Tests for the per-host circuit breaker."""

from datetime import timedelta

from eregs.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


def make_breaker(threshold: int = 2, reset: timedelta = timedelta(hours=1)):
    return CircuitBreaker(
        "api.example.org",
        CircuitBreakerConfig(failure_threshold=threshold, reset_timeout=reset),
    )


class TestCircuitBreaker:
    def test_opens_at_threshold(self):
        breaker = make_breaker()

        breaker.record_failure()
        assert breaker.can_request()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_request()
        assert breaker.get_time_until_reset() > 0

    def test_success_resets_failure_count(self):
        breaker = make_breaker()

        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_allows_single_probe(self):
        breaker = make_breaker(threshold=1, reset=timedelta(0))
        breaker.record_failure()

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_request()
        assert not breaker.can_request()

    def test_failed_probe_reopens(self):
        breaker = make_breaker(threshold=1, reset=timedelta(0))
        breaker.record_failure()
        breaker.can_request()

        breaker.record_failure()

        assert breaker._state == CircuitState.OPEN

    def test_abandoned_probe_frees_slot(self):
        breaker = make_breaker(threshold=1, reset=timedelta(0))
        breaker.record_failure()
        breaker.can_request()

        breaker.abandon()

        assert breaker.can_request()

    def test_status_reports_state(self):
        breaker = make_breaker()
        breaker.record_failure()

        status = breaker.get_status()

        assert status["state"] == "CLOSED"
        assert status["failure_count"] == 1
        assert status["time_until_reset"] is None
