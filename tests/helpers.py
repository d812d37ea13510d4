"""Test doubles shared across test modules."""

from collections.abc import Callable
from typing import Any

import httpx

from eregs.services.fetcher import ResilientFetcher

BASE_URL = "https://api-test.eregulations.org"


class Clock:
    """Controllable replacement for the cache's wall clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class Recorder:
    """httpx MockTransport handler that records requests and replays outcomes.

    Outcomes are consumed in order (the last one repeats). An exception is
    raised, an httpx.Response is returned as is, anything else is sent as JSON.
    """

    def __init__(self, outcomes: list[Any] | Callable[[httpx.Request], Any]):
        self.outcomes = outcomes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if callable(self.outcomes):
            outcome = self.outcomes(request)
        else:
            outcome = self.outcomes[min(len(self.requests), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            # Fresh copy, outcomes may be replayed
            return httpx.Response(
                outcome.status_code, headers=outcome.headers, content=outcome.content
            )
        return httpx.Response(200, json=outcome)

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_fetcher(recorder: Recorder, **kwargs: Any) -> ResilientFetcher:
    kwargs.setdefault("max_retries", 1)
    kwargs.setdefault("retry_delay", 0)
    return ResilientFetcher(transport=httpx.MockTransport(recorder), **kwargs)
