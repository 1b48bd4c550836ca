import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Tests never talk to a real Redis or real providers
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("CLAY_WEBHOOK_URL", "")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

import pytest

from integrations.cache import Cache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return Cache(redis_url=None, clock=clock)


@pytest.fixture
def answers():
    return {
        "Company Name": "Acme",
        "Email Address": "a@acme.com",
        "Company Size": "",
        "Number of Seats": "",
        "Computers": "",
        "Website": "",
        "Email Calendar": "",
        "Questions": "",
    }
