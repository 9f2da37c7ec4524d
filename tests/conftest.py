"""Shared fixtures: in-process Redis and the default tier policies."""

import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from convoroute.config.tiers import PolicySet, default_tiers


class WordTokenizer:
    """Counts whitespace-separated words; predictable budgets in tests."""

    def count(self, text: str) -> int:
        return len(text.split())


@pytest.fixture
def redis():
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def policies():
    return PolicySet(default_tiers())


@pytest.fixture
def tokenizer():
    return WordTokenizer()
