import asyncio

import pytest

from chaintree.aggregator import LocalAggregator
from chaintree.pubsub import TopicBus
from chaintree.store import MemoryBlockStore
from chaintree.wallet import Wallet


@pytest.fixture
def run():
    def _run(coro):
        return asyncio.run(coro)

    return _run


@pytest.fixture
def wallet():
    return Wallet.create()


@pytest.fixture
def make_aggregator():
    def _make(bus=None):
        return LocalAggregator(MemoryBlockStore(), bus=bus or TopicBus())

    return _make
