import random

import pytest

from personalization.core.keys import KeySpace
from personalization.recs.config import PolicyConfig
from personalization.services.audit import MemoryAuditSink
from personalization.services.engine import PersonalizationEngine
from personalization.services.queue import InlineTaskQueue
from personalization.store.in_memory import InMemoryStore
from tests.fixtures import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock.epoch)


@pytest.fixture
def keys():
    return KeySpace("test")


@pytest.fixture
def config():
    return PolicyConfig()


@pytest.fixture
def audit():
    return MemoryAuditSink()


@pytest.fixture
def engine(store, keys, clock, audit):
    return PersonalizationEngine(
        store,
        keys=keys,
        queue=InlineTaskQueue(),
        audit=audit,
        rng=random.Random(7),
        clock=clock,
        retry_min_s=0,
        retry_max_s=0,
    )
