from __future__ import annotations

import pytest

from copilot.core.storage import MemoryResumptionStore
from tests.utils import FakeConnector, Recorder


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def memory_store() -> MemoryResumptionStore:
    return MemoryResumptionStore()
