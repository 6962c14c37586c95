"""Shared fixtures: an in-memory store, a settable clock and a wired service."""

from datetime import datetime

import pytest

from careplan.adapters.key_lock import KeyLock
from careplan.adapters.kv_store import InMemoryKeyValueStore
from careplan.config import AppConfig
from careplan.services.care_service import CareService
from careplan.services.storage import SafeStorage, StorageKeys


class FixedClock:
    """Callable clock that tests move by assigning ``now``."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 6, 15, 7, 0))


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def keys() -> StorageKeys:
    return StorageKeys("careplan")


@pytest.fixture
def storage(store: InMemoryKeyValueStore) -> SafeStorage:
    return SafeStorage(store)


@pytest.fixture
def locks() -> KeyLock:
    return KeyLock()


@pytest.fixture
def service(store: InMemoryKeyValueStore, clock: FixedClock) -> CareService:
    return CareService(AppConfig(), store=store, clock=clock)
