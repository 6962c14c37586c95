"""SafeStorage recovery from bad data and write failure reporting."""

import pytest

from careplan.adapters.kv_store import InMemoryKeyValueStore
from careplan.domain.plan_config import CarePlanConfig
from careplan.exceptions import StorageError
from careplan.services.storage import SafeStorage, StorageKeys


class FailingStore(InMemoryKeyValueStore):
    """Store whose writes always fail the way a full disk would."""

    async def set(self, key: str, value: str) -> None:
        raise StorageError("disk full", key=key)


class TestStorageKeys:
    def test_key_layout(self) -> None:
        keys = StorageKeys("careplan")
        assert keys.daily_instances("p1", "2025-06-15") == "careplan_instances_v1:p1:2025-06-15"
        assert keys.logs("p1", "2025-06-15") == "careplan_logs_v1:p1:2025-06-15"
        assert keys.config("p1") == "careplan_config_v1:p1"

    def test_patient_prefixes_are_scoped(self) -> None:
        keys = StorageKeys("careplan")
        assert all(prefix.endswith(":p1:") for prefix in keys.patient_prefixes("p1"))
        assert all(key.endswith(":p1") for key in keys.patient_keys("p1"))


class TestSafeStorageReads:
    async def test_missing_key_returns_default(self, storage: SafeStorage) -> None:
        assert await storage.get_model("nope", CarePlanConfig) is None
        assert await storage.get_models("nope", CarePlanConfig) == []

    async def test_corrupt_json_returns_default(self, store: InMemoryKeyValueStore) -> None:
        await store.set("k", "{not json")
        storage = SafeStorage(store)
        assert await storage.get_model("k", CarePlanConfig) is None
        assert await storage.get_strings("k") == []

    async def test_schema_mismatch_returns_default(self, store: InMemoryKeyValueStore) -> None:
        await store.set("k", '{"unexpected": true}')
        assert await SafeStorage(store).get_model("k", CarePlanConfig) is None

    async def test_model_round_trip(self, storage: SafeStorage) -> None:
        config = CarePlanConfig(patient_id="p1")
        await storage.set_or_raise("k", config)
        assert await storage.get_model("k", CarePlanConfig) == config

    async def test_model_list_round_trip(self, storage: SafeStorage) -> None:
        configs = [CarePlanConfig(patient_id="p1"), CarePlanConfig(patient_id="p2")]
        await storage.set_or_raise("k", configs)
        assert await storage.get_models("k", CarePlanConfig) == configs


class TestSafeStorageWrites:
    async def test_failed_write_returns_err(self) -> None:
        result = await SafeStorage(FailingStore()).set_json("k", ["a"])
        assert result.is_err()
        assert result.error is not None
        assert result.error.key == "k"

    async def test_set_or_raise_raises_storage_error(self) -> None:
        with pytest.raises(StorageError, match="disk full"):
            await SafeStorage(FailingStore()).set_or_raise("k", ["a"])

    async def test_unserializable_value_returns_err(self, storage: SafeStorage) -> None:
        result = await storage.set_json("k", {"when": object()})
        assert result.is_err()
        assert await storage.store.get("k") is None
