"""
JSON persistence over the key-value store.

Corrupt or schema-incompatible values are logged and replaced by the caller's
default so that one bad blob never takes the dashboard down. Writes report
failure through ``Result`` and the repositories decide whether to raise.
"""

import json
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from careplan.adapters.kv_store import KeyValueStore
from careplan.exceptions import StorageError
from careplan.result import Result

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
T = TypeVar("T")


class StorageKeys:
    """Key layout, namespaced as ``<prefix>_<collection>_v1:<scope>[:<date>]``."""

    def __init__(self, prefix: str = "careplan") -> None:
        self.prefix = prefix

    def config(self, patient_id: str) -> str:
        return f"{self.prefix}_config_v1:{patient_id}"

    def care_plan(self, patient_id: str) -> str:
        return f"{self.prefix}_plan_v1:{patient_id}"

    def care_plan_items(self, care_plan_id: str) -> str:
        return f"{self.prefix}_plan_items_v1:{care_plan_id}"

    def daily_instances(self, patient_id: str, day: str) -> str:
        return f"{self.prefix}_instances_v1:{patient_id}:{day}"

    def daily_instances_index(self, patient_id: str) -> str:
        return f"{self.prefix}_instances_index_v1:{patient_id}"

    def logs(self, patient_id: str, day: str) -> str:
        return f"{self.prefix}_logs_v1:{patient_id}:{day}"

    def logs_index(self, patient_id: str) -> str:
        return f"{self.prefix}_logs_index_v1:{patient_id}"

    def all_logs(self, patient_id: str) -> str:
        return f"{self.prefix}_all_logs_v1:{patient_id}"

    def patient_keys(self, patient_id: str) -> list[str]:
        """Undated keys owned by ``patient_id`` (plan items excluded)."""
        return [
            self.config(patient_id),
            self.care_plan(patient_id),
            self.daily_instances_index(patient_id),
            self.logs_index(patient_id),
            self.all_logs(patient_id),
        ]

    def patient_prefixes(self, patient_id: str) -> list[str]:
        """Prefixes of the per-day keys owned by ``patient_id``."""
        return [
            f"{self.prefix}_instances_v1:{patient_id}:",
            f"{self.prefix}_logs_v1:{patient_id}:",
        ]


class SafeStorage:
    """Typed JSON reads and Result-returning writes on top of a ``KeyValueStore``."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.logger = logger.bind(component="safe_storage")

    async def _read_json(self, key: str) -> Any | None:
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.warning("corrupt_value_ignored", key=key, error=str(e), sample=raw[:100])
            return None

    async def _read_validated(self, key: str, validate: Callable[[Any], T], default: T) -> T:
        data = await self._read_json(key)
        if data is None:
            return default
        try:
            return validate(data)
        except ValidationError as e:
            self.logger.warning(
                "invalid_value_ignored", key=key, error_count=e.error_count(), error=str(e)
            )
            return default

    async def get_model(self, key: str, model: type[ModelT]) -> ModelT | None:
        return await self._read_validated(key, model.model_validate, None)

    async def get_models(self, key: str, model: type[ModelT]) -> list[ModelT]:
        adapter = TypeAdapter(list[model])  # type: ignore[valid-type]
        return await self._read_validated(key, adapter.validate_python, [])

    async def get_strings(self, key: str) -> list[str]:
        adapter = TypeAdapter(list[str])
        return await self._read_validated(key, adapter.validate_python, [])

    async def set_json(self, key: str, value: Any) -> Result[None, StorageError]:
        """Serialize ``value`` (models, lists of models, plain data) and write it."""
        try:
            if isinstance(value, BaseModel):
                payload = value.model_dump_json()
            elif isinstance(value, list) and value and isinstance(value[0], BaseModel):
                payload = json.dumps([v.model_dump(mode="json") for v in value])
            else:
                payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.error("serialization_failed", key=key, error=str(e))
            return Result.err(StorageError(f"Could not serialize value for {key}: {e}", key=key))

        try:
            await self.store.set(key, payload)
        except StorageError as e:
            return Result.err(e)
        except Exception as e:
            self.logger.exception("unexpected_write_error", key=key, error=str(e))
            return Result.err(StorageError(f"Write to {key} failed: {e}", key=key))
        return Result.ok()

    async def set_or_raise(self, key: str, value: Any) -> None:
        (await self.set_json(key, value)).unwrap()

    async def delete(self, key: str) -> None:
        await self.store.delete(key)
