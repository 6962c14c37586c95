"""
Opaque snapshot export and restore for the backup subsystem.

Values are copied as stored; nothing here knows the schema.
"""

import json

import structlog

from careplan.adapters.kv_store import KeyValueStore
from careplan.services.storage import StorageKeys

logger = structlog.get_logger(__name__)


def _plan_id(blob: str | None) -> str | None:
    if blob is None:
        return None
    try:
        value = json.loads(blob).get("id")
    except (json.JSONDecodeError, AttributeError):
        return None
    return value if isinstance(value, str) else None


async def export_snapshot(
    store: KeyValueStore, keys: StorageKeys, patient_id: str
) -> dict[str, str]:
    """Collect every key the patient owns, plus the plan's item list."""
    snapshot: dict[str, str] = {}
    owned = list(keys.patient_keys(patient_id))
    for prefix in keys.patient_prefixes(patient_id):
        owned.extend(await store.keys(prefix))
    for key in owned:
        value = await store.get(key)
        if value is not None:
            snapshot[key] = value

    # item lists are keyed by plan id, not patient id
    plan_id = _plan_id(snapshot.get(keys.care_plan(patient_id)))
    if plan_id is not None:
        items_key = keys.care_plan_items(plan_id)
        value = await store.get(items_key)
        if value is not None:
            snapshot[items_key] = value

    logger.info("snapshot_exported", patient_id=patient_id, keys=len(snapshot))
    return snapshot


async def restore_snapshot(store: KeyValueStore, snapshot: dict[str, str]) -> int:
    """Write every blob back. Returns the number of keys restored."""
    for key, value in snapshot.items():
        await store.set(key, value)
    logger.info("snapshot_restored", keys=len(snapshot))
    return len(snapshot)
