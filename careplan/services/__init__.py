"""
Care plan services.

Repositories over the key-value store, the schedule expander, completion
engine, log sync bridge and the pure display classifiers.
"""

from .care_service import CareService
from .completion import CompletionEngine
from .config_repo import CarePlanConfigRepository
from .instance_store import InstanceStore
from .log_store import LogStore
from .log_sync import LogSyncBridge
from .plan_repo import CarePlanRepository
from .schedule_expander import ScheduleExpander
from .storage import SafeStorage, StorageKeys

__all__ = [
    "CareService",
    "CarePlanConfigRepository",
    "CarePlanRepository",
    "CompletionEngine",
    "InstanceStore",
    "LogStore",
    "LogSyncBridge",
    "SafeStorage",
    "ScheduleExpander",
    "StorageKeys",
]
