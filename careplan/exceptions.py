"""
Exception hierarchy for the care plan core.

Expected races (an id that no longer exists, nothing pending to sync) are not
exceptions: they come back as ``None`` or ``False``. These classes cover the
failures a caller has to treat as "no state change".
"""


class CarePlanError(Exception):
    """Base class for all known care plan errors."""


class StorageError(CarePlanError):
    """Reading or writing the underlying key-value store failed."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class InvalidStatusTransitionError(CarePlanError):
    """An instance status change would move backwards or between terminal states."""

    def __init__(self, instance_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Instance {instance_id} cannot move from {current!r} to {requested!r}"
        )
        self.instance_id = instance_id
        self.current = current
        self.requested = requested


class ConfigurationError(CarePlanError):
    """Application configuration could not be loaded or validated."""
