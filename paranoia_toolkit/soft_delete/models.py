"""
Value models for soft delete operations.

These models describe lifecycle states and the recovery window that limits
which dependents a recursive restore brings back.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .policy import normalize_timestamp


class LifecycleState(str, Enum):
    """States of a paranoid record."""

    LIVE = "live"
    SOFT_DELETED = "soft_deleted"
    HARD_DELETED = "hard_deleted"  # terminal


class RecoveryWindow(BaseModel):
    """
    Time range a dependent's deletion must fall in to be restored with its owner.

    Either give explicit ``start``/``end`` bounds, or a ``duration`` which is
    centred on the deletion time of the record the restore starts from.

    Example:
        >>> RecoveryWindow(duration=timedelta(minutes=10))
        >>> RecoveryWindow(start=datetime(2024, 1, 1), end=datetime(2024, 1, 2))
    """

    model_config = ConfigDict(frozen=True)

    start: Optional[datetime] = Field(None, description="Earliest deletion time")
    end: Optional[datetime] = Field(None, description="Latest deletion time")
    duration: Optional[timedelta] = Field(
        None, description="Half-width of a window centred on the owner's deletion"
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "RecoveryWindow":
        """Require exactly one of explicit bounds or a duration."""
        explicit = self.start is not None or self.end is not None
        if explicit and self.duration is not None:
            raise ValueError("Give either start/end or duration, not both")
        if explicit and (self.start is None or self.end is None):
            raise ValueError("An explicit recovery window needs both start and end")
        if not explicit and self.duration is None:
            raise ValueError("A recovery window needs start/end or a duration")
        if self.duration is not None and self.duration < timedelta(0):
            raise ValueError("Recovery window duration must not be negative")
        if explicit and normalize_timestamp(self.start) > normalize_timestamp(
            self.end
        ):
            raise ValueError("Recovery window start must not be after its end")
        return self

    @classmethod
    def coerce(
        cls,
        value: Union["RecoveryWindow", timedelta, Tuple[datetime, datetime], None],
    ) -> Optional["RecoveryWindow"]:
        """Build a window from the shapes accepted by ``restore``."""
        if value is None or isinstance(value, RecoveryWindow):
            return value
        if isinstance(value, timedelta):
            return cls(duration=value)
        if isinstance(value, tuple) and len(value) == 2:
            return cls(start=value[0], end=value[1])
        raise TypeError(f"Cannot build a recovery window from {value!r}")

    @property
    def is_explicit(self) -> bool:
        return self.duration is None

    def anchored(self, deleted_at: Optional[datetime]) -> Optional["RecoveryWindow"]:
        """Explicit window for a restore starting at a record deleted at ``deleted_at``.

        Returns None when a duration window has nothing to centre on.
        """
        if self.is_explicit:
            return self
        if deleted_at is None or self.duration is None:
            return None
        moment = normalize_timestamp(deleted_at)
        return RecoveryWindow(start=moment - self.duration, end=moment + self.duration)

    def contains(self, moment: Any) -> bool:
        """True when ``moment`` lies inside the (explicit) window, bounds included.

        Markers that are not timestamps cannot be placed in time and always
        count as inside.
        """
        if not isinstance(moment, datetime) or self.start is None or self.end is None:
            return True
        moment = normalize_timestamp(moment)
        return (
            normalize_timestamp(self.start) <= moment <= normalize_timestamp(self.end)
        )
