"""
Marker policy: what "deleted" means for a model.

A policy names the marker column, the sentinel value meaning "not deleted" and
an optional boolean flag column that is written together with the marker.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

from ..config import get_config
from .exceptions import ParanoiaError


def _default_column() -> str:
    return get_config().default_column


def normalize_timestamp(value: Any) -> Any:
    """Return aware datetimes as naive UTC so they compare with database values."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    """Current UTC time in the form configured for marker columns."""
    now = datetime.now(timezone.utc)
    if get_config().timezone_aware_markers:
        return now
    return now.replace(tzinfo=None)


class MarkerPolicy(BaseModel):
    """
    Soft delete configuration for one model class.

    Declared once on the model as ``__paranoia__`` and immutable afterwards.

    Usage:
        class Invoice(ParanoidMixin, Base):
            __tablename__ = "invoices"
            __paranoia__ = MarkerPolicy(
                column="removed_at", sentinel=datetime(1970, 1, 1)
            )

            id = mapped_column(Integer, primary_key=True)
            removed_at = marker_column(sentinel=datetime(1970, 1, 1))
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    column: str = Field(
        default_factory=_default_column, description="Marker attribute name"
    )
    sentinel: Any = Field(None, description="Marker value meaning 'not deleted'")
    deleted_value: Any = Field(
        None, description="Value written on delete; current time when unset"
    )
    flag_column: Optional[str] = Field(
        None, description="Auxiliary boolean column written with the marker"
    )
    flag_live_value: bool = Field(
        False, description="Flag column value for live records"
    )
    without_default_scope: bool = Field(
        False, description="Skip this model when applying the ambient live scope"
    )

    @field_validator("column", "flag_column")
    @classmethod
    def validate_column_name(cls, v: Optional[str]) -> Optional[str]:
        """Ensure column names are usable attribute names."""
        if v is not None and not v.isidentifier():
            raise ValueError(f"'{v}' is not a valid column attribute name")
        return v

    def marker_attribute(self, cls: Any) -> Any:
        """Return the mapped marker attribute of ``cls``."""
        return self._attribute(cls, self.column)

    def flag_attribute(self, cls: Any) -> Any:
        """Return the mapped flag attribute of ``cls`` (None without a flag)."""
        if self.flag_column is None:
            return None
        return self._attribute(cls, self.flag_column)

    @staticmethod
    def _attribute(cls: Any, name: str) -> Any:
        try:
            return getattr(cls, name)
        except AttributeError:
            raise ParanoiaError(
                f"{cls.__name__} has no column '{name}' required by its marker policy"
            ) from None

    def marker_value(self, record: Any) -> Any:
        return getattr(record, self.column)

    def is_live(self, record: Any) -> bool:
        """True when the record's marker equals the sentinel."""
        return normalize_timestamp(self.marker_value(record)) == normalize_timestamp(
            self.sentinel
        )

    def deleted_at(self, record: Any) -> Optional[datetime]:
        """Deletion timestamp of a deleted record, if the marker is a timestamp."""
        if self.is_live(record):
            return None
        value = self.marker_value(record)
        if isinstance(value, datetime):
            return normalize_timestamp(value)
        return None

    def deleted_values(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Attribute batch that marks a record as deleted."""
        if self.deleted_value is not None:
            marker = self.deleted_value
        else:
            marker = now if now is not None else utcnow()

        values = {self.column: marker}
        if self.flag_column is not None:
            values[self.flag_column] = not self.flag_live_value
        return values

    def live_values(self) -> Dict[str, Any]:
        """Attribute batch that marks a record as live."""
        values = {self.column: self.sentinel}
        if self.flag_column is not None:
            values[self.flag_column] = self.flag_live_value
        return values

    def live_criterion(self, cls: Any) -> ColumnElement[bool]:
        """SQL predicate selecting live rows of ``cls``."""
        flag = self.flag_attribute(cls)
        if flag is not None:
            return flag == self.flag_live_value

        marker = self.marker_attribute(cls)
        if self.sentinel is None:
            return marker.is_(None)
        return marker == self.sentinel

    def deleted_criterion(self, cls: Any) -> ColumnElement[bool]:
        """SQL predicate selecting soft-deleted rows of ``cls``.

        A plain ``marker != sentinel`` would drop rows whose marker is NULL
        under SQL comparison rules, so the non-null sentinel case spells the
        NULL branch out.
        """
        flag = self.flag_attribute(cls)
        if flag is not None:
            return flag == (not self.flag_live_value)

        marker = self.marker_attribute(cls)
        if self.sentinel is None:
            return marker.is_not(None)
        return or_(marker.is_(None), marker != self.sentinel)


def policy_for(cls: Any) -> Optional[MarkerPolicy]:
    """Return the marker policy of a paranoid class, or None."""
    if isinstance(cls, type):
        klass = cls
    else:
        klass = type(cls)

    if not getattr(klass, "__paranoid__", False):
        return None

    policy = getattr(klass, "__paranoia__", None)
    if policy is None:
        policy = MarkerPolicy()
        klass.__paranoia__ = policy
    return policy
