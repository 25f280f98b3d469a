"""
SQLAlchemy mixins for soft delete functionality.

``ParanoidMixin`` attaches the soft delete capability to a model that brings
its own marker column; ``SoftDeleteMixin`` also adds a ``deleted_at`` column.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import DateTime, event
from sqlalchemy.orm import Mapped, Query, Session, mapped_column, object_session
from sqlalchemy.sql.elements import ColumnElement

from . import scopes
from .exceptions import DetachedRecordError
from .policy import MarkerPolicy, policy_for
from .services import READONLY_ATTRIBUTE, SoftDeleteService, is_deleted


def marker_column(sentinel: Any = None, **kwargs: Any) -> Any:
    """
    Marker column definition matching a sentinel.

    Args:
        sentinel: Value meaning "not deleted"; None makes the column nullable
        **kwargs: Extra ``mapped_column`` arguments

    Returns:
        A ``mapped_column`` for the marker
    """
    kwargs.setdefault("nullable", sentinel is None)
    kwargs.setdefault("index", True)
    if sentinel is not None:
        kwargs.setdefault("default", sentinel)
    return mapped_column(DateTime(timezone=True), **kwargs)


class ParanoidMixin:
    """
    Mixin to add soft delete functionality to SQLAlchemy models.

    The model declares its marker column itself and may configure it through
    ``__paranoia__``. Dependents and counter caches are declared with
    ``__paranoia_dependents__`` and ``__paranoia_counter_caches__``.

    Usage:
        class Invoice(ParanoidMixin, Base):
            __tablename__ = "invoices"
            __paranoia__ = MarkerPolicy(column="removed_at")
            __paranoia_dependents__ = [Dependent("lines")]

            id = mapped_column(Integer, primary_key=True)
            removed_at = marker_column()
            lines = relationship("InvoiceLine", back_populates="invoice")
    """

    __paranoid__ = True
    __paranoia__ = None
    __paranoia_dependents__ = ()
    __paranoia_counter_caches__ = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        scopes.register_paranoid_class(cls)

    def _service(self, session: Optional[Session] = None) -> SoftDeleteService:
        session = session or object_session(self)
        if session is None:
            raise DetachedRecordError(type(self).__name__)
        return SoftDeleteService(session)

    def destroy(self, session: Optional[Session] = None) -> Any:
        """
        Soft delete this record with hooks and dependent cascade.

        Returns:
            The record, or False when a hook vetoed the operation
        """
        return self._service(session).destroy(self)

    def delete(self, session: Optional[Session] = None) -> Any:
        """Soft delete this record without hooks or cascade."""
        return self._service(session).delete(self)

    def restore(
        self,
        recursive: bool = False,
        recovery_window: Any = None,
        session: Optional[Session] = None,
    ) -> Any:
        """
        Restore this record.

        Args:
            recursive: Also restore dependents deleted with it
            recovery_window: ``timedelta``, ``(start, end)`` or ``RecoveryWindow``
            session: Session to use when the record is not attached to one

        Returns:
            The record, or False when a hook vetoed the operation
        """
        return self._service(session).restore(
            self, recursive=recursive, recovery_window=recovery_window
        )

    def really_destroy(
        self,
        update_marker_first: Optional[bool] = None,
        session: Optional[Session] = None,
    ) -> bool:
        """Physically delete this record with hooks and hard cascade."""
        return self._service(session).really_destroy(
            self, update_marker_first=update_marker_first
        )

    def really_delete(self, session: Optional[Session] = None) -> None:
        """Physically delete this record without hooks or cascade."""
        self._service(session).really_delete(self)

    @property
    def is_deleted(self) -> bool:
        return is_deleted(self)

    def mark_readonly(self) -> None:
        """Reject every later lifecycle operation on this instance."""
        setattr(self, READONLY_ATTRIBUTE, True)

    @property
    def readonly(self) -> bool:
        return bool(getattr(self, READONLY_ATTRIBUTE, False))

    @classmethod
    def live_scope(cls) -> ColumnElement[bool]:
        return scopes.live_scope(cls)

    @classmethod
    def deleted_scope(cls) -> ColumnElement[bool]:
        return scopes.deleted_scope(cls)

    @classmethod
    def query_active(cls, session: Session) -> Query[Any]:
        """
        Return query for active (non-deleted) records only.

        Args:
            session: SQLAlchemy session

        Returns:
            Query filtered to exclude deleted records
        """
        return scopes.live(session, cls)

    @classmethod
    def query_deleted(cls, session: Session) -> Query[Any]:
        """
        Return query for deleted records only.

        Args:
            session: SQLAlchemy session

        Returns:
            Query filtered to include only deleted records
        """
        return scopes.only_deleted(session, cls)

    @classmethod
    def query_all(cls, session: Session) -> Query[Any]:
        """
        Return query for all records including deleted.

        Args:
            session: SQLAlchemy session

        Returns:
            Query with no soft delete filter
        """
        return scopes.with_deleted(session, cls)

    with_deleted = query_all
    only_deleted = query_deleted

    @classmethod
    def restore_by_id(
        cls,
        session: Session,
        ids: Any,
        recursive: bool = False,
        recovery_window: Any = None,
    ) -> List[Any]:
        """Restore soft-deleted records of this class by primary key."""
        return SoftDeleteService(session).restore_by_id(
            cls, ids, recursive=recursive, recovery_window=recovery_window
        )


@event.listens_for(ParanoidMixin, "init", propagate=True)
def _initialize_marker(target: Any, args: Any, kwargs: Any) -> None:
    """Start new records live when the sentinel is not None."""
    policy = policy_for(target)
    if policy is None:
        return
    for key, value in policy.live_values().items():
        if key not in kwargs and value is not None:
            setattr(target, key, value)


class SoftDeleteMixin(ParanoidMixin):
    """
    Paranoid mixin with a nullable ``deleted_at`` marker column.

    Usage:
        class Comment(SoftDeleteMixin, Base):
            __tablename__ = "comments"
            id = mapped_column(Integer, primary_key=True)
    """

    __paranoia__ = MarkerPolicy(column="deleted_at")

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
