"""
Service layer for soft delete operations.

``SoftDeleteService`` is the lifecycle state machine of a paranoid record:
live -> soft deleted -> live again, or -> hard deleted (terminal). Every
top-level operation runs in one transaction boundary, so a failure or hook veto
anywhere in a cascade undoes the whole operation.
"""

import logging
import warnings
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Union

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import ParanoiaConfig, get_config
from .cascade import CascadeContext, CascadeEngine
from .dependents import adjust_counter_caches
from .exceptions import (
    AlreadyHardDeleted,
    DetachedRecordError,
    HookAborted,
    ParanoiaError,
    ReadOnlyViolation,
    RecordNotFound,
    TransactionFailure,
    entity_id,
)
from .hooks import HookEvent, run_after, run_around, run_before
from .models import LifecycleState, RecoveryWindow
from .policy import MarkerPolicy, policy_for, utcnow
from .scopes import find_deleted

logger = logging.getLogger(__name__)

READONLY_ATTRIBUTE = "_paranoia_readonly"

WindowSpec = Union[RecoveryWindow, Any, None]


@contextmanager
def transaction(session: Session) -> Iterator[None]:
    """Savepoint inside an open transaction, otherwise a complete transaction."""
    if session.in_transaction():
        with session.begin_nested():
            yield
    else:
        with session.begin():
            yield


def is_paranoid(obj: Any) -> bool:
    """True when a class or instance supports soft delete."""
    return policy_for(obj) is not None


def is_readonly(record: Any) -> bool:
    return bool(getattr(record, READONLY_ATTRIBUTE, False))


def is_hard_deleted(record: Any) -> bool:
    """True once the record's row has been physically deleted."""
    state = sa_inspect(record)
    return bool(state.deleted or state.was_deleted)


def is_deleted(record: Any) -> bool:
    """True when the record is soft deleted or gone."""
    if is_hard_deleted(record):
        return True
    policy = policy_for(record)
    if policy is None:
        return False
    return not policy.is_live(record)


class SoftDeleteService:
    """
    Service running soft delete, restore and hard delete for paranoid records.

    Operations cascade through the dependents declared on each model, run the
    model's lifecycle hooks and keep counter caches in step.

    Usage:
        service = SoftDeleteService(session)
        service.destroy(invoice)
        service.restore(invoice, recursive=True,
                        recovery_window=timedelta(minutes=10))
        service.restore_by_id(Invoice, [3, 4])
        service.really_destroy(invoice)
    """

    def __init__(self, session: Session, config: Optional[ParanoiaConfig] = None):
        """
        Initialize the soft delete service.

        Args:
            session: SQLAlchemy database session
            config: Optional configuration, defaults to the global one
        """
        self.session = session
        self.config = config or get_config()
        self.cascade = CascadeEngine(self)

    # Queries

    def is_paranoid(self, obj: Any) -> bool:
        return is_paranoid(obj)

    def is_deleted(self, record: Any) -> bool:
        return is_deleted(record)

    def is_hard_deleted(self, record: Any) -> bool:
        return is_hard_deleted(record)

    def state_of(self, record: Any) -> LifecycleState:
        """Current lifecycle state of ``record``."""
        if is_hard_deleted(record):
            return LifecycleState.HARD_DELETED
        if is_deleted(record):
            return LifecycleState.SOFT_DELETED
        return LifecycleState.LIVE

    # Public operations

    def destroy(self, record: Any) -> Union[Any, bool]:
        """
        Soft delete a record, running hooks and cascading to dependents.

        Args:
            record: Record to destroy

        Returns:
            The record, or False when a hook vetoed the operation

        Raises:
            ReadOnlyViolation: Record is marked read-only
            TransactionFailure: The storage layer failed; nothing was changed
        """
        if not self._writable(record):
            return record
        ctx = CascadeContext(now=utcnow())

        def work() -> Any:
            self._destroy(record, ctx)
            return record

        return self._run("destroy", record, work)

    def delete(self, record: Any) -> Any:
        """
        Soft delete a record without hooks or dependent cascade.

        The marker and counter caches are still updated in a transaction.

        Args:
            record: Record to delete

        Returns:
            The record
        """
        if not self._writable(record):
            return record
        ctx = CascadeContext(now=utcnow())

        def work() -> Any:
            self._delete(record, ctx)
            return record

        return self._run("delete", record, work)

    def restore(
        self,
        record: Any,
        recursive: bool = False,
        recovery_window: WindowSpec = None,
    ) -> Union[Any, bool]:
        """
        Restore a soft-deleted record.

        Args:
            record: Record to restore
            recursive: Also restore dependents deleted with it
            recovery_window: ``timedelta`` centred on the record's deletion
                time, ``(start, end)`` tuple or ``RecoveryWindow``; dependents
                deleted outside it stay deleted

        Returns:
            The record, or False when a hook vetoed the operation
        """
        if not self._writable(record):
            return record
        ctx = self._restore_context(record, recursive, recovery_window)

        def work() -> Any:
            self._restore(record, ctx)
            return record

        return self._run("restore", record, work)

    def restore_by_id(
        self,
        cls: type,
        ids: Any,
        recursive: bool = False,
        recovery_window: WindowSpec = None,
    ) -> List[Any]:
        """
        Restore soft-deleted records of ``cls`` by primary key.

        Args:
            cls: Paranoid model class
            ids: One identifier or a list of identifiers (tuples for
                composite keys); passing loaded records is deprecated
            recursive: Also restore dependents
            recovery_window: See ``restore``

        Returns:
            Restored records in input order

        Raises:
            RecordNotFound: An identifier is not in the deleted-only scope;
                no record is restored
        """
        if isinstance(ids, (list, set, frozenset)):
            idents = list(ids)
        else:
            idents = [ids]

        restored: List[Any] = []

        def work() -> List[Any]:
            for ident in idents:
                record = find_deleted(self.session, cls, self._identifier(cls, ident))
                ctx = self._restore_context(record, recursive, recovery_window)
                self._restore(record, ctx)
                restored.append(record)
            return restored

        result = self._run("restore_by_id", cls, work)
        return [] if result is False else result

    def really_destroy(
        self, record: Any, update_marker_first: Optional[bool] = None
    ) -> bool:
        """
        Physically delete a record and hard-cascade to its dependents.

        Args:
            record: Record to remove, live or soft deleted
            update_marker_first: Stamp the marker before deleting the row;
                defaults to ``ParanoiaConfig.update_marker_before_hard_delete``

        Returns:
            True, or False when a hook vetoed the operation

        Raises:
            RecordNotFound: The record was already physically deleted
        """
        self._check_hard_target(record)

        if update_marker_first is None:
            update_marker_first = self.config.update_marker_before_hard_delete
        ctx = CascadeContext(now=utcnow(), update_marker_first=update_marker_first)

        def work() -> bool:
            self._really_destroy(record, ctx)
            return True

        return self._run("really_destroy", record, work)

    def really_delete(self, record: Any) -> None:
        """Physically delete a record without hooks or dependent cascade."""
        self._check_hard_target(record)

        def work() -> None:
            self._remove_row(record, policy_for(record))

        self._run("really_delete", record, work)

    # Transitions; called by the cascade engine inside the open boundary

    def _destroy(self, record: Any, ctx: CascadeContext) -> None:
        if not self._writable(record):
            return

        policy = policy_for(record)
        if policy is None:
            self._really_destroy(record, ctx)
            return

        if not policy.is_live(record):
            logger.debug(
                "%s %s already deleted; destroy is a no-op",
                type(record).__name__,
                entity_id(record),
            )
            return
        if not ctx.visit("destroy", record):
            return

        run_before(record, HookEvent.BEFORE_DESTROY)

        def body() -> None:
            self.cascade.destroy_dependents(record, ctx)
            self._mark_deleted(record, policy, ctx)

        run_around(record, HookEvent.AROUND_DESTROY, body)
        self.cascade.hard_remove_dependents(record, ctx)
        self.cascade.expire_associations(record)
        run_after(record, HookEvent.AFTER_DESTROY)
        self._log_transition("Destroyed", record)

    def _delete(self, record: Any, ctx: CascadeContext) -> None:
        if not self._writable(record):
            return

        policy = policy_for(record)
        if policy is None:
            self._remove_row(record, None)
            return

        if policy.is_live(record) and ctx.visit("delete", record):
            self._mark_deleted(record, policy, ctx)
            self._log_transition("Deleted", record)

    def _restore(self, record: Any, ctx: CascadeContext) -> None:
        if not self._writable(record):
            return

        policy = self._require_policy(record)
        if not ctx.visit("restore", record):
            return

        run_before(record, HookEvent.BEFORE_RESTORE)

        def body() -> None:
            if not policy.is_live(record):
                marker = policy.marker_value(record)
                if ctx.window is None or ctx.window.contains(marker):
                    self._write(record, policy.live_values())
                    adjust_counter_caches(self.session, record, +1)
                    self._log_transition("Restored", record)
                else:
                    logger.info(
                        "Skipped restore of %s %s: deleted at %s, outside %s..%s",
                        type(record).__name__,
                        entity_id(record),
                        marker,
                        ctx.window.start,
                        ctx.window.end,
                    )
            if ctx.recursive:
                self.cascade.restore_dependents(record, ctx)

        run_around(record, HookEvent.AROUND_RESTORE, body)
        self.cascade.expire_associations(record)
        run_after(record, HookEvent.AFTER_RESTORE)

    def _really_destroy(self, record: Any, ctx: CascadeContext) -> None:
        if not self._writable(record) or not ctx.visit("really_destroy", record):
            return

        run_before(record, HookEvent.BEFORE_REAL_DESTROY)

        policy = policy_for(record)
        self.cascade.really_destroy_dependents(record, ctx)

        if policy is not None and ctx.update_marker_first:
            was_live = policy.is_live(record)
            self._write(record, policy.deleted_values(ctx.now))
            if was_live:
                adjust_counter_caches(self.session, record, -1)
            self._remove_row(record, policy, counted=True)
        else:
            self._remove_row(record, policy)

        self.cascade.really_destroy_dependents(record, ctx, owner_side=True)
        run_after(record, HookEvent.AFTER_REAL_DESTROY)
        self._log_transition("Permanently destroyed", record)

    # Helpers

    def _mark_deleted(
        self, record: Any, policy: MarkerPolicy, ctx: CascadeContext
    ) -> None:
        self._write(record, policy.deleted_values(ctx.now))
        adjust_counter_caches(self.session, record, -1)

    def _remove_row(
        self, record: Any, policy: Optional[MarkerPolicy], counted: bool = False
    ) -> None:
        if not counted and (policy is None or policy.is_live(record)):
            adjust_counter_caches(self.session, record, -1)
        self.cascade.expire_associations(record)
        self.session.delete(record)
        self.session.flush()

    def _write(self, record: Any, values: dict) -> None:
        """Apply an attribute batch and flush it as one UPDATE."""
        for key, value in values.items():
            setattr(record, key, value)
        self.session.flush()

    def _check_writable(self, record: Any) -> None:
        if is_readonly(record):
            raise ReadOnlyViolation(entity_id(record))
        if is_hard_deleted(record):
            raise AlreadyHardDeleted(entity_id(record))

        state = sa_inspect(record)
        if state.transient or (state.detached and not state.was_deleted):
            raise DetachedRecordError(type(record).__name__)

    def _writable(self, record: Any) -> bool:
        """Check preconditions; False for a record that is already hard deleted."""
        try:
            self._check_writable(record)
        except AlreadyHardDeleted:
            logger.debug(
                "%s %s is already permanently deleted; nothing to do",
                type(record).__name__,
                entity_id(record),
            )
            return False
        return True

    def _check_hard_target(self, record: Any) -> None:
        try:
            self._check_writable(record)
        except AlreadyHardDeleted as e:
            raise RecordNotFound(
                type(record).__name__, entity_id(record), scope="any"
            ) from e

    def _require_policy(self, record: Any) -> MarkerPolicy:
        policy = policy_for(record)
        if policy is None:
            raise ParanoiaError(
                f"{type(record).__name__} is not a paranoid model",
                entity_id=entity_id(record),
            )
        return policy

    def _restore_context(
        self, record: Any, recursive: bool, recovery_window: WindowSpec
    ) -> CascadeContext:
        window = RecoveryWindow.coerce(recovery_window)
        if window is not None:
            deleted_at = self._require_policy(record).deleted_at(record)
            anchored = window.anchored(deleted_at)
            if anchored is None:
                logger.info(
                    "%s %s has no deletion time to centre a %s recovery window on; "
                    "restoring without a window",
                    type(record).__name__,
                    entity_id(record),
                    window.duration,
                )
            window = anchored
        return CascadeContext(now=utcnow(), recursive=recursive, window=window)

    def _identifier(self, cls: type, ident: Any) -> Any:
        if isinstance(ident, cls):
            if self.config.warn_on_record_restore:
                warnings.warn(
                    "Passing records to restore_by_id is deprecated; "
                    "pass primary key values instead",
                    DeprecationWarning,
                    stacklevel=5,
                )
            identity = sa_inspect(ident).identity
            if identity is None:
                raise DetachedRecordError(cls.__name__)
            return identity[0] if len(identity) == 1 else identity
        return ident

    def _run(self, operation: str, target: Any, work: Callable[[], Any]) -> Any:
        """Run ``work`` in one transaction boundary.

        Hook vetoes roll back and return False; storage errors roll back and
        raise ``TransactionFailure``; anything else rolls back and propagates.
        With ``auto_commit`` an open caller transaction is committed as well,
        including work the caller left pending in it.
        """
        try:
            with transaction(self.session):
                result = work()
        except HookAborted as aborted:
            logger.info(
                "%s of %s rolled back: %s", operation, _describe(target), aborted
            )
            return False
        except SQLAlchemyError as e:
            logger.error("%s of %s failed: %s", operation, _describe(target), e)
            raise TransactionFailure(f"{operation} failed", e) from e

        # A begin() block has committed already; only a caller's transaction is left
        if self.config.auto_commit and self.session.in_transaction():
            self.session.commit()

        return result

    def _log_transition(self, action: str, record: Any) -> None:
        level = logging.INFO if self.config.log_transitions else logging.DEBUG
        logger.log(level, "%s %s %s", action, type(record).__name__, entity_id(record))


def _describe(target: Any) -> str:
    if isinstance(target, type):
        return target.__name__
    return f"{type(target).__name__} {entity_id(target)}"
