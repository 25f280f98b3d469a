"""
Query scoping for paranoid models.

Every scope is an explicit predicate or query built on request. Ambient
filtering of ordinary queries is opt-in through ``install_default_scope``,
which hooks the session's ``do_orm_execute`` event.

Usage:
    Invoice.query_active(session).count()      # live rows
    only_deleted(session, Invoice).all()       # soft-deleted rows
    with_deleted(session, Invoice).count()     # everything

    install_default_scope(SessionLocal)
    session.query(Invoice).count()             # live rows only
    session.query(Invoice).execution_options(with_deleted=True).count()
"""

import logging
from typing import Any, List, Tuple, Union

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import ORMExecuteState, Query, Session, with_loader_criteria
from sqlalchemy.sql.elements import ColumnElement

from .exceptions import ParanoiaError, RecordNotFound
from .policy import MarkerPolicy, policy_for

logger = logging.getLogger(__name__)

# Execution option that switches the ambient live scope off for a statement.
WITH_DELETED = "with_deleted"

_paranoid_classes: List[type] = []


def register_paranoid_class(cls: type) -> None:
    """Record a paranoid model class for the ambient default scope."""
    if cls not in _paranoid_classes:
        _paranoid_classes.append(cls)


def scoped_classes() -> List[type]:
    """Mapped paranoid classes that take part in the default scope."""
    classes = []
    for cls in _paranoid_classes:
        if sa_inspect(cls, raiseerr=False) is None:
            continue
        policy = policy_for(cls)
        if policy is not None and not policy.without_default_scope:
            classes.append(cls)
    return classes


def _require_policy(cls: Any) -> MarkerPolicy:
    policy = policy_for(cls)
    if policy is None:
        raise ParanoiaError(f"{cls.__name__} is not a paranoid model")
    return policy


def live_scope(cls: Any) -> ColumnElement[bool]:
    """Predicate matching live rows of ``cls``."""
    return _require_policy(cls).live_criterion(cls)


def deleted_scope(cls: Any) -> ColumnElement[bool]:
    """Predicate matching soft-deleted rows of ``cls``."""
    return _require_policy(cls).deleted_criterion(cls)


def with_deleted(session: Session, cls: Any) -> "Query[Any]":
    """Query over every row of ``cls``, deleted or not."""
    return session.query(cls).execution_options(**{WITH_DELETED: True})


def live(session: Session, cls: Any) -> "Query[Any]":
    """Query over live rows of ``cls``, regardless of the ambient scope."""
    return with_deleted(session, cls).filter(live_scope(cls))


def only_deleted(session: Session, cls: Any) -> "Query[Any]":
    """Query over soft-deleted rows of ``cls`` only."""
    return with_deleted(session, cls).filter(deleted_scope(cls))


deleted = only_deleted


def _identity_conditions(cls: Any, ident: Any) -> List[ColumnElement[bool]]:
    primary_key = sa_inspect(cls).primary_key
    values: Tuple[Any, ...] = ident if isinstance(ident, tuple) else (ident,)
    if len(values) != len(primary_key):
        raise ValueError(
            f"{cls.__name__} has {len(primary_key)} primary key column(s), "
            f"got identifier {ident!r}"
        )
    return [column == value for column, value in zip(primary_key, values)]


def find_deleted(session: Session, cls: Any, ident: Any) -> Any:
    """
    Load a soft-deleted record by primary key.

    Args:
        session: SQLAlchemy session
        cls: Paranoid model class
        ident: Primary key value, or a tuple for composite keys

    Returns:
        The soft-deleted record

    Raises:
        RecordNotFound: No soft-deleted row has this identifier
    """
    record = (
        only_deleted(session, cls)
        .filter(*_identity_conditions(cls, ident))
        .one_or_none()
    )
    if record is None:
        raise RecordNotFound(cls.__name__, str(ident), scope="deleted")
    return record


def choices_including_current(session: Session, record: Any, name: str) -> List[Any]:
    """
    Candidates for a many-to-one relationship, keeping a deleted current value.

    Returns the live rows of the related class; when ``record`` currently
    points at a soft-deleted row, that row is put first so edit forms can still
    display it.
    """
    mapper = sa_inspect(type(record))
    if name not in mapper.relationships:
        raise ParanoiaError(f"{type(record).__name__} has no relationship '{name}'")

    prop = mapper.relationships[name]
    target = prop.mapper.class_

    if policy_for(target) is None:
        return session.query(target).all()

    candidates = live(session, target).all()

    conditions = []
    for local, remote in prop.local_remote_pairs:
        value = getattr(record, mapper.get_property_by_column(local).key)
        if value is None:
            return candidates
        conditions.append(
            getattr(target, prop.mapper.get_property_by_column(remote).key) == value
        )

    current = only_deleted(session, target).filter(*conditions).first()
    if current is not None:
        return [current] + candidates
    return candidates


def _apply_default_scope(orm_execute_state: ORMExecuteState) -> None:
    if (
        not orm_execute_state.is_select
        or orm_execute_state.is_column_load
        or orm_execute_state.execution_options.get(WITH_DELETED, False)
    ):
        return

    options = [
        with_loader_criteria(cls, live_scope(cls), include_aliases=True)
        for cls in scoped_classes()
    ]
    if options:
        orm_execute_state.statement = orm_execute_state.statement.options(*options)


ScopeTarget = Union[Session, type, Any]


def install_default_scope(target: ScopeTarget) -> None:
    """
    Hide soft-deleted rows from every ORM SELECT run through ``target``.

    Relationship lazy loads are filtered too; attribute refreshes are not, so
    already loaded deleted records stay usable.

    Args:
        target: Session instance, Session subclass or sessionmaker
    """
    if not event.contains(target, "do_orm_execute", _apply_default_scope):
        event.listen(target, "do_orm_execute", _apply_default_scope)
        logger.debug("Installed paranoid default scope on %r", target)


def remove_default_scope(target: ScopeTarget) -> None:
    """Undo ``install_default_scope``."""
    if event.contains(target, "do_orm_execute", _apply_default_scope):
        event.remove(target, "do_orm_execute", _apply_default_scope)
        logger.debug("Removed paranoid default scope from %r", target)
