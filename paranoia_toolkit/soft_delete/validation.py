"""
Uniqueness validation that ignores soft-deleted rows.

A unique value held by a deleted record does not block a new live record from
taking it, unless ``include_deleted`` is set.

Usage:
    validates_unique(User, "email")

    session.add(User(email="a@example.com"))
    session.flush()  # raises DuplicateRecordError if a live user has that email
"""

import logging
from typing import Any, Dict, Tuple

from sqlalchemy import and_, event, not_, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from .exceptions import DuplicateRecordError, ParanoiaError
from .policy import policy_for
from .scopes import WITH_DELETED

logger = logging.getLogger(__name__)


def _values(record: Any, columns: Tuple[str, ...]) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in columns}


def conflict_statement(
    record: Any, columns: Tuple[str, ...], include_deleted: bool = False
) -> Select:
    """SELECT of primary keys of other rows sharing ``record``'s values."""
    if not columns:
        raise ParanoiaError("Uniqueness validation needs at least one column")

    cls = type(record)
    mapper = sa_inspect(cls)
    stmt = select(*mapper.primary_key).where(
        *[
            getattr(cls, name) == value
            for name, value in _values(record, columns).items()
        ]
    )

    policy = policy_for(cls)
    if policy is not None and not include_deleted:
        stmt = stmt.where(policy.live_criterion(cls))

    identity = sa_inspect(record).identity
    if identity is not None:
        stmt = stmt.where(
            not_(
                and_(
                    *[
                        column == value
                        for column, value in zip(mapper.primary_key, identity)
                    ]
                )
            )
        )

    return stmt.limit(1).execution_options(**{WITH_DELETED: True})


def check_unique(
    session: Session, record: Any, *columns: str, include_deleted: bool = False
) -> bool:
    """
    Check that no other row shares ``record``'s values for ``columns``.

    Args:
        session: SQLAlchemy session
        record: Record being validated
        *columns: Attribute names that must be unique together
        include_deleted: Count soft-deleted rows as conflicts

    Returns:
        True when the values are unique
    """
    stmt = conflict_statement(record, columns, include_deleted)
    with session.no_autoflush:
        return session.execute(stmt).first() is None


def validates_unique(cls: type, *columns: str, include_deleted: bool = False) -> None:
    """
    Enforce uniqueness of ``columns`` on flush.

    Registers ``before_insert`` and ``before_update`` listeners on ``cls``.

    Args:
        cls: Mapped class
        *columns: Attribute names that must be unique together
        include_deleted: Also reject values held by soft-deleted rows

    Raises:
        DuplicateRecordError: From the flush, when a conflict exists
    """
    if not columns:
        raise ParanoiaError("validates_unique needs at least one column")

    def validate(mapper: Any, connection: Any, target: Any) -> None:
        policy = policy_for(target)
        if policy is not None and not policy.is_live(target):
            # deleted rows do not claim their values
            return
        stmt = conflict_statement(target, columns, include_deleted)
        if connection.execute(stmt).first() is not None:
            raise DuplicateRecordError(type(target).__name__, _values(target, columns))

    event.listen(cls, "before_insert", validate, propagate=True)
    event.listen(cls, "before_update", validate, propagate=True)
    logger.debug("Validating uniqueness of %s on %s", columns, cls.__name__)
