"""
Soft Delete Module - reversible deletion for SQLAlchemy models.

Provides mixins, services, and utilities for marking rows as deleted instead
of removing them, hiding them from queries, cascading deletes and restores
through declared dependents, and removing rows for good when asked.
"""

from .cascade import CascadeContext, CascadeEngine
from .dependents import CascadeMode, CounterCache, Dependent, register_dependent
from .exceptions import (
    AlreadyHardDeleted,
    DetachedRecordError,
    DuplicateRecordError,
    HookAborted,
    InvalidDependentError,
    ParanoiaError,
    ReadOnlyViolation,
    RecordNotFound,
    TransactionFailure,
)
from .hooks import (
    HookEvent,
    after_destroy,
    after_real_destroy,
    after_restore,
    around_destroy,
    around_restore,
    before_destroy,
    before_real_destroy,
    before_restore,
    register_hook,
)
from .mixins import ParanoidMixin, SoftDeleteMixin, marker_column
from .models import LifecycleState, RecoveryWindow
from .policy import MarkerPolicy, policy_for
from .scopes import (
    choices_including_current,
    deleted,
    deleted_scope,
    find_deleted,
    install_default_scope,
    live,
    live_scope,
    only_deleted,
    remove_default_scope,
    with_deleted,
)
from .services import SoftDeleteService, is_deleted, is_paranoid, transaction
from .validation import check_unique, validates_unique

__all__ = [
    # Mixins
    "ParanoidMixin",
    "SoftDeleteMixin",
    "marker_column",
    # Services
    "SoftDeleteService",
    "CascadeEngine",
    "CascadeContext",
    "transaction",
    "is_deleted",
    "is_paranoid",
    # Configuration
    "MarkerPolicy",
    "policy_for",
    "Dependent",
    "CascadeMode",
    "CounterCache",
    "register_dependent",
    # Models
    "LifecycleState",
    "RecoveryWindow",
    # Scopes
    "live_scope",
    "deleted_scope",
    "live",
    "with_deleted",
    "only_deleted",
    "deleted",
    "find_deleted",
    "choices_including_current",
    "install_default_scope",
    "remove_default_scope",
    # Hooks
    "HookEvent",
    "register_hook",
    "before_destroy",
    "around_destroy",
    "after_destroy",
    "before_restore",
    "around_restore",
    "after_restore",
    "before_real_destroy",
    "after_real_destroy",
    # Validation
    "check_unique",
    "validates_unique",
    # Exceptions
    "ParanoiaError",
    "HookAborted",
    "ReadOnlyViolation",
    "RecordNotFound",
    "AlreadyHardDeleted",
    "TransactionFailure",
    "DetachedRecordError",
    "InvalidDependentError",
    "DuplicateRecordError",
]
