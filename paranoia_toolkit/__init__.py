"""
Paranoia Toolkit - Reversible deletion for SQLAlchemy models.

This toolkit marks rows as deleted instead of removing them. Deleted rows are
hidden from queries, can be restored together with the records that were
deleted alongside them, and can still be removed for good when required.

Key Features
------------
* **Soft Delete**: Marker column with a configurable sentinel and flag column
* **Scopes**: Explicit live/deleted predicates and an opt-in default scope
* **Cascades**: Destroy, delete, nullify and hard cascades through relationships
* **Recovery Windows**: Restore only dependents deleted around the same time
* **Lifecycle Hooks**: Ordered before/around/after hooks that can veto
* **Counter Caches**: Owner counters kept in step with live dependents

Quick Start
-----------
>>> from paranoia_toolkit import SoftDeleteMixin, SoftDeleteService, Dependent
>>>
>>> class Post(SoftDeleteMixin, Base):
...     __tablename__ = "posts"
...     __paranoia_dependents__ = [Dependent("comments")]
...     id = mapped_column(Integer, primary_key=True)
...     comments = relationship("Comment", back_populates="post")
>>>
>>> service = SoftDeleteService(session)
>>> service.destroy(post)             # post and its comments are soft deleted
>>> service.restore(post, recursive=True, recovery_window=timedelta(minutes=10))
>>> service.really_destroy(post)      # rows are gone for good

Documentation
-------------
See README.md and the /examples directory for usage examples.

License
-------
MIT License - See LICENSE file for details.
"""

__version__ = "1.0.0"

from .config import ParanoiaConfig, configure, get_config, set_config

# Import main components for easy access
from .soft_delete import (
    CascadeMode,
    CounterCache,
    Dependent,
    HookAborted,
    MarkerPolicy,
    ParanoiaError,
    ParanoidMixin,
    RecordNotFound,
    RecoveryWindow,
    SoftDeleteMixin,
    SoftDeleteService,
    install_default_scope,
    only_deleted,
    with_deleted,
)

__all__ = [
    # Soft Delete
    "ParanoidMixin",
    "SoftDeleteMixin",
    "SoftDeleteService",
    "MarkerPolicy",
    "Dependent",
    "CascadeMode",
    "CounterCache",
    "RecoveryWindow",
    # Scopes
    "with_deleted",
    "only_deleted",
    "install_default_scope",
    # Errors
    "ParanoiaError",
    "HookAborted",
    "RecordNotFound",
    # Configuration
    "ParanoiaConfig",
    "get_config",
    "set_config",
    "configure",
]
