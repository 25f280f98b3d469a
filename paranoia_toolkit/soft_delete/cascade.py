"""
Cascade engine: propagates destroy, restore and hard destroy to dependents.

The engine walks the dependent declarations of a record depth first and calls
back into the ``SoftDeleteService`` for each dependent, so every dependent goes
through the same lifecycle checks as a top-level record.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, List, Optional, Set, Tuple

from sqlalchemy import delete, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import RelationshipDirection, Session

from .dependents import CascadeMode, ResolvedDependent, dependents_for
from .exceptions import entity_id
from .models import RecoveryWindow
from .policy import policy_for
from .scopes import with_deleted

if TYPE_CHECKING:
    from .services import SoftDeleteService

logger = logging.getLogger(__name__)


@dataclass
class CascadeContext:
    """State shared by every level of one top-level operation."""

    now: datetime
    recursive: bool = False
    window: Optional[RecoveryWindow] = None
    update_marker_first: bool = True
    visited: Set[Tuple[str, int]] = field(default_factory=set)

    def visit(self, operation: str, record: Any) -> bool:
        """Return False when ``record`` was already handled by ``operation``."""
        key = (operation, id(record))
        if key in self.visited:
            return False
        self.visited.add(key)
        return True


class CascadeEngine:
    """Applies lifecycle operations to the declared dependents of a record."""

    def __init__(self, service: "SoftDeleteService"):
        self.service = service

    @property
    def session(self) -> Session:
        return self.service.session

    def find(
        self, dependent: ResolvedDependent, owner: Any, scope: str = "all"
    ) -> List[Any]:
        """
        Load the dependents of ``owner``, bypassing the ambient live scope.

        Args:
            dependent: Resolved declaration
            owner: Owning record
            scope: "all", "live" or "deleted"

        Returns:
            Matching dependent records
        """
        if not dependent.has_key(owner):
            return []

        target = dependent.target_cls
        query = with_deleted(self.session, target).filter(*dependent.conditions(owner))

        policy = policy_for(target)
        if policy is not None and scope == "live":
            query = query.filter(policy.live_criterion(target))
        elif policy is not None and scope == "deleted":
            query = query.filter(policy.deleted_criterion(target))

        return query.all()

    def destroy_dependents(self, owner: Any, ctx: CascadeContext) -> None:
        """Soft cascade run while ``owner`` is being destroyed."""
        for dependent in dependents_for(type(owner)):
            if dependent.cascade == CascadeMode.DESTROY:
                if dependent.target_is_paranoid:
                    for child in self.find(dependent, owner, "live"):
                        self.service._destroy(child, ctx)
                else:
                    # No soft state to move to
                    for child in self.find(dependent, owner):
                        self.service._really_destroy(child, ctx)
            elif dependent.cascade == CascadeMode.DELETE:
                if dependent.target_is_paranoid:
                    for child in self.find(dependent, owner, "live"):
                        self.service._delete(child, ctx)
                else:
                    self._bulk_delete(dependent, owner)
            elif dependent.cascade == CascadeMode.NULLIFY:
                self._nullify(dependent, owner)

    def hard_remove_dependents(self, owner: Any, ctx: CascadeContext) -> None:
        """Physically remove ``destroy!`` and ``delete!`` dependents of an owner."""
        for dependent in dependents_for(type(owner)):
            if dependent.cascade == CascadeMode.HARD_DESTROY:
                for child in self.find(dependent, owner):
                    self.service._really_destroy(child, ctx)
            elif dependent.cascade == CascadeMode.HARD_DELETE:
                self._bulk_delete(dependent, owner)

    def really_destroy_dependents(
        self, owner: Any, ctx: CascadeContext, owner_side: bool = False
    ) -> None:
        """
        Hard cascade for ``really_destroy``.

        Dependents holding a key to the owner go first (``owner_side=False``);
        dependents the owner holds a key to go after the owner row is gone
        (``owner_side=True``).
        """
        for dependent in dependents_for(type(owner)):
            if (dependent.direction == RelationshipDirection.MANYTOONE) != owner_side:
                continue

            if dependent.cascade in (CascadeMode.DESTROY, CascadeMode.HARD_DESTROY):
                for child in self.find(dependent, owner):
                    self.service._really_destroy(child, ctx)
            elif dependent.cascade in (CascadeMode.DELETE, CascadeMode.HARD_DELETE):
                self._bulk_delete(dependent, owner)
            elif dependent.cascade == CascadeMode.NULLIFY:
                self._nullify(dependent, owner)

    def restore_dependents(self, owner: Any, ctx: CascadeContext) -> None:
        """Recursively restore soft-deleted dependents of ``owner``."""
        for dependent in dependents_for(type(owner)):
            if dependent.cascade not in (CascadeMode.DESTROY, CascadeMode.DELETE):
                continue
            if not dependent.target_is_paranoid:
                continue

            if dependent.is_collection:
                children = self.find(dependent, owner, "deleted")
            else:
                # Looked up with the owner-type condition; the relationship
                # attribute alone can load another owner type's row
                children = self.find(dependent, owner, "deleted")[:1] or self.find(
                    dependent, owner, "live"
                )[:1]

            for child in children:
                self.service._restore(child, ctx)

    def expire_associations(self, owner: Any) -> None:
        """Drop cached dependent collections so the next read hits the database."""
        names = [dependent.name for dependent in dependents_for(type(owner))]
        if names and sa_inspect(owner).persistent:
            self.session.expire(owner, names)

    def _bulk_delete(self, dependent: ResolvedDependent, owner: Any) -> None:
        if not dependent.has_key(owner):
            return
        result = self.session.execute(
            delete(dependent.target_cls)
            .where(*dependent.conditions(owner))
            .execution_options(synchronize_session="fetch")
        )
        logger.debug(
            "Hard deleted %s %s row(s) of %s %s",
            result.rowcount,
            dependent.target_cls.__name__,
            type(owner).__name__,
            entity_id(owner),
        )

    def _nullify(self, dependent: ResolvedDependent, owner: Any) -> None:
        if not dependent.has_key(owner):
            return
        self.session.execute(
            update(dependent.target_cls)
            .where(*dependent.conditions(owner))
            .values(dependent.nullify_values())
            .execution_options(synchronize_session="fetch")
        )
