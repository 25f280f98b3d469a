"""
Dependent relationship declarations and counter caches.

Declarations are registered on the model class and resolved lazily against
the SQLAlchemy mapper, after all mappers are configured.

Usage:
    class Post(SoftDeleteMixin, Base):
        __tablename__ = "posts"
        __paranoia_dependents__ = [
            Dependent("comments", cascade=CascadeMode.DESTROY,
                      owner_type_column="owner_type"),
            Dependent("attachments", cascade=CascadeMode.HARD_DELETE),
        ]

    class Comment(SoftDeleteMixin, Base):
        __tablename__ = "comments"
        __paranoia_counter_caches__ = [CounterCache("post", "comments_count")]
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import update
from sqlalchemy.orm import RelationshipDirection, Session
from sqlalchemy.sql.elements import ColumnElement

from .exceptions import InvalidDependentError
from .policy import policy_for


class CascadeMode(str, Enum):
    """What happens to a dependent when its owner is deleted."""

    NONE = "none"
    DESTROY = "destroy"  # soft destroy with hooks
    DELETE = "delete"  # soft delete without hooks
    NULLIFY = "nullify"  # clear the foreign key
    HARD_DESTROY = "destroy!"  # physically destroy with hooks
    HARD_DELETE = "delete!"  # physically delete in bulk


class Cardinality(str, Enum):
    SINGULAR = "singular"
    COLLECTION = "collection"


@dataclass(frozen=True)
class Dependent:
    """Declaration of a dependent relationship on an owner class."""

    name: str
    cascade: CascadeMode = CascadeMode.DESTROY
    owner_type_column: Optional[str] = None
    owner_type_value: Optional[str] = None
    foreign_key: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "cascade", CascadeMode(self.cascade))


@dataclass
class ResolvedDependent:
    """A dependent declaration bound to its SQLAlchemy relationship."""

    declaration: Dependent
    owner_cls: type
    target_cls: type
    cardinality: Cardinality
    direction: RelationshipDirection
    # (owner attribute, target attribute) key pairs
    pairs: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def cascade(self) -> CascadeMode:
        return self.declaration.cascade

    @property
    def is_collection(self) -> bool:
        return self.cardinality == Cardinality.COLLECTION

    @property
    def target_is_paranoid(self) -> bool:
        return policy_for(self.target_cls) is not None

    def discriminator_value(self) -> str:
        return self.declaration.owner_type_value or self.owner_cls.__name__

    def conditions(self, owner: Any) -> List[ColumnElement[bool]]:
        """Lookup predicates for the dependents of ``owner``.

        The owner-type discriminator is always included for polymorphic
        dependents, otherwise a different owner type sharing the same key value
        would match.
        """
        clauses = [
            getattr(self.target_cls, target_attr) == getattr(owner, owner_attr)
            for owner_attr, target_attr in self.pairs
        ]
        if self.declaration.owner_type_column:
            clauses.append(
                getattr(self.target_cls, self.declaration.owner_type_column)
                == self.discriminator_value()
            )
        return clauses

    def has_key(self, owner: Any) -> bool:
        return all(
            getattr(owner, owner_attr) is not None for owner_attr, _ in self.pairs
        )

    def nullify_values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {target_attr: None for _, target_attr in self.pairs}
        if self.declaration.owner_type_column:
            values[self.declaration.owner_type_column] = None
        return values


DependentSpec = Union[Dependent, str]

_resolved: Dict[type, List[ResolvedDependent]] = {}


def _as_dependent(spec: DependentSpec) -> Dependent:
    if isinstance(spec, Dependent):
        return spec
    return Dependent(spec)


def declared_dependents(cls: type) -> List[Dependent]:
    """Dependent declarations of ``cls`` including inherited ones."""
    by_name: Dict[str, Dependent] = {}
    for klass in reversed(cls.__mro__):
        for spec in vars(klass).get("__paranoia_dependents__", ()):
            dependent = _as_dependent(spec)
            by_name[dependent.name] = dependent
    return list(by_name.values())


def register_dependent(cls: type, dependent: DependentSpec) -> Dependent:
    """Declare a dependent on ``cls`` after the class body has run."""
    dependent = _as_dependent(dependent)
    own = list(vars(cls).get("__paranoia_dependents__", ()))
    own.append(dependent)
    cls.__paranoia_dependents__ = own  # type: ignore[attr-defined]
    _resolved.clear()
    return dependent


def resolve_dependent(cls: type, dependent: Dependent) -> ResolvedDependent:
    """Bind a declaration to the relationship it names.

    Raises:
        InvalidDependentError: Unknown relationship or unsupported shape
    """
    mapper = sa_inspect(cls)
    relationships = mapper.relationships
    if dependent.name not in relationships:
        raise InvalidDependentError(
            f"{cls.__name__} has no relationship named '{dependent.name}'"
        )

    prop = relationships[dependent.name]
    target_mapper = prop.mapper

    if prop.secondary is not None:
        raise InvalidDependentError(
            f"{cls.__name__}.{dependent.name} uses a secondary table; "
            "declare the dependent on the association class instead"
        )

    if (
        dependent.cascade == CascadeMode.NULLIFY
        and prop.direction != RelationshipDirection.ONETOMANY
    ):
        raise InvalidDependentError(
            f"{cls.__name__}.{dependent.name}: nullify requires a one-to-many "
            "or one-to-one relationship"
        )

    if dependent.foreign_key is not None:
        if len(mapper.primary_key) != 1:
            raise InvalidDependentError(
                f"{cls.__name__}: foreign_key override needs a single-column "
                "primary key"
            )
        owner_attr = mapper.get_property_by_column(mapper.primary_key[0]).key
        pairs = [(owner_attr, dependent.foreign_key)]
    else:
        pairs = [
            (
                mapper.get_property_by_column(local).key,
                target_mapper.get_property_by_column(remote).key,
            )
            for local, remote in prop.local_remote_pairs
        ]

    if not pairs:
        raise InvalidDependentError(
            f"{cls.__name__}.{dependent.name}: unable to determine join columns"
        )

    return ResolvedDependent(
        declaration=dependent,
        owner_cls=cls,
        target_cls=target_mapper.class_,
        cardinality=(
            Cardinality.COLLECTION if prop.uselist else Cardinality.SINGULAR
        ),
        direction=prop.direction,
        pairs=pairs,
    )


def dependents_for(cls: type) -> List[ResolvedDependent]:
    """Resolved dependents of ``cls`` in declaration order (cached)."""
    if cls not in _resolved:
        _resolved[cls] = [
            resolve_dependent(cls, dependent)
            for dependent in declared_dependents(cls)
            if dependent.cascade != CascadeMode.NONE
        ]
    return _resolved[cls]


@dataclass(frozen=True)
class CounterCache:
    """Counter column on an owner tracking live instances of this class."""

    relationship: str
    column: str


def declared_counter_caches(cls: type) -> List[CounterCache]:
    caches: List[CounterCache] = []
    for klass in reversed(cls.__mro__):
        caches.extend(vars(klass).get("__paranoia_counter_caches__", ()))
    return caches


def adjust_counter_caches(session: Session, record: Any, delta: int) -> None:
    """Add ``delta`` to every counter cache column ``record`` contributes to."""
    for cache in declared_counter_caches(type(record)):
        mapper = sa_inspect(type(record))
        if cache.relationship not in mapper.relationships:
            raise InvalidDependentError(
                f"{type(record).__name__} has no relationship named "
                f"'{cache.relationship}' for its counter cache"
            )

        prop = mapper.relationships[cache.relationship]
        if prop.direction != RelationshipDirection.MANYTOONE:
            raise InvalidDependentError(
                f"Counter cache {type(record).__name__}.{cache.relationship} "
                "must point at the owner through a many-to-one"
            )

        owner_cls = prop.mapper.class_
        conditions = []
        for local, remote in prop.local_remote_pairs:
            value = getattr(record, mapper.get_property_by_column(local).key)
            if value is None:
                break
            owner_attr = prop.mapper.get_property_by_column(remote).key
            conditions.append(getattr(owner_cls, owner_attr) == value)
        else:
            counter = getattr(owner_cls, cache.column)
            session.execute(
                update(owner_cls)
                .where(*conditions)
                .values({cache.column: counter + delta})
                .execution_options(synchronize_session="fetch")
            )

