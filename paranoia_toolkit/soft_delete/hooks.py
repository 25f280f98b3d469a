"""
Lifecycle hooks for paranoid models.

Hooks are ordered lists run around destroy, restore and hard destroy. A
"before" hook halts its operation by returning ``False`` or raising
``HookAborted``; an "around" hook halts it by not calling ``proceed``.

Usage:
    class Order(SoftDeleteMixin, Base):
        @before_destroy
        def refuse_when_shipped(self):
            return self.status != "shipped"

        @around_restore
        def time_restore(self, proceed):
            started = time.monotonic()
            proceed()
            log.info("restore took %s", time.monotonic() - started)

    register_hook(Order, HookEvent.AFTER_DESTROY, lambda order: notify(order))
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Tuple, TypeVar

from .exceptions import HookAborted, entity_id

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

HOOK_MARKER = "__paranoia_hooks__"


class HookEvent(str, Enum):
    """Named lifecycle hook points."""

    BEFORE_DESTROY = "before_destroy"
    AROUND_DESTROY = "around_destroy"
    AFTER_DESTROY = "after_destroy"
    BEFORE_RESTORE = "before_restore"
    AROUND_RESTORE = "around_restore"
    AFTER_RESTORE = "after_restore"
    BEFORE_REAL_DESTROY = "before_real_destroy"
    AFTER_REAL_DESTROY = "after_real_destroy"


# (kind, target): kind "method" resolves target by name on the record so
# subclass overrides win, kind "function" is called with the record.
_HookEntry = Tuple[str, Any]

_registered: Dict[type, List[Tuple[HookEvent, Callable[..., Any]]]] = {}
_cache: Dict[Tuple[type, HookEvent], List[_HookEntry]] = {}


def _marker(event: HookEvent) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        events = getattr(func, HOOK_MARKER, ())
        setattr(func, HOOK_MARKER, events + (event,))
        return func

    decorator.__name__ = event.value
    decorator.__doc__ = f"Mark a model method as a {event.value} hook."
    return decorator


before_destroy = _marker(HookEvent.BEFORE_DESTROY)
around_destroy = _marker(HookEvent.AROUND_DESTROY)
after_destroy = _marker(HookEvent.AFTER_DESTROY)
before_restore = _marker(HookEvent.BEFORE_RESTORE)
around_restore = _marker(HookEvent.AROUND_RESTORE)
after_restore = _marker(HookEvent.AFTER_RESTORE)
before_real_destroy = _marker(HookEvent.BEFORE_REAL_DESTROY)
after_real_destroy = _marker(HookEvent.AFTER_REAL_DESTROY)


def register_hook(
    cls: type, event: HookEvent, func: Callable[..., Any]
) -> Callable[..., Any]:
    """
    Register a plain function as a hook for ``cls`` and its subclasses.

    Args:
        cls: Model class
        event: Hook point
        func: Callable taking the record (and ``proceed`` for around hooks)

    Returns:
        The registered function
    """
    event = HookEvent(event)
    _registered.setdefault(cls, []).append((event, func))
    _cache.clear()
    return func


def clear_hooks(cls: type) -> None:
    """Remove hooks registered with ``register_hook`` for ``cls``."""
    _registered.pop(cls, None)
    _cache.clear()


def hooks_for(cls: type, event: HookEvent) -> List[_HookEntry]:
    """Hooks for ``event`` in run order: base classes first, declaration order."""
    key = (cls, event)
    if key in _cache:
        return _cache[key]

    entries: List[_HookEntry] = []
    seen_methods = set()
    for klass in reversed(cls.__mro__):
        for name, attr in vars(klass).items():
            if event in getattr(attr, HOOK_MARKER, ()) and name not in seen_methods:
                seen_methods.add(name)
                entries.append(("method", name))
        for registered_event, func in _registered.get(klass, ()):
            if registered_event == event:
                entries.append(("function", func))

    _cache[key] = entries
    return entries


def _invoke(entry: _HookEntry, record: Any, *args: Any) -> Any:
    kind, target = entry
    if kind == "method":
        return getattr(record, target)(*args)
    return target(record, *args)


def run_before(record: Any, event: HookEvent) -> None:
    """Run before hooks; the first veto raises ``HookAborted``."""
    for entry in hooks_for(type(record), event):
        if _invoke(entry, record) is False:
            logger.info(
                "%s hook vetoed %s %s",
                event.value,
                type(record).__name__,
                entity_id(record),
            )
            raise HookAborted(event.value, entity_id=entity_id(record))


def run_after(record: Any, event: HookEvent) -> None:
    for entry in hooks_for(type(record), event):
        _invoke(entry, record)


def run_around(record: Any, event: HookEvent, body: Callable[[], None]) -> None:
    """Run ``body`` wrapped by the around hooks for ``event``."""
    entries = hooks_for(type(record), event)

    def call(index: int) -> None:
        if index == len(entries):
            body()
            return

        proceeded = False

        def proceed() -> None:
            nonlocal proceeded
            proceeded = True
            call(index + 1)

        _invoke(entries[index], record, proceed)
        if not proceeded:
            raise HookAborted(event.value, entity_id=entity_id(record))

    call(0)
