"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                          | Declared by
--------------------|-----------------------------------------|--------------------------------
MovementRecord      | ALWAYS (from creation)                  | ``__append_only__ = True``
GoodsReceipt        | After status = validated                | ``__terminal_statuses__``
Transfer            | After completed / completed_with_variance / cancelled
InventoryCount      | After status = validated                | ``__terminal_statuses__``
Document lines      | When the parent document is terminal    | ``__immutable_parent__``

Models opt in through class attributes; ``register_immutability_listeners()``
walks the declarative registry and attaches ``before_update`` /
``before_delete`` listeners to every model that declares one.  The
listeners fire inside ``session.flush()`` before SQL is emitted, so a
blocked change aborts the flush and the database is never modified.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ``updated_at`` / ``updated_by_id`` may change on terminal rows.  They are
   audit metadata, not document content.

2. The check is "WAS terminal", not "IS terminal".  The workflow itself
   moves a document into its terminal status; that transition is allowed,
   every change after it is not.  SQLAlchemy attribute history tells the
   two apart.

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _status_value(status) -> str:
    return getattr(status, "value", status)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    changed = []
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            changed.append(attr.key)
    return changed


def _was_terminal(target, terminal: frozenset[str]) -> bool:
    history = get_history(target, "status")
    if history.deleted:
        return _status_value(history.deleted[0]) in terminal
    if not history.added:
        return _status_value(target.status) in terminal
    return False


def _check_append_only_update(mapper, connection, target):
    _blocked(
        mapper.class_.__name__, target.id, "UPDATE",
        "append-only records cannot be modified",
    )


def _check_append_only_delete(mapper, connection, target):
    _blocked(
        mapper.class_.__name__, target.id, "DELETE",
        "append-only records cannot be deleted",
    )


def _check_terminal_update(mapper, connection, target):
    terminal = frozenset(mapper.class_.__terminal_statuses__)
    if not _was_terminal(target, terminal):
        return
    fields = _changed_fields(target)
    if fields:
        _blocked(
            mapper.class_.__name__, target.id, "UPDATE",
            f"cannot modify field '{fields[0]}' on a document in terminal status",
            field=fields[0],
        )


def _check_terminal_delete(mapper, connection, target):
    terminal = frozenset(mapper.class_.__terminal_statuses__)
    if _was_terminal(target, terminal):
        _blocked(
            mapper.class_.__name__, target.id, "DELETE",
            "documents in terminal status cannot be deleted",
        )


def _parent_is_terminal(mapper, target) -> bool:
    parent = getattr(target, mapper.class_.__immutable_parent__, None)
    if parent is None:
        return False
    terminal = frozenset(type(parent).__terminal_statuses__)
    return _was_terminal(parent, terminal)


def _check_child_update(mapper, connection, target):
    if _parent_is_terminal(mapper, target) and _changed_fields(target):
        _blocked(
            mapper.class_.__name__, target.id, "UPDATE",
            "lines of a terminal document cannot be modified",
        )


def _check_child_delete(mapper, connection, target):
    if _parent_is_terminal(mapper, target):
        _blocked(
            mapper.class_.__name__, target.id, "DELETE",
            "lines of a terminal document cannot be deleted",
        )


def _listener_plan(cls) -> list[tuple[str, object]]:
    plan: list[tuple[str, object]] = []
    if getattr(cls, "__append_only__", False):
        plan += [
            ("before_update", _check_append_only_update),
            ("before_delete", _check_append_only_delete),
        ]
    if getattr(cls, "__terminal_statuses__", None):
        plan += [
            ("before_update", _check_terminal_update),
            ("before_delete", _check_terminal_delete),
        ]
    if getattr(cls, "__immutable_parent__", None):
        plan += [
            ("before_update", _check_child_update),
            ("before_delete", _check_child_delete),
        ]
    return plan


def _protected_classes() -> list[type]:
    from stock_kernel.db.base import Base
    from stock_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    return [m.class_ for m in Base.registry.mappers if _listener_plan(m.class_)]


def register_immutability_listeners() -> None:
    """Attach immutability listeners to every model that declares a rule."""
    registered = []
    for cls in _protected_classes():
        for event_name, fn in _listener_plan(cls):
            if not event.contains(cls, event_name, fn):
                event.listen(cls, event_name, fn)
        registered.append(cls.__name__)
    logger.debug("immutability_listeners_registered", extra={"models": sorted(registered)})


def unregister_immutability_listeners() -> None:
    """Remove immutability listeners.  Tests only."""
    for cls in _protected_classes():
        for event_name, fn in _listener_plan(cls):
            if event.contains(cls, event_name, fn):
                event.remove(cls, event_name, fn)
