"""
ORM-level immutability enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule                                    | Paths checked
----------------|-----------------------------------------|---------------------------
Product         | costing_method frozen once locked;      | before_update (unit of
                | costing_locked never reverts to False   | work) AND do_orm_execute
                |                                         | (bulk update(Product))
StockMovement   | append-only: no UPDATE, no DELETE       | before_update/before_delete
                |                                         | AND do_orm_execute
SaleLine        | cogs_* columns write-once               | before_update AND
                |                                         | do_orm_execute
FiscalPeriod    | status only moves open->closed->locked; | before_update
                | dates and code frozen once not open     |

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()                          session.execute(update(Model)...)
         |                                              |
         v                                              v
    [before_update / before_delete]             [do_orm_execute]
         |                                              |
         +--> _check_*() --> CostingMethodImmutableError / ImmutabilityViolationError
         |                                              |
         v                                              v
    SQL sent to database (only if checks pass)

The bulk path matters because an ORM-enabled ``update()`` never loads the
rows it touches, so mapper events do not fire for it.  Each path reads the
prior state from the database itself rather than trusting in-memory
history, which may be expired.

Raw SQL text is not intercepted.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to write forbidden data may call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import ORMExecuteState, Session

from inventory_kernel.exceptions import (
    CostingMethodImmutableError,
    ImmutabilityViolationError,
    InvalidPeriodTransitionError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_keys(target) -> set[str]:
    return {
        attr.key
        for attr in inspect(target).attrs
        if attr.history.has_changes() and attr.key not in _AUDIT_FIELDS
    }


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =========================================================================
# Product costing method
# =========================================================================


def _costing_change_error(product_id, current_method, requested_method, locked_at, path):
    logger.error(
        "costing_method_change_blocked",
        extra={
            "product_id": str(product_id),
            "current_method": current_method,
            "requested_method": requested_method,
            "path": path,
        },
    )
    return CostingMethodImmutableError(
        product_id=str(product_id),
        current_method=current_method,
        requested_method=requested_method,
        locked_at=locked_at.isoformat() if locked_at is not None else None,
    )


def _normalize_method(value):
    if value is None:
        return None
    return getattr(value, "value", value)


def _check_costing_transition(row, changes: dict, path: str) -> None:
    """Compare one stored product row against the columns about to be written."""
    if row is None or not row.costing_locked:
        return
    if "costing_method" in changes:
        requested = _normalize_method(changes["costing_method"])
        if requested != row.costing_method:
            raise _costing_change_error(
                row.id, row.costing_method, requested, row.costing_locked_at, path
            )
    if "costing_locked" in changes and not changes["costing_locked"]:
        raise _costing_change_error(
            row.id, row.costing_method, row.costing_method, row.costing_locked_at, path
        )


def _product_rows(connection_or_session, ids=None, whereclause=None):
    from inventory_kernel.models.product import Product

    stmt = select(
        Product.id,
        Product.costing_method,
        Product.costing_locked,
        Product.costing_locked_at,
    )
    if ids is not None:
        stmt = stmt.where(Product.id.in_(ids))
    elif whereclause is not None:
        stmt = stmt.where(whereclause)
    return connection_or_session.execute(stmt).all()


def _check_product_costing_immutability(mapper, connection, target):
    """Unit-of-work path: a loaded Product whose costing fields changed."""
    from inventory_kernel.models.product import Product

    if not isinstance(target, Product):
        return

    changed = _changed_keys(target) & {"costing_method", "costing_locked"}
    if not changed:
        return

    rows = _product_rows(connection, ids=[target.id])
    changes = {key: getattr(target, key) for key in changed}
    _check_costing_transition(rows[0] if rows else None, changes, "unit_of_work")


# =========================================================================
# StockMovement (append-only)
# =========================================================================


def _check_stock_movement_immutability(mapper, connection, target):
    from inventory_kernel.models.inventory import StockMovement

    if not isinstance(target, StockMovement):
        return
    raise _blocked(
        "StockMovement",
        target.id,
        "UPDATE",
        "Stock movements are append-only and cannot be modified",
    )


def _check_stock_movement_delete(mapper, connection, target):
    from inventory_kernel.models.inventory import StockMovement

    if not isinstance(target, StockMovement):
        return
    raise _blocked(
        "StockMovement",
        target.id,
        "DELETE",
        "Stock movements are append-only and cannot be deleted",
    )


# =========================================================================
# SaleLine frozen COGS (write-once)
# =========================================================================


def _sale_line_frozen_ids(connection_or_session, ids=None, whereclause=None):
    from inventory_kernel.models.sale import SaleLine

    stmt = select(SaleLine.id).where(SaleLine.cogs_calculated_at.is_not(None))
    if ids is not None:
        stmt = stmt.where(SaleLine.id.in_(ids))
    elif whereclause is not None:
        stmt = stmt.where(whereclause)
    return [row.id for row in connection_or_session.execute(stmt)]


def _check_sale_line_cogs_immutability(mapper, connection, target):
    from inventory_kernel.models.sale import FROZEN_COGS_COLUMNS, SaleLine

    if not isinstance(target, SaleLine):
        return

    changed = _changed_keys(target) & set(FROZEN_COGS_COLUMNS)
    if not changed:
        return

    if _sale_line_frozen_ids(connection, ids=[target.id]):
        raise _blocked(
            "SaleLine",
            target.id,
            "UPDATE",
            "Frozen COGS is write-once and cannot be recalculated",
            fields=sorted(changed),
        )


# =========================================================================
# FiscalPeriod (monotonic status)
# =========================================================================

_PERIOD_FIELDS_FROZEN_WHEN_SEALED = frozenset(
    {"period_code", "start_date", "end_date", "is_critical"}
)


def _check_fiscal_period_immutability(mapper, connection, target):
    """
    Status may only move forward; closed/locked periods keep their range.

    Override bookkeeping (override_count, last_override_*) and the
    closed_*/locked_* stamps stay writable.
    """
    from inventory_kernel.domain.dtos import PERIOD_STATUS_ORDER, PeriodStatus
    from inventory_kernel.models.fiscal_period import FiscalPeriod

    if not isinstance(target, FiscalPeriod):
        return

    changed = _changed_keys(target)
    if not changed:
        return

    row = connection.execute(
        select(FiscalPeriod.status).where(FiscalPeriod.id == target.id)
    ).first()
    if row is None:
        return
    old_status = PeriodStatus(row.status)

    if "status" in changed:
        new_status = PeriodStatus(target.status)
        if PERIOD_STATUS_ORDER[new_status] <= PERIOD_STATUS_ORDER[old_status]:
            logger.error(
                "period_transition_blocked",
                extra={
                    "period_code": target.period_code,
                    "from_status": old_status.value,
                    "to_status": new_status.value,
                },
            )
            raise InvalidPeriodTransitionError(
                target.period_code, old_status.value, new_status.value
            )

    if old_status != PeriodStatus.OPEN:
        frozen = changed & _PERIOD_FIELDS_FROZEN_WHEN_SEALED
        if frozen:
            field = sorted(frozen)[0]
            raise _blocked(
                "FiscalPeriod",
                target.id,
                "UPDATE",
                f"Cannot modify field '{field}' on {old_status.value} fiscal period",
                field=field,
            )


# =========================================================================
# Bulk statement path
# =========================================================================


def _statement_changes(orm_execute_state: ORMExecuteState) -> list[dict]:
    """
    Column values an ORM-enabled UPDATE is about to write.

    Explicit execute() parameters win (bulk update by primary key passes a
    list of dicts); otherwise the statement's own VALUES are compiled.
    """
    params = orm_execute_state.parameters
    if isinstance(params, dict) and params:
        return [dict(params)]
    if isinstance(params, (list, tuple)) and params:
        return [dict(p) for p in params]
    compiled = orm_execute_state.statement.compile()
    return [dict(compiled.params)]


def _check_bulk_statement(orm_execute_state: ORMExecuteState) -> None:
    """do_orm_execute hook for update()/delete() that skip the unit of work."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is None:
        return

    from inventory_kernel.models.inventory import StockMovement
    from inventory_kernel.models.product import Product
    from inventory_kernel.models.sale import FROZEN_COGS_COLUMNS, SaleLine

    entity = mapper.class_
    session = orm_execute_state.session
    statement = orm_execute_state.statement

    if entity is StockMovement:
        operation = "DELETE" if orm_execute_state.is_delete else "UPDATE"
        raise _blocked(
            "StockMovement",
            "*",
            operation,
            "Stock movements are append-only",
            path="bulk",
        )

    if not orm_execute_state.is_update:
        return

    if entity is Product:
        for changes in _statement_changes(orm_execute_state):
            touched = {k: v for k, v in changes.items() if k in ("costing_method", "costing_locked")}
            if not touched:
                continue
            if "id" in changes:
                rows = _product_rows(session, ids=[changes["id"]])
            else:
                rows = _product_rows(session, whereclause=statement.whereclause)
            for row in rows:
                _check_costing_transition(row, touched, "bulk_update")

    elif entity is SaleLine:
        for changes in _statement_changes(orm_execute_state):
            touched = sorted(k for k in changes if k in FROZEN_COGS_COLUMNS)
            if not touched:
                continue
            if "id" in changes:
                frozen = _sale_line_frozen_ids(session, ids=[changes["id"]])
            else:
                frozen = _sale_line_frozen_ids(session, whereclause=statement.whereclause)
            if frozen:
                raise _blocked(
                    "SaleLine",
                    frozen[0],
                    "UPDATE",
                    "Frozen COGS is write-once and cannot be recalculated",
                    fields=touched,
                    path="bulk",
                )


# =========================================================================
# Registration
# =========================================================================


def _listeners():
    from inventory_kernel.models.fiscal_period import FiscalPeriod
    from inventory_kernel.models.inventory import StockMovement
    from inventory_kernel.models.product import Product
    from inventory_kernel.models.sale import SaleLine

    return (
        (Product, "before_update", _check_product_costing_immutability),
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (SaleLine, "before_update", _check_sale_line_cogs_immutability),
        (FiscalPeriod, "before_update", _check_fiscal_period_immutability),
        (Session, "do_orm_execute", _check_bulk_statement),
    )


def register_immutability_listeners():
    """Register all immutability listeners.  Safe to call more than once."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove immutability listeners.  TESTS ONLY."""
    for target, name, fn in _listeners():
        _safe_remove_listener(target, name, fn)
    logger.debug("immutability_listeners_unregistered")
