from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext
from app.clock import Clock, system_clock
from app.errors import BusinessRuleError, NotFoundError, ValidationError
from app.models import (
    LocationType,
    PickingOrder,
    PickingOrderLine,
    PickingOrderStatus,
    PickingOrderStatusHistory,
    StockReferenceType,
    Uom,
    Warehouse,
    WarehouseLocation,
)
from app.services import master_data_service
from app.services.decimal_utils import EPSILON, format_qty, to_decimal
from app.services.goods_receipt_service import require_warehouse_role
from app.services.numbering_service import PICKING_ORDER_PREFIX, generate_number
from app.services.stock_movement_service import create_movement
from app.services.stock_query_service import get_on_hand_for_location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PickingOrderLineInput:
    item_id: int
    source_location_id: int
    qty: Decimal
    uom_id: int | None = None
    remarks: str | None = None


def _record_history(
    db: Session,
    *,
    picking_order: PickingOrder,
    from_status: PickingOrderStatus | None,
    action: str,
    actor_id: int | None,
    clock: Clock,
    meta: dict | None = None,
) -> None:
    db.add(
        PickingOrderStatusHistory(
            picking_order_id=picking_order.id,
            from_status=from_status.value if from_status else None,
            to_status=picking_order.status.value,
            action=action,
            actor_user_id=actor_id,
            meta=meta or {},
            created_at=clock.now(),
        )
    )


def get_picking_order(db: Session, picking_order_id: int, *, for_update: bool = False) -> PickingOrder:
    stmt = select(PickingOrder).where(PickingOrder.id == picking_order_id)
    if for_update:
        stmt = stmt.with_for_update()
    picking_order = db.execute(stmt).scalar_one_or_none()
    if not picking_order:
        raise NotFoundError('Picking order not found')
    return picking_order


def list_lines(db: Session, *, picking_order_id: int) -> list[PickingOrderLine]:
    return db.execute(
        select(PickingOrderLine)
        .where(PickingOrderLine.picking_order_id == picking_order_id)
        .order_by(PickingOrderLine.id.asc())
    ).scalars().all()


def _source_error(db: Session, *, location_id: int, warehouse_id: int) -> tuple[WarehouseLocation | None, str | None]:
    location = db.get(WarehouseLocation, location_id)
    if not location or not location.is_active:
        return None, 'Source location not found or inactive.'
    if location.type != LocationType.STORAGE:
        return None, 'Source location must be STORAGE type.'
    if location.warehouse_id != warehouse_id:
        return None, 'Source location must be within the same warehouse.'
    return location, None


def create_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    warehouse_id: int,
    lines: list[PickingOrderLineInput],
    department_id: int | None = None,
    purpose: str | None = None,
    picked_at: datetime | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> PickingOrder:
    require_warehouse_role(actor, 'Only warehouse can create Picking Order.')
    if not lines:
        raise ValidationError.single('lines', 'At least one line is required.')
    warehouse = master_data_service.get_warehouse(db, warehouse_id)
    if not warehouse.active:
        raise ValidationError.single('warehouse_id', 'Warehouse is not active.')
    if department_id is not None:
        master_data_service.get_department(db, department_id)

    errors: dict[str, str] = {}
    for index, line in enumerate(lines):
        if to_decimal(line.qty) <= 0:
            errors[f'lines.{index}.qty'] = 'Quantity must be greater than 0.'
        _, source_error = _source_error(db, location_id=line.source_location_id, warehouse_id=warehouse.id)
        if source_error:
            errors[f'lines.{index}.source_location_id'] = source_error
        master_data_service.get_item(db, line.item_id)
        if line.uom_id is not None and not db.get(Uom, line.uom_id):
            errors[f'lines.{index}.uom_id'] = 'UOM not found.'
    if errors:
        raise ValidationError(errors)

    now = clock.now()
    picking_order = PickingOrder(
        picking_order_number=generate_number(db, prefix=PICKING_ORDER_PREFIX, clock=clock),
        department_id=department_id,
        warehouse_id=warehouse.id,
        status=PickingOrderStatus.DRAFT,
        purpose=purpose,
        picked_at=picked_at or now,
        remarks=remarks,
        created_by_user_id=actor.id,
        created_at=now,
    )
    db.add(picking_order)
    db.flush()
    for line in lines:
        db.add(
            PickingOrderLine(
                picking_order_id=picking_order.id,
                item_id=line.item_id,
                uom_id=line.uom_id,
                source_location_id=line.source_location_id,
                qty=to_decimal(line.qty),
                remarks=line.remarks,
            )
        )
    _record_history(
        db,
        picking_order=picking_order,
        from_status=None,
        action='create',
        actor_id=actor.id,
        clock=clock,
        meta={'warehouse_id': warehouse.id, 'purpose': purpose},
    )
    db.flush()
    return picking_order


def post(
    db: Session,
    *,
    actor: AuthorizationContext,
    picking_order_id: int,
    clock: Clock = system_clock,
) -> PickingOrder:
    """Issue stock for every line, or for none of them.

    Availability is read from the ledger inside this transaction. Any short line
    aborts the whole post and all line errors are reported together.
    """
    require_warehouse_role(actor, 'Only warehouse can post Picking Order.')
    picking_order = get_picking_order(db, picking_order_id, for_update=True)
    if picking_order.status != PickingOrderStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT Picking Order can be posted.')
    warehouse = db.get(Warehouse, picking_order.warehouse_id)
    if not warehouse or not warehouse.active:
        raise ValidationError.single('warehouse_id', 'Warehouse not found or inactive.')

    lines = list_lines(db, picking_order_id=picking_order.id)
    errors: dict[str, str] = {}
    short = False
    drawn: dict[tuple[int, int, int | None], Decimal] = {}
    for index, line in enumerate(lines):
        location, source_error = _source_error(db, location_id=line.source_location_id, warehouse_id=warehouse.id)
        if source_error:
            errors[f'lines.{index}.source_location_id'] = source_error
            continue
        key = (location.id, line.item_id, line.uom_id)
        requested = to_decimal(line.qty)
        available = get_on_hand_for_location(
            db, location_id=location.id, item_id=line.item_id, uom_id=line.uom_id
        ) - drawn.get(key, Decimal('0'))
        drawn[key] = drawn.get(key, Decimal('0')) + requested
        if requested - available > EPSILON:
            short = True
            errors[f'lines.{index}.qty'] = (
                f'Insufficient stock at {location.code}. '
                f'Available: {format_qty(available)}, Requested: {format_qty(requested)}'
            )
    if errors:
        raise (BusinessRuleError if short else ValidationError)(errors)

    from_status = picking_order.status
    now = clock.now()
    picking_order.status = PickingOrderStatus.POSTED
    picking_order.posted_at = now
    picking_order.posted_by_user_id = actor.id
    db.flush()

    for line in lines:
        create_movement(
            db,
            item_id=line.item_id,
            uom_id=line.uom_id,
            source_location_id=line.source_location_id,
            destination_location_id=None,
            qty=line.qty,
            reference_type=StockReferenceType.PICKING_ORDER,
            reference_id=picking_order.id,
            created_by=actor.id,
            movement_at=now,
            meta={
                'picking_order_number': picking_order.picking_order_number,
                'picking_order_line_id': line.id,
                'purpose': picking_order.purpose,
            },
        )
    _record_history(
        db,
        picking_order=picking_order,
        from_status=from_status,
        action='post',
        actor_id=actor.id,
        clock=clock,
    )
    db.flush()
    logger.info('Picking order %s posted with %s line(s)', picking_order.picking_order_number, len(lines))
    return picking_order


def cancel(
    db: Session,
    *,
    actor: AuthorizationContext,
    picking_order_id: int,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> PickingOrder:
    require_warehouse_role(actor, 'Only warehouse can cancel Picking Order.')
    picking_order = get_picking_order(db, picking_order_id, for_update=True)
    if picking_order.status != PickingOrderStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT Picking Order can be cancelled.')

    from_status = picking_order.status
    picking_order.status = PickingOrderStatus.CANCELLED
    picking_order.cancelled_at = clock.now()
    picking_order.cancelled_by_user_id = actor.id
    picking_order.cancel_reason = reason.strip() if reason else None
    _record_history(
        db,
        picking_order=picking_order,
        from_status=from_status,
        action='cancel',
        actor_id=actor.id,
        clock=clock,
        meta={'reason': picking_order.cancel_reason},
    )
    db.flush()
    return picking_order
