from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext, Role
from app.clock import Clock, system_clock
from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models import (
    GoodsReceipt,
    GoodsReceiptLine,
    GoodsReceiptStatus,
    GoodsReceiptStatusHistory,
    Item,
    ItemSerialNumber,
    LocationType,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    PutAway,
    PutAwayLine,
    PutAwayStatus,
    SerialNumberStatus,
    StockReferenceType,
    WarehouseLocation,
)
from app.services import master_data_service
from app.services.decimal_utils import EPSILON, format_qty, to_decimal
from app.services.numbering_service import GOODS_RECEIPT_PREFIX, generate_number
from app.services.stock_movement_service import create_movement

logger = logging.getLogger(__name__)

RECEIVABLE_PO_STATUSES = {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.SENT, PurchaseOrderStatus.CLOSED}
POSTED_STATUSES = {
    GoodsReceiptStatus.POSTED,
    GoodsReceiptStatus.PUT_AWAY_PARTIAL,
    GoodsReceiptStatus.PUT_AWAY_COMPLETED,
}
_WAREHOUSE_ROLES = (Role.WAREHOUSE, Role.SUPER_ADMIN)


@dataclass(frozen=True)
class GoodsReceiptLineInput:
    purchase_order_line_id: int
    received_quantity: Decimal
    serial_numbers: list[str] | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class PutAwayLineSummary:
    goods_receipt_line_id: int
    item_id: int
    received_qty: Decimal
    put_away_qty: Decimal
    remaining_qty: Decimal


@dataclass
class _LineCheck:
    errors: dict[str, str] = field(default_factory=dict)

    def add(self, key: str, message: str) -> None:
        self.errors.setdefault(key, message)


def require_warehouse_role(actor: AuthorizationContext, message: str) -> None:
    if not actor.has_any_role(_WAREHOUSE_ROLES):
        raise ForbiddenError(message)


def _record_history(
    db: Session,
    *,
    gr: GoodsReceipt,
    from_status: GoodsReceiptStatus | None,
    action: str,
    actor_id: int | None,
    clock: Clock,
    meta: dict | None = None,
) -> None:
    db.add(
        GoodsReceiptStatusHistory(
            goods_receipt_id=gr.id,
            from_status=from_status.value if from_status else None,
            to_status=gr.status.value,
            action=action,
            actor_user_id=actor_id,
            meta=meta or {},
            created_at=clock.now(),
        )
    )


def get_goods_receipt(db: Session, goods_receipt_id: int, *, for_update: bool = False) -> GoodsReceipt:
    stmt = select(GoodsReceipt).where(GoodsReceipt.id == goods_receipt_id)
    if for_update:
        stmt = stmt.with_for_update()
    gr = db.execute(stmt).scalar_one_or_none()
    if not gr:
        raise NotFoundError('Goods receipt not found')
    return gr


def list_lines(db: Session, *, goods_receipt_id: int) -> list[GoodsReceiptLine]:
    return db.execute(
        select(GoodsReceiptLine)
        .where(GoodsReceiptLine.goods_receipt_id == goods_receipt_id)
        .order_by(GoodsReceiptLine.line_no.asc())
    ).scalars().all()


def list_history(db: Session, *, goods_receipt_id: int) -> list[GoodsReceiptStatusHistory]:
    return db.execute(
        select(GoodsReceiptStatusHistory)
        .where(GoodsReceiptStatusHistory.goods_receipt_id == goods_receipt_id)
        .order_by(GoodsReceiptStatusHistory.id.asc())
    ).scalars().all()


def find_default_receiving_location(db: Session, *, warehouse_id: int) -> WarehouseLocation | None:
    return db.execute(
        select(WarehouseLocation)
        .where(
            WarehouseLocation.warehouse_id == warehouse_id,
            WarehouseLocation.type == LocationType.RECEIVING,
            WarehouseLocation.is_default.is_(True),
            WarehouseLocation.is_active.is_(True),
        )
        .order_by(WarehouseLocation.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def require_default_receiving_location(db: Session, *, warehouse_id: int) -> WarehouseLocation:
    location = find_default_receiving_location(db, warehouse_id=warehouse_id)
    if not location:
        raise ValidationError.single('warehouse_id', 'Default RECEIVING location not found for this warehouse.')
    return location


def received_qty_by_po_line(db: Session, *, purchase_order_id: int) -> dict[int, Decimal]:
    rows = db.execute(
        select(GoodsReceiptLine.purchase_order_line_id, func.sum(GoodsReceiptLine.received_quantity))
        .join(GoodsReceipt, GoodsReceipt.id == GoodsReceiptLine.goods_receipt_id)
        .where(GoodsReceipt.purchase_order_id == purchase_order_id, GoodsReceipt.status.in_(POSTED_STATUSES))
        .group_by(GoodsReceiptLine.purchase_order_line_id)
    ).all()
    return {line_id: to_decimal(qty) for line_id, qty in rows}


def put_away_qty_by_gr_line(db: Session, *, goods_receipt_id: int) -> dict[int, Decimal]:
    rows = db.execute(
        select(PutAwayLine.goods_receipt_line_id, func.sum(PutAwayLine.qty))
        .join(PutAway, PutAway.id == PutAwayLine.put_away_id)
        .where(PutAway.goods_receipt_id == goods_receipt_id, PutAway.status == PutAwayStatus.POSTED)
        .group_by(PutAwayLine.goods_receipt_line_id)
    ).all()
    return {line_id: to_decimal(qty) for line_id, qty in rows}


def get_put_away_summary(db: Session, *, goods_receipt_id: int) -> list[PutAwayLineSummary]:
    gr = get_goods_receipt(db, goods_receipt_id)
    posted = put_away_qty_by_gr_line(db, goods_receipt_id=gr.id)
    summary = []
    for line in list_lines(db, goods_receipt_id=gr.id):
        received = to_decimal(line.received_quantity)
        put = posted.get(line.id, Decimal('0'))
        summary.append(
            PutAwayLineSummary(
                goods_receipt_line_id=line.id,
                item_id=line.item_id,
                received_qty=received,
                put_away_qty=put,
                remaining_qty=max(Decimal('0'), received - put),
            )
        )
    return summary


def _lock_receivable_po(db: Session, purchase_order_id: int, *, message: str) -> PurchaseOrder:
    po = db.execute(
        select(PurchaseOrder).where(PurchaseOrder.id == purchase_order_id).with_for_update()
    ).scalar_one_or_none()
    if not po:
        raise NotFoundError('Purchase order not found')
    if po.status not in RECEIVABLE_PO_STATUSES:
        raise ValidationError.single('purchase_order_id', message)
    return po


def _po_lines_by_id(db: Session, po: PurchaseOrder) -> dict[int, PurchaseOrderLine]:
    rows = db.execute(select(PurchaseOrderLine).where(PurchaseOrderLine.purchase_order_id == po.id)).scalars().all()
    return {row.id: row for row in rows}


def _check_over_receipt(check: _LineCheck, index: int, *, ordered: Decimal, already: Decimal, received: Decimal) -> None:
    if (already + received) - ordered > EPSILON:
        check.add(
            f'lines.{index}.received_quantity',
            f'Over-receipt is not allowed. Ordered: {format_qty(ordered)}, already received: {format_qty(already)}.',
        )


def _check_serials(check: _LineCheck, index: int, *, item: Item, received: Decimal, serials: list[str] | None) -> None:
    if not item.is_serialized:
        return
    key = f'lines.{index}.serial_numbers'
    cleaned = [str(s).strip() for s in serials or [] if str(s).strip()]
    if not cleaned:
        check.add(key, f'Serial numbers are required for serialized item: {item.name}.')
    elif Decimal(len(cleaned)) != received:
        check.add(key, f'Number of serial numbers must match received quantity for item: {item.name}.')
    elif len(set(cleaned)) != len(cleaned):
        check.add(key, f'Duplicate serial numbers for item: {item.name}.')


def _validate_lines(
    db: Session,
    *,
    po: PurchaseOrder,
    lines: list[GoodsReceiptLineInput],
) -> dict[int, PurchaseOrderLine]:
    if not lines:
        raise ValidationError.single('lines', 'At least one receipt line is required.')
    po_lines = _po_lines_by_id(db, po)
    received_to_date = received_qty_by_po_line(db, purchase_order_id=po.id)
    check = _LineCheck()
    for index, line in enumerate(lines):
        po_line = po_lines.get(line.purchase_order_line_id)
        if not po_line:
            check.add(f'lines.{index}.purchase_order_line_id', 'Invalid PO line for this purchase order.')
            continue
        received = to_decimal(line.received_quantity)
        if received <= 0:
            check.add(f'lines.{index}.received_quantity', 'Received quantity must be > 0.')
            continue
        _check_over_receipt(
            check,
            index,
            ordered=to_decimal(po_line.quantity),
            already=received_to_date.get(po_line.id, Decimal('0')),
            received=received,
        )
        item = master_data_service.get_item(db, po_line.item_id)
        _check_serials(check, index, item=item, received=received, serials=line.serial_numbers)
    if check.errors:
        raise ValidationError(check.errors)
    return po_lines


def _replace_lines(
    db: Session,
    *,
    gr: GoodsReceipt,
    po_lines: dict[int, PurchaseOrderLine],
    lines: list[GoodsReceiptLineInput],
) -> None:
    db.execute(delete(GoodsReceiptLine).where(GoodsReceiptLine.goods_receipt_id == gr.id))
    for line_no, line in enumerate(lines, start=1):
        po_line = po_lines[line.purchase_order_line_id]
        serials = [str(s).strip() for s in line.serial_numbers or [] if str(s).strip()]
        db.add(
            GoodsReceiptLine(
                goods_receipt_id=gr.id,
                line_no=line_no,
                purchase_order_line_id=po_line.id,
                item_id=po_line.item_id,
                uom_id=po_line.uom_id,
                ordered_quantity=to_decimal(po_line.quantity),
                received_quantity=to_decimal(line.received_quantity),
                serial_numbers=serials or None,
                item_snapshot=dict(po_line.item_snapshot or {}),
                uom_snapshot=dict(po_line.uom_snapshot or {}),
                remarks=line.remarks,
            )
        )
    db.flush()


def create_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    warehouse_id: int,
    lines: list[GoodsReceiptLineInput],
    received_at: datetime | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> GoodsReceipt:
    require_warehouse_role(actor, 'Only warehouse can create Goods Receipt.')
    po = _lock_receivable_po(
        db,
        purchase_order_id,
        message='Goods Receipt can only be created for PO with status at least APPROVED.',
    )
    warehouse = master_data_service.get_warehouse(db, warehouse_id)
    if not warehouse.active:
        raise ValidationError.single('warehouse_id', 'Warehouse is not active.')
    po_lines = _validate_lines(db, po=po, lines=lines)

    now = clock.now()
    gr = GoodsReceipt(
        gr_number=generate_number(db, prefix=GOODS_RECEIPT_PREFIX, clock=clock),
        purchase_order_id=po.id,
        warehouse_id=warehouse.id,
        status=GoodsReceiptStatus.DRAFT,
        received_at=received_at or now,
        remarks=remarks,
        purchase_order_snapshot={
            'id': po.id,
            'po_number': po.po_number,
            'supplier': po.supplier_snapshot,
            'currency_code': po.currency_code,
            'tax_rate': str(po.tax_rate),
        },
        warehouse_snapshot=master_data_service.warehouse_snapshot(warehouse),
        created_by_user_id=actor.id,
        created_at=now,
    )
    db.add(gr)
    db.flush()
    _replace_lines(db, gr=gr, po_lines=po_lines, lines=lines)
    _record_history(
        db,
        gr=gr,
        from_status=None,
        action='create',
        actor_id=actor.id,
        clock=clock,
        meta={'purchase_order_id': po.id, 'po_number': po.po_number},
    )
    db.flush()
    return gr


def update_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    goods_receipt_id: int,
    lines: list[GoodsReceiptLineInput],
    received_at: datetime | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> GoodsReceipt:
    require_warehouse_role(actor, 'Only warehouse can update Goods Receipt.')
    gr = get_goods_receipt(db, goods_receipt_id, for_update=True)
    if gr.status != GoodsReceiptStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT GR can be updated.')
    po = _lock_receivable_po(db, gr.purchase_order_id, message='PO is not in receivable state.')
    po_lines = _validate_lines(db, po=po, lines=lines)

    if received_at is not None:
        gr.received_at = received_at
    if remarks is not None:
        gr.remarks = remarks
    _replace_lines(db, gr=gr, po_lines=po_lines, lines=lines)
    _record_history(db, gr=gr, from_status=gr.status, action='update', actor_id=actor.id, clock=clock)
    db.flush()
    return gr


def _create_serials(
    db: Session,
    *,
    gr: GoodsReceipt,
    line: GoodsReceiptLine,
    item: Item,
    location_id: int,
    received_at: datetime,
) -> None:
    serials = list(line.serial_numbers or [])
    key = f'lines.{line.line_no - 1}.serial_numbers'
    if not serials:
        raise ValidationError.single(key, f'Serial numbers are required for serialized item: {item.name}.')
    if Decimal(len(serials)) != to_decimal(line.received_quantity):
        raise ValidationError.single(
            key,
            f'Number of serial numbers ({len(serials)}) must match received quantity '
            f'({format_qty(line.received_quantity)}) for item: {item.name}.',
        )
    existing = db.execute(
        select(ItemSerialNumber.serial_number).where(ItemSerialNumber.serial_number.in_(serials))
    ).scalars().all()
    if existing:
        raise ValidationError.single(key, f"Serial number '{existing[0]}' already exists.")
    for serial in serials:
        db.add(
            ItemSerialNumber(
                item_id=item.id,
                serial_number=serial,
                status=SerialNumberStatus.AVAILABLE,
                current_location_id=location_id,
                received_at=received_at,
                goods_receipt_line_id=line.id,
                remarks=f'Received via GR #{gr.gr_number}',
                meta={'gr_number': gr.gr_number, 'purchase_order_id': gr.purchase_order_id},
            )
        )


def post(
    db: Session,
    *,
    actor: AuthorizationContext,
    goods_receipt_id: int,
    clock: Clock = system_clock,
) -> GoodsReceipt:
    require_warehouse_role(actor, 'Only warehouse can post Goods Receipt.')
    gr = get_goods_receipt(db, goods_receipt_id, for_update=True)
    if gr.status != GoodsReceiptStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT GR can be posted.')
    po = _lock_receivable_po(db, gr.purchase_order_id, message='PO is not in receivable state.')

    gr_lines = list_lines(db, goods_receipt_id=gr.id)
    po_lines = _po_lines_by_id(db, po)
    received_to_date = received_qty_by_po_line(db, purchase_order_id=po.id)
    check = _LineCheck()
    for index, line in enumerate(gr_lines):
        po_line = po_lines.get(line.purchase_order_line_id)
        if not po_line:
            check.add(f'lines.{index}.purchase_order_line_id', 'PO line not found (changed/removed).')
            continue
        _check_over_receipt(
            check,
            index,
            ordered=to_decimal(po_line.quantity),
            already=received_to_date.get(po_line.id, Decimal('0')),
            received=to_decimal(line.received_quantity),
        )
    if check.errors:
        raise ValidationError(check.errors)

    receiving = require_default_receiving_location(db, warehouse_id=gr.warehouse_id)

    from_status = gr.status
    now = clock.now()
    gr.status = GoodsReceiptStatus.POSTED
    gr.posted_at = now
    gr.posted_by_user_id = actor.id
    db.flush()

    for line in gr_lines:
        create_movement(
            db,
            item_id=line.item_id,
            uom_id=line.uom_id,
            source_location_id=None,
            destination_location_id=receiving.id,
            qty=line.received_quantity,
            reference_type=StockReferenceType.GOODS_RECEIPT,
            reference_id=gr.id,
            created_by=actor.id,
            movement_at=now,
            meta={
                'gr_number': gr.gr_number,
                'goods_receipt_line_id': line.id,
                'purchase_order_id': gr.purchase_order_id,
                'purchase_order_line_id': line.purchase_order_line_id,
            },
        )
        item = master_data_service.get_item(db, line.item_id)
        if item.is_serialized:
            _create_serials(db, gr=gr, line=line, item=item, location_id=receiving.id, received_at=now)

    _record_history(db, gr=gr, from_status=from_status, action='post', actor_id=actor.id, clock=clock)
    db.flush()
    logger.info('Goods receipt %s posted into %s', gr.gr_number, receiving.code)
    return gr


def cancel(
    db: Session,
    *,
    actor: AuthorizationContext,
    goods_receipt_id: int,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> GoodsReceipt:
    require_warehouse_role(actor, 'Only warehouse can cancel Goods Receipt.')
    gr = get_goods_receipt(db, goods_receipt_id, for_update=True)
    if gr.status == GoodsReceiptStatus.CANCELLED:
        raise ValidationError.single('status', 'GR already cancelled.')
    if gr.status != GoodsReceiptStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT GR can be cancelled.')

    from_status = gr.status
    gr.status = GoodsReceiptStatus.CANCELLED
    gr.cancelled_at = clock.now()
    gr.cancelled_by_user_id = actor.id
    gr.cancel_reason = reason.strip() if reason else None
    _record_history(
        db,
        gr=gr,
        from_status=from_status,
        action='cancel',
        actor_id=actor.id,
        clock=clock,
        meta={'reason': gr.cancel_reason},
    )
    db.flush()
    return gr


def sync_put_away_status(
    db: Session,
    *,
    gr: GoodsReceipt,
    actor_id: int | None,
    clock: Clock = system_clock,
) -> bool:
    """Move the GR to PUT_AWAY_PARTIAL or PUT_AWAY_COMPLETED. Returns whether it changed."""
    posted = put_away_qty_by_gr_line(db, goods_receipt_id=gr.id)
    all_done = all(
        to_decimal(line.received_quantity) - posted.get(line.id, Decimal('0')) <= EPSILON
        for line in list_lines(db, goods_receipt_id=gr.id)
    )
    target = GoodsReceiptStatus.PUT_AWAY_COMPLETED if all_done else GoodsReceiptStatus.PUT_AWAY_PARTIAL
    if gr.status == target:
        return False
    from_status = gr.status
    gr.status = target
    _record_history(db, gr=gr, from_status=from_status, action='put_away_sync', actor_id=actor_id, clock=clock)
    db.flush()
    logger.info('Goods receipt %s moved to %s', gr.gr_number, target.value)
    return True
