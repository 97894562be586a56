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
    GoodsReceipt,
    GoodsReceiptStatus,
    ItemSerialNumber,
    LocationType,
    PutAway,
    PutAwayLine,
    PutAwayStatus,
    PutAwayStatusHistory,
    SerialNumberStatus,
    StockReferenceType,
    WarehouseLocation,
)
from app.services import goods_receipt_service, master_data_service
from app.services.decimal_utils import EPSILON, format_qty, to_decimal
from app.services.numbering_service import PUT_AWAY_PREFIX, generate_number
from app.services.stock_movement_service import create_movement
from app.services.stock_query_service import get_on_hand_for_location

logger = logging.getLogger(__name__)

PUT_AWAYABLE_GR_STATUSES = {GoodsReceiptStatus.POSTED, GoodsReceiptStatus.PUT_AWAY_PARTIAL}


@dataclass(frozen=True)
class PutAwayLineInput:
    goods_receipt_line_id: int
    destination_location_id: int
    qty: Decimal
    remarks: str | None = None


def _record_history(
    db: Session,
    *,
    put_away: PutAway,
    from_status: PutAwayStatus | None,
    action: str,
    actor_id: int | None,
    clock: Clock,
    meta: dict | None = None,
) -> None:
    db.add(
        PutAwayStatusHistory(
            put_away_id=put_away.id,
            from_status=from_status.value if from_status else None,
            to_status=put_away.status.value,
            action=action,
            actor_user_id=actor_id,
            meta=meta or {},
            created_at=clock.now(),
        )
    )


def get_put_away(db: Session, put_away_id: int, *, for_update: bool = False) -> PutAway:
    stmt = select(PutAway).where(PutAway.id == put_away_id)
    if for_update:
        stmt = stmt.with_for_update()
    put_away = db.execute(stmt).scalar_one_or_none()
    if not put_away:
        raise NotFoundError('Put away not found')
    return put_away


def list_lines(db: Session, *, put_away_id: int) -> list[PutAwayLine]:
    return db.execute(
        select(PutAwayLine).where(PutAwayLine.put_away_id == put_away_id).order_by(PutAwayLine.id.asc())
    ).scalars().all()


def _destination_error(db: Session, *, location_id: int, warehouse_id: int) -> str | None:
    location = db.get(WarehouseLocation, location_id)
    if not location or not location.is_active:
        return 'Destination location not found or inactive.'
    if location.type != LocationType.STORAGE:
        return 'Destination location must be STORAGE.'
    if location.warehouse_id != warehouse_id:
        return 'Destination location must be within the same warehouse.'
    return None


def _lock_goods_receipt(db: Session, goods_receipt_id: int, *, message: str) -> GoodsReceipt:
    gr = goods_receipt_service.get_goods_receipt(db, goods_receipt_id, for_update=True)
    if gr.status not in PUT_AWAYABLE_GR_STATUSES:
        raise ValidationError.single('goods_receipt_id', message)
    return gr


def create_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    goods_receipt_id: int,
    lines: list[PutAwayLineInput],
    put_away_at: datetime | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> PutAway:
    goods_receipt_service.require_warehouse_role(actor, 'Only warehouse can create Put Away.')
    if not lines:
        raise ValidationError.single('lines', 'At least one line is required.')
    gr = _lock_goods_receipt(
        db,
        goods_receipt_id,
        message='Put Away can only be created for POSTED / PUT_AWAY_PARTIAL GR.',
    )
    receiving = goods_receipt_service.require_default_receiving_location(db, warehouse_id=gr.warehouse_id)

    gr_lines = {line.id: line for line in goods_receipt_service.list_lines(db, goods_receipt_id=gr.id)}
    posted = goods_receipt_service.put_away_qty_by_gr_line(db, goods_receipt_id=gr.id)
    errors: dict[str, str] = {}
    for index, line in enumerate(lines):
        qty = to_decimal(line.qty)
        gr_line = gr_lines.get(line.goods_receipt_line_id)
        if not gr_line:
            errors[f'lines.{index}.goods_receipt_line_id'] = 'GR line not found.'
            continue
        if qty <= 0:
            errors[f'lines.{index}.qty'] = 'Qty must be > 0.'
            continue
        remaining = max(Decimal('0'), to_decimal(gr_line.received_quantity) - posted.get(gr_line.id, Decimal('0')))
        if remaining <= EPSILON:
            errors[f'lines.{index}.goods_receipt_line_id'] = 'No remaining quantity for this GR line.'
            continue
        if qty - remaining > EPSILON:
            errors[f'lines.{index}.qty'] = f'Qty exceeds remaining quantity. Remaining: {format_qty(remaining)}.'
        destination_error = _destination_error(
            db, location_id=line.destination_location_id, warehouse_id=gr.warehouse_id
        )
        if destination_error:
            errors[f'lines.{index}.destination_location_id'] = destination_error
    if errors:
        raise ValidationError(errors)

    now = clock.now()
    put_away = PutAway(
        put_away_number=generate_number(db, prefix=PUT_AWAY_PREFIX, clock=clock),
        goods_receipt_id=gr.id,
        warehouse_id=gr.warehouse_id,
        status=PutAwayStatus.DRAFT,
        put_away_at=put_away_at or now,
        remarks=remarks,
        created_by_user_id=actor.id,
        created_at=now,
    )
    db.add(put_away)
    db.flush()

    for line in lines:
        gr_line = gr_lines[line.goods_receipt_line_id]
        db.add(
            PutAwayLine(
                put_away_id=put_away.id,
                goods_receipt_line_id=gr_line.id,
                item_id=gr_line.item_id,
                uom_id=gr_line.uom_id,
                source_location_id=receiving.id,
                destination_location_id=line.destination_location_id,
                qty=to_decimal(line.qty),
                remarks=line.remarks,
            )
        )
    _record_history(
        db,
        put_away=put_away,
        from_status=None,
        action='create',
        actor_id=actor.id,
        clock=clock,
        meta={'goods_receipt_id': gr.id, 'gr_number': gr.gr_number},
    )
    db.flush()
    return put_away


def _relocate_serials(db: Session, *, line: PutAwayLine, receiving_id: int) -> int:
    limit = int(to_decimal(line.qty))
    if limit <= 0:
        return 0
    serials = db.execute(
        select(ItemSerialNumber)
        .where(
            ItemSerialNumber.item_id == line.item_id,
            ItemSerialNumber.goods_receipt_line_id == line.goods_receipt_line_id,
            ItemSerialNumber.current_location_id == receiving_id,
            ItemSerialNumber.status == SerialNumberStatus.AVAILABLE,
        )
        .order_by(ItemSerialNumber.id.asc())
        .limit(limit)
        .with_for_update()
    ).scalars().all()
    for serial in serials:
        serial.current_location_id = line.destination_location_id
    return len(serials)


def post(
    db: Session,
    *,
    actor: AuthorizationContext,
    put_away_id: int,
    clock: Clock = system_clock,
) -> PutAway:
    goods_receipt_service.require_warehouse_role(actor, 'Only warehouse can post Put Away.')
    put_away = get_put_away(db, put_away_id, for_update=True)
    if put_away.status != PutAwayStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT Put Away can be posted.')
    # Locking the parent GR serializes concurrent put-aways against the same receipt.
    gr = _lock_goods_receipt(db, put_away.goods_receipt_id, message='GR is not in put-awayable state.')
    receiving = goods_receipt_service.require_default_receiving_location(db, warehouse_id=gr.warehouse_id)

    lines = list_lines(db, put_away_id=put_away.id)
    gr_lines = {line.id: line for line in goods_receipt_service.list_lines(db, goods_receipt_id=gr.id)}
    already_by_line = goods_receipt_service.put_away_qty_by_gr_line(db, goods_receipt_id=gr.id)
    requested_by_line: dict[int, Decimal] = {}
    drawn_by_stock_key: dict[tuple[int, int | None], Decimal] = {}
    for index, line in enumerate(lines):
        qty = to_decimal(line.qty)
        if qty <= 0:
            raise ValidationError.single(f'lines.{index}.qty', 'Qty must be > 0.')
        gr_line = gr_lines.get(line.goods_receipt_line_id)
        if not gr_line:
            raise ValidationError.single(f'lines.{index}.goods_receipt_line_id', 'GR line not found.')

        already = already_by_line.get(gr_line.id, Decimal('0')) + requested_by_line.get(gr_line.id, Decimal('0'))
        received = to_decimal(gr_line.received_quantity)
        if (already + qty) - received > EPSILON:
            raise BusinessRuleError(
                {
                    f'lines.{index}.qty': f'Over put-away is not allowed. Received: {format_qty(received)}, '
                    f'already put away: {format_qty(already)}.'
                }
            )
        requested_by_line[gr_line.id] = requested_by_line.get(gr_line.id, Decimal('0')) + qty

        stock_key = (line.item_id, line.uom_id)
        on_hand = get_on_hand_for_location(db, location_id=receiving.id, item_id=line.item_id, uom_id=line.uom_id)
        on_hand -= drawn_by_stock_key.get(stock_key, Decimal('0'))
        drawn_by_stock_key[stock_key] = drawn_by_stock_key.get(stock_key, Decimal('0')) + qty
        if qty - on_hand > EPSILON:
            raise BusinessRuleError(
                {f'lines.{index}.qty': f'Insufficient stock in RECEIVING. On hand: {format_qty(on_hand)}.'}
            )

        destination_error = _destination_error(
            db, location_id=line.destination_location_id, warehouse_id=gr.warehouse_id
        )
        if destination_error:
            raise ValidationError.single(f'lines.{index}.destination_location_id', destination_error)

    from_status = put_away.status
    now = clock.now()
    put_away.status = PutAwayStatus.POSTED
    put_away.posted_at = now
    put_away.posted_by_user_id = actor.id
    db.flush()

    for line in lines:
        create_movement(
            db,
            item_id=line.item_id,
            uom_id=line.uom_id,
            source_location_id=receiving.id,
            destination_location_id=line.destination_location_id,
            qty=line.qty,
            reference_type=StockReferenceType.PUT_AWAY,
            reference_id=put_away.id,
            created_by=actor.id,
            movement_at=now,
            meta={
                'put_away_number': put_away.put_away_number,
                'put_away_line_id': line.id,
                'goods_receipt_id': gr.id,
                'gr_number': gr.gr_number,
                'goods_receipt_line_id': line.goods_receipt_line_id,
            },
        )
        if master_data_service.get_item(db, line.item_id).is_serialized:
            _relocate_serials(db, line=line, receiving_id=receiving.id)

    _record_history(db, put_away=put_away, from_status=from_status, action='post', actor_id=actor.id, clock=clock)
    db.flush()
    goods_receipt_service.sync_put_away_status(db, gr=gr, actor_id=actor.id, clock=clock)
    logger.info('Put away %s posted for %s', put_away.put_away_number, gr.gr_number)
    return put_away


def cancel(
    db: Session,
    *,
    actor: AuthorizationContext,
    put_away_id: int,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> PutAway:
    goods_receipt_service.require_warehouse_role(actor, 'Only warehouse can cancel Put Away.')
    put_away = get_put_away(db, put_away_id, for_update=True)
    if put_away.status != PutAwayStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT Put Away can be cancelled.')

    from_status = put_away.status
    put_away.status = PutAwayStatus.CANCELLED
    put_away.cancelled_at = clock.now()
    put_away.cancelled_by_user_id = actor.id
    put_away.cancel_reason = reason.strip() if reason else None
    _record_history(
        db,
        put_away=put_away,
        from_status=from_status,
        action='cancel',
        actor_id=actor.id,
        clock=clock,
        meta={'reason': put_away.cancel_reason},
    )
    db.flush()
    return put_away
