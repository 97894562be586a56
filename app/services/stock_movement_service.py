from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models import StockBalance, StockMovement, StockReferenceType, WarehouseLocation
from app.services.decimal_utils import to_decimal

logger = logging.getLogger(__name__)


def _balance_key_filter(*, location_id: int, item_id: int, uom_id: int | None):
    uom_clause = StockBalance.uom_id.is_(None) if uom_id is None else StockBalance.uom_id == uom_id
    return (StockBalance.location_id == location_id, StockBalance.item_id == item_id, uom_clause)


def _apply_balance_delta(
    db: Session,
    *,
    location_id: int,
    item_id: int,
    uom_id: int | None,
    delta: Decimal,
    as_of: datetime,
) -> None:
    balance = db.execute(
        select(StockBalance)
        .where(*_balance_key_filter(location_id=location_id, item_id=item_id, uom_id=uom_id))
        .with_for_update()
    ).scalar_one_or_none()
    if not balance:
        balance = StockBalance(location_id=location_id, item_id=item_id, uom_id=uom_id, qty_on_hand=Decimal('0'))
        db.add(balance)

    balance.qty_on_hand = to_decimal(balance.qty_on_hand) + delta
    balance.as_of_at = as_of
    if balance.qty_on_hand == 0:
        if balance.id is not None:
            db.delete(balance)
        else:
            db.expunge(balance)
    db.flush()


def _validate_locations(
    db: Session,
    *,
    source_location_id: int | None,
    destination_location_id: int | None,
) -> None:
    if source_location_id is None and destination_location_id is None:
        raise ValidationError.single('location', 'A movement needs a source or a destination location.')

    locations: dict[int, WarehouseLocation] = {}
    for field, location_id in (
        ('source_location_id', source_location_id),
        ('destination_location_id', destination_location_id),
    ):
        if location_id is None:
            continue
        location = db.get(WarehouseLocation, location_id)
        if not location:
            raise ValidationError.single(field, 'Location not found.')
        locations[field] = location

    if len(locations) == 2:
        if locations['source_location_id'].warehouse_id != locations['destination_location_id'].warehouse_id:
            raise ValidationError.single(
                'destination_location_id', 'Source and destination must belong to the same warehouse.'
            )


def create_movement(
    db: Session,
    *,
    item_id: int,
    qty,
    reference_type: StockReferenceType,
    reference_id: int,
    movement_at: datetime,
    uom_id: int | None = None,
    source_location_id: int | None = None,
    destination_location_id: int | None = None,
    created_by: int | None = None,
    meta: dict | None = None,
) -> StockMovement:
    qty = to_decimal(qty)
    if qty <= 0:
        raise ValidationError.single('qty', 'Movement quantity must be greater than zero.')
    _validate_locations(db, source_location_id=source_location_id, destination_location_id=destination_location_id)

    movement = StockMovement(
        item_id=item_id,
        uom_id=uom_id,
        source_location_id=source_location_id,
        destination_location_id=destination_location_id,
        qty=qty,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by=created_by,
        movement_at=movement_at,
        meta=meta or {},
    )
    db.add(movement)
    db.flush()

    if destination_location_id is not None:
        _apply_balance_delta(
            db,
            location_id=destination_location_id,
            item_id=item_id,
            uom_id=uom_id,
            delta=qty,
            as_of=movement_at,
        )
    if source_location_id is not None:
        _apply_balance_delta(
            db,
            location_id=source_location_id,
            item_id=item_id,
            uom_id=uom_id,
            delta=-qty,
            as_of=movement_at,
        )
    return movement


def delete_movement(db: Session, *, movement_id: int) -> None:
    movement = db.get(StockMovement, movement_id)
    if not movement:
        raise NotFoundError('Stock movement not found')

    qty = to_decimal(movement.qty)
    if movement.destination_location_id is not None:
        _apply_balance_delta(
            db,
            location_id=movement.destination_location_id,
            item_id=movement.item_id,
            uom_id=movement.uom_id,
            delta=-qty,
            as_of=movement.movement_at,
        )
    if movement.source_location_id is not None:
        _apply_balance_delta(
            db,
            location_id=movement.source_location_id,
            item_id=movement.item_id,
            uom_id=movement.uom_id,
            delta=qty,
            as_of=movement.movement_at,
        )
    db.delete(movement)
    db.flush()
    logger.info('Deleted stock movement %s and reversed its balance effect', movement_id)
