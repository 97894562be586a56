from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.clock import Clock, system_clock
from app.models import Item, StockBalance, StockMovement, Uom, WarehouseLocation
from app.services.decimal_utils import to_decimal

logger = logging.getLogger(__name__)

BalanceKey = tuple[int, int, int | None]


@dataclass(frozen=True)
class LowStockEntry:
    item_id: int
    sku: str
    name: str
    location_id: int
    location_code: str
    location_name: str
    qty_on_hand: Decimal
    uom_code: str | None


@dataclass
class LowStockReport:
    threshold: Decimal
    low_stock: list[LowStockEntry] = field(default_factory=list)
    out_of_stock: list[LowStockEntry] = field(default_factory=list)

    @property
    def total_issues(self) -> int:
        return len(self.low_stock) + len(self.out_of_stock)


@dataclass(frozen=True)
class BalanceDrift:
    location_id: int
    item_id: int
    uom_id: int | None
    cached_qty: Decimal
    ledger_qty: Decimal


def _uom_filter(column, uom_id: int | None):
    return () if uom_id is None else (column == uom_id,)


def _sum_movements(db: Session, *, location_column, location_id: int, item_id: int, uom_id: int | None) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(StockMovement.qty), 0)).where(
            location_column == location_id,
            StockMovement.item_id == item_id,
            *_uom_filter(StockMovement.uom_id, uom_id),
        )
    ).scalar_one()
    return to_decimal(total)


def get_on_hand_for_location(db: Session, *, location_id: int, item_id: int, uom_id: int | None = None) -> Decimal:
    """Inbound minus outbound for one location, read straight from the ledger.

    ``uom_id=None`` aggregates every unit of measure the item was moved in.
    """
    inbound = _sum_movements(
        db,
        location_column=StockMovement.destination_location_id,
        location_id=location_id,
        item_id=item_id,
        uom_id=uom_id,
    )
    outbound = _sum_movements(
        db,
        location_column=StockMovement.source_location_id,
        location_id=location_id,
        item_id=item_id,
        uom_id=uom_id,
    )
    return inbound - outbound


def get_on_hand_by_location_for_item(
    db: Session,
    *,
    item_id: int,
    uom_id: int | None = None,
    warehouse_id: int | None = None,
) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = defaultdict(lambda: Decimal('0'))
    for location_column, sign in (
        (StockMovement.destination_location_id, 1),
        (StockMovement.source_location_id, -1),
    ):
        stmt = (
            select(location_column, func.sum(StockMovement.qty))
            .where(
                StockMovement.item_id == item_id,
                location_column.is_not(None),
                *_uom_filter(StockMovement.uom_id, uom_id),
            )
            .group_by(location_column)
        )
        if warehouse_id is not None:
            stmt = stmt.join(WarehouseLocation, WarehouseLocation.id == location_column).where(
                WarehouseLocation.warehouse_id == warehouse_id
            )
        for location_id, qty in db.execute(stmt).all():
            totals[location_id] += to_decimal(qty) * sign
    return {location_id: qty for location_id, qty in totals.items() if qty != 0}


def get_total_on_hand_for_item(
    db: Session,
    *,
    item_id: int,
    uom_id: int | None = None,
    warehouse_id: int | None = None,
) -> Decimal:
    by_location = get_on_hand_by_location_for_item(db, item_id=item_id, uom_id=uom_id, warehouse_id=warehouse_id)
    return sum(by_location.values(), Decimal('0'))


def get_cached_balance(db: Session, *, location_id: int, item_id: int, uom_id: int | None = None) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(StockBalance.qty_on_hand), 0)).where(
            StockBalance.location_id == location_id,
            StockBalance.item_id == item_id,
            *_uom_filter(StockBalance.uom_id, uom_id),
        )
    ).scalar_one()
    return to_decimal(total)


def compute_ledger_balances(db: Session) -> dict[BalanceKey, Decimal]:
    totals: dict[BalanceKey, Decimal] = defaultdict(lambda: Decimal('0'))
    for location_column, sign in (
        (StockMovement.destination_location_id, 1),
        (StockMovement.source_location_id, -1),
    ):
        rows = db.execute(
            select(location_column, StockMovement.item_id, StockMovement.uom_id, func.sum(StockMovement.qty))
            .where(location_column.is_not(None))
            .group_by(location_column, StockMovement.item_id, StockMovement.uom_id)
        ).all()
        for location_id, item_id, uom_id, qty in rows:
            totals[(location_id, item_id, uom_id)] += to_decimal(qty) * sign
    return dict(totals)


def find_balance_drift(db: Session) -> list[BalanceDrift]:
    ledger = compute_ledger_balances(db)
    cached = {
        (row.location_id, row.item_id, row.uom_id): to_decimal(row.qty_on_hand)
        for row in db.execute(select(StockBalance)).scalars().all()
    }
    drift = []
    for key in sorted(set(ledger) | set(cached), key=lambda k: (k[0], k[1], k[2] or 0)):
        ledger_qty = ledger.get(key, Decimal('0'))
        cached_qty = cached.get(key, Decimal('0'))
        if ledger_qty != cached_qty:
            drift.append(
                BalanceDrift(
                    location_id=key[0],
                    item_id=key[1],
                    uom_id=key[2],
                    cached_qty=cached_qty,
                    ledger_qty=ledger_qty,
                )
            )
    return drift


def rebuild_stock_balances(db: Session, *, clock: Clock = system_clock) -> int:
    now: datetime = clock.now()
    ledger = compute_ledger_balances(db)
    db.execute(delete(StockBalance))
    written = 0
    for (location_id, item_id, uom_id), qty in ledger.items():
        if qty == 0:
            continue
        db.add(StockBalance(location_id=location_id, item_id=item_id, uom_id=uom_id, qty_on_hand=qty, as_of_at=now))
        written += 1
    db.flush()
    logger.info('Rebuilt %s stock balance rows from the ledger', written)
    return written


def list_low_stock(db: Session, *, threshold) -> LowStockReport:
    threshold = to_decimal(threshold)
    report = LowStockReport(threshold=threshold)
    rows = db.execute(
        select(StockBalance, Item, WarehouseLocation, Uom.code)
        .join(Item, Item.id == StockBalance.item_id)
        .join(WarehouseLocation, WarehouseLocation.id == StockBalance.location_id)
        .outerjoin(Uom, Uom.id == StockBalance.uom_id)
        .where(StockBalance.qty_on_hand <= threshold)
        .order_by(Item.sku.asc(), WarehouseLocation.code.asc())
    ).all()
    for balance, item, location, uom_code in rows:
        qty = to_decimal(balance.qty_on_hand)
        entry = LowStockEntry(
            item_id=item.id,
            sku=item.sku,
            name=item.name,
            location_id=location.id,
            location_code=location.code,
            location_name=location.name,
            qty_on_hand=qty,
            uom_code=uom_code,
        )
        if qty > 0:
            report.low_stock.append(entry)
        else:
            report.out_of_stock.append(entry)
    return report
