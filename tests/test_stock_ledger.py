from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select

from app.errors import NotFoundError, ValidationError
from app.models import StockBalance, StockMovement, StockReferenceType
from app.send_low_stock_alerts import queue_low_stock_alert
from app.services.notification_service import NotificationEvent, pending_notifications
from app.services.stock_movement_service import create_movement, delete_movement
from app.services.stock_query_service import (
    find_balance_drift,
    get_cached_balance,
    get_on_hand_by_location_for_item,
    get_on_hand_for_location,
    get_total_on_hand_for_item,
    list_low_stock,
    rebuild_stock_balances,
)
from app.sync_stock_balances import sync_balances
from ledger_fixtures import LedgerFixture


class StockLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db

    def tearDown(self) -> None:
        self.fx.close()

    def _move(self, qty, *, source=None, destination=None, item=None):
        return create_movement(
            self.db,
            item_id=(item or self.fx.paper).id,
            uom_id=self.fx.pcs.id,
            qty=Decimal(qty),
            source_location_id=source.id if source else None,
            destination_location_id=destination.id if destination else None,
            reference_type=StockReferenceType.ADJUSTMENT,
            reference_id=1,
            movement_at=self.fx.clock.now(),
        )

    def _on_hand(self, location) -> Decimal:
        return get_on_hand_for_location(
            self.db, location_id=location.id, item_id=self.fx.paper.id, uom_id=self.fx.pcs.id
        )

    def _cached(self, location) -> Decimal:
        return get_cached_balance(self.db, location_id=location.id, item_id=self.fx.paper.id, uom_id=self.fx.pcs.id)

    def test_on_hand_is_inbound_minus_outbound_and_matches_cache(self) -> None:
        self._move('10', destination=self.fx.receiving)
        self._move('4', source=self.fx.receiving, destination=self.fx.rack_a)
        self._move('1', source=self.fx.rack_a)

        self.assertEqual(self._on_hand(self.fx.receiving), Decimal('6'))
        self.assertEqual(self._on_hand(self.fx.rack_a), Decimal('3'))
        for location in (self.fx.receiving, self.fx.rack_a):
            self.assertEqual(self._cached(location), self._on_hand(location))
        self.assertEqual(find_balance_drift(self.db), [])

    def test_movement_without_any_location_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._move('1')
        self.assertIn('location', ctx.exception.errors)
        self.assertEqual(self.db.execute(select(StockMovement)).scalars().all(), [])

    def test_cross_warehouse_transfer_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._move('1', source=self.fx.rack_a, destination=self.fx.east_rack)
        self.assertIn('destination_location_id', ctx.exception.errors)

    def test_non_positive_quantity_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._move('0', destination=self.fx.rack_a)
        self.assertIn('qty', ctx.exception.errors)

    def test_balance_row_removed_when_quantity_reaches_zero(self) -> None:
        self._move('2', destination=self.fx.rack_a)
        self._move('2', source=self.fx.rack_a)
        self.assertEqual(self.db.execute(select(StockBalance)).scalars().all(), [])
        self.assertEqual(self._on_hand(self.fx.rack_a), Decimal('0'))

    def test_delete_movement_reverses_balance(self) -> None:
        movement = self._move('5', destination=self.fx.rack_a)
        self._move('2', destination=self.fx.rack_a)
        delete_movement(self.db, movement_id=movement.id)
        self.assertEqual(self._cached(self.fx.rack_a), Decimal('2'))
        with self.assertRaises(NotFoundError):
            delete_movement(self.db, movement_id=movement.id)

    def test_per_location_and_total_queries(self) -> None:
        self._move('7', destination=self.fx.rack_a)
        self._move('3', destination=self.fx.rack_b)
        self._move('5', destination=self.fx.east_rack)

        by_location = get_on_hand_by_location_for_item(
            self.db, item_id=self.fx.paper.id, uom_id=self.fx.pcs.id, warehouse_id=self.fx.warehouse.id
        )
        self.assertEqual(by_location, {self.fx.rack_a.id: Decimal('7'), self.fx.rack_b.id: Decimal('3')})
        self.assertEqual(get_total_on_hand_for_item(self.db, item_id=self.fx.paper.id), Decimal('15'))

    def test_drift_is_reported_and_rebuild_restores_cache(self) -> None:
        self._move('8', destination=self.fx.rack_a)
        balance = self.db.execute(select(StockBalance)).scalar_one()
        balance.qty_on_hand = Decimal('99')
        self.db.flush()

        drift = find_balance_drift(self.db)
        self.assertEqual(len(drift), 1)
        self.assertEqual(drift[0].cached_qty, Decimal('99'))
        self.assertEqual(drift[0].ledger_qty, Decimal('8'))

        self.assertEqual(rebuild_stock_balances(self.db, clock=self.fx.clock), 1)
        self.assertEqual(self._cached(self.fx.rack_a), Decimal('8'))
        self.assertEqual(find_balance_drift(self.db), [])

    def test_sync_balances_dry_run_leaves_cache_untouched(self) -> None:
        self._move('8', destination=self.fx.rack_a)
        self.db.execute(select(StockBalance)).scalar_one().qty_on_hand = Decimal('1')
        self.db.flush()

        drift, written = sync_balances(self.db, dry_run=True, clock=self.fx.clock)
        self.assertEqual((len(drift), written), (1, 0))
        self.assertEqual(self._cached(self.fx.rack_a), Decimal('1'))

        drift, written = sync_balances(self.db, clock=self.fx.clock)
        self.assertEqual(written, 1)
        self.assertEqual(self._cached(self.fx.rack_a), Decimal('8'))

    def test_low_stock_report_and_alert(self) -> None:
        self._move('3', destination=self.fx.rack_a)
        self._move('50', destination=self.fx.rack_b)

        report = list_low_stock(self.db, threshold=Decimal('10'))
        self.assertEqual([entry.location_code for entry in report.low_stock], ['A-01'])
        self.assertEqual(report.total_issues, 1)

        queue_low_stock_alert(self.db, threshold=Decimal('10'), dry_run=True)
        self.assertEqual(pending_notifications(self.db), [])

        queue_low_stock_alert(self.db, threshold=Decimal('10'))
        queued = pending_notifications(self.db)
        self.assertEqual(len(queued), 1)
        self.assertEqual(queued[0].event, NotificationEvent.LOW_STOCK_ALERT)
        self.assertEqual(queued[0].recipient_role, 'warehouse')


if __name__ == '__main__':
    unittest.main()
