from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select

from app.errors import BusinessRuleError, ForbiddenError, ValidationError
from app.models import GoodsReceiptStatus, ItemSerialNumber, PutAwayStatus
from app.services import goods_receipt_service, put_away_service
from app.services.put_away_service import PutAwayLineInput
from app.services.stock_query_service import find_balance_drift, get_on_hand_for_location
from ledger_fixtures import LedgerFixture


class PutAwayServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db
        self.po = self.fx.approved_purchase_order('10')
        self.gr = self.fx.posted_goods_receipt(self.po, '10')
        self.gr_line = goods_receipt_service.list_lines(self.db, goods_receipt_id=self.gr.id)[0]

    def tearDown(self) -> None:
        self.fx.close()

    def _draft(self, qty: str, destination=None, *, gr=None, gr_line=None, actor=None):
        return put_away_service.create_draft(
            self.db,
            actor=actor or self.fx.clerk,
            goods_receipt_id=(gr or self.gr).id,
            lines=[
                PutAwayLineInput(
                    goods_receipt_line_id=(gr_line or self.gr_line).id,
                    destination_location_id=(destination or self.fx.rack_a).id,
                    qty=Decimal(qty),
                )
            ],
            clock=self.fx.clock,
        )

    def _post(self, put_away):
        return put_away_service.post(self.db, actor=self.fx.clerk, put_away_id=put_away.id, clock=self.fx.clock)

    def _on_hand(self, location, item=None) -> Decimal:
        return get_on_hand_for_location(self.db, location_id=location.id, item_id=(item or self.fx.paper).id)

    def test_partial_then_complete_put_away(self) -> None:
        first = self._post(self._draft('4'))
        self.assertEqual(first.put_away_number, 'PA-202405-0001')
        self.assertEqual(first.status, PutAwayStatus.POSTED)
        self.assertEqual(self.gr.status, GoodsReceiptStatus.PUT_AWAY_PARTIAL)
        self.assertEqual(self._on_hand(self.fx.receiving), Decimal('6'))
        self.assertEqual(self._on_hand(self.fx.rack_a), Decimal('4'))

        self._post(self._draft('6', self.fx.rack_b))
        self.assertEqual(self.gr.status, GoodsReceiptStatus.PUT_AWAY_COMPLETED)
        self.assertEqual(self._on_hand(self.fx.receiving), Decimal('0'))
        self.assertEqual(find_balance_drift(self.db), [])

        with self.assertRaises(ValidationError) as ctx:
            self._draft('1')
        self.assertIn('goods_receipt_id', ctx.exception.errors)

    def test_status_sync_is_idempotent(self) -> None:
        self._post(self._draft('4'))
        history = len(goods_receipt_service.list_history(self.db, goods_receipt_id=self.gr.id))

        changed = goods_receipt_service.sync_put_away_status(
            self.db, gr=self.gr, actor_id=self.fx.clerk.id, clock=self.fx.clock
        )
        self.assertFalse(changed)
        self.assertEqual(self.gr.status, GoodsReceiptStatus.PUT_AWAY_PARTIAL)
        self.assertEqual(len(goods_receipt_service.list_history(self.db, goods_receipt_id=self.gr.id)), history)

    def test_quantity_above_remaining_is_rejected(self) -> None:
        self._post(self._draft('4'))
        with self.assertRaises(ValidationError) as ctx:
            self._draft('7')
        self.assertEqual(ctx.exception.errors['lines.0.qty'], ['Qty exceeds remaining quantity. Remaining: 6.'])

    def test_competing_drafts_cannot_both_post(self) -> None:
        first = self._draft('6')
        second = self._draft('6', self.fx.rack_b)
        self._post(first)
        with self.assertRaises(BusinessRuleError) as ctx:
            self._post(second)
        self.assertIn('lines.0.qty', ctx.exception.errors)
        self.assertEqual(second.status, PutAwayStatus.DRAFT)
        self.assertEqual(self._on_hand(self.fx.rack_b), Decimal('0'))

    def test_destination_must_be_storage_in_same_warehouse(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._draft('1', self.fx.receiving)
        self.assertEqual(ctx.exception.errors['lines.0.destination_location_id'], ['Destination location must be STORAGE.'])
        with self.assertRaises(ValidationError) as ctx:
            self._draft('1', self.fx.east_rack)
        self.assertEqual(
            ctx.exception.errors['lines.0.destination_location_id'],
            ['Destination location must be within the same warehouse.'],
        )

    def test_only_warehouse_puts_away(self) -> None:
        with self.assertRaises(ForbiddenError):
            self._draft('1', actor=self.fx.finance)

    def test_cancelled_draft_cannot_be_posted(self) -> None:
        draft = self._draft('2')
        put_away_service.cancel(self.db, actor=self.fx.clerk, put_away_id=draft.id, reason='Rack full')
        self.assertEqual(draft.status, PutAwayStatus.CANCELLED)
        with self.assertRaises(ValidationError):
            self._post(draft)

    def test_serials_follow_the_stock(self) -> None:
        laptop_po = self.fx.approved_purchase_order('2', item=self.fx.laptop)
        laptop_gr = self.fx.posted_goods_receipt(laptop_po, '2', serial_numbers=['LT-1', 'LT-2'])
        laptop_line = goods_receipt_service.list_lines(self.db, goods_receipt_id=laptop_gr.id)[0]

        self._post(self._draft('1', gr=laptop_gr, gr_line=laptop_line))
        self.db.flush()
        locations = dict(
            self.db.execute(select(ItemSerialNumber.serial_number, ItemSerialNumber.current_location_id)).all()
        )
        self.assertEqual(locations, {'LT-1': self.fx.rack_a.id, 'LT-2': self.fx.receiving.id})
        self.assertEqual(self._on_hand(self.fx.rack_a, self.fx.laptop), Decimal('1'))


if __name__ == '__main__':
    unittest.main()
