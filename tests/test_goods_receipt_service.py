from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select

from app.errors import ForbiddenError, ValidationError
from app.models import (
    GoodsReceiptStatus,
    ItemSerialNumber,
    SerialNumberStatus,
    StockMovement,
    StockReferenceType,
)
from app.services import goods_receipt_service, purchase_order_service
from app.services.goods_receipt_service import GoodsReceiptLineInput
from app.services.stock_query_service import get_on_hand_for_location
from ledger_fixtures import LedgerFixture


class GoodsReceiptServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db

    def tearDown(self) -> None:
        self.fx.close()

    def _draft(self, po, quantity: str, *, actor=None, serial_numbers=None):
        po_line = purchase_order_service.list_lines(self.db, purchase_order_id=po.id)[0]
        return goods_receipt_service.create_draft(
            self.db,
            actor=actor or self.fx.clerk,
            purchase_order_id=po.id,
            warehouse_id=self.fx.warehouse.id,
            lines=[
                GoodsReceiptLineInput(
                    purchase_order_line_id=po_line.id,
                    received_quantity=Decimal(quantity),
                    serial_numbers=serial_numbers,
                )
            ],
            clock=self.fx.clock,
        )

    def test_post_books_one_inbound_movement_into_receiving(self) -> None:
        po = self.fx.approved_purchase_order('10')
        gr = self.fx.posted_goods_receipt(po, '6')

        self.assertEqual(gr.gr_number, 'GR-202405-0001')
        self.assertEqual(gr.status, GoodsReceiptStatus.POSTED)
        movements = self.db.execute(select(StockMovement)).scalars().all()
        self.assertEqual(len(movements), 1)
        self.assertEqual(movements[0].reference_type, StockReferenceType.GOODS_RECEIPT)
        self.assertIsNone(movements[0].source_location_id)
        self.assertEqual(movements[0].destination_location_id, self.fx.receiving.id)
        self.assertEqual(
            get_on_hand_for_location(self.db, location_id=self.fx.receiving.id, item_id=self.fx.paper.id),
            Decimal('6'),
        )
        actions = [row.action for row in goods_receipt_service.list_history(self.db, goods_receipt_id=gr.id)]
        self.assertEqual(actions, ['create', 'post'])

    def test_over_receipt_is_rejected_on_create(self) -> None:
        po = self.fx.approved_purchase_order('10')
        self.fx.posted_goods_receipt(po, '6')
        with self.assertRaises(ValidationError) as ctx:
            self._draft(po, '5')
        self.assertIn('lines.0.received_quantity', ctx.exception.errors)
        self.assertIn('already received: 6', ctx.exception.errors['lines.0.received_quantity'][0])

    def test_drafts_do_not_reserve_quantity_but_post_rechecks(self) -> None:
        po = self.fx.approved_purchase_order('10')
        first = self._draft(po, '6')
        second = self._draft(po, '6')

        goods_receipt_service.post(self.db, actor=self.fx.clerk, goods_receipt_id=first.id, clock=self.fx.clock)
        with self.assertRaises(ValidationError):
            goods_receipt_service.post(self.db, actor=self.fx.clerk, goods_receipt_id=second.id)
        self.assertEqual(second.status, GoodsReceiptStatus.DRAFT)
        self.assertEqual(
            goods_receipt_service.received_qty_by_po_line(self.db, purchase_order_id=po.id),
            {purchase_order_service.list_lines(self.db, purchase_order_id=po.id)[0].id: Decimal('6')},
        )

    def test_purchase_order_must_be_approved(self) -> None:
        pr = self.fx.approved_purchase_request('3')
        po = purchase_order_service.create_draft_from_purchase_requests(
            self.db, actor=self.fx.buyer, supplier_id=self.fx.supplier.id, purchase_request_ids=[pr.id]
        )
        with self.assertRaises(ValidationError) as ctx:
            self._draft(po, '1')
        self.assertIn('purchase_order_id', ctx.exception.errors)

    def test_only_warehouse_receives(self) -> None:
        po = self.fx.approved_purchase_order('10')
        with self.assertRaises(ForbiddenError):
            self._draft(po, '1', actor=self.fx.buyer)

    def test_serialized_items_need_one_serial_per_unit(self) -> None:
        po = self.fx.approved_purchase_order('2', item=self.fx.laptop)
        with self.assertRaises(ValidationError) as ctx:
            self._draft(po, '2')
        self.assertIn('lines.0.serial_numbers', ctx.exception.errors)
        with self.assertRaises(ValidationError):
            self._draft(po, '2', serial_numbers=['SN-1'])
        with self.assertRaises(ValidationError):
            self._draft(po, '2', serial_numbers=['SN-1', 'SN-1'])

        gr = self.fx.posted_goods_receipt(po, '2', serial_numbers=['SN-1', 'SN-2'])
        self.db.flush()
        serials = self.db.execute(select(ItemSerialNumber).order_by(ItemSerialNumber.serial_number)).scalars().all()
        self.assertEqual([s.serial_number for s in serials], ['SN-1', 'SN-2'])
        self.assertTrue(all(s.current_location_id == self.fx.receiving.id for s in serials))
        self.assertTrue(all(s.status == SerialNumberStatus.AVAILABLE for s in serials))
        self.assertEqual(serials[0].meta['gr_number'], gr.gr_number)

    def test_cancel_only_drafts(self) -> None:
        po = self.fx.approved_purchase_order('10')
        draft = self._draft(po, '2')
        goods_receipt_service.cancel(
            self.db, actor=self.fx.clerk, goods_receipt_id=draft.id, reason=' Wrong truck ', clock=self.fx.clock
        )
        self.assertEqual(draft.status, GoodsReceiptStatus.CANCELLED)
        self.assertEqual(draft.cancel_reason, 'Wrong truck')

        posted = self.fx.posted_goods_receipt(po, '2')
        with self.assertRaises(ValidationError):
            goods_receipt_service.cancel(self.db, actor=self.fx.clerk, goods_receipt_id=posted.id)

    def test_put_away_summary_starts_with_full_remaining(self) -> None:
        po = self.fx.approved_purchase_order('10')
        gr = self.fx.posted_goods_receipt(po, '4')
        [line] = goods_receipt_service.get_put_away_summary(self.db, goods_receipt_id=gr.id)
        self.assertEqual(line.received_qty, Decimal('4'))
        self.assertEqual(line.put_away_qty, Decimal('0'))
        self.assertEqual(line.remaining_qty, Decimal('4'))


if __name__ == '__main__':
    unittest.main()
