from __future__ import annotations

import unittest
from decimal import Decimal
from types import SimpleNamespace

from app.errors import ForbiddenError, ValidationError
from app.models import ApprovalStatus, PurchaseOrderStatus, PurchaseRequestStatus
from app.services import approval_workflow_service, purchase_order_service, purchase_request_service
from app.services.purchase_order_service import (
    PurchaseOrderPriceUpdate,
    completed_approval_steps,
    compute_totals,
    merge_purchase_request_lines,
    next_approval_step,
)
from app.services.purchase_request_service import PurchaseRequestLineInput
from ledger_fixtures import LedgerFixture


def _history(action: str, step: str | None = None):
    return SimpleNamespace(action=action, meta={'step': step} if step else {})


class PurchaseOrderHelperTests(unittest.TestCase):
    def test_completed_steps_reset_on_resubmit(self) -> None:
        rows = [
            _history('create'),
            _history('submit'),
            _history('approve', 'finance'),
            _history('cancel'),
            _history('reopen'),
            _history('submit'),
            _history('approve', 'finance'),
            _history('approve', 'gm'),
        ]
        self.assertEqual(completed_approval_steps(rows), {'finance', 'gm'})
        self.assertEqual(completed_approval_steps(rows[:4] + [_history('submit')]), set())

    def test_next_step_follows_fixed_order(self) -> None:
        self.assertEqual(next_approval_step(set()), 'finance')
        self.assertEqual(next_approval_step({'finance'}), 'gm')
        self.assertEqual(next_approval_step({'finance', 'gm'}), 'director')
        self.assertEqual(next_approval_step({'finance', 'gm', 'director'}), 'director')

    def test_compute_totals_rounds_tax_to_cents(self) -> None:
        lines = [
            SimpleNamespace(quantity=Decimal('2'), unit_price=Decimal('1000')),
            SimpleNamespace(quantity=Decimal('3'), unit_price=Decimal('333.33')),
        ]
        totals = compute_totals(lines, Decimal('0.11'))
        self.assertEqual(totals.subtotal_amount, Decimal('2999.99'))
        self.assertEqual(totals.tax_amount, Decimal('330.00'))
        self.assertEqual(totals.total_amount, Decimal('3329.99'))

    def test_merge_sums_same_item_and_uom(self) -> None:
        merged = merge_purchase_request_lines(
            [
                SimpleNamespace(item_id=1, uom_id=7, quantity=Decimal('2')),
                SimpleNamespace(item_id=2, uom_id=7, quantity=Decimal('1')),
                SimpleNamespace(item_id=1, uom_id=7, quantity=Decimal('3')),
                SimpleNamespace(item_id=1, uom_id=None, quantity=Decimal('4')),
            ]
        )
        quantities = {(line.item_id, line.uom_id): line.quantity for line in merged}
        self.assertEqual(quantities, {(1, 7): Decimal('5'), (2, 7): Decimal('1'), (1, None): Decimal('4')})
        self.assertTrue(all(line.unit_price == 0 for line in merged))


class PurchaseOrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db

    def tearDown(self) -> None:
        self.fx.close()

    def _draft(self, *purchase_requests, lines=None):
        return purchase_order_service.create_draft_from_purchase_requests(
            self.db,
            actor=self.fx.buyer,
            supplier_id=self.fx.supplier.id,
            purchase_request_ids=[pr.id for pr in purchase_requests],
            lines=lines,
            clock=self.fx.clock,
        )

    def test_draft_merges_request_lines_and_converts_requests(self) -> None:
        first = self.fx.approved_purchase_request('2', '3')
        second = self.fx.approved_purchase_request('4')
        po = self._draft(first, second)

        lines = purchase_order_service.list_lines(self.db, purchase_order_id=po.id)
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].quantity, Decimal('9'))
        self.assertEqual(lines[0].item_snapshot['sku'], 'PAPER-A4')
        self.assertEqual(first.status, PurchaseRequestStatus.CONVERTED_TO_PO)
        self.assertEqual(second.status, PurchaseRequestStatus.CONVERTED_TO_PO)
        self.assertEqual(
            purchase_order_service.list_purchase_request_ids(self.db, purchase_order_id=po.id),
            [first.id, second.id],
        )
        self.assertEqual(po.tax_rate, Decimal('0.11'))
        self.assertEqual(po.total_amount, Decimal('0'))

    def test_requests_must_be_approved(self) -> None:
        pr = purchase_request_service.create_draft(
            self.db,
            actor=self.fx.requester,
            department_id=self.fx.department.id,
            lines=[PurchaseRequestLineInput(item_id=self.fx.paper.id, quantity=Decimal('1'))],
            clock=self.fx.clock,
        )
        with self.assertRaises(ValidationError) as ctx:
            self._draft(pr)
        self.assertIn('purchase_request_ids', ctx.exception.errors)

    def test_only_procurement_creates_orders(self) -> None:
        pr = self.fx.approved_purchase_request('1')
        with self.assertRaises(ForbiddenError):
            purchase_order_service.create_draft_from_purchase_requests(
                self.db, actor=self.fx.finance, supplier_id=self.fx.supplier.id, purchase_request_ids=[pr.id]
            )

    def test_price_update_recomputes_totals(self) -> None:
        po = self._draft(self.fx.approved_purchase_request('10'))
        line = purchase_order_service.list_lines(self.db, purchase_order_id=po.id)[0]
        purchase_order_service.update_draft(
            self.db,
            actor=self.fx.buyer,
            purchase_order_id=po.id,
            lines=[PurchaseOrderPriceUpdate(id=line.id, unit_price=Decimal('1500'))],
            clock=self.fx.clock,
        )
        self.assertEqual(po.subtotal_amount, Decimal('15000.00'))
        self.assertEqual(po.tax_amount, Decimal('1650.00'))
        self.assertEqual(po.total_amount, Decimal('16650.00'))

        with self.assertRaises(ValidationError) as ctx:
            purchase_order_service.update_draft(
                self.db,
                actor=self.fx.buyer,
                purchase_order_id=po.id,
                lines=[PurchaseOrderPriceUpdate(id=line.id + 50, unit_price=Decimal('1'))],
            )
        self.assertIn('lines.0.id', ctx.exception.errors)

    def test_tax_rate_must_be_a_fraction(self) -> None:
        po = self._draft(self.fx.approved_purchase_request('1'))
        with self.assertRaises(ValidationError) as ctx:
            purchase_order_service.update_draft(
                self.db, actor=self.fx.buyer, purchase_order_id=po.id, tax_rate=Decimal('11')
            )
        self.assertIn('tax_rate', ctx.exception.errors)

    def test_three_step_approval(self) -> None:
        po = self._draft(self.fx.approved_purchase_request('10'))
        purchase_order_service.submit(self.db, actor=self.fx.buyer, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.SUBMITTED)

        with self.assertRaises(ForbiddenError) as ctx:
            purchase_order_service.approve(self.db, actor=self.fx.gm, purchase_order_id=po.id)
        self.assertEqual(str(ctx.exception), 'Only finance can approve this step.')

        purchase_order_service.approve(self.db, actor=self.fx.finance, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.IN_APPROVAL)
        with self.assertRaises(ForbiddenError):
            purchase_order_service.approve(self.db, actor=self.fx.director, purchase_order_id=po.id)

        purchase_order_service.approve(self.db, actor=self.fx.gm, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.IN_APPROVAL)
        purchase_order_service.approve(self.db, actor=self.fx.director, purchase_order_id=po.id, clock=self.fx.clock)

        self.assertEqual(po.status, PurchaseOrderStatus.APPROVED)
        self.assertEqual(po.approved_by_user_id, self.fx.director.id)
        statuses = [a.status for a in approval_workflow_service.list_approvals(self.db, document=po)]
        self.assertEqual(statuses, [ApprovalStatus.APPROVED] * 3)

        with self.assertRaises(ValidationError):
            purchase_order_service.approve(self.db, actor=self.fx.finance, purchase_order_id=po.id)

    def test_send_close_lifecycle(self) -> None:
        po = self.fx.approved_purchase_order()
        with self.assertRaises(ValidationError):
            purchase_order_service.close(self.db, actor=self.fx.buyer, purchase_order_id=po.id)
        purchase_order_service.send(self.db, actor=self.fx.buyer, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.SENT)
        self.assertEqual(po.sent_by_user_id, self.fx.buyer.id)
        purchase_order_service.close(self.db, actor=self.fx.buyer, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.CLOSED)
        with self.assertRaises(ValidationError):
            purchase_order_service.cancel(self.db, actor=self.fx.buyer, purchase_order_id=po.id)

    def test_cancel_and_reopen_restarts_approvals(self) -> None:
        po = self._draft(self.fx.approved_purchase_request('10'))
        purchase_order_service.submit(self.db, actor=self.fx.buyer, purchase_order_id=po.id, clock=self.fx.clock)
        purchase_order_service.approve(self.db, actor=self.fx.finance, purchase_order_id=po.id, clock=self.fx.clock)

        purchase_order_service.cancel(
            self.db, actor=self.fx.buyer, purchase_order_id=po.id, reason='Supplier changed', clock=self.fx.clock
        )
        self.assertEqual(po.status, PurchaseOrderStatus.CANCELLED)
        statuses = [a.status for a in approval_workflow_service.list_approvals(self.db, document=po)]
        self.assertEqual(statuses, [ApprovalStatus.APPROVED, ApprovalStatus.CANCELLED, ApprovalStatus.CANCELLED])

        purchase_order_service.reopen(self.db, actor=self.fx.buyer, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.DRAFT)
        reopen = purchase_order_service.list_history(self.db, purchase_order_id=po.id)[-1]
        self.assertEqual(reopen.meta['preserved_cancel_reason'], 'Supplier changed')

        purchase_order_service.submit(self.db, actor=self.fx.buyer, purchase_order_id=po.id, clock=self.fx.clock)
        with self.assertRaises(ForbiddenError):
            purchase_order_service.approve(self.db, actor=self.fx.gm, purchase_order_id=po.id)
        purchase_order_service.approve(self.db, actor=self.fx.finance, purchase_order_id=po.id, clock=self.fx.clock)
        self.assertEqual(po.status, PurchaseOrderStatus.IN_APPROVAL)


if __name__ == '__main__':
    unittest.main()
