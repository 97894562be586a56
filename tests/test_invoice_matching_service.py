from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import func, select

from app.auth import Principal
from app.errors import BusinessRuleError, ForbiddenError, NotFoundError, ValidationError
from app.models import (
    InvoiceApprovalStatus,
    InvoiceMatchingConfig,
    InvoiceMatchingResult,
    InvoiceStatus,
    MatchingConfigType,
    MatchingStatus,
    MatchOutcome,
)
from app.services import invoice_matching_service, supplier_invoice_service
from app.services.invoice_matching_service import (
    CONFIGURE_PERMISSION,
    MatchingConfigInput,
    Tolerances,
    match_line,
    summarize,
)
from app.services.notification_service import NotificationEvent, pending_notifications
from ledger_fixtures import LedgerFixture


def _match(invoiced_qty='10', unit_price='1000', line_total=None, received_qty='10', po_unit_price='1000', **tol):
    if line_total is None:
        line_total = Decimal(invoiced_qty) * Decimal(unit_price)
    return match_line(
        line_number=1,
        invoiced_qty=Decimal(invoiced_qty),
        unit_price=Decimal(unit_price),
        line_total=line_total,
        received_qty=Decimal(received_qty),
        po_unit_price=Decimal(po_unit_price),
        tolerances=Tolerances(**{k: Decimal(v) if isinstance(v, str) else v for k, v in tol.items()}),
    )


class MatchLineTests(unittest.TestCase):
    def test_exact_line(self) -> None:
        match = _match()
        self.assertEqual(match.status, MatchingStatus.MATCHED)
        self.assertTrue(match.within_tolerance)
        self.assertTrue(match.exact)

    def test_over_invoicing_wins_over_everything(self) -> None:
        match = _match(invoiced_qty='11', unit_price='900', quantity='50', price='50', amount='50')
        self.assertEqual(match.status, MatchingStatus.OVER_INVOICED)
        self.assertFalse(match.within_tolerance)

    def test_price_breach(self) -> None:
        match = _match(unit_price='1050', price='2')
        self.assertEqual(match.status, MatchingStatus.PRICE_VARIANCE)
        self.assertEqual(match.price_variance, Decimal('50.00'))
        self.assertEqual(match.price_variance_percent, Decimal('5.00'))
        self.assertFalse(match.within_tolerance)

    def test_quantity_and_price_breach(self) -> None:
        match = _match(invoiced_qty='8', unit_price='1100')
        self.assertEqual(match.status, MatchingStatus.BOTH_VARIANCE)
        self.assertEqual(match.qty_variance_percent, Decimal('-20.00'))

    def test_under_invoicing_inside_tolerance_depends_on_policy(self) -> None:
        allowed = _match(invoiced_qty='9', quantity='15', amount='15')
        self.assertEqual(allowed.status, MatchingStatus.MATCHED)
        self.assertTrue(allowed.within_tolerance)
        self.assertFalse(allowed.exact)

        blocked = _match(invoiced_qty='9', quantity='15', amount='15', allow_under_invoicing=False)
        self.assertEqual(blocked.status, MatchingStatus.QTY_VARIANCE)

    def test_amount_breach_only_clears_within_tolerance(self) -> None:
        match = _match(invoiced_qty='9', quantity='15')
        self.assertEqual(match.status, MatchingStatus.MATCHED)
        self.assertFalse(match.within_tolerance)
        self.assertEqual(match.amount_variance_percent, Decimal('-10.00'))

    def test_zero_tolerance_catches_variance_below_rounding(self) -> None:
        match = _match(unit_price='1000040', po_unit_price='1000000')
        self.assertEqual(match.status, MatchingStatus.PRICE_VARIANCE)
        self.assertFalse(match.within_tolerance)
        self.assertEqual(match.price_variance, Decimal('40.00'))
        self.assertEqual(match.price_variance_percent, Decimal('0.00'))

    def test_zero_expected_values_give_zero_percent(self) -> None:
        match = _match(unit_price='5', po_unit_price='0', received_qty='10', price='0')
        self.assertEqual(match.price_variance_percent, Decimal('0'))
        self.assertEqual(match.status, MatchingStatus.MATCHED)

    def test_summary(self) -> None:
        summary = summarize([_match(), _match(unit_price='1200'), _match(invoiced_qty='12')])
        self.assertEqual(
            summary,
            {
                'total_lines': 3,
                'matched_lines': 1,
                'variance_lines': 1,
                'over_invoiced_lines': 1,
                'match_rate': '33.33',
            },
        )
        self.assertEqual(summarize([])['match_rate'], '0')


class ThreeWayMatchTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db
        self.po = self.fx.approved_purchase_order('10', '1000')

    def tearDown(self) -> None:
        self.fx.close()

    def _run(self, invoice, actor=None):
        return invoice_matching_service.perform_three_way_match(
            self.db, actor=actor or self.fx.finance, invoice_id=invoice.id, clock=self.fx.clock
        )

    def _results(self) -> int:
        return self.db.execute(select(func.count(InvoiceMatchingResult.id))).scalar_one()

    def _supplier_config(self, **values) -> None:
        self.db.add(
            InvoiceMatchingConfig(
                config_type=MatchingConfigType.SUPPLIER,
                reference_id=self.fx.supplier.id,
                quantity_tolerance_percent=values.get('quantity', Decimal('0')),
                price_tolerance_percent=values.get('price', Decimal('0')),
                amount_tolerance_percent=values.get('amount', Decimal('0')),
                allow_under_invoicing=True,
                allow_over_invoicing=False,
                require_approval_if_variance=values.get('require_approval', True),
                is_active=True,
            )
        )
        self.db.flush()

    def test_exact_match_auto_approves(self) -> None:
        gr = self.fx.posted_goods_receipt(self.po, '10')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1000')
        result = self._run(invoice)

        self.assertEqual(invoice.status, InvoiceStatus.APPROVED)
        self.assertEqual(invoice.approval_status, InvoiceApprovalStatus.APPROVED)
        self.assertEqual(invoice.matching_status, MatchingStatus.MATCHED)
        self.assertTrue(result.auto_approved)
        self.assertFalse(result.requires_approval)
        self.assertEqual(result.overall_status, MatchOutcome.MATCHED)
        self.assertEqual(result.matching_details['summary']['match_rate'], '100.00')
        self.assertEqual(result.matching_details['lines'][0]['item_sku'], 'PAPER-A4')
        [line] = supplier_invoice_service.list_lines(self.db, invoice_id=invoice.id)
        self.assertEqual(line.matching_status, MatchingStatus.MATCHED)

    def test_over_invoicing_aborts_without_writes(self) -> None:
        gr = self.fx.posted_goods_receipt(self.po, '8')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1000')
        with self.assertRaises(BusinessRuleError) as ctx:
            self._run(invoice)

        self.assertEqual(
            str(ctx.exception),
            'Over-invoicing detected on line 1. Invoice qty (10) exceeds GR qty (8). This is not allowed.',
        )
        self.assertEqual(self._results(), 0)
        self.assertEqual(invoice.status, InvoiceStatus.SUBMITTED)
        [line] = supplier_invoice_service.list_lines(self.db, invoice_id=invoice.id)
        self.assertEqual(line.matching_status, MatchingStatus.PENDING)

    def test_variance_routes_invoice_to_approval(self) -> None:
        gr = self.fx.posted_goods_receipt(self.po, '10')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1100')
        result = self._run(invoice)

        self.assertEqual(invoice.status, InvoiceStatus.VARIANCE)
        self.assertEqual(invoice.approval_status, InvoiceApprovalStatus.PENDING)
        self.assertEqual(invoice.matching_status, MatchingStatus.MISMATCHED)
        self.assertTrue(invoice.requires_approval)
        self.assertEqual(result.overall_status, MatchOutcome.VARIANCE)
        self.assertEqual(result.total_amount_variance, Decimal('1000.00'))
        self.assertEqual(result.variance_percentage, Decimal('10.00'))
        [line] = supplier_invoice_service.list_lines(self.db, invoice_id=invoice.id)
        self.assertEqual(line.matching_status, MatchingStatus.PRICE_VARIANCE)
        self.assertEqual(line.expected_price, Decimal('1000.00'))

        alerts = [n for n in pending_notifications(self.db) if n.document_number == invoice.internal_number]
        self.assertEqual([(n.event, n.recipient_role) for n in alerts], [(NotificationEvent.APPROVAL_REQUIRED, 'finance')])

        self._run(invoice)
        self.assertEqual(len(invoice_matching_service.list_results(self.db, invoice_id=invoice.id)), 2)

    def test_within_tolerance_is_auto_approved(self) -> None:
        self._supplier_config(price=Decimal('10'), amount=Decimal('10'))
        gr = self.fx.posted_goods_receipt(self.po, '10')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1050')
        result = self._run(invoice)

        self.assertEqual(invoice.status, InvoiceStatus.APPROVED)
        self.assertEqual(invoice.approval_status, InvoiceApprovalStatus.APPROVED)
        self.assertEqual(invoice.matching_status, MatchingStatus.MATCHED)
        self.assertEqual(invoice.approval_notes, 'Auto-approved: variances within tolerance.')
        self.assertTrue(result.auto_approved)
        self.assertFalse(result.requires_approval)
        self.assertEqual(result.price_tolerance_applied, Decimal('10'))

    def test_breach_without_approval_policy_still_records_mismatch(self) -> None:
        self._supplier_config(require_approval=False)
        gr = self.fx.posted_goods_receipt(self.po, '10')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1100')
        result = self._run(invoice)

        self.assertEqual(invoice.status, InvoiceStatus.APPROVED)
        self.assertEqual(invoice.matching_status, MatchingStatus.MISMATCHED)
        self.assertEqual(result.overall_status, MatchOutcome.MATCHED)

    def test_global_config_is_created_on_first_use(self) -> None:
        config = invoice_matching_service.resolve_config(self.db, supplier_id=self.fx.supplier.id)
        self.assertEqual(config.config_type, MatchingConfigType.GLOBAL)
        self.assertIs(invoice_matching_service.get_or_create_global_config(self.db), config)

    def test_unlinked_line_cannot_be_matched(self) -> None:
        gr = self.fx.posted_goods_receipt(self.po, '10')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1000', link_receipt=False)
        with self.assertRaises(ValidationError) as ctx:
            self._run(invoice)
        self.assertIn('lines.0.goods_receipt_line_id', ctx.exception.errors)

    def test_draft_invoice_and_non_finance_are_refused(self) -> None:
        gr = self.fx.posted_goods_receipt(self.po, '10')
        invoice = self.fx.submitted_invoice(self.po, gr, '10', '1000')
        with self.assertRaises(ForbiddenError):
            self._run(invoice, actor=self.fx.buyer)
        self._run(invoice)
        with self.assertRaises(ValidationError):
            self._run(invoice)


class MatchingConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db
        self.admin = Principal(
            id=self.fx.finance.id,
            username='finance',
            roles={'finance'},
            permissions={CONFIGURE_PERMISSION},
        )

    def tearDown(self) -> None:
        self.fx.close()

    def _values(self, quantity='5', price='2', amount='1', **flags) -> MatchingConfigInput:
        return MatchingConfigInput(
            quantity_tolerance_percent=Decimal(quantity),
            price_tolerance_percent=Decimal(price),
            amount_tolerance_percent=Decimal(amount),
            **flags,
        )

    def _configs(self) -> int:
        return self.db.execute(select(func.count(InvoiceMatchingConfig.id))).scalar_one()

    def test_global_config_is_updated_in_place(self) -> None:
        before = invoice_matching_service.get_config(self.db)
        updated = invoice_matching_service.upsert_config(self.db, actor=self.admin, values=self._values())
        self.assertEqual(updated.id, before.id)
        self.assertEqual(updated.config_type, MatchingConfigType.GLOBAL)
        self.assertEqual(updated.quantity_tolerance_percent, Decimal('5'))
        self.assertEqual(invoice_matching_service.get_config(self.db).price_tolerance_percent, Decimal('2'))

    def test_supplier_config_is_created_then_updated(self) -> None:
        self.assertIsNone(invoice_matching_service.get_config(self.db, supplier_id=self.fx.supplier.id))
        created = invoice_matching_service.upsert_config(
            self.db, actor=self.admin, values=self._values(), supplier_id=self.fx.supplier.id
        )
        count = self._configs()
        updated = invoice_matching_service.upsert_config(
            self.db,
            actor=self.admin,
            values=self._values(price='10', require_approval_if_variance=False),
            supplier_id=self.fx.supplier.id,
        )
        self.assertEqual(updated.id, created.id)
        self.assertEqual(self._configs(), count)
        self.assertEqual(updated.reference_id, self.fx.supplier.id)
        self.assertFalse(updated.require_approval_if_variance)
        config = invoice_matching_service.resolve_config(self.db, supplier_id=self.fx.supplier.id)
        self.assertEqual(config.price_tolerance_percent, Decimal('10'))

    def test_tolerance_outside_percentage_range_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            invoice_matching_service.upsert_config(
                self.db, actor=self.admin, values=self._values(quantity='-1', amount='100.5')
            )
        self.assertEqual(
            set(ctx.exception.errors), {'quantity_tolerance_percent', 'amount_tolerance_percent'}
        )

    def test_configuring_requires_permission(self) -> None:
        with self.assertRaises(ForbiddenError):
            invoice_matching_service.upsert_config(self.db, actor=self.fx.finance, values=self._values())

    def test_unknown_supplier_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            invoice_matching_service.get_config(self.db, supplier_id=999)
        with self.assertRaises(NotFoundError):
            invoice_matching_service.upsert_config(
                self.db, actor=self.admin, values=self._values(), supplier_id=999
            )


if __name__ == '__main__':
    unittest.main()
