from __future__ import annotations

import unittest
from datetime import date
from unittest import mock
from decimal import Decimal

from app.errors import ForbiddenError, ValidationError
from app.models import InvoiceStatus, MatchingStatus, PaymentStatus
from app.services import goods_receipt_service, supplier_invoice_service
from app.services.file_storage import UploadedFile
from app.services.supplier_invoice_service import SupplierInvoiceLineInput, line_total_for
from ledger_fixtures import LedgerFixture


class LineTotalTests(unittest.TestCase):
    def test_derived_from_qty_price_tax_and_discount(self) -> None:
        line = SupplierInvoiceLineInput(
            purchase_order_line_id=1,
            invoiced_qty=Decimal('3'),
            unit_price=Decimal('333.335'),
            tax_amount=Decimal('110'),
            discount_amount=Decimal('10'),
        )
        self.assertEqual(line_total_for(line), Decimal('1100.01'))

    def test_explicit_total_wins(self) -> None:
        line = SupplierInvoiceLineInput(
            purchase_order_line_id=1, invoiced_qty=Decimal('1'), unit_price=Decimal('5'), line_total=Decimal('4.5')
        )
        self.assertEqual(line_total_for(line), Decimal('4.50'))


class SupplierInvoiceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db
        self.po = self.fx.approved_purchase_order('10', '1000')
        self.gr = self.fx.posted_goods_receipt(self.po, '10')
        self.gr_line = goods_receipt_service.list_lines(self.db, goods_receipt_id=self.gr.id)[0]

    def tearDown(self) -> None:
        self.fx.close()

    def _line(self, qty='10', price='1000', **kwargs) -> SupplierInvoiceLineInput:
        return SupplierInvoiceLineInput(
            purchase_order_line_id=self.gr_line.purchase_order_line_id,
            goods_receipt_line_id=self.gr_line.id,
            invoiced_qty=Decimal(qty),
            unit_price=Decimal(price),
            **kwargs,
        )

    def _create(self, *, actor=None, supplier=None, invoice_number='SI-1', lines=None, **kwargs):
        return supplier_invoice_service.create_draft(
            self.db,
            actor=actor or self.fx.finance,
            supplier_id=(supplier or self.fx.supplier).id,
            purchase_order_id=self.po.id,
            invoice_number=invoice_number,
            invoice_date=date(2024, 5, 14),
            lines=lines or [self._line()],
            clock=self.fx.clock,
            **kwargs,
        )

    def test_create_draft_computes_totals(self) -> None:
        invoice = self._create(tax_amount=Decimal('1100'), other_charges=Decimal('50'))

        self.assertEqual(invoice.internal_number, 'INV-202405-0001')
        self.assertEqual(invoice.status, InvoiceStatus.DRAFT)
        self.assertEqual(invoice.matching_status, MatchingStatus.PENDING)
        self.assertEqual(invoice.payment_status, PaymentStatus.UNPAID)
        self.assertEqual(invoice.subtotal, Decimal('10000.00'))
        self.assertEqual(invoice.total_amount, Decimal('11150.00'))
        self.assertEqual(invoice.remaining_amount, invoice.total_amount)
        self.assertEqual(invoice.paid_amount, Decimal('0'))
        self.assertEqual(invoice.currency, 'IDR')
        self.assertEqual(invoice.received_date, date(2024, 5, 15))
        [line] = supplier_invoice_service.list_lines(self.db, invoice_id=invoice.id)
        self.assertEqual(line.item_id, self.fx.paper.id)
        self.assertEqual(line.line_total, Decimal('10000.00'))

    def test_invoice_number_is_unique_per_supplier(self) -> None:
        self._create()
        with self.assertRaises(ValidationError) as ctx:
            self._create()
        self.assertEqual(ctx.exception.errors, {'invoice_number': ['Invoice number already exists for this supplier.']})

    def test_purchase_order_must_belong_to_supplier(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(supplier=self.fx.other_supplier)
        self.assertIn('purchase_order_id', ctx.exception.errors)

    def test_due_date_not_before_invoice_date(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(due_date=date(2024, 5, 1))
        self.assertIn('due_date', ctx.exception.errors)

    def test_receipt_line_must_come_from_posted_receipt_of_the_order(self) -> None:
        other_po = self.fx.approved_purchase_order('5')
        other_gr = self.fx.posted_goods_receipt(other_po, '5')
        other_line = goods_receipt_service.list_lines(self.db, goods_receipt_id=other_gr.id)[0]
        with self.assertRaises(ValidationError) as ctx:
            self._create(
                lines=[
                    SupplierInvoiceLineInput(
                        purchase_order_line_id=self.gr_line.purchase_order_line_id,
                        goods_receipt_line_id=other_line.id,
                        invoiced_qty=Decimal('1'),
                        unit_price=Decimal('1000'),
                    )
                ]
            )
        self.assertIn('lines.0.goods_receipt_line_id', ctx.exception.errors)

    def test_line_values_are_validated(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(lines=[self._line(qty='0', price='-1')])
        self.assertEqual(set(ctx.exception.errors), {'lines.0.invoiced_qty', 'lines.0.unit_price'})

    def test_only_finance_records_invoices(self) -> None:
        with self.assertRaises(ForbiddenError):
            self._create(actor=self.fx.buyer)

    def test_edit_submit_and_cancel_lifecycle(self) -> None:
        invoice = self._create()
        supplier_invoice_service.submit(self.db, actor=self.fx.finance, invoice_id=invoice.id)
        self.assertEqual(invoice.status, InvoiceStatus.SUBMITTED)
        with self.assertRaises(ValidationError):
            supplier_invoice_service.submit(self.db, actor=self.fx.finance, invoice_id=invoice.id)

        supplier_invoice_service.update_draft(
            self.db,
            actor=self.fx.finance,
            invoice_id=invoice.id,
            lines=[self._line(qty='8')],
            discount_amount=Decimal('500'),
            clock=self.fx.clock,
        )
        self.assertEqual(invoice.subtotal, Decimal('8000.00'))
        self.assertEqual(invoice.total_amount, Decimal('7500.00'))
        self.assertEqual(len(supplier_invoice_service.list_lines(self.db, invoice_id=invoice.id)), 1)

        supplier_invoice_service.cancel(self.db, actor=self.fx.finance, invoice_id=invoice.id, reason='Duplicate bill')
        self.assertEqual(invoice.status, InvoiceStatus.CANCELLED)
        self.assertEqual(invoice.notes, 'Duplicate bill')
        with self.assertRaises(ValidationError):
            supplier_invoice_service.update_draft(self.db, actor=self.fx.finance, invoice_id=invoice.id, notes='x')

    def test_list_invoices_filters_by_status(self) -> None:
        first = self._create(invoice_number='SI-1')
        self._create(invoice_number='SI-2')
        supplier_invoice_service.submit(self.db, actor=self.fx.finance, invoice_id=first.id)
        submitted = supplier_invoice_service.list_invoices(self.db, status=InvoiceStatus.SUBMITTED)
        self.assertEqual([i.id for i in submitted], [first.id])
        self.assertEqual(len(supplier_invoice_service.list_invoices(self.db, supplier_id=self.fx.supplier.id)), 2)


class InvoiceAttachmentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fx = LedgerFixture()
        self.db = self.fx.db
        po = self.fx.approved_purchase_order('10', '1000')
        gr = self.fx.posted_goods_receipt(po, '10')
        self.invoice = self.fx.submitted_invoice(po, gr, '10', '1000')
        self.storage = mock.Mock()
        self.storage.store.side_effect = lambda content, path: path

    def tearDown(self) -> None:
        self.fx.close()

    def _attach(self, **files):
        return supplier_invoice_service.attach_documents(
            self.db,
            actor=files.pop('actor', self.fx.finance),
            invoice_id=self.invoice.id,
            storage=self.storage,
            clock=self.fx.clock,
            **files,
        )

    def test_documents_are_stored_by_kind(self) -> None:
        invoice = self._attach(
            invoice_file=UploadedFile('scan.PDF', b'%PDF'),
            tax_invoice_file=UploadedFile('faktur.jpg', b'jpg'),
        )
        self.assertTrue(invoice.invoice_file_path.startswith('invoices/invoice-files/INV-202405-0001-'))
        self.assertTrue(invoice.invoice_file_path.endswith('.pdf'))
        self.assertTrue(invoice.tax_invoice_file_path.startswith('invoices/tax-invoice-files/INV-202405-0001-'))
        self.assertEqual(self.storage.store.call_count, 2)

    def test_oversized_or_wrong_type_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._attach(invoice_file=UploadedFile('scan.docx', b'doc'))
        self.assertIn('invoice_file', ctx.exception.errors)
        with self.assertRaises(ValidationError) as ctx:
            self._attach(tax_invoice_file=UploadedFile('faktur.pdf', b'x' * (10240 * 1024 + 1)))
        self.assertIn('tax_invoice_file', ctx.exception.errors)
        self.storage.store.assert_not_called()

    def test_attaching_requires_a_file_and_finance(self) -> None:
        with self.assertRaises(ValidationError):
            self._attach()
        with self.assertRaises(ForbiddenError):
            self._attach(actor=self.fx.buyer, invoice_file=UploadedFile('scan.pdf', b'x'))

    def test_new_file_is_removed_when_transaction_rolls_back(self) -> None:
        invoice = self._attach(invoice_file=UploadedFile('scan.pdf', b'x'))
        stored_path = invoice.invoice_file_path
        self.db.rollback()
        self.storage.delete.assert_called_once_with(stored_path)

    def test_replaced_file_is_removed_only_after_commit(self) -> None:
        first_path = self._attach(invoice_file=UploadedFile('scan.pdf', b'1')).invoice_file_path
        self.db.commit()
        self.fx.clock.advance(minutes=5)

        second_path = self._attach(invoice_file=UploadedFile('scan.pdf', b'2')).invoice_file_path
        self.assertNotEqual(first_path, second_path)
        self.storage.delete.assert_not_called()
        self.db.commit()
        self.storage.delete.assert_called_once_with(first_path)

    def test_replaced_file_is_kept_when_replacement_rolls_back(self) -> None:
        first_path = self._attach(invoice_file=UploadedFile('scan.pdf', b'1')).invoice_file_path
        self.db.commit()
        self.fx.clock.advance(minutes=5)

        second_path = self._attach(invoice_file=UploadedFile('scan.pdf', b'2')).invoice_file_path
        self.db.rollback()
        self.storage.delete.assert_called_once_with(second_path)
        self.assertNotEqual(first_path, second_path)

    def test_only_editable_invoices_take_documents(self) -> None:
        supplier_invoice_service.cancel(self.db, actor=self.fx.finance, invoice_id=self.invoice.id)
        with self.assertRaises(ValidationError):
            self._attach(invoice_file=UploadedFile('scan.pdf', b'x'))


if __name__ == '__main__':
    unittest.main()
