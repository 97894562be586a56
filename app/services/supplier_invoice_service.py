from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext, Role
from app.clock import Clock, system_clock
from app.config import settings
from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models import (
    GoodsReceipt,
    GoodsReceiptLine,
    InvoiceStatus,
    MatchingStatus,
    PaymentStatus,
    PurchaseOrderLine,
    SupplierInvoice,
    SupplierInvoiceLine,
)
from app.services import goods_receipt_service, master_data_service, purchase_order_service
from app.services.decimal_utils import quantize_money, to_decimal
from app.services.file_storage import (
    FileStorage,
    UploadedFile,
    delete_after_commit,
    store_in_transaction,
    validate_upload,
)
from app.services.numbering_service import SUPPLIER_INVOICE_PREFIX, generate_number
from app.services.provider_factory import get_file_storage

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = {InvoiceStatus.DRAFT, InvoiceStatus.SUBMITTED}
CANCELLABLE_STATUSES = {InvoiceStatus.DRAFT, InvoiceStatus.SUBMITTED, InvoiceStatus.VARIANCE}
_MANAGE_ROLES = (Role.FINANCE, Role.SUPER_ADMIN)


@dataclass(frozen=True)
class SupplierInvoiceLineInput:
    purchase_order_line_id: int
    invoiced_qty: Decimal
    unit_price: Decimal
    goods_receipt_line_id: int | None = None
    tax_amount: Decimal = Decimal('0')
    discount_amount: Decimal = Decimal('0')
    line_total: Decimal | None = None
    description: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class _ResolvedLine:
    source: SupplierInvoiceLineInput
    po_line: PurchaseOrderLine
    line_total: Decimal


def line_total_for(line: SupplierInvoiceLineInput) -> Decimal:
    if line.line_total is not None:
        return quantize_money(line.line_total)
    return quantize_money(
        to_decimal(line.invoiced_qty) * to_decimal(line.unit_price)
        + to_decimal(line.tax_amount)
        - to_decimal(line.discount_amount)
    )


def _require_manager(actor: AuthorizationContext, verb: str) -> None:
    if not actor.has_any_role(_MANAGE_ROLES):
        raise ForbiddenError(f'Only finance can {verb} supplier invoices.')


def get_supplier_invoice(db: Session, invoice_id: int, *, for_update: bool = False) -> SupplierInvoice:
    stmt = select(SupplierInvoice).where(SupplierInvoice.id == invoice_id)
    if for_update:
        stmt = stmt.with_for_update()
    invoice = db.execute(stmt).scalar_one_or_none()
    if not invoice:
        raise NotFoundError('Supplier invoice not found')
    return invoice


def list_lines(db: Session, *, invoice_id: int) -> list[SupplierInvoiceLine]:
    return db.execute(
        select(SupplierInvoiceLine)
        .where(SupplierInvoiceLine.supplier_invoice_id == invoice_id)
        .order_by(SupplierInvoiceLine.line_number.asc())
    ).scalars().all()


def list_invoices(
    db: Session,
    *,
    status: InvoiceStatus | None = None,
    supplier_id: int | None = None,
    payment_status: PaymentStatus | None = None,
    limit: int = 100,
) -> list[SupplierInvoice]:
    stmt = select(SupplierInvoice)
    if status is not None:
        stmt = stmt.where(SupplierInvoice.status == status)
    if supplier_id is not None:
        stmt = stmt.where(SupplierInvoice.supplier_id == supplier_id)
    if payment_status is not None:
        stmt = stmt.where(SupplierInvoice.payment_status == payment_status)
    return db.execute(stmt.order_by(SupplierInvoice.id.desc()).limit(limit)).scalars().all()


def _check_invoice_number(db: Session, *, supplier_id: int, invoice_number: str, exclude_id: int | None = None) -> None:
    stmt = select(SupplierInvoice.id).where(
        SupplierInvoice.supplier_id == supplier_id,
        SupplierInvoice.invoice_number == invoice_number,
    )
    if exclude_id is not None:
        stmt = stmt.where(SupplierInvoice.id != exclude_id)
    if db.execute(stmt).first():
        raise ValidationError.single('invoice_number', 'Invoice number already exists for this supplier.')


def _resolve_lines(db: Session, *, purchase_order_id: int, lines: list[SupplierInvoiceLineInput]) -> list[_ResolvedLine]:
    if not lines:
        raise ValidationError.single('lines', 'Invoice must have at least one line.')

    po_lines = {line.id: line for line in purchase_order_service.list_lines(db, purchase_order_id=purchase_order_id)}
    errors: dict[str, str] = {}
    resolved: list[_ResolvedLine] = []
    for index, line in enumerate(lines):
        if to_decimal(line.invoiced_qty) <= 0:
            errors[f'lines.{index}.invoiced_qty'] = 'Invoiced qty must be > 0.'
        if to_decimal(line.unit_price) < 0:
            errors[f'lines.{index}.unit_price'] = 'Unit price must be >= 0.'
        po_line = po_lines.get(line.purchase_order_line_id)
        if not po_line:
            errors[f'lines.{index}.purchase_order_line_id'] = 'PO line does not belong to this purchase order.'
            continue
        if line.goods_receipt_line_id is not None:
            row = db.execute(
                select(GoodsReceiptLine, GoodsReceipt)
                .join(GoodsReceipt, GoodsReceipt.id == GoodsReceiptLine.goods_receipt_id)
                .where(GoodsReceiptLine.id == line.goods_receipt_line_id)
            ).first()
            if (
                not row
                or row.GoodsReceipt.purchase_order_id != purchase_order_id
                or row.GoodsReceipt.status not in goods_receipt_service.POSTED_STATUSES
            ):
                errors[f'lines.{index}.goods_receipt_line_id'] = 'GR line must belong to a posted GR of this PO.'
                continue
            if row.GoodsReceiptLine.purchase_order_line_id != po_line.id:
                errors[f'lines.{index}.goods_receipt_line_id'] = 'GR line does not receive this PO line.'
                continue
        resolved.append(_ResolvedLine(source=line, po_line=po_line, line_total=line_total_for(line)))
    if errors:
        raise ValidationError(errors)
    return resolved


def _write_lines(db: Session, *, invoice: SupplierInvoice, lines: list[_ResolvedLine]) -> Decimal:
    subtotal = Decimal('0')
    for number, resolved in enumerate(lines, start=1):
        line = resolved.source
        db.add(
            SupplierInvoiceLine(
                supplier_invoice_id=invoice.id,
                line_number=number,
                item_id=resolved.po_line.item_id,
                uom_id=resolved.po_line.uom_id,
                purchase_order_line_id=resolved.po_line.id,
                goods_receipt_line_id=line.goods_receipt_line_id,
                description=line.description,
                invoiced_qty=to_decimal(line.invoiced_qty),
                unit_price=quantize_money(line.unit_price),
                tax_amount=quantize_money(line.tax_amount),
                discount_amount=quantize_money(line.discount_amount),
                line_total=resolved.line_total,
                matching_status=MatchingStatus.PENDING,
                notes=line.notes,
            )
        )
        subtotal += resolved.line_total
    return quantize_money(subtotal)


def _apply_totals(
    invoice: SupplierInvoice,
    *,
    subtotal: Decimal,
    tax_amount,
    discount_amount,
    other_charges,
    total_amount,
) -> None:
    invoice.subtotal = subtotal
    invoice.tax_amount = quantize_money(tax_amount)
    invoice.discount_amount = quantize_money(discount_amount)
    invoice.other_charges = quantize_money(other_charges)
    if total_amount is None:
        total_amount = invoice.subtotal + invoice.tax_amount - invoice.discount_amount + invoice.other_charges
    invoice.total_amount = quantize_money(total_amount)
    if invoice.total_amount < 0:
        raise ValidationError.single('total_amount', 'Total amount must be >= 0.')
    invoice.paid_amount = Decimal('0')
    invoice.remaining_amount = invoice.total_amount


def create_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    supplier_id: int,
    purchase_order_id: int,
    invoice_number: str,
    invoice_date: date,
    lines: list[SupplierInvoiceLineInput],
    due_date: date | None = None,
    received_date: date | None = None,
    tax_amount=Decimal('0'),
    discount_amount=Decimal('0'),
    other_charges=Decimal('0'),
    total_amount=None,
    currency: str | None = None,
    notes: str | None = None,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    _require_manager(actor, 'create')
    supplier = master_data_service.get_supplier(db, supplier_id)
    po = purchase_order_service.get_purchase_order(db, purchase_order_id)
    if po.supplier_id != supplier.id:
        raise ValidationError.single('purchase_order_id', 'Purchase order does not belong to this supplier.')
    invoice_number = (invoice_number or '').strip()
    if not invoice_number:
        raise ValidationError.single('invoice_number', 'Invoice number is required.')
    if due_date is not None and due_date < invoice_date:
        raise ValidationError.single('due_date', 'Due date cannot be before the invoice date.')
    _check_invoice_number(db, supplier_id=supplier.id, invoice_number=invoice_number)
    resolved = _resolve_lines(db, purchase_order_id=po.id, lines=lines)

    now = clock.now()
    invoice = SupplierInvoice(
        invoice_number=invoice_number,
        internal_number=generate_number(db, prefix=SUPPLIER_INVOICE_PREFIX, clock=clock),
        supplier_id=supplier.id,
        purchase_order_id=po.id,
        invoice_date=invoice_date,
        received_date=received_date or now.date(),
        due_date=due_date,
        currency=currency or po.currency_code or settings.default_currency,
        status=InvoiceStatus.DRAFT,
        matching_status=MatchingStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        notes=notes,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    db.add(invoice)
    db.flush()

    subtotal = _write_lines(db, invoice=invoice, lines=resolved)
    _apply_totals(
        invoice,
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        other_charges=other_charges,
        total_amount=total_amount,
    )
    db.flush()
    logger.info('Supplier invoice %s recorded as %s', invoice.invoice_number, invoice.internal_number)
    return invoice


def update_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    invoice_number: str | None = None,
    invoice_date: date | None = None,
    due_date: date | None = None,
    lines: list[SupplierInvoiceLineInput] | None = None,
    tax_amount=None,
    discount_amount=None,
    other_charges=None,
    total_amount=None,
    notes: str | None = None,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    _require_manager(actor, 'update')
    invoice = get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status not in EDITABLE_STATUSES:
        raise ValidationError.single('status', 'Only DRAFT or SUBMITTED invoices can be edited.')

    if invoice_number is not None:
        invoice_number = invoice_number.strip()
        if not invoice_number:
            raise ValidationError.single('invoice_number', 'Invoice number is required.')
        _check_invoice_number(
            db, supplier_id=invoice.supplier_id, invoice_number=invoice_number, exclude_id=invoice.id
        )
        invoice.invoice_number = invoice_number
    if invoice_date is not None:
        invoice.invoice_date = invoice_date
    if due_date is not None:
        invoice.due_date = due_date
    if invoice.due_date is not None and invoice.due_date < invoice.invoice_date:
        raise ValidationError.single('due_date', 'Due date cannot be before the invoice date.')
    if notes is not None:
        invoice.notes = notes

    if lines is not None:
        resolved = _resolve_lines(db, purchase_order_id=invoice.purchase_order_id, lines=lines)
        db.execute(delete(SupplierInvoiceLine).where(SupplierInvoiceLine.supplier_invoice_id == invoice.id))
        subtotal = _write_lines(db, invoice=invoice, lines=resolved)
    else:
        subtotal = invoice.subtotal
    _apply_totals(
        invoice,
        subtotal=subtotal,
        tax_amount=invoice.tax_amount if tax_amount is None else tax_amount,
        discount_amount=invoice.discount_amount if discount_amount is None else discount_amount,
        other_charges=invoice.other_charges if other_charges is None else other_charges,
        total_amount=total_amount,
    )
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = clock.now()
    db.flush()
    return invoice


def submit(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    _require_manager(actor, 'submit')
    invoice = get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status != InvoiceStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT invoices can be submitted.')
    invoice.status = InvoiceStatus.SUBMITTED
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = clock.now()
    db.flush()
    logger.info('Supplier invoice %s submitted', invoice.internal_number)
    return invoice


def cancel(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    _require_manager(actor, 'cancel')
    invoice = get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status not in CANCELLABLE_STATUSES:
        raise ValidationError.single('status', 'Invoice cannot be cancelled in its current status.')
    now = clock.now()
    invoice.status = InvoiceStatus.CANCELLED
    invoice.cancelled_at = now
    invoice.cancelled_by_user_id = actor.id
    if reason and reason.strip():
        invoice.notes = reason.strip()
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = now
    db.flush()
    logger.info('Supplier invoice %s cancelled', invoice.internal_number)
    return invoice


def _attachment_path(invoice: SupplierInvoice, folder: str, extension: str, clock: Clock) -> str:
    now = clock.now()
    return f'invoices/{folder}/{invoice.internal_number}-{now:%Y%m%d%H%M%S%f}.{extension}'


def attach_documents(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    invoice_file: UploadedFile | None = None,
    tax_invoice_file: UploadedFile | None = None,
    storage: FileStorage | None = None,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    """Attach the supplier's invoice scan and tax invoice to an editable invoice.

    A replaced file is only removed once the transaction commits, and a newly
    stored file is removed again if it does not.
    """
    _require_manager(actor, 'update')
    invoice = get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status not in EDITABLE_STATUSES:
        raise ValidationError.single('status', 'Only DRAFT or SUBMITTED invoices can be edited.')

    uploads = [
        (field, folder, upload)
        for field, folder, upload in (
            ('invoice_file', 'invoice-files', invoice_file),
            ('tax_invoice_file', 'tax-invoice-files', tax_invoice_file),
        )
        if upload is not None
    ]
    if not uploads:
        raise ValidationError.single('invoice_file', 'At least one file is required.')
    extensions = {
        field: validate_upload(
            field,
            upload,
            max_kb=settings.invoice_file_max_kb,
            extensions=settings.invoice_file_extensions,
        )
        for field, _, upload in uploads
    }

    storage = storage or get_file_storage()
    for field, folder, upload in uploads:
        path = store_in_transaction(
            db, storage, upload.content, _attachment_path(invoice, folder, extensions[field], clock)
        )
        previous = getattr(invoice, f'{field}_path')
        if previous and previous != path:
            delete_after_commit(db, storage, previous)
        setattr(invoice, f'{field}_path', path)

    invoice.updated_by_user_id = actor.id
    invoice.updated_at = clock.now()
    db.flush()
    logger.info('Supplier invoice %s documents attached: %s', invoice.internal_number, ', '.join(extensions))
    return invoice
