from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext, Role
from app.clock import Clock, system_clock
from app.config import settings
from app.errors import ForbiddenError, ValidationError
from app.models import InvoicePayment, InvoiceStatus, PaymentMethod, PaymentStatus, SupplierInvoice
from app.services import supplier_invoice_service
from app.services.decimal_utils import CENT, quantize_money, to_decimal
from app.services.file_storage import FileStorage, UploadedFile, store_in_transaction, validate_upload
from app.services.numbering_service import PAYMENT_PREFIX, generate_number
from app.services.provider_factory import get_file_storage

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = {InvoiceStatus.APPROVED, InvoiceStatus.PAID}
_PAY_ROLES = (Role.FINANCE, Role.SUPER_ADMIN)

PaymentProof = UploadedFile


@dataclass(frozen=True)
class PaymentHistory:
    invoice: SupplierInvoice
    payments: list[InvoicePayment]
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_count: int


def validate_proof(proof: PaymentProof) -> str:
    return validate_upload(
        'payment_proof',
        proof,
        max_kb=settings.payment_proof_max_kb,
        extensions=settings.payment_proof_extensions,
    )


def proof_path(invoice: SupplierInvoice, *, payment_number: str, extension: str, clock: Clock) -> str:
    now = clock.now()
    return (
        f'payment-proofs/{now:%Y/%m}/payment-{invoice.internal_number}-{int(now.timestamp())}-'
        f'{payment_number}.{extension}'
    )


def apply_payment(invoice: SupplierInvoice, amount: Decimal) -> None:
    total = to_decimal(invoice.total_amount)
    paid = to_decimal(invoice.paid_amount) + amount
    remaining = total - paid
    if remaining <= CENT:
        invoice.paid_amount = total
        invoice.remaining_amount = Decimal('0')
        invoice.payment_status = PaymentStatus.PAID
        invoice.status = InvoiceStatus.PAID
    else:
        invoice.paid_amount = paid
        invoice.remaining_amount = remaining
        if paid > 0:
            invoice.payment_status = PaymentStatus.PARTIAL_PAID


def record_payment(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    payment_amount,
    payment_date: date | None = None,
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
    bank_name: str | None = None,
    bank_account_number: str | None = None,
    bank_account_name: str | None = None,
    transaction_reference: str | None = None,
    notes: str | None = None,
    proof: PaymentProof | None = None,
    storage: FileStorage | None = None,
    clock: Clock = system_clock,
) -> InvoicePayment:
    if not actor.has_any_role(_PAY_ROLES):
        raise ForbiddenError('Only finance can record payments.')
    amount = quantize_money(payment_amount)
    if amount <= 0:
        raise ValidationError.single('payment_amount', 'Payment amount must be greater than zero.')

    invoice = supplier_invoice_service.get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status not in PAYABLE_STATUSES:
        raise ValidationError.single('status', 'Invoice must be APPROVED first')
    remaining = to_decimal(invoice.remaining_amount)
    if amount > remaining:
        raise ValidationError.single(
            'payment_amount',
            f'Payment amount ({amount}) exceeds remaining amount ({quantize_money(remaining)})',
        )

    extension = validate_proof(proof) if proof is not None else None
    payment_number = generate_number(db, prefix=PAYMENT_PREFIX, clock=clock)
    stored_path = None
    if proof is not None:
        stored_path = store_in_transaction(
            db,
            storage or get_file_storage(),
            proof.content,
            proof_path(invoice, payment_number=payment_number, extension=extension, clock=clock),
        )

    now = clock.now()
    payment = InvoicePayment(
        supplier_invoice_id=invoice.id,
        payment_number=payment_number,
        payment_date=payment_date or now.date(),
        payment_method=payment_method,
        payment_amount=amount,
        bank_name=bank_name,
        bank_account_number=bank_account_number,
        bank_account_name=bank_account_name,
        transaction_reference=transaction_reference,
        payment_proof_path=stored_path,
        notes=notes,
        created_by_user_id=actor.id,
        created_at=now,
    )
    db.add(payment)
    apply_payment(invoice, amount)
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = now
    db.flush()

    logger.info(
        'Payment %s of %s recorded for %s (%s)',
        payment.payment_number,
        amount,
        invoice.internal_number,
        invoice.payment_status.value,
    )
    return payment


def list_payments(db: Session, *, invoice_id: int) -> list[InvoicePayment]:
    return db.execute(
        select(InvoicePayment)
        .where(InvoicePayment.supplier_invoice_id == invoice_id)
        .order_by(InvoicePayment.payment_date.desc(), InvoicePayment.id.desc())
    ).scalars().all()


def get_payment_history(db: Session, *, invoice_id: int) -> PaymentHistory:
    invoice = supplier_invoice_service.get_supplier_invoice(db, invoice_id)
    payments = list_payments(db, invoice_id=invoice.id)
    return PaymentHistory(
        invoice=invoice,
        payments=payments,
        total_amount=to_decimal(invoice.total_amount),
        paid_amount=to_decimal(invoice.paid_amount),
        remaining_amount=to_decimal(invoice.remaining_amount),
        payment_count=len(payments),
    )
