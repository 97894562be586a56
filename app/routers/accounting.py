from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.models import InvoiceStatus, PaymentMethod, PaymentStatus
from app.schemas import (
    InvoiceApproveBody,
    InvoiceRejectBody,
    MatchingConfigIn,
    MatchingConfigOut,
    MatchingResultOut,
    PaymentHistoryOut,
    PaymentOut,
    ReasonBody,
    SupplierInvoiceCreate,
    SupplierInvoiceOut,
    SupplierInvoiceUpdate,
)
from app.services import (
    invoice_approval_service,
    invoice_matching_service,
    invoice_payment_service,
    supplier_invoice_service,
)
from app.services.file_storage import UploadedFile
from app.services.invoice_payment_service import PaymentProof

router = APIRouter(prefix='/supplier-invoices', tags=['accounting'])


@router.get('', response_model=list[SupplierInvoiceOut])
def list_supplier_invoices(
    status: InvoiceStatus | None = None,
    supplier_id: int | None = None,
    payment_status: PaymentStatus | None = None,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return supplier_invoice_service.list_invoices(
        db, status=status, supplier_id=supplier_id, payment_status=payment_status
    )


@router.post('', response_model=SupplierInvoiceOut, status_code=201)
def create_supplier_invoice(
    body: SupplierInvoiceCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = supplier_invoice_service.create_draft(
        db,
        actor=principal,
        supplier_id=body.supplier_id,
        purchase_order_id=body.purchase_order_id,
        invoice_number=body.invoice_number,
        invoice_date=body.invoice_date,
        lines=[line.to_input() for line in body.lines],
        due_date=body.due_date,
        received_date=body.received_date,
        tax_amount=body.tax_amount,
        discount_amount=body.discount_amount,
        other_charges=body.other_charges,
        total_amount=body.total_amount,
        currency=body.currency,
        notes=body.notes,
    )
    db.commit()
    return invoice


@router.get('/tolerance-config', response_model=MatchingConfigOut | None)
def get_tolerance_config(
    supplier_id: int | None = None,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    config = invoice_matching_service.get_config(db, supplier_id=supplier_id)
    db.commit()
    return config


@router.put('/tolerance-config', response_model=MatchingConfigOut)
def upsert_tolerance_config(
    body: MatchingConfigIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    config = invoice_matching_service.upsert_config(
        db, actor=principal, values=body.to_input(), supplier_id=body.supplier_id
    )
    db.commit()
    return config


@router.get('/{invoice_id}', response_model=SupplierInvoiceOut)
def get_supplier_invoice(
    invoice_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return supplier_invoice_service.get_supplier_invoice(db, invoice_id)


@router.put('/{invoice_id}', response_model=SupplierInvoiceOut)
def update_supplier_invoice(
    invoice_id: int,
    body: SupplierInvoiceUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = supplier_invoice_service.update_draft(
        db,
        actor=principal,
        invoice_id=invoice_id,
        invoice_number=body.invoice_number,
        invoice_date=body.invoice_date,
        due_date=body.due_date,
        lines=[line.to_input() for line in body.lines] if body.lines is not None else None,
        tax_amount=body.tax_amount,
        discount_amount=body.discount_amount,
        other_charges=body.other_charges,
        total_amount=body.total_amount,
        notes=body.notes,
    )
    db.commit()
    return invoice


@router.post('/{invoice_id}/submit', response_model=SupplierInvoiceOut)
def submit_supplier_invoice(
    invoice_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = supplier_invoice_service.submit(db, actor=principal, invoice_id=invoice_id)
    db.commit()
    return invoice


@router.post('/{invoice_id}/cancel', response_model=SupplierInvoiceOut)
def cancel_supplier_invoice(
    invoice_id: int,
    body: ReasonBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = supplier_invoice_service.cancel(
        db, actor=principal, invoice_id=invoice_id, reason=body.reason if body else None
    )
    db.commit()
    return invoice


async def _read_upload(upload: UploadFile | None) -> UploadedFile | None:
    if upload is None or not upload.filename:
        return None
    return UploadedFile(filename=upload.filename, content=await upload.read())


@router.post('/{invoice_id}/attachments', response_model=SupplierInvoiceOut)
async def attach_supplier_invoice_documents(
    invoice_id: int,
    invoice_file: UploadFile | None = File(default=None),
    tax_invoice_file: UploadFile | None = File(default=None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = supplier_invoice_service.attach_documents(
        db,
        actor=principal,
        invoice_id=invoice_id,
        invoice_file=await _read_upload(invoice_file),
        tax_invoice_file=await _read_upload(tax_invoice_file),
    )
    db.commit()
    return invoice


@router.post('/{invoice_id}/match', response_model=MatchingResultOut)
def match_supplier_invoice(
    invoice_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    result = invoice_matching_service.perform_three_way_match(db, actor=principal, invoice_id=invoice_id)
    db.commit()
    return result


@router.get('/{invoice_id}/matching-results', response_model=list[MatchingResultOut])
def list_matching_results(
    invoice_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    supplier_invoice_service.get_supplier_invoice(db, invoice_id)
    return invoice_matching_service.list_results(db, invoice_id=invoice_id)


@router.post('/{invoice_id}/approve', response_model=SupplierInvoiceOut)
def approve_supplier_invoice(
    invoice_id: int,
    body: InvoiceApproveBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = invoice_approval_service.approve(
        db, actor=principal, invoice_id=invoice_id, notes=body.notes if body else None
    )
    db.commit()
    return invoice


@router.post('/{invoice_id}/reject', response_model=SupplierInvoiceOut)
def reject_supplier_invoice(
    invoice_id: int,
    body: InvoiceRejectBody,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invoice = invoice_approval_service.reject(db, actor=principal, invoice_id=invoice_id, reason=body.reason)
    db.commit()
    return invoice


@router.post('/{invoice_id}/payments', response_model=PaymentOut, status_code=201)
async def record_invoice_payment(
    invoice_id: int,
    payment_amount: Decimal = Form(...),
    payment_date: date | None = Form(default=None),
    payment_method: PaymentMethod = Form(default=PaymentMethod.BANK_TRANSFER),
    bank_name: str | None = Form(default=None),
    bank_account_number: str | None = Form(default=None),
    bank_account_name: str | None = Form(default=None),
    transaction_reference: str | None = Form(default=None),
    notes: str | None = Form(default=None),
    payment_proof: UploadFile | None = File(default=None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    proof = None
    if payment_proof is not None and payment_proof.filename:
        proof = PaymentProof(filename=payment_proof.filename, content=await payment_proof.read())
    payment = invoice_payment_service.record_payment(
        db,
        actor=principal,
        invoice_id=invoice_id,
        payment_amount=payment_amount,
        payment_date=payment_date,
        payment_method=payment_method,
        bank_name=bank_name,
        bank_account_number=bank_account_number,
        bank_account_name=bank_account_name,
        transaction_reference=transaction_reference,
        notes=notes,
        proof=proof,
    )
    db.commit()
    return payment


@router.get('/{invoice_id}/payments', response_model=PaymentHistoryOut)
def payment_history(
    invoice_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    history = invoice_payment_service.get_payment_history(db, invoice_id=invoice_id)
    return PaymentHistoryOut(
        invoice_id=history.invoice.id,
        internal_number=history.invoice.internal_number,
        total_amount=history.total_amount,
        paid_amount=history.paid_amount,
        remaining_amount=history.remaining_amount,
        payment_count=history.payment_count,
        payments=[PaymentOut.model_validate(payment) for payment in history.payments],
    )
