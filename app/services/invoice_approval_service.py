from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.auth import AuthorizationContext, Role
from app.clock import Clock, system_clock
from app.errors import ForbiddenError, ValidationError
from app.models import InvoiceApprovalStatus, InvoiceStatus, SupplierInvoice
from app.services import invoice_matching_service, supplier_invoice_service
from app.services.notification_service import Notification, NotificationEvent, queue_notification

logger = logging.getLogger(__name__)

APPROVE_PERMISSION = 'invoices.approve'
REQUIRED_ROLES = (Role.FINANCE, Role.DEPT_HEAD)
APPROVABLE_STATUSES = {InvoiceStatus.VARIANCE}


def can_approve_invoice(actor: AuthorizationContext) -> bool:
    return actor.has_permission(APPROVE_PERMISSION) and all(actor.has_role(role) for role in REQUIRED_ROLES)


def _load_for_decision(db: Session, *, actor: AuthorizationContext, invoice_id: int, verb: str) -> SupplierInvoice:
    if not can_approve_invoice(actor):
        raise ForbiddenError(f'You do not have permission to {verb} invoices.')
    invoice = supplier_invoice_service.get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status not in APPROVABLE_STATUSES:
        raise ValidationError.single(
            'status', f'Only invoices with VARIANCE status can be decided. Current status: {invoice.status.value}'
        )
    return invoice


def _notify_creator(db: Session, *, invoice: SupplierInvoice, event: NotificationEvent, message: str) -> None:
    queue_notification(
        db,
        Notification(
            event=event,
            message=message,
            document_kind=invoice.document_kind.value,
            document_id=invoice.id,
            document_number=invoice.internal_number,
            recipient_user_id=invoice.created_by_user_id,
        ),
    )


def approve(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    notes: str | None = None,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    invoice = _load_for_decision(db, actor=actor, invoice_id=invoice_id, verb='approve')
    now = clock.now()
    invoice.status = InvoiceStatus.APPROVED
    invoice.approval_status = InvoiceApprovalStatus.APPROVED
    invoice.approved_by_user_id = actor.id
    invoice.approved_at = now
    invoice.approval_notes = notes
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = now
    _notify_creator(
        db,
        invoice=invoice,
        event=NotificationEvent.DOCUMENT_APPROVED,
        message=f'Invoice {invoice.internal_number} was approved for payment.',
    )
    db.flush()
    logger.info('Invoice %s approved by user %s', invoice.internal_number, actor.id)
    return invoice


def reject(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    reason: str,
    clock: Clock = system_clock,
) -> SupplierInvoice:
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError.single('reason', 'Rejection reason is required.')
    invoice = _load_for_decision(db, actor=actor, invoice_id=invoice_id, verb='reject')
    now = clock.now()
    invoice.status = InvoiceStatus.REJECTED
    invoice.approval_status = InvoiceApprovalStatus.REJECTED
    invoice.approved_by_user_id = actor.id
    invoice.approved_at = now
    invoice.approval_notes = reason
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = now

    latest = invoice_matching_service.get_latest_result(db, invoice_id=invoice.id)
    if latest:
        latest.rejection_reason = reason
    _notify_creator(
        db,
        invoice=invoice,
        event=NotificationEvent.DOCUMENT_REJECTED,
        message=f'Invoice {invoice.internal_number} was rejected: {reason}',
    )
    db.flush()
    logger.info('Invoice %s rejected by user %s', invoice.internal_number, actor.id)
    return invoice
