from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext, Role
from app.clock import Clock, system_clock
from app.config import settings
from app.errors import DomainError, ForbiddenError, NotFoundError, ValidationError
from app.models import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderPurchaseRequest,
    PurchaseOrderStatus,
    PurchaseOrderStatusHistory,
    PurchaseRequest,
    PurchaseRequestStatus,
    PurchaseRequestStatusHistory,
)
from app.services import approval_workflow_service, master_data_service
from app.services.decimal_utils import quantize_money, to_decimal
from app.services.numbering_service import PURCHASE_ORDER_PREFIX, generate_number
from app.services.purchase_request_service import list_lines as list_purchase_request_lines

logger = logging.getLogger(__name__)

WORKFLOW_CODE = 'PO_STANDARD'
APPROVAL_STEPS = ('finance', 'gm', 'director')
_MANAGE_ROLES = (Role.PROCUREMENT, Role.SUPER_ADMIN)
_STEP_ROLES = {
    'finance': (Role.FINANCE, Role.SUPER_ADMIN),
    'gm': (Role.GM, Role.SUPER_ADMIN),
    'director': (Role.DIRECTOR, Role.SUPER_ADMIN),
}


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    item_id: int
    quantity: Decimal
    uom_id: int | None = None
    unit_price: Decimal = Decimal('0')
    remarks: str | None = None


@dataclass(frozen=True)
class PurchaseOrderPriceUpdate:
    id: int
    unit_price: Decimal
    remarks: str | None = None


@dataclass(frozen=True)
class PurchaseOrderTotals:
    subtotal_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def completed_approval_steps(history: Iterable) -> set[str]:
    """Steps approved since the most recent submit, read from status history rows."""
    done: set[str] = set()
    for row in history:
        if row.action == 'submit':
            done = set()
        elif row.action == 'approve':
            step = (row.meta or {}).get('step')
            if step:
                done.add(str(step))
    return done


def next_approval_step(completed: set[str]) -> str:
    for step in APPROVAL_STEPS:
        if step not in completed:
            return step
    return APPROVAL_STEPS[-1]


def compute_totals(lines: Iterable, tax_rate) -> PurchaseOrderTotals:
    subtotal = quantize_money(
        sum((to_decimal(line.quantity) * to_decimal(line.unit_price) for line in lines), Decimal('0'))
    )
    tax = quantize_money(subtotal * to_decimal(tax_rate))
    return PurchaseOrderTotals(subtotal_amount=subtotal, tax_amount=tax, total_amount=subtotal + tax)


def merge_purchase_request_lines(pr_lines: Iterable) -> list[PurchaseOrderLineInput]:
    merged: dict[tuple[int, int | None], Decimal] = {}
    for line in pr_lines:
        key = (line.item_id, line.uom_id)
        merged[key] = merged.get(key, Decimal('0')) + to_decimal(line.quantity)
    return [
        PurchaseOrderLineInput(item_id=item_id, uom_id=uom_id, quantity=qty, unit_price=Decimal('0'))
        for (item_id, uom_id), qty in merged.items()
    ]


def _require_manager(actor: AuthorizationContext, verb: str) -> None:
    if not actor.has_any_role(_MANAGE_ROLES):
        raise ForbiddenError(f'Only procurement can {verb} PO.')


def _record_history(
    db: Session,
    *,
    po: PurchaseOrder,
    from_status: PurchaseOrderStatus | None,
    action: str,
    actor_id: int | None,
    clock: Clock,
    meta: dict | None = None,
) -> None:
    db.add(
        PurchaseOrderStatusHistory(
            purchase_order_id=po.id,
            from_status=from_status.value if from_status else None,
            to_status=po.status.value,
            action=action,
            actor_user_id=actor_id,
            meta=meta or {},
            created_at=clock.now(),
        )
    )


def _normalize_tax_rate(value) -> Decimal:
    rate = settings.default_tax_rate if value is None or value == '' else to_decimal(value, default=Decimal('-1'))
    if rate < 0 or rate > 1:
        raise ValidationError.single('tax_rate', 'Tax rate must be between 0 and 1.')
    return rate


def _tax_snapshot(rate: Decimal) -> dict:
    return {'type': 'PPN', 'rate': str(rate), 'label': 'PPN'}


def get_purchase_order(db: Session, purchase_order_id: int, *, for_update: bool = False) -> PurchaseOrder:
    stmt = select(PurchaseOrder).where(PurchaseOrder.id == purchase_order_id)
    if for_update:
        stmt = stmt.with_for_update()
    po = db.execute(stmt).scalar_one_or_none()
    if not po:
        raise NotFoundError('Purchase order not found')
    return po


def list_lines(db: Session, *, purchase_order_id: int) -> list[PurchaseOrderLine]:
    return db.execute(
        select(PurchaseOrderLine)
        .where(PurchaseOrderLine.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderLine.line_no.asc())
    ).scalars().all()


def list_history(db: Session, *, purchase_order_id: int) -> list[PurchaseOrderStatusHistory]:
    return db.execute(
        select(PurchaseOrderStatusHistory)
        .where(PurchaseOrderStatusHistory.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderStatusHistory.id.asc())
    ).scalars().all()


def list_purchase_request_ids(db: Session, *, purchase_order_id: int) -> list[int]:
    return db.execute(
        select(PurchaseOrderPurchaseRequest.purchase_request_id)
        .where(PurchaseOrderPurchaseRequest.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderPurchaseRequest.purchase_request_id.asc())
    ).scalars().all()


def _recompute_totals(db: Session, po: PurchaseOrder) -> None:
    totals = compute_totals(list_lines(db, purchase_order_id=po.id), po.tax_rate)
    po.subtotal_amount = totals.subtotal_amount
    po.tax_amount = totals.tax_amount
    po.total_amount = totals.total_amount


def _write_lines(db: Session, *, po: PurchaseOrder, lines: list[PurchaseOrderLineInput]) -> None:
    errors: dict[str, str] = {}
    for index, line in enumerate(lines):
        if to_decimal(line.quantity) <= 0:
            errors[f'lines.{index}.quantity'] = 'Quantity must be greater than zero.'
        if to_decimal(line.unit_price) < 0:
            errors[f'lines.{index}.unit_price'] = 'Unit price cannot be negative.'
    if errors:
        raise ValidationError(errors)

    db.execute(delete(PurchaseOrderLine).where(PurchaseOrderLine.purchase_order_id == po.id))
    for line_no, line in enumerate(lines, start=1):
        item = master_data_service.get_item(db, line.item_id)
        uom = master_data_service.get_uom(db, line.uom_id) if line.uom_id is not None else None
        db.add(
            PurchaseOrderLine(
                purchase_order_id=po.id,
                line_no=line_no,
                item_id=item.id,
                uom_id=uom.id if uom else None,
                quantity=to_decimal(line.quantity),
                unit_price=to_decimal(line.unit_price),
                item_snapshot=master_data_service.item_snapshot(item),
                uom_snapshot=master_data_service.uom_snapshot(uom),
                remarks=line.remarks,
            )
        )
    db.flush()


def create_draft_from_purchase_requests(
    db: Session,
    *,
    actor: AuthorizationContext,
    supplier_id: int,
    purchase_request_ids: list[int],
    currency_code: str | None = None,
    tax_rate=None,
    lines: list[PurchaseOrderLineInput] | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseOrder:
    _require_manager(actor, 'create')
    supplier = master_data_service.get_supplier(db, supplier_id)

    ids = list(dict.fromkeys(int(pr_id) for pr_id in purchase_request_ids or []))
    if not ids:
        raise ValidationError.single('purchase_request_ids', 'At least one Purchase Request is required.')
    prs = db.execute(
        select(PurchaseRequest).where(PurchaseRequest.id.in_(ids)).order_by(PurchaseRequest.id.asc()).with_for_update()
    ).scalars().all()
    if len(prs) != len(ids):
        raise ValidationError.single('purchase_request_ids', 'One or more Purchase Requests were not found.')
    for pr in prs:
        if pr.status != PurchaseRequestStatus.APPROVED:
            raise ValidationError.single('purchase_request_ids', f'PR {pr.pr_number} must be APPROVED.')

    currency = (currency_code or '').strip().upper() or settings.default_currency
    rate = _normalize_tax_rate(tax_rate)

    now = clock.now()
    po = PurchaseOrder(
        po_number=generate_number(db, prefix=PURCHASE_ORDER_PREFIX, clock=clock),
        supplier_id=supplier.id,
        status=PurchaseOrderStatus.DRAFT,
        currency_code=currency,
        tax_rate=rate,
        supplier_snapshot=master_data_service.supplier_snapshot(supplier),
        tax_snapshot=_tax_snapshot(rate),
        remarks=remarks,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    db.add(po)
    db.flush()

    for pr in prs:
        db.add(PurchaseOrderPurchaseRequest(purchase_order_id=po.id, purchase_request_id=pr.id))

    if not lines:
        pr_lines = [line for pr in prs for line in list_purchase_request_lines(db, purchase_request_id=pr.id)]
        lines = merge_purchase_request_lines(pr_lines)
    _write_lines(db, po=po, lines=lines)
    _recompute_totals(db, po)

    for pr in prs:
        pr_from = pr.status
        pr.status = PurchaseRequestStatus.CONVERTED_TO_PO
        pr.converted_to_po_at = now
        pr.updated_at = now
        db.add(
            PurchaseRequestStatusHistory(
                purchase_request_id=pr.id,
                from_status=pr_from.value,
                to_status=pr.status.value,
                action='convert_to_po',
                actor_user_id=actor.id,
                meta={'purchase_order_id': po.id, 'po_number': po.po_number},
                created_at=now,
            )
        )
        _record_history(
            db,
            po=po,
            from_status=None,
            action='create',
            actor_id=actor.id,
            clock=clock,
            meta={'purchase_request_id': pr.id, 'pr_number': pr.pr_number, 'from_status': pr_from.value},
        )
    db.flush()
    logger.info('Created purchase order %s from %s purchase request(s)', po.po_number, len(prs))
    return po


def update_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    supplier_id: int | None = None,
    currency_code: str | None = None,
    tax_rate=None,
    lines: list[PurchaseOrderPriceUpdate] | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseOrder:
    _require_manager(actor, 'update draft')
    po = get_purchase_order(db, purchase_order_id, for_update=True)
    if po.status != PurchaseOrderStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT PO can be updated.')

    fields = []
    if supplier_id is not None:
        supplier = master_data_service.get_supplier(db, supplier_id)
        po.supplier_id = supplier.id
        po.supplier_snapshot = master_data_service.supplier_snapshot(supplier)
        fields.append('supplier_id')
    if currency_code is not None:
        currency = currency_code.strip().upper()
        if not currency:
            raise ValidationError.single('currency_code', 'Currency code is required.')
        po.currency_code = currency
        fields.append('currency_code')
    if tax_rate is not None:
        rate = _normalize_tax_rate(tax_rate)
        po.tax_rate = rate
        po.tax_snapshot = _tax_snapshot(rate)
        fields.append('tax_rate')
    if remarks is not None:
        po.remarks = remarks
        fields.append('remarks')

    if lines:
        existing = {line.id: line for line in list_lines(db, purchase_order_id=po.id)}
        for index, update in enumerate(lines):
            model = existing.get(update.id)
            if not model:
                raise ValidationError.single(f'lines.{index}.id', 'Invalid line id for this purchase order.')
            price = to_decimal(update.unit_price, default=Decimal('-1'))
            if price < 0:
                raise ValidationError.single(f'lines.{index}.unit_price', 'Unit price cannot be negative.')
            model.unit_price = price
            if update.remarks is not None:
                model.remarks = update.remarks
        fields.append('lines.unit_price')
        db.flush()

    _recompute_totals(db, po)
    po.updated_at = clock.now()
    _record_history(
        db,
        po=po,
        from_status=po.status,
        action='update_draft',
        actor_id=actor.id,
        clock=clock,
        meta={'fields': fields},
    )
    db.flush()
    return po


def submit(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    clock: Clock = system_clock,
) -> PurchaseOrder:
    _require_manager(actor, 'submit')
    po = get_purchase_order(db, purchase_order_id, for_update=True)
    if po.status != PurchaseOrderStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT PO can be submitted.')

    from_status = po.status
    now = clock.now()
    po.status = PurchaseOrderStatus.SUBMITTED
    po.submitted_at = now
    po.submitted_by_user_id = actor.id
    po.updated_at = now
    _record_history(db, po=po, from_status=from_status, action='submit', actor_id=actor.id, clock=clock)
    db.flush()

    try:
        approval_workflow_service.initiate_workflow(db, document=po, workflow_code=WORKFLOW_CODE, clock=clock)
    except DomainError as exc:
        logger.warning('Failed to initiate PO approval workflow for %s: %s', po.po_number, exc)
    return po


def approve(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    clock: Clock = system_clock,
) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id, for_update=True)
    if po.status not in {PurchaseOrderStatus.SUBMITTED, PurchaseOrderStatus.IN_APPROVAL}:
        raise ValidationError.single('status', 'PO is not in an approvable state.')

    step = next_approval_step(completed_approval_steps(list_history(db, purchase_order_id=po.id)))
    if not actor.has_any_role(_STEP_ROLES[step]):
        raise ForbiddenError(f'Only {step} can approve this step.')

    from_status = po.status
    if step == 'finance':
        if po.status != PurchaseOrderStatus.SUBMITTED:
            raise ValidationError.single('status', 'Finance step requires SUBMITTED PO.')
        po.status = PurchaseOrderStatus.IN_APPROVAL
    elif step == 'gm':
        if po.status != PurchaseOrderStatus.IN_APPROVAL:
            raise ValidationError.single('status', 'GM step requires IN_APPROVAL PO.')
    else:
        if po.status != PurchaseOrderStatus.IN_APPROVAL:
            raise ValidationError.single('status', 'Director step requires IN_APPROVAL PO.')
        now = clock.now()
        po.status = PurchaseOrderStatus.APPROVED
        po.approved_at = now
        po.approved_by_user_id = actor.id

    po.updated_at = clock.now()
    _record_history(
        db,
        po=po,
        from_status=from_status,
        action='approve',
        actor_id=actor.id,
        clock=clock,
        meta={'step': step},
    )
    approval_workflow_service.mark_role_step_approved(db, document=po, role=step, actor=actor, clock=clock)
    if po.status == PurchaseOrderStatus.APPROVED:
        approval_workflow_service.skip_remaining_approvals(db, document=po, clock=clock)
        logger.info('Purchase order %s approved', po.po_number)
    db.flush()
    return po


def _simple_transition(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    expected: PurchaseOrderStatus,
    target: PurchaseOrderStatus,
    action: str,
    stamp: str,
    clock: Clock,
) -> PurchaseOrder:
    _require_manager(actor, action)
    po = get_purchase_order(db, purchase_order_id, for_update=True)
    if po.status != expected:
        raise ValidationError.single('status', f'Only {expected.value} PO can be {stamp}.')
    from_status = po.status
    now = clock.now()
    po.status = target
    setattr(po, f'{stamp}_at', now)
    setattr(po, f'{stamp}_by_user_id', actor.id)
    po.updated_at = now
    _record_history(db, po=po, from_status=from_status, action=action, actor_id=actor.id, clock=clock)
    db.flush()
    return po


def send(db: Session, *, actor: AuthorizationContext, purchase_order_id: int, clock: Clock = system_clock) -> PurchaseOrder:
    return _simple_transition(
        db,
        actor=actor,
        purchase_order_id=purchase_order_id,
        expected=PurchaseOrderStatus.APPROVED,
        target=PurchaseOrderStatus.SENT,
        action='send',
        stamp='sent',
        clock=clock,
    )


def close(db: Session, *, actor: AuthorizationContext, purchase_order_id: int, clock: Clock = system_clock) -> PurchaseOrder:
    return _simple_transition(
        db,
        actor=actor,
        purchase_order_id=purchase_order_id,
        expected=PurchaseOrderStatus.SENT,
        target=PurchaseOrderStatus.CLOSED,
        action='close',
        stamp='closed',
        clock=clock,
    )


def cancel(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseOrder:
    _require_manager(actor, 'cancel')
    po = get_purchase_order(db, purchase_order_id, for_update=True)
    if po.status in {PurchaseOrderStatus.CLOSED, PurchaseOrderStatus.CANCELLED}:
        raise ValidationError.single('status', 'PO is already closed or cancelled.')

    from_status = po.status
    now = clock.now()
    po.status = PurchaseOrderStatus.CANCELLED
    po.cancelled_at = now
    po.cancelled_by_user_id = actor.id
    po.cancel_reason = reason
    po.updated_at = now
    _record_history(
        db,
        po=po,
        from_status=from_status,
        action='cancel',
        actor_id=actor.id,
        clock=clock,
        meta={'reason': reason},
    )
    approval_workflow_service.cancel_remaining_approvals(db, document=po, clock=clock)
    db.flush()
    logger.info('Purchase order %s cancelled', po.po_number)
    return po


def reopen(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_order_id: int,
    reason: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseOrder:
    _require_manager(actor, 'reopen')
    po = get_purchase_order(db, purchase_order_id, for_update=True)
    if po.status != PurchaseOrderStatus.CANCELLED:
        raise ValidationError.single('status', 'Only CANCELLED PO can be reopened to DRAFT.')

    from_status = po.status
    po.status = PurchaseOrderStatus.DRAFT
    po.updated_at = clock.now()
    _record_history(
        db,
        po=po,
        from_status=from_status,
        action='reopen',
        actor_id=actor.id,
        clock=clock,
        meta={
            'reason': reason,
            'preserved_cancel_reason': po.cancel_reason,
            'preserved_cancelled_at': po.cancelled_at.isoformat() if po.cancelled_at else None,
        },
    )
    db.flush()
    return po
