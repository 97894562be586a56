from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext
from app.clock import Clock, system_clock
from app.errors import DomainError, ForbiddenError, NotFoundError, ValidationError
from app.models import (
    Item,
    PurchaseRequest,
    PurchaseRequestLine,
    PurchaseRequestStatus,
    PurchaseRequestStatusHistory,
    Uom,
)
from app.services import approval_workflow_service
from app.services.decimal_utils import to_decimal
from app.services.numbering_service import PURCHASE_REQUEST_PREFIX, generate_number

logger = logging.getLogger(__name__)

WORKFLOW_CODE = 'PR_STANDARD'
_PAST_TENSE = {'approve': 'approved', 'reject': 'rejected'}


@dataclass(frozen=True)
class PurchaseRequestLineInput:
    item_id: int
    quantity: Decimal
    uom_id: int | None = None
    remarks: str | None = None


def _record_history(
    db: Session,
    *,
    pr: PurchaseRequest,
    from_status: PurchaseRequestStatus | None,
    action: str,
    actor_id: int | None,
    clock: Clock,
    meta: dict | None = None,
) -> None:
    db.add(
        PurchaseRequestStatusHistory(
            purchase_request_id=pr.id,
            from_status=from_status.value if from_status else None,
            to_status=pr.status.value,
            action=action,
            actor_user_id=actor_id,
            meta=meta or {},
            created_at=clock.now(),
        )
    )


def get_purchase_request(db: Session, purchase_request_id: int, *, for_update: bool = False) -> PurchaseRequest:
    stmt = select(PurchaseRequest).where(PurchaseRequest.id == purchase_request_id)
    if for_update:
        stmt = stmt.with_for_update()
    pr = db.execute(stmt).scalar_one_or_none()
    if not pr:
        raise NotFoundError('Purchase request not found')
    return pr


def list_lines(db: Session, *, purchase_request_id: int) -> list[PurchaseRequestLine]:
    return db.execute(
        select(PurchaseRequestLine)
        .where(PurchaseRequestLine.purchase_request_id == purchase_request_id)
        .order_by(PurchaseRequestLine.line_no.asc())
    ).scalars().all()


def list_history(db: Session, *, purchase_request_id: int) -> list[PurchaseRequestStatusHistory]:
    return db.execute(
        select(PurchaseRequestStatusHistory)
        .where(PurchaseRequestStatusHistory.purchase_request_id == purchase_request_id)
        .order_by(PurchaseRequestStatusHistory.id.asc())
    ).scalars().all()


def _validate_lines(db: Session, lines: list[PurchaseRequestLineInput]) -> None:
    if not lines:
        raise ValidationError.single('lines', 'At least one line is required.')
    errors: dict[str, str] = {}
    for index, line in enumerate(lines):
        if not db.get(Item, line.item_id):
            errors[f'lines.{index}.item_id'] = 'Item not found.'
        if line.uom_id is not None and not db.get(Uom, line.uom_id):
            errors[f'lines.{index}.uom_id'] = 'UOM not found.'
        if to_decimal(line.quantity) <= 0:
            errors[f'lines.{index}.quantity'] = 'Quantity must be greater than zero.'
    if errors:
        raise ValidationError(errors)


def _replace_lines(db: Session, *, pr: PurchaseRequest, lines: list[PurchaseRequestLineInput]) -> None:
    db.execute(delete(PurchaseRequestLine).where(PurchaseRequestLine.purchase_request_id == pr.id))
    for line_no, line in enumerate(lines, start=1):
        db.add(
            PurchaseRequestLine(
                purchase_request_id=pr.id,
                line_no=line_no,
                item_id=line.item_id,
                uom_id=line.uom_id,
                quantity=to_decimal(line.quantity),
                remarks=line.remarks,
            )
        )


def create_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    department_id: int,
    lines: list[PurchaseRequestLineInput],
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseRequest:
    if actor.department_id is None:
        raise ValidationError.single('department_id', 'User is not assigned to any department.')
    if int(department_id) != int(actor.department_id):
        raise ForbiddenError('Cannot create PR for another department.')
    _validate_lines(db, lines)

    now = clock.now()
    pr = PurchaseRequest(
        pr_number=generate_number(db, prefix=PURCHASE_REQUEST_PREFIX, clock=clock),
        requester_user_id=actor.id,
        department_id=department_id,
        status=PurchaseRequestStatus.DRAFT,
        remarks=remarks,
        created_at=now,
        updated_at=now,
    )
    db.add(pr)
    db.flush()
    _replace_lines(db, pr=pr, lines=lines)
    _record_history(db, pr=pr, from_status=None, action='create', actor_id=actor.id, clock=clock)
    db.flush()
    return pr


def update_draft(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_request_id: int,
    lines: list[PurchaseRequestLineInput] | None = None,
    remarks: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseRequest:
    pr = get_purchase_request(db, purchase_request_id, for_update=True)
    if pr.requester_user_id != actor.id:
        raise ForbiddenError('Only requester can update this PR.')
    if pr.status != PurchaseRequestStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT PR can be updated.')

    if remarks is not None:
        pr.remarks = remarks
    if lines is not None:
        _validate_lines(db, lines)
        _replace_lines(db, pr=pr, lines=lines)
    pr.updated_at = clock.now()
    _record_history(db, pr=pr, from_status=pr.status, action='update', actor_id=actor.id, clock=clock)
    db.flush()
    return pr


def submit(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_request_id: int,
    clock: Clock = system_clock,
) -> PurchaseRequest:
    pr = get_purchase_request(db, purchase_request_id, for_update=True)
    if pr.requester_user_id != actor.id:
        raise ForbiddenError('Only requester can submit this PR.')
    if pr.status != PurchaseRequestStatus.DRAFT:
        raise ValidationError.single('status', 'Only DRAFT PR can be submitted.')
    if not list_lines(db, purchase_request_id=pr.id):
        raise ValidationError.single('lines', 'PR must have at least one line item before submitting.')

    from_status = pr.status
    now = clock.now()
    pr.status = PurchaseRequestStatus.PENDING_APPROVAL
    pr.submitted_at = now
    pr.submitted_by_user_id = actor.id
    pr.updated_at = now
    _record_history(db, pr=pr, from_status=from_status, action='submit', actor_id=actor.id, clock=clock)
    db.flush()

    try:
        approval_workflow_service.initiate_workflow(db, document=pr, workflow_code=WORKFLOW_CODE, clock=clock)
    except DomainError as exc:
        logger.warning('Failed to initiate PR approval workflow for %s: %s', pr.pr_number, exc)
    return pr


def _pending_approval_for(db: Session, *, actor: AuthorizationContext, pr: PurchaseRequest, action: str):
    if pr.status != PurchaseRequestStatus.PENDING_APPROVAL:
        raise ValidationError.single('status', f'Only PENDING_APPROVAL PR can be {_PAST_TENSE[action]}.')
    if pr.requester_user_id == actor.id:
        raise ForbiddenError(f'Requester cannot {action} their own PR.')
    approval = approval_workflow_service.get_next_pending_approval(db, document=pr)
    if not approval:
        raise ValidationError.single('approval', 'No pending approval found for this PR.')
    if not approval_workflow_service.can_approve(actor, approval):
        raise ForbiddenError('You are not authorized to act on this PR at this stage.')
    return approval


def approve(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_request_id: int,
    comments: str | None = None,
    clock: Clock = system_clock,
) -> PurchaseRequest:
    pr = get_purchase_request(db, purchase_request_id, for_update=True)
    approval = _pending_approval_for(db, actor=actor, pr=pr, action='approve')

    from_status = pr.status
    approval_workflow_service.approve(db, actor=actor, approval=approval, comments=comments, clock=clock)
    if approval_workflow_service.is_workflow_complete(db, document=pr):
        now = clock.now()
        pr.status = PurchaseRequestStatus.APPROVED
        pr.approved_at = now
        pr.approved_by_user_id = actor.id
        pr.updated_at = now
        _record_history(
            db,
            pr=pr,
            from_status=from_status,
            action='approve',
            actor_id=actor.id,
            clock=clock,
            meta={'approval_id': approval.id},
        )
        logger.info('Purchase request %s approved', pr.pr_number)
    db.flush()
    return pr


def reject(
    db: Session,
    *,
    actor: AuthorizationContext,
    purchase_request_id: int,
    reason: str,
    clock: Clock = system_clock,
) -> PurchaseRequest:
    pr = get_purchase_request(db, purchase_request_id, for_update=True)
    approval = _pending_approval_for(db, actor=actor, pr=pr, action='reject')

    from_status = pr.status
    approval_workflow_service.reject(db, actor=actor, approval=approval, reason=reason, clock=clock)
    pr.status = PurchaseRequestStatus.REJECTED
    pr.updated_at = clock.now()
    _record_history(
        db,
        pr=pr,
        from_status=from_status,
        action='reject',
        actor_id=actor.id,
        clock=clock,
        meta={'reason': reason},
    )
    db.flush()
    logger.info('Purchase request %s rejected', pr.pr_number)
    return pr
