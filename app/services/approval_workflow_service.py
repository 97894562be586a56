from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext
from app.clock import Clock, system_clock
from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models import (
    Approval,
    ApprovalStatus,
    ApprovalWorkflow,
    ApprovalWorkflowStep,
    ApproverType,
    Department,
    DocumentKind,
    PurchaseOrder,
    PurchaseRequest,
    SupplierInvoice,
)
from app.services.notification_service import Notification, NotificationEvent, queue_notification

logger = logging.getLogger(__name__)

APPROVABLE_MODELS = {
    DocumentKind.PURCHASE_REQUEST: PurchaseRequest,
    DocumentKind.PURCHASE_ORDER: PurchaseOrder,
    DocumentKind.SUPPLIER_INVOICE: SupplierInvoice,
}

_OPERATORS = {'>', '>=', '<', '<=', '=', '==', '!=', 'IN', 'NOT_IN'}


@dataclass(frozen=True)
class _ResolvedStep:
    step: ApprovalWorkflowStep
    assigned_to_user_id: int | None
    assigned_to_role: str | None


def _as_number(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def _as_list(value) -> list:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    text = str(value or '').strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        return [part.strip() for part in text.split(',') if part.strip()]
    return parsed if isinstance(parsed, list) else [parsed]


def _equals(actual, expected) -> bool:
    left, right = _as_number(actual), _as_number(expected)
    if left is not None and right is not None:
        return left == right
    return str(getattr(actual, 'value', actual)) == str(getattr(expected, 'value', expected))


def evaluate_condition(actual, operator: str | None, expected) -> bool:
    """Evaluate one step condition. Unknown operators always apply the step."""
    op = (operator or '').strip().upper()
    if op not in _OPERATORS:
        return True
    if op in {'=', '=='}:
        return _equals(actual, expected)
    if op == '!=':
        return not _equals(actual, expected)
    if op in {'IN', 'NOT_IN'}:
        found = any(_equals(actual, candidate) for candidate in _as_list(expected))
        return found if op == 'IN' else not found

    left, right = _as_number(actual), _as_number(expected)
    if left is None or right is None:
        return False
    if op == '>':
        return left > right
    if op == '>=':
        return left >= right
    if op == '<':
        return left < right
    return left <= right


def step_applies(step: ApprovalWorkflowStep, document) -> bool:
    if not step.condition_field:
        return True
    actual = getattr(document, step.condition_field, None)
    return evaluate_condition(actual, step.condition_operator, step.condition_value)


def _resolve_department_head(db: Session, document) -> int | None:
    department_id = getattr(document, 'department_id', None)
    if department_id is None:
        return None
    department = db.get(Department, department_id)
    return department.head_user_id if department else None


def _resolve_step(db: Session, step: ApprovalWorkflowStep, document) -> _ResolvedStep:
    if step.approver_type == ApproverType.ROLE:
        role = (step.approver_value or '').strip().lower()
        if role:
            return _ResolvedStep(step=step, assigned_to_user_id=None, assigned_to_role=role)
    elif step.approver_type == ApproverType.USER:
        user_id = _as_number(step.approver_value)
        if user_id is not None:
            return _ResolvedStep(step=step, assigned_to_user_id=int(user_id), assigned_to_role=None)
    elif step.approver_type == ApproverType.DEPARTMENT_HEAD:
        head_user_id = _resolve_department_head(db, document)
        if head_user_id is not None:
            return _ResolvedStep(step=step, assigned_to_user_id=head_user_id, assigned_to_role=None)
    raise ValidationError.single('workflow', f"Unable to resolve an approver for step '{step.step_code}'.")


def _document_filter(document):
    return (Approval.approvable_type == document.document_kind, Approval.approvable_id == document.id)


def initiate_workflow(
    db: Session,
    *,
    document,
    workflow_code: str,
    clock: Clock = system_clock,
) -> list[Approval]:
    workflow = db.execute(
        select(ApprovalWorkflow).where(ApprovalWorkflow.code == workflow_code, ApprovalWorkflow.is_active.is_(True))
    ).scalar_one_or_none()
    if not workflow:
        raise ValidationError.single('workflow', f"Approval workflow '{workflow_code}' not found or inactive.")

    steps = db.execute(
        select(ApprovalWorkflowStep)
        .where(ApprovalWorkflowStep.approval_workflow_id == workflow.id)
        .order_by(ApprovalWorkflowStep.step_order.asc(), ApprovalWorkflowStep.id.asc())
    ).scalars().all()

    # Resolve everything first so an unresolvable approver leaves no partial rows.
    resolved = [_resolve_step(db, step, document) for step in steps if step_applies(step, document)]

    now = clock.now()
    approvals = []
    for entry in resolved:
        approval = Approval(
            approval_workflow_id=workflow.id,
            approval_workflow_step_id=entry.step.id,
            approvable_type=document.document_kind,
            approvable_id=document.id,
            status=ApprovalStatus.PENDING,
            assigned_to_user_id=entry.assigned_to_user_id,
            assigned_to_role=entry.assigned_to_role,
            created_at=now,
        )
        db.add(approval)
        approvals.append(approval)
    db.flush()

    for approval, entry in zip(approvals, resolved):
        queue_notification(
            db,
            Notification(
                event=NotificationEvent.APPROVAL_REQUIRED,
                message=f'{entry.step.step_name} approval required for {document.document_number}',
                document_kind=document.document_kind.value,
                document_id=document.id,
                document_number=document.document_number,
                recipient_user_id=approval.assigned_to_user_id,
                recipient_role=approval.assigned_to_role,
                data={'approval_id': approval.id, 'step_code': entry.step.step_code},
            ),
        )
    logger.info(
        'Initiated workflow %s for %s with %s approval(s)', workflow_code, document.document_number, len(approvals)
    )
    return approvals


def list_approvals(db: Session, *, document) -> list[Approval]:
    return db.execute(select(Approval).where(*_document_filter(document)).order_by(Approval.id.asc())).scalars().all()


def get_next_pending_approval(db: Session, *, document) -> Approval | None:
    return db.execute(
        select(Approval)
        .where(*_document_filter(document), Approval.status == ApprovalStatus.PENDING)
        .order_by(Approval.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_approval(db: Session, approval_id: int, *, for_update: bool = False) -> Approval:
    stmt = select(Approval).where(Approval.id == approval_id)
    if for_update:
        stmt = stmt.with_for_update()
    approval = db.execute(stmt).scalar_one_or_none()
    if not approval:
        raise NotFoundError('Approval not found')
    return approval


def load_approvable(db: Session, approval: Approval):
    model = APPROVABLE_MODELS[approval.approvable_type]
    document = db.get(model, approval.approvable_id)
    if not document:
        raise NotFoundError('Approvable document not found')
    return document


def can_approve(actor: AuthorizationContext, approval: Approval) -> bool:
    if approval.status != ApprovalStatus.PENDING:
        return False
    if approval.assigned_to_user_id is not None:
        return int(actor.id) == int(approval.assigned_to_user_id)
    if approval.assigned_to_role:
        return actor.has_role(approval.assigned_to_role)
    return False


def _queue_outcome(db: Session, *, document, approval: Approval, event: NotificationEvent, message: str) -> None:
    creator_id = getattr(document, 'creator_user_id', None)
    if creator_id is None:
        return
    queue_notification(
        db,
        Notification(
            event=event,
            message=message,
            document_kind=document.document_kind.value,
            document_id=document.id,
            document_number=document.document_number,
            recipient_user_id=creator_id,
            data={'approval_id': approval.id},
        ),
    )


def approve(
    db: Session,
    *,
    actor: AuthorizationContext,
    approval: Approval,
    comments: str | None = None,
    clock: Clock = system_clock,
) -> Approval:
    if approval.status != ApprovalStatus.PENDING:
        raise ValidationError.single('approval', 'This approval is not in pending state.')
    if not can_approve(actor, approval):
        raise ForbiddenError('You are not authorized to approve this step.')

    now = clock.now()
    approval.status = ApprovalStatus.APPROVED
    approval.approved_by_user_id = actor.id
    approval.approved_at = now
    approval.comments = comments
    approval.updated_at = now
    db.flush()

    document = load_approvable(db, approval)
    final = is_workflow_complete(db, document=document)
    _queue_outcome(
        db,
        document=document,
        approval=approval,
        event=NotificationEvent.DOCUMENT_APPROVED,
        message=f'{document.document_number} was {"fully approved" if final else "approved at one step"}',
    )
    return approval


def reject(
    db: Session,
    *,
    actor: AuthorizationContext,
    approval: Approval,
    reason: str,
    clock: Clock = system_clock,
) -> Approval:
    if approval.status != ApprovalStatus.PENDING:
        raise ValidationError.single('approval', 'This approval is not in pending state.')
    if not can_approve(actor, approval):
        raise ForbiddenError('You are not authorized to reject this step.')

    now = clock.now()
    approval.status = ApprovalStatus.REJECTED
    approval.rejected_by_user_id = actor.id
    approval.rejected_at = now
    approval.rejection_reason = reason
    approval.updated_at = now
    db.flush()

    document = load_approvable(db, approval)
    cancel_remaining_approvals(db, document=document, clock=clock)
    _queue_outcome(
        db,
        document=document,
        approval=approval,
        event=NotificationEvent.DOCUMENT_REJECTED,
        message=f'{document.document_number} was rejected: {reason}',
    )
    return approval


def is_workflow_complete(db: Session, *, document) -> bool:
    pending = db.execute(
        select(func.count(Approval.id)).where(*_document_filter(document), Approval.status == ApprovalStatus.PENDING)
    ).scalar_one()
    return pending == 0


def is_workflow_rejected(db: Session, *, document) -> bool:
    rejected = db.execute(
        select(Approval.id).where(*_document_filter(document), Approval.status == ApprovalStatus.REJECTED).limit(1)
    ).first()
    return rejected is not None


def _set_pending_status(db: Session, *, document, status: ApprovalStatus, clock: Clock) -> int:
    result = db.execute(
        update(Approval)
        .where(*_document_filter(document), Approval.status == ApprovalStatus.PENDING)
        .values(status=status, updated_at=clock.now())
        .execution_options(synchronize_session='fetch')
    )
    return result.rowcount or 0


def cancel_remaining_approvals(db: Session, *, document, clock: Clock = system_clock) -> int:
    return _set_pending_status(db, document=document, status=ApprovalStatus.CANCELLED, clock=clock)


def skip_remaining_approvals(db: Session, *, document, clock: Clock = system_clock) -> int:
    return _set_pending_status(db, document=document, status=ApprovalStatus.SKIPPED, clock=clock)


def mark_role_step_approved(
    db: Session,
    *,
    document,
    role: str,
    actor: AuthorizationContext,
    clock: Clock = system_clock,
) -> Approval | None:
    """Mark the pending approval assigned to ``role`` approved, if there is one."""
    approval = db.execute(
        select(Approval)
        .where(
            *_document_filter(document),
            Approval.status == ApprovalStatus.PENDING,
            Approval.assigned_to_role == role,
        )
        .order_by(Approval.id.asc())
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()
    if not approval:
        return None
    now = clock.now()
    approval.status = ApprovalStatus.APPROVED
    approval.approved_by_user_id = actor.id
    approval.approved_at = now
    approval.updated_at = now
    db.flush()
    return approval


def list_overdue_pending_approvals(db: Session, *, cutoff: datetime) -> list[Approval]:
    return db.execute(
        select(Approval)
        .where(Approval.status == ApprovalStatus.PENDING, Approval.created_at <= cutoff)
        .order_by(Approval.created_at.asc(), Approval.id.asc())
    ).scalars().all()


def list_pending_for_actor(db: Session, *, actor: AuthorizationContext, limit: int = 100) -> list[Approval]:
    pending = db.execute(
        select(Approval).where(Approval.status == ApprovalStatus.PENDING).order_by(Approval.id.asc())
    ).scalars().all()
    return [approval for approval in pending if can_approve(actor, approval)][:limit]
