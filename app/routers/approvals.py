from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.errors import ValidationError
from app.models import DocumentKind
from app.schemas import ApprovalOut, ApprovalRejectBody, CommentsBody
from app.services import approval_workflow_service, purchase_order_service, purchase_request_service

router = APIRouter(prefix='/approvals', tags=['approvals'])


def _require_current_step(db: Session, approval) -> None:
    document = approval_workflow_service.load_approvable(db, approval)
    current = approval_workflow_service.get_next_pending_approval(db, document=document)
    if current is None or current.id != approval.id:
        raise ValidationError.single('approval', 'This approval is not the current step of its document.')


@router.get('', response_model=list[ApprovalOut])
def my_pending_approvals(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return approval_workflow_service.list_pending_for_actor(db, actor=principal)


@router.get('/{approval_id}', response_model=ApprovalOut)
def get_approval(
    approval_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return approval_workflow_service.get_approval(db, approval_id)


@router.post('/{approval_id}/approve', response_model=ApprovalOut)
def approve_step(
    approval_id: int,
    body: CommentsBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    approval = approval_workflow_service.get_approval(db, approval_id)
    comments = body.comments if body else None
    # Document services also move the document status once the chain completes.
    if approval.approvable_type == DocumentKind.PURCHASE_REQUEST:
        _require_current_step(db, approval)
        purchase_request_service.approve(
            db, actor=principal, purchase_request_id=approval.approvable_id, comments=comments
        )
    elif approval.approvable_type == DocumentKind.PURCHASE_ORDER:
        _require_current_step(db, approval)
        purchase_order_service.approve(db, actor=principal, purchase_order_id=approval.approvable_id)
    else:
        approval_workflow_service.approve(db, actor=principal, approval=approval, comments=comments)
    db.commit()
    db.refresh(approval)
    return approval


@router.post('/{approval_id}/reject', response_model=ApprovalOut)
def reject_step(
    approval_id: int,
    body: ApprovalRejectBody,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    approval = approval_workflow_service.get_approval(db, approval_id)
    if approval.approvable_type == DocumentKind.PURCHASE_REQUEST:
        _require_current_step(db, approval)
        purchase_request_service.reject(
            db, actor=principal, purchase_request_id=approval.approvable_id, reason=body.reason
        )
    elif approval.approvable_type == DocumentKind.PURCHASE_ORDER:
        raise ValidationError.single('approval', 'Purchase orders are rejected by cancelling the PO.')
    else:
        approval_workflow_service.reject(db, actor=principal, approval=approval, reason=body.reason)
    db.commit()
    db.refresh(approval)
    return approval
