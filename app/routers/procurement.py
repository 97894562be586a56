from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.schemas import (
    CommentsBody,
    PurchaseOrderCreate,
    PurchaseOrderOut,
    PurchaseOrderUpdate,
    PurchaseRequestCreate,
    PurchaseRequestOut,
    PurchaseRequestUpdate,
    ReasonBody,
)
from app.services import purchase_order_service, purchase_request_service

router = APIRouter(tags=['procurement'])


@router.post('/purchase-requests', response_model=PurchaseRequestOut, status_code=201)
def create_purchase_request(
    body: PurchaseRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    pr = purchase_request_service.create_draft(
        db,
        actor=principal,
        department_id=body.department_id,
        lines=[line.to_input() for line in body.lines],
        remarks=body.remarks,
    )
    db.commit()
    return pr


@router.get('/purchase-requests/{pr_id}', response_model=PurchaseRequestOut)
def get_purchase_request(
    pr_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return purchase_request_service.get_purchase_request(db, pr_id)


@router.put('/purchase-requests/{pr_id}', response_model=PurchaseRequestOut)
def update_purchase_request(
    pr_id: int,
    body: PurchaseRequestUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    pr = purchase_request_service.update_draft(
        db,
        actor=principal,
        purchase_request_id=pr_id,
        lines=[line.to_input() for line in body.lines] if body.lines is not None else None,
        remarks=body.remarks,
    )
    db.commit()
    return pr


@router.post('/purchase-requests/{pr_id}/submit', response_model=PurchaseRequestOut)
def submit_purchase_request(
    pr_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    pr = purchase_request_service.submit(db, actor=principal, purchase_request_id=pr_id)
    db.commit()
    return pr


@router.post('/purchase-requests/{pr_id}/approve', response_model=PurchaseRequestOut)
def approve_purchase_request(
    pr_id: int,
    body: CommentsBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    pr = purchase_request_service.approve(
        db, actor=principal, purchase_request_id=pr_id, comments=body.comments if body else None
    )
    db.commit()
    return pr


@router.post('/purchase-requests/{pr_id}/reject', response_model=PurchaseRequestOut)
def reject_purchase_request(
    pr_id: int,
    body: ReasonBody,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    pr = purchase_request_service.reject(db, actor=principal, purchase_request_id=pr_id, reason=body.reason or '')
    db.commit()
    return pr


@router.post('/purchase-orders', response_model=PurchaseOrderOut, status_code=201)
def create_purchase_order(
    body: PurchaseOrderCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.create_draft_from_purchase_requests(
        db,
        actor=principal,
        supplier_id=body.supplier_id,
        purchase_request_ids=body.purchase_request_ids,
        currency_code=body.currency_code,
        tax_rate=body.tax_rate,
        lines=[line.to_input() for line in body.lines] if body.lines else None,
        remarks=body.remarks,
    )
    db.commit()
    return po


@router.get('/purchase-orders/{po_id}', response_model=PurchaseOrderOut)
def get_purchase_order(
    po_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return purchase_order_service.get_purchase_order(db, po_id)


@router.put('/purchase-orders/{po_id}', response_model=PurchaseOrderOut)
def update_purchase_order(
    po_id: int,
    body: PurchaseOrderUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.update_draft(
        db,
        actor=principal,
        purchase_order_id=po_id,
        supplier_id=body.supplier_id,
        currency_code=body.currency_code,
        tax_rate=body.tax_rate,
        lines=[line.to_input() for line in body.lines] if body.lines is not None else None,
        remarks=body.remarks,
    )
    db.commit()
    return po


@router.post('/purchase-orders/{po_id}/submit', response_model=PurchaseOrderOut)
def submit_purchase_order(
    po_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.submit(db, actor=principal, purchase_order_id=po_id)
    db.commit()
    return po


@router.post('/purchase-orders/{po_id}/approve', response_model=PurchaseOrderOut)
def approve_purchase_order(
    po_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.approve(db, actor=principal, purchase_order_id=po_id)
    db.commit()
    return po


@router.post('/purchase-orders/{po_id}/send', response_model=PurchaseOrderOut)
def send_purchase_order(
    po_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.send(db, actor=principal, purchase_order_id=po_id)
    db.commit()
    return po


@router.post('/purchase-orders/{po_id}/close', response_model=PurchaseOrderOut)
def close_purchase_order(
    po_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.close(db, actor=principal, purchase_order_id=po_id)
    db.commit()
    return po


@router.post('/purchase-orders/{po_id}/cancel', response_model=PurchaseOrderOut)
def cancel_purchase_order(
    po_id: int,
    body: ReasonBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.cancel(
        db, actor=principal, purchase_order_id=po_id, reason=body.reason if body else None
    )
    db.commit()
    return po


@router.post('/purchase-orders/{po_id}/reopen', response_model=PurchaseOrderOut)
def reopen_purchase_order(
    po_id: int,
    body: ReasonBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    po = purchase_order_service.reopen(
        db, actor=principal, purchase_order_id=po_id, reason=body.reason if body else None
    )
    db.commit()
    return po
