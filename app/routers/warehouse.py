from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role
from app.config import settings
from app.db import get_db
from app.schemas import (
    GoodsReceiptCreate,
    GoodsReceiptOut,
    GoodsReceiptUpdate,
    PickingOrderCreate,
    PickingOrderOut,
    PutAwayCreate,
    PutAwayOut,
    ReasonBody,
    StockOnHandOut,
)
from app.services import goods_receipt_service, picking_order_service, put_away_service, stock_query_service

router = APIRouter(tags=['warehouse'])
stock_access = require_role(Role.WAREHOUSE, Role.PROCUREMENT, Role.SUPER_ADMIN)


@router.post('/goods-receipts', response_model=GoodsReceiptOut, status_code=201)
def create_goods_receipt(
    body: GoodsReceiptCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    gr = goods_receipt_service.create_draft(
        db,
        actor=principal,
        purchase_order_id=body.purchase_order_id,
        warehouse_id=body.warehouse_id,
        lines=[line.to_input() for line in body.lines],
        received_at=body.received_at,
        remarks=body.remarks,
    )
    db.commit()
    return gr


@router.get('/goods-receipts/{gr_id}', response_model=GoodsReceiptOut)
def get_goods_receipt(
    gr_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return goods_receipt_service.get_goods_receipt(db, gr_id)


@router.get('/goods-receipts/{gr_id}/put-away-summary')
def goods_receipt_put_away_summary(
    gr_id: int,
    _: Principal = Depends(stock_access),
    db: Session = Depends(get_db),
):
    goods_receipt_service.get_goods_receipt(db, gr_id)
    rows = goods_receipt_service.get_put_away_summary(db, goods_receipt_id=gr_id)
    return [
        {
            'goods_receipt_line_id': row.goods_receipt_line_id,
            'item_id': row.item_id,
            'received_qty': str(row.received_qty),
            'put_away_qty': str(row.put_away_qty),
            'remaining_qty': str(row.remaining_qty),
        }
        for row in rows
    ]


@router.put('/goods-receipts/{gr_id}', response_model=GoodsReceiptOut)
def update_goods_receipt(
    gr_id: int,
    body: GoodsReceiptUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    gr = goods_receipt_service.update_draft(
        db,
        actor=principal,
        goods_receipt_id=gr_id,
        lines=[line.to_input() for line in body.lines],
        received_at=body.received_at,
        remarks=body.remarks,
    )
    db.commit()
    return gr


@router.post('/goods-receipts/{gr_id}/post', response_model=GoodsReceiptOut)
def post_goods_receipt(
    gr_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    gr = goods_receipt_service.post(db, actor=principal, goods_receipt_id=gr_id)
    db.commit()
    return gr


@router.post('/goods-receipts/{gr_id}/cancel', response_model=GoodsReceiptOut)
def cancel_goods_receipt(
    gr_id: int,
    body: ReasonBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    gr = goods_receipt_service.cancel(
        db, actor=principal, goods_receipt_id=gr_id, reason=body.reason if body else None
    )
    db.commit()
    return gr


@router.post('/put-aways', response_model=PutAwayOut, status_code=201)
def create_put_away(
    body: PutAwayCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    put_away = put_away_service.create_draft(
        db,
        actor=principal,
        goods_receipt_id=body.goods_receipt_id,
        lines=[line.to_input() for line in body.lines],
        put_away_at=body.put_away_at,
        remarks=body.remarks,
    )
    db.commit()
    return put_away


@router.get('/put-aways/{put_away_id}', response_model=PutAwayOut)
def get_put_away(
    put_away_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return put_away_service.get_put_away(db, put_away_id)


@router.post('/put-aways/{put_away_id}/post', response_model=PutAwayOut)
def post_put_away(
    put_away_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    put_away = put_away_service.post(db, actor=principal, put_away_id=put_away_id)
    db.commit()
    return put_away


@router.post('/put-aways/{put_away_id}/cancel', response_model=PutAwayOut)
def cancel_put_away(
    put_away_id: int,
    body: ReasonBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    put_away = put_away_service.cancel(
        db, actor=principal, put_away_id=put_away_id, reason=body.reason if body else None
    )
    db.commit()
    return put_away


@router.post('/picking-orders', response_model=PickingOrderOut, status_code=201)
def create_picking_order(
    body: PickingOrderCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    picking_order = picking_order_service.create_draft(
        db,
        actor=principal,
        warehouse_id=body.warehouse_id,
        lines=[line.to_input() for line in body.lines],
        department_id=body.department_id,
        purpose=body.purpose,
        picked_at=body.picked_at,
        remarks=body.remarks,
    )
    db.commit()
    return picking_order


@router.get('/picking-orders/{picking_order_id}', response_model=PickingOrderOut)
def get_picking_order(
    picking_order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return picking_order_service.get_picking_order(db, picking_order_id)


@router.post('/picking-orders/{picking_order_id}/post', response_model=PickingOrderOut)
def post_picking_order(
    picking_order_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    picking_order = picking_order_service.post(db, actor=principal, picking_order_id=picking_order_id)
    db.commit()
    return picking_order


@router.post('/picking-orders/{picking_order_id}/cancel', response_model=PickingOrderOut)
def cancel_picking_order(
    picking_order_id: int,
    body: ReasonBody | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    picking_order = picking_order_service.cancel(
        db, actor=principal, picking_order_id=picking_order_id, reason=body.reason if body else None
    )
    db.commit()
    return picking_order


@router.get('/stock/items/{item_id}', response_model=StockOnHandOut)
def stock_on_hand(
    item_id: int,
    uom_id: int | None = None,
    warehouse_id: int | None = None,
    _: Principal = Depends(stock_access),
    db: Session = Depends(get_db),
):
    by_location = stock_query_service.get_on_hand_by_location_for_item(
        db, item_id=item_id, uom_id=uom_id, warehouse_id=warehouse_id
    )
    return StockOnHandOut(
        item_id=item_id,
        uom_id=uom_id,
        warehouse_id=warehouse_id,
        total=sum(by_location.values()),
        by_location=by_location,
    )


@router.get('/stock/low-stock')
def low_stock(
    threshold: Decimal | None = Query(default=None, ge=0),
    _: Principal = Depends(stock_access),
    db: Session = Depends(get_db),
):
    report = stock_query_service.list_low_stock(
        db, threshold=settings.low_stock_threshold if threshold is None else threshold
    )

    def _row(entry):
        return {
            'item_id': entry.item_id,
            'sku': entry.sku,
            'name': entry.name,
            'location_id': entry.location_id,
            'location_code': entry.location_code,
            'qty_on_hand': str(entry.qty_on_hand),
            'uom_code': entry.uom_code,
        }

    return {
        'threshold': str(report.threshold),
        'total_issues': report.total_issues,
        'low_stock': [_row(entry) for entry in report.low_stock],
        'out_of_stock': [_row(entry) for entry in report.out_of_stock],
    }
