from sqlalchemy import select

from app.db import SessionLocal
from app.models import (
    ApprovalWorkflow,
    ApprovalWorkflowStep,
    ApproverType,
    Department,
    DocumentKind,
    Item,
    LocationType,
    Supplier,
    Uom,
    User,
    Warehouse,
    WarehouseLocation,
)
from app.services.invoice_matching_service import get_or_create_global_config

PR_WORKFLOW_STEPS = [
    dict(step_order=1, step_code='DEPT_HEAD', step_name='Department head', approver_type=ApproverType.DEPARTMENT_HEAD),
]

PO_WORKFLOW_STEPS = [
    dict(
        step_order=1,
        step_code='FINANCE',
        step_name='Finance review',
        approver_type=ApproverType.ROLE,
        approver_value='finance',
    ),
    dict(
        step_order=2,
        step_code='GM',
        step_name='General manager',
        approver_type=ApproverType.ROLE,
        approver_value='gm',
        condition_field='total_amount',
        condition_operator='>=',
        condition_value='50000000',
    ),
    dict(
        step_order=3,
        step_code='DIRECTOR',
        step_name='Director',
        approver_type=ApproverType.ROLE,
        approver_value='director',
        condition_field='total_amount',
        condition_operator='>=',
        condition_value='100000000',
    ),
]


def _get_or_add(db, model, lookup: dict, **values):
    row = db.execute(select(model).filter_by(**lookup)).scalar_one_or_none()
    if not row:
        row = model(**lookup, **values)
        db.add(row)
        db.flush()
    return row


def _seed_workflow(db, *, code: str, name: str, kind: DocumentKind, steps: list[dict]) -> None:
    workflow = _get_or_add(db, ApprovalWorkflow, {'code': code}, name=name, document_kind=kind, is_active=True)
    existing = set(
        db.execute(
            select(ApprovalWorkflowStep.step_code).where(ApprovalWorkflowStep.approval_workflow_id == workflow.id)
        ).scalars()
    )
    for step in steps:
        if step['step_code'] not in existing:
            db.add(ApprovalWorkflowStep(approval_workflow_id=workflow.id, **step))
    db.flush()


def seed() -> None:
    with SessionLocal() as db:
        operations = _get_or_add(db, Department, {'code': 'OPS'}, name='Operations')
        head = _get_or_add(db, User, {'username': 'ops.head'}, name='Operations Head', department_id=operations.id)
        if operations.head_user_id is None:
            operations.head_user_id = head.id
        _get_or_add(db, User, {'username': 'staff1'}, name='Operations Staff', department_id=operations.id)
        _get_or_add(db, User, {'username': 'buyer'}, name='Procurement Buyer')
        _get_or_add(db, User, {'username': 'finance'}, name='Finance Officer')
        _get_or_add(db, User, {'username': 'warehouse'}, name='Warehouse Clerk')

        pcs = _get_or_add(db, Uom, {'code': 'PCS'}, name='Pieces')
        box = _get_or_add(db, Uom, {'code': 'BOX'}, name='Box')
        _get_or_add(db, Item, {'sku': 'PAPER-A4'}, name='A4 Paper 80gsm', base_uom_id=box.id)
        _get_or_add(db, Item, {'sku': 'TONER-BK'}, name='Black Toner Cartridge', base_uom_id=pcs.id)
        _get_or_add(db, Item, {'sku': 'LAPTOP-14'}, name='Laptop 14 inch', base_uom_id=pcs.id, is_serialized=True)

        _get_or_add(db, Supplier, {'code': 'SUP-001'}, name='PT Sumber Makmur', contact_name='Budi')

        warehouse = _get_or_add(db, Warehouse, {'code': 'WH-MAIN'}, name='Main Warehouse')
        _get_or_add(
            db,
            WarehouseLocation,
            {'warehouse_id': warehouse.id, 'code': 'RCV'},
            name='Receiving Dock',
            type=LocationType.RECEIVING,
            is_default=True,
        )
        for code in ('A-01', 'A-02'):
            _get_or_add(
                db,
                WarehouseLocation,
                {'warehouse_id': warehouse.id, 'code': code},
                name=f'Rack {code}',
                type=LocationType.STORAGE,
            )

        _seed_workflow(
            db, code='PR_STANDARD', name='Purchase request approval', kind=DocumentKind.PURCHASE_REQUEST,
            steps=PR_WORKFLOW_STEPS,
        )
        _seed_workflow(
            db, code='PO_STANDARD', name='Purchase order approval', kind=DocumentKind.PURCHASE_ORDER,
            steps=PO_WORKFLOW_STEPS,
        )
        get_or_create_global_config(db)

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
