from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import Principal
from app.clock import FixedClock
from app.models import (
    ApprovalWorkflow,
    ApprovalWorkflowStep,
    ApproverType,
    Base,
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
from app.services import (
    goods_receipt_service,
    purchase_order_service,
    purchase_request_service,
    supplier_invoice_service,
)
from app.services.goods_receipt_service import GoodsReceiptLineInput
from app.services.notification_service import InMemoryNotificationDispatcher, use_dispatcher
from app.services.purchase_order_service import PurchaseOrderLineInput
from app.services.purchase_request_service import PurchaseRequestLineInput
from app.services.supplier_invoice_service import SupplierInvoiceLineInput


def make_session() -> Session:
    engine = create_engine(
        'sqlite+pysqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class LedgerFixture:
    """Master data plus a cast of actors shared by the service tests."""

    def __init__(self) -> None:
        self.db = make_session()
        self.clock = FixedClock(datetime(2024, 5, 15, 9, 0, tzinfo=timezone.utc))
        self.dispatcher = InMemoryNotificationDispatcher()
        use_dispatcher(self.db, self.dispatcher)
        db = self.db

        self.department = Department(code='OPS', name='Operations')
        db.add(self.department)
        db.flush()

        users = {}
        for username in ('requester', 'head', 'buyer', 'finance', 'gm', 'director', 'clerk', 'approver', 'other'):
            user = User(username=username, name=username.title(), department_id=self.department.id)
            db.add(user)
            users[username] = user
        db.flush()
        self.department.head_user_id = users['head'].id

        def principal(username: str, roles, permissions=()) -> Principal:
            return Principal(
                id=users[username].id,
                username=username,
                roles=frozenset(roles),
                permissions=frozenset(permissions),
                department_id=self.department.id,
            )

        self.requester = principal('requester', {'staff'})
        self.head = principal('head', {'dept_head'})
        self.buyer = principal('buyer', {'procurement'})
        self.finance = principal('finance', {'finance'})
        self.gm = principal('gm', {'gm'})
        self.director = principal('director', {'director'})
        self.clerk = principal('clerk', {'warehouse'})
        self.invoice_approver = principal('approver', {'finance', 'dept_head'}, {'invoices.approve'})
        self.outsider = principal('other', {'staff'})

        self.pcs = Uom(code='PCS', name='Pieces')
        db.add(self.pcs)
        db.flush()
        self.paper = Item(sku='PAPER-A4', name='A4 Paper', base_uom_id=self.pcs.id)
        self.laptop = Item(sku='LAPTOP-14', name='Laptop 14', base_uom_id=self.pcs.id, is_serialized=True)
        self.supplier = Supplier(code='SUP-001', name='PT Sumber Makmur')
        self.other_supplier = Supplier(code='SUP-002', name='CV Lain')
        self.warehouse = Warehouse(code='WH-MAIN', name='Main Warehouse')
        self.other_warehouse = Warehouse(code='WH-EAST', name='East Warehouse')
        db.add_all([self.paper, self.laptop, self.supplier, self.other_supplier, self.warehouse, self.other_warehouse])
        db.flush()

        self.receiving = WarehouseLocation(
            warehouse_id=self.warehouse.id, type=LocationType.RECEIVING, code='RCV', name='Receiving', is_default=True
        )
        self.rack_a = WarehouseLocation(
            warehouse_id=self.warehouse.id, type=LocationType.STORAGE, code='A-01', name='Rack A-01'
        )
        self.rack_b = WarehouseLocation(
            warehouse_id=self.warehouse.id, type=LocationType.STORAGE, code='B-01', name='Rack B-01'
        )
        self.east_rack = WarehouseLocation(
            warehouse_id=self.other_warehouse.id, type=LocationType.STORAGE, code='E-01', name='East Rack'
        )
        db.add_all([self.receiving, self.rack_a, self.rack_b, self.east_rack])
        db.flush()

        self._add_workflow(
            'PR_STANDARD',
            DocumentKind.PURCHASE_REQUEST,
            [dict(step_order=1, step_code='DEPT_HEAD', step_name='Department head',
                  approver_type=ApproverType.DEPARTMENT_HEAD)],
        )
        self._add_workflow(
            'PO_STANDARD',
            DocumentKind.PURCHASE_ORDER,
            [
                dict(step_order=1, step_code='FINANCE', step_name='Finance', approver_type=ApproverType.ROLE,
                     approver_value='finance'),
                dict(step_order=2, step_code='GM', step_name='GM', approver_type=ApproverType.ROLE,
                     approver_value='gm'),
                dict(step_order=3, step_code='DIRECTOR', step_name='Director', approver_type=ApproverType.ROLE,
                     approver_value='director'),
            ],
        )
        db.flush()

    def _add_workflow(self, code: str, kind: DocumentKind, steps: list[dict]) -> ApprovalWorkflow:
        workflow = ApprovalWorkflow(code=code, name=code, document_kind=kind, is_active=True)
        self.db.add(workflow)
        self.db.flush()
        for step in steps:
            self.db.add(ApprovalWorkflowStep(approval_workflow_id=workflow.id, **step))
        self.db.flush()
        return workflow

    def close(self) -> None:
        self.db.close()

    # Document builders

    def approved_purchase_request(self, *quantities, item=None):
        item = item or self.paper
        pr = purchase_request_service.create_draft(
            self.db,
            actor=self.requester,
            department_id=self.department.id,
            lines=[PurchaseRequestLineInput(item_id=item.id, uom_id=self.pcs.id, quantity=Decimal(q)) for q in quantities],
            clock=self.clock,
        )
        purchase_request_service.submit(self.db, actor=self.requester, purchase_request_id=pr.id, clock=self.clock)
        purchase_request_service.approve(self.db, actor=self.head, purchase_request_id=pr.id, clock=self.clock)
        return pr

    def approved_purchase_order(self, quantity='10', unit_price='1000', item=None):
        item = item or self.paper
        pr = self.approved_purchase_request(quantity, item=item)
        po = purchase_order_service.create_draft_from_purchase_requests(
            self.db,
            actor=self.buyer,
            supplier_id=self.supplier.id,
            purchase_request_ids=[pr.id],
            lines=[
                PurchaseOrderLineInput(
                    item_id=item.id, uom_id=self.pcs.id, quantity=Decimal(quantity), unit_price=Decimal(unit_price)
                )
            ],
            clock=self.clock,
        )
        purchase_order_service.submit(self.db, actor=self.buyer, purchase_order_id=po.id, clock=self.clock)
        for approver in (self.finance, self.gm, self.director):
            purchase_order_service.approve(self.db, actor=approver, purchase_order_id=po.id, clock=self.clock)
        return po

    def posted_goods_receipt(self, po, quantity, serial_numbers=None):
        po_line = purchase_order_service.list_lines(self.db, purchase_order_id=po.id)[0]
        gr = goods_receipt_service.create_draft(
            self.db,
            actor=self.clerk,
            purchase_order_id=po.id,
            warehouse_id=self.warehouse.id,
            lines=[
                GoodsReceiptLineInput(
                    purchase_order_line_id=po_line.id,
                    received_quantity=Decimal(quantity),
                    serial_numbers=serial_numbers,
                )
            ],
            clock=self.clock,
        )
        goods_receipt_service.post(self.db, actor=self.clerk, goods_receipt_id=gr.id, clock=self.clock)
        return gr

    def submitted_invoice(self, po, gr, invoiced_qty, unit_price, *, invoice_number='SI-0001', link_receipt=True):
        gr_line = goods_receipt_service.list_lines(self.db, goods_receipt_id=gr.id)[0]
        invoice = supplier_invoice_service.create_draft(
            self.db,
            actor=self.finance,
            supplier_id=self.supplier.id,
            purchase_order_id=po.id,
            invoice_number=invoice_number,
            invoice_date=date(2024, 5, 14),
            due_date=date(2024, 6, 14),
            lines=[
                SupplierInvoiceLineInput(
                    purchase_order_line_id=gr_line.purchase_order_line_id,
                    goods_receipt_line_id=gr_line.id if link_receipt else None,
                    invoiced_qty=Decimal(invoiced_qty),
                    unit_price=Decimal(unit_price),
                )
            ],
            clock=self.clock,
        )
        supplier_invoice_service.submit(self.db, actor=self.finance, invoice_id=invoice.id, clock=self.clock)
        return invoice
