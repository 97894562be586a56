from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
PrimaryKey = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class LocationType(str, Enum):
    RECEIVING = 'RECEIVING'
    STORAGE = 'STORAGE'


class PurchaseRequestStatus(str, Enum):
    DRAFT = 'DRAFT'
    PENDING_APPROVAL = 'PENDING_APPROVAL'
    SUBMITTED = 'SUBMITTED'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    CONVERTED_TO_PO = 'CONVERTED_TO_PO'


class PurchaseOrderStatus(str, Enum):
    DRAFT = 'DRAFT'
    SUBMITTED = 'SUBMITTED'
    IN_APPROVAL = 'IN_APPROVAL'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    SENT = 'SENT'
    CLOSED = 'CLOSED'
    CANCELLED = 'CANCELLED'


class GoodsReceiptStatus(str, Enum):
    DRAFT = 'DRAFT'
    POSTED = 'POSTED'
    CANCELLED = 'CANCELLED'
    PUT_AWAY_PARTIAL = 'PUT_AWAY_PARTIAL'
    PUT_AWAY_COMPLETED = 'PUT_AWAY_COMPLETED'


class PutAwayStatus(str, Enum):
    DRAFT = 'DRAFT'
    POSTED = 'POSTED'
    CANCELLED = 'CANCELLED'


class PickingOrderStatus(str, Enum):
    DRAFT = 'DRAFT'
    POSTED = 'POSTED'
    CANCELLED = 'CANCELLED'


class StockReferenceType(str, Enum):
    GOODS_RECEIPT = 'GOODS_RECEIPT'
    PUT_AWAY = 'PUT_AWAY'
    PICKING_ORDER = 'PICKING_ORDER'
    ADJUSTMENT = 'ADJUSTMENT'


class SerialNumberStatus(str, Enum):
    AVAILABLE = 'AVAILABLE'
    RESERVED = 'RESERVED'
    PICKED = 'PICKED'
    DAMAGED = 'DAMAGED'


class DocumentKind(str, Enum):
    PURCHASE_REQUEST = 'PURCHASE_REQUEST'
    PURCHASE_ORDER = 'PURCHASE_ORDER'
    SUPPLIER_INVOICE = 'SUPPLIER_INVOICE'


class ApproverType(str, Enum):
    ROLE = 'ROLE'
    USER = 'USER'
    DEPARTMENT_HEAD = 'DEPARTMENT_HEAD'


class ApprovalStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    SKIPPED = 'SKIPPED'
    CANCELLED = 'CANCELLED'


class InvoiceStatus(str, Enum):
    DRAFT = 'DRAFT'
    SUBMITTED = 'SUBMITTED'
    MATCHED = 'MATCHED'
    VARIANCE = 'VARIANCE'
    APPROVED = 'APPROVED'
    PAID = 'PAID'
    REJECTED = 'REJECTED'
    CANCELLED = 'CANCELLED'


class MatchingStatus(str, Enum):
    PENDING = 'PENDING'
    MATCHED = 'MATCHED'
    PARTIAL_MATCH = 'PARTIAL_MATCH'
    MISMATCHED = 'MISMATCHED'
    QTY_VARIANCE = 'QTY_VARIANCE'
    PRICE_VARIANCE = 'PRICE_VARIANCE'
    BOTH_VARIANCE = 'BOTH_VARIANCE'
    OVER_INVOICED = 'OVER_INVOICED'


class MatchOutcome(str, Enum):
    MATCHED = 'MATCHED'
    VARIANCE = 'VARIANCE'


class InvoiceApprovalStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'


class PaymentStatus(str, Enum):
    UNPAID = 'UNPAID'
    PARTIAL_PAID = 'PARTIAL_PAID'
    PAID = 'PAID'
    OVERDUE = 'OVERDUE'


class PaymentMethod(str, Enum):
    BANK_TRANSFER = 'BANK_TRANSFER'
    CASH = 'CASH'
    CHECK = 'CHECK'
    GIRO = 'GIRO'


class MatchingConfigType(str, Enum):
    GLOBAL = 'GLOBAL'
    SUPPLIER = 'SUPPLIER'


# Master data


class Department(Base):
    __tablename__ = 'departments'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('departments.id'))
    head_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', use_alter=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    department_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('departments.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Uom(Base):
    __tablename__ = 'uoms'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class Item(Base):
    __tablename__ = 'items'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_serialized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    base_uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Warehouse(Base):
    __tablename__ = 'warehouses'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WarehouseLocation(Base):
    __tablename__ = 'warehouse_locations'
    __table_args__ = (UniqueConstraint('warehouse_id', 'code', name='uq_warehouse_locations_code'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'))
    type: Mapped[LocationType] = mapped_column(SQLEnum(LocationType, name='location_type'), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')


# Numbering


class DocumentSequence(Base):
    __tablename__ = 'document_sequences'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    prefix: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# Purchase requests


class PurchaseRequest(Base):
    __tablename__ = 'purchase_requests'

    document_kind = DocumentKind.PURCHASE_REQUEST

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    pr_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    requester_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    department_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('departments.id'), nullable=False)
    status: Mapped[PurchaseRequestStatus] = mapped_column(
        SQLEnum(PurchaseRequestStatus, name='purchase_request_status'),
        nullable=False,
        default=PurchaseRequestStatus.DRAFT,
        server_default='DRAFT',
    )
    remarks: Mapped[str | None] = mapped_column(Text)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    submitted_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    converted_to_po_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def document_number(self) -> str:
        return self.pr_number

    @property
    def creator_user_id(self) -> int:
        return self.requester_user_id


class PurchaseRequestLine(Base):
    __tablename__ = 'purchase_request_lines'
    __table_args__ = (CheckConstraint('quantity > 0', name='ck_purchase_request_lines_quantity_positive'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 3), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)


class PurchaseRequestStatusHistory(Base):
    __tablename__ = 'purchase_request_status_histories'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False
    )
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# Purchase orders


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'
    __table_args__ = (CheckConstraint('tax_rate >= 0 AND tax_rate <= 1', name='ck_purchase_orders_tax_rate'),)

    document_kind = DocumentKind.PURCHASE_ORDER

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('suppliers.id'), nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name='purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
        server_default='DRAFT',
    )
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default='IDR', server_default='IDR')
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False, default=Decimal('0.11'))
    subtotal_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    supplier_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    tax_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    remarks: Mapped[str | None] = mapped_column(Text)
    created_by_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    submitted_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sent_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def document_number(self) -> str:
        return self.po_number

    @property
    def creator_user_id(self) -> int:
        return self.created_by_user_id


class PurchaseOrderLine(Base):
    __tablename__ = 'purchase_order_lines'
    __table_args__ = (CheckConstraint('quantity > 0', name='ck_purchase_order_lines_quantity_positive'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    item_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    uom_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    remarks: Mapped[str | None] = mapped_column(Text)


class PurchaseOrderPurchaseRequest(Base):
    __tablename__ = 'purchase_order_purchase_request'
    __table_args__ = (UniqueConstraint('purchase_order_id', 'purchase_request_id', name='uq_po_pr_link'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False
    )
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False
    )


class PurchaseOrderStatusHistory(Base):
    __tablename__ = 'purchase_order_status_histories'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False
    )
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# Goods receipts


class GoodsReceipt(Base):
    __tablename__ = 'goods_receipts'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    gr_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    status: Mapped[GoodsReceiptStatus] = mapped_column(
        SQLEnum(GoodsReceiptStatus, name='goods_receipt_status'),
        nullable=False,
        default=GoodsReceiptStatus.DRAFT,
        server_default='DRAFT',
    )
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[str | None] = mapped_column(Text)
    purchase_order_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    warehouse_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    posted_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancel_reason: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GoodsReceiptLine(Base):
    __tablename__ = 'goods_receipt_lines'
    __table_args__ = (
        CheckConstraint('received_quantity > 0', name='ck_goods_receipt_lines_received_positive'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    goods_receipt_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('goods_receipts.id', ondelete='CASCADE'), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_order_line_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_order_lines.id'), nullable=False
    )
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    ordered_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)
    serial_numbers: Mapped[list | None] = mapped_column(JSON)
    item_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    uom_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    remarks: Mapped[str | None] = mapped_column(Text)


class GoodsReceiptStatusHistory(Base):
    __tablename__ = 'goods_receipt_status_histories'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    goods_receipt_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('goods_receipts.id', ondelete='CASCADE'), nullable=False
    )
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# Put-aways


class PutAway(Base):
    __tablename__ = 'put_aways'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    put_away_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    goods_receipt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('goods_receipts.id'), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    status: Mapped[PutAwayStatus] = mapped_column(
        SQLEnum(PutAwayStatus, name='put_away_status'),
        nullable=False,
        default=PutAwayStatus.DRAFT,
        server_default='DRAFT',
    )
    put_away_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    posted_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancel_reason: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PutAwayLine(Base):
    __tablename__ = 'put_away_lines'
    __table_args__ = (CheckConstraint('qty > 0', name='ck_put_away_lines_qty_positive'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    put_away_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('put_aways.id', ondelete='CASCADE'), nullable=False)
    goods_receipt_line_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('goods_receipt_lines.id'), nullable=False
    )
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    source_location_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'))
    destination_location_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'))
    qty: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)


class PutAwayStatusHistory(Base):
    __tablename__ = 'put_away_status_histories'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    put_away_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('put_aways.id', ondelete='CASCADE'), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# Picking orders


class PickingOrder(Base):
    __tablename__ = 'picking_orders'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    picking_order_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    department_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('departments.id'))
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    status: Mapped[PickingOrderStatus] = mapped_column(
        SQLEnum(PickingOrderStatus, name='picking_order_status'),
        nullable=False,
        default=PickingOrderStatus.DRAFT,
        server_default='DRAFT',
    )
    purpose: Mapped[str | None] = mapped_column(String(100))
    picked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    posted_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancel_reason: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PickingOrderLine(Base):
    __tablename__ = 'picking_order_lines'
    __table_args__ = (CheckConstraint('qty > 0', name='ck_picking_order_lines_qty_positive'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    picking_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('picking_orders.id', ondelete='CASCADE'), nullable=False
    )
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    source_location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'), nullable=False)
    qty: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)


class PickingOrderStatusHistory(Base):
    __tablename__ = 'picking_order_status_histories'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    picking_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('picking_orders.id', ondelete='CASCADE'), nullable=False
    )
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# Stock ledger


class StockMovement(Base):
    __tablename__ = 'stock_movements'
    __table_args__ = (
        CheckConstraint('qty > 0', name='ck_stock_movements_qty_positive'),
        CheckConstraint(
            'source_location_id IS NOT NULL OR destination_location_id IS NOT NULL',
            name='ck_stock_movements_has_location',
        ),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    source_location_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'))
    destination_location_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'))
    qty: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    reference_type: Mapped[StockReferenceType] = mapped_column(
        SQLEnum(StockReferenceType, name='stock_reference_type'), nullable=False
    )
    reference_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    movement_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)


class StockBalance(Base):
    __tablename__ = 'stock_balances'
    __table_args__ = (UniqueConstraint('location_id', 'item_id', 'uom_id', name='uq_stock_balances_key'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'), nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    qty_on_hand: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal('0'))
    as_of_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ItemSerialNumber(Base):
    __tablename__ = 'item_serial_numbers'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    status: Mapped[SerialNumberStatus] = mapped_column(
        SQLEnum(SerialNumberStatus, name='serial_number_status'),
        nullable=False,
        default=SerialNumberStatus.AVAILABLE,
        server_default='AVAILABLE',
    )
    current_location_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouse_locations.id'))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    goods_receipt_line_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('goods_receipt_lines.id'))
    remarks: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)


# Approval workflows


class ApprovalWorkflow(Base):
    __tablename__ = 'approval_workflows'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    document_kind: Mapped[DocumentKind | None] = mapped_column(SQLEnum(DocumentKind, name='document_kind'))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')


class ApprovalWorkflowStep(Base):
    __tablename__ = 'approval_workflow_steps'
    __table_args__ = (UniqueConstraint('approval_workflow_id', 'step_order', name='uq_approval_workflow_steps_order'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    approval_workflow_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('approval_workflows.id', ondelete='CASCADE'), nullable=False
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    step_code: Mapped[str] = mapped_column(String(50), nullable=False)
    step_name: Mapped[str] = mapped_column(Text, nullable=False)
    step_description: Mapped[str | None] = mapped_column(Text)
    approver_type: Mapped[ApproverType] = mapped_column(SQLEnum(ApproverType, name='approver_type'), nullable=False)
    approver_value: Mapped[str | None] = mapped_column(Text)
    condition_field: Mapped[str | None] = mapped_column(String(100))
    condition_operator: Mapped[str | None] = mapped_column(String(20))
    condition_value: Mapped[str | None] = mapped_column(Text)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    allow_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    allow_parallel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')


class Approval(Base):
    __tablename__ = 'approvals'
    __table_args__ = (
        CheckConstraint(
            '(assigned_to_user_id IS NULL) <> (assigned_to_role IS NULL)',
            name='ck_approvals_single_assignee',
        ),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    approval_workflow_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('approval_workflows.id'), nullable=False)
    approval_workflow_step_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('approval_workflow_steps.id'), nullable=False
    )
    approvable_type: Mapped[DocumentKind] = mapped_column(SQLEnum(DocumentKind, name='document_kind'), nullable=False)
    approvable_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus, name='approval_status'),
        nullable=False,
        default=ApprovalStatus.PENDING,
        server_default='PENDING',
    )
    assigned_to_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    assigned_to_role: Mapped[str | None] = mapped_column(String(100))
    approved_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    comments: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# Accounting


class SupplierInvoice(Base):
    __tablename__ = 'supplier_invoices'
    __table_args__ = (
        UniqueConstraint('supplier_id', 'invoice_number', name='uq_supplier_invoices_supplier_number'),
        CheckConstraint('paid_amount <= total_amount', name='ck_supplier_invoices_not_overpaid'),
    )

    document_kind = DocumentKind.SUPPLIER_INVOICE

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    internal_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('suppliers.id'), nullable=False)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    received_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='IDR', server_default='IDR')
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name='invoice_status'),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        server_default='DRAFT',
    )
    matching_status: Mapped[MatchingStatus] = mapped_column(
        SQLEnum(MatchingStatus, name='matching_status'),
        nullable=False,
        default=MatchingStatus.PENDING,
        server_default='PENDING',
    )
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    matched_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    other_charges: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name='payment_status'),
        nullable=False,
        default=PaymentStatus.UNPAID,
        server_default='UNPAID',
    )
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    approval_status: Mapped[InvoiceApprovalStatus | None] = mapped_column(
        SQLEnum(InvoiceApprovalStatus, name='invoice_approval_status')
    )
    approved_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approval_notes: Mapped[str | None] = mapped_column(Text)
    invoice_file_path: Mapped[str | None] = mapped_column(String(500))
    tax_invoice_file_path: Mapped[str | None] = mapped_column(String(500))
    notes: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    created_by_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    updated_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def document_number(self) -> str:
        return self.internal_number

    @property
    def creator_user_id(self) -> int:
        return self.created_by_user_id


class SupplierInvoiceLine(Base):
    __tablename__ = 'supplier_invoice_lines'
    __table_args__ = (
        UniqueConstraint('supplier_invoice_id', 'line_number', name='uq_supplier_invoice_lines_number'),
        CheckConstraint('invoiced_qty > 0', name='ck_supplier_invoice_lines_qty_positive'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    supplier_invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('supplier_invoices.id', ondelete='CASCADE'), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('items.id'), nullable=False)
    uom_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('uoms.id'))
    purchase_order_line_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('purchase_order_lines.id'))
    goods_receipt_line_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('goods_receipt_lines.id'))
    description: Mapped[str | None] = mapped_column(Text)
    invoiced_qty: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    line_total: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    matching_status: Mapped[MatchingStatus] = mapped_column(
        SQLEnum(MatchingStatus, name='matching_status'),
        nullable=False,
        default=MatchingStatus.PENDING,
        server_default='PENDING',
    )
    expected_qty: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    qty_variance: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    qty_variance_percent: Mapped[Decimal | None] = mapped_column(Numeric(9, 2))
    expected_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    price_variance: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    price_variance_percent: Mapped[Decimal | None] = mapped_column(Numeric(9, 2))
    expected_amount: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    amount_variance: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    amount_variance_percent: Mapped[Decimal | None] = mapped_column(Numeric(9, 2))
    notes: Mapped[str | None] = mapped_column(Text)


class InvoiceMatchingConfig(Base):
    __tablename__ = 'invoice_matching_configs'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    config_type: Mapped[MatchingConfigType] = mapped_column(
        SQLEnum(MatchingConfigType, name='matching_config_type'), nullable=False
    )
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    quantity_tolerance_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    price_tolerance_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    amount_tolerance_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    allow_under_invoicing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    allow_over_invoicing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    require_approval_if_variance: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default='true'
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    notes: Mapped[str | None] = mapped_column(Text)


class InvoiceMatchingResult(Base):
    __tablename__ = 'invoice_matching_results'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    supplier_invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('supplier_invoices.id', ondelete='CASCADE'), nullable=False
    )
    match_type: Mapped[str] = mapped_column(String(30), nullable=False, default='THREE_WAY')
    overall_status: Mapped[MatchOutcome] = mapped_column(SQLEnum(MatchOutcome, name='match_outcome'), nullable=False)
    total_quantity_variance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal('0'))
    total_price_variance: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    total_amount_variance: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=Decimal('0'))
    variance_percentage: Mapped[Decimal] = mapped_column(Numeric(9, 2), nullable=False, default=Decimal('0'))
    config_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('invoice_matching_configs.id'))
    quantity_tolerance_applied: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    price_tolerance_applied: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    amount_tolerance_applied: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    matching_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    matched_by_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    matched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class InvoicePayment(Base):
    __tablename__ = 'invoice_payments'
    __table_args__ = (CheckConstraint('payment_amount > 0', name='ck_invoice_payments_amount_positive'),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    supplier_invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('supplier_invoices.id'), nullable=False)
    payment_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name='payment_method'),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
        server_default='BANK_TRANSFER',
    )
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(Text)
    bank_account_number: Mapped[str | None] = mapped_column(String(100))
    bank_account_name: Mapped[str | None] = mapped_column(Text)
    transaction_reference: Mapped[str | None] = mapped_column(Text)
    payment_proof_path: Mapped[str | None] = mapped_column(String(500))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
