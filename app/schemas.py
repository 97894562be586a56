from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models import (
    ApprovalStatus,
    DocumentKind,
    GoodsReceiptStatus,
    InvoiceApprovalStatus,
    InvoiceStatus,
    MatchingConfigType,
    MatchingStatus,
    MatchOutcome,
    PaymentMethod,
    PaymentStatus,
    PickingOrderStatus,
    PurchaseOrderStatus,
    PurchaseRequestStatus,
    PutAwayStatus,
)
from app.services.goods_receipt_service import GoodsReceiptLineInput
from app.services.invoice_matching_service import MatchingConfigInput
from app.services.picking_order_service import PickingOrderLineInput
from app.services.purchase_order_service import PurchaseOrderLineInput, PurchaseOrderPriceUpdate
from app.services.purchase_request_service import PurchaseRequestLineInput
from app.services.put_away_service import PutAwayLineInput
from app.services.supplier_invoice_service import SupplierInvoiceLineInput


class ReasonBody(BaseModel):
    reason: str | None = None


class CommentsBody(BaseModel):
    comments: str | None = None


# Procurement


class PurchaseRequestLineIn(BaseModel):
    item_id: int
    quantity: Decimal
    uom_id: int | None = None
    remarks: str | None = None

    def to_input(self) -> PurchaseRequestLineInput:
        return PurchaseRequestLineInput(
            item_id=self.item_id, quantity=self.quantity, uom_id=self.uom_id, remarks=self.remarks
        )


class PurchaseRequestCreate(BaseModel):
    department_id: int
    lines: list[PurchaseRequestLineIn] = Field(min_length=1)
    remarks: str | None = None


class PurchaseRequestUpdate(BaseModel):
    lines: list[PurchaseRequestLineIn] | None = None
    remarks: str | None = None


class PurchaseRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    pr_number: str
    requester_user_id: int
    department_id: int
    status: PurchaseRequestStatus
    remarks: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    converted_to_po_at: datetime | None = None


class PurchaseOrderLineIn(BaseModel):
    item_id: int
    quantity: Decimal
    uom_id: int | None = None
    unit_price: Decimal = Decimal('0')
    remarks: str | None = None

    def to_input(self) -> PurchaseOrderLineInput:
        return PurchaseOrderLineInput(
            item_id=self.item_id,
            quantity=self.quantity,
            uom_id=self.uom_id,
            unit_price=self.unit_price,
            remarks=self.remarks,
        )


class PurchaseOrderPriceIn(BaseModel):
    id: int
    unit_price: Decimal
    remarks: str | None = None

    def to_input(self) -> PurchaseOrderPriceUpdate:
        return PurchaseOrderPriceUpdate(id=self.id, unit_price=self.unit_price, remarks=self.remarks)


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    purchase_request_ids: list[int] = Field(min_length=1)
    currency_code: str | None = None
    tax_rate: Decimal | None = None
    lines: list[PurchaseOrderLineIn] | None = None
    remarks: str | None = None


class PurchaseOrderUpdate(BaseModel):
    supplier_id: int | None = None
    currency_code: str | None = None
    tax_rate: Decimal | None = None
    lines: list[PurchaseOrderPriceIn] | None = None
    remarks: str | None = None


class PurchaseOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_number: str
    supplier_id: int
    status: PurchaseOrderStatus
    currency_code: str
    tax_rate: Decimal
    subtotal_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    remarks: str | None = None
    approved_at: datetime | None = None
    cancel_reason: str | None = None


# Warehouse


class GoodsReceiptLineIn(BaseModel):
    purchase_order_line_id: int
    received_quantity: Decimal
    serial_numbers: list[str] | None = None
    remarks: str | None = None

    def to_input(self) -> GoodsReceiptLineInput:
        return GoodsReceiptLineInput(
            purchase_order_line_id=self.purchase_order_line_id,
            received_quantity=self.received_quantity,
            serial_numbers=self.serial_numbers,
            remarks=self.remarks,
        )


class GoodsReceiptCreate(BaseModel):
    purchase_order_id: int
    warehouse_id: int
    lines: list[GoodsReceiptLineIn] = Field(min_length=1)
    received_at: datetime | None = None
    remarks: str | None = None


class GoodsReceiptUpdate(BaseModel):
    lines: list[GoodsReceiptLineIn] = Field(min_length=1)
    received_at: datetime | None = None
    remarks: str | None = None


class GoodsReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    gr_number: str
    purchase_order_id: int
    warehouse_id: int
    status: GoodsReceiptStatus
    received_at: datetime | None = None
    posted_at: datetime | None = None
    remarks: str | None = None


class PutAwayLineIn(BaseModel):
    goods_receipt_line_id: int
    destination_location_id: int
    qty: Decimal
    remarks: str | None = None

    def to_input(self) -> PutAwayLineInput:
        return PutAwayLineInput(
            goods_receipt_line_id=self.goods_receipt_line_id,
            destination_location_id=self.destination_location_id,
            qty=self.qty,
            remarks=self.remarks,
        )


class PutAwayCreate(BaseModel):
    goods_receipt_id: int
    lines: list[PutAwayLineIn] = Field(min_length=1)
    put_away_at: datetime | None = None
    remarks: str | None = None


class PutAwayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    put_away_number: str
    goods_receipt_id: int
    warehouse_id: int
    status: PutAwayStatus
    posted_at: datetime | None = None
    remarks: str | None = None


class PickingOrderLineIn(BaseModel):
    item_id: int
    source_location_id: int
    qty: Decimal
    uom_id: int | None = None
    remarks: str | None = None

    def to_input(self) -> PickingOrderLineInput:
        return PickingOrderLineInput(
            item_id=self.item_id,
            source_location_id=self.source_location_id,
            qty=self.qty,
            uom_id=self.uom_id,
            remarks=self.remarks,
        )


class PickingOrderCreate(BaseModel):
    warehouse_id: int
    lines: list[PickingOrderLineIn] = Field(min_length=1)
    department_id: int | None = None
    purpose: str | None = None
    picked_at: datetime | None = None
    remarks: str | None = None


class PickingOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    picking_order_number: str
    warehouse_id: int
    department_id: int | None = None
    status: PickingOrderStatus
    purpose: str | None = None
    posted_at: datetime | None = None


class StockOnHandOut(BaseModel):
    item_id: int
    uom_id: int | None = None
    warehouse_id: int | None = None
    total: Decimal
    by_location: dict[int, Decimal]


# Accounting


class SupplierInvoiceLineIn(BaseModel):
    purchase_order_line_id: int
    invoiced_qty: Decimal
    unit_price: Decimal
    goods_receipt_line_id: int | None = None
    tax_amount: Decimal = Decimal('0')
    discount_amount: Decimal = Decimal('0')
    line_total: Decimal | None = None
    description: str | None = None
    notes: str | None = None

    def to_input(self) -> SupplierInvoiceLineInput:
        return SupplierInvoiceLineInput(**self.model_dump())


class SupplierInvoiceCreate(BaseModel):
    supplier_id: int
    purchase_order_id: int
    invoice_number: str
    invoice_date: date
    lines: list[SupplierInvoiceLineIn] = Field(min_length=1)
    due_date: date | None = None
    received_date: date | None = None
    tax_amount: Decimal = Decimal('0')
    discount_amount: Decimal = Decimal('0')
    other_charges: Decimal = Decimal('0')
    total_amount: Decimal | None = None
    currency: str | None = None
    notes: str | None = None


class SupplierInvoiceUpdate(BaseModel):
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    lines: list[SupplierInvoiceLineIn] | None = None
    tax_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    other_charges: Decimal | None = None
    total_amount: Decimal | None = None
    notes: str | None = None


class SupplierInvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    internal_number: str
    supplier_id: int
    purchase_order_id: int
    invoice_date: date
    due_date: date | None = None
    currency: str
    status: InvoiceStatus
    matching_status: MatchingStatus
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    other_charges: Decimal
    total_amount: Decimal
    payment_status: PaymentStatus
    paid_amount: Decimal
    remaining_amount: Decimal
    requires_approval: bool
    approval_status: InvoiceApprovalStatus | None = None
    approval_notes: str | None = None
    invoice_file_path: str | None = None
    tax_invoice_file_path: str | None = None


class MatchingResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    supplier_invoice_id: int
    match_type: str
    overall_status: MatchOutcome
    total_quantity_variance: Decimal
    total_price_variance: Decimal
    total_amount_variance: Decimal
    variance_percentage: Decimal
    requires_approval: bool
    auto_approved: bool
    rejection_reason: str | None = None
    matching_details: dict
    matched_at: datetime


class MatchingConfigIn(BaseModel):
    supplier_id: int | None = None
    quantity_tolerance_percent: Decimal = Field(ge=0, le=100)
    price_tolerance_percent: Decimal = Field(ge=0, le=100)
    amount_tolerance_percent: Decimal = Field(ge=0, le=100)
    allow_under_invoicing: bool = True
    allow_over_invoicing: bool = False
    require_approval_if_variance: bool = True
    is_active: bool = True
    notes: str | None = None

    def to_input(self) -> MatchingConfigInput:
        return MatchingConfigInput(**self.model_dump(exclude={'supplier_id'}))


class MatchingConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    config_type: MatchingConfigType
    reference_id: int | None = None
    quantity_tolerance_percent: Decimal
    price_tolerance_percent: Decimal
    amount_tolerance_percent: Decimal
    allow_under_invoicing: bool
    allow_over_invoicing: bool
    require_approval_if_variance: bool
    is_active: bool
    notes: str | None = None


class InvoiceApproveBody(BaseModel):
    notes: str | None = None


class InvoiceRejectBody(BaseModel):
    reason: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    supplier_invoice_id: int
    payment_number: str
    payment_date: date
    payment_method: PaymentMethod
    payment_amount: Decimal
    bank_name: str | None = None
    transaction_reference: str | None = None
    payment_proof_path: str | None = None
    notes: str | None = None


class PaymentHistoryOut(BaseModel):
    invoice_id: int
    internal_number: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_count: int
    payments: list[PaymentOut]


# Approvals


class ApprovalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    approval_workflow_id: int
    approval_workflow_step_id: int
    approvable_type: DocumentKind
    approvable_id: int
    status: ApprovalStatus
    assigned_to_user_id: int | None = None
    assigned_to_role: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    comments: str | None = None


class ApprovalRejectBody(BaseModel):
    reason: str
