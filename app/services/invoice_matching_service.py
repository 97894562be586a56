from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import AuthorizationContext, Role
from app.clock import Clock, system_clock
from app.errors import BusinessRuleError, ForbiddenError, ValidationError
from app.models import (
    GoodsReceiptLine,
    InvoiceApprovalStatus,
    InvoiceMatchingConfig,
    InvoiceMatchingResult,
    InvoiceStatus,
    MatchingConfigType,
    MatchingStatus,
    MatchOutcome,
    PurchaseOrderLine,
    SupplierInvoice,
    SupplierInvoiceLine,
)
from app.services import master_data_service, supplier_invoice_service
from app.services.decimal_utils import format_qty, percent_of, quantize_money, ratio_percent, round_percent, to_decimal
from app.services.notification_service import Notification, NotificationEvent, queue_notification

logger = logging.getLogger(__name__)

MATCHABLE_STATUSES = {InvoiceStatus.SUBMITTED, InvoiceStatus.VARIANCE}
_MATCH_ROLES = (Role.FINANCE, Role.SUPER_ADMIN)
CONFIGURE_PERMISSION = 'invoices.tolerance.configure'


@dataclass(frozen=True)
class Tolerances:
    quantity: Decimal = Decimal('0')
    price: Decimal = Decimal('0')
    amount: Decimal = Decimal('0')
    allow_under_invoicing: bool = True

    @classmethod
    def from_config(cls, config: InvoiceMatchingConfig) -> Tolerances:
        return cls(
            quantity=to_decimal(config.quantity_tolerance_percent),
            price=to_decimal(config.price_tolerance_percent),
            amount=to_decimal(config.amount_tolerance_percent),
            allow_under_invoicing=config.allow_under_invoicing,
        )


@dataclass(frozen=True)
class LineMatch:
    line_number: int
    status: MatchingStatus
    within_tolerance: bool
    expected_qty: Decimal
    invoiced_qty: Decimal
    qty_variance: Decimal
    qty_variance_percent: Decimal
    expected_price: Decimal
    invoiced_price: Decimal
    price_variance: Decimal
    price_variance_percent: Decimal
    expected_amount: Decimal
    invoiced_amount: Decimal
    amount_variance: Decimal
    amount_variance_percent: Decimal

    @property
    def exact(self) -> bool:
        return self.qty_variance == 0 and self.price_variance == 0 and self.amount_variance == 0

    def variances(self) -> dict:
        return {
            'quantity': {
                'expected': str(self.expected_qty),
                'invoiced': str(self.invoiced_qty),
                'variance': str(self.qty_variance),
                'variance_pct': str(self.qty_variance_percent),
            },
            'price': {
                'expected': str(self.expected_price),
                'invoiced': str(self.invoiced_price),
                'variance': str(self.price_variance),
                'variance_pct': str(self.price_variance_percent),
            },
            'amount': {
                'expected': str(self.expected_amount),
                'invoiced': str(self.invoiced_amount),
                'variance': str(self.amount_variance),
                'variance_pct': str(self.amount_variance_percent),
            },
        }


def match_line(
    *,
    line_number: int,
    invoiced_qty,
    unit_price,
    line_total,
    received_qty,
    po_unit_price,
    tolerances: Tolerances,
) -> LineMatch:
    """Compare one invoice line against its receipt and order line.

    Classification is first-match-wins: over-invoicing, then quantity and price
    breaches (both at once give BOTH_VARIANCE), then an amount breach which only
    clears ``within_tolerance``.
    """
    invoiced_qty = to_decimal(invoiced_qty)
    expected_qty = to_decimal(received_qty)
    invoiced_price = quantize_money(unit_price)
    expected_price = quantize_money(po_unit_price)
    invoiced_amount = quantize_money(line_total)
    expected_amount = quantize_money(expected_qty * expected_price)

    qty_variance = invoiced_qty - expected_qty
    price_variance = invoiced_price - expected_price
    amount_variance = invoiced_amount - expected_amount
    # Tolerances are checked against the unrounded ratios; rounding is for storage only.
    qty_pct = ratio_percent(qty_variance, expected_qty)
    price_pct = ratio_percent(price_variance, expected_price)
    amount_pct = ratio_percent(amount_variance, expected_amount)

    if qty_variance > 0:
        status = MatchingStatus.OVER_INVOICED
        within = False
    else:
        qty_flag = abs(qty_pct) > tolerances.quantity or (qty_variance < 0 and not tolerances.allow_under_invoicing)
        price_flag = abs(price_pct) > tolerances.price
        if qty_flag and price_flag:
            status = MatchingStatus.BOTH_VARIANCE
        elif qty_flag:
            status = MatchingStatus.QTY_VARIANCE
        elif price_flag:
            status = MatchingStatus.PRICE_VARIANCE
        else:
            status = MatchingStatus.MATCHED
        within = not (qty_flag or price_flag) and abs(amount_pct) <= tolerances.amount

    return LineMatch(
        line_number=line_number,
        status=status,
        within_tolerance=within,
        expected_qty=expected_qty,
        invoiced_qty=invoiced_qty,
        qty_variance=qty_variance,
        qty_variance_percent=round_percent(qty_pct),
        expected_price=expected_price,
        invoiced_price=invoiced_price,
        price_variance=price_variance,
        price_variance_percent=round_percent(price_pct),
        expected_amount=expected_amount,
        invoiced_amount=invoiced_amount,
        amount_variance=amount_variance,
        amount_variance_percent=round_percent(amount_pct),
    )


def summarize(matches: list[LineMatch]) -> dict:
    total = len(matches)
    matched = sum(1 for m in matches if m.status == MatchingStatus.MATCHED and m.within_tolerance)
    over = sum(1 for m in matches if m.status == MatchingStatus.OVER_INVOICED)
    return {
        'total_lines': total,
        'matched_lines': matched,
        'variance_lines': total - matched - over,
        'over_invoiced_lines': over,
        'match_rate': str(round_percent(Decimal(matched) / Decimal(total) * 100)) if total else '0',
    }


def get_or_create_global_config(db: Session) -> InvoiceMatchingConfig:
    config = db.execute(
        select(InvoiceMatchingConfig)
        .where(
            InvoiceMatchingConfig.config_type == MatchingConfigType.GLOBAL,
            InvoiceMatchingConfig.is_active.is_(True),
        )
        .order_by(InvoiceMatchingConfig.id.asc())
        .limit(1)
    ).scalar_one_or_none()
    if config:
        return config
    logger.warning('No active GLOBAL matching config found, creating a zero-tolerance default')
    config = InvoiceMatchingConfig(
        config_type=MatchingConfigType.GLOBAL,
        reference_id=None,
        quantity_tolerance_percent=Decimal('0'),
        price_tolerance_percent=Decimal('0'),
        amount_tolerance_percent=Decimal('0'),
        allow_under_invoicing=True,
        allow_over_invoicing=False,
        require_approval_if_variance=True,
        is_active=True,
    )
    db.add(config)
    db.flush()
    return config


def _active_supplier_config(db: Session, supplier_id: int) -> InvoiceMatchingConfig | None:
    return db.execute(
        select(InvoiceMatchingConfig)
        .where(
            InvoiceMatchingConfig.config_type == MatchingConfigType.SUPPLIER,
            InvoiceMatchingConfig.reference_id == supplier_id,
            InvoiceMatchingConfig.is_active.is_(True),
        )
        .order_by(InvoiceMatchingConfig.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def resolve_config(db: Session, *, supplier_id: int) -> InvoiceMatchingConfig:
    return _active_supplier_config(db, supplier_id) or get_or_create_global_config(db)


@dataclass(frozen=True)
class MatchingConfigInput:
    quantity_tolerance_percent: Decimal
    price_tolerance_percent: Decimal
    amount_tolerance_percent: Decimal
    allow_under_invoicing: bool = True
    allow_over_invoicing: bool = False
    require_approval_if_variance: bool = True
    is_active: bool = True
    notes: str | None = None


def get_config(db: Session, *, supplier_id: int | None = None) -> InvoiceMatchingConfig | None:
    """Return the active GLOBAL config, or the active config of one supplier (None if it has none)."""
    if supplier_id is None:
        return get_or_create_global_config(db)
    master_data_service.get_supplier(db, supplier_id)
    return _active_supplier_config(db, supplier_id)


def upsert_config(
    db: Session,
    *,
    actor: AuthorizationContext,
    values: MatchingConfigInput,
    supplier_id: int | None = None,
) -> InvoiceMatchingConfig:
    if not actor.has_permission(CONFIGURE_PERMISSION):
        raise ForbiddenError('You do not have permission to configure matching tolerances.')
    errors: dict[str, str] = {}
    for field in ('quantity_tolerance_percent', 'price_tolerance_percent', 'amount_tolerance_percent'):
        value = to_decimal(getattr(values, field), default=Decimal('-1'))
        if value < 0 or value > 100:
            errors[field] = 'Tolerance must be between 0 and 100.'
    if errors:
        raise ValidationError(errors)

    if supplier_id is None:
        config_type, reference_id = MatchingConfigType.GLOBAL, None
    else:
        master_data_service.get_supplier(db, supplier_id)
        config_type, reference_id = MatchingConfigType.SUPPLIER, supplier_id

    stmt = select(InvoiceMatchingConfig).where(InvoiceMatchingConfig.config_type == config_type)
    if reference_id is not None:
        stmt = stmt.where(InvoiceMatchingConfig.reference_id == reference_id)
    config = db.execute(
        stmt.order_by(InvoiceMatchingConfig.is_active.desc(), InvoiceMatchingConfig.id.desc())
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()
    if config is None:
        config = InvoiceMatchingConfig(config_type=config_type, reference_id=reference_id)
        db.add(config)

    config.quantity_tolerance_percent = to_decimal(values.quantity_tolerance_percent)
    config.price_tolerance_percent = to_decimal(values.price_tolerance_percent)
    config.amount_tolerance_percent = to_decimal(values.amount_tolerance_percent)
    config.allow_under_invoicing = values.allow_under_invoicing
    config.allow_over_invoicing = values.allow_over_invoicing
    config.require_approval_if_variance = values.require_approval_if_variance
    config.is_active = values.is_active
    config.notes = values.notes
    db.flush()
    logger.info(
        'Matching config %s%s updated by user %s',
        config_type.value,
        f' supplier={reference_id}' if reference_id is not None else '',
        actor.id,
    )
    return config


def list_results(db: Session, *, invoice_id: int) -> list[InvoiceMatchingResult]:
    return db.execute(
        select(InvoiceMatchingResult)
        .where(InvoiceMatchingResult.supplier_invoice_id == invoice_id)
        .order_by(InvoiceMatchingResult.id.desc())
    ).scalars().all()


def get_latest_result(db: Session, *, invoice_id: int) -> InvoiceMatchingResult | None:
    results = list_results(db, invoice_id=invoice_id)
    return results[0] if results else None


def _load_links(
    db: Session, *, invoice: SupplierInvoice, lines: list[SupplierInvoiceLine]
) -> list[tuple[SupplierInvoiceLine, PurchaseOrderLine, GoodsReceiptLine]]:
    linked = []
    for index, line in enumerate(lines):
        po_line = db.get(PurchaseOrderLine, line.purchase_order_line_id) if line.purchase_order_line_id else None
        if not po_line or po_line.purchase_order_id != invoice.purchase_order_id:
            raise ValidationError.single(
                f'lines.{index}.purchase_order_line_id',
                f'Invoice line {line.line_number} is not linked to a line of the purchase order.',
            )
        gr_line = db.get(GoodsReceiptLine, line.goods_receipt_line_id) if line.goods_receipt_line_id else None
        if not gr_line:
            raise ValidationError.single(
                f'lines.{index}.goods_receipt_line_id',
                f'Invoice line {line.line_number} is not linked to a goods receipt line.',
            )
        linked.append((line, po_line, gr_line))
    return linked


def _line_detail(db: Session, line: SupplierInvoiceLine, match: LineMatch) -> dict:
    item = master_data_service.get_item(db, line.item_id)
    return {
        'line_number': match.line_number,
        'item_sku': item.sku,
        'item_name': item.name,
        'status': match.status.value,
        'within_tolerance': match.within_tolerance,
        'variances': match.variances(),
    }


def _auto_approval_note(*, all_exact: bool, any_breach: bool) -> str:
    if all_exact:
        return 'Auto-approved: exact three-way match.'
    if any_breach:
        return 'Auto-approved: variance approval is not required for this supplier.'
    return 'Auto-approved: variances within tolerance.'


def perform_three_way_match(
    db: Session,
    *,
    actor: AuthorizationContext,
    invoice_id: int,
    clock: Clock = system_clock,
) -> InvoiceMatchingResult:
    if not actor.has_any_role(_MATCH_ROLES):
        raise ForbiddenError('Only finance can run invoice matching.')
    invoice = supplier_invoice_service.get_supplier_invoice(db, invoice_id, for_update=True)
    if invoice.status not in MATCHABLE_STATUSES:
        raise ValidationError.single('status', 'Only SUBMITTED or VARIANCE invoices can be matched.')
    lines = supplier_invoice_service.list_lines(db, invoice_id=invoice.id)
    if not lines:
        raise ValidationError.single('lines', 'Invoice has no lines to match.')

    config = resolve_config(db, supplier_id=invoice.supplier_id)
    tolerances = Tolerances.from_config(config)

    # Everything is computed before the first write so an over-invoiced line leaves no trace.
    matches: list[tuple[SupplierInvoiceLine, LineMatch]] = []
    for line, po_line, gr_line in _load_links(db, invoice=invoice, lines=lines):
        match = match_line(
            line_number=line.line_number,
            invoiced_qty=line.invoiced_qty,
            unit_price=line.unit_price,
            line_total=line.line_total,
            received_qty=gr_line.received_quantity,
            po_unit_price=po_line.unit_price,
            tolerances=tolerances,
        )
        if match.status == MatchingStatus.OVER_INVOICED:
            raise BusinessRuleError(
                {f'lines.{line.line_number - 1}.invoiced_qty': 'Over-invoicing is not allowed.'},
                message=(
                    f'Over-invoicing detected on line {line.line_number}. '
                    f'Invoice qty ({format_qty(match.invoiced_qty)}) exceeds GR qty '
                    f'({format_qty(match.expected_qty)}). This is not allowed.'
                ),
            )
        matches.append((line, match))

    all_exact = all(match.exact for _, match in matches)
    any_breach = any(not match.within_tolerance for _, match in matches)
    requires_approval = any_breach and config.require_approval_if_variance
    now = clock.now()

    for line, match in matches:
        line.matching_status = match.status
        line.expected_qty = match.expected_qty
        line.qty_variance = match.qty_variance
        line.qty_variance_percent = match.qty_variance_percent
        line.expected_price = match.expected_price
        line.price_variance = match.price_variance
        line.price_variance_percent = match.price_variance_percent
        line.expected_amount = match.expected_amount
        line.amount_variance = match.amount_variance
        line.amount_variance_percent = match.amount_variance_percent

    line_matches = [match for _, match in matches]
    total_expected = sum((m.expected_amount for m in line_matches), Decimal('0'))
    total_amount_variance = sum((m.amount_variance for m in line_matches), Decimal('0'))
    result = InvoiceMatchingResult(
        supplier_invoice_id=invoice.id,
        match_type='THREE_WAY',
        overall_status=MatchOutcome.VARIANCE if requires_approval else MatchOutcome.MATCHED,
        total_quantity_variance=sum((m.qty_variance for m in line_matches), Decimal('0')),
        total_price_variance=sum((m.price_variance for m in line_matches), Decimal('0')),
        total_amount_variance=total_amount_variance,
        variance_percentage=percent_of(total_amount_variance, total_expected),
        config_id=config.id,
        quantity_tolerance_applied=tolerances.quantity,
        price_tolerance_applied=tolerances.price,
        amount_tolerance_applied=tolerances.amount,
        requires_approval=requires_approval,
        auto_approved=not requires_approval,
        matching_details={
            'lines': [_line_detail(db, line, match) for line, match in matches],
            'summary': summarize(line_matches),
        },
        matched_by_user_id=actor.id,
        matched_at=now,
    )
    db.add(result)

    invoice.matching_status = MatchingStatus.MISMATCHED if any_breach else MatchingStatus.MATCHED
    invoice.matched_at = now
    invoice.matched_by_user_id = actor.id
    invoice.updated_by_user_id = actor.id
    invoice.updated_at = now
    if requires_approval:
        invoice.status = InvoiceStatus.VARIANCE
        invoice.requires_approval = True
        invoice.approval_status = InvoiceApprovalStatus.PENDING
        queue_notification(
            db,
            Notification(
                event=NotificationEvent.APPROVAL_REQUIRED,
                message=f'Invoice {invoice.internal_number} has matching variances and needs approval.',
                document_kind=invoice.document_kind.value,
                document_id=invoice.id,
                document_number=invoice.internal_number,
                recipient_role=Role.FINANCE.value,
                data={'variance_percentage': str(result.variance_percentage)},
            ),
        )
    else:
        invoice.status = InvoiceStatus.APPROVED
        invoice.requires_approval = False
        invoice.approval_status = InvoiceApprovalStatus.APPROVED
        invoice.approved_at = now
        invoice.approval_notes = _auto_approval_note(all_exact=all_exact, any_breach=any_breach)
    db.flush()
    logger.info(
        'Three-way match for %s: %s (%s lines)',
        invoice.internal_number,
        result.overall_status.value,
        len(line_matches),
    )
    return result
