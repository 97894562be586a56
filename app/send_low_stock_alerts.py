from __future__ import annotations

import argparse
import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from app.auth import Role
from app.config import settings
from app.db import SessionLocal
from app.logging_config import configure_logging
from app.services.decimal_utils import format_qty
from app.services.notification_service import Notification, NotificationEvent, queue_notification
from app.services.stock_query_service import LowStockReport, list_low_stock

logger = logging.getLogger(__name__)


def _summary(report: LowStockReport) -> str:
    return (
        f'{len(report.low_stock)} low stock and {len(report.out_of_stock)} out of stock '
        f'location(s) at threshold {format_qty(report.threshold)}'
    )


def queue_low_stock_alert(db: Session, *, threshold: Decimal, dry_run: bool = False) -> LowStockReport:
    report = list_low_stock(db, threshold=threshold)
    if not report.total_issues:
        logger.info('No low stock found at threshold %s', format_qty(report.threshold))
        return report
    logger.info('Low stock check: %s', _summary(report))
    if dry_run:
        return report

    queue_notification(
        db,
        Notification(
            event=NotificationEvent.LOW_STOCK_ALERT,
            message=f'Stock alert: {_summary(report)}.',
            recipient_role=Role.WAREHOUSE.value,
            data={
                'threshold': str(report.threshold),
                'low_stock': [
                    {'sku': e.sku, 'location': e.location_code, 'qty': str(e.qty_on_hand)} for e in report.low_stock
                ],
                'out_of_stock': [{'sku': e.sku, 'location': e.location_code} for e in report.out_of_stock],
            },
        ),
    )
    return report


def main() -> None:
    parser = argparse.ArgumentParser(description='Notify the warehouse team about low and out-of-stock items.')
    parser.add_argument('--threshold', type=Decimal, default=None, help='Quantity at or below which stock is low.')
    parser.add_argument('--dry-run', action='store_true', help='Report without sending notifications.')
    args = parser.parse_args()
    configure_logging(settings.log_level)

    threshold = settings.low_stock_threshold if args.threshold is None else args.threshold
    with SessionLocal() as db:
        report = queue_low_stock_alert(db, threshold=threshold, dry_run=args.dry_run)
        db.commit()

    print(f'Low stock check complete: issues={report.total_issues}, dry_run={args.dry_run}')


if __name__ == '__main__':
    main()
