from __future__ import annotations

import argparse
import logging

from sqlalchemy.orm import Session

from app.clock import Clock, system_clock
from app.config import settings
from app.db import SessionLocal
from app.logging_config import configure_logging
from app.services.stock_query_service import BalanceDrift, find_balance_drift, rebuild_stock_balances

logger = logging.getLogger(__name__)


def sync_balances(db: Session, *, dry_run: bool = False, clock: Clock = system_clock) -> tuple[list[BalanceDrift], int]:
    drift = find_balance_drift(db)
    for row in drift:
        logger.warning(
            'Balance drift at location=%s item=%s uom=%s: cached=%s ledger=%s',
            row.location_id,
            row.item_id,
            row.uom_id,
            row.cached_qty,
            row.ledger_qty,
        )
    if dry_run:
        return drift, 0
    return drift, rebuild_stock_balances(db, clock=clock)


def main() -> None:
    parser = argparse.ArgumentParser(description='Rebuild the stock balance cache from the movement ledger.')
    parser.add_argument('--dry-run', action='store_true', help='Report drift without rewriting balances.')
    args = parser.parse_args()
    configure_logging(settings.log_level)

    with SessionLocal() as db:
        drift, written = sync_balances(db, dry_run=args.dry_run)
        if not args.dry_run:
            db.commit()

    print(f'Stock balance sync complete: drifted={len(drift)}, rows_written={written}, dry_run={args.dry_run}')


if __name__ == '__main__':
    main()
