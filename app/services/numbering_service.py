from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.clock import Clock, system_clock
from app.models import DocumentSequence

logger = logging.getLogger(__name__)

PURCHASE_REQUEST_PREFIX = 'PR'
PURCHASE_ORDER_PREFIX = 'PO'
GOODS_RECEIPT_PREFIX = 'GR'
PUT_AWAY_PREFIX = 'PA'
PICKING_ORDER_PREFIX = 'PK'
SUPPLIER_INVOICE_PREFIX = 'INV'
PAYMENT_PREFIX = 'PAY'

_PAD = 4


def period_prefix(prefix: str, *, clock: Clock = system_clock) -> str:
    return f'{prefix.strip().upper()}-{clock.now():%Y%m}-'


def _ensure_sequence_row(db: Session, key: str) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == 'postgresql':
        stmt = postgresql.insert(DocumentSequence).values(prefix=key, last_value=0)
    elif dialect == 'sqlite':
        stmt = sqlite.insert(DocumentSequence).values(prefix=key, last_value=0)
    else:
        exists = db.execute(select(DocumentSequence.id).where(DocumentSequence.prefix == key)).first()
        if not exists:
            db.add(DocumentSequence(prefix=key, last_value=0))
            db.flush()
        return
    db.execute(stmt.on_conflict_do_nothing(index_elements=['prefix']))


def generate_number(db: Session, *, prefix: str, clock: Clock = system_clock) -> str:
    """Allocate the next number for ``prefix`` in the current month.

    The counter row is locked for the rest of the caller's transaction, so two
    writers in the same period are serialized rather than reading the same
    value.
    """
    key = period_prefix(prefix, clock=clock)
    _ensure_sequence_row(db, key)
    sequence = db.execute(
        select(DocumentSequence).where(DocumentSequence.prefix == key).with_for_update()
    ).scalar_one()
    sequence.last_value = (sequence.last_value or 0) + 1
    sequence.updated_at = clock.now()
    db.flush()
    number = f'{key}{sequence.last_value:0{_PAD}d}'
    logger.debug('Allocated document number %s', number)
    return number
