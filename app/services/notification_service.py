from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_QUEUE_KEY = 'pending_notifications'
_DISPATCHER_KEY = 'notification_dispatcher'


class NotificationEvent(str, Enum):
    APPROVAL_REQUIRED = 'APPROVAL_REQUIRED'
    DOCUMENT_APPROVED = 'DOCUMENT_APPROVED'
    DOCUMENT_REJECTED = 'DOCUMENT_REJECTED'
    APPROVAL_REMINDER = 'APPROVAL_REMINDER'
    LOW_STOCK_ALERT = 'LOW_STOCK_ALERT'


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    message: str
    document_kind: str | None = None
    document_id: int | None = None
    document_number: str | None = None
    recipient_user_id: int | None = None
    recipient_role: str | None = None
    data: dict = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def dispatch(self, notification: Notification) -> None: ...


class LoggingNotificationDispatcher:
    def dispatch(self, notification: Notification) -> None:
        recipient = (
            f'user:{notification.recipient_user_id}'
            if notification.recipient_user_id is not None
            else f'role:{notification.recipient_role}'
        )
        logger.info(
            'Notification %s -> %s (%s %s): %s',
            notification.event.value,
            recipient,
            notification.document_kind or '-',
            notification.document_number or notification.document_id or '-',
            notification.message,
        )


class InMemoryNotificationDispatcher:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def dispatch(self, notification: Notification) -> None:
        self.sent.append(notification)


def queue_notification(db: Session, notification: Notification) -> None:
    # Bind the queue to a real transaction so a rollback always ends it.
    if not db.in_transaction():
        db.begin()
    db.info.setdefault(_QUEUE_KEY, []).append(notification)


def pending_notifications(db: Session) -> list[Notification]:
    return list(db.info.get(_QUEUE_KEY, []))


def use_dispatcher(db: Session, dispatcher: NotificationDispatcher) -> None:
    db.info[_DISPATCHER_KEY] = dispatcher


def _resolve_dispatcher(db: Session) -> NotificationDispatcher:
    dispatcher = db.info.get(_DISPATCHER_KEY)
    if dispatcher is not None:
        return dispatcher
    from app.services.provider_factory import get_notification_dispatcher

    return get_notification_dispatcher()


def dispatch_pending(db: Session) -> int:
    queued = db.info.pop(_QUEUE_KEY, [])
    if not queued:
        return 0
    dispatcher = _resolve_dispatcher(db)
    sent = 0
    for notification in queued:
        try:
            dispatcher.dispatch(notification)
            sent += 1
        except Exception:
            logger.exception('Failed to dispatch %s notification', notification.event.value)
    return sent


@event.listens_for(Session, 'after_commit')
def _dispatch_after_commit(session: Session) -> None:
    dispatch_pending(session)


@event.listens_for(Session, 'after_transaction_end')
def _discard_uncommitted(session: Session, transaction) -> None:
    # after_commit has already drained the queue when the transaction committed.
    if transaction.parent is not None:
        return
    if session.info.pop(_QUEUE_KEY, None):
        logger.debug('Discarded queued notifications of a rolled back transaction')
