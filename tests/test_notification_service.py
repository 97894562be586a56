from __future__ import annotations

import unittest

from app.services.notification_service import (
    LoggingNotificationDispatcher,
    Notification,
    NotificationEvent,
    dispatch_pending,
    pending_notifications,
    queue_notification,
    use_dispatcher,
)
from ledger_fixtures import make_session


def _note(message: str = 'PO-202405-0001 needs approval') -> Notification:
    return Notification(
        event=NotificationEvent.APPROVAL_REQUIRED,
        message=message,
        document_kind='PURCHASE_ORDER',
        document_id=1,
        document_number='PO-202405-0001',
        recipient_role='finance',
    )


class _FlakyDispatcher:
    def __init__(self) -> None:
        self.sent = []

    def dispatch(self, notification: Notification) -> None:
        if notification.message == 'boom':
            raise RuntimeError('smtp down')
        self.sent.append(notification)


class NotificationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.dispatcher = _FlakyDispatcher()
        use_dispatcher(self.db, self.dispatcher)

    def tearDown(self) -> None:
        self.db.close()

    def test_notifications_are_sent_after_commit(self) -> None:
        queue_notification(self.db, _note())
        self.assertEqual(self.dispatcher.sent, [])
        self.db.commit()
        self.assertEqual([n.message for n in self.dispatcher.sent], ['PO-202405-0001 needs approval'])
        self.assertEqual(pending_notifications(self.db), [])

    def test_rollback_discards_queued_notifications(self) -> None:
        queue_notification(self.db, _note())
        self.db.rollback()
        self.db.commit()
        self.assertEqual(self.dispatcher.sent, [])
        self.assertEqual(pending_notifications(self.db), [])

    def test_closing_without_commit_discards_queued_notifications(self) -> None:
        queue_notification(self.db, _note())
        self.db.close()
        self.db.commit()
        self.assertEqual(self.dispatcher.sent, [])

    def test_notifications_queued_after_a_rollback_are_still_sent(self) -> None:
        queue_notification(self.db, _note('dropped'))
        self.db.rollback()
        queue_notification(self.db, _note('kept'))
        self.db.commit()
        self.assertEqual([n.message for n in self.dispatcher.sent], ['kept'])

    def test_failing_notification_does_not_block_the_rest(self) -> None:
        queue_notification(self.db, _note('boom'))
        queue_notification(self.db, _note('second'))
        with self.assertLogs('app.services.notification_service', level='ERROR'):
            sent = dispatch_pending(self.db)
        self.assertEqual(sent, 1)
        self.assertEqual([n.message for n in self.dispatcher.sent], ['second'])

    def test_logging_dispatcher_names_recipient(self) -> None:
        with self.assertLogs('app.services.notification_service', level='INFO') as logs:
            LoggingNotificationDispatcher().dispatch(_note())
        self.assertIn('APPROVAL_REQUIRED -> role:finance', logs.output[0])


if __name__ == '__main__':
    unittest.main()
