from __future__ import annotations

import argparse
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.clock import Clock, system_clock
from app.config import settings
from app.db import SessionLocal
from app.logging_config import configure_logging
from app.models import Approval
from app.services.approval_workflow_service import list_overdue_pending_approvals, load_approvable
from app.services.notification_service import Notification, NotificationEvent, queue_notification

logger = logging.getLogger(__name__)


def queue_approval_reminders(
    db: Session,
    *,
    days: int,
    dry_run: bool = False,
    clock: Clock = system_clock,
) -> list[Approval]:
    cutoff = clock.now() - timedelta(days=days)
    overdue = list_overdue_pending_approvals(db, cutoff=cutoff)
    logger.info('Found %s approval(s) pending for more than %s day(s)', len(overdue), days)
    if dry_run:
        return overdue

    for approval in overdue:
        document = load_approvable(db, approval)
        queue_notification(
            db,
            Notification(
                event=NotificationEvent.APPROVAL_REMINDER,
                message=f'{document.document_number} is still waiting for your approval.',
                document_kind=approval.approvable_type.value,
                document_id=approval.approvable_id,
                document_number=document.document_number,
                recipient_user_id=approval.assigned_to_user_id,
                recipient_role=approval.assigned_to_role,
                data={'approval_id': approval.id, 'pending_since': approval.created_at.isoformat()},
            ),
        )
    return overdue


def main() -> None:
    parser = argparse.ArgumentParser(description='Remind approvers about approvals left pending too long.')
    parser.add_argument('--days', type=int, default=None, help='Minimum age in days of a pending approval.')
    parser.add_argument('--dry-run', action='store_true', help='Report without sending reminders.')
    args = parser.parse_args()
    configure_logging(settings.log_level)

    if not settings.approval_reminders_enabled:
        print('Approval reminders are disabled.')
        return

    days = settings.approval_reminder_days if args.days is None else args.days
    with SessionLocal() as db:
        overdue = queue_approval_reminders(db, days=days, dry_run=args.dry_run)
        db.commit()

    print(f'Approval reminders complete: overdue={len(overdue)}, dry_run={args.dry_run}')


if __name__ == '__main__':
    main()
