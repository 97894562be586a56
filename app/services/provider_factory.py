from __future__ import annotations

from functools import lru_cache

from app.config import settings
from app.services.file_storage import LocalFileStorage
from app.services.notification_service import InMemoryNotificationDispatcher, LoggingNotificationDispatcher


@lru_cache(maxsize=1)
def get_notification_dispatcher():
    dispatcher = settings.notification_dispatcher.strip().lower()
    if dispatcher == 'memory':
        return InMemoryNotificationDispatcher()
    return LoggingNotificationDispatcher()


@lru_cache(maxsize=1)
def get_file_storage():
    return LocalFileStorage(settings.storage_root)
