from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

from app.errors import ValidationError

logger = logging.getLogger(__name__)

# Files written in the current transaction, removed again unless it commits.
_STORED_KEY = 'stored_files'
# Files superseded in the current transaction, removed only once it commits.
_RETIRED_KEY = 'retired_files'


class FileStorage(Protocol):
    def store(self, content: bytes, path: str) -> str: ...

    def delete(self, path: str) -> None: ...

    def exists(self, path: str) -> bool: ...


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes


class LocalFileStorage:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError('Storage path escapes the storage root')
        return target

    def store(self, content: bytes, path: str) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.debug('Stored %s bytes at %s', len(content), path)
        return path

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.exists():
            target.unlink()

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()


def file_extension(filename: str) -> str:
    return PurePosixPath(filename or '').suffix.lstrip('.').lower()


def validate_upload(field: str, upload: UploadedFile, *, max_kb: int, extensions: list[str]) -> str:
    """Check size and extension of an upload and return its normalized extension."""
    if len(upload.content) > max_kb * 1024:
        raise ValidationError.single(field, f'File size exceeds maximum allowed size of {max_kb}KB')
    extension = file_extension(upload.filename)
    allowed = [ext.lower() for ext in extensions]
    if extension not in allowed:
        raise ValidationError.single(
            field, f"File type '{extension or '-'}' is not allowed. Allowed: {', '.join(allowed)}"
        )
    return extension


def store_in_transaction(db: Session, storage: FileStorage, content: bytes, path: str) -> str:
    """Store a file whose lifetime follows the session's transaction.

    If the transaction ends without committing (rollback, failed commit or
    session close) the file is deleted again.
    """
    if not db.in_transaction():
        db.begin()
    stored = storage.store(content, path)
    db.info.setdefault(_STORED_KEY, []).append((storage, stored))
    return stored


def delete_after_commit(db: Session, storage: FileStorage, path: str) -> None:
    if not db.in_transaction():
        db.begin()
    db.info.setdefault(_RETIRED_KEY, []).append((storage, path))


def _delete_all(entries, reason: str) -> None:
    for storage, path in entries:
        try:
            storage.delete(path)
        except Exception:
            logger.exception('Failed to delete %s %s', path, reason)
        else:
            logger.info('Deleted %s %s', path, reason)


@event.listens_for(Session, 'after_commit')
def _settle_files_after_commit(session: Session) -> None:
    session.info.pop(_STORED_KEY, None)
    _delete_all(session.info.pop(_RETIRED_KEY, []), 'after it was replaced')


@event.listens_for(Session, 'after_transaction_end')
def _remove_uncommitted_files(session: Session, transaction) -> None:
    if transaction.parent is not None:
        return
    session.info.pop(_RETIRED_KEY, None)
    _delete_all(session.info.pop(_STORED_KEY, []), 'after the transaction was rolled back')
