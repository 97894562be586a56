from __future__ import annotations

import logging
from collections.abc import Mapping

from fastapi import FastAPI, Request

from app.auth import Principal
from app.config import settings

logger = logging.getLogger(__name__)

USER_ID_HEADER = 'x-user-id'
USERNAME_HEADER = 'x-user-name'
ROLES_HEADER = 'x-user-roles'
PERMISSIONS_HEADER = 'x-user-permissions'
DEPARTMENT_HEADER = 'x-department-id'


def _split(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(',') if part.strip())


def _optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value.strip())


def principal_from_headers(headers: Mapping[str, str]) -> Principal | None:
    """Build the caller identity forwarded by the upstream gateway.

    Returns None when the user id header is missing or malformed.
    """
    raw_id = headers.get(USER_ID_HEADER)
    if not raw_id:
        return None
    try:
        user_id = int(raw_id.strip())
        department_id = _optional_int(headers.get(DEPARTMENT_HEADER))
    except ValueError:
        logger.warning('Ignoring malformed identity headers (user id %r)', raw_id)
        return None
    return Principal(
        id=user_id,
        username=headers.get(USERNAME_HEADER) or f'user-{user_id}',
        roles=_split(headers.get(ROLES_HEADER)),
        permissions=_split(headers.get(PERMISSIONS_HEADER)),
        department_id=department_id,
    )


def install_principal_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def principal_middleware(request: Request, call_next):
        request.state.principal = principal_from_headers(request.headers) if settings.trust_identity_headers else None
        return await call_next(request)
