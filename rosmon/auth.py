"""Token verification

Tokens are issued by the external auth service and carry the caller's tenant
and role. With no JWT secret configured auth is disabled and every caller
acts as admin.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import HTTPException, Request

from rosmon.config import get_settings

logger = logging.getLogger(__name__)

ADMIN_TENANT = "admin"


@dataclass(frozen=True)
class AuthContext:
    subject: str
    tenant_id: Optional[str]
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin" or self.tenant_id == ADMIN_TENANT

    def can_access(self, tenant_id: str) -> bool:
        return self.is_admin or tenant_id == self.tenant_id


ANONYMOUS_ADMIN = AuthContext(subject="anonymous", tenant_id=None, role="admin")


def verify_token(token: str) -> dict | None:
    """Verify JWT token"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return payload
    except jwt.PyJWTError:
        return None


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get("auth_token")


async def verify_auth(request: Request) -> AuthContext:
    settings = get_settings()
    if not settings.auth_enabled:
        return ANONYMOUS_ADMIN

    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    context = AuthContext(
        subject=str(payload.get("sub", "unknown")),
        tenant_id=payload.get("tenant_id"),
        role=payload.get("role", "user"),
    )
    if not context.is_admin and not context.tenant_id:
        logger.warning(f"Token without tenant for {context.subject}")
        raise HTTPException(status_code=403, detail="Token carries no tenant")

    return context
