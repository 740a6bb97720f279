"""Tenant resolution for API routes.

The tenant id ends up in store queries and in tenant data directory names,
so it is validated here once and trusted by everything downstream.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.logging import logger


security = HTTPBearer(auto_error=False)

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
SUPPORTED_ROLES = {"employee", "manager", "admin"}


@dataclass
class TenantContext:
    tenant_id: str
    authenticated: bool
    actor: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _checked_tenant_id(value: str) -> str:
    tenant_id = value.strip()
    if not TENANT_ID_PATTERN.match(tenant_id) or ".." in tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid tenant id '{value}'",
        )
    return tenant_id


def _normalize_role(value: str | None) -> str:
    role = (value or "").strip().lower()
    if not role:
        return "admin"
    if role not in SUPPORTED_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported role '{value}'. Expected one of: {sorted(SUPPORTED_ROLES)}",
        )
    return role


def _parse_tenant_tokens(raw: str) -> Dict[str, str]:
    """Parse `token:tenant` comma-separated values from env."""
    mapping: Dict[str, str] = {}
    for segment in raw.split(","):
        token, sep, tenant = segment.strip().partition(":")
        if not segment.strip():
            continue
        if not sep:
            logger.warning("Ignoring malformed tenant token mapping entry", entry=segment.strip())
            continue
        if token.strip() and tenant.strip():
            mapping[token.strip()] = tenant.strip()
    return mapping


def _tenant_from_token(credentials: HTTPAuthorizationCredentials | None, raw_tokens: str) -> str:
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
        )
    tenant_id = _parse_tenant_tokens(raw_tokens).get(credentials.credentials.strip())
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid bearer token",
        )
    return tenant_id


def get_tenant_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    x_actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
) -> TenantContext:
    """Resolve the request's tenant from the bearer token or the X-Tenant-ID header."""
    settings = get_settings()
    role = _normalize_role(x_actor_role)

    if not settings.auth_enabled:
        requested = (x_tenant_id or "").strip() or settings.default_tenant_id
        return TenantContext(
            tenant_id=_checked_tenant_id(requested),
            authenticated=False,
            actor="anonymous",
            role=role,
        )

    tenant_id = _tenant_from_token(credentials, settings.tenant_tokens)
    if x_tenant_id and x_tenant_id.strip() and x_tenant_id.strip() != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token tenant mismatch",
        )

    return TenantContext(
        tenant_id=_checked_tenant_id(tenant_id),
        authenticated=True,
        actor="token",
        role=role,
    )


def require_roles(*allowed_roles: str):
    """Dependency factory that enforces role-based access control."""
    allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not allowed:
        raise ValueError("At least one role is required")

    def _guard(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if context.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{context.role}' not permitted for this operation",
            )
        return context

    return _guard
