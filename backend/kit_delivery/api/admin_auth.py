import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.security.utils import get_authorization_scheme_param

from kit_delivery.infra.logging import update_log_context
from kit_delivery.infra.metrics import metrics
from kit_delivery.settings import settings

logger = logging.getLogger(__name__)


class AdminAuthException(HTTPException):
    def __init__(self, *, reason: str, detail: str = "Invalid authentication") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Basic"},
        )
        self.reason = reason


class AdminRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    VIEWER = "viewer"


class AdminPermission(str, Enum):
    VIEW = "view"
    MANAGE_ZONES = "manage_zones"


ROLE_PERMISSIONS: dict[AdminRole, set[AdminPermission]] = {
    AdminRole.OWNER: {AdminPermission.VIEW, AdminPermission.MANAGE_ZONES},
    AdminRole.ADMIN: {AdminPermission.VIEW, AdminPermission.MANAGE_ZONES},
    AdminRole.VIEWER: {AdminPermission.VIEW},
}


@dataclass
class AdminIdentity:
    username: str
    role: AdminRole


@dataclass
class _ConfiguredUser:
    username: str
    password: str
    role: AdminRole


security = HTTPBasic(auto_error=False)


def _configured_users() -> list[_ConfiguredUser]:
    configured: list[_ConfiguredUser] = []
    if settings.owner_basic_username and settings.owner_basic_password:
        configured.append(
            _ConfiguredUser(
                username=settings.owner_basic_username,
                password=settings.owner_basic_password,
                role=AdminRole.OWNER,
            )
        )
    if settings.admin_basic_username and settings.admin_basic_password:
        configured.append(
            _ConfiguredUser(
                username=settings.admin_basic_username,
                password=settings.admin_basic_password,
                role=AdminRole.ADMIN,
            )
        )
    if settings.viewer_basic_username and settings.viewer_basic_password:
        configured.append(
            _ConfiguredUser(
                username=settings.viewer_basic_username,
                password=settings.viewer_basic_password,
                role=AdminRole.VIEWER,
            )
        )
    return configured


def _log_admin_auth_failure(
    request: Request,
    *,
    reason: str,
    credentials: HTTPBasicCredentials | None,
) -> None:
    authorization_header = request.headers.get("Authorization")
    scheme, _ = get_authorization_scheme_param(authorization_header)
    payload = {
        "reason": reason,
        "path": request.url.path,
        "method": request.method,
        "request_id": getattr(request.state, "request_id", None),
        "has_authorization_header": authorization_header is not None,
        "auth_scheme": scheme.lower() if scheme else None,
    }
    if credentials and credentials.username:
        payload["presented_username"] = credentials.username
    logger.warning("admin_auth_failed", extra={"extra": payload})
    metrics.record_auth_failure("admin", reason)


def _authenticate_credentials(credentials: HTTPBasicCredentials | None) -> AdminIdentity:
    if not settings.admin_basic_auth_enabled:
        raise AdminAuthException(reason="basic_auth_disabled")
    configured = _configured_users()
    if not configured:
        logger.warning(
            "admin_auth_unconfigured",
            extra={
                "extra": {
                    "owner_configured": bool(settings.owner_basic_username and settings.owner_basic_password),
                    "admin_configured": bool(settings.admin_basic_username and settings.admin_basic_password),
                    "viewer_configured": bool(settings.viewer_basic_username and settings.viewer_basic_password),
                }
            },
        )
        raise AdminAuthException(reason="unconfigured_credentials")

    if not credentials:
        raise AdminAuthException(reason="missing_credentials")

    for user in configured:
        if secrets.compare_digest(credentials.username, user.username) and secrets.compare_digest(
            credentials.password, user.password
        ):
            return AdminIdentity(username=user.username, role=user.role)

    raise AdminAuthException(reason="invalid_credentials")


def _assert_permissions(identity: AdminIdentity, required: Iterable[AdminPermission]) -> None:
    granted = ROLE_PERMISSIONS.get(identity.role, set())
    missing = set(required) - granted
    if missing:
        logger.info(
            "admin_permission_denied",
            extra={
                "extra": {
                    "role": identity.role.value,
                    "missing": sorted(permission.value for permission in missing),
                }
            },
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


async def get_admin_identity(
    request: Request, credentials: HTTPBasicCredentials | None = Depends(security)
) -> AdminIdentity:
    cached: AdminIdentity | None = getattr(request.state, "admin_identity", None)
    if cached:
        return cached
    try:
        identity = _authenticate_credentials(credentials)
    except AdminAuthException as exc:
        _log_admin_auth_failure(request, reason=exc.reason, credentials=credentials)
        raise
    request.state.admin_identity = identity
    update_log_context(role=identity.role.value)
    return identity


def require_permissions(*permissions: AdminPermission):
    async def _require(identity: AdminIdentity = Depends(get_admin_identity)) -> AdminIdentity:
        _assert_permissions(identity, permissions or [AdminPermission.VIEW])
        return identity

    return _require


async def require_viewer(
    identity: AdminIdentity = Depends(require_permissions(AdminPermission.VIEW)),
) -> AdminIdentity:
    return identity


async def require_zone_manager(
    identity: AdminIdentity = Depends(require_permissions(AdminPermission.MANAGE_ZONES)),
) -> AdminIdentity:
    return identity
