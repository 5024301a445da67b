"""
driversign_compliance.auth.deps

FastAPI dependencies for authentication and role checks.

Responsibilities:
- Resolve the bearer token into a `Principal` (401 on any token problem).
- `require_roles(...)`: 403 unless the caller holds every listed role; `admin` passes.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from driversign_compliance.api.deps import settings_dep
from driversign_compliance.auth.jwt import JwtConfig, JwtValidationError, principal_from_token
from driversign_compliance.auth.models import Principal
from driversign_compliance.observability.logging import get_logger
from driversign_compliance.settings import Settings

_bearer = HTTPBearer(auto_error=False)
log = get_logger(__name__)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(settings_dep),
) -> Principal:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return principal_from_token(cfg=JwtConfig.from_settings(settings), token=creds.credentials)
    except JwtValidationError as e:
        log.info("auth_rejected", reason=str(e))
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e


def require_roles(*required: str):
    required_set = frozenset(required)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.is_admin or required_set <= principal.roles:
            return principal
        log.warning(
            "authz_denied",
            subject=principal.subject,
            required=sorted(required_set),
            held=sorted(principal.roles),
        )
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")

    return _dep
