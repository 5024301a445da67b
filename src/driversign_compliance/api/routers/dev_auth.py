"""
driversign_compliance.api.routers.dev_auth

Token minting for local runs and tests. Disabled (404) when `env=prod`.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from starlette.status import HTTP_404_NOT_FOUND

from driversign_compliance.api.deps import settings_dep
from driversign_compliance.auth.jwt import JwtConfig, issue_token
from driversign_compliance.auth.models import KNOWN_ROLES, ROLE_COMPLIANCE_OPERATOR
from driversign_compliance.settings import Settings

router = APIRouter(prefix="/v1/dev", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=256)
    roles: list[str] = Field(default_factory=lambda: [ROLE_COMPLIANCE_OPERATOR])
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)

    @field_validator("roles")
    @classmethod
    def known_roles_only(cls, v: list[str]) -> list[str]:
        unknown = sorted(set(v) - KNOWN_ROLES)
        if unknown:
            raise ValueError(f"unknown roles: {', '.join(unknown)}")
        return v


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    roles: list[str]


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
) -> DevTokenResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    token = issue_token(
        cfg=JwtConfig.from_settings(settings),
        subject=body.subject,
        roles=body.roles,
        ttl=timedelta(minutes=body.ttl_minutes),
    )
    return DevTokenResponse(access_token=token, roles=sorted(set(body.roles)))
