"""
driversign_compliance.auth.jwt

Bearer tokens for operators, policy admins and the dispatcher.

Responsibilities:
- Issue short-lived tokens (dev token endpoint; dispatcher -> ticket/notify systems).
- Validate tokens (iss/aud/exp/iat/sub required) and turn them into a `Principal`.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from driversign_compliance.auth.models import Principal
from driversign_compliance.settings import Settings

REQUIRED_CLAIMS = ("exp", "iat", "iss", "aud", "sub")


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str
    leeway_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        return cls(
            alg=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            secret=settings.jwt_secret,
        )


class JwtValidationError(Exception):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: Iterable[str],
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": sorted(set(roles)),
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
        # Lets the audit trail tell two dispatcher calls apart.
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            leeway=cfg.leeway_seconds,
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


def principal_from_token(*, cfg: JwtConfig, token: str) -> Principal:
    payload = decode_and_validate(cfg=cfg, token=token)
    subject = str(payload.get("sub") or "")
    if not subject:
        raise JwtValidationError("empty subject")
    roles = payload.get("roles", [])
    if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
        raise JwtValidationError("roles claim must be a list of strings")
    return Principal(subject=subject, roles=frozenset(roles))
