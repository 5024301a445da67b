"""
driversign_compliance.governance_clients.internal_http

HTTP client boundary used by the dispatcher to reach ticket and notification systems.

Responsibilities:
- Attach short-lived JWT credentials (role=internal_system).
- Call the ticket/notification endpoints under `/internal/v1/*`.
- Return typed results instead of raw payloads so callers never parse responses.
- Raise `UnexpectedResponse` for a 2xx whose body does not carry the expected fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx

from driversign_compliance.auth.jwt import JwtConfig, issue_token
from driversign_compliance.auth.models import ROLE_INTERNAL_SYSTEM
from driversign_compliance.errors import UnexpectedResponse
from driversign_compliance.settings import Settings


@dataclass(frozen=True, slots=True)
class InternalApiAuth:
    subject: str = "dsc-dispatcher"
    roles: tuple[str, ...] = (ROLE_INTERNAL_SYSTEM,)


@dataclass(frozen=True, slots=True)
class TicketRef:
    ticket_id: str
    created: bool


@dataclass(frozen=True, slots=True)
class NotificationRef:
    notification_id: str


def _json_body(r: httpx.Response) -> dict[str, Any]:
    r.raise_for_status()
    try:
        data = r.json()
    except ValueError as e:
        raise UnexpectedResponse(endpoint=str(r.url), detail=f"body is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise UnexpectedResponse(endpoint=str(r.url), detail="body is not a JSON object")
    return data


class InternalApiClient:
    """
    The dispatcher talks to external systems via this interface. In this repo those
    systems are JWT-protected internal routes; swapping in a real ticketing API only
    changes the base URL and payload mapping here.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        auth: InternalApiAuth | None = None,
    ) -> None:
        self._settings = settings
        self._http = http
        self._auth = auth or InternalApiAuth()

    def _authz(self) -> dict[str, str]:
        token = issue_token(
            cfg=JwtConfig.from_settings(self._settings),
            subject=self._auth.subject,
            roles=list(self._auth.roles),
            ttl=timedelta(minutes=5),
        )
        return {"Authorization": f"Bearer {token}"}

    async def open_ticket(
        self,
        *,
        idempotency_key: str,
        artifact_id: str,
        title: str,
        body: dict[str, Any],
    ) -> TicketRef:
        # The ticket system dedupes on Idempotency-Key as well; our ledger is the first guard.
        r = await self._http.post(
            "/internal/v1/tickets",
            headers={**self._authz(), "Idempotency-Key": idempotency_key},
            json={"artifact_id": artifact_id, "title": title, "body": body},
        )
        data = _json_body(r)
        try:
            return TicketRef(ticket_id=str(data["ticket_id"]), created=bool(data.get("created", True)))
        except KeyError as e:
            raise UnexpectedResponse(endpoint=str(r.url), detail=f"missing field {e}") from e

    async def notify(
        self,
        *,
        artifact_id: str,
        message: str,
        details: dict[str, Any],
        channel: str = "driver-signing",
    ) -> NotificationRef:
        r = await self._http.post(
            "/internal/v1/notifications",
            headers=self._authz(),
            json={
                "artifact_id": artifact_id,
                "channel": channel,
                "message": message,
                "details": details,
            },
        )
        data = _json_body(r)
        try:
            return NotificationRef(notification_id=str(data["notification_id"]))
        except KeyError as e:
            raise UnexpectedResponse(endpoint=str(r.url), detail=f"missing field {e}") from e


# --- Module Notes -----------------------------------------------------------
# Retries live in the dispatcher, not here: this client makes exactly one call per method.
