# Overview: Caller identity supplied by the upstream gateway.

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_SALES_PERSON = "sales_person"

ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_PERSON)


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str

    @property
    def is_manager(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_MANAGER)


def identity_from_headers(request) -> Identity | None:
    """
    Default resolver: trust X-User-Id / X-User-Role set by the gateway.

    Returns None when either header is missing or malformed.
    """
    raw_id = (request.headers.get("X-User-Id") or "").strip()
    role = (request.headers.get("X-User-Role") or "").strip().lower()
    if not raw_id.isdigit() or role not in ROLES:
        return None
    return Identity(user_id=int(raw_id), role=role)


def resolve_identity(app, request) -> Identity | None:
    resolver = app.config.get("IDENTITY_RESOLVER") or identity_from_headers
    return resolver(request)
