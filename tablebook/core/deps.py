from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from tablebook.core.errors import Forbidden, Unauthorized
from tablebook.core.security import STAFF_ROLES, decode_access_token, hash_client_ip
from tablebook.db.session import SessionLocal

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class StaffPrincipal:
    id: str
    role: str


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_client_hash(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else "")
    return hash_client_ip(ip)


def get_current_staff(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> StaffPrincipal:
    if credentials is None:
        raise Unauthorized()
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise Unauthorized("Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise Unauthorized("Invalid token")
    return StaffPrincipal(id=str(subject), role=str(payload.get("role", "")))


def require_roles(*roles: str) -> Callable:
    """Dependency factory to enforce a staff role.

    Admin passes every check.
    """

    allowed = set(roles) or STAFF_ROLES

    def dep(staff: StaffPrincipal = Depends(get_current_staff)) -> StaffPrincipal:
        if staff.role == "admin" or staff.role in allowed:
            return staff
        raise Forbidden("Staff role required")

    return dep


require_staff = require_roles("staff")
