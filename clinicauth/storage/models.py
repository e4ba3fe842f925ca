from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


USER_ACTIVE = "active"
USER_INACTIVE = "inactive"

DEFAULT_ROLES = ("Admin", "Provider", "Nurse", "Patient", "Pharmacist", "Receptionist")
DEFAULT_SIGNUP_ROLE = "Patient"


@dataclass
class Tenant:
    id: int
    code: str
    name: str
    status: str = "active"
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class Role:
    id: int
    tenant_id: int
    name: str
    description: Optional[str] = None


@dataclass
class User:
    id: int
    tenant_id: int
    role_id: int
    username: str
    encrypted_email: str
    email_hash: str
    password_hash: str
    encrypted_full_name: Optional[str] = None
    encrypted_phone: Optional[str] = None
    status: str = USER_ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == USER_ACTIVE and self.deleted_at is None


@dataclass
class RefreshToken:
    id: int
    user_id: int
    tenant_id: int
    token_hash: str
    family: str
    expires_at: datetime
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_usable(self, now: datetime) -> bool:
        return not self.revoked and self.expires_at > now


@dataclass
class UserSession:
    id: int
    user_id: int
    tenant_id: int
    session_key: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_active: datetime = field(default_factory=utcnow)


@dataclass
class AuditEntry:
    id: int
    tenant_id: Optional[int]
    user_id: Optional[int]
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict | None = None
    created_at: datetime = field(default_factory=utcnow)
    username: Optional[str] = None
