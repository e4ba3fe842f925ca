from __future__ import annotations

import json
import secrets
import threading
from dataclasses import asdict, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from clinicauth.logging import get_logger
from clinicauth.storage.errors import ConstraintViolation
from clinicauth.storage.models import (
    AuditEntry,
    RefreshToken,
    Role,
    Tenant,
    User,
    UserSession,
    utcnow,
)


class MemoryStore:
    """In-process credential store for tests and local development.

    Every public method takes ``_data_lock`` so the store can be shared by the
    threads of a TestClient or a dev server. When ``fs_root`` is given the
    state is snapshotted to ``<fs_root>/state/memory_store.json`` after each
    write and reloaded on start.
    """

    def __init__(self, fs_root: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.tenants: Dict[int, Tenant] = {}
        self.roles: Dict[int, Role] = {}
        self.role_permissions: Dict[int, set[str]] = {}
        self.users: Dict[int, User] = {}
        self.refresh_tokens: Dict[int, RefreshToken] = {}
        self.sessions: Dict[int, UserSession] = {}
        self.audit_entries: List[AuditEntry] = []
        self._seq: Dict[str, int] = {}
        # RLock so rotate() can call helpers that lock again
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _next_id(self, kind: str) -> int:
        value = self._seq.get(kind, 0) + 1
        self._seq[kind] = value
        return value

    def verify_connection(self) -> None:
        return None

    # tenants
    def create_tenant(self, code: str, name: str, *, status: str = "active") -> Tenant:
        with self._data_lock:
            if any(t.code == code for t in self.tenants.values()):
                raise ConstraintViolation("tenant code already exists", {"field": "code"})
            tenant = Tenant(id=self._next_id("tenant"), code=code, name=name, status=status)
            self.tenants[tenant.id] = tenant
            self._persist_state()
            return tenant

    def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        with self._data_lock:
            return self.tenants.get(tenant_id)

    def get_tenant_by_code(self, code: str) -> Optional[Tenant]:
        with self._data_lock:
            return next((t for t in self.tenants.values() if t.code == code), None)

    def set_tenant_status(self, tenant_id: int, status: str) -> Optional[Tenant]:
        with self._data_lock:
            tenant = self.tenants.get(tenant_id)
            if not tenant:
                return None
            tenant.status = status
            self._persist_state()
            return tenant

    # roles
    def create_role(
        self,
        tenant_id: int,
        name: str,
        *,
        description: Optional[str] = None,
        permissions: Iterable[str] = (),
    ) -> Role:
        with self._data_lock:
            if tenant_id not in self.tenants:
                raise ConstraintViolation("role tenant missing", {"tenant_id": tenant_id})
            if any(r.tenant_id == tenant_id and r.name == name for r in self.roles.values()):
                raise ConstraintViolation("role already exists", {"field": "name"})
            role = Role(
                id=self._next_id("role"),
                tenant_id=tenant_id,
                name=name,
                description=description,
            )
            self.roles[role.id] = role
            self.role_permissions[role.id] = set(permissions)
            self._persist_state()
            return role

    def get_role(self, role_id: int) -> Optional[Role]:
        with self._data_lock:
            return self.roles.get(role_id)

    def get_role_by_name(self, tenant_id: int, name: str) -> Optional[Role]:
        with self._data_lock:
            return next(
                (
                    r
                    for r in self.roles.values()
                    if r.tenant_id == tenant_id and r.name == name
                ),
                None,
            )

    def set_role_permissions(self, role_id: int, permissions: Iterable[str]) -> None:
        with self._data_lock:
            if role_id not in self.roles:
                raise ConstraintViolation("role missing", {"role_id": role_id})
            self.role_permissions[role_id] = set(permissions)
            self._persist_state()

    def get_role_permissions(self, role_id: int) -> List[str]:
        with self._data_lock:
            return sorted(self.role_permissions.get(role_id, set()))

    # users
    def create_user(
        self,
        tenant_id: int,
        role_id: int,
        username: str,
        *,
        encrypted_email: str,
        email_hash: str,
        password_hash: str,
        encrypted_full_name: Optional[str] = None,
        encrypted_phone: Optional[str] = None,
        status: str = "active",
    ) -> User:
        with self._data_lock:
            live = [
                u
                for u in self.users.values()
                if u.tenant_id == tenant_id and u.deleted_at is None
            ]
            if any(u.username == username for u in live):
                raise ConstraintViolation("username already exists", {"field": "username"})
            if any(u.email_hash == email_hash for u in live):
                raise ConstraintViolation("email already registered", {"field": "email"})
            role = self.roles.get(role_id)
            if not role or role.tenant_id != tenant_id:
                raise ConstraintViolation("user role missing", {"role_id": role_id})
            user = User(
                id=self._next_id("user"),
                tenant_id=tenant_id,
                role_id=role_id,
                username=username,
                encrypted_email=encrypted_email,
                email_hash=email_hash,
                password_hash=password_hash,
                encrypted_full_name=encrypted_full_name,
                encrypted_phone=encrypted_phone,
                status=status,
            )
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or user.deleted_at is not None:
                return None
            return user

    def get_user_by_username(self, tenant_id: int, username: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (
                    u
                    for u in self.users.values()
                    if u.tenant_id == tenant_id
                    and u.username == username
                    and u.deleted_at is None
                ),
                None,
            )

    def get_user_by_email_hash(self, tenant_id: int, email_hash: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (
                    u
                    for u in self.users.values()
                    if u.tenant_id == tenant_id
                    and u.email_hash == email_hash
                    and u.deleted_at is None
                ),
                None,
            )

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        with self._data_lock:
            user = self.get_user(user_id)
            if not user:
                return
            user.password_hash = password_hash
            user.updated_at = utcnow()
            self._persist_state()

    def set_user_status(self, user_id: int, status: str) -> Optional[User]:
        with self._data_lock:
            user = self.get_user(user_id)
            if not user:
                return None
            user.status = status
            user.updated_at = utcnow()
            self._persist_state()
            return user

    def soft_delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            user = self.get_user(user_id)
            if not user:
                return False
            user.deleted_at = utcnow()
            self._persist_state()
            return True

    # refresh tokens
    def _insert_refresh_token(
        self,
        user_id: int,
        tenant_id: int,
        token_hash: str,
        expires_at: datetime,
        family: Optional[str],
    ) -> RefreshToken:
        if any(t.token_hash == token_hash for t in self.refresh_tokens.values()):
            raise ConstraintViolation("refresh token hash collision", {"field": "token_hash"})
        record = RefreshToken(
            id=self._next_id("refresh_token"),
            user_id=user_id,
            tenant_id=tenant_id,
            token_hash=token_hash,
            family=family or secrets.token_hex(16),
            expires_at=expires_at,
        )
        self.refresh_tokens[record.id] = record
        return record

    def create_refresh_token(
        self,
        user_id: int,
        tenant_id: int,
        token_hash: str,
        expires_at: datetime,
        *,
        family: Optional[str] = None,
    ) -> RefreshToken:
        with self._data_lock:
            record = self._insert_refresh_token(
                user_id, tenant_id, token_hash, expires_at, family
            )
            self._persist_state()
            return record

    def find_refresh_token(self, token_hash: str) -> Optional[RefreshToken]:
        with self._data_lock:
            return next(
                (t for t in self.refresh_tokens.values() if t.token_hash == token_hash),
                None,
            )

    def find_valid_refresh_token(
        self, token_hash: str, now: datetime
    ) -> Optional[Tuple[RefreshToken, str]]:
        with self._data_lock:
            record = self.find_refresh_token(token_hash)
            if not record or not record.is_usable(now):
                return None
            user = self.get_user(record.user_id)
            if not user:
                return None
            return record, user.status

    def rotate_refresh_token(
        self,
        old_hash: str,
        new_hash: str,
        expires_at: datetime,
        *,
        on_commit: Optional[Callable[[], Any]] = None,
    ) -> Optional[RefreshToken]:
        """Revoke ``old_hash`` and issue its successor in the same family.

        All-or-nothing: if anything fails, including ``on_commit``, the old
        row is restored and no successor exists.
        """
        with self._data_lock:
            old = next(
                (
                    t
                    for t in self.refresh_tokens.values()
                    if t.token_hash == old_hash and not t.revoked
                ),
                None,
            )
            if not old:
                return None
            snapshot = replace(old)
            seq_snapshot = dict(self._seq)
            successor: Optional[RefreshToken] = None
            try:
                old.revoked = True
                successor = self._insert_refresh_token(
                    old.user_id, old.tenant_id, new_hash, expires_at, old.family
                )
                if on_commit is not None:
                    on_commit()
                self._persist_state()
            except Exception as exc:
                self.refresh_tokens[old.id] = snapshot
                if successor is not None:
                    self.refresh_tokens.pop(successor.id, None)
                self._seq = seq_snapshot
                self.logger.error(
                    "refresh_rotation_failed",
                    user_id=old.user_id,
                    family=old.family,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return None
            return successor

    def revoke_refresh_family(self, family: str) -> int:
        with self._data_lock:
            count = 0
            for record in self.refresh_tokens.values():
                if record.family == family and not record.revoked:
                    record.revoked = True
                    count += 1
            self._persist_state()
            return count

    def revoke_user_refresh_tokens(self, user_id: int) -> int:
        with self._data_lock:
            count = 0
            for record in self.refresh_tokens.values():
                if record.user_id == user_id and not record.revoked:
                    record.revoked = True
                    count += 1
            self._persist_state()
            return count

    def revoke_refresh_token(self, token_hash: str) -> int:
        with self._data_lock:
            record = self.find_refresh_token(token_hash)
            if not record or record.revoked:
                return 0
            record.revoked = True
            self._persist_state()
            return 1

    def count_active_refresh_tokens(self, user_id: int, now: datetime) -> int:
        with self._data_lock:
            return sum(
                1
                for t in self.refresh_tokens.values()
                if t.user_id == user_id and t.is_usable(now)
            )

    def cleanup_refresh_tokens(self, now: datetime) -> int:
        with self._data_lock:
            doomed = [
                t.id
                for t in self.refresh_tokens.values()
                if t.revoked or t.expires_at <= now
            ]
            for token_id in doomed:
                self.refresh_tokens.pop(token_id, None)
            self._persist_state()
            return len(doomed)

    # sessions
    def upsert_session(
        self,
        user_id: int,
        tenant_id: int,
        session_key: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        with self._data_lock:
            existing = self.get_session_by_key(session_key)
            if existing:
                existing.last_active = utcnow()
                existing.ip_address = ip_address
                existing.user_agent = user_agent
                self._persist_state()
                return existing
            session = UserSession(
                id=self._next_id("session"),
                user_id=user_id,
                tenant_id=tenant_id,
                session_key=session_key,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.sessions[session.id] = session
            self._persist_state()
            return session

    def get_session_by_key(self, session_key: str) -> Optional[UserSession]:
        with self._data_lock:
            return next(
                (s for s in self.sessions.values() if s.session_key == session_key),
                None,
            )

    def list_active_sessions(self, user_id: int) -> List[UserSession]:
        with self._data_lock:
            active = [
                s for s in self.sessions.values() if s.user_id == user_id and s.is_active
            ]
            return sorted(active, key=lambda s: s.last_active, reverse=True)

    def invalidate_session(self, session_id: int, user_id: int) -> bool:
        with self._data_lock:
            session = self.sessions.get(session_id)
            if not session or session.user_id != user_id or not session.is_active:
                return False
            session.is_active = False
            self._persist_state()
            return True

    def invalidate_session_by_key(self, session_key: str, user_id: int) -> bool:
        with self._data_lock:
            session = self.get_session_by_key(session_key)
            if not session:
                return False
            return self.invalidate_session(session.id, user_id)

    def invalidate_user_sessions(self, user_id: int) -> int:
        with self._data_lock:
            count = 0
            for session in self.sessions.values():
                if session.user_id == user_id and session.is_active:
                    session.is_active = False
                    count += 1
            self._persist_state()
            return count

    def cleanup_stale_sessions(self, older_than: datetime) -> int:
        with self._data_lock:
            doomed = [s.id for s in self.sessions.values() if s.last_active < older_than]
            for session_id in doomed:
                self.sessions.pop(session_id, None)
            self._persist_state()
            return len(doomed)

    # audit
    def record_audit(
        self,
        tenant_id: Optional[int],
        user_id: Optional[int],
        action: str,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEntry:
        with self._data_lock:
            entry = AuditEntry(
                id=self._next_id("audit"),
                tenant_id=tenant_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
            self.audit_entries.append(entry)
            self._persist_state()
            return entry

    def list_audit(
        self,
        tenant_id: int,
        *,
        page: int = 1,
        per_page: int = 50,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Tuple[List[AuditEntry], int]:
        with self._data_lock:
            matches = [
                e
                for e in self.audit_entries
                if e.tenant_id == tenant_id
                and (user_id is None or e.user_id == user_id)
                and (action is None or e.action == action)
                and (entity_type is None or e.entity_type == entity_type)
                and (date_from is None or e.created_at >= date_from)
                and (date_to is None or e.created_at <= date_to)
            ]
            matches.sort(key=lambda e: (e.created_at, e.id), reverse=True)
            total = len(matches)
            offset = (page - 1) * per_page
            window = []
            for entry in matches[offset : offset + per_page]:
                user = self.users.get(entry.user_id) if entry.user_id else None
                window.append(replace(entry, username=user.username if user else None))
            return window, total

    def list_audit_actions(self, tenant_id: int) -> List[str]:
        with self._data_lock:
            return sorted({e.action for e in self.audit_entries if e.tenant_id == tenant_id})

    # persistence
    _COLLECTIONS = {
        "tenants": Tenant,
        "roles": Role,
        "users": User,
        "refresh_tokens": RefreshToken,
        "sessions": UserSession,
    }

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize(obj: Any) -> Dict[str, Any]:
        data = asdict(obj)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data

    @staticmethod
    def _deserialize(cls, data: Dict[str, Any]):
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                continue
            if isinstance(value, str) and key.endswith(("_at", "_active")):
                value = datetime.fromisoformat(value)
            kwargs[key] = value
        return cls(**kwargs)

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state: Dict[str, Any] = {
            name: [self._serialize(obj) for obj in getattr(self, name).values()]
            for name in self._COLLECTIONS
        }
        state["role_permissions"] = {
            str(role_id): sorted(keys) for role_id, keys in self.role_permissions.items()
        }
        state["audit_entries"] = [self._serialize(e) for e in self.audit_entries]
        state["seq"] = self._seq
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}")

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        for name, cls in self._COLLECTIONS.items():
            loaded = (self._deserialize(cls, item) for item in data.get(name, []))
            setattr(self, name, {obj.id: obj for obj in loaded})
        self.role_permissions = {
            int(role_id): set(keys)
            for role_id, keys in data.get("role_permissions", {}).items()
        }
        self.audit_entries = [
            self._deserialize(AuditEntry, item) for item in data.get("audit_entries", [])
        ]
        self._seq = {k: int(v) for k, v in data.get("seq", {}).items()}
        self.logger.info(
            "memory_store_state_loaded",
            users=len(self.users),
            refresh_tokens=len(self.refresh_tokens),
        )
        return True


