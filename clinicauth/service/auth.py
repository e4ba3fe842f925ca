from __future__ import annotations

import hashlib
import math
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from clinicauth.config import Settings
from clinicauth.logging import get_logger, log_security_event
from clinicauth.service.crypto import SymmetricCipher
from clinicauth.service.csrf import CsrfGuard, CsrfRecord
from clinicauth.service.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ServerError,
    ValidationFailed,
)
from clinicauth.service.tokens import Claims, TokenCodec
from clinicauth.storage.errors import ConstraintViolation
from clinicauth.storage.models import (
    DEFAULT_SIGNUP_ROLE,
    USER_ACTIVE,
    AuditEntry,
    RefreshToken,
    Role,
    User,
    UserSession,
    utcnow,
)

logger = get_logger(__name__)

AUDIT_PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
AUDIT_PASSWORD_CHANGED = "PASSWORD_CHANGED"
AUDIT_LOGOUT = "LOGOUT"
AUDIT_LOGOUT_ALL = "LOGOUT_ALL_DEVICES"
AUDIT_TOKEN_ROTATED = "TOKEN_ROTATED"
AUDIT_SESSION_INVALIDATED = "SESSION_INVALIDATED"

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH = "Invalid or expired refresh token"
ROTATION_FAILED = "Token rotation failed"


class AuthStore(Protocol):
    def get_role(self, role_id: int) -> Optional[Role]: ...

    def get_role_by_name(self, tenant_id: int, name: str) -> Optional[Role]: ...

    def get_role_permissions(self, role_id: int) -> List[str]: ...

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
        status: str = USER_ACTIVE,
    ) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, tenant_id: int, username: str) -> Optional[User]: ...

    def get_user_by_email_hash(self, tenant_id: int, email_hash: str) -> Optional[User]: ...

    def update_password_hash(self, user_id: int, password_hash: str) -> None: ...

    def create_refresh_token(
        self,
        user_id: int,
        tenant_id: int,
        token_hash: str,
        expires_at: datetime,
        *,
        family: Optional[str] = None,
    ) -> RefreshToken: ...

    def find_refresh_token(self, token_hash: str) -> Optional[RefreshToken]: ...

    def find_valid_refresh_token(
        self, token_hash: str, now: datetime
    ) -> Optional[Tuple[RefreshToken, str]]: ...

    def rotate_refresh_token(
        self,
        old_hash: str,
        new_hash: str,
        expires_at: datetime,
        *,
        on_commit: Optional[Callable[[], Any]] = None,
    ) -> Optional[RefreshToken]: ...

    def revoke_refresh_family(self, family: str) -> int: ...

    def revoke_user_refresh_tokens(self, user_id: int) -> int: ...

    def revoke_refresh_token(self, token_hash: str) -> int: ...

    def count_active_refresh_tokens(self, user_id: int, now: datetime) -> int: ...

    def cleanup_refresh_tokens(self, now: datetime) -> int: ...

    def upsert_session(
        self,
        user_id: int,
        tenant_id: int,
        session_key: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession: ...

    def get_session_by_key(self, session_key: str) -> Optional[UserSession]: ...

    def list_active_sessions(self, user_id: int) -> List[UserSession]: ...

    def invalidate_session(self, session_id: int, user_id: int) -> bool: ...

    def invalidate_session_by_key(self, session_key: str, user_id: int) -> bool: ...

    def invalidate_user_sessions(self, user_id: int) -> int: ...

    def cleanup_stale_sessions(self, older_than: datetime) -> int: ...

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
    ) -> AuditEntry: ...

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
    ) -> Tuple[List[AuditEntry], int]: ...

    def list_audit_actions(self, tenant_id: int) -> List[str]: ...


@dataclass
class UserProfile:
    id: int
    username: str
    email: Optional[str]
    full_name: Optional[str]
    role: str
    role_id: int
    tenant_id: int
    permissions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LoginResult:
    access_token: str
    expires_in: int
    refresh_token: str
    csrf_token: str
    session_key: str
    claims: Claims
    user: UserProfile
    token_type: str = "Bearer"


@dataclass
class RefreshResult:
    access_token: str
    expires_in: int
    refresh_token: str
    csrf_token: str
    session_key: str
    claims: Claims
    token_type: str = "Bearer"


class RefreshTokenService:
    """Refresh-token families with rotation and reuse detection.

    Raw tokens never touch storage; rows are keyed by ``sha256(raw)``. A
    revoked token presented again means it leaked, so its whole family is
    revoked.
    """

    def __init__(
        self,
        store: AuthStore,
        csrf: CsrfGuard,
        ttl_seconds: int = 604800,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.csrf = csrf
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @staticmethod
    def hash_token(raw: str) -> str:
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def create(self, user_id: int, tenant_id: int, family: Optional[str] = None) -> str:
        raw = secrets.token_hex(32)
        self.store.create_refresh_token(
            user_id,
            tenant_id,
            self.hash_token(raw),
            self._clock() + self.ttl,
            family=family,
        )
        return raw

    def validate(self, raw: Optional[str]) -> Optional[RefreshToken]:
        if not raw:
            return None
        token_hash = self.hash_token(raw)
        found = self.store.find_valid_refresh_token(token_hash, self._clock())
        if found:
            record, user_status = found
            if user_status != USER_ACTIVE:
                revoked = self.store.revoke_user_refresh_tokens(record.user_id)
                logger.warning(
                    "refresh_token_inactive_user",
                    user_id=record.user_id,
                    tokens_revoked=revoked,
                )
                return None
            return record

        stale = self.store.find_refresh_token(token_hash)
        if stale and stale.is_usable(self._clock()):
            # live row whose owner is gone (soft-deleted)
            revoked = self.store.revoke_user_refresh_tokens(stale.user_id)
            logger.warning(
                "refresh_token_missing_user",
                user_id=stale.user_id,
                tokens_revoked=revoked,
            )
            return None
        if stale and stale.revoked:
            revoked = self.store.revoke_refresh_family(stale.family)
            log_security_event(
                "refresh_token_reuse_detected",
                severity="critical",
                logger=logger,
                user_id=stale.user_id,
                tenant_id=stale.tenant_id,
                family=stale.family,
                tokens_revoked=revoked,
            )
        return None

    def rotate(self, old_raw: str, session_key: str) -> Optional[Tuple[str, str]]:
        """Swap ``old_raw`` for a successor and a fresh CSRF token, atomically."""
        new_raw = secrets.token_hex(32)
        issued: List[str] = []
        previous: List[Optional[CsrfRecord]] = []

        def _regenerate_csrf() -> None:
            previous.append(self.csrf.store.get(session_key))
            issued.append(self.csrf.generate(session_key))

        successor = self.store.rotate_refresh_token(
            self.hash_token(old_raw),
            self.hash_token(new_raw),
            self._clock() + self.ttl,
            on_commit=_regenerate_csrf,
        )
        if successor is None or not issued:
            if issued:
                self._restore_csrf(session_key, previous[0])
            return None
        return new_raw, issued[0]

    def _restore_csrf(self, session_key: str, record: Optional[CsrfRecord]) -> None:
        """Put back the CSRF state a rolled-back rotation overwrote."""
        if record is None:
            self.csrf.store.delete(session_key)
        else:
            self.csrf.store.set(session_key, record)
        logger.info("csrf_token_restored", had_previous=record is not None)

    def revoke_family(self, family: str) -> int:
        return self.store.revoke_refresh_family(family)

    def revoke_all_for_user(self, user_id: int) -> int:
        return self.store.revoke_user_refresh_tokens(user_id)

    def revoke(self, raw: str) -> int:
        return self.store.revoke_refresh_token(self.hash_token(raw))

    def count_active(self, user_id: int) -> int:
        return self.store.count_active_refresh_tokens(user_id, self._clock())

    def cleanup(self) -> int:
        return self.store.cleanup_refresh_tokens(self._clock())


class AuthService:
    """Login, refresh rotation, logout and password changes for one deployment.

    Everything is injected; the service holds no global state of its own.
    """

    def __init__(
        self,
        store: AuthStore,
        csrf: CsrfGuard,
        cipher: SymmetricCipher,
        tokens: TokenCodec,
        settings: Settings,
        *,
        refresh_tokens: Optional[RefreshTokenService] = None,
        pwd_hasher: Optional[PasswordHasher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.csrf = csrf
        self.cipher = cipher
        self.tokens = tokens
        self.settings = settings
        self._clock = clock
        self.refresh_tokens = refresh_tokens or RefreshTokenService(
            store, csrf, settings.jwt_refresh_ttl, clock=clock
        )
        self._pwd_hasher = pwd_hasher or PasswordHasher(
            time_cost=4, memory_cost=65536, parallelism=3, type=Type.ID
        )
        self._dummy_hash: Optional[str] = None
        self.logger = logger

    # passwords
    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _check_password(self, user: User, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(user.password_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    def _verify_dummy(self, password: str) -> None:
        """Spend one argon2 verification so unknown usernames cost the same as known ones."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash_password(secrets.token_hex(16))
        try:
            self._pwd_hasher.verify(self._dummy_hash, password)
        except VerifyMismatchError:
            pass

    def verify_password(self, user: User, password: str) -> bool:
        """Verify and, if the hashing policy has been strengthened, upgrade the stored hash."""
        if not self._check_password(user, password):
            return False
        if self._pwd_hasher.check_needs_rehash(user.password_hash):
            self.store.update_password_hash(user.id, self.hash_password(password))
            self.logger.info("password_rehashed", user_id=user.id)
        return True

    # helpers
    def new_session_key(self) -> str:
        return secrets.token_urlsafe(32)

    def _load_role(self, user: User) -> Tuple[Role, List[str]]:
        role = self.store.get_role(user.role_id)
        if not role:
            self.logger.error("user_role_missing", user_id=user.id, role_id=user.role_id)
            raise ServerError("User role is missing")
        return role, self.store.get_role_permissions(role.id)

    def _profile(self, user: User, role: Role, permissions: Iterable[str]) -> UserProfile:
        return UserProfile(
            id=user.id,
            username=user.username,
            email=self.cipher.decrypt_or_placeholder(user.encrypted_email, field="email"),
            full_name=self.cipher.decrypt_or_placeholder(
                user.encrypted_full_name, field="full_name"
            ),
            role=role.name,
            role_id=role.id,
            tenant_id=user.tenant_id,
            permissions=list(permissions),
        )

    def _issue_access(self, user: User, role: Role, permissions: Iterable[str]) -> Tuple[str, Claims]:
        return self.tokens.issue(
            subject=user.id,
            tenant_id=user.tenant_id,
            role_id=role.id,
            role_name=role.name,
            username=user.username,
            permissions=permissions,
        )

    def _audit(
        self,
        action: str,
        *,
        user_id: Optional[int],
        tenant_id: Optional[int],
        entity_type: Optional[str] = "user",
        entity_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        try:
            self.store.record_audit(
                tenant_id,
                user_id,
                action,
                entity_type=entity_type,
                entity_id=entity_id if entity_id is not None else user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
        except Exception as exc:
            self.logger.error(
                "audit_record_failed", action=action, user_id=user_id, error=str(exc)
            )

    def _login_failed(self, reason: str, *, tenant_id: int, username: str, ip_address: Optional[str]) -> AuthenticationError:
        self.logger.warning(
            "login_failed",
            reason=reason,
            tenant_id=tenant_id,
            username=username,
            ip_address=ip_address,
        )
        return AuthenticationError(INVALID_CREDENTIALS)

    # registration
    async def register(
        self,
        tenant_id: int,
        username: str,
        email: str,
        password: str,
        *,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        role_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        if self.store.get_user_by_username(tenant_id, username):
            raise ConflictError("Username already exists in this tenant")
        email_hash = self.cipher.hash(email)
        if self.store.get_user_by_email_hash(tenant_id, email_hash):
            raise ConflictError("Email already registered in this tenant")

        if role_id is None:
            role = self.store.get_role_by_name(tenant_id, DEFAULT_SIGNUP_ROLE)
            if not role:
                raise ValidationFailed("Default role not found for this tenant")
        else:
            role = self.store.get_role(role_id)
            if not role or role.tenant_id != tenant_id:
                raise ValidationFailed("Invalid role for this tenant")

        try:
            user = self.store.create_user(
                tenant_id,
                role.id,
                username,
                encrypted_email=self.cipher.encrypt(email.strip().lower()),
                email_hash=email_hash,
                password_hash=self.hash_password(password),
                encrypted_full_name=self.cipher.encrypt(full_name) if full_name else None,
                encrypted_phone=self.cipher.encrypt(phone) if phone else None,
            )
        except ConstraintViolation as exc:
            raise ConflictError(exc.message, detail=exc.detail)
        self.logger.info("user_registered", user_id=user.id, tenant_id=tenant_id, role=role.name)
        return {"user_id": user.id, "username": user.username, "role": role.name}

    # session lifecycle
    async def login(
        self,
        username: str,
        password: str,
        tenant_id: int,
        *,
        session_key: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        user = self.store.get_user_by_username(tenant_id, username)
        if not user:
            self._verify_dummy(password)
            raise self._login_failed(
                "unknown_user", tenant_id=tenant_id, username=username, ip_address=ip_address
            )
        if not self.verify_password(user, password):
            raise self._login_failed(
                "bad_password", tenant_id=tenant_id, username=username, ip_address=ip_address
            )
        if not user.is_active:
            raise self._login_failed(
                "inactive_account", tenant_id=tenant_id, username=username, ip_address=ip_address
            )

        role, permissions = self._load_role(user)
        access_token, claims = self._issue_access(user, role, permissions)
        refresh_token = self.refresh_tokens.create(user.id, tenant_id)

        # a pre-login session key is never promoted to an authenticated one
        self.csrf.destroy(session_key)
        new_key = self.new_session_key()
        self.store.upsert_session(
            user.id, tenant_id, new_key, ip_address=ip_address, user_agent=user_agent
        )
        csrf_token = self.csrf.generate(new_key)

        self.logger.info("user_logged_in", user_id=user.id, tenant_id=tenant_id, role=role.name)
        return LoginResult(
            access_token=access_token,
            expires_in=self.tokens.access_ttl,
            refresh_token=refresh_token,
            csrf_token=csrf_token,
            session_key=new_key,
            claims=claims,
            user=self._profile(user, role, permissions),
        )

    def _resolve_session_key(self, user_id: int, session_key: Optional[str]) -> str:
        if session_key:
            existing = self.store.get_session_by_key(session_key)
            if existing and existing.user_id == user_id and existing.is_active:
                return session_key
        return self.new_session_key()

    def _rotate(
        self,
        record: RefreshToken,
        raw_refresh: str,
        *,
        session_key: Optional[str],
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> RefreshResult:
        user = self.store.get_user(record.user_id)
        if not user or not user.is_active:
            revoked = self.refresh_tokens.revoke_all_for_user(record.user_id)
            self.logger.warning(
                "refresh_user_unavailable", user_id=record.user_id, tokens_revoked=revoked
            )
            raise AuthenticationError(INVALID_REFRESH)
        role, permissions = self._load_role(user)

        key = self._resolve_session_key(user.id, session_key)
        rotated = self.refresh_tokens.rotate(raw_refresh, key)
        if rotated is None:
            raise AuthenticationError(ROTATION_FAILED)
        new_refresh, csrf_token = rotated
        self.store.upsert_session(
            user.id, user.tenant_id, key, ip_address=ip_address, user_agent=user_agent
        )
        access_token, claims = self._issue_access(user, role, permissions)
        return RefreshResult(
            access_token=access_token,
            expires_in=self.tokens.access_ttl,
            refresh_token=new_refresh,
            csrf_token=csrf_token,
            session_key=key,
            claims=claims,
        )

    async def refresh(
        self,
        raw_refresh: Optional[str],
        *,
        tenant_id: Optional[int] = None,
        session_key: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshResult:
        record = self.refresh_tokens.validate(raw_refresh)
        if record is None:
            raise AuthenticationError(INVALID_REFRESH)
        if tenant_id is not None and record.tenant_id != tenant_id:
            log_security_event(
                "refresh_token_tenant_mismatch",
                logger=self.logger,
                user_id=record.user_id,
                token_tenant_id=record.tenant_id,
                request_tenant_id=tenant_id,
            )
            raise AuthenticationError(INVALID_REFRESH)
        result = self._rotate(
            record,
            raw_refresh,
            session_key=session_key,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.logger.info("refresh_token_rotated", user_id=record.user_id, family=record.family)
        return result

    async def rotate_tokens(
        self,
        raw_refresh: Optional[str],
        user_id: int,
        tenant_id: int,
        *,
        session_key: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshResult:
        record = self.refresh_tokens.validate(raw_refresh)
        if record is None or record.user_id != user_id or record.tenant_id != tenant_id:
            raise AuthenticationError(INVALID_REFRESH)
        result = self._rotate(
            record,
            raw_refresh,
            session_key=session_key,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._audit(
            AUDIT_TOKEN_ROTATED,
            user_id=user_id,
            tenant_id=tenant_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.logger.info("tokens_rotated", user_id=user_id)
        return result

    async def logout(
        self,
        raw_refresh: Optional[str],
        user_id: int,
        *,
        session_key: Optional[str] = None,
        tenant_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if raw_refresh:
            self.refresh_tokens.revoke(raw_refresh)
        if session_key:
            self.store.invalidate_session_by_key(session_key, user_id)
        self.csrf.destroy(session_key)
        self._audit(
            AUDIT_LOGOUT,
            user_id=user_id,
            tenant_id=tenant_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.logger.info("user_logged_out", user_id=user_id)

    async def logout_all(
        self,
        user_id: int,
        *,
        session_key: Optional[str] = None,
        tenant_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> int:
        revoked = self.refresh_tokens.revoke_all_for_user(user_id)
        sessions = self.store.invalidate_user_sessions(user_id)
        self.csrf.destroy(session_key)
        self._audit(
            AUDIT_LOGOUT_ALL,
            user_id=user_id,
            tenant_id=tenant_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"tokens_revoked": revoked, "sessions_invalidated": sessions},
        )
        self.logger.info(
            "user_logged_out_everywhere", user_id=user_id, tokens_revoked=revoked
        )
        return revoked

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        *,
        session_key: Optional[str] = None,
        tenant_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Replace the password and log the user out of every session, this one included."""
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        if not self._check_password(user, current_password):
            self._audit(
                AUDIT_PASSWORD_CHANGE_FAILED,
                user_id=user_id,
                tenant_id=tenant_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.logger.warning("password_change_failed", user_id=user_id)
            raise AuthenticationError("Current password is incorrect")
        if new_password == current_password:
            raise ValidationFailed("New password must be different from current password")

        self.store.update_password_hash(user_id, self.hash_password(new_password))
        revoked = self.refresh_tokens.revoke_all_for_user(user_id)
        self.store.invalidate_user_sessions(user_id)
        self.csrf.destroy(session_key)
        self._audit(
            AUDIT_PASSWORD_CHANGED,
            user_id=user_id,
            tenant_id=tenant_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.logger.info("password_changed", user_id=user_id, tokens_revoked=revoked)

    # account views
    async def me(self, claims: Claims) -> UserProfile:
        user = self.store.get_user(claims.subject)
        if not user or user.tenant_id != claims.tenant_id:
            raise NotFoundError("User not found")
        role, permissions = self._load_role(user)
        return self._profile(user, role, permissions)

    async def issue_csrf(self, session_key: str) -> Dict[str, Any]:
        return {"csrf_token": self.csrf.generate(session_key), "expires_in": self.csrf.ttl}

    async def regenerate_csrf(self, session_key: str) -> Dict[str, Any]:
        return {"csrf_token": self.csrf.regenerate(session_key), "expires_in": self.csrf.ttl}

    async def list_sessions(self, user_id: int) -> List[UserSession]:
        return self.store.list_active_sessions(user_id)

    async def invalidate_session(
        self,
        session_id: int,
        user_id: int,
        *,
        tenant_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        changed = self.store.invalidate_session(session_id, user_id)
        if changed:
            self._audit(
                AUDIT_SESSION_INVALIDATED,
                user_id=user_id,
                tenant_id=tenant_id,
                entity_type="session",
                entity_id=session_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        return changed

    async def audit_log(
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
    ) -> Dict[str, Any]:
        page = max(1, page)
        per_page = max(1, min(per_page, 200))
        date_from, date_to = (
            d.replace(tzinfo=timezone.utc) if d is not None and d.tzinfo is None else d
            for d in (date_from, date_to)
        )
        entries, total = self.store.list_audit(
            tenant_id,
            page=page,
            per_page=per_page,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            date_from=date_from,
            date_to=date_to,
        )
        return {
            "logs": entries,
            "pagination": {
                "total": total,
                "page": page,
                "per_page": per_page,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    async def audit_actions(self, tenant_id: int) -> List[str]:
        return self.store.list_audit_actions(tenant_id)

    # maintenance
    def cleanup(self) -> Dict[str, int]:
        tokens = self.refresh_tokens.cleanup()
        cutoff = self._clock() - timedelta(days=self.settings.session_stale_days)
        sessions = self.store.cleanup_stale_sessions(cutoff)
        self.logger.info("auth_cleanup", refresh_tokens=tokens, sessions=sessions)
        return {"refresh_tokens": tokens, "sessions": sessions}
