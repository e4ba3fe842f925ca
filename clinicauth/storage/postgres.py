from __future__ import annotations

import json
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from clinicauth.logging import get_logger
from clinicauth.storage.errors import ConstraintViolation, StoreUnavailable
from clinicauth.storage.models import (
    AuditEntry,
    RefreshToken,
    Role,
    Tenant,
    User,
    UserSession,
)

_REQUIRED_TABLES = (
    "tenant",
    "role",
    "role_permission",
    "app_user",
    "refresh_token",
    "user_session",
    "audit_log",
)


def _tenant_from_row(row: Dict[str, Any]) -> Tenant:
    return Tenant(
        id=row["id"],
        code=row["code"],
        name=row["name"],
        status=row["status"],
        created_at=row["created_at"],
    )


def _role_from_row(row: Dict[str, Any]) -> Role:
    return Role(
        id=row["id"],
        tenant_id=row["tenant_id"],
        name=row["name"],
        description=row.get("description"),
    )


def _user_from_row(row: Dict[str, Any]) -> User:
    return User(
        id=row["id"],
        tenant_id=row["tenant_id"],
        role_id=row["role_id"],
        username=row["username"],
        encrypted_email=row["encrypted_email"],
        email_hash=row["email_hash"],
        password_hash=row["password_hash"],
        encrypted_full_name=row.get("encrypted_full_name"),
        encrypted_phone=row.get("encrypted_phone"),
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
        deleted_at=row.get("deleted_at"),
    )


def _refresh_from_row(row: Dict[str, Any]) -> RefreshToken:
    return RefreshToken(
        id=row["id"],
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        token_hash=row["token_hash"],
        family=row["family"],
        expires_at=row["expires_at"],
        revoked=row["revoked"],
        created_at=row["created_at"],
    )


def _session_from_row(row: Dict[str, Any]) -> UserSession:
    return UserSession(
        id=row["id"],
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        session_key=row["session_key"],
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
        is_active=row["is_active"],
        created_at=row["created_at"],
        last_active=row["last_active"],
    )


def _audit_from_row(row: Dict[str, Any]) -> AuditEntry:
    details = row.get("details")
    if isinstance(details, str):
        details = json.loads(details)
    return AuditEntry(
        id=row["id"],
        tenant_id=row.get("tenant_id"),
        user_id=row.get("user_id"),
        action=row["action"],
        entity_type=row.get("entity_type"),
        entity_id=row.get("entity_id"),
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
        details=details,
        created_at=row["created_at"],
        username=row.get("username"),
    )


class PostgresStore:
    """Postgres-backed credential store (schema in ``sql/schema.sql``)."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def close(self) -> None:
        self.pool.close()

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def _verify_required_schema(self) -> None:
        with self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)
        if missing_tables:
            raise StoreUnavailable(
                "Missing required Postgres tables: {}. Apply sql/schema.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    # tenants
    def create_tenant(self, code: str, name: str, *, status: str = "active") -> Tenant:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "INSERT INTO tenant (code, name, status) VALUES (%s, %s, %s) RETURNING *",
                    (code, name, status),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("tenant code already exists", {"field": "code"})
        return _tenant_from_row(row)

    def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tenant WHERE id = %s", (tenant_id,)).fetchone()
        return _tenant_from_row(row) if row else None

    def get_tenant_by_code(self, code: str) -> Optional[Tenant]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tenant WHERE code = %s", (code,)).fetchone()
        return _tenant_from_row(row) if row else None

    def set_tenant_status(self, tenant_id: int, status: str) -> Optional[Tenant]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE tenant SET status = %s WHERE id = %s RETURNING *",
                (status, tenant_id),
            ).fetchone()
        return _tenant_from_row(row) if row else None

    # roles
    def create_role(
        self,
        tenant_id: int,
        name: str,
        *,
        description: Optional[str] = None,
        permissions: Iterable[str] = (),
    ) -> Role:
        try:
            with self._connect() as conn, conn.transaction():
                row = conn.execute(
                    "INSERT INTO role (tenant_id, name, description) VALUES (%s, %s, %s) RETURNING *",
                    (tenant_id, name, description),
                ).fetchone()
                for key in sorted(set(permissions)):
                    conn.execute(
                        "INSERT INTO role_permission (role_id, permission_key) VALUES (%s, %s)",
                        (row["id"], key),
                    )
        except errors.UniqueViolation:
            raise ConstraintViolation("role already exists", {"field": "name"})
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("role tenant missing", {"tenant_id": tenant_id})
        return _role_from_row(row)

    def get_role(self, role_id: int) -> Optional[Role]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM role WHERE id = %s", (role_id,)).fetchone()
        return _role_from_row(row) if row else None

    def get_role_by_name(self, tenant_id: int, name: str) -> Optional[Role]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM role WHERE tenant_id = %s AND name = %s",
                (tenant_id, name),
            ).fetchone()
        return _role_from_row(row) if row else None

    def set_role_permissions(self, role_id: int, permissions: Iterable[str]) -> None:
        try:
            with self._connect() as conn, conn.transaction():
                conn.execute("DELETE FROM role_permission WHERE role_id = %s", (role_id,))
                for key in sorted(set(permissions)):
                    conn.execute(
                        "INSERT INTO role_permission (role_id, permission_key) VALUES (%s, %s)",
                        (role_id, key),
                    )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("role missing", {"role_id": role_id})

    def get_role_permissions(self, role_id: int) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT permission_key FROM role_permission WHERE role_id = %s ORDER BY permission_key",
                (role_id,),
            ).fetchall()
        return [row["permission_key"] for row in rows]

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (tenant_id, role_id, username, encrypted_email, email_hash,
                                          password_hash, encrypted_full_name, encrypted_phone, status)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        tenant_id,
                        role_id,
                        username,
                        encrypted_email,
                        email_hash,
                        password_hash,
                        encrypted_full_name,
                        encrypted_phone,
                        status,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", "") or ""
            field = "email" if "email" in constraint else "username"
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user role missing", {"role_id": role_id})
        return _user_from_row(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s AND deleted_at IS NULL", (user_id,)
            ).fetchone()
        return _user_from_row(row) if row else None

    def get_user_by_username(self, tenant_id: int, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE tenant_id = %s AND username = %s AND deleted_at IS NULL",
                (tenant_id, username),
            ).fetchone()
        return _user_from_row(row) if row else None

    def get_user_by_email_hash(self, tenant_id: int, email_hash: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE tenant_id = %s AND email_hash = %s AND deleted_at IS NULL",
                (tenant_id, email_hash),
            ).fetchone()
        return _user_from_row(row) if row else None

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE app_user SET password_hash = %s, updated_at = now() WHERE id = %s AND deleted_at IS NULL",
                (password_hash, user_id),
            )

    def set_user_status(self, user_id: int, status: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET status = %s, updated_at = now() WHERE id = %s AND deleted_at IS NULL RETURNING *",
                (status, user_id),
            ).fetchone()
        return _user_from_row(row) if row else None

    def soft_delete_user(self, user_id: int) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE app_user SET deleted_at = now() WHERE id = %s AND deleted_at IS NULL",
                (user_id,),
            )
            return result.rowcount > 0

    # refresh tokens
    def create_refresh_token(
        self,
        user_id: int,
        tenant_id: int,
        token_hash: str,
        expires_at: datetime,
        *,
        family: Optional[str] = None,
    ) -> RefreshToken:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO refresh_token (user_id, tenant_id, token_hash, family, expires_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, tenant_id, token_hash, family or secrets.token_hex(16), expires_at),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("refresh token hash collision", {"field": "token_hash"})
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("refresh token owner missing", {"user_id": user_id})
        return _refresh_from_row(row)

    def find_refresh_token(self, token_hash: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_token WHERE token_hash = %s", (token_hash,)
            ).fetchone()
        return _refresh_from_row(row) if row else None

    def find_valid_refresh_token(
        self, token_hash: str, now: datetime
    ) -> Optional[Tuple[RefreshToken, str]]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT rt.*, u.status AS user_status
                FROM refresh_token rt
                JOIN app_user u ON u.id = rt.user_id AND u.deleted_at IS NULL
                WHERE rt.token_hash = %s AND rt.revoked = FALSE AND rt.expires_at > %s
                """,
                (token_hash, now),
            ).fetchone()
        if not row:
            return None
        return _refresh_from_row(row), row["user_status"]

    def rotate_refresh_token(
        self,
        old_hash: str,
        new_hash: str,
        expires_at: datetime,
        *,
        on_commit: Optional[Callable[[], Any]] = None,
    ) -> Optional[RefreshToken]:
        try:
            with self._connect() as conn, conn.transaction():
                old = conn.execute(
                    "SELECT * FROM refresh_token WHERE token_hash = %s AND revoked = FALSE FOR UPDATE",
                    (old_hash,),
                ).fetchone()
                if not old:
                    return None
                conn.execute(
                    "UPDATE refresh_token SET revoked = TRUE WHERE id = %s", (old["id"],)
                )
                row = conn.execute(
                    """
                    INSERT INTO refresh_token (user_id, tenant_id, token_hash, family, expires_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (old["user_id"], old["tenant_id"], new_hash, old["family"], expires_at),
                ).fetchone()
                if on_commit is not None:
                    on_commit()
        except Exception as exc:
            self.logger.error(
                "refresh_rotation_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
        return _refresh_from_row(row)

    def revoke_refresh_family(self, family: str) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE refresh_token SET revoked = TRUE WHERE family = %s AND revoked = FALSE",
                (family,),
            )
            return result.rowcount

    def revoke_user_refresh_tokens(self, user_id: int) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE refresh_token SET revoked = TRUE WHERE user_id = %s AND revoked = FALSE",
                (user_id,),
            )
            return result.rowcount

    def revoke_refresh_token(self, token_hash: str) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE refresh_token SET revoked = TRUE WHERE token_hash = %s AND revoked = FALSE",
                (token_hash,),
            )
            return result.rowcount

    def count_active_refresh_tokens(self, user_id: int, now: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM refresh_token WHERE user_id = %s AND revoked = FALSE AND expires_at > %s",
                (user_id, now),
            ).fetchone()
        return int(row["c"]) if row else 0

    def cleanup_refresh_tokens(self, now: datetime) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM refresh_token WHERE revoked = TRUE OR expires_at <= %s", (now,)
            )
            return result.rowcount

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
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO user_session (user_id, tenant_id, session_key, ip_address, user_agent)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (session_key) DO UPDATE
                    SET last_active = now(),
                        ip_address = EXCLUDED.ip_address,
                        user_agent = EXCLUDED.user_agent
                RETURNING *
                """,
                (user_id, tenant_id, session_key, ip_address, user_agent),
            ).fetchone()
        return _session_from_row(row)

    def get_session_by_key(self, session_key: str) -> Optional[UserSession]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_session WHERE session_key = %s", (session_key,)
            ).fetchone()
        return _session_from_row(row) if row else None

    def list_active_sessions(self, user_id: int) -> List[UserSession]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM user_session WHERE user_id = %s AND is_active = TRUE ORDER BY last_active DESC",
                (user_id,),
            ).fetchall()
        return [_session_from_row(row) for row in rows]

    def invalidate_session(self, session_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE user_session SET is_active = FALSE WHERE id = %s AND user_id = %s AND is_active = TRUE",
                (session_id, user_id),
            )
            return result.rowcount > 0

    def invalidate_session_by_key(self, session_key: str, user_id: int) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE user_session SET is_active = FALSE WHERE session_key = %s AND user_id = %s AND is_active = TRUE",
                (session_key, user_id),
            )
            return result.rowcount > 0

    def invalidate_user_sessions(self, user_id: int) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE user_session SET is_active = FALSE WHERE user_id = %s AND is_active = TRUE",
                (user_id,),
            )
            return result.rowcount

    def cleanup_stale_sessions(self, older_than: datetime) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM user_session WHERE last_active < %s", (older_than,)
            )
            return result.rowcount

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
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO audit_log (tenant_id, user_id, action, entity_type, entity_id,
                                       ip_address, user_agent, details)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    tenant_id,
                    user_id,
                    action,
                    entity_type,
                    entity_id,
                    ip_address,
                    user_agent,
                    json.dumps(details) if details else None,
                ),
            ).fetchone()
        return _audit_from_row(row)

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
        clauses = ["al.tenant_id = %s"]
        params: List[Any] = [tenant_id]
        if user_id is not None:
            clauses.append("al.user_id = %s")
            params.append(user_id)
        if action:
            clauses.append("al.action = %s")
            params.append(action)
        if entity_type:
            clauses.append("al.entity_type = %s")
            params.append(entity_type)
        if date_from:
            clauses.append("al.created_at >= %s")
            params.append(date_from)
        if date_to:
            clauses.append("al.created_at <= %s")
            params.append(date_to)
        where = " AND ".join(clauses)
        with self._connect() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) AS c FROM audit_log al WHERE {where}", params
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT al.*, u.username
                FROM audit_log al
                LEFT JOIN app_user u ON u.id = al.user_id
                WHERE {where}
                ORDER BY al.created_at DESC, al.id DESC
                LIMIT %s OFFSET %s
                """,
                [*params, per_page, (page - 1) * per_page],
            ).fetchall()
        total = int(count_row["c"]) if count_row else 0
        return [_audit_from_row(row) for row in rows], total

    def list_audit_actions(self, tenant_id: int) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT action FROM audit_log WHERE tenant_id = %s ORDER BY action",
                (tenant_id,),
            ).fetchall()
        return [row["action"] for row in rows]
