"""Unit tests for auth service.

Tests for:
- Registration and per-tenant uniqueness
- Password hashing, verification and rehash on login
- Login, refresh rotation and the session key lifecycle
- Logout, logout everywhere and password change
- Audit trail and cleanup
"""

from datetime import datetime, timedelta

import pytest
from argon2 import PasswordHasher

from clinicauth.config import Settings
from clinicauth.service.auth import (
    AUDIT_LOGOUT,
    AUDIT_LOGOUT_ALL,
    AUDIT_PASSWORD_CHANGE_FAILED,
    AUDIT_PASSWORD_CHANGED,
    AUDIT_SESSION_INVALIDATED,
    AUDIT_TOKEN_ROTATED,
    INVALID_CREDENTIALS,
    INVALID_REFRESH,
    AuthService,
)
from clinicauth.service.crypto import SymmetricCipher
from clinicauth.service.csrf import CsrfGuard, MemoryCsrfStore
from clinicauth.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    ValidationFailed,
)
from clinicauth.service.provisioning import DEFAULT_ROLE_PERMISSIONS, provision_tenant
from clinicauth.service.tokens import TokenCodec
from clinicauth.storage.memory import MemoryStore
from clinicauth.storage.models import DEFAULT_ROLES, USER_INACTIVE

PASSWORD = "Secret@123"


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        test_mode=True,
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        encryption_key="unit-test-encryption-key",
        hash_secret="unit-test-hash-secret",
        jwt_refresh_ttl=86400,
    )


@pytest.fixture
def memory_store():
    """Create memory store for testing."""
    return MemoryStore()


@pytest.fixture
def csrf(clock):
    return CsrfGuard(MemoryCsrfStore(clock=clock.time), ttl=3600, clock=clock.time)


@pytest.fixture
def auth_service(memory_store, csrf, settings, clock, fast_hasher):
    """Create auth service for testing."""
    return AuthService(
        memory_store,
        csrf,
        SymmetricCipher(settings.encryption_key, settings.hash_secret),
        TokenCodec(settings.jwt_secret, settings.jwt_issuer, 900, clock=clock.time),
        settings,
        pwd_hasher=fast_hasher,
        clock=clock.utc,
    )


def _seed_tenant(store, code="CLINIC001"):
    tenant = store.create_tenant(code, f"{code} Clinic")
    roles = {
        name: store.create_role(tenant.id, name, permissions=DEFAULT_ROLE_PERMISSIONS[name])
        for name in DEFAULT_ROLES
    }
    return tenant, roles


@pytest.fixture
def tenant(memory_store):
    return _seed_tenant(memory_store)[0]


async def _register(auth_service, tenant, username="pat", email="pat@clinic.test", **kwargs):
    return await auth_service.register(tenant.id, username, email, PASSWORD, **kwargs)


class TestRegister:
    """Tests for registration."""

    async def test_register_defaults_to_patient(self, auth_service, tenant, memory_store):
        """Test that registration without a role uses Patient."""
        result = await _register(auth_service, tenant, full_name="Pat Doe", phone="555-0100")

        assert result["role"] == "Patient"
        user = memory_store.get_user(result["user_id"])
        assert user.password_hash != PASSWORD
        assert user.password_hash.startswith("$argon2id$")
        assert "pat@clinic.test" not in user.encrypted_email
        assert auth_service.cipher.decrypt(user.encrypted_email) == "pat@clinic.test"
        assert auth_service.cipher.decrypt(user.encrypted_phone) == "555-0100"
        assert user.email_hash == auth_service.cipher.hash("PAT@clinic.test")

    async def test_duplicate_username_conflicts(self, auth_service, tenant):
        """Test that a username is unique within a tenant."""
        await _register(auth_service, tenant)
        with pytest.raises(ConflictError, match="Username already exists"):
            await _register(auth_service, tenant, email="other@clinic.test")

    async def test_duplicate_email_conflicts_case_insensitively(self, auth_service, tenant):
        """Test that email uniqueness goes through the normalized hash."""
        await _register(auth_service, tenant)
        with pytest.raises(ConflictError, match="Email already registered"):
            await _register(auth_service, tenant, username="pat2", email=" PAT@Clinic.test ")

    async def test_same_username_in_other_tenant(self, auth_service, tenant, memory_store):
        """Test that uniqueness is scoped per tenant."""
        other, _ = _seed_tenant(memory_store, "CLINIC002")
        await _register(auth_service, tenant)
        result = await _register(auth_service, other)
        assert result["username"] == "pat"

    async def test_role_from_other_tenant_rejected(self, auth_service, tenant, memory_store):
        """Test that role_id must belong to the registering tenant."""
        _, other_roles = _seed_tenant(memory_store, "CLINIC002")
        with pytest.raises(ValidationFailed, match="Invalid role"):
            await _register(auth_service, tenant, role_id=other_roles["Admin"].id)

    async def test_missing_default_role(self, auth_service, memory_store):
        """Test that a tenant without Patient cannot self-register users."""
        bare = memory_store.create_tenant("BARE", "Bare Clinic")
        with pytest.raises(ValidationFailed, match="Default role not found"):
            await _register(auth_service, bare)


class TestPasswords:
    """Tests for password verification."""

    async def test_verify_password(self, auth_service, tenant, memory_store):
        """Test correct and incorrect passwords."""
        result = await _register(auth_service, tenant)
        user = memory_store.get_user(result["user_id"])
        assert auth_service.verify_password(user, PASSWORD) is True
        assert auth_service.verify_password(user, "Wrong@123") is False

    async def test_corrupt_hash_fails_closed(self, auth_service, tenant, memory_store):
        """Test that an unparseable stored hash is a failed check, not an error."""
        result = await _register(auth_service, tenant)
        memory_store.update_password_hash(result["user_id"], "not-a-hash")
        user = memory_store.get_user(result["user_id"])
        assert auth_service.verify_password(user, PASSWORD) is False

    async def test_weak_hash_upgraded_on_login(
        self, memory_store, csrf, settings, clock, tenant
    ):
        """Test that a hash below the current policy is replaced after login."""
        weak = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
        strong = PasswordHasher(time_cost=2, memory_cost=16, parallelism=1)
        cipher = SymmetricCipher(settings.encryption_key, settings.hash_secret)
        codec = TokenCodec(settings.jwt_secret, settings.jwt_issuer, clock=clock.time)
        old = AuthService(memory_store, csrf, cipher, codec, settings, pwd_hasher=weak, clock=clock.utc)
        new = AuthService(memory_store, csrf, cipher, codec, settings, pwd_hasher=strong, clock=clock.utc)

        result = await _register(old, tenant)
        before = memory_store.get_user(result["user_id"]).password_hash
        await new.login("pat", PASSWORD, tenant.id)
        after = memory_store.get_user(result["user_id"]).password_hash

        assert after != before
        assert strong.check_needs_rehash(after) is False
        await new.login("pat", PASSWORD, tenant.id)


class TestLogin:
    """Tests for login."""

    async def test_login_issues_tokens(self, auth_service, tenant, csrf, memory_store):
        """Test the full login result."""
        await _register(auth_service, tenant, full_name="Pat Doe")
        result = await auth_service.login(
            "pat", PASSWORD, tenant.id, ip_address="10.0.0.1", user_agent="pytest"
        )

        assert result.token_type == "Bearer"
        assert result.expires_in == 900
        assert result.claims.tenant_id == tenant.id
        assert result.claims.role_name == "Patient"
        assert result.claims.permissions == frozenset(DEFAULT_ROLE_PERMISSIONS["Patient"])
        assert result.user.email == "pat@clinic.test"
        assert result.user.full_name == "Pat Doe"
        assert auth_service.tokens.verify(result.access_token) == result.claims
        assert csrf.get_token(result.session_key) == result.csrf_token
        session = memory_store.get_session_by_key(result.session_key)
        assert session.ip_address == "10.0.0.1"
        assert session.user_agent == "pytest"

    @pytest.mark.parametrize(
        "username,password",
        [("pat", "Wrong@123"), ("nobody", PASSWORD)],
    )
    async def test_bad_credentials_uniform(self, auth_service, tenant, username, password):
        """Test that unknown user and wrong password look identical."""
        await _register(auth_service, tenant)
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.login(username, password, tenant.id)
        assert exc.value.message == INVALID_CREDENTIALS
        assert exc.value.status_code == 401

    async def test_unknown_user_spends_a_verification(self, auth_service, tenant):
        """Test that an unknown username still runs one argon2 verification."""
        calls = []

        class CountingHasher(PasswordHasher):
            def verify(self, hash, password):
                calls.append(hash)
                return super().verify(hash, password)

        auth_service._pwd_hasher = CountingHasher(time_cost=1, memory_cost=8, parallelism=1)
        for _ in range(2):
            with pytest.raises(AuthenticationError, match=INVALID_CREDENTIALS):
                await auth_service.login("nobody", PASSWORD, tenant.id)

        assert len(calls) == 2
        assert calls[0] == calls[1]

    async def test_inactive_user_rejected(self, auth_service, tenant, memory_store):
        """Test that a disabled account gets the generic failure."""
        result = await _register(auth_service, tenant)
        memory_store.set_user_status(result["user_id"], USER_INACTIVE)
        with pytest.raises(AuthenticationError, match=INVALID_CREDENTIALS):
            await auth_service.login("pat", PASSWORD, tenant.id)

    async def test_deleted_user_rejected(self, auth_service, tenant, memory_store):
        """Test that a soft-deleted account cannot log in."""
        result = await _register(auth_service, tenant)
        memory_store.soft_delete_user(result["user_id"])
        with pytest.raises(AuthenticationError):
            await auth_service.login("pat", PASSWORD, tenant.id)

    async def test_login_wrong_tenant(self, auth_service, tenant, memory_store):
        """Test that credentials do not cross tenants."""
        other, _ = _seed_tenant(memory_store, "CLINIC002")
        await _register(auth_service, tenant)
        with pytest.raises(AuthenticationError):
            await auth_service.login("pat", PASSWORD, other.id)

    async def test_login_replaces_pre_login_session_key(self, auth_service, tenant, csrf):
        """Test that an anonymous CSRF session is not carried into the login."""
        await _register(auth_service, tenant)
        anon_token = csrf.generate("anonymous-key")
        result = await auth_service.login("pat", PASSWORD, tenant.id, session_key="anonymous-key")

        assert result.session_key != "anonymous-key"
        assert csrf.get_token("anonymous-key") is None
        with pytest.raises(ForbiddenError):
            csrf.validate("POST", result.session_key, anon_token)

    async def test_missing_role_is_server_error(self, auth_service, tenant, memory_store):
        """Test that a user pointing at a vanished role fails loudly."""
        result = await _register(auth_service, tenant)
        user = memory_store.get_user(result["user_id"])
        memory_store.roles.pop(user.role_id)
        with pytest.raises(ServerError):
            await auth_service.login("pat", PASSWORD, tenant.id)


class TestRefresh:
    """Tests for refresh rotation."""

    async def test_refresh_rotates_and_keeps_session(self, auth_service, tenant, csrf):
        """Test that refresh swaps tokens and reuses the live session key."""
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)

        result = await auth_service.refresh(
            login.refresh_token, tenant_id=tenant.id, session_key=login.session_key
        )
        assert result.refresh_token != login.refresh_token
        assert result.session_key == login.session_key
        assert csrf.get_token(login.session_key) == result.csrf_token
        assert result.csrf_token != login.csrf_token

        with pytest.raises(AuthenticationError, match=INVALID_REFRESH):
            await auth_service.refresh(login.refresh_token, tenant_id=tenant.id)

    async def test_refresh_with_foreign_session_key(self, auth_service, tenant):
        """Test that another user's session key is never adopted."""
        await _register(auth_service, tenant)
        await _register(auth_service, tenant, username="amy", email="amy@clinic.test")
        pat = await auth_service.login("pat", PASSWORD, tenant.id)
        amy = await auth_service.login("amy", PASSWORD, tenant.id)

        result = await auth_service.refresh(
            pat.refresh_token, tenant_id=tenant.id, session_key=amy.session_key
        )
        assert result.session_key not in (pat.session_key, amy.session_key)

    async def test_refresh_tenant_mismatch(self, auth_service, tenant, memory_store):
        """Test that a token from one tenant cannot refresh in another."""
        other, _ = _seed_tenant(memory_store, "CLINIC002")
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)
        with pytest.raises(AuthenticationError, match=INVALID_REFRESH):
            await auth_service.refresh(login.refresh_token, tenant_id=other.id)

    async def test_refresh_after_reuse_fails(self, auth_service, tenant):
        """Test that replaying an old token poisons the newest one."""
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)
        second = await auth_service.refresh(login.refresh_token, tenant_id=tenant.id)

        with pytest.raises(AuthenticationError):
            await auth_service.refresh(login.refresh_token, tenant_id=tenant.id)
        with pytest.raises(AuthenticationError):
            await auth_service.refresh(second.refresh_token, tenant_id=tenant.id)

    async def test_refresh_rotation_failure(self, auth_service, tenant, memory_store):
        """Test that a failed rotation reports 'Token rotation failed'."""
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)

        def _broken(*args, **kwargs):
            return None

        memory_store.rotate_refresh_token = _broken
        with pytest.raises(AuthenticationError, match="Token rotation failed"):
            await auth_service.refresh(login.refresh_token, tenant_id=tenant.id)

    async def test_rotate_tokens_requires_owner(self, auth_service, tenant, memory_store):
        """Test that settings rotation checks the token belongs to the caller."""
        await _register(auth_service, tenant)
        amy = await _register(auth_service, tenant, username="amy", email="amy@clinic.test")
        login = await auth_service.login("pat", PASSWORD, tenant.id)

        with pytest.raises(AuthenticationError):
            await auth_service.rotate_tokens(login.refresh_token, amy["user_id"], tenant.id)

        result = await auth_service.rotate_tokens(
            login.refresh_token, login.claims.subject, tenant.id, session_key=login.session_key
        )
        assert result.session_key == login.session_key
        entries, _ = memory_store.list_audit(tenant.id, action=AUDIT_TOKEN_ROTATED)
        assert len(entries) == 1


class TestEndToEnd:
    """Login then refresh for a tenant whose id is 5."""

    async def test_login_refresh_tenant_five(self, auth_service, memory_store, clock):
        """Test claims carry tenant 5 and survive refresh with a later expiry."""
        for index in range(1, 5):
            memory_store.create_tenant(f"FILLER{index}", "Filler")
        tenant, _ = _seed_tenant(memory_store, "CLINIC005")
        assert tenant.id == 5

        await auth_service.register(tenant.id, "nurse", "nurse@clinic.test", PASSWORD)
        login = await auth_service.login("nurse", PASSWORD, tenant.id)
        first = auth_service.tokens.verify(login.access_token)
        assert first.tenant_id == 5

        clock.advance(60)
        refreshed = await auth_service.refresh(
            login.refresh_token, tenant_id=5, session_key=login.session_key
        )
        second = auth_service.tokens.verify(refreshed.access_token)

        old_hash = auth_service.refresh_tokens.hash_token(login.refresh_token)
        assert memory_store.find_refresh_token(old_hash).revoked is True
        assert second.role_name == first.role_name
        assert second.permissions == first.permissions
        assert second.expires_at > first.expires_at


class TestLogout:
    """Tests for logout paths."""

    async def test_logout_revokes_token_and_session(self, auth_service, tenant, memory_store, csrf):
        """Test single-device logout."""
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)
        other = await auth_service.login("pat", PASSWORD, tenant.id)

        await auth_service.logout(
            login.refresh_token,
            login.claims.subject,
            session_key=login.session_key,
            tenant_id=tenant.id,
        )

        assert auth_service.refresh_tokens.validate(login.refresh_token) is None
        assert auth_service.refresh_tokens.validate(other.refresh_token) is not None
        assert memory_store.get_session_by_key(login.session_key).is_active is False
        assert memory_store.get_session_by_key(other.session_key).is_active is True
        assert csrf.get_token(login.session_key) is None
        entries, _ = memory_store.list_audit(tenant.id, action=AUDIT_LOGOUT)
        assert len(entries) == 1

    async def test_logout_without_cookie(self, auth_service, tenant):
        """Test that logout tolerates a missing refresh token."""
        result = await _register(auth_service, tenant)
        await auth_service.logout(None, result["user_id"], tenant_id=tenant.id)

    async def test_logout_all(self, auth_service, tenant, memory_store):
        """Test that every device is signed out."""
        await _register(auth_service, tenant)
        logins = [await auth_service.login("pat", PASSWORD, tenant.id) for _ in range(3)]
        user_id = logins[0].claims.subject

        revoked = await auth_service.logout_all(
            user_id, session_key=logins[0].session_key, tenant_id=tenant.id
        )

        assert revoked == 3
        assert all(auth_service.refresh_tokens.validate(item.refresh_token) is None for item in logins)
        assert memory_store.list_active_sessions(user_id) == []
        entries, _ = memory_store.list_audit(tenant.id, action=AUDIT_LOGOUT_ALL)
        assert entries[0].details == {"tokens_revoked": 3, "sessions_invalidated": 3}


class TestChangePassword:
    """Tests for password change."""

    async def test_change_password_forces_logout(self, auth_service, tenant, memory_store):
        """Test that old refresh tokens die with the old password."""
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)

        await auth_service.change_password(
            login.claims.subject,
            PASSWORD,
            "Newer@456",
            session_key=login.session_key,
            tenant_id=tenant.id,
        )

        assert auth_service.refresh_tokens.validate(login.refresh_token) is None
        assert memory_store.list_active_sessions(login.claims.subject) == []
        with pytest.raises(AuthenticationError):
            await auth_service.login("pat", PASSWORD, tenant.id)
        await auth_service.login("pat", "Newer@456", tenant.id)
        entries, _ = memory_store.list_audit(tenant.id, action=AUDIT_PASSWORD_CHANGED)
        assert len(entries) == 1

    async def test_wrong_current_password_audited(self, auth_service, tenant, memory_store):
        """Test that a bad current password is rejected and recorded."""
        result = await _register(auth_service, tenant)
        with pytest.raises(AuthenticationError, match="Current password is incorrect"):
            await auth_service.change_password(
                result["user_id"], "Wrong@123", "Newer@456", tenant_id=tenant.id
            )
        entries, _ = memory_store.list_audit(tenant.id, action=AUDIT_PASSWORD_CHANGE_FAILED)
        assert len(entries) == 1

    async def test_same_password_rejected(self, auth_service, tenant):
        """Test that the new password must differ."""
        result = await _register(auth_service, tenant)
        with pytest.raises(ValidationFailed, match="must be different"):
            await auth_service.change_password(result["user_id"], PASSWORD, PASSWORD)

    async def test_unknown_user(self, auth_service):
        """Test change_password for a missing user."""
        with pytest.raises(NotFoundError):
            await auth_service.change_password(999, PASSWORD, "Newer@456")


class TestAccountViews:
    """Tests for me, sessions and CSRF helpers."""

    async def test_me(self, auth_service, tenant):
        """Test that me() returns the decrypted profile."""
        await _register(auth_service, tenant, full_name="Pat Doe")
        login = await auth_service.login("pat", PASSWORD, tenant.id)
        profile = await auth_service.me(login.claims)
        assert profile.email == "pat@clinic.test"
        assert profile.role == "Patient"
        assert "appointments.view" in profile.permissions

    async def test_me_with_unreadable_email(self, auth_service, tenant, memory_store):
        """Test that a corrupt ciphertext yields a placeholder."""
        result = await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)
        memory_store.get_user(result["user_id"]).encrypted_email = "garbage"
        profile = await auth_service.me(login.claims)
        assert profile.email == "[unavailable]"

    async def test_invalidate_session(self, auth_service, tenant, memory_store):
        """Test invalidating one of the caller's sessions."""
        await _register(auth_service, tenant)
        await _register(auth_service, tenant, username="amy", email="amy@clinic.test")
        pat = await auth_service.login("pat", PASSWORD, tenant.id)
        amy = await auth_service.login("amy", PASSWORD, tenant.id)
        amy_session = memory_store.get_session_by_key(amy.session_key)

        assert await auth_service.invalidate_session(amy_session.id, pat.claims.subject) is False
        assert await auth_service.invalidate_session(
            amy_session.id, amy.claims.subject, tenant_id=tenant.id
        ) is True
        assert await auth_service.invalidate_session(amy_session.id, amy.claims.subject) is False
        assert await auth_service.list_sessions(amy.claims.subject) == []
        entries, _ = memory_store.list_audit(tenant.id, action=AUDIT_SESSION_INVALIDATED)
        assert entries[0].entity_type == "session"
        assert entries[0].entity_id == amy_session.id

    async def test_csrf_issue_and_regenerate(self, auth_service):
        """Test CSRF helper payloads."""
        issued = await auth_service.issue_csrf("key")
        regenerated = await auth_service.regenerate_csrf("key")
        assert issued["expires_in"] == 3600
        assert regenerated["csrf_token"] != issued["csrf_token"]
        assert auth_service.csrf.get_token("key") == regenerated["csrf_token"]


class TestAuditAndCleanup:
    """Tests for audit queries and maintenance."""

    async def test_audit_log_pagination(self, auth_service, tenant):
        """Test page maths and per_page clamping."""
        result = await _register(auth_service, tenant)
        for _ in range(5):
            await auth_service.logout(None, result["user_id"], tenant_id=tenant.id)

        page = await auth_service.audit_log(tenant.id, page=2, per_page=2)
        assert page["pagination"] == {"total": 5, "page": 2, "per_page": 2, "total_pages": 3}
        assert len(page["logs"]) == 2
        assert page["logs"][0].username == "pat"

        clamped = await auth_service.audit_log(tenant.id, per_page=1000)
        assert clamped["pagination"]["per_page"] == 200

        empty = await auth_service.audit_log(tenant.id, action="NOTHING")
        assert empty["pagination"]["total_pages"] == 0

    async def test_audit_naive_dates_are_utc(self, auth_service, tenant):
        """Test that naive filter dates compare against aware timestamps."""
        result = await _register(auth_service, tenant)
        await auth_service.logout(None, result["user_id"], tenant_id=tenant.id)

        everything = await auth_service.audit_log(
            tenant.id, date_from=datetime(2000, 1, 1), date_to=datetime(2999, 1, 1)
        )
        assert everything["pagination"]["total"] == 1
        actions = await auth_service.audit_actions(tenant.id)
        assert actions == [AUDIT_LOGOUT]

    async def test_cleanup(self, auth_service, tenant, memory_store, clock):
        """Test that cleanup() removes dead tokens and idle sessions."""
        await _register(auth_service, tenant)
        login = await auth_service.login("pat", PASSWORD, tenant.id)
        auth_service.refresh_tokens.revoke(login.refresh_token)
        session = memory_store.get_session_by_key(login.session_key)
        session.last_active = clock.utc() - timedelta(days=31)

        counts = auth_service.cleanup()
        assert counts == {"refresh_tokens": 1, "sessions": 1}


class TestProvisioning:
    """Tests for tenant provisioning."""

    async def test_provision_is_idempotent(self, auth_service, memory_store):
        """Test that re-running provisioning changes nothing."""
        first = await provision_tenant(
            memory_store,
            auth_service,
            "CLINIC009",
            "Ninth Clinic",
            admin_username="admin",
            admin_password=PASSWORD,
            admin_email="admin@clinic.test",
        )
        second = await provision_tenant(
            memory_store,
            auth_service,
            "CLINIC009",
            "Ninth Clinic",
            admin_username="admin",
            admin_password=PASSWORD,
            admin_email="admin@clinic.test",
        )
        assert first["tenant"].id == second["tenant"].id
        assert first["admin_user_id"] == second["admin_user_id"]
        assert set(first["roles"]) == set(DEFAULT_ROLES)
        login = await auth_service.login("admin", PASSWORD, first["tenant"].id)
        assert login.claims.role_name == "Admin"
        assert login.claims.has_permission("settings.audit")
