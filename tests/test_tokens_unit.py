"""Unit tests for HS256 access tokens.

Tests for:
- Issue/verify claim set
- Expiry boundary
- Signature, algorithm and issuer checks
- Bearer header parsing
"""

import base64
import json

import pytest

from clinicauth.service.tokens import Claims, TokenCodec

SECRET = "unit-test-signing-secret"


@pytest.fixture
def codec(clock):
    return TokenCodec(SECRET, "clinic-api", 900, clock=clock.time)


def _issue(codec, **overrides):
    params = dict(
        subject=42,
        tenant_id=5,
        role_id=3,
        role_name="Provider",
        username="dr.jones",
        permissions=["patients.view", "appointments.manage"],
    )
    params.update(overrides)
    return codec.issue(**params)


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestIssueAndVerify:
    """Tests for the happy path."""

    def test_verify_returns_issued_claims(self, codec):
        """Test that verify returns the claim set used at issue time."""
        token, issued = _issue(codec)
        claims = codec.verify(token)

        assert claims == issued
        assert claims.subject == 42
        assert claims.tenant_id == 5
        assert claims.role_name == "Provider"
        assert claims.has_permission("patients.view")
        assert not claims.has_permission("users.manage")

    def test_expiry_is_issued_at_plus_ttl(self, codec, clock):
        """Test exp = iat + 900."""
        _, claims = _issue(codec)
        assert claims.issued_at == int(clock.now)
        assert claims.expires_at == claims.issued_at + 900

    def test_each_token_has_unique_jti(self, codec):
        """Test that two tokens for the same user differ."""
        first, c1 = _issue(codec)
        second, c2 = _issue(codec)
        assert first != second
        assert c1.jti != c2.jti

    def test_payload_round_trip(self):
        """Test Claims payload conversion keeps permissions sorted."""
        claims = Claims(
            subject=1,
            tenant_id=2,
            role_id=3,
            role_name="Admin",
            issued_at=10,
            expires_at=20,
            issuer="clinic-api",
            jti="abc",
            permissions=frozenset({"b", "a"}),
        )
        payload = claims.to_payload()
        assert payload["permissions"] == ["a", "b"]
        assert Claims.from_payload(payload) == claims


class TestExpiry:
    """Tests for the expiry boundary."""

    def test_valid_just_before_expiry(self, codec, clock):
        """Test that a token verifies 899 seconds after issue."""
        token, _ = _issue(codec)
        clock.advance(899)
        assert codec.verify(token) is not None

    def test_invalid_after_expiry(self, codec, clock):
        """Test that a token is rejected 901 seconds after issue."""
        token, _ = _issue(codec)
        clock.advance(901)
        assert codec.verify(token) is None


class TestRejection:
    """Tests for forged or damaged tokens."""

    def test_tampered_payload_rejected(self, codec):
        """Test that changing the payload invalidates the signature."""
        token, claims = _issue(codec)
        header, _, sig = token.split(".")
        payload = claims.to_payload()
        payload["role_name"] = "Admin"
        forged = f"{header}.{_segment(payload)}.{sig}"
        assert codec.verify(forged) is None

    def test_any_payload_character_flip_rejected(self, codec):
        """Test that flipping any single payload character fails verification."""
        token, _ = _issue(codec)
        header, payload, sig = token.split(".")
        for index, char in enumerate(payload):
            flipped = "A" if char != "A" else "B"
            damaged = payload[:index] + flipped + payload[index + 1 :]
            assert codec.verify(f"{header}.{damaged}.{sig}") is None

    def test_wrong_secret_rejected(self, codec, clock):
        """Test that a token signed with another secret fails."""
        other = TokenCodec("another-secret", "clinic-api", clock=clock.time)
        token, _ = _issue(other)
        assert codec.verify(token) is None

    def test_wrong_issuer_rejected(self, codec, clock):
        """Test that a token from another issuer fails."""
        other = TokenCodec(SECRET, "someone-else", clock=clock.time)
        token, _ = _issue(other)
        assert codec.verify(token) is None

    def test_alg_none_rejected(self, codec):
        """Test that the header's algorithm is never trusted."""
        token, _ = _issue(codec)
        _, payload, sig = token.split(".")
        forged = f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{payload}.{sig}"
        assert codec.verify(forged) is None

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a.b.c.d", "x.y.z", "ü.ö.ä"])
    def test_malformed_rejected(self, codec, garbage):
        """Test that malformed strings fail without raising."""
        assert codec.verify(garbage) is None

    def test_non_ascii_signature_rejected(self, codec):
        """Test that a non-ASCII signature segment fails cleanly."""
        token, _ = _issue(codec)
        header, payload, _ = token.split(".")
        assert codec.verify(f"{header}.{payload}.sïgnature") is None

    def test_missing_secret_rejected(self):
        """Test that an empty signing secret is refused."""
        with pytest.raises(ValueError):
            TokenCodec("", "clinic-api")


class TestBearerHeader:
    """Tests for Authorization header parsing."""

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("Bearer   ", None),
            ("Basic abc", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract_bearer(self, header, expected):
        """Test Bearer token extraction."""
        assert TokenCodec.extract_bearer(header) == expected
