from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from clinicauth.logging import get_logger

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}
_REQUIRED_CLAIMS = ("sub", "tenant_id", "role_id", "role_name")


@dataclass(frozen=True)
class Claims:
    """Verified access-token claim set."""

    subject: int
    tenant_id: int
    role_id: int
    role_name: str
    issued_at: int
    expires_at: int
    issuer: str
    jti: str
    username: Optional[str] = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has_permission(self, key: str) -> bool:
        return key in self.permissions

    def to_payload(self) -> dict[str, Any]:
        return {
            "iss": self.issuer,
            "iat": self.issued_at,
            "exp": self.expires_at,
            "jti": self.jti,
            "sub": self.subject,
            "tenant_id": self.tenant_id,
            "role_id": self.role_id,
            "role_name": self.role_name,
            "username": self.username,
            "permissions": sorted(self.permissions),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Claims":
        permissions = payload.get("permissions") or []
        if not isinstance(permissions, list):
            raise ValueError("permissions claim must be a list")
        return cls(
            subject=int(payload["sub"]),
            tenant_id=int(payload["tenant_id"]),
            role_id=int(payload["role_id"]),
            role_name=str(payload["role_name"]),
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
            issuer=str(payload.get("iss", "")),
            jti=str(payload.get("jti", "")),
            username=payload.get("username"),
            permissions=frozenset(str(p) for p in permissions),
        )


class TokenCodec:
    """Stateless HS256 access tokens."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        access_ttl: int = 900,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret is required")
        self._secret = secret.encode("utf-8")
        self.issuer = issuer
        self.access_ttl = access_ttl
        self._clock = clock

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def issue(
        self,
        *,
        subject: int,
        tenant_id: int,
        role_id: int,
        role_name: str,
        username: Optional[str] = None,
        permissions: Iterable[str] = (),
    ) -> tuple[str, Claims]:
        now = int(self._clock())
        claims = Claims(
            subject=subject,
            tenant_id=tenant_id,
            role_id=role_id,
            role_name=role_name,
            issued_at=now,
            expires_at=now + self.access_ttl,
            issuer=self.issuer,
            jti=secrets.token_hex(16),
            username=username,
            permissions=frozenset(permissions),
        )
        header_enc = self._encode_segment(
            json.dumps(_HEADER, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(claims.to_payload(), separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}", claims

    def verify(self, token: Optional[str]) -> Optional[Claims]:
        """Return the claims of a valid token, otherwise ``None``.

        Every failure looks the same to the caller; the reason is only
        logged at debug level.
        """
        if not token:
            return None
        parts = token.split(".")
        if len(parts) != 3:
            logger.debug("access_token_malformed")
            return None
        header_b64, payload_b64, sig_b64 = parts

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.debug("access_token_header_undecodable")
            return None
        # Algorithm pinning: never trust the header's choice
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.debug("access_token_bad_algorithm")
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            logger.debug("access_token_bad_signature")
            return None

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError):
            logger.debug("access_token_payload_undecodable")
            return None
        if not isinstance(payload, dict):
            return None

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp < self._clock():
            logger.debug("access_token_expired")
            return None
        if payload.get("iss") != self.issuer:
            logger.debug("access_token_issuer_mismatch")
            return None
        if any(payload.get(name) in (None, "") for name in _REQUIRED_CLAIMS):
            logger.debug("access_token_missing_claims")
            return None
        try:
            return Claims.from_payload(payload)
        except (KeyError, TypeError, ValueError):
            logger.debug("access_token_claims_invalid")
            return None

    @staticmethod
    def extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        if not header.lower().startswith("bearer "):
            return None
        token = header.split(" ", 1)[1].strip()
        return token or None
