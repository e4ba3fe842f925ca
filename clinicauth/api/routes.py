from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Request, Response

from clinicauth.api.error_handling import error_response
from clinicauth.api.schemas import (
    AuditEntryResponse,
    AuditLogResponse,
    ChangePasswordRequest,
    CsrfTokenResponse,
    Envelope,
    LoginRequest,
    LoginResponse,
    Pagination,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    TokenResponse,
    UserInfo,
)
from clinicauth.config import get_settings
from clinicauth.logging import get_correlation_id, get_logger, log_security_event
from clinicauth.service.csrf import CSRF_HEADER
from clinicauth.service.errors import AuthenticationError
from clinicauth.service.runtime import get_runtime
from clinicauth.service.tokens import Claims, TokenCodec
from clinicauth.storage.models import Tenant

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _ok(data: Any = None, message: Optional[str] = None) -> Envelope:
    envelope = Envelope(status="ok", data=data, message=message)
    request_id = get_correlation_id()
    if request_id:
        envelope.request_id = request_id
    return envelope


def _client_meta(request: Request) -> dict[str, Optional[str]]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# dependencies


async def resolve_tenant(
    x_tenant_id: Optional[str] = Header(None, convert_underscores=False, alias="X-Tenant-ID"),
) -> Tenant:
    if not x_tenant_id or not x_tenant_id.strip():
        raise _http_error("bad_request", "Missing X-Tenant-ID header", status_code=400)
    tenant = get_runtime().store.get_tenant_by_code(x_tenant_id.strip())
    if not tenant:
        raise _http_error("unauthorized", "Invalid tenant", status_code=401)
    if not tenant.is_active:
        raise _http_error("forbidden", "Tenant is inactive", status_code=403)
    return tenant


async def get_user(
    authorization: Optional[str] = Header(None),
    tenant: Tenant = Depends(resolve_tenant),
) -> Claims:
    token = TokenCodec.extract_bearer(authorization)
    if not token:
        raise _http_error(
            "unauthorized",
            "Access token required. Send Authorization: Bearer <token>",
            status_code=401,
        )
    claims = get_runtime().tokens.verify(token)
    if claims is None:
        raise _http_error(
            "unauthorized", "Invalid or expired access token. Please refresh.", status_code=401
        )
    if claims.tenant_id != tenant.id:
        log_security_event(
            "access_token_tenant_mismatch",
            logger=logger,
            user_id=claims.subject,
            token_tenant_id=claims.tenant_id,
            request_tenant_id=tenant.id,
        )
        raise _http_error("forbidden", "Token does not belong to this tenant.", status_code=403)
    return claims


def require_roles(*roles: str) -> Callable[..., Any]:
    allowed = set(roles)

    async def _check(claims: Claims = Depends(get_user)) -> Claims:
        if claims.role_name not in allowed:
            logger.warning(
                "role_denied", user_id=claims.subject, role=claims.role_name, required=sorted(allowed)
            )
            raise _http_error(
                "forbidden",
                f"Access denied. Required roles: {', '.join(roles)}",
                status_code=403,
            )
        return claims

    return _check


def get_session_key(
    request: Request,
    session_header: Optional[str] = Header(None, alias="session_id", convert_underscores=False),
) -> Optional[str]:
    cookie_name = get_settings().session_cookie_name
    return request.cookies.get(cookie_name) or session_header


def require_csrf(
    request: Request,
    session_key: Optional[str] = Depends(get_session_key),
    csrf_token: Optional[str] = Header(None, convert_underscores=False, alias=CSRF_HEADER),
) -> None:
    get_runtime().csrf.validate(request.method, session_key, csrf_token)


def _refresh_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(get_settings().refresh_cookie_name)


def _set_auth_cookies(
    response: Response, *, refresh_token: Optional[str], session_key: str
) -> None:
    settings = get_settings()
    if refresh_token:
        response.set_cookie(
            settings.refresh_cookie_name,
            refresh_token,
            max_age=settings.jwt_refresh_ttl,
            path=settings.refresh_cookie_path,
            secure=settings.refresh_cookie_secure,
            httponly=True,
            samesite=settings.refresh_cookie_samesite,
        )
    response.set_cookie(
        settings.session_cookie_name,
        session_key,
        max_age=settings.jwt_refresh_ttl,
        path="/",
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )


def _clear_auth_cookies(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )


# auth


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest, tenant: Tenant = Depends(resolve_tenant)):
    runtime = get_runtime()
    result = await runtime.auth.register(
        tenant.id,
        body.username,
        body.email,
        body.password,
        full_name=body.full_name,
        phone=body.phone,
    )
    return _ok(RegisterResponse(**result), message="User registered successfully")


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    tenant: Tenant = Depends(resolve_tenant),
    session_key: Optional[str] = Depends(get_session_key),
):
    runtime = get_runtime()
    result = await runtime.auth.login(
        body.username,
        body.password,
        tenant.id,
        session_key=session_key,
        **_client_meta(request),
    )
    _set_auth_cookies(
        response, refresh_token=result.refresh_token, session_key=result.session_key
    )
    payload = LoginResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        csrf_token=result.csrf_token,
        user=UserInfo(**result.user.to_dict()),
    )
    return _ok(payload, message="Login successful")


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(
    request: Request,
    response: Response,
    tenant: Tenant = Depends(resolve_tenant),
    session_key: Optional[str] = Depends(get_session_key),
):
    raw = _refresh_cookie(request)
    if not raw:
        raise AuthenticationError("Refresh token not found in cookie.")
    runtime = get_runtime()
    try:
        result = await runtime.auth.refresh(
            raw, tenant_id=tenant.id, session_key=session_key, **_client_meta(request)
        )
    except AuthenticationError as exc:
        logger.warning("refresh_rejected", tenant_id=tenant.id, message=exc.message)
        failed = error_response(exc.status_code, exc.message, code=exc.error_code)
        _clear_auth_cookies(failed)
        return failed
    _set_auth_cookies(
        response, refresh_token=result.refresh_token, session_key=result.session_key
    )
    payload = TokenResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        csrf_token=result.csrf_token,
    )
    return _ok(payload, message="Token refreshed")


@router.get("/auth/csrf-token", response_model=Envelope, tags=["auth"])
async def csrf_token(
    response: Response,
    tenant: Tenant = Depends(resolve_tenant),
    session_key: Optional[str] = Depends(get_session_key),
):
    runtime = get_runtime()
    if not session_key:
        session_key = runtime.auth.new_session_key()
        _set_auth_cookies(response, refresh_token=None, session_key=session_key)
    result = await runtime.auth.issue_csrf(session_key)
    return _ok(CsrfTokenResponse(**result), message="CSRF token generated")


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(claims: Claims = Depends(get_user)):
    profile = await get_runtime().auth.me(claims)
    return _ok(UserInfo(**profile.to_dict()))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    request: Request,
    response: Response,
    claims: Claims = Depends(get_user),
    session_key: Optional[str] = Depends(get_session_key),
    _csrf: None = Depends(require_csrf),
):
    await get_runtime().auth.logout(
        _refresh_cookie(request),
        claims.subject,
        session_key=session_key,
        tenant_id=claims.tenant_id,
        **_client_meta(request),
    )
    _clear_auth_cookies(response)
    return _ok([], message="Logged out successfully")


@router.post("/auth/logout-all", response_model=Envelope, tags=["auth"])
async def logout_all(
    request: Request,
    response: Response,
    claims: Claims = Depends(get_user),
    session_key: Optional[str] = Depends(get_session_key),
    _csrf: None = Depends(require_csrf),
):
    revoked = await get_runtime().auth.logout_all(
        claims.subject,
        session_key=session_key,
        tenant_id=claims.tenant_id,
        **_client_meta(request),
    )
    _clear_auth_cookies(response)
    return _ok({"tokens_revoked": revoked}, message="Logged out from all devices")


@router.post("/auth/change-password", response_model=Envelope, tags=["auth"])
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    response: Response,
    claims: Claims = Depends(get_user),
    session_key: Optional[str] = Depends(get_session_key),
    _csrf: None = Depends(require_csrf),
):
    await get_runtime().auth.change_password(
        claims.subject,
        body.current_password,
        body.new_password,
        session_key=session_key,
        tenant_id=claims.tenant_id,
        **_client_meta(request),
    )
    _clear_auth_cookies(response)
    return _ok(
        {"force_logout": True},
        message="Password changed successfully. Please log in again on all devices.",
    )


# settings


@router.post("/settings/rotate-tokens", response_model=Envelope, tags=["settings"])
async def rotate_tokens(
    request: Request,
    response: Response,
    claims: Claims = Depends(get_user),
    session_key: Optional[str] = Depends(get_session_key),
    _csrf: None = Depends(require_csrf),
):
    raw = _refresh_cookie(request)
    if not raw:
        raise AuthenticationError("Refresh token not found. Please log in again.")
    result = await get_runtime().auth.rotate_tokens(
        raw,
        claims.subject,
        claims.tenant_id,
        session_key=session_key,
        **_client_meta(request),
    )
    _set_auth_cookies(
        response, refresh_token=result.refresh_token, session_key=result.session_key
    )
    payload = TokenResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        csrf_token=result.csrf_token,
    )
    return _ok(payload, message="Tokens rotated successfully")


@router.post("/settings/csrf-regenerate", response_model=Envelope, tags=["settings"])
async def csrf_regenerate(
    response: Response,
    claims: Claims = Depends(get_user),
    session_key: Optional[str] = Depends(get_session_key),
):
    runtime = get_runtime()
    if not session_key:
        session_key = runtime.auth.new_session_key()
        _set_auth_cookies(response, refresh_token=None, session_key=session_key)
    result = await runtime.auth.regenerate_csrf(session_key)
    return _ok(CsrfTokenResponse(**result), message="CSRF token regenerated")


@router.get("/settings/sessions", response_model=Envelope, tags=["settings"])
async def list_sessions(
    claims: Claims = Depends(get_user),
    session_key: Optional[str] = Depends(get_session_key),
):
    sessions = await get_runtime().auth.list_sessions(claims.subject)
    items = [
        SessionResponse(
            id=s.id,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            created_at=s.created_at,
            last_active=s.last_active,
            is_current=bool(session_key) and s.session_key == session_key,
        )
        for s in sessions
    ]
    return _ok({"sessions": items})


@router.delete("/settings/sessions/{session_id}", response_model=Envelope, tags=["settings"])
async def invalidate_session(
    request: Request,
    session_id: int = Path(..., ge=1),
    claims: Claims = Depends(get_user),
    _csrf: None = Depends(require_csrf),
):
    changed = await get_runtime().auth.invalidate_session(
        session_id, claims.subject, tenant_id=claims.tenant_id, **_client_meta(request)
    )
    if not changed:
        raise _http_error(
            "not_found", "Session not found or already invalidated.", status_code=404
        )
    return _ok([], message="Session invalidated successfully")


@router.get("/settings/audit-log", response_model=Envelope, tags=["settings"])
async def audit_log(
    claims: Claims = Depends(require_roles("Admin")),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    user_id: Optional[int] = Query(None, ge=1),
    action: Optional[str] = Query(None, max_length=100),
    entity_type: Optional[str] = Query(None, max_length=100),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
):
    result = await get_runtime().auth.audit_log(
        claims.tenant_id,
        page=page,
        per_page=per_page,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        date_from=date_from,
        date_to=date_to,
    )
    payload = AuditLogResponse(
        logs=[
            AuditEntryResponse(
                id=e.id,
                user_id=e.user_id,
                username=e.username,
                action=e.action,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                ip_address=e.ip_address,
                user_agent=e.user_agent,
                details=e.details,
                created_at=e.created_at,
            )
            for e in result["logs"]
        ],
        pagination=Pagination(**result["pagination"]),
    )
    return _ok(payload, message="Audit log retrieved")


@router.get("/settings/audit-log/actions", response_model=Envelope, tags=["settings"])
async def audit_actions(claims: Claims = Depends(require_roles("Admin"))):
    actions = await get_runtime().auth.audit_actions(claims.tenant_id)
    return _ok({"actions": actions})
