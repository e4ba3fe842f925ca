from __future__ import annotations

from typing import Any, Dict, Optional

from clinicauth.logging import get_logger
from clinicauth.service.auth import AuthService
from clinicauth.storage.models import DEFAULT_ROLES, Role

logger = get_logger(__name__)

DEFAULT_ROLE_PERMISSIONS: Dict[str, tuple[str, ...]] = {
    "Admin": (
        "appointments.manage",
        "appointments.view",
        "invoices.manage",
        "invoices.view",
        "patients.manage",
        "patients.view",
        "prescriptions.manage",
        "prescriptions.view",
        "reports.view",
        "settings.audit",
        "staff.manage",
        "users.manage",
    ),
    "Provider": (
        "appointments.manage",
        "appointments.view",
        "patients.manage",
        "patients.view",
        "prescriptions.manage",
        "prescriptions.view",
    ),
    "Nurse": ("appointments.view", "patients.view", "prescriptions.view"),
    "Patient": ("appointments.view", "invoices.view", "prescriptions.view"),
    "Pharmacist": ("prescriptions.manage", "prescriptions.view"),
    "Receptionist": (
        "appointments.manage",
        "appointments.view",
        "invoices.manage",
        "invoices.view",
        "patients.view",
    ),
}


async def provision_tenant(
    store: Any,
    auth: AuthService,
    code: str,
    name: str,
    *,
    admin_username: Optional[str] = None,
    admin_password: Optional[str] = None,
    admin_email: Optional[str] = None,
    admin_full_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a tenant with the default roles and, optionally, its first Admin.

    Safe to re-run: existing tenants, roles and users are left as they are.
    """
    tenant = store.get_tenant_by_code(code)
    if tenant is None:
        tenant = store.create_tenant(code, name)
        logger.info("tenant_created", tenant_id=tenant.id, code=code)

    roles: Dict[str, Role] = {}
    for role_name in DEFAULT_ROLES:
        role = store.get_role_by_name(tenant.id, role_name)
        if role is None:
            role = store.create_role(
                tenant.id,
                role_name,
                permissions=DEFAULT_ROLE_PERMISSIONS.get(role_name, ()),
            )
        roles[role_name] = role

    admin_user_id: Optional[int] = None
    if admin_username and admin_password and admin_email:
        existing = store.get_user_by_username(tenant.id, admin_username)
        if existing:
            admin_user_id = existing.id
        else:
            created = await auth.register(
                tenant.id,
                admin_username,
                admin_email,
                admin_password,
                full_name=admin_full_name,
                role_id=roles["Admin"].id,
            )
            admin_user_id = created["user_id"]
    return {"tenant": tenant, "roles": roles, "admin_user_id": admin_user_id}
