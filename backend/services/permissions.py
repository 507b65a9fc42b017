"""
Formosa CRM - Sistema de permisos
Claves de permiso granulares + presets por rol + dependencias FastAPI.
Los permisos son la fuente de verdad. Los roles son solo presets.
"""

import logging
from typing import Dict
from fastapi import Depends, HTTPException

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# CLAVES DE PERMISO
# ════════════════════════════════════════════════════════════════════════

ALL_PERMISSION_KEYS = [
    "dashboard.view",
    "reports.view",

    "leads.view",
    "leads.create",
    "leads.edit",
    "leads.delete",

    "pipeline.view",
    "pipeline.write",

    "messaging.view",
    "messaging.send",

    "documents.view",
    "documents.upload",
    "documents.review",

    "tags.view",

    "manychat.sync",

    "activity.view",
    "settings.access",
    "users.manage",
]

# ════════════════════════════════════════════════════════════════════════
# PRESETS POR ROL
# ════════════════════════════════════════════════════════════════════════

def _preset(*granted: str) -> Dict[str, bool]:
    return {k: k in granted for k in ALL_PERMISSION_KEYS}


ROLE_PRESETS: Dict[str, Dict[str, bool]] = {
    "ADMIN": {k: True for k in ALL_PERMISSION_KEYS},

    "MANAGER": _preset(
        "dashboard.view", "reports.view",
        "leads.view", "leads.create", "leads.edit", "leads.delete",
        "pipeline.view", "pipeline.write",
        "messaging.view", "messaging.send",
        "documents.view", "documents.upload", "documents.review",
        "tags.view", "manychat.sync", "activity.view",
    ),

    "ANALISTA": _preset(
        "dashboard.view", "reports.view",
        "leads.view", "leads.edit",
        "pipeline.view", "pipeline.write",
        "messaging.view",
        "documents.view", "documents.upload", "documents.review",
        "tags.view",
    ),

    "VENDEDOR": _preset(
        "dashboard.view",
        "leads.view", "leads.create", "leads.edit",
        "pipeline.view", "pipeline.write",
        "messaging.view", "messaging.send",
        "documents.view", "documents.upload",
        "tags.view",
    ),

    "VIEWER": _preset(
        "dashboard.view", "reports.view",
        "leads.view", "pipeline.view", "messaging.view",
        "documents.view", "tags.view",
    ),
}

VALID_ROLES = list(ROLE_PRESETS.keys())


def get_preset_permissions(role: str) -> Dict[str, bool]:
    """Permisos por defecto de un rol."""
    return dict(ROLE_PRESETS.get((role or "").upper(), ROLE_PRESETS["VIEWER"]))


# ════════════════════════════════════════════════════════════════════════
# CHEQUEOS
# ════════════════════════════════════════════════════════════════════════

def user_has_permission(user: dict, key: str) -> bool:
    if user.get("role") == "ADMIN":
        return True
    perms = user.get("permissions") or {}
    return perms.get(key, False) is True


# ════════════════════════════════════════════════════════════════════════
# DEPENDENCIAS FASTAPI
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    Fábrica de dependencias.
    Uso: user: dict = Depends(require_permission("leads.view"))
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if not user_has_permission(user, permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={permission_key} role={user.get('role')}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permiso requerido: {permission_key}"
            )
        return user

    return _check
