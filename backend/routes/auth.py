"""
Formosa CRM - Rutas Auth

Sesiones por token Bearer (colección sessions, vencen a los SESSION_DAYS).
Usuarios del CRM (vendedores, analistas, gerencia) con permisos granulares:
el rol solo elige el preset inicial.
"""

import uuid
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import config
from config import db, hash_password, generate_token, now_iso
from models.auth import UserLogin, UserCreate, UserUpdate
from services.activity_logger import log_activity
from services.permissions import (
    get_preset_permissions,
    VALID_ROLES,
    ALL_PERMISSION_KEYS,
    ROLE_PRESETS,
    require_permission,
)

logger = logging.getLogger("auth")

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)

HIDDEN_FIELDS = {"_id": 0, "password": 0}


def _with_permissions(user: dict) -> dict:
    """Usuarios viejos sin permisos guardados heredan el preset de su rol."""
    if not user.get("permissions"):
        user["permissions"] = get_preset_permissions(user.get("role", "VIEWER"))
    return user


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _open_session(user_id: str) -> dict:
    expires_at = datetime.now(timezone.utc) + timedelta(days=config.SESSION_DAYS)
    session = {
        "token": generate_token(),
        "user_id": user_id,
        "created_at": now_iso(),
        "expires_at": expires_at.isoformat(),
    }
    await db.sessions.insert_one(dict(session))
    return session


async def _get_target(user_id: str) -> dict:
    target = await db.users.find_one({"id": user_id}, HIDDEN_FIELDS)
    if not target:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")
    return target


def _refuse_self_deactivation(user_id: str, actor: dict):
    if user_id == actor.get("id"):
        raise HTTPException(status_code=400, detail="No podés desactivar tu propia cuenta")


# ==================== SESIÓN ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Usuario de la sesión a partir del token Bearer."""
    if not credentials:
        raise HTTPException(status_code=401, detail="No autenticado")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        raise HTTPException(status_code=401, detail="Sesión expirada")

    user = await db.users.find_one({"id": session["user_id"]}, HIDDEN_FIELDS)
    if not user:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Cuenta desactivada")

    return _with_permissions(user)


@router.post("/login")
async def login(data: UserLogin, request: Request):
    email = data.email.lower().strip()
    user = await db.users.find_one({"email": email}, {"_id": 0})

    if not user or user.get("password") != hash_password(data.password):
        logger.warning(f"Login fallido para {email}")
        raise HTTPException(status_code=401, detail="Email o contraseña incorrectos")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Cuenta desactivada")

    session = await _open_session(user["id"])
    await log_activity(user=user, action="login", entity_type="user",
                       entity_id=user["id"], ip_address=_client_ip(request))

    user.pop("password", None)
    _with_permissions(user)
    return {
        "token": session["token"],
        "expires_at": session["expires_at"],
        "user": {k: user.get(k) for k in ("id", "email", "nombre", "role", "permissions")},
    }


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    await db.sessions.delete_one({"token": credentials.credentials})
    await log_activity(user=user, action="logout", entity_type="user", entity_id=user.get("id"))
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return user


@router.get("/permission-keys")
async def list_permission_keys(user: dict = Depends(require_permission("users.manage"))):
    """Claves y presets para la pantalla de usuarios."""
    return {"keys": ALL_PERMISSION_KEYS, "presets": ROLE_PRESETS, "roles": VALID_ROLES}


# ==================== USUARIOS (users.manage) ====================

@router.get("/users")
async def list_users(role: Optional[str] = None, user: dict = Depends(require_permission("users.manage"))):
    query = {"role": role.upper()} if role else {}
    users = await db.users.find(query, HIDDEN_FIELDS).sort("nombre", 1).to_list(200)
    return {"users": [_with_permissions(u) for u in users]}


@router.post("/users")
async def create_user(data: UserCreate, user: dict = Depends(require_permission("users.manage"))):
    email = data.email.lower().strip()
    if await db.users.find_one({"email": email}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=409, detail="Ya existe un usuario con ese email")

    doc = {
        "id": str(uuid.uuid4()),
        "email": email,
        "password": hash_password(data.password),
        "nombre": data.nombre,
        "role": data.role,
        "permissions": data.permissions or get_preset_permissions(data.role),
        "is_active": True,
        "created_at": now_iso(),
        "created_by": user.get("id"),
    }
    await db.users.insert_one(dict(doc))
    await log_activity(user=user, action="create_user", entity_type="user",
                       entity_id=doc["id"], entity_name=email, details={"role": data.role})

    doc.pop("password")
    return {"success": True, "user": doc}


@router.patch("/users/{user_id}")
async def update_user(user_id: str, data: UserUpdate, user: dict = Depends(require_permission("users.manage"))):
    target = await _get_target(user_id)
    changes = data.model_dump(exclude_none=True)

    # un cambio de rol sin permisos explícitos vuelve al preset del rol nuevo
    if "role" in changes and "permissions" not in changes:
        changes["permissions"] = get_preset_permissions(changes["role"])
    if changes.get("is_active") is False:
        _refuse_self_deactivation(user_id, user)

    await db.users.update_one({"id": user_id}, {"$set": {**changes, "updated_at": now_iso()}})
    if changes.get("is_active") is False:
        await db.sessions.delete_many({"user_id": user_id})

    await log_activity(user=user, action="update_user", entity_type="user",
                       entity_id=user_id, entity_name=target.get("email"), details=changes)
    return {"success": True, "user": await _get_target(user_id)}


@router.delete("/users/{user_id}")
async def deactivate_user(user_id: str, user: dict = Depends(require_permission("users.manage"))):
    """Baja lógica: is_active=False y se cierran sus sesiones."""
    target = await _get_target(user_id)
    _refuse_self_deactivation(user_id, user)

    await db.users.update_one({"id": user_id}, {"$set": {"is_active": False, "deactivated_at": now_iso()}})
    removed = await db.sessions.delete_many({"user_id": user_id})

    await log_activity(user=user, action="deactivate_user", entity_type="user",
                       entity_id=user_id, entity_name=target.get("email"),
                       details={"sessions_closed": removed.deleted_count})
    return {"success": True}
