"""
Formosa CRM - Modelos Auth & Usuarios
Modelo híbrido rol + permisos.
Los roles son presets. Los permisos son la autoridad real.
"""

from pydantic import BaseModel, validator
from typing import Optional, Dict


VALID_ROLES = ["ADMIN", "MANAGER", "ANALISTA", "VENDEDOR", "VIEWER"]


class UserLogin(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str
    password: str
    nombre: str
    role: str = "VIEWER"
    permissions: Optional[Dict[str, bool]] = None

    @validator("role")
    def validate_role(cls, v):
        if v.upper() not in VALID_ROLES:
            raise ValueError(f"Rol inválido: {v}. Válidos: {VALID_ROLES}")
        return v.upper()


class UserUpdate(BaseModel):
    nombre: Optional[str] = None
    role: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None
    is_active: Optional[bool] = None

    @validator("role")
    def validate_role(cls, v):
        if v is not None and v.upper() not in VALID_ROLES:
            raise ValueError(f"Rol inválido: {v}")
        return v.upper() if v else v

