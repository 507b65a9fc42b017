"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Formosa CRM - Modelo Lead                                                   ║
║                                                                              ║
║  REGLAS:                                                                     ║
║  1. Un lead se identifica por teléfono, DNI o manychatId                     ║
║  2. Duplicado = mismo teléfono o mismo DNI (409 con el id existente)         ║
║  3. origen: canal de entrada (whatsapp, instagram, facebook, web...)         ║
║  4. estado: estado comercial, independiente de la etapa del pipeline        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, validator
from enum import Enum


class LeadEstado(str, Enum):
    NUEVO = "NUEVO"
    EN_REVISION = "EN_REVISION"
    PREAPROBADO = "PREAPROBADO"
    RECHAZADO = "RECHAZADO"
    DOC_PENDIENTE = "DOC_PENDIENTE"
    DERIVADO = "DERIVADO"


class LeadOrigen(str, Enum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    WEB = "web"
    COMENTARIO = "comentario"
    UNKNOWN = "unknown"


VALID_ESTADOS = [e.value for e in LeadEstado]
VALID_ORIGENES = [o.value for o in LeadOrigen]


class LeadCreate(BaseModel):
    """Alta manual o desde formulario web"""
    nombre: str
    telefono: str
    email: Optional[str] = None
    dni: Optional[str] = None
    cuil: Optional[str] = None
    ingresos: Optional[int] = None
    zona: Optional[str] = None
    producto: Optional[str] = None
    monto: Optional[int] = None
    agencia: Optional[str] = None
    banco: Optional[str] = None
    trabajo_actual: Optional[str] = None
    origen: str = "web"
    estado: str = "NUEVO"
    notas: Optional[str] = None
    tags: List[str] = []
    customFields: Dict[str, Any] = {}

    @validator("nombre", "telefono")
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Campo obligatorio")
        return v.strip()

    @validator("origen")
    def validate_origen(cls, v):
        if v not in VALID_ORIGENES:
            raise ValueError(f"Origen inválido: {v}")
        return v

    @validator("estado")
    def validate_estado(cls, v):
        if v not in VALID_ESTADOS:
            raise ValueError(f"Estado inválido: {v}")
        return v


class LeadUpdate(BaseModel):
    nombre: Optional[str] = None
    telefono: Optional[str] = None
    email: Optional[str] = None
    dni: Optional[str] = None
    cuil: Optional[str] = None
    ingresos: Optional[int] = None
    zona: Optional[str] = None
    producto: Optional[str] = None
    monto: Optional[int] = None
    agencia: Optional[str] = None
    banco: Optional[str] = None
    trabajo_actual: Optional[str] = None
    origen: Optional[str] = None
    estado: Optional[str] = None
    notas: Optional[str] = None
    tags: Optional[List[str]] = None
    customFields: Optional[Dict[str, Any]] = None

    @validator("estado")
    def validate_estado(cls, v):
        if v is not None and v not in VALID_ESTADOS:
            raise ValueError(f"Estado inválido: {v}")
        return v

    @validator("origen")
    def validate_origen(cls, v):
        if v is not None and v not in VALID_ORIGENES:
            raise ValueError(f"Origen inválido: {v}")
        return v


class LeadSyncRequest(BaseModel):
    """to_manychat: crea el subscriber. from_manychat: refresca el lead."""
    direction: str = "to_manychat"

    @validator("direction")
    def validate_direction(cls, v):
        if v not in ("to_manychat", "from_manychat"):
            raise ValueError("direction debe ser to_manychat o from_manychat")
        return v
