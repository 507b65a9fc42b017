"""
Formosa CRM - Modelo Documento (adjuntos del legajo del lead)
"""

from typing import Optional
from pydantic import BaseModel, validator
from enum import Enum


class DocumentCategory(str, Enum):
    DNI = "dni"
    COMPROBANTES = "comprobantes"
    CONTRATOS = "contratos"
    RECIBOS = "recibos"
    OTROS = "otros"


class DocumentStatus(str, Enum):
    PENDIENTE = "PENDIENTE"
    APROBADO = "APROBADO"
    RECHAZADO = "RECHAZADO"


VALID_CATEGORIES = [c.value for c in DocumentCategory]
VALID_DOC_STATUSES = [s.value for s in DocumentStatus]

ALLOWED_MIME_TYPES = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}


class DocumentUpdate(BaseModel):
    status: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None

    @validator("status")
    def validate_status(cls, v):
        if v is not None and v not in VALID_DOC_STATUSES:
            raise ValueError(f"Estado inválido: {v}")
        return v

    @validator("category")
    def validate_category(cls, v):
        if v is not None and v not in VALID_CATEGORIES:
            raise ValueError(f"Categoría inválida: {v}")
        return v
