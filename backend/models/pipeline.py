"""
Formosa CRM - Modelo Pipeline

Etapas del embudo de ventas y su tag por defecto en ManyChat.
Cada cambio de etapa reemplaza el tag de pipeline del subscriber,
lo que dispara la automatización correspondiente en ManyChat.
"""

from typing import Optional
from pydantic import BaseModel, validator
from enum import Enum


class PipelineStage(str, Enum):
    CLIENTE_NUEVO = "CLIENTE_NUEVO"
    CONSULTANDO_CREDITO = "CONSULTANDO_CREDITO"
    SOLICITANDO_DOCS = "SOLICITANDO_DOCS"
    LISTO_ANALISIS = "LISTO_ANALISIS"
    PREAPROBADO = "PREAPROBADO"
    APROBADO = "APROBADO"
    EN_SEGUIMIENTO = "EN_SEGUIMIENTO"
    CERRADO_GANADO = "CERRADO_GANADO"
    ENCUESTA = "ENCUESTA"
    RECHAZADO = "RECHAZADO"
    SOLICITAR_REFERIDO = "SOLICITAR_REFERIDO"


STAGE_ORDER = [s.value for s in PipelineStage]

STAGE_INFO = {
    "CLIENTE_NUEVO":       {"name": "Cliente Nuevo",        "color": "bg-blue-100",    "tag": "lead-nuevo"},
    "CONSULTANDO_CREDITO": {"name": "Consultando Crédito",  "color": "bg-yellow-100",  "tag": "lead-consultando"},
    "SOLICITANDO_DOCS":    {"name": "Solicitando Docs",     "color": "bg-purple-100",  "tag": "solicitando-documentos"},
    "LISTO_ANALISIS":      {"name": "Listo para Análisis",  "color": "bg-indigo-100",  "tag": "solicitud-en-proceso"},
    "PREAPROBADO":         {"name": "Preaprobado",          "color": "bg-green-100",   "tag": "credito-preaprobado"},
    "APROBADO":            {"name": "Aprobado",             "color": "bg-emerald-100", "tag": "credito-aprobado"},
    "EN_SEGUIMIENTO":      {"name": "En Seguimiento",       "color": "bg-orange-100",  "tag": "en-seguimiento"},
    "CERRADO_GANADO":      {"name": "Cerrado Ganado",       "color": "bg-green-200",   "tag": "venta-cerrada"},
    "ENCUESTA":            {"name": "Encuesta",             "color": "bg-pink-100",    "tag": "encuesta-pendiente"},
    "RECHAZADO":           {"name": "Rechazado",            "color": "bg-red-100",     "tag": "credito-rechazado"},
    "SOLICITAR_REFERIDO":  {"name": "Solicitar Referido",   "color": "bg-teal-100",    "tag": "solicitar-referido"},
}

# Tags que sobreviven a los cambios de etapa
BUSINESS_TAGS = {
    "atencion-humana": "Requiere atención de un asesor",
    "venta-concretada": "Venta concretada (marca comercial)",
}

CLOSED_STAGES = ("CERRADO_GANADO", "RECHAZADO")


class PipelineMove(BaseModel):
    to_stage: str
    notes: Optional[str] = None
    reason: Optional[str] = None

    @validator("to_stage")
    def validate_stage(cls, v):
        v = (v or "").upper()
        if v not in STAGE_ORDER:
            raise ValueError(f"Etapa inválida: {v}")
        return v


class StageTagUpdate(BaseModel):
    manychat_tag: str
    tag_type: str = "pipeline"
    description: Optional[str] = None
    is_active: bool = True

    @validator("tag_type")
    def validate_tag_type(cls, v):
        if v not in ("pipeline", "business"):
            raise ValueError("tag_type debe ser pipeline o business")
        return v
