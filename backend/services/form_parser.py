"""
Parser de mensajes "Solicitud de Crédito".

El formulario de la landing arma un mensaje de WhatsApp con este formato:

    📋 *Solicitud de Crédito*
    👤 Nombre: Juan Pérez
    🪪 DNI/CUIT: 20-12345678-9
    📱 Teléfono: +54 9 370 412-3456
    📧 Email: juan@mail.com
    💰 Ingresos: $1.500.000
    📍 Zona: Formosa Capital
    🏍️ Marca: Honda
    🏍️ Modelo: Wave 110
    📆 Cuotas: 12 meses
    *Comentarios:*
    Quiero retirar la semana que viene

Cuando llega por webhook se extraen los datos y se completan en el lead.
"""

import re
import logging
from typing import Optional

from config import db, now_iso
from services.identifiers import extract_cuil_or_dni

logger = logging.getLogger("form_parser")

FORM_MARKER = "Solicitud de Crédito"

_FLAGS = re.IGNORECASE | re.MULTILINE

NOMBRE_RE = re.compile(r"Nombre:\s*(.+?)(?=\n|$)", _FLAGS)
DNI_RE = re.compile(r"DNI/CUIT:\s*([\d\s\-]+?)(?=\n|$)", _FLAGS)
TELEFONO_RE = re.compile(r"Teléfono:[\s\S]*?\s*([+\d][\d\s\-+]*?)(?=\n|$)", _FLAGS)
EMAIL_RE = re.compile(r"Email:[\s\S]*?\s*([^\s•\n]+@[^\s•\n]+?)(?=\n|$)", _FLAGS)
INGRESOS_RE = re.compile(r"Ingresos:[\s\S]*?\$?\s*([\d.,]+?)(?=\n|$)", _FLAGS)
ZONA_RE = re.compile(r"Zona:[\s\S]*?\s*(.+?)(?=\n|$)", _FLAGS)
MARCA_RE = re.compile(r"Marca:\s*(.+?)(?=\n|$)", _FLAGS)
MODELO_RE = re.compile(r"Modelo:\s*(.+?)(?=\n|$)", _FLAGS)
CUOTAS_RE = re.compile(r"Cuotas:[\s\S]*?(\d+)\s*meses", _FLAGS)
COMENTARIOS_RE = re.compile(r"\*?\s*Comentarios:\s*\*?\s*\n([\s\S]*?)(?=\n\s*\n|\n\s*✅|$)", _FLAGS)


def _group(pattern, content: str) -> Optional[str]:
    m = pattern.search(content)
    if not m or not m.group(1):
        return None
    return m.group(1).strip() or None


def _parse_ingresos(raw: Optional[str]) -> Optional[int]:
    """'1.500.000' -> 1500000 ; '1500,50' -> 1500"""
    if not raw:
        return None
    num = raw.replace(".", "").replace(",", ".", 1)
    m = re.match(r"\d+", num)
    return int(m.group(0)) if m else None


def parse_form_message(content: str) -> Optional[dict]:
    """
    Devuelve los campos encontrados (solo claves con valor) o None si el
    mensaje no es un formulario o no trae ningún dato reconocible.
    """
    if not content or FORM_MARKER not in content:
        return None

    nombre = _group(NOMBRE_RE, content)
    dni_raw = _group(DNI_RE, content)
    cuil = extract_cuil_or_dni(dni_raw) if dni_raw else None
    telefono = _group(TELEFONO_RE, content)
    if telefono:
        telefono = re.sub(r"\s", "", telefono)
    email = _group(EMAIL_RE, content)
    ingresos = _parse_ingresos(_group(INGRESOS_RE, content))
    zona = _group(ZONA_RE, content)
    marca = _group(MARCA_RE, content)
    modelo = _group(MODELO_RE, content)
    m = CUOTAS_RE.search(content)
    cuotas = m.group(1) if m else None
    comentarios = _group(COMENTARIOS_RE, content)

    if not any([nombre, cuil, dni_raw, telefono, email, ingresos is not None,
                zona, marca, modelo, cuotas, comentarios]):
        return None

    if marca and modelo:
        producto = f"{marca} {modelo}"
    else:
        producto = marca or modelo

    parsed = {
        "nombre": nombre,
        "dni": dni_raw,
        "cuil": cuil,
        "telefono": telefono,
        "email": email,
        "ingresos": ingresos,
        "zona": zona,
        "marca": marca,
        "modelo": modelo,
        "cuotas": cuotas,
        "comentarios": comentarios,
        "producto": producto,
    }
    return {k: v for k, v in parsed.items() if v is not None}


CUSTOM_FIELD_KEYS = (
    "cuil", "dni", "ingresos", "zona", "producto", "marca", "modelo",
    "cuotas", "email", "nombre", "comentarios",
)
DIRECT_COLUMNS = ("cuil", "email", "ingresos", "zona", "producto")


async def update_lead_from_parsed_form(lead_id: str, parsed: dict) -> dict:
    """
    Mezcla los datos parseados en customFields y en las columnas directas
    del lead. Lanza LookupError si el lead no existe.
    """
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0, "id": 1, "customFields": 1})
    if not lead:
        logger.warning(f"update_lead_from_parsed_form: lead {lead_id} no encontrado")
        raise LookupError(f"Lead {lead_id} no encontrado")

    custom = dict(lead.get("customFields") or {})
    for key in CUSTOM_FIELD_KEYS:
        if parsed.get(key) is not None:
            custom[key] = parsed[key]

    update = {"customFields": custom, "updatedAt": now_iso()}
    for key in DIRECT_COLUMNS:
        if parsed.get(key) is not None:
            update[key] = parsed[key]

    await db.leads.update_one({"id": lead_id}, {"$set": update})
    logger.info(f"Lead {lead_id} actualizado desde formulario: {sorted(parsed.keys())}")
    return update
