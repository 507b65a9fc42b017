"""
Formosa CRM - Parser de mensajes "Solicitud de Crédito"
Run: cd backend && pytest tests/test_form_parser.py -v
"""

import asyncio
import pytest

from config import db
from services.form_parser import parse_form_message, update_lead_from_parsed_form


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


FORM = "\n".join([
    "📋 *Solicitud de Crédito*",
    "👤 Nombre: Juan Pérez",
    "🪪 DNI/CUIT: 20-12345678-9",
    "📱 Teléfono: +54 9 370 412-3456",
    "📧 Email: juan@mail.com",
    "💰 Ingresos: $1.500.000",
    "📍 Zona: Formosa Capital",
    "🏍️ Marca: Honda",
    "🏍️ Modelo: Wave 110",
    "📆 Cuotas: 12 meses",
    "*Comentarios:*",
    "Quiero retirar la semana que viene",
])


class TestParseFormMessage:

    def test_full_form(self):
        parsed = parse_form_message(FORM)
        assert parsed["nombre"] == "Juan Pérez"
        assert parsed["dni"] == "20-12345678-9"
        assert parsed["cuil"] == "20-12345678-9"
        assert parsed["telefono"] == "+549370412-3456"
        assert parsed["email"] == "juan@mail.com"
        assert parsed["ingresos"] == 1500000
        assert parsed["zona"] == "Formosa Capital"
        assert parsed["cuotas"] == "12"
        assert parsed["producto"] == "Honda Wave 110"
        assert parsed["comentarios"] == "Quiero retirar la semana que viene"

    def test_not_a_form(self):
        assert parse_form_message("Hola, quiero info de la moto") is None
        assert parse_form_message("") is None

    def test_marker_without_fields(self):
        assert parse_form_message("*Solicitud de Crédito*") is None

    def test_partial_form_only_returns_found_fields(self):
        parsed = parse_form_message("*Solicitud de Crédito*\nNombre: Ana\nModelo: Wave")
        assert parsed == {"nombre": "Ana", "modelo": "Wave", "producto": "Wave"}


class TestUpdateLeadFromParsedForm:

    def test_merges_into_custom_fields_and_columns(self):
        _db_op(db.leads.insert_one({
            "id": "lead-1", "nombre": "Juan", "telefono": "+5493704123456",
            "customFields": {"origen": "whatsapp"},
        }))
        _db_op(update_lead_from_parsed_form("lead-1", parse_form_message(FORM)))

        lead = _db_op(db.leads.find_one({"id": "lead-1"}, {"_id": 0}))
        assert lead["cuil"] == "20-12345678-9"
        assert lead["ingresos"] == 1500000
        assert lead["producto"] == "Honda Wave 110"
        assert lead["customFields"]["origen"] == "whatsapp"
        assert lead["customFields"]["cuotas"] == "12"
        # el nombre del formulario no pisa la columna
        assert lead["nombre"] == "Juan"

    def test_unknown_lead(self):
        with pytest.raises(LookupError):
            _db_op(update_lead_from_parsed_form("nope", {"nombre": "X"}))
