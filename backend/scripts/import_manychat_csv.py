"""
Formosa CRM - Importa contactos desde un CSV exportado de ManyChat.
ManyChat: Contacts -> filtrar -> seleccionar todos -> Export.
Acepta separador coma o punto y coma. Upsert por manychatId y luego por teléfono.
Run: cd backend && python3 scripts/import_manychat_csv.py export.csv [--dry-run]
"""

import argparse
import asyncio
import csv
import io
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, now_iso, normalize_phone_ar
from services.leads import create_lead, DuplicateLeadError
from services.manychat_sync import sync_subscriber_to_lead
from services.tags import parse_tags

ID_COLUMNS = ("Subscriber ID", "subscriber_id", "ID", "id", "PSID", "psid")
PHONE_COLUMNS = ("Phone", "phone", "WhatsApp Phone", "whatsapp_phone", "Teléfono", "telefono",
                 "Phone Number", "phone_number")
FIRST_NAME_COLUMNS = ("First Name", "first_name", "Nombre", "nombre")
LAST_NAME_COLUMNS = ("Last Name", "last_name", "Apellido", "apellido")
EMAIL_COLUMNS = ("Email", "email", "Correo", "correo")
TAG_COLUMNS = ("Tags", "tags", "tag", "Etiquetas", "etiquetas", "Labels")
CUSTOM_FIELD_COLUMNS = {
    "dni": ("DNI", "dni", "Documento", "documento"),
    "cuil": ("CUIL", "cuil", "CUIT", "cuit"),
    "ingresos": ("Ingresos", "ingresos", "Income", "income"),
    "zona": ("Zona", "zona", "Localidad", "localidad"),
    "producto": ("Producto", "producto", "Modelo", "modelo"),
}


def first(row: dict, columns) -> str:
    for col in columns:
        value = (row.get(col) or "").strip()
        if value:
            return value
    return ""


def read_rows(text: str) -> list:
    header = text.splitlines()[0] if text else ""
    delimiter = ";" if ";" in header else ","
    return list(csv.DictReader(io.StringIO(text), delimiter=delimiter))


def subscriber_from_row(row: dict) -> dict:
    """Fila del CSV con la forma de un subscriber de la API."""
    custom = {}
    for field, columns in CUSTOM_FIELD_COLUMNS.items():
        value = first(row, columns)
        if value:
            custom[field] = value

    phone = first(row, PHONE_COLUMNS)
    return {
        "id": first(row, ID_COLUMNS) or None,
        "first_name": first(row, FIRST_NAME_COLUMNS),
        "last_name": first(row, LAST_NAME_COLUMNS),
        "name": first(row, ("Name", "name")),
        "phone": normalize_phone_ar(phone) if phone else None,
        "email": first(row, EMAIL_COLUMNS) or None,
        "tags": parse_tags(first(row, TAG_COLUMNS)),
        "custom_fields": custom,
    }


async def import_row(sub: dict) -> str:
    """Returns: created | updated | skipped"""
    if sub["id"]:
        _, created = await sync_subscriber_to_lead(sub)
        return "created" if created else "updated"

    if not sub["phone"]:
        return "skipped"

    existing = await db.leads.find_one({"telefono": sub["phone"]}, {"_id": 0, "id": 1, "tags": 1})
    if existing:
        tags = list(dict.fromkeys((existing.get("tags") or []) + sub["tags"]))
        await db.leads.update_one({"id": existing["id"]}, {"$set": {"tags": tags, "updatedAt": now_iso()}})
        return "updated"

    nombre = f"{sub['first_name']} {sub['last_name']}".strip() or sub["name"] or "Contacto Manychat"
    try:
        await create_lead({
            "nombre": nombre,
            "telefono": sub["phone"],
            "email": sub["email"],
            "origen": "whatsapp",
            "tags": sub["tags"],
            "customFields": sub["custom_fields"],
            **{k: v for k, v in sub["custom_fields"].items() if k in ("dni", "cuil", "zona", "producto")},
        }, user="import_csv", source="csv")
    except DuplicateLeadError:
        return "updated"
    return "created"


async def main(path: Path, dry_run: bool = False):
    rows = read_rows(path.read_text(encoding="utf-8-sig"))
    print(f"Filas en el CSV: {len(rows)}")

    counts = {"created": 0, "updated": 0, "skipped": 0}
    errors = []
    for i, row in enumerate(rows, start=2):
        sub = subscriber_from_row(row)
        if dry_run:
            counts["skipped" if not (sub["id"] or sub["phone"]) else "updated"] += 1
            continue
        try:
            counts[await import_row(sub)] += 1
        except Exception as e:
            errors.append({"line": i, "error": str(e)})

    client.close()

    print("\n════════════════════════════════════")
    print("  IMPORT REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Filas:          {len(rows)}")
    print(f"  Nuevos:         {counts['created']}")
    print(f"  Actualizados:   {counts['updated']}")
    print(f"  Sin tel. ni ID: {counts['skipped']}")
    print(f"  Errores:        {len(errors)}")
    print("════════════════════════════════════")
    for e in errors[:20]:
        print(f"  línea {e['line']}: {e['error']}")
    return counts


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("file", help="CSV exportado de ManyChat")
    parser.add_argument("--dry-run", action="store_true", help="Solo cuenta filas importables")
    args = parser.parse_args()
    asyncio.run(main(Path(args.file), args.dry_run))
