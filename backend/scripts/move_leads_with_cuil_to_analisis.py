"""
Formosa CRM - Migración: pasar a LISTO_ANALISIS los leads que ya informaron CUIL.
Aplica la misma regla que el auto-move de webhooks y formularios.
Run: cd backend && python3 scripts/move_leads_with_cuil_to_analisis.py [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client
from services.identifiers import extract_cuil_from_lead, is_valid_cuil
from services.pipeline import check_and_move_lead_with_cuil, get_lead_pipeline
from services.settings import get_auto_move_settings


async def migrate(dry_run: bool = False) -> dict:
    rules = await get_auto_move_settings()
    total = await db.leads.count_documents({})
    print(f"Total leads: {total}  (de {rules['from_stages']} a {rules['to_stage']})")

    with_cuil = 0
    moved = 0
    skipped = 0

    async for lead in db.leads.find({}, {"_id": 0}):
        cuil = extract_cuil_from_lead(lead)
        if not cuil or not is_valid_cuil(cuil):
            continue
        with_cuil += 1

        if dry_run:
            pipeline = await get_lead_pipeline(lead["id"])
            stage = pipeline["current_stage"] if pipeline else None
            if stage is None or stage in rules["from_stages"]:
                moved += 1
                print(f"  [dry-run] {lead['id'][:8]}... {lead.get('nombre')} ({stage or 'sin pipeline'})")
            else:
                skipped += 1
            continue

        if await check_and_move_lead_with_cuil(lead["id"]):
            moved += 1
        else:
            skipped += 1

    client.close()

    print("\n════════════════════════════════════")
    print("  AUTO-MOVE REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Total leads:   {total}")
    print(f"  Con CUIL:      {with_cuil}")
    print(f"  Movidos:       {moved}")
    print(f"  Sin cambios:   {skipped}")
    print("════════════════════════════════════")
    return {"total": total, "with_cuil": with_cuil, "moved": moved, "skipped": skipped}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="No modifica nada")
    args = parser.parse_args()
    asyncio.run(migrate(args.dry_run))
