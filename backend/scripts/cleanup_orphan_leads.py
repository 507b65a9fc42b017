"""
Formosa CRM - Leads huérfanos: su manychatId apunta a un subscriber que ya
no existe en ManyChat.
Modos:
    clean   limpia el manychatId y conserva el lead (por defecto)
    mark    agrega el tag "huerfano" y orphanedAt
    delete  borra el lead con su pipeline y conversaciones (pide --yes)
Run: cd backend && python3 scripts/cleanup_orphan_leads.py [clean|mark|delete] [--yes] [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, now_iso
from services.leads import delete_lead
from services.manychat_client import get_manychat_client, ManychatError

MODES = ("clean", "mark", "delete")
ORPHAN_TAG = "huerfano"


async def find_orphans(manychat) -> tuple:
    """Returns: (huérfanos, errores). Un error de la API no marca al lead como huérfano."""
    orphans = []
    errors = []
    async for lead in db.leads.find({"manychatId": {"$nin": [None, ""]}},
                                    {"_id": 0, "id": 1, "nombre": 1, "manychatId": 1, "tags": 1}):
        try:
            subscriber = await manychat.get_subscriber_info(lead["manychatId"])
        except ManychatError as e:
            errors.append({"id": lead["id"], "reason": str(e)})
            continue
        if not subscriber:
            orphans.append(lead)
    return orphans, errors


async def process(lead: dict, mode: str):
    if mode == "clean":
        await db.leads.update_one({"id": lead["id"]}, {"$set": {"manychatId": None, "updatedAt": now_iso()}})
    elif mode == "mark":
        tags = list(dict.fromkeys((lead.get("tags") or []) + [ORPHAN_TAG]))
        await db.leads.update_one(
            {"id": lead["id"]}, {"$set": {"tags": tags, "orphanedAt": now_iso(), "updatedAt": now_iso()}}
        )
    else:
        await delete_lead(lead["id"], user="cleanup_orphans")


async def main(mode: str = "clean", dry_run: bool = False) -> dict:
    manychat = get_manychat_client()
    if not manychat.is_configured():
        print("MANYCHAT_API_KEY no configurado")
        sys.exit(1)

    total = await db.leads.count_documents({"manychatId": {"$nin": [None, ""]}})
    print(f"Leads con manychatId: {total}  (modo {mode})")

    orphans, errors = await find_orphans(manychat)
    for lead in orphans:
        if dry_run:
            print(f"  [dry-run] {lead['id'][:8]}... {lead.get('nombre')} (subscriber {lead['manychatId']})")
            continue
        await process(lead, mode)

    client.close()

    print("\n════════════════════════════════════")
    print("  ORPHANS REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Revisados:   {total}")
    print(f"  Huérfanos:   {len(orphans)}")
    print(f"  Procesados:  {0 if dry_run else len(orphans)}")
    print(f"  Errores:     {len(errors)}")
    print("════════════════════════════════════")
    for e in errors[:20]:
        print(f"  lead={e['id'][:8]}... {e['reason']}")
    return {"total": total, "orphans": len(orphans),
            "processed": 0 if dry_run else len(orphans), "errors": len(errors)}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("mode", nargs="?", default="clean", choices=MODES)
    parser.add_argument("--yes", action="store_true", help="Confirma el modo delete")
    parser.add_argument("--dry-run", action="store_true", help="Solo lista los huérfanos")
    args = parser.parse_args()
    if args.mode == "delete" and not args.yes and not args.dry_run:
        parser.error("delete borra leads definitivamente: agregar --yes")
    asyncio.run(main(args.mode, args.dry_run))
