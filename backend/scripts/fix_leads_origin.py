"""
Formosa CRM - Migración: recalcula el origen de los leads sincronizados desde ManyChat.
Detecta el canal (whatsapp / instagram / facebook) con los datos del subscriber
y actualiza el lead y el custom field "origen" en ManyChat.
Run: cd backend && python3 scripts/fix_leads_origin.py [--dry-run] [--only-unknown]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, now_iso
from services.channel_detection import detect_channel
from services.manychat_client import get_manychat_client, ManychatError


async def migrate(dry_run: bool = False, only_unknown: bool = False) -> dict:
    manychat = get_manychat_client()
    if not manychat.is_configured():
        print("MANYCHAT_API_KEY no configurado")
        sys.exit(1)

    query = {"manychatId": {"$nin": [None, ""]}}
    if only_unknown:
        query["origen"] = {"$in": [None, "", "unknown"]}

    total = await db.leads.count_documents(query)
    print(f"Leads a revisar: {total}")

    updated = 0
    unchanged = 0
    still_unknown = 0
    errors = []
    by_channel = {}

    async for lead in db.leads.find(query, {"_id": 0, "id": 1, "manychatId": 1, "origen": 1}):
        try:
            subscriber = await manychat.get_subscriber_info(lead["manychatId"])
        except ManychatError as e:
            errors.append({"id": lead["id"], "reason": str(e)})
            continue
        if not subscriber:
            errors.append({"id": lead["id"], "reason": "subscriber no encontrado"})
            continue

        channel = detect_channel(subscriber)
        by_channel[channel] = by_channel.get(channel, 0) + 1
        if channel == "unknown":
            still_unknown += 1
            continue
        if channel == lead.get("origen"):
            unchanged += 1
            continue

        updated += 1
        if dry_run:
            print(f"  [dry-run] {lead['id'][:8]}... {lead.get('origen')} -> {channel}")
            continue

        await db.leads.update_one(
            {"id": lead["id"]}, {"$set": {"origen": channel, "updatedAt": now_iso()}}
        )
        try:
            await manychat.set_custom_field(lead["manychatId"], "origen", channel)
        except ManychatError as e:
            errors.append({"id": lead["id"], "reason": f"custom field: {e}"})

    client.close()

    print("\n════════════════════════════════════")
    print("  ORIGEN REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Revisados:       {total}")
    print(f"  Actualizados:    {updated}")
    print(f"  Sin cambios:     {unchanged}")
    print(f"  Siguen unknown:  {still_unknown}")
    print(f"  Errores:         {len(errors)}")
    for channel, count in sorted(by_channel.items()):
        print(f"    {channel:<12} {count}")
    print("════════════════════════════════════")

    for e in errors[:20]:
        print(f"  lead={e['id'][:8]}... {e['reason']}")

    return {"total": total, "updated": updated, "unchanged": unchanged,
            "unknown": still_unknown, "errors": len(errors)}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="No modifica nada")
    parser.add_argument("--only-unknown", action="store_true", help="Solo leads con origen unknown")
    args = parser.parse_args()
    asyncio.run(migrate(args.dry_run, args.only_unknown))
