"""
Formosa CRM - Completa conversaciones sin mensajes con el último mensaje
conocido del subscriber (last_input_text de ManyChat).
Run: cd backend && python3 scripts/sync_missing_messages.py [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client
from services.conversations import sync_last_message
from services.manychat_client import get_manychat_client, ManychatError


async def main(dry_run: bool = False) -> dict:
    manychat = get_manychat_client()
    if not manychat.is_configured():
        print("MANYCHAT_API_KEY no configurado")
        sys.exit(1)

    total = 0
    synced = 0
    skipped = 0
    errors = []

    async for conv in db.conversations.find({"lead_id": {"$nin": [None, ""]}}, {"_id": 0, "id": 1, "lead_id": 1}):
        total += 1
        if await db.messages.count_documents({"conversation_id": conv["id"]}):
            skipped += 1
            continue

        lead = await db.leads.find_one({"id": conv["lead_id"]}, {"_id": 0, "manychatId": 1, "nombre": 1})
        if not lead or not lead.get("manychatId"):
            skipped += 1
            continue

        try:
            subscriber = await manychat.get_subscriber_info(lead["manychatId"])
        except ManychatError as e:
            errors.append({"id": conv["id"], "reason": str(e)})
            continue
        if not subscriber or not subscriber.get("last_input_text"):
            skipped += 1
            continue

        if dry_run:
            synced += 1
            print(f"  [dry-run] {conv['id'][:8]}... {lead.get('nombre')}")
            continue

        result = await sync_last_message(subscriber, conv["lead_id"], conversation_id=conv["id"])
        if result["message_id"]:
            synced += 1
        else:
            skipped += 1

    client.close()

    print("\n════════════════════════════════════")
    print("  MISSING MESSAGES REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Conversaciones:  {total}")
    print(f"  Sincronizadas:   {synced}")
    print(f"  Saltadas:        {skipped}")
    print(f"  Errores:         {len(errors)}")
    print("════════════════════════════════════")
    for e in errors[:20]:
        print(f"  conv={e['id'][:8]}... {e['reason']}")
    return {"total": total, "synced": synced, "skipped": skipped, "errors": len(errors)}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="No modifica nada")
    args = parser.parse_args()
    asyncio.run(main(args.dry_run))
