"""
Formosa CRM - Migración: recalcula la plataforma de cada conversación con
los datos actuales del subscriber de ManyChat.
Si ya existe otra conversación con la plataforma correcta y el mismo
platform_id, se fusionan: queda la que tiene más mensajes (o la más
reciente) y recibe los mensajes de la otra.
Run: cd backend && python3 scripts/fix_conversations_platform.py [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, now_iso
from services.channel_detection import detect_channel
from services.manychat_client import get_manychat_client, ManychatError


async def _merge(conv: dict, other: dict, platform: str) -> str:
    """Returns: id de la conversación que queda."""
    conv_count = await db.messages.count_documents({"conversation_id": conv["id"]})
    other_count = await db.messages.count_documents({"conversation_id": other["id"]})
    if (conv_count, conv.get("last_message_at") or "") > (other_count, other.get("last_message_at") or ""):
        keep, drop = conv, other
    else:
        keep, drop = other, conv

    await db.messages.update_many({"conversation_id": drop["id"]}, {"$set": {"conversation_id": keep["id"]}})
    update = {"platform": platform, "updated_at": now_iso()}
    if not keep.get("lead_id") and drop.get("lead_id"):
        update["lead_id"] = drop["lead_id"]
    last_at = max(keep.get("last_message_at") or "", drop.get("last_message_at") or "")
    if last_at:
        update["last_message_at"] = last_at
    await db.conversations.update_one({"id": keep["id"]}, {"$set": update})
    await db.conversations.delete_one({"id": drop["id"]})
    return keep["id"]


async def migrate(dry_run: bool = False) -> dict:
    manychat = get_manychat_client()
    if not manychat.is_configured():
        print("MANYCHAT_API_KEY no configurado")
        sys.exit(1)

    conversations = [c async for c in db.conversations.find({"lead_id": {"$nin": [None, ""]}}, {"_id": 0})]
    print(f"Conversaciones con lead: {len(conversations)}")

    updated = 0
    merged = 0
    skipped = 0
    errors = []
    removed = set()

    for conv in conversations:
        if conv["id"] in removed:
            continue
        lead = await db.leads.find_one({"id": conv["lead_id"]}, {"_id": 0, "manychatId": 1})
        if not lead or not lead.get("manychatId"):
            skipped += 1
            continue
        try:
            subscriber = await manychat.get_subscriber_info(lead["manychatId"])
        except ManychatError as e:
            errors.append({"id": conv["id"], "reason": str(e)})
            continue

        platform = detect_channel(subscriber)
        if platform == "unknown" or platform == conv.get("platform"):
            skipped += 1
            continue

        updated += 1
        if dry_run:
            print(f"  [dry-run] {conv['id'][:8]}... {conv.get('platform')} -> {platform}")
            continue

        other = await db.conversations.find_one(
            {"platform": platform, "platform_id": conv["platform_id"], "id": {"$ne": conv["id"]}}, {"_id": 0}
        )
        if other:
            kept = await _merge(conv, other, platform)
            removed.add(other["id"] if kept == conv["id"] else conv["id"])
            merged += 1
        else:
            await db.conversations.update_one(
                {"id": conv["id"]}, {"$set": {"platform": platform, "updated_at": now_iso()}}
            )

    client.close()

    print("\n════════════════════════════════════")
    print("  PLATFORM REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Revisadas:      {len(conversations)}")
    print(f"  Actualizadas:   {updated}")
    print(f"  Fusionadas:     {merged}")
    print(f"  Sin cambios:    {skipped}")
    print(f"  Errores:        {len(errors)}")
    print("════════════════════════════════════")
    for e in errors[:20]:
        print(f"  conv={e['id'][:8]}... {e['reason']}")
    return {"total": len(conversations), "updated": updated, "merged": merged,
            "skipped": skipped, "errors": len(errors)}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="No modifica nada")
    args = parser.parse_args()
    asyncio.run(migrate(args.dry_run))
