"""
Formosa CRM - Migración: last_message_at de cada conversación = sent_at de su
último mensaje real (no la última interacción informada por ManyChat).
Sin mensajes se conserva el valor actual o, si no hay, created_at.
Diferencias de hasta un minuto se ignoran.
Run: cd backend && python3 scripts/fix_last_message_at.py [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, now_iso, parse_iso

TOLERANCE_SECONDS = 60


def needs_fix(current: str, correct: str) -> bool:
    current_dt = parse_iso(current)
    correct_dt = parse_iso(correct)
    if correct_dt is None:
        return False
    if current_dt is None:
        return True
    return abs((correct_dt - current_dt).total_seconds()) > TOLERANCE_SECONDS


async def migrate(dry_run: bool = False) -> dict:
    total = await db.conversations.count_documents({})
    print(f"Conversaciones: {total}")

    corrected = 0
    skipped = 0

    async for conv in db.conversations.find({}, {"_id": 0, "id": 1, "lead_id": 1,
                                                "last_message_at": 1, "created_at": 1}):
        last = await db.messages.find(
            {"conversation_id": conv["id"]}, {"_id": 0, "sent_at": 1}
        ).sort("sent_at", -1).to_list(1)
        correct = last[0]["sent_at"] if last else (conv.get("last_message_at") or conv.get("created_at"))

        if not needs_fix(conv.get("last_message_at"), correct):
            skipped += 1
            continue

        corrected += 1
        if dry_run:
            print(f"  [dry-run] {conv['id'][:8]}... {conv.get('last_message_at')} -> {correct}")
            continue

        await db.conversations.update_one(
            {"id": conv["id"]}, {"$set": {"last_message_at": correct, "updated_at": now_iso()}}
        )
        if last and conv.get("lead_id"):
            await db.leads.update_one({"id": conv["lead_id"]}, {"$set": {"lastMessageAt": correct}})

    client.close()

    print("\n════════════════════════════════════")
    print("  LAST MESSAGE REPORT" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Conversaciones:  {total}")
    print(f"  Corregidas:      {corrected}")
    print(f"  Ya correctas:    {skipped}")
    print("════════════════════════════════════")
    return {"total": total, "corrected": corrected, "skipped": skipped}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="No modifica nada")
    args = parser.parse_args()
    asyncio.run(migrate(args.dry_run))
