"""
Formosa CRM - Verifica la tabla etapa -> tag de ManyChat.
PREAPROBADO y APROBADO deben apuntar a credito-preaprobado / credito-aprobado
(los flows de ManyChat disparan con esos tags); se corrigen si difieren.
Las etapas faltantes se insertan con el tag por defecto. Los overrides del
resto de las etapas se informan y se respetan.
Run: cd backend && python3 scripts/verify_pipeline_stage_tags.py [--dry-run]
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, now_iso
from models.pipeline import STAGE_INFO
from services.pipeline import FIXED_STAGE_TAGS


async def verify(dry_run: bool = False) -> dict:
    rows = await db.pipeline_stage_tags.find({"tag_type": "pipeline"}, {"_id": 0}).to_list(100)
    by_stage = {r["stage"]: r for r in rows if r.get("stage")}

    wrong = []
    overrides = []
    missing = [stage for stage in STAGE_INFO if stage not in by_stage]

    for stage, row in sorted(by_stage.items()):
        expected = FIXED_STAGE_TAGS.get(stage)
        if expected and row.get("manychat_tag") != expected:
            wrong.append((stage, row.get("manychat_tag"), expected))
        elif not expected and stage in STAGE_INFO and row.get("manychat_tag") != STAGE_INFO[stage]["tag"]:
            overrides.append((stage, row.get("manychat_tag")))

    fixed = 0
    if not dry_run:
        for stage, _, expected in wrong:
            await db.pipeline_stage_tags.update_one(
                {"stage": stage, "tag_type": "pipeline"},
                {"$set": {"manychat_tag": expected, "is_active": True, "updated_at": now_iso()}}
            )
            fixed += 1
        for stage in missing:
            await db.pipeline_stage_tags.insert_one({
                "id": str(uuid.uuid4()),
                "stage": stage,
                "manychat_tag": FIXED_STAGE_TAGS.get(stage, STAGE_INFO[stage]["tag"]),
                "tag_type": "pipeline",
                "description": STAGE_INFO[stage]["name"],
                "is_active": True,
                "created_at": now_iso(),
                "updated_at": now_iso(),
            })
            fixed += 1

    client.close()

    print("\n════════════════════════════════════")
    print("  STAGE TAGS CHECK" + ("  (dry-run)" if dry_run else ""))
    print("════════════════════════════════════")
    for stage, current, expected in wrong:
        print(f"  ✗ {stage:<20} {current} -> {expected}")
    for stage in missing:
        print(f"  + {stage:<20} (faltante)")
    for stage, tag in overrides:
        print(f"  ~ {stage:<20} {tag} (override)")
    print("════════════════════════════════════")
    print(f"  Revisados:    {len(by_stage)}")
    print(f"  Incorrectos:  {len(wrong)}")
    print(f"  Faltantes:    {len(missing)}")
    print(f"  Overrides:    {len(overrides)}")
    print(f"  Corregidos:   {fixed}")
    return {"checked": len(by_stage), "wrong": len(wrong), "missing": len(missing),
            "overrides": len(overrides), "fixed": fixed}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="Solo informa")
    args = parser.parse_args()
    asyncio.run(verify(args.dry_run))
