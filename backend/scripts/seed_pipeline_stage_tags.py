"""
Formosa CRM - Seed: mapeo etapa del pipeline -> tag de ManyChat.
Idempotente: completa las filas faltantes y respeta los overrides.
Con --force las filas existentes vuelven al tag por defecto.
Run: cd backend && python3 scripts/seed_pipeline_stage_tags.py [--force]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client
from services.pipeline import seed_stage_tags, get_stage_tags


async def main(force: bool = False):
    result = await seed_stage_tags(force=force)
    rows = await get_stage_tags()
    client.close()

    print("\n════════════════════════════════════")
    print("  STAGE TAGS")
    print("════════════════════════════════════")
    for row in sorted(rows, key=lambda r: (r.get("tag_type"), r.get("stage") or "")):
        stage = row.get("stage") or "(negocio)"
        print(f"  {stage:<22} -> {row.get('manychat_tag')}")
    print("════════════════════════════════════")
    print(f"  Insertados:   {result['inserted']}")
    print(f"  Reseteados:   {result['updated']}")
    print(f"  Sin cambios:  {result['kept']}")
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed de tags por etapa del pipeline")
    parser.add_argument("--force", action="store_true", help="resetear overrides al tag por defecto")
    args = parser.parse_args()
    asyncio.run(main(args.force))
