"""
Formosa CRM - Sincroniza como leads una lista de subscribers de ManyChat.
El archivo puede tener un ID por línea o separados por coma/espacio.
Run: cd backend && python3 scripts/sync_manychat_by_ids.py ids.txt
"""

import argparse
import asyncio
import re
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client
from services.manychat_client import get_manychat_client
from services.manychat_sync import bulk_sync_by_ids


def read_ids(path: Path) -> list:
    seen = []
    for sid in re.split(r"[\s,;]+", path.read_text(encoding="utf-8")):
        if sid.isdigit() and sid not in seen:
            seen.append(sid)
    return seen


async def main(path: Path):
    if not get_manychat_client().is_configured():
        print("MANYCHAT_API_KEY no configurado")
        sys.exit(1)

    ids = read_ids(path)
    print(f"IDs a sincronizar: {len(ids)}")
    results = await bulk_sync_by_ids(ids)
    client.close()

    print("\n════════════════════════════════════")
    print("  BULK SYNC REPORT")
    print("════════════════════════════════════")
    print(f"  Total:           {results['total']}")
    print(f"  Sincronizados:   {results['synced']}")
    print(f"  Nuevos:          {results['created']}")
    print(f"  Actualizados:    {results['updated']}")
    print(f"  No encontrados:  {results['not_found']}")
    print(f"  Errores:         {len(results['errors'])}")
    print("════════════════════════════════════")
    for e in results["errors"][:20]:
        print(f"  {e['subscriber_id']}: {e['error']}")
    return results


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("file", help="Archivo con IDs de subscriber")
    args = parser.parse_args()
    asyncio.run(main(Path(args.file)))
