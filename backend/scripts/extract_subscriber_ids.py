"""
Formosa CRM - Extrae IDs de subscriber de ManyChat desde un HAR o un texto.
Útil para recuperar contactos desde capturas de red del panel de ManyChat.
Run: cd backend && python3 scripts/extract_subscriber_ids.py captura.har [--out ids.txt]
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from services.identifiers import extract_subscriber_ids, extract_subscriber_ids_from_har


def extract(path: Path) -> dict:
    text = path.read_text(encoding="utf-8", errors="ignore")
    if path.suffix.lower() == ".har":
        return extract_subscriber_ids_from_har(text)
    try:
        return extract_subscriber_ids_from_har(json.loads(text))
    except (ValueError, AttributeError):
        counts = {}
        ids = extract_subscriber_ids(text, counts)
        return {"ids": ids, "counts": counts, "scanned": 1}


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("file", help="Archivo .har, .json o .txt")
    parser.add_argument("--out", help="Guardar los IDs (uno por línea)")
    args = parser.parse_args()

    path = Path(args.file)
    if not path.is_file():
        print(f"Archivo no encontrado: {path}")
        sys.exit(1)

    result = extract(path)

    print("\n════════════════════════════════════")
    print("  SUBSCRIBER IDS")
    print("════════════════════════════════════")
    print(f"  Textos revisados: {result['scanned']}")
    for name, count in sorted(result["counts"].items(), key=lambda x: -x[1]):
        print(f"  {name:<16} {count}")
    print(f"  Total únicos:     {len(result['ids'])}")
    print("════════════════════════════════════")

    if args.out:
        Path(args.out).write_text("\n".join(result["ids"]) + "\n", encoding="utf-8")
        print(f"IDs guardados en {args.out}")
    else:
        for sid in result["ids"]:
            print(sid)


if __name__ == "__main__":
    main()
