"""
Extracción de identificadores desde texto libre.

- CUIL/CUIT (NN-NNNNNNNN-N) y DNI (7-8 dígitos) cargados de cualquier
  forma en formularios, custom fields de ManyChat o mensajes.
- IDs de subscriber de ManyChat/Facebook (10+ dígitos) en capturas HAR
  o dumps de requests de red del panel de ManyChat.
"""

import re
import json
from typing import Optional, Iterable

CUIL_FORMATTED_RE = re.compile(r"\b\d{2}-\d{8}-\d\b")
CUIL_DIGITS_RE = re.compile(r"\b\d{11}\b")
DNI_RE = re.compile(r"\b\d{8}\b")


def extract_cuil_or_dni(value) -> Optional[str]:
    """
    Devuelve el CUIL formateado (NN-NNNNNNNN-N), un DNI de 8 dígitos,
    o los dígitos crudos si son entre 7 y 11. None si no hay nada útil.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    m = CUIL_FORMATTED_RE.search(text)
    if m:
        return m.group(0)

    m = CUIL_DIGITS_RE.search(text)
    if m:
        d = m.group(0)
        return f"{d[:2]}-{d[2:10]}-{d[10]}"

    m = DNI_RE.search(text)
    if m:
        return m.group(0)

    digits = re.sub(r"\D", "", text)
    if 7 <= len(digits) <= 11:
        return digits

    return None


def is_valid_cuil(value) -> bool:
    if not value:
        return False
    cleaned = re.sub(r"[\s\-]", "", str(value))
    return len(cleaned) >= 7


def extract_cuil_from_lead(lead: dict) -> Optional[str]:
    """cuil del lead, luego customFields cuit/cuil/dni, luego cualquier custom field."""
    if lead.get("cuil"):
        found = extract_cuil_or_dni(lead["cuil"])
        if found:
            return found

    custom = lead.get("customFields") or {}
    for key in ("cuit", "cuil", "dni"):
        if custom.get(key):
            found = extract_cuil_or_dni(custom[key])
            if found:
                return found

    for value in custom.values():
        if isinstance(value, (str, int)):
            found = extract_cuil_or_dni(value)
            if found:
                return found

    return None


def mask(value, keep: int = 5) -> str:
    """Prefijo seguro para logs: 20-12345678-9 -> 20-12***"""
    if not value:
        return ""
    return f"{str(value)[:keep]}***"


# ════════════════════════════════════════════════════════════════════════
# IDs de subscriber
# ════════════════════════════════════════════════════════════════════════

SUBSCRIBER_ID_PATTERNS = {
    "psid": re.compile(r"[?&]psid=(\d{10,})"),
    "ava_path": re.compile(r"/ava/\d+/(\d{10,})/"),
    "subscriber_path": re.compile(r"/subscribers?/(\d{10,})"),
    "query_param": re.compile(r"[?&](?:id|subscriber_id|contact_id|user_id)=(\d{10,})"),
    "json_field": re.compile(r"\"(?:subscriber_id|id)\"\s*:\s*\"?(\d{10,})\"?"),
    "user_key": re.compile(r"\"key\"\s*:\s*\"user:(\d{10,})\""),
}


def _scan_subscriber_ids(text: str, seen: set, counts: dict = None) -> list:
    matches = []
    for name, pattern in SUBSCRIBER_ID_PATTERNS.items():
        for m in pattern.finditer(text):
            matches.append((m.start(1), m.group(1), name))
    matches.sort(key=lambda x: x[0])

    found = []
    for _, sid, name in matches:
        if sid in seen:
            continue
        seen.add(sid)
        found.append(sid)
        if counts is not None:
            counts[name] = counts.get(name, 0) + 1
    return found


def extract_subscriber_ids(text: str, counts: dict = None) -> list:
    """
    IDs (10+ dígitos) en orden de aparición en el texto, sin repetir.
    Si se pasa counts, acumula cuántos IDs nuevos aportó cada patrón.
    """
    if not text:
        return []
    return _scan_subscriber_ids(text, set(), counts)


def _har_texts(har: dict) -> Iterable[str]:
    for entry in (har.get("log") or {}).get("entries") or []:
        request = entry.get("request") or {}
        if request.get("url"):
            yield request["url"]
        post = (request.get("postData") or {}).get("text")
        if post:
            yield post
        content = (entry.get("response") or {}).get("content") or {}
        if content.get("text"):
            yield content["text"]


def extract_subscriber_ids_from_har(har) -> dict:
    """
    Recorre un HAR (dict o JSON) y junta IDs de URLs, bodies y respuestas.
    Devuelve {"ids": [...], "counts": {patron: n}, "scanned": textos revisados}
    """
    if isinstance(har, (str, bytes)):
        har = json.loads(har)

    counts = {}
    ids = []
    seen = set()
    scanned = 0
    for text in _har_texts(har):
        scanned += 1
        ids.extend(_scan_subscriber_ids(text, seen, counts))

    return {"ids": ids, "counts": counts, "scanned": scanned}
