"""
Detección del canal de origen de un subscriber de ManyChat.

ManyChat no informa el canal de forma explícita; se infiere de los
campos presentes en el subscriber, en este orden de prioridad:

    1. whatsapp_phone, o phone en formato E.164   -> whatsapp
    2. instagram_id                               -> instagram
    3. page_id + email                            -> facebook
    4. phone (cualquier formato)                  -> whatsapp
    5. email                                      -> facebook
    6. nada de lo anterior                        -> unknown
"""

import re
from typing import Optional

from models.messaging import Channel

E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")

CHANNELS = tuple(c.value for c in Channel)


def is_whatsapp_phone(phone: Optional[str]) -> bool:
    if not phone:
        return False
    return bool(E164_RE.match(str(phone).strip()))


def detect_channel(subscriber: Optional[dict]) -> str:
    if not subscriber:
        return "unknown"

    phone = subscriber.get("phone")
    if subscriber.get("whatsapp_phone") or is_whatsapp_phone(phone):
        return "whatsapp"

    if subscriber.get("instagram_id"):
        return "instagram"

    email = subscriber.get("email")
    if subscriber.get("page_id") and email:
        return "facebook"

    if phone:
        return "whatsapp"

    if email:
        return "facebook"

    return "unknown"


def origen_for_subscriber(subscriber: Optional[dict]) -> str:
    """Canal detectado; si no se puede, el custom field 'origen' guardado en ManyChat."""
    channel = detect_channel(subscriber)
    if channel != "unknown":
        return channel

    custom = (subscriber or {}).get("custom_fields") or {}
    if isinstance(custom, list):
        custom = {f.get("name"): f.get("value") for f in custom if isinstance(f, dict)}
    stored = str(custom.get("origen") or "").lower().strip()
    if stored in CHANNELS:
        return stored
    return "unknown"


def platform_id_for_subscriber(subscriber: dict) -> str:
    """Identificador de la conversación en la plataforma del canal."""
    return str(
        subscriber.get("instagram_id")
        or subscriber.get("whatsapp_phone")
        or subscriber.get("phone")
        or subscriber.get("id")
    )
