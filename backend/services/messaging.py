"""
Envío de mensajes a leads vía ManyChat (WhatsApp / Instagram / Messenger)

Flow:
1. Validar parámetros (identificador, teléfono E.164, email, largo, media)
2. Resolver subscriber (subscriber_id -> teléfono -> email)
3. Detectar canal (la detección manda sobre el canal pedido)
4. Validar tipo de mensaje para el canal
5. Armar mensajes v2 y enviar por sendContent
6. Guardar el mensaje saliente en la conversación del lead

Nunca lanza: devuelve {"success": False, "error": {"code", "message"}}.
"""

import logging
from typing import Optional

from config import db
from models.messaging import ChannelErrorCode, MEDIA_TYPES, MAX_MESSAGE_LENGTH
from services.channel_detection import detect_channel, is_whatsapp_phone, platform_id_for_subscriber
from services.manychat_client import (
    get_manychat_client,
    EMAIL_RE,
    ManychatError,
    ManychatNotConfigured,
    ManychatRateLimited,
)
from services.conversations import find_or_create_conversation, save_message
from services.identifiers import mask
from services.event_logger import safe_log_event

logger = logging.getLogger("messaging")

CHANNEL_MESSAGE_TYPES = {
    "whatsapp": ("text", "image", "video", "audio", "file"),
    "instagram": ("text", "image", "video", "audio", "file"),
}

KNOWN_ERROR_CODES = tuple(c.value for c in ChannelErrorCode if c != ChannelErrorCode.INTERNAL_ERROR)

REJECTION_MESSAGES = {
    "income_mismatch": {
        "label": "Ingresos no acordes",
        "message": (
            "Lamentablemente, en esta oportunidad no podremos asistirlo, ya que no contamos con "
            "una línea de financiación acorde a los ingresos demostrables informados.\n"
            "Agradecemos sinceramente su interés en Formosa Moto Créditos y quedamos a "
            "disposición para futuras consultas."
        ),
    },
    "bank_requirement": {
        "label": "Requisito de banco",
        "message": (
            "Lamentablemente, en esta oportunidad no podremos asistirlo, ya que actualmente uno "
            "de los requisitos para acceder a la financiación es percibir los ingresos a través "
            "del Banco Formosa.\n"
            "Agradecemos su comprensión y lo esperamos para futuras operaciones."
        ),
    },
    "credit_history": {
        "label": "Historial crediticio desfavorable",
        "message": (
            "Lamentablemente, en esta ocasión no podremos asistirlo, debido a que usted cuenta "
            "con un historial crediticio desfavorable, lo que impide que su perfil sea apto para "
            "continuar con la gestión.\n"
            "Agradecemos su interés y lo invitamos a contactarnos ante cualquier novedad futura."
        ),
    },
}


def map_manychat_error(error_code: Optional[str]) -> str:
    if error_code in KNOWN_ERROR_CODES:
        return error_code
    return "INTERNAL_ERROR"


def _error(code: str, message: str, channel: str = None) -> dict:
    err = {"code": code, "message": message}
    if channel:
        err["channel"] = channel
    return {"success": False, "error": err}


def sanitize_identifier(params: dict) -> dict:
    """Identificadores recortados para logs"""
    return {
        "subscriber_id": params.get("subscriber_id"),
        "phone": mask(params.get("phone")) if params.get("phone") else None,
        "email": mask(params.get("email"), 3) if params.get("email") else None,
    }


def validate_send_params(params: dict) -> Optional[dict]:
    """Devuelve {"code", "message"} o None si los parámetros son válidos."""
    if not (params.get("subscriber_id") or params.get("phone") or params.get("email")):
        return {"code": "SUBSCRIBER_NOT_FOUND",
                "message": "Se requiere subscriber_id, phone o email"}

    if params.get("phone") and not is_whatsapp_phone(params["phone"]):
        return {"code": "INVALID_PHONE",
                "message": "El teléfono debe estar en formato E.164 (+5493704123456)"}

    if params.get("email") and not EMAIL_RE.match(params["email"].strip()):
        return {"code": "INVALID_EMAIL", "message": "Email inválido"}

    message = params.get("message") or ""
    if not message.strip():
        return {"code": "MESSAGE_TOO_LONG", "message": "El mensaje no puede estar vacío"}

    if len(message) > MAX_MESSAGE_LENGTH:
        return {"code": "MESSAGE_TOO_LONG",
                "message": f"El mensaje es demasiado largo (máximo {MAX_MESSAGE_LENGTH} caracteres)"}

    if params.get("media_url") and params.get("message_type") not in MEDIA_TYPES:
        return {"code": "UNSUPPORTED_MESSAGE_TYPE",
                "message": "Si se envía media_url, message_type debe ser image, video, file o audio"}

    return None


def validate_message_type_for_channel(message_type: str, channel: str) -> Optional[dict]:
    allowed = CHANNEL_MESSAGE_TYPES.get(channel)
    if allowed and message_type not in allowed:
        return {"code": "UNSUPPORTED_MESSAGE_TYPE",
                "message": f"Tipo de mensaje '{message_type}' no soportado para {channel}",
                "channel": channel}
    return None


def build_messages(params: dict) -> list:
    """Mensajes v2 de sendContent. Media sin URL cae a texto."""
    message_type = params.get("message_type") or "text"
    text = params.get("message")
    url = params.get("media_url")

    if message_type in ("image", "video") and url:
        return [{"type": message_type, "url": url, "caption": text or params.get("caption")}]

    if message_type == "file" and url:
        messages = [{"type": "file", "url": url, "filename": params.get("filename") or "document"}]
        if text:
            messages.append({"type": "text", "text": text})
        return messages

    if message_type == "audio" and url:
        return [{"type": "audio", "url": url}]

    return [{"type": "text", "text": text}]


async def send_message(params: dict) -> dict:
    """
    params: subscriber_id, phone, email, message, message_type, media_url,
            caption, filename, channel, tag, lead_id

    Returns: {"success": True, "channel", "subscriber_id", "message_id"}
             o {"success": False, "error": {"code", "message"}}
    """
    validation = validate_send_params(params)
    if validation:
        logger.warning(f"Envío inválido {sanitize_identifier(params)}: {validation['code']}")
        return {"success": False, "error": validation}

    client = get_manychat_client()
    try:
        subscriber = await client.get_subscriber_by_identifier(
            subscriber_id=params.get("subscriber_id"),
            phone=params.get("phone"),
            email=params.get("email"),
        )
    except ManychatNotConfigured as e:
        return _error("INTERNAL_ERROR", str(e))
    except ManychatRateLimited as e:
        return _error("RATE_LIMIT", str(e))
    except ManychatError as e:
        return _error("INTERNAL_ERROR", str(e))

    if not subscriber:
        logger.warning(f"Subscriber no encontrado {sanitize_identifier(params)}")
        return _error("SUBSCRIBER_NOT_FOUND", "No se encontró el contacto en ManyChat")

    channel = detect_channel(subscriber)
    requested = params.get("channel")
    if requested and requested != channel:
        logger.info(f"Canal pedido {requested} reemplazado por detectado {channel}")

    if channel == "unknown":
        return _error("CHANNEL_UNAVAILABLE", "No se pudo determinar el canal del contacto", channel)

    message_type = params.get("message_type") or "text"
    type_error = validate_message_type_for_channel(message_type, channel)
    if type_error:
        return {"success": False, "error": type_error}

    messages = build_messages(params)
    try:
        response = await client.send_content(subscriber["id"], messages, params.get("tag"))
    except ManychatRateLimited as e:
        return _error("RATE_LIMIT", str(e), channel)
    except ManychatError as e:
        return _error(map_manychat_error(e.error_code), str(e), channel)

    if response.get("status") != "success":
        code = map_manychat_error(response.get("error_code"))
        logger.warning(f"ManyChat rechazó el envío ({code}): {response.get('error')}")
        return _error(code, response.get("error") or "Error al enviar el mensaje", channel)

    message_id = None
    lead_id = params.get("lead_id")
    if not lead_id:
        lead = await db.leads.find_one({"manychatId": str(subscriber["id"])}, {"_id": 0, "id": 1})
        lead_id = lead["id"] if lead else None
    if lead_id:
        conv = await find_or_create_conversation(lead_id, channel, platform_id_for_subscriber(subscriber))
        message_id = await save_message(conv["id"], {
            "type": messages[0]["type"],
            "text": params.get("message"),
            "caption": params.get("message"),
            "url": params.get("media_url"),
        }, "outbound")
        await safe_log_event(
            action="message_sent", entity_type="message", entity_id=message_id,
            lead_id=lead_id, details={"channel": channel, "type": message_type},
        )

    logger.info(f"Mensaje enviado por {channel} a {sanitize_identifier(params)}")
    return {
        "success": True,
        "channel": channel,
        "subscriber_id": str(subscriber["id"]),
        "message_id": message_id,
    }
