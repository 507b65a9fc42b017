"""
Webhook de ManyChat (External Request)

Acepta un evento suelto o un lote {"events": [...]}.
Si MANYCHAT_WEBHOOK_SECRET está definido se exige el header X-Webhook-Secret.
Siempre responde 200 con el resultado por evento para que ManyChat no reintente.
"""

import hmac
import logging
from fastapi import APIRouter, HTTPException, Header, Request
from typing import Optional

import config
from config import now_iso
from services.webhook_processor import process_webhook_event

logger = logging.getLogger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _check_secret(received: Optional[str]):
    expected = config.MANYCHAT_WEBHOOK_SECRET
    if not expected:
        return
    if not received or not hmac.compare_digest(received, expected):
        logger.warning("Webhook ManyChat con secreto inválido")
        raise HTTPException(status_code=401, detail="Secreto de webhook inválido")


@router.post("/manychat")
async def manychat_webhook(request: Request, x_webhook_secret: Optional[str] = Header(None)):
    _check_secret(x_webhook_secret)

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="JSON inválido")

    is_batch = isinstance(payload, dict) and isinstance(payload.get("events"), list)
    if is_batch:
        events = payload["events"]
    elif isinstance(payload, dict):
        events = [payload]
    else:
        raise HTTPException(status_code=400, detail="Se esperaba un evento o {events: [...]}")

    results = []
    for event in events:
        if not isinstance(event, dict) or not event.get("event_type"):
            results.append({"success": False, "error": "Evento sin event_type"})
            continue
        results.append(await process_webhook_event(event))

    processed = sum(1 for r in results if r.get("success"))
    logger.info(f"Webhook ManyChat: {processed}/{len(results)} eventos procesados")

    if not is_batch:
        return results[0]
    return {"success": processed == len(results), "processed": processed, "results": results}


@router.get("/manychat")
async def manychat_webhook_health():
    """Verificación del endpoint desde ManyChat."""
    return {"status": "ok", "service": "manychat-webhook", "timestamp": now_iso()}
