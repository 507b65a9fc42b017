"""
Cliente de la API de ManyChat
Documentación: https://api.manychat.com/swagger

- Auth: Header Authorization: Bearer {MANYCHAT_API_KEY}
- Respuestas: {"status": "success" | "error", "data": ..., "error": ..., "error_code": ...}

Política de reintentos:
- 429: esperar Retry-After (5s por defecto) y reintentar
- 401/403: error de autenticación, no se reintenta
- 404: subscriber inexistente, no se reintenta
- 5xx / timeout / conexión: backoff exponencial (1s, 2s, ...) hasta max_retries
"""

import re
import time
import asyncio
import logging
from typing import Optional, List, Dict, Any

import httpx

import config

logger = logging.getLogger("manychat")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ManychatError(Exception):
    """Error genérico de la API de ManyChat"""

    def __init__(self, message: str, status_code: int = None, error_code: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ManychatNotConfigured(ManychatError):
    pass


class ManychatAuthError(ManychatError):
    pass


class ManychatNotFound(ManychatError):
    pass


class ManychatRateLimited(ManychatError):
    pass


class ManychatClient:
    """Cliente async. Una instancia por proceso (ver get_manychat_client)."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        transport: httpx.AsyncBaseTransport = None,
        max_retries: int = 3,
        min_interval: float = 0.01,
        backoff_base: float = 1.0,
        timeout: float = 30.0,
    ):
        self.api_key = api_key if api_key is not None else config.MANYCHAT_API_KEY
        self.base_url = (base_url or config.MANYCHAT_BASE_URL).rstrip("/")
        self.transport = transport
        self.max_retries = max_retries
        self.min_interval = min_interval
        self.backoff_base = backoff_base
        self.timeout = timeout
        self._last_request_at = 0.0
        self._lock = asyncio.Lock()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    # ==================== HTTP ====================

    async def _throttle(self):
        """~100 req/s: espaciado mínimo entre requests, uno a la vez"""
        async with self._lock:
            wait = self.min_interval - (time.monotonic() - self._last_request_at)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request_at = time.monotonic()

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Dict[str, Any] = None,
        body: Dict[str, Any] = None,
    ) -> Dict[str, Any]:
        """
        Ejecuta un request con reintentos.

        Returns:
            payload JSON de ManyChat. Un 4xx con cuerpo se devuelve como
            {"status": "error", "error": ..., "error_code": ...}
        Raises:
            ManychatNotConfigured, ManychatAuthError, ManychatNotFound,
            ManychatRateLimited, ManychatError
        """
        if not self.api_key:
            raise ManychatNotConfigured("MANYCHAT_API_KEY no configurado")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        last_error: Optional[ManychatError] = None

        for attempt in range(self.max_retries):
            await self._throttle()
            logger.info(f"ManyChat {method} {endpoint} (intento {attempt + 1}/{self.max_retries})")

            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self.transport,
                ) as client:
                    resp = await client.request(
                        method, endpoint, params=params, json=body, headers=headers
                    )
            except httpx.TimeoutException as e:
                last_error = ManychatError(f"Timeout tras {self.timeout}s: {e}")
                logger.warning(f"ManyChat timeout: {endpoint}")
                await self._backoff(attempt)
                continue
            except httpx.TransportError as e:
                last_error = ManychatError(f"Error de conexión: {e}")
                logger.warning(f"ManyChat connection error: {endpoint}")
                await self._backoff(attempt)
                continue

            data = self._json(resp)

            if resp.status_code < 400:
                return data

            message = data.get("error") or data.get("message") or f"HTTP {resp.status_code}"

            if resp.status_code == 404:
                logger.warning(f"ManyChat 404: {endpoint}")
                raise ManychatNotFound(message, 404, data.get("error_code"))

            if resp.status_code in (401, 403):
                logger.error(f"ManyChat auth error {resp.status_code}: {message}")
                raise ManychatAuthError(message, resp.status_code, data.get("error_code"))

            if resp.status_code == 429:
                retry_after = self._retry_after(resp)
                logger.warning(f"ManyChat rate limit, esperando {retry_after}s")
                last_error = ManychatRateLimited(message, 429, "RATE_LIMIT")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(retry_after)
                continue

            if resp.status_code >= 500:
                logger.warning(f"ManyChat error {resp.status_code}, se reintenta: {endpoint}")
                last_error = ManychatError(message, resp.status_code, data.get("error_code"))
                await self._backoff(attempt)
                continue

            # 4xx de validación: se devuelve el sobre de error
            logger.warning(f"ManyChat rechazó {endpoint}: {message}")
            return {
                "status": "error",
                "error": message,
                "error_code": data.get("error_code"),
                "details": data.get("details"),
            }

        raise last_error or ManychatError("ManyChat: reintentos agotados")

    async def _backoff(self, attempt: int):
        if attempt < self.max_retries - 1:
            await asyncio.sleep(self.backoff_base * (2 ** attempt))

    @staticmethod
    def _retry_after(resp: httpx.Response) -> float:
        try:
            return float(resp.headers.get("Retry-After", "5"))
        except ValueError:
            return 5.0

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {"status": "error", "message": resp.text}
        return data if isinstance(data, dict) else {"status": "success", "data": data}

    @staticmethod
    def _ok(payload: Dict[str, Any]) -> bool:
        return payload.get("status") == "success"

    # ==================== SUBSCRIBERS ====================

    async def get_subscriber_info(self, subscriber_id) -> Optional[dict]:
        try:
            payload = await self.request(
                "GET", "/fb/subscriber/getInfo", params={"subscriber_id": str(subscriber_id)}
            )
        except ManychatNotFound:
            return None
        if self._ok(payload) and payload.get("data"):
            return payload["data"]
        return None

    async def _find_by_system_field(self, field_name: str, value: str) -> Optional[dict]:
        try:
            payload = await self.request(
                "GET",
                "/fb/subscriber/findBySystemField",
                params={"field_name": field_name, "field_value": value},
            )
        except ManychatNotFound:
            return None
        if not self._ok(payload):
            return None
        data = payload.get("data")
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    async def find_by_phone(self, phone: str) -> Optional[dict]:
        if not phone:
            return None
        return await self._find_by_system_field("phone", phone.strip())

    async def find_by_email(self, email: str) -> Optional[dict]:
        if not email:
            return None
        email = email.strip().lower()
        if not EMAIL_RE.match(email):
            return None
        return await self._find_by_system_field("email", email)

    async def get_subscriber_by_identifier(
        self, subscriber_id=None, phone: str = None, email: str = None
    ) -> Optional[dict]:
        """subscriber_id, luego teléfono, luego email. None si ninguno matchea."""
        if subscriber_id:
            found = await self.get_subscriber_info(subscriber_id)
            if found:
                return found
        if phone:
            found = await self.find_by_phone(phone)
            if found:
                return found
        if email:
            found = await self.find_by_email(email)
            if found:
                return found
        return None

    async def create_subscriber(
        self,
        first_name: str = "",
        last_name: str = "",
        phone: str = None,
        email: str = None,
        custom_fields: Dict[str, Any] = None,
        tags: List[str] = None,
    ) -> Optional[dict]:
        body = {
            "first_name": first_name,
            "last_name": last_name,
            "has_opt_in_sms": True,
        }
        if phone:
            body["phone"] = phone
            body["whatsapp_phone"] = phone
        if email:
            body["email"] = email
            body["has_opt_in_email"] = True
        if custom_fields:
            body["custom_fields"] = custom_fields

        payload = await self.request("POST", "/fb/subscriber/createSubscriber", body=body)
        if not self._ok(payload) or not payload.get("data"):
            logger.error(f"Error creando subscriber: {payload.get('error')}")
            return None

        subscriber = payload["data"]
        for tag in tags or []:
            await self.add_tag(subscriber.get("id"), tag)
        return subscriber

    async def set_custom_field(self, subscriber_id, field_name: str, value) -> bool:
        payload = await self.request(
            "POST",
            "/fb/subscriber/setCustomField",
            body={"subscriber_id": subscriber_id, "field_name": field_name, "field_value": value},
        )
        return self._ok(payload)

    # ==================== TAGS ====================

    async def add_tag(self, subscriber_id, tag_name: str) -> bool:
        payload = await self.request(
            "POST", "/fb/subscriber/addTag",
            body={"subscriber_id": subscriber_id, "tag_name": tag_name},
        )
        return self._ok(payload)

    async def remove_tag(self, subscriber_id, tag_name: str) -> bool:
        payload = await self.request(
            "POST", "/fb/subscriber/removeTag",
            body={"subscriber_id": subscriber_id, "tag_name": tag_name},
        )
        return self._ok(payload)

    async def get_tags(self) -> List[dict]:
        payload = await self.request("GET", "/fb/page/getTags")
        if self._ok(payload):
            return payload.get("data") or []
        return []

    async def get_custom_fields(self) -> List[dict]:
        payload = await self.request("GET", "/fb/page/getCustomFields")
        if self._ok(payload):
            return payload.get("data") or []
        return []

    # ==================== MENSAJES ====================

    async def send_content(self, subscriber_id, messages: List[dict], tag: str = None) -> dict:
        data = {"version": "v2", "messages": messages}
        if tag:
            data["tag"] = tag
        return await self.request(
            "POST", "/fb/sending/sendContent",
            body={"subscriber_id": subscriber_id, "data": data},
        )

    # ==================== HEALTH ====================

    async def health_check(self) -> dict:
        if not self.is_configured():
            return {"configured": False, "ok": False, "error": "MANYCHAT_API_KEY no configurado"}
        try:
            payload = await self.request("GET", "/fb/page/getInfo")
        except ManychatError as e:
            return {"configured": True, "ok": False, "error": str(e)}
        return {
            "configured": True,
            "ok": self._ok(payload),
            "page": payload.get("data"),
            "error": payload.get("error"),
        }


_client: Optional[ManychatClient] = None


def get_manychat_client() -> ManychatClient:
    global _client
    if _client is None:
        _client = ManychatClient()
    return _client


def set_manychat_client(client: Optional[ManychatClient]):
    """Reemplaza la instancia compartida (scripts y tests)."""
    global _client
    _client = client


def tag_names(subscriber: Optional[dict]) -> List[str]:
    """Tags de un subscriber como lista de nombres (acepta str o {id, name})."""
    names = []
    for tag in (subscriber or {}).get("tags") or []:
        if isinstance(tag, str):
            names.append(tag)
        elif isinstance(tag, dict) and tag.get("name"):
            names.append(tag["name"])
    return names


def custom_fields_dict(subscriber: Optional[dict]) -> Dict[str, Any]:
    """custom_fields de ManyChat llegan como lista [{name, value}] o dict."""
    raw = (subscriber or {}).get("custom_fields") or {}
    if isinstance(raw, dict):
        return raw
    out = {}
    for field in raw:
        if isinstance(field, dict) and field.get("name"):
            out[field["name"]] = field.get("value")
    return out
