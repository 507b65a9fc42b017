"""
Configuración y utilidades compartidas
"""

import os
import re
import hashlib
import secrets
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Cargar .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'formosa_crm')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# ManyChat
MANYCHAT_API_KEY = os.environ.get('MANYCHAT_API_KEY', '')
MANYCHAT_BASE_URL = os.environ.get('MANYCHAT_BASE_URL', 'https://api.manychat.com')
MANYCHAT_WEBHOOK_SECRET = os.environ.get('MANYCHAT_WEBHOOK_SECRET', '')

# Documentos
UPLOAD_DIR = Path(os.environ.get('UPLOAD_DIR', str(ROOT_DIR / 'uploads')))
MAX_UPLOAD_MB = int(os.environ.get('MAX_UPLOAD_MB', '4'))

# Servidor
CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() in ('1', 'true', 'yes')
SESSION_DAYS = int(os.environ.get('SESSION_DAYS', '7'))
TIMEZONE = os.environ.get('TZ_NAME', 'America/Argentina/Buenos_Aires')


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash de contraseña con SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Genera un token de sesión seguro"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Fecha/hora actual en ISO (UTC)"""
    return datetime.now(timezone.utc).isoformat()

def parse_iso(value: str):
    """ISO -> datetime con zona. Devuelve None si no se puede parsear."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_phone_ar(phone: str) -> str:
    """
    Normaliza un teléfono argentino a E.164 (+54...).

    - Quita espacios, guiones, paréntesis y puntos
    - 00 inicial -> +
    - 0 de larga distancia y 15 de celular se eliminan
    - 10 dígitos sin prefijo -> +549XXXXXXXXXX (celular)
    - Si ya viene con + se respeta

    Devuelve "" si no quedan dígitos.
    """
    if not phone:
        return ""
    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return ""

    if raw.startswith("+"):
        return "+" + digits
    if digits.startswith("00"):
        return "+" + digits[2:]
    if digits.startswith("54") and len(digits) >= 12:
        return "+" + digits

    if digits.startswith("0"):
        digits = digits[1:]
    # 370 15 4123456 -> 370 4123456
    m = re.match(r"^(\d{2,4})15(\d{6,8})$", digits)
    if m and len(m.group(1) + m.group(2)) == 10:
        digits = m.group(1) + m.group(2)

    if len(digits) == 10:
        return "+549" + digits
    return digits
