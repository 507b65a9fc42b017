"""
Formosa CRM - Modelos de mensajería (envío vía ManyChat)
"""

from typing import Optional
from pydantic import BaseModel
from enum import Enum


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    UNKNOWN = "unknown"


class ChannelErrorCode(str, Enum):
    SUBSCRIBER_NOT_FOUND = "SUBSCRIBER_NOT_FOUND"
    CHANNEL_UNAVAILABLE = "CHANNEL_UNAVAILABLE"
    OUTSIDE_WINDOW = "OUTSIDE_WINDOW"
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_PHONE = "INVALID_PHONE"
    INVALID_EMAIL = "INVALID_EMAIL"
    MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
    UNSUPPORTED_MESSAGE_TYPE = "UNSUPPORTED_MESSAGE_TYPE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


MEDIA_TYPES = ("image", "video", "file", "audio")
MAX_MESSAGE_LENGTH = 4096


class SendMessageRequest(BaseModel):
    """Al menos uno de subscriber_id / phone / email / lead_id"""
    lead_id: Optional[str] = None
    subscriber_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    message: str
    message_type: str = "text"
    media_url: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None
    channel: Optional[str] = None
    tag: Optional[str] = None


class RejectionMessageRequest(BaseModel):
    lead_id: str
    message_id: str
    move_to_rechazado: bool = True
