"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Formosa CRM - Paquete de modelos                                            ║
║                                                                              ║
║  from models import LeadCreate, PipelineStage, SendMessageRequest, etc.      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import (
    VALID_ROLES,
    UserLogin,
    UserCreate,
    UserUpdate,
)

# Lead
from .lead import (
    LeadEstado,
    LeadOrigen,
    VALID_ESTADOS,
    VALID_ORIGENES,
    LeadCreate,
    LeadUpdate,
    LeadSyncRequest,
)

# Pipeline
from .pipeline import (
    PipelineStage,
    STAGE_ORDER,
    STAGE_INFO,
    BUSINESS_TAGS,
    CLOSED_STAGES,
    PipelineMove,
    StageTagUpdate,
)

# Mensajería
from .messaging import (
    Channel,
    ChannelErrorCode,
    MEDIA_TYPES,
    MAX_MESSAGE_LENGTH,
    SendMessageRequest,
    RejectionMessageRequest,
)

# Documentos
from .document import (
    DocumentCategory,
    DocumentStatus,
    VALID_CATEGORIES,
    VALID_DOC_STATUSES,
    ALLOWED_MIME_TYPES,
    DocumentUpdate,
)

# ManyChat
from .manychat import (
    BulkSyncRequest,
    FindSubscribersRequest,
)

__all__ = [
    "VALID_ROLES", "UserLogin", "UserCreate", "UserUpdate",
    "LeadEstado", "LeadOrigen", "VALID_ESTADOS", "VALID_ORIGENES",
    "LeadCreate", "LeadUpdate", "LeadSyncRequest",
    "PipelineStage", "STAGE_ORDER", "STAGE_INFO", "BUSINESS_TAGS", "CLOSED_STAGES",
    "PipelineMove", "StageTagUpdate",
    "Channel", "ChannelErrorCode", "MEDIA_TYPES", "MAX_MESSAGE_LENGTH",
    "SendMessageRequest", "RejectionMessageRequest",
    "DocumentCategory", "DocumentStatus", "VALID_CATEGORIES", "VALID_DOC_STATUSES",
    "ALLOWED_MIME_TYPES", "DocumentUpdate",
    "BulkSyncRequest", "FindSubscribersRequest",
]
