"""
Legajo documental del lead (archivos en disco + metadata en `documents`)

Estructura en disco: UPLOAD_DIR/<lead_id>/<uuid><ext>
"""

import uuid
import logging
from pathlib import Path
from typing import Optional, List

import config
from config import db, now_iso
from models.document import ALLOWED_MIME_TYPES, VALID_CATEGORIES

logger = logging.getLogger("documents")


class DocumentRejected(ValueError):
    """Archivo inválido: categoría, tipo o tamaño"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def max_upload_bytes() -> int:
    return config.MAX_UPLOAD_MB * 1024 * 1024


def validate_upload(category: str, mime_type: str, size: int):
    if category not in VALID_CATEGORIES:
        raise DocumentRejected(f"Categoría inválida. Válidas: {', '.join(VALID_CATEGORIES)}")
    if mime_type not in ALLOWED_MIME_TYPES:
        raise DocumentRejected("Tipo de archivo no permitido (PDF, JPG, PNG, WEBP, HEIC, DOC, DOCX)")
    if size > max_upload_bytes():
        raise DocumentRejected(f"Archivo demasiado grande. Máximo: {config.MAX_UPLOAD_MB} MB", 413)
    if size == 0:
        raise DocumentRejected("Archivo vacío")


def storage_path_for(lead_id: str, filename: str) -> Path:
    return Path(config.UPLOAD_DIR) / lead_id / filename


async def save_document(
    lead_id: str,
    original_filename: str,
    content: bytes,
    mime_type: str,
    category: str,
    description: str = None,
    uploaded_by: str = None,
) -> dict:
    validate_upload(category, mime_type, len(content))

    doc_id = str(uuid.uuid4())
    filename = f"{doc_id}{ALLOWED_MIME_TYPES[mime_type]}"
    path = storage_path_for(lead_id, filename)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "wb") as f:
        f.write(content)

    now = now_iso()
    doc = {
        "id": doc_id,
        "lead_id": lead_id,
        "filename": filename,
        "original_filename": original_filename,
        "category": category,
        "file_size": len(content),
        "mime_type": mime_type,
        "storage_path": str(path),
        "description": description or None,
        "status": "PENDIENTE",
        "uploaded_by": uploaded_by,
        "created_at": now,
        "updated_at": now,
    }
    await db.documents.insert_one(doc)
    doc.pop("_id", None)
    logger.info(f"Documento {doc_id} ({category}, {len(content)} bytes) guardado para lead {lead_id}")
    return doc


async def list_documents(lead_id: str = None, category: str = None, status: str = None) -> List[dict]:
    query = {}
    if lead_id:
        query["lead_id"] = lead_id
    if category:
        query["category"] = category
    if status:
        query["status"] = status
    return await db.documents.find(query, {"_id": 0}).sort("created_at", -1).to_list(500)


async def get_document(document_id: str) -> Optional[dict]:
    return await db.documents.find_one({"id": document_id}, {"_id": 0})


async def delete_document(document_id: str) -> bool:
    doc = await get_document(document_id)
    if not doc:
        return False
    _remove_file(doc)
    await db.documents.delete_one({"id": document_id})
    return True


async def delete_lead_documents(lead_id: str) -> int:
    docs = await db.documents.find({"lead_id": lead_id}, {"_id": 0}).to_list(1000)
    for doc in docs:
        _remove_file(doc)
    result = await db.documents.delete_many({"lead_id": lead_id})
    return result.deleted_count


def _remove_file(doc: dict):
    path = Path(doc.get("storage_path") or "")
    if path.is_file():
        path.unlink()
    else:
        logger.warning(f"Archivo de documento {doc.get('id')} no encontrado en disco")
