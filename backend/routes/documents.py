"""
Rutas de Documentos (legajo del lead)
- Upload, listado, descarga, revisión, borrado
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse
from pathlib import Path
from typing import Optional

from config import db, now_iso
from models.document import DocumentUpdate, VALID_CATEGORIES
from services.permissions import require_permission
from services.event_logger import log_event
from services.documents import (
    save_document,
    list_documents,
    get_document,
    delete_document,
    DocumentRejected,
)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    lead_id: str = Form(...),
    category: str = Form("otros"),
    description: str = Form(""),
    user: dict = Depends(require_permission("documents.upload"))
):
    if not await db.leads.find_one({"id": lead_id}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=404, detail="Lead no encontrado")

    content = await file.read()
    try:
        doc = await save_document(
            lead_id=lead_id,
            original_filename=file.filename,
            content=content,
            mime_type=file.content_type,
            category=category,
            description=description,
            uploaded_by=user.get("email"),
        )
    except DocumentRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    await log_event(
        action="document_uploaded",
        entity_type="document",
        entity_id=doc["id"],
        user=user.get("email", "system"),
        lead_id=lead_id,
        details={"category": category, "filename": file.filename},
    )
    return {"success": True, "document": doc}


@router.get("")
async def get_documents(
    lead_id: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    user: dict = Depends(require_permission("documents.view"))
):
    docs = await list_documents(lead_id, category, status)
    return {"documents": docs, "count": len(docs)}


@router.get("/categories")
async def categories(user: dict = Depends(require_permission("documents.view"))):
    return {"categories": VALID_CATEGORIES}


@router.get("/{document_id}/file")
async def download(document_id: str, user: dict = Depends(require_permission("documents.view"))):
    doc = await get_document(document_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Documento no encontrado")

    path = Path(doc["storage_path"])
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Archivo no encontrado")

    return FileResponse(path, media_type=doc["mime_type"], filename=doc["original_filename"])


@router.patch("/{document_id}")
async def review_document(
    document_id: str,
    data: DocumentUpdate,
    user: dict = Depends(require_permission("documents.review"))
):
    doc = await get_document(document_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Documento no encontrado")

    update = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if update:
        update["updated_at"] = now_iso()
        await db.documents.update_one({"id": document_id}, {"$set": update})
        if update.get("status") and update["status"] != doc.get("status"):
            await log_event(
                action="document_reviewed",
                entity_type="document",
                entity_id=document_id,
                user=user.get("email", "system"),
                lead_id=doc["lead_id"],
                details={"old_value": doc.get("status"), "new_value": update["status"]},
            )

    return {"success": True, "document": await get_document(document_id)}


@router.delete("/{document_id}")
async def remove_document(document_id: str, user: dict = Depends(require_permission("documents.upload"))):
    doc = await get_document(document_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Documento no encontrado")

    await delete_document(document_id)
    await log_event(
        action="document_deleted",
        entity_type="document",
        entity_id=document_id,
        user=user.get("email", "system"),
        lead_id=doc["lead_id"],
        details={"filename": doc.get("original_filename")},
    )
    return {"success": True, "deleted_id": document_id}
