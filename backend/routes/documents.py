"""
Routes pour les documents d'intervention
- Upload (multipart), liste, téléchargement, suppression
- Stockage disque sous DOCUMENTS_DIR/<intervention_id>/
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse
from pathlib import Path
import logging
import uuid

from config import db, now_iso, DOCUMENTS_DIR
from routes.auth import get_current_user
from routes.interventions import load_intervention_for_user
from services.activity_logger import log_activity
from services.permissions import require_permission, user_has_permission

logger = logging.getLogger("documents")

router = APIRouter(tags=["Documents"])

# Types MIME autorisés
ALLOWED_MIME_TYPES = {
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB
DOCUMENT_TYPES = ["photo_avant", "photo_apres", "facture", "devis", "rapport", "autre"]


async def _get_document_or_404(document_id: str) -> dict:
    document = await db.intervention_documents.find_one(
        {"id": document_id, "deleted_at": None}, {"_id": 0}
    )
    if not document:
        raise HTTPException(status_code=404, detail="Document non trouvé")
    return document


def _with_url(document: dict) -> dict:
    document["url"] = f"/api/intervention-document/{document['id']}/download"
    return document


@router.post("/intervention/{intervention_id}/documents", status_code=201)
async def upload_document(
    intervention_id: str,
    file: UploadFile = File(...),
    document_type: str = Form("autre"),
    description: str = Form(""),
    user: dict = Depends(require_permission("documents.upload"))
):
    """Upload d'un document (PDF, Office, images). Maximum 100 MB."""
    intervention, _ = await load_intervention_for_user(intervention_id, user)

    if file.content_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Format de fichier invalide. Seuls PDF, DOC, DOCX, XLS, XLSX, JPEG, PNG, WEBP, GIF sont autorisés"
        )
    if document_type not in DOCUMENT_TYPES:
        document_type = "autre"

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Fichier vide")
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Fichier trop volumineux. Maximum: {MAX_FILE_SIZE // 1024 // 1024} MB"
        )

    document_id = str(uuid.uuid4())
    # Extension déduite du type MIME, jamais du nom envoyé par le client
    ext = ALLOWED_MIME_TYPES[file.content_type]
    storage_path = Path(intervention_id) / f"{document_id}{ext}"
    target = DOCUMENTS_DIR / storage_path
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as f:
        f.write(content)

    document = {
        "id": document_id,
        "intervention_id": intervention_id,
        "team_id": intervention.get("team_id"),
        "original_filename": file.filename,
        "storage_path": str(storage_path),
        "mime_type": file.content_type,
        "file_size": len(content),
        "document_type": document_type,
        "description": description.strip() or None,
        "uploaded_by": user["id"],
        "uploaded_by_role": user.get("role"),
        "uploaded_at": now_iso(),
        "deleted_at": None,
    }
    await db.intervention_documents.insert_one(document)
    document.pop("_id", None)

    logger.info(f"[DOCUMENTS] {file.filename} ({len(content)} octets) intervention={intervention_id}")
    await log_activity(
        user, "document_uploaded", "intervention",
        entity_id=intervention_id, entity_name=intervention.get("reference"),
        details={"document_id": document_id, "filename": file.filename, "type": document_type},
        team_id=intervention.get("team_id"),
    )
    return {"success": True, "document": _with_url(document)}


@router.get("/intervention/{intervention_id}/documents")
async def list_documents(intervention_id: str, user: dict = Depends(get_current_user)):
    await load_intervention_for_user(intervention_id, user)
    documents = await db.intervention_documents.find(
        {"intervention_id": intervention_id, "deleted_at": None}, {"_id": 0}
    ).sort("uploaded_at", -1).to_list(500)
    return {"documents": [_with_url(d) for d in documents], "count": len(documents)}


@router.get("/intervention-document/{document_id}/download")
async def download_document(document_id: str, user: dict = Depends(get_current_user)):
    document = await _get_document_or_404(document_id)
    await load_intervention_for_user(document["intervention_id"], user)

    file_path = DOCUMENTS_DIR / document["storage_path"]
    if not file_path.exists():
        logger.error(f"[DOCUMENTS] Fichier manquant sur disque: {file_path}")
        raise HTTPException(status_code=404, detail="Fichier non trouvé")

    return FileResponse(
        file_path,
        media_type=document.get("mime_type", "application/octet-stream"),
        filename=document.get("original_filename"),
        headers={"X-Content-Type-Options": "nosniff"},
    )


@router.delete("/intervention-document/{document_id}")
async def delete_document(document_id: str, user: dict = Depends(get_current_user)):
    """Auteur du document, ou permission documents.delete"""
    document = await _get_document_or_404(document_id)
    intervention, _ = await load_intervention_for_user(document["intervention_id"], user)

    if document.get("uploaded_by") != user["id"] and not user_has_permission(user, "documents.delete"):
        raise HTTPException(status_code=403, detail="Vous ne pouvez pas supprimer ce document")

    await db.intervention_documents.update_one(
        {"id": document_id},
        {"$set": {"deleted_at": now_iso(), "deleted_by": user["id"]}}
    )
    file_path = DOCUMENTS_DIR / document["storage_path"]
    if file_path.exists():
        file_path.unlink()

    await log_activity(
        user, "document_deleted", "intervention",
        entity_id=document["intervention_id"], entity_name=intervention.get("reference"),
        details={"document_id": document_id, "filename": document.get("original_filename")},
        team_id=intervention.get("team_id"),
    )
    return {"success": True}
