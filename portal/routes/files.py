"""
File Routes
Organization file uploads stored encrypted in S3
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_super_admin
from ..database import get_db
from ..models import User
from ..models_integration import StoredFile
from ..permissions import ensure_organization_visible, is_client, scope_query
from ..security_utils import sanitize_filename
from ..services.audit_service import record_audit
from ..utils.storage import (
    MAX_UPLOAD_SIZE_BYTES,
    PRESIGNED_URL_EXPIRY_SECONDS,
    StorageError,
    StorageNotConfiguredError,
    delete_object,
    generate_file_key,
    generate_presigned_url,
    get_connection_status,
    upload_object,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["Files"])
admin_router = APIRouter(prefix="/admin/s3", tags=["Files"])

__all__ = ["router", "admin_router"]


class StoredFileResponse(BaseModel):
    id: int
    organization_id: int
    uploaded_by: Optional[int]
    folder: str
    filename: str
    content_type: Optional[str]
    size_bytes: int
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class DownloadResponse(BaseModel):
    url: str
    expires_in: int
    filename: str


def _storage_error(e: Exception) -> HTTPException:
    if isinstance(e, StorageNotConfiguredError):
        return HTTPException(status_code=500, detail="File storage not configured")
    return HTTPException(status_code=502, detail="File storage request failed")


def _get_file(db: Session, file_id: int, user: User) -> StoredFile:
    query = scope_query(db.query(StoredFile), StoredFile.organization_id, db, user)
    if is_client(user):
        # Clients only see files they uploaded themselves
        query = query.filter(StoredFile.uploaded_by == user.id)
    stored = query.filter(StoredFile.id == file_id).first()
    if not stored:
        raise HTTPException(status_code=404, detail="File not found")
    return stored


@router.post("", response_model=StoredFileResponse, status_code=201)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    folder: Optional[str] = Form(None),
    organization_id: Optional[int] = Form(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Upload one file (multipart field `file`) into an organization's storage"""
    organization_id = organization_id or current_user.organization_id
    if not organization_id:
        raise HTTPException(status_code=400, detail="User is not associated with an organization")
    ensure_organization_visible(db, current_user, organization_id, "Organization not found")

    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(content) > MAX_UPLOAD_SIZE_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {MAX_UPLOAD_SIZE_BYTES // (1024 * 1024)}MB",
        )

    folder_name = (folder or "").strip() or "general"
    key = generate_file_key(organization_id, current_user.id, file.filename, folder_name)

    logger.info(f"📥 Uploading {file.filename} ({len(content)} bytes) for organization {organization_id}")
    try:
        upload_object(
            content,
            key,
            content_type=file.content_type,
            metadata={"organization_id": str(organization_id), "uploaded_by": str(current_user.id)},
        )
    except (StorageNotConfiguredError, StorageError) as e:
        raise _storage_error(e) from e

    stored = StoredFile(
        organization_id=organization_id,
        uploaded_by=current_user.id,
        folder=folder_name[:255],
        filename=sanitize_filename(file.filename),
        s3_key=key,
        content_type=file.content_type,
        size_bytes=len(content),
    )
    db.add(stored)
    db.flush()
    record_audit(
        db,
        current_user,
        "file.uploaded",
        "file",
        stored.id,
        {"filename": stored.filename, "size_bytes": stored.size_bytes},
        request,
        organization_id,
    )
    db.commit()
    db.refresh(stored)
    return stored


@router.get("", response_model=list[StoredFileResponse])
async def list_files(
    organization_id: Optional[int] = Query(None),
    folder: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = scope_query(db.query(StoredFile), StoredFile.organization_id, db, current_user)
    if is_client(current_user):
        query = query.filter(StoredFile.uploaded_by == current_user.id)
    if organization_id is not None:
        query = query.filter(StoredFile.organization_id == organization_id)
    if folder:
        query = query.filter(StoredFile.folder == folder)
    return query.order_by(StoredFile.id.desc()).offset(offset).limit(limit).all()


@router.get("/{file_id}/download", response_model=DownloadResponse)
async def download_file(
    file_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    stored = _get_file(db, file_id, current_user)
    try:
        url = generate_presigned_url(stored.s3_key)
    except (StorageNotConfiguredError, StorageError) as e:
        raise _storage_error(e) from e
    return {"url": url, "expires_in": PRESIGNED_URL_EXPIRY_SECONDS, "filename": stored.filename}


@router.delete("/{file_id}", status_code=204)
async def delete_file(
    file_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    stored = _get_file(db, file_id, current_user)
    try:
        delete_object(stored.s3_key)
    except (StorageNotConfiguredError, StorageError) as e:
        raise _storage_error(e) from e

    record_audit(
        db,
        current_user,
        "file.deleted",
        "file",
        stored.id,
        {"filename": stored.filename},
        request,
        stored.organization_id,
    )
    db.delete(stored)
    db.commit()
    return Response(status_code=204)


@admin_router.get("/status")
async def s3_status(current_user: User = Depends(require_super_admin)):
    """Whether S3 is configured and the bucket answers"""
    return get_connection_status()
