from typing import Dict

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from funplanet.utils.auth import get_current_user
from funplanet.utils.dependencies import get_r2_storage
from funplanet.utils.storage import R2Storage

router = APIRouter()


@router.post("/upload-to-r2")
async def upload_to_r2(
    file: UploadFile = File(...),
    folder: str = Form("uploads"),
    user: Dict = Depends(get_current_user),
    storage: R2Storage = Depends(get_r2_storage),
):
    folder = folder.strip("/") or "uploads"
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Missing file")
    return storage.upload(
        content,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        folder,
    )


@router.delete("/upload-to-r2")
async def delete_from_r2(
    key: str,
    user: Dict = Depends(get_current_user),
    storage: R2Storage = Depends(get_r2_storage),
):
    if not key:
        raise HTTPException(status_code=400, detail="key is required")
    storage.delete(key)
    return {"success": True, "deleted": key}
