import logging
import os
import uuid
from typing import Optional

from fastapi import HTTPException, UploadFile

import config

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic"}


def save_payment_proof(upload: Optional[UploadFile]) -> str:
    """Store an uploaded payment screenshot and return its public /uploads path."""
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail="Payment screenshot is required")
    ext = os.path.splitext(upload.filename)[1].lower()
    if not (upload.content_type or "").startswith("image/") or ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Payment screenshot must be an image")

    data = upload.file.read(config.MAX_UPLOAD_BYTES + 1)
    if not data:
        raise HTTPException(status_code=400, detail="Payment screenshot is empty")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Payment screenshot is too large")

    name = f"{uuid.uuid4().hex}{ext}"
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    with open(os.path.join(config.UPLOAD_DIR, name), "wb") as fh:
        fh.write(data)
    logger.info("Stored payment proof %s (%d bytes)", name, len(data))
    return f"/uploads/{name}"


def discard_payment_proof(public_path: str):
    """Remove a stored payment proof whose order was never created."""
    path = os.path.join(config.UPLOAD_DIR, os.path.basename(public_path))
    if os.path.exists(path):
        os.remove(path)
        logger.info("Discarded payment proof %s", os.path.basename(public_path))
