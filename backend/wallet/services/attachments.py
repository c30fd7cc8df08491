import secrets
import time
from pathlib import Path

from fastapi import UploadFile

from ..errors import ValidationError

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".zip"}
MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
UPLOADS_URL_PREFIX = "/uploads"


async def save_attachment(upload: UploadFile | None, uploads_dir: Path) -> str | None:
    """Store an uploaded file and return its public path, or None when nothing was sent."""
    if upload is None or not upload.filename:
        return None
    ext = Path(upload.filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError("file type not allowed (images, PDF and office documents only)", field="attachment")
    content = await upload.read()
    if len(content) > MAX_ATTACHMENT_BYTES:
        raise ValidationError("attachment exceeds the 10 MB limit", field="attachment")
    uploads_dir.mkdir(parents=True, exist_ok=True)
    stored_name = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"
    (uploads_dir / stored_name).write_bytes(content)
    return f"{UPLOADS_URL_PREFIX}/{stored_name}"
