import logging
import secrets
import time
from pathlib import Path
from typing import Iterable, Optional

from fastapi import HTTPException, UploadFile

from config import settings

logger = logging.getLogger(__name__)

URL_PREFIX = "uploads"

WORKSPACE_IMAGE_TYPES = ("jpeg", "jpg", "png")
PROFILE_IMAGE_TYPES = ("jpeg", "jpg", "png", "gif")


def _formats_message(allowed: Iterable[str]) -> str:
    exts = [f".{ext}" for ext in allowed if ext != "jpeg"] + [".jpeg"]
    return f"Only {', '.join(exts[:-1])} and {exts[-1]} formats are allowed!"


def _path_for(relative: str) -> Path:
    return settings.upload_dir / Path(relative).relative_to(URL_PREFIX)


async def save_upload(upload: UploadFile, subdir: str, prefix: str, allowed: Iterable[str]) -> str:
    """Store an uploaded image and return its path relative to the server root."""
    allowed = tuple(allowed)
    ext = Path(upload.filename or "").suffix.lower()
    content_type = (upload.content_type or "").lower()
    if ext.lstrip(".") not in allowed or not any(t in content_type for t in allowed):
        raise HTTPException(status_code=400, detail=_formats_message(allowed))

    data = await upload.read()
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=400, detail="File too large")

    filename = f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"
    target_dir = settings.upload_dir / subdir
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / filename).write_bytes(data)
    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return f"{URL_PREFIX}/{subdir}/{filename}"


def remove_upload(relative: Optional[str]) -> None:
    if not relative or relative == settings.default_cover_image or not relative.startswith(f"{URL_PREFIX}/"):
        return
    try:
        _path_for(relative).unlink(missing_ok=True)
    except OSError as exc:
        logger.error("Error deleting old upload %s: %s", relative, exc)
