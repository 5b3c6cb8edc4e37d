"""Local disk storage for listing images.

Uploaded files live in ``settings.uploads_dir`` and are referenced from
listings as ``/uploads/<filename>``. Any other reference (the placeholder or
an external URL) is never touched on disk.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path

from .config import settings
from .errors import ValidationError

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "/uploads/"
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif"}
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif"}


def is_local(ref: str | None) -> bool:
    return bool(ref) and ref.startswith(UPLOAD_PREFIX)


def uploads_path() -> Path:
    path = Path(settings.uploads_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def path_for(ref: str) -> Path:
    # only the final component is trusted, so a reference cannot escape the dir
    return uploads_path() / Path(ref[len(UPLOAD_PREFIX):]).name


def save_image(upload, owner_id: int) -> str:
    """Write an uploaded image to disk and return its storage reference.

    ``upload`` is a Starlette ``UploadFile``. Only jpg/jpeg/png/gif files up
    to ``settings.max_image_bytes`` are accepted; both the extension and the
    declared content type must match.
    """
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS or (upload.content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("File upload only supports images (jpg/jpeg/png/gif)")

    data = upload.file.read(settings.max_image_bytes + 1)
    if len(data) > settings.max_image_bytes:
        raise ValidationError(
            f"Image larger than {settings.max_image_bytes // (1024 * 1024)}MB"
        )

    filename = f"{owner_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
    ref = f"{UPLOAD_PREFIX}{filename}"
    path_for(ref).write_bytes(data)
    logger.info("stored image %s (%d bytes)", ref, len(data))
    return ref


def delete_image(ref: str | None) -> bool:
    """Best-effort removal of a stored image.

    Returns ``True`` when a file was removed. Placeholder and external
    references are ignored; filesystem errors are logged and swallowed.
    """
    if not is_local(ref):
        return False
    path = path_for(ref)
    try:
        path.unlink()
    except OSError:
        logger.warning("failed to delete image %s", path, exc_info=True)
        return False
    logger.info("deleted image %s", path)
    return True


def public_image_url(ref: str | None) -> str:
    """Return an externally fetchable address for an image reference."""
    if not ref:
        return settings.placeholder_image_url
    if is_local(ref):
        return f"{settings.public_base_url.rstrip('/')}{ref}"
    return ref
