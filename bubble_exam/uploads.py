"""Base64 image uploads, stored content-addressed on disk."""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from pathlib import Path

log = logging.getLogger("bubble_exam.uploads")

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}
MEDIA_TYPES = {ext: mime for mime, ext in EXTENSIONS.items() if mime != "image/jpg"}

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<payload>.*)$", re.DOTALL)
FILE_NAME_RE = re.compile(r"^[0-9a-f]{16}\.(png|jpg|gif|webp)$")


class UploadError(ValueError):
    """Rejected upload payload."""


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:16]


def decode_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a data URL into (extension, raw bytes)."""
    if not isinstance(data_url, str):
        raise UploadError("Image must be a data URL string")
    m = DATA_URL_RE.match(data_url.strip())
    if not m:
        raise UploadError("Image must be a base64 data URL")
    mime = m.group("mime").lower()
    ext = EXTENSIONS.get(mime)
    if ext is None:
        raise UploadError(f"Unsupported image type: {mime}")
    try:
        data = base64.b64decode(m.group("payload"), validate=True)
    except (binascii.Error, ValueError):
        raise UploadError("Image payload is not valid base64") from None
    if not data:
        raise UploadError("Image is empty")
    return ext, data


def save_data_url(data_url: str, upload_dir: Path, max_bytes: int) -> Path:
    """Store a data-URL image and return its path. Identical images share a file."""
    ext, data = decode_data_url(data_url)
    if len(data) > max_bytes:
        raise UploadError(f"Image is {len(data)} bytes, limit is {max_bytes}")

    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"{content_hash(data)}.{ext}"
    if path.exists():
        return path
    path.write_bytes(data)
    log.info("Stored upload %s (%d bytes)", path.name, len(data))
    return path


def resolve_upload(name: str, upload_dir: Path) -> Path | None:
    """Path of a stored upload, or None for unknown or malformed names."""
    if not FILE_NAME_RE.match(name):
        return None
    path = upload_dir / name
    return path if path.exists() else None


def media_type(path: Path) -> str:
    return MEDIA_TYPES.get(path.suffix.lstrip("."), "application/octet-stream")
