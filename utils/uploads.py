"""Validation and storage for concern images and policy PDFs."""
import io
import os
import secrets
import time
from typing import Dict, Tuple

from flask import current_app
from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png"}
DOCUMENT_EXTENSIONS = {"pdf"}
ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS | DOCUMENT_EXTENSIONS
ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "application/pdf"}
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class UploadError(ValueError):
    """Raised when an uploaded file is missing, oversized or of the wrong type."""


def _fail_if(condition: bool, message: str) -> None:
    if condition:
        raise UploadError(message)


def _verify_image(content: bytes) -> None:
    try:
        with Image.open(io.BytesIO(content)) as img:
            fmt = (img.format or "").upper()
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise UploadError("Invalid image data") from exc
    _fail_if(fmt not in {"JPEG", "PNG"}, "Only image files (jpeg, jpg, png) and PDF files are allowed!")


def validate_upload(file: FileStorage, allowed: set[str], max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> Tuple[bytes, str]:
    _fail_if(not file or not file.filename, "No file provided")
    filename = secure_filename(file.filename or "")
    _fail_if(not filename or "." not in filename, "Unsupported file name")
    ext = filename.rsplit(".", 1)[1].lower()
    _fail_if(ext not in allowed, "Only image files (jpeg, jpg, png) and PDF files are allowed!")
    _fail_if(
        (file.mimetype or "").lower() not in ALLOWED_MIME_TYPES,
        "Only image files (jpeg, jpg, png) and PDF files are allowed!",
    )

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    _fail_if(size == 0, "Empty file")
    _fail_if(size > max_bytes, "File exceeds the 10MB size limit")

    content = file.read()
    _fail_if(len(content) > max_bytes, "File exceeds the 10MB size limit")
    if ext in DOCUMENT_EXTENSIONS:
        _fail_if(not content.startswith(b"%PDF"), "Invalid PDF data")
    else:
        _verify_image(content)

    file.stream.seek(0)
    return content, ext


def _stored_name(prefix: str, extension: str) -> str:
    return secure_filename(f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}.{extension}")


def save_upload(file: FileStorage, subdir: str, prefix: str, allowed: set[str]) -> Dict[str, str]:
    """Validate ``file`` and write it under ``UPLOAD_FOLDER/subdir``.

    Returns the absolute path and the public ``/uploads/...`` URL.
    """
    max_bytes = current_app.config.get("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)
    content, ext = validate_upload(file, allowed, max_bytes=max_bytes)

    upload_dir = os.path.join(current_app.config["UPLOAD_FOLDER"], subdir)
    os.makedirs(upload_dir, exist_ok=True)
    name = _stored_name(prefix, ext)
    path = os.path.join(upload_dir, name)
    with open(path, "wb") as handle:
        handle.write(content)

    current_app.logger.info("Stored upload", extra={"upload_path": path, "size": len(content)})
    return {"path": path, "url": f"/uploads/{subdir}/{name}", "extension": ext}


def path_for_url(url: str | None) -> str | None:
    if not url or not url.startswith("/uploads/"):
        return None
    relative = url[len("/uploads/"):]
    return os.path.join(current_app.config["UPLOAD_FOLDER"], *relative.split("/"))


def remove_upload(path: str | None) -> None:
    """Best-effort removal; a missing file is not an error."""
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError:
        current_app.logger.warning("Could not remove upload", extra={"upload_path": path})
