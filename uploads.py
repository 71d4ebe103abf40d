from __future__ import annotations

from dataclasses import dataclass
import logging
import random
import time
from typing import Any, Dict, List, Mapping, Optional, Union

import filetype

from errors import BadRequest, InvalidFilename, NotFound, UploadRejected
from storage import ImageStorage
from validation import (
    LIMIT_FILE_COUNT,
    LIMIT_FILE_SIZE,
    LIMIT_UNEXPECTED_FILE,
    UploadPolicy,
    file_extension,
    validate_upload,
)

logger = logging.getLogger(__name__)

SINGLE_FIELD = "image"
MULTIPLE_FIELD = "images"
INVALID_MULTIPART = "INVALID_MULTIPART"
UNKNOWN_CONTENT_TYPE = "application/octet-stream"


@dataclass
class FormFile:
    field_name: str
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def detect_content_type(data: bytes) -> str:
    """MIME type read from the file signature, not from client headers."""
    kind = filetype.guess(data)
    return kind.mime if kind is not None else UNKNOWN_CONTENT_TYPE


def form_files(
    files: Mapping[str, Union[bytes, List[int]]],
    content_type: str,
    field_name: str,
) -> List[FormFile]:
    """Wrap the file parts Robyn already split out of a multipart body.

    Robyn keys each part by its filename and drops the part headers, so the
    content type is detected from the bytes and every part is attributed to
    the field the route expects.
    """
    if not (content_type or "").strip().lower().startswith("multipart/form-data"):
        raise BadRequest("Expected multipart/form-data", code=INVALID_MULTIPART)
    parts: List[FormFile] = []
    for filename, raw in (files or {}).items():
        if not filename:
            continue
        data = bytes(raw)
        parts.append(
            FormFile(
                field_name=field_name,
                filename=filename,
                content_type=detect_content_type(data),
                data=data,
            )
        )
    return parts


def generate_filename(
    original_name: str,
    *,
    now_ms: Optional[int] = None,
    suffix: Optional[int] = None,
) -> str:
    """Build ``image-<millis>-<random>.<ext>``; only the extension is kept."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if suffix is None:
        suffix = random.randint(0, 1_000_000_000)
    return f"image-{now_ms}-{suffix}{file_extension(original_name)}"


def _matches_field(part: FormFile, expected: str) -> bool:
    return part.field_name in {expected, f"{expected}[]"}


class UploadService:
    """Upload, list and delete operations over one storage root."""

    def __init__(self, storage: ImageStorage, policy: UploadPolicy) -> None:
        self.storage = storage
        self.policy = policy

    def _check_transport_limits(
        self, files: List[FormFile], expected_field: str, max_for_field: int
    ) -> None:
        # Whole-request limits: nothing is written when any of these trip.
        if len(files) > self.policy.max_files:
            raise UploadRejected(self.policy.count_message(), code=LIMIT_FILE_COUNT)
        unexpected = [part for part in files if not _matches_field(part, expected_field)]
        if unexpected or len(files) > max_for_field:
            raise UploadRejected(
                "Unexpected field name in upload.", code=LIMIT_UNEXPECTED_FILE
            )
        if any(self.policy.exceeds_size(part.size) for part in files):
            raise UploadRejected(self.policy.size_message(), code=LIMIT_FILE_SIZE)

    def _store(self, part: FormFile) -> Dict[str, Any]:
        stored = self.storage.write(generate_filename(part.filename), part.data)
        logger.info(
            "upload stored filename=%s original=%s bytes=%s content_type=%s",
            stored.filename,
            part.filename,
            stored.size,
            part.content_type,
        )
        return {
            "filename": stored.filename,
            "originalName": part.filename,
            "size": stored.size,
            "path": stored.public_path,
        }

    def upload_single(self, files: List[FormFile]) -> Dict[str, Any]:
        self._check_transport_limits(files, SINGLE_FIELD, 1)
        if not files:
            raise BadRequest("No file uploaded")
        part = files[0]
        verdict = validate_upload(self.policy, part.content_type, part.filename, part.size)
        if not verdict.accepted:
            raise UploadRejected(verdict.message, code=verdict.code)
        return {"success": True, "message": "File uploaded successfully", **self._store(part)}

    def upload_multiple(self, files: List[FormFile]) -> Dict[str, Any]:
        self._check_transport_limits(files, MULTIPLE_FIELD, self.policy.max_files)
        if not files:
            raise BadRequest("No files uploaded")
        stored: List[Dict[str, Any]] = []
        rejected: List[Dict[str, Any]] = []
        for part in files:
            verdict = validate_upload(
                self.policy, part.content_type, part.filename, part.size
            )
            if not verdict.accepted:
                logger.warning(
                    "upload rejected original=%s code=%s", part.filename, verdict.code
                )
                rejected.append(
                    {
                        "originalName": part.filename,
                        "code": verdict.code,
                        "message": verdict.message,
                    }
                )
                continue
            stored.append(self._store(part))
        if not stored:
            first = rejected[0]
            raise UploadRejected(first["message"], code=first["code"])
        return {
            "success": True,
            "message": f"{len(stored)} file(s) uploaded successfully",
            "files": stored,
            "rejected": rejected,
        }

    def list_images(self) -> Dict[str, Any]:
        files = [image.to_dict() for image in self.storage.list_images()]
        return {"success": True, "count": len(files), "files": files}

    def delete_image(self, filename: str) -> Dict[str, Any]:
        try:
            deleted = self.storage.delete(filename)
        except InvalidFilename:
            logger.warning("delete rejected filename=%r reason=invalid_filename", filename)
            raise
        if not deleted:
            raise NotFound("File not found")
        logger.info("delete completed filename=%s", filename)
        return {"success": True, "message": "File deleted successfully"}
