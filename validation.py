from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

from config import Settings

INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
INVALID_EXTENSION = "INVALID_EXTENSION"
LIMIT_FILE_SIZE = "LIMIT_FILE_SIZE"
LIMIT_FILE_COUNT = "LIMIT_FILE_COUNT"
LIMIT_UNEXPECTED_FILE = "LIMIT_UNEXPECTED_FILE"


@dataclass(frozen=True)
class UploadPolicy:
    allowed_mime_types: frozenset[str]
    allowed_extensions: frozenset[str]
    max_file_size: int
    max_files: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadPolicy":
        return cls(
            allowed_mime_types=settings.allowed_mime_types,
            allowed_extensions=settings.allowed_extensions,
            max_file_size=settings.max_file_size,
            max_files=settings.max_files,
        )

    @property
    def max_file_size_mb(self) -> str:
        megabytes = self.max_file_size / (1024 * 1024)
        return f"{megabytes:g}MB"

    def allows_extension(self, filename: str) -> bool:
        return file_extension(filename) in self.allowed_extensions

    def exceeds_size(self, size: int) -> bool:
        return size > self.max_file_size

    def size_message(self) -> str:
        return f"File is too large. Maximum size is {self.max_file_size_mb}."

    def count_message(self) -> str:
        return f"Too many files. Maximum is {self.max_files} files."


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    code: Optional[str] = None
    message: str = ""


ACCEPTED = Verdict(accepted=True)


def file_extension(filename: str) -> str:
    """Lowercased extension including the dot, or '' when there is none."""
    return os.path.splitext(filename or "")[1].lower()


def validate_upload(
    policy: UploadPolicy, content_type: str, filename: str, size: int
) -> Verdict:
    """Check one candidate file against the policy without touching disk.

    The MIME type and the extension are checked independently, so a renamed
    executable fails on its declared type and a spoofed type fails on its
    extension.
    """
    declared = (content_type or "").split(";", 1)[0].strip().lower()
    if declared not in policy.allowed_mime_types:
        return Verdict(
            accepted=False,
            code=INVALID_FILE_TYPE,
            message="Invalid file type. Only JPEG, PNG, GIF, and WEBP are allowed.",
        )
    if not policy.allows_extension(filename):
        return Verdict(
            accepted=False,
            code=INVALID_EXTENSION,
            message="Invalid file extension.",
        )
    if policy.exceeds_size(size):
        return Verdict(
            accepted=False, code=LIMIT_FILE_SIZE, message=policy.size_message()
        )
    return ACCEPTED
