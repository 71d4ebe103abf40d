from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from errors import InvalidFilename
from validation import file_extension

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"


def _iso_utc(timestamp: float) -> str:
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class StoredImage:
    filename: str
    size: int
    modified_at: float

    @property
    def public_path(self) -> str:
        return f"{PUBLIC_PREFIX}/{self.filename}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "size": self.size,
            "uploadedAt": _iso_utc(self.modified_at),
            "path": self.public_path,
        }


class ImageStorage:
    """Flat directory of image files addressed by bare filename."""

    def __init__(self, root: Path, allowed_extensions: Iterable[str]) -> None:
        self.root = Path(root)
        self.allowed_extensions = frozenset(allowed_extensions)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, filename: str) -> Path:
        """Map a client supplied name to a path directly inside the root.

        Rejection depends only on the name and the root, never on whether the
        target exists.
        """
        if (
            not filename
            or filename in {".", ".."}
            or "/" in filename
            or "\\" in filename
            or "\x00" in filename
        ):
            raise InvalidFilename()
        root = self.root.resolve()
        candidate = (root / filename).resolve()
        if candidate.parent != root:
            raise InvalidFilename()
        return candidate

    def is_managed(self, filename: str) -> bool:
        return file_extension(filename) in self.allowed_extensions

    def write(self, filename: str, data: bytes) -> StoredImage:
        path = self.resolve(filename)
        self.ensure_root()
        # "x" refuses to clobber an existing file on a name collision.
        with open(path, "xb") as handle:
            handle.write(data)
        stat = path.stat()
        return StoredImage(filename=filename, size=stat.st_size, modified_at=stat.st_mtime)

    def stat(self, filename: str) -> Optional[StoredImage]:
        path = self.resolve(filename)
        if not self.is_managed(filename):
            return None
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        if not path.is_file():
            return None
        return StoredImage(filename=filename, size=stat.st_size, modified_at=stat.st_mtime)

    def read(self, filename: str) -> Optional[bytes]:
        if self.stat(filename) is None:
            return None
        try:
            return self.resolve(filename).read_bytes()
        except FileNotFoundError:
            return None

    def list_images(self) -> List[StoredImage]:
        """Scan the root; newest first, ties broken by name."""
        try:
            entries = list(os.scandir(self.root))
        except FileNotFoundError:
            return []
        images: List[StoredImage] = []
        for entry in entries:
            if not self.is_managed(entry.name):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                # Removed between the scan and the stat.
                logger.debug("skipping vanished entry filename=%s", entry.name)
                continue
            images.append(
                StoredImage(
                    filename=entry.name, size=stat.st_size, modified_at=stat.st_mtime
                )
            )
        images.sort(key=lambda image: image.filename)
        images.sort(key=lambda image: image.modified_at, reverse=True)
        return images

    def delete(self, filename: str) -> bool:
        """Remove a managed image; False when there was nothing to remove."""
        path = self.resolve(filename)
        if not self.is_managed(filename) or path.is_dir():
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
