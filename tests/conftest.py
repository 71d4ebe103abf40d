from __future__ import annotations

from dataclasses import dataclass
from email.message import Message
import json
import os
from pathlib import Path
import shutil
import socket
import subprocess
import time
import urllib.error
import urllib.request
from uuid import uuid4

import pytest

from storage import ImageStorage
from uploads import FormFile, UploadService
from validation import UploadPolicy

ALLOWED_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})
MAX_FILE_SIZE = 5 * 1024 * 1024

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def png_bytes(size: int) -> bytes:
    """A PNG signature padded to exactly ``size`` bytes."""
    return PNG_HEADER + b"\x00" * (size - len(PNG_HEADER))


def encode_multipart(parts: list[tuple[str, str, str, bytes]]) -> tuple[bytes, str]:
    """Encode (field, filename, content_type, data) tuples as form-data."""
    boundary = f"----clickfit{uuid4().hex}"
    chunks: list[bytes] = []
    for field, filename, content_type, data in parts:
        chunks.append(f"--{boundary}\r\n".encode())
        chunks.append(
            f'Content-Disposition: form-data; name="{field}"; filename="{filename}"\r\n'.encode()
        )
        chunks.append(f"Content-Type: {content_type}\r\n\r\n".encode())
        chunks.append(data)
        chunks.append(b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"


@pytest.fixture
def policy() -> UploadPolicy:
    return UploadPolicy(
        allowed_mime_types=ALLOWED_TYPES,
        allowed_extensions=ALLOWED_EXTENSIONS,
        max_file_size=MAX_FILE_SIZE,
        max_files=10,
    )


@pytest.fixture
def storage(tmp_path: Path) -> ImageStorage:
    return ImageStorage(tmp_path / "uploads", ALLOWED_EXTENSIONS)


@pytest.fixture
def service(storage: ImageStorage, policy: UploadPolicy) -> UploadService:
    return UploadService(storage, policy)


def form_file(
    filename: str = "photo.png",
    content_type: str = "image/png",
    data: bytes | None = None,
    field_name: str = "image",
) -> FormFile:
    return FormFile(
        field_name=field_name,
        filename=filename,
        content_type=content_type,
        data=png_bytes(64) if data is None else data,
    )


@dataclass
class TestResponse:
    status: int
    headers: Message
    body: bytes

    def json(self) -> dict:
        return json.loads(self.body.decode("utf-8"))


class TestClient:
    __test__ = False

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict | None = None,
        files: list[tuple[str, str, str, bytes]] | None = None,
    ) -> TestResponse:
        url = f"{self.base_url}{path}"
        body = None
        headers: dict[str, str] = {}
        if json_data is not None:
            body = json.dumps(json_data).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if files is not None:
            body, headers["Content-Type"] = encode_multipart(files)
        request = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            response = urllib.request.urlopen(request, timeout=10)
        except urllib.error.HTTPError as exc:
            response = exc
        return TestResponse(
            status=response.code, headers=response.headers, body=response.read()
        )


@dataclass
class ServerInfo:
    base_url: str
    upload_dir: Path
    db_path: Path


def _find_free_port() -> int:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except PermissionError as exc:
        raise RuntimeError("Socket binding is not permitted in this environment.") from exc


def _wait_for_server(base_url: str, proc: subprocess.Popen[str]) -> None:
    deadline = time.time() + 15
    last_error: Exception | None = None
    while time.time() < deadline:
        if proc.poll() is not None:
            raise RuntimeError("Robyn server process exited early.")
        try:
            with urllib.request.urlopen(f"{base_url}/api/health", timeout=1) as resp:
                if resp.status == 200:
                    return
        except Exception as exc:  # pragma: no cover - transient startup errors
            last_error = exc
        time.sleep(0.2)
    raise RuntimeError(f"Robyn server failed to start: {last_error}")


@pytest.fixture(scope="module")
def server(tmp_path_factory: pytest.TempPathFactory) -> ServerInfo:
    if shutil.which("robyn") is None:
        pytest.skip("Robyn CLI is not available in this environment.")
    repo_root = Path(__file__).resolve().parents[1]
    upload_dir = tmp_path_factory.mktemp("uploads")
    db_path = tmp_path_factory.mktemp("db") / "clickfit.db"
    try:
        port = _find_free_port()
    except RuntimeError as exc:
        pytest.skip(str(exc))
    env = os.environ.copy()
    env.update(
        {
            "ROBYN_HOST": "127.0.0.1",
            "ROBYN_PORT": str(port),
            "CLICKFIT_ENV": "test",
            "CLICKFIT_UPLOAD_DIR": str(upload_dir),
            "CLICKFIT_DB_PATH": str(db_path),
            "CLICKFIT_SEED_DEMO_USER": "0",
        }
    )
    proc = subprocess.Popen(
        ["robyn", "app.py", "--log-level", "ERROR"],
        cwd=repo_root,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        text=True,
    )
    try:
        try:
            _wait_for_server(f"http://127.0.0.1:{port}", proc)
        except RuntimeError as exc:
            pytest.skip(str(exc))
        yield ServerInfo(
            base_url=f"http://127.0.0.1:{port}", upload_dir=upload_dir, db_path=db_path
        )
    finally:
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:  # pragma: no cover - safety net
            proc.kill()
