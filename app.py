from datetime import datetime, timezone
from typing import Optional
from urllib.parse import unquote
import asyncio
import json
import logging
import mimetypes
import os
import pathlib

from robyn import ALLOW_CORS, Request, Response, Robyn
from robyn.templating import JinjaTemplate

from config import Settings, configure_logging, load_settings
from database import Database
from errors import ClickFitError, unexpected_error_payload
from storage import ImageStorage
from uploads import MULTIPLE_FIELD, SINGLE_FIELD, UploadService, form_files
from users import UserService, parse_user_id
from validation import UploadPolicy

logger = logging.getLogger(__name__)

current_file_path = pathlib.Path(__file__).parent.resolve()
STATIC_DIR = current_file_path / "frontend" / "static"

STATIC_ASSETS = {
    "upload.js": "application/javascript; charset=utf-8",
    "gallery.js": "application/javascript; charset=utf-8",
    "styles.css": "text/css; charset=utf-8",
}


def _raw_body_bytes(request: Request) -> bytes:
    raw_body = request.body
    if isinstance(raw_body, (bytes, bytearray)):
        return bytes(raw_body)
    if isinstance(raw_body, list):
        return bytes(raw_body)
    if isinstance(raw_body, str):
        return raw_body.encode("utf-8")
    return b""


def _json_data(request: Request) -> dict:
    body = _raw_body_bytes(request)
    if not body:
        return {}
    try:
        parsed = json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _json_response(payload: dict, *, status: int = 200) -> Response:
    return Response(
        status_code=status,
        headers={"content-type": "application/json; charset=utf-8"},
        description=json.dumps(payload),
    )


def _error_response(exc: ClickFitError) -> Response:
    return _json_response(exc.to_payload(), status=exc.status_code)


def _failure(message: str) -> Response:
    return _json_response({"success": False, "message": message}, status=500)


def _path_param(request: Request, name: str) -> str:
    """Path segments may arrive percent-encoded; decode before validating."""
    return unquote(str(request.path_params[name]))


def _configure_payload_limit(settings: Settings) -> None:
    # Robyn reads its request body ceiling from the environment at start.
    os.environ.setdefault("ROBYN_MAX_PAYLOAD_SIZE", str(settings.max_request_bytes))


def create_app(settings: Optional[Settings] = None) -> Robyn:
    """Wire storage, the users database and every route onto a new app."""
    settings = settings or load_settings()
    _configure_payload_limit(settings)

    app = Robyn(__file__)
    ALLOW_CORS(app, origins=[settings.cors_origin])
    jinja_template = JinjaTemplate(os.path.join(current_file_path, "frontend/pages"))

    policy = UploadPolicy.from_settings(settings)
    storage = ImageStorage(settings.upload_dir, policy.allowed_extensions)
    storage.ensure_root()
    uploads = UploadService(storage, policy)
    db = Database(settings.db_path)
    users = UserService(db)

    async def _startup() -> None:
        """Prepare the sqlite file before handling the first request."""
        await db.initialize()
        if settings.seed_demo_user:
            await users.seed_demo_user()
        logger.info(
            "server ready upload_dir=%s environment=%s",
            settings.upload_dir,
            settings.environment,
        )

    async def _shutdown() -> None:
        logger.info("server shutting down")

    app.startup_handler(_startup)
    app.shutdown_handler(_shutdown)

    @app.exception
    def handle_exception(error):
        logger.error("unhandled error: %s", error, exc_info=error)
        return _json_response(
            unexpected_error_payload(error, debug=settings.debug), status=500
        )

    @app.get("/")
    async def home(request: Request) -> Response:
        """Single page front end with the upload policy baked in."""
        return jinja_template.render_template(
            "index/Index.html",
            request=request,
            title="Click Fit",
            max_file_size=policy.max_file_size,
            max_file_size_label=policy.max_file_size_mb,
            allowed_types=sorted(policy.allowed_mime_types),
            allowed_extensions=sorted(policy.allowed_extensions),
            single_field=SINGLE_FIELD,
        )

    @app.get("/static/:asset")
    async def static_asset(request: Request) -> Response:
        asset = _path_param(request, "asset")
        content_type = STATIC_ASSETS.get(asset)
        if content_type is None:
            return _json_response(
                {"success": False, "message": "Resource not found"}, status=404
            )
        content = (STATIC_DIR / asset).read_text(encoding="utf-8")
        return Response(
            status_code=200,
            headers={"content-type": content_type},
            description=content,
        )

    @app.get("/uploads/:filename")
    async def serve_upload(request: Request) -> Response:
        filename = _path_param(request, "filename")
        try:
            data = await asyncio.to_thread(storage.read, filename)
        except ClickFitError as exc:
            return _error_response(exc)
        if data is None:
            return _json_response(
                {"success": False, "message": "File not found"}, status=404
            )
        content_type, _ = mimetypes.guess_type(filename)
        return Response(
            status_code=200,
            headers={"content-type": content_type or "application/octet-stream"},
            description=data,
        )

    @app.get("/api/health")
    async def health(_: Request) -> Response:
        return _json_response(
            {
                "success": True,
                "message": "Click Fit API is running",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    @app.post("/api/upload")
    async def upload_image(request: Request) -> Response:
        try:
            files = form_files(
                request.files, request.headers.get("content-type") or "", SINGLE_FIELD
            )
            payload = await asyncio.to_thread(uploads.upload_single, files)
        except ClickFitError as exc:
            logger.warning("upload rejected code=%s message=%s", exc.code, exc.message)
            return _error_response(exc)
        except OSError:
            logger.exception("upload failed reason=io_error")
            return _failure("Failed to upload file")
        return _json_response(payload)

    @app.post("/api/upload/multiple")
    async def upload_images(request: Request) -> Response:
        try:
            files = form_files(
                request.files, request.headers.get("content-type") or "", MULTIPLE_FIELD
            )
            payload = await asyncio.to_thread(uploads.upload_multiple, files)
        except ClickFitError as exc:
            logger.warning(
                "multiple upload rejected code=%s message=%s", exc.code, exc.message
            )
            return _error_response(exc)
        except OSError:
            logger.exception("multiple upload failed reason=io_error")
            return _failure("Failed to upload files")
        return _json_response(payload)

    @app.get("/api/upload/list")
    async def list_images(_: Request) -> Response:
        try:
            payload = await asyncio.to_thread(uploads.list_images)
        except OSError:
            logger.exception("list failed upload_dir=%s", settings.upload_dir)
            return _failure("Failed to list files")
        logger.info("images listed count=%s", payload["count"])
        return _json_response(payload)

    @app.delete("/api/upload/:filename")
    async def delete_image(request: Request) -> Response:
        filename = _path_param(request, "filename")
        try:
            payload = await asyncio.to_thread(uploads.delete_image, filename)
        except ClickFitError as exc:
            return _error_response(exc)
        except OSError:
            logger.exception("delete failed filename=%s", filename)
            return _failure("Failed to delete file")
        return _json_response(payload)

    @app.get("/api/users")
    async def list_users(_: Request) -> Response:
        try:
            payload = await users.list_users()
        except Exception:
            logger.exception("list users failed reason=db_error")
            return _failure("Failed to fetch users")
        return _json_response(payload)

    @app.get("/api/users/:id")
    async def get_user(request: Request) -> Response:
        try:
            payload = await users.get_user(parse_user_id(_path_param(request, "id")))
        except ClickFitError as exc:
            return _error_response(exc)
        return _json_response(payload)

    @app.post("/api/users")
    async def create_user(request: Request) -> Response:
        try:
            payload = await users.create_user(_json_data(request))
        except ClickFitError as exc:
            logger.warning("create user rejected status=%s message=%s", exc.status_code, exc.message)
            return _error_response(exc)
        except Exception:
            logger.exception("create user failed reason=db_error")
            return _failure("Failed to create user")
        return _json_response(payload, status=201)

    @app.put("/api/users/:id/toggle")
    async def toggle_user(request: Request) -> Response:
        try:
            payload = await users.toggle_user(parse_user_id(_path_param(request, "id")))
        except ClickFitError as exc:
            return _error_response(exc)
        return _json_response(payload)

    @app.delete("/api/users/:id")
    async def delete_user(request: Request) -> Response:
        try:
            payload = await users.delete_user(parse_user_id(_path_param(request, "id")))
        except ClickFitError as exc:
            return _error_response(exc)
        return _json_response(payload)

    return app


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.log_level)
    create_app(settings).start(host=settings.host, port=settings.port, _check_port=False)
