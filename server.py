import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException

from clipboard_backend.blobs import BlobStore
from clipboard_backend.config import (
    API_KEY,
    AUTH_COOKIE_MAX_AGE_SECONDS,
    AUTH_COOKIE_NAME,
    BASE_URL,
    CLEANUP_INTERVAL_SECONDS,
    DATABASE_URL,
    DEFAULT_API_KEY,
    DEFAULT_TTL_MINUTES,
    FRONTEND_DIST,
    HOST,
    MAX_UPLOAD_BYTES,
    PORT,
    RATE_LIMIT,
    RATE_LIMIT_ENABLED,
    UPLOAD_CHUNK_BYTES,
    UPLOADS_ROOT,
    configure_logging,
)
from clipboard_backend.errors import ClipboardError, Expired, NotFound, PayloadTooLarge, StoreError, ValidationError
from clipboard_backend.models import ItemKind, now_ms, require_live
from clipboard_backend.security import is_authorized, safe_join
from clipboard_backend.store import ItemStore
from clipboard_backend.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)


class UploadResponse(BaseModel):
    id: str
    url: str
    expiry: int


class ItemListEntry(BaseModel):
    id: str
    type: str
    created_at: int
    expiry: int
    filename: Optional[str] = None
    username: str


class MessageResponse(BaseModel):
    message: str


class CleanupResponse(BaseModel):
    message: str
    deleted: int
    skipped: bool = False


def get_store(request: Request) -> ItemStore:
    return request.app.state.store


def get_sweeper(request: Request) -> ExpirySweeper:
    return request.app.state.sweeper


def require_api_key(request: Request) -> None:
    authorized = is_authorized(
        request.app.state.api_key,
        header_key=request.headers.get("x-api-key"),
        query_key=request.query_params.get("api_key"),
        cookie_key=request.cookies.get(AUTH_COOKIE_NAME),
    )
    if not authorized:
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid API Key")


def _parse_ttl_minutes(raw: Optional[str]) -> int:
    # Non-numeric or missing values fall back to the default; range is clamped by the store.
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return DEFAULT_TTL_MINUTES


router = APIRouter()


@router.post("/api/upload", response_model=UploadResponse, dependencies=[Depends(require_api_key)])
@limiter.limit(RATE_LIMIT)
async def upload(
    request: Request,
    file: Optional[UploadFile] = File(None),
    text: Optional[str] = Form(None),
    expiry: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
) -> UploadResponse:
    store = get_store(request)
    ttl_minutes = _parse_ttl_minutes(expiry)

    if file is not None and file.filename:
        # Stream to disk first; the row only ever references a complete blob.
        ref = await run_in_threadpool(store.blobs.put_fileobj, file.file, file.filename, MAX_UPLOAD_BYTES)
        try:
            item = await run_in_threadpool(
                store.create, ItemKind.FILE, ref, file.filename, file.content_type, ttl_minutes, username
            )
        except ClipboardError:
            store.blobs.delete_if_exists(ref)
            raise
    else:
        item = await run_in_threadpool(store.create, ItemKind.TEXT, text, None, None, ttl_minutes, username)

    base_url = request.app.state.base_url
    return UploadResponse(id=item.id, url=f"{base_url}/api/download/{item.id}", expiry=item.expires_at)


@router.get("/api/list", response_model=List[ItemListEntry], dependencies=[Depends(require_api_key)])
@limiter.limit(RATE_LIMIT)
async def list_items(request: Request) -> List[ItemListEntry]:
    summaries = await run_in_threadpool(get_store(request).list_live, now_ms())
    return [
        ItemListEntry(
            id=s.id,
            type=s.kind,
            created_at=s.created_at,
            expiry=s.expires_at,
            filename=s.filename,
            username=s.owner_label,
        )
        for s in summaries
    ]


@router.delete("/api/delete/{item_id}", response_model=MessageResponse, dependencies=[Depends(require_api_key)])
@router.delete("/api/item/{item_id}", response_model=MessageResponse, dependencies=[Depends(require_api_key)])
@limiter.limit(RATE_LIMIT)
async def delete_item(request: Request, item_id: str) -> MessageResponse:
    await run_in_threadpool(get_store(request).delete, item_id)
    return MessageResponse(message="Item deleted")


@router.get("/api/download/{item_id}")
@limiter.limit(RATE_LIMIT)
async def download(request: Request, item_id: str) -> Response:
    """Public download; knowing the id is the capability.

    404 for unknown ids, 410 for known but expired ones.
    """
    store = get_store(request)
    item = await run_in_threadpool(store.get, item_id)
    require_live(item, now_ms())

    if not item.is_file:
        return JSONResponse({"text": item.payload}, headers={"Cache-Control": "no-store"})

    try:
        path = store.blobs.path_for(item.payload)
    except ValueError:
        raise NotFound(item.id)
    if not path.is_file():
        logger.warning("Blob missing for live item %s", item.id)
        raise NotFound(item.id)
    return FileResponse(
        path,
        media_type=item.mime_type or "application/octet-stream",
        filename=item.filename,
        headers={"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"},
    )


@router.delete("/api/cleanup", response_model=CleanupResponse, dependencies=[Depends(require_api_key)])
@limiter.limit(RATE_LIMIT)
async def cleanup(request: Request) -> CleanupResponse:
    result = await run_in_threadpool(get_sweeper(request).trigger_now)
    if result.skipped:
        return CleanupResponse(message="Cleanup already running", deleted=0, skipped=True)
    return CleanupResponse(message="Cleanup complete", deleted=result.deleted)


@router.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "timestamp": now_ms()})


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _install_error_handlers(app: FastAPI) -> None:
    # Clients read {"error": "..."} for every failure.
    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
        return _error(400, "Invalid request: " + "; ".join(problems))

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(PayloadTooLarge)
    async def _too_large(request: Request, exc: PayloadTooLarge) -> JSONResponse:
        return _error(413, "File too large")

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
        return _error(404, "Item not found")

    @app.exception_handler(Expired)
    async def _expired(request: Request, exc: Expired) -> JSONResponse:
        return _error(410, "Item expired")

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, str(exc) or "Database error")


def _install_frontend(app: FastAPI, dist: Path) -> None:
    """Serve the built browser client with an index.html fallback for client-side routes."""
    index_path = dist / "index.html"

    @app.get("/{full_path:path}", include_in_schema=False)
    async def frontend(request: Request, full_path: str) -> Response:
        if request.url.path.startswith("/api"):
            return _error(404, "API endpoint not found")

        if full_path:
            try:
                asset = safe_join(dist, full_path)
            except ValueError:
                asset = None
            if asset is not None and asset.is_file() and asset != index_path:
                return FileResponse(asset)

        if not index_path.is_file():
            return Response("Index file not found", status_code=404, media_type="text/plain")

        response = FileResponse(index_path, media_type="text/html", headers={"Cache-Control": "no-store"})
        # Browser sessions authenticate through this cookie.
        response.set_cookie(
            AUTH_COOKIE_NAME,
            request.app.state.api_key,
            httponly=True,
            samesite="strict",
            max_age=AUTH_COOKIE_MAX_AGE_SECONDS,
        )
        return response


def create_app(
    store: Optional[ItemStore] = None,
    sweeper: Optional[ExpirySweeper] = None,
    api_key: str = API_KEY,
    base_url: str = BASE_URL,
    frontend_dist: Optional[Path] = FRONTEND_DIST,
) -> FastAPI:
    if store is None:
        store = ItemStore(DATABASE_URL, BlobStore(UPLOADS_ROOT, chunk_size=UPLOAD_CHUNK_BYTES))
    if sweeper is None:
        sweeper = ExpirySweeper(store, CLEANUP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        await run_in_threadpool(store.open)
        # Run a cleanup pass at startup, then start the periodic sweep.
        try:
            await asyncio.to_thread(sweeper.run_once)
        except ClipboardError:
            logger.exception("Startup cleanup failed")

        task = asyncio.create_task(sweeper.run_forever())
        app.state._cleanup_task = task
        logger.info("API Key configured: %s", api_key != DEFAULT_API_KEY)
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            store.close()

    app = FastAPI(lifespan=lifespan)
    app.state.store = store
    app.state.sweeper = sweeper
    app.state.api_key = api_key
    app.state.base_url = base_url.rstrip("/")
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response

    _install_error_handlers(app)
    app.include_router(router)

    # Note: API routes above, frontend catch-all last.
    if frontend_dist is not None and Path(frontend_dist).is_dir():
        _install_frontend(app, Path(frontend_dist).resolve())
    else:
        logger.info("Frontend build not found at %s; serving the API only.", frontend_dist)

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    configure_logging()
    port = int(os.environ.get("PORT", str(PORT)))
    uvicorn.run("server:app", host=HOST, port=port, reload=False)
