# src/media_vault/server/main.py
import logging
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel

from media_vault import MediaClient, create_media_client
from media_vault.exceptions import (
    BackendError,
    CategoryProtectedError,
    ConflictError,
    MediaVaultError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


# --- тела запросов ---
class DeleteRequest(BaseModel):
    id: Optional[str] = None
    fileId: Optional[str] = None


class DeleteMultipleRequest(BaseModel):
    urls: List[str]


class SearchRequest(BaseModel):
    query: str = ""


class CreateCategoryRequest(BaseModel):
    name: str


class DeleteCategoryRequest(BaseModel):
    id: int


class UpdateSuffixRequest(BaseModel):
    url: str
    suffix: str


def _error_status(exc: Exception) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, CategoryProtectedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, BackendError):
        return status.HTTP_503_SERVICE_UNAVAILABLE if exc.transient else status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, ValueError):
        return status.HTTP_400_BAD_REQUEST
    # InitError, DatabaseError, ManifestError
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def get_client(request: Request) -> MediaClient:
    return request.app.state.client


ClientDep = Annotated[MediaClient, Depends(get_client)]


def create_app(client: Optional[MediaClient] = None) -> FastAPI:
    owns_client = client is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_client:
            await app.state.client.aclose()

    app = FastAPI(title="media-vault", lifespan=lifespan)
    app.state.client = client or create_media_client()

    @app.exception_handler(MediaVaultError)
    @app.exception_handler(ValueError)
    async def _handle_error(request: Request, exc: Exception):
        code = _error_status(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse({"status": 0, "msg": str(exc)}, status_code=code)

    # --- управление ---

    @app.get("/config")
    async def public_config(media: ClientDep):
        return JSONResponse(
            {"maxSizeMB": media.storage.max_size_mb},
            headers={"Cache-Control": "public, max-age=3600"},
        )

    @app.put("/upload")
    async def upload_raw(
        request: Request,
        media: ClientDep,
        filename: str = Query(...),
        storage_type: Optional[str] = Query(None),
        category: Optional[int] = Query(None),
    ):
        """Сырое тело запроса = содержимое файла."""
        content = await request.body()
        record = await media.upload_file(
            filename,
            content,
            storage_type=storage_type,
            category_id=category,
            content_type=request.headers.get("content-type"),
        )
        return {"status": 1, "msg": "uploaded", "url": record.url}

    @app.post("/upload")
    async def upload_form(
        media: ClientDep,
        file: UploadFile = File(...),
        storage_type: Optional[str] = Form(None),
        category: Optional[int] = Form(None),
    ):
        content = await file.read()
        record = await media.upload_file(
            file.filename or "file",
            content,
            storage_type=storage_type,
            category_id=category,
            content_type=file.content_type,
        )
        return {"status": 1, "msg": "uploaded", "url": record.url}

    @app.post("/delete")
    async def delete_file(payload: DeleteRequest, media: ClientDep):
        if not payload.id and not payload.fileId:
            raise ValueError("File identifier is missing")
        record = await media.lookup(payload.id) if payload.id else None
        if record is None and payload.fileId:
            record = await media.lookup(payload.fileId)
        if record is None:
            raise NotFoundError("File does not exist")
        await media.delete_file(record)
        return {"status": 1, "msg": "deleted"}

    @app.post("/delete-multiple")
    async def delete_multiple(payload: DeleteMultipleRequest, media: ClientDep):
        if not payload.urls:
            raise ValueError("URL list is empty")
        results = await media.delete_files(payload.urls)
        return {
            "status": 1,
            "msg": "batch delete finished",
            "results": {
                "success": len(results["success"]),
                "failed": len(results["failed"]),
                "details": results,
            },
        }

    @app.post("/search")
    async def search(payload: SearchRequest, media: ClientDep):
        files = await media.search_files(payload.query)
        return {"files": [f.model_dump(mode="json") for f in files]}

    @app.post("/create-category")
    async def create_category(payload: CreateCategoryRequest, media: ClientDep):
        category = await media.create_category(payload.name)
        return {"status": 1, "msg": "category created", "category": {"id": category.id, "name": category.name}}

    @app.post("/delete-category")
    async def delete_category(payload: DeleteCategoryRequest, media: ClientDep):
        category = await media.delete_category(payload.id)
        return {"status": 1, "msg": f"category '{category.name}' deleted, its files moved to the default category"}

    @app.post("/update-suffix")
    async def update_suffix(payload: UpdateSuffixRequest, media: ClientDep):
        new_url = await media.relocate(payload.url, payload.suffix)
        return {"status": 1, "msg": "suffix updated", "newUrl": new_url}

    # --- отдача файлов: должна идти последней ---

    @app.get("/{path:path}")
    async def serve_file(path: str, request: Request, media: ClientDep):
        result = await media.open_file(path, request.headers.get("range"))
        if result is None:
            return PlainTextResponse("File not found", status_code=status.HTTP_404_NOT_FOUND)
        if result.status == 416:
            return Response(status_code=result.status, headers=result.headers)
        return StreamingResponse(result.body, status_code=result.status, headers=result.headers)

    return app
