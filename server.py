from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from zipview_backend.config import ALLOWED_ARCHIVE_EXTS, Settings, load_settings
from zipview_backend.errors import InvalidArgument, WorkspaceError
from zipview_backend.workspace import WorkspaceStore


logger = logging.getLogger(__name__)

_COPY_CHUNK = 1024 * 1024


class RenameRequest(BaseModel):
    oldPath: Optional[str] = None
    newName: Optional[str] = None


def _spool_upload(file: UploadFile, settings: Settings) -> Path:
    """Copy the multipart body to a temp file, enforcing the upload size limit."""
    settings.temp_dir.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(suffix=".zip", dir=settings.temp_dir)
    tmp_path = Path(tmp_name)
    written = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = file.file.read(_COPY_CHUNK)
                if not chunk:
                    break
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    logger.warning("Rejected upload %r over %d bytes", file.filename, settings.max_upload_bytes)
                    raise HTTPException(status_code=413, detail="ZIP too large")
                out.write(chunk)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return tmp_path


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings.ensure_dirs()
    store = WorkspaceStore(settings)

    app = FastAPI()
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkspaceError)
    async def _workspace_error(request: Request, exc: WorkspaceError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.post("/api/upload")
    def upload(file: Optional[UploadFile] = File(None)) -> JSONResponse:
        """Upload a ZIP and extract it into a new workspace."""
        if file is None or not file.filename:
            raise InvalidArgument("No file uploaded")
        if Path(file.filename).suffix.lower() not in ALLOWED_ARCHIVE_EXTS:
            raise InvalidArgument("Only ZIP files are allowed")

        tmp_path = _spool_upload(file, settings)
        try:
            imported = store.import_archive(tmp_path, file.filename)
        finally:
            # The importer removes it on success; failed imports leave it behind.
            tmp_path.unlink(missing_ok=True)

        return JSONResponse(
            {
                "success": True,
                "folderName": imported.workspace_name,
                "fileTree": [node.to_dict() for node in imported.tree],
            }
        )

    @app.get("/api/files/list")
    def list_folders() -> JSONResponse:
        return JSONResponse({"folders": store.list_workspaces()})

    @app.get("/api/files/tree/{folder_name}")
    def folder_tree(folder_name: str) -> JSONResponse:
        tree = store.get_tree(folder_name)
        return JSONResponse({"fileTree": [node.to_dict() for node in tree]})

    @app.get("/api/files/content")
    def file_content(path: Optional[str] = None) -> JSONResponse:
        result = store.read_file(path)  # type: ignore[arg-type]
        return JSONResponse({"content": result.content, "path": result.path, "extension": result.extension})

    @app.post("/api/files/rename")
    def rename(payload: RenameRequest) -> JSONResponse:
        new_path = store.rename_entry(payload.oldPath or "", payload.newName or "")
        return JSONResponse({"success": True, "newPath": new_path})

    @app.delete("/api/files/delete")
    def delete(path: Optional[str] = None) -> JSONResponse:
        store.delete_entry(path)  # type: ignore[arg-type]
        return JSONResponse({"success": True})

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "3001"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
