from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile, status

from app.core.errors import (
    CacheUnavailableError,
    ImportFormatError,
    ImportNotFound,
    TodoServiceError,
)
from app.core.security import CurrentUserDep
from app.dependencies import get_batch_importer, get_staged_importer
from app.schemas import (
    ChunkRequest,
    ChunkResponse,
    ImportResult,
    ProgressResponse,
    StagedInitResponse,
)
from app.services.batch_import import BatchImporter
from app.services.staged_import import StagedImporter

router = APIRouter(prefix="/api/import", tags=["import"])


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, ImportFormatError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ImportNotFound):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Import not found or expired"
        )
    if isinstance(exc, TodoServiceError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
    )


_HANDLED = (ImportFormatError, ImportNotFound, TodoServiceError, CacheUnavailableError)


def _require_file(file: UploadFile | None) -> UploadFile:
    if file is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded"
        )
    return file


def _require_import_id(import_id: str | None) -> str:
    if not import_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="importId required"
        )
    return import_id


@router.post("", response_model=ImportResult)
async def import_todos(
    user: CurrentUserDep,
    file: UploadFile | None = None,
    importer: BatchImporter = Depends(get_batch_importer),
):
    """Import a JSON or CSV file in one request."""
    file = _require_file(file)
    content = await file.read()
    try:
        return await importer.run(user, content, file.filename, file.content_type)
    except _HANDLED as e:
        raise _to_http(e) from e


@router.post("/init", response_model=StagedInitResponse)
async def init_import(
    user: CurrentUserDep,
    file: UploadFile | None = None,
    importer: StagedImporter = Depends(get_staged_importer),
):
    """Parse a file into a staged import session; nothing is created yet."""
    file = _require_file(file)
    content = await file.read()
    try:
        return await importer.init(user, content, file.filename, file.content_type)
    except _HANDLED as e:
        raise _to_http(e) from e


@router.post("/parents", response_model=ChunkResponse)
async def import_parents_chunk(
    body: ChunkRequest,
    user: CurrentUserDep,
    importer: StagedImporter = Depends(get_staged_importer),
):
    import_id = _require_import_id(body.import_id)
    try:
        return await importer.process_parents(user, import_id, body.cursor, body.limit)
    except _HANDLED as e:
        raise _to_http(e) from e


@router.post("/children", response_model=ChunkResponse)
async def import_children_chunk(
    body: ChunkRequest,
    user: CurrentUserDep,
    importer: StagedImporter = Depends(get_staged_importer),
):
    import_id = _require_import_id(body.import_id)
    try:
        return await importer.process_children(user, import_id, body.cursor, body.limit)
    except _HANDLED as e:
        raise _to_http(e) from e


@router.get("/progress", response_model=ProgressResponse)
async def import_progress(
    user: CurrentUserDep,
    import_id: str | None = Query(default=None, alias="importId"),
    importer: StagedImporter = Depends(get_staged_importer),
):
    import_id = _require_import_id(import_id)
    try:
        return await importer.progress(user, import_id)
    except _HANDLED as e:
        raise _to_http(e) from e
