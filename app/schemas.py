"""Request and response bodies of the import API (camelCase on the wire)."""

from pydantic import BaseModel, ConfigDict, Field

from app.models import ImportStage, StageProgress


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ImportResult(_WireModel):
    success: bool = True
    imported_count: int = Field(alias="importedCount")
    skipped_count: int = Field(alias="skippedCount")
    total_count: int = Field(alias="totalCount")
    message: str


class StagedInitResponse(_WireModel):
    import_id: str = Field(alias="importId")
    total: int
    parents: int
    children: int


class ChunkRequest(_WireModel):
    import_id: str | None = Field(default=None, alias="importId")
    cursor: int | None = None
    limit: int | None = None


class ChunkResponse(_WireModel):
    next_cursor: int = Field(alias="nextCursor")
    done: bool
    imported: int
    skipped: int


class ProgressResponse(_WireModel):
    import_id: str = Field(alias="importId")
    stage: ImportStage
    parents: StageProgress
    children: StageProgress
