from enum import Enum
from typing import Any

from sqlmodel import Field, SQLModel


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TodoStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


class ImportStage(str, Enum):
    READY = "ready"
    PARENTS = "parents"
    CHILDREN = "children"


class ImportRecord(SQLModel):
    """A todo row after normalization, ready to be matched and created"""

    title: str = Field(min_length=1)
    description: str = ""
    status: TodoStatus = TodoStatus.TODO
    priority: Priority = Priority.MEDIUM
    category: str | None = None
    due_date: str | None = None
    tags: list[str] = Field(default_factory=list)
    completed: bool | None = None

    # bookkeeping carried over from the source system
    original_id: str | None = None
    original_created_at: str | None = None
    original_updated_at: str | None = None
    external_id: str | None = None
    external_source: str | None = None
    parent_original_id: str | None = None

    def to_create_payload(
        self,
        user_id: str,
        user_email: str | None = None,
        user_name: str | None = None,
        parent_id: str | None = None,
    ) -> dict[str, Any]:
        """Body for the todo service's create endpoint; empty values are omitted."""
        payload = {
            "title": self.title,
            "description": self.description or None,
            "userId": user_id,
            "userEmail": user_email,
            "userName": user_name,
            "priority": self.priority.value,
            "status": self.status.value,
            "dueDate": self.due_date,
            "category": self.category,
            "tags": self.tags,
            "parentId": parent_id,
            "externalId": self.external_id,
            "externalSource": self.external_source,
        }
        return {k: v for k, v in payload.items() if v is not None}


class ExistingTodo(SQLModel):
    """A todo already stored upstream, used as the duplicate-matching corpus"""

    id: str
    title: str = ""
    due_date: str | None = None
    category: str | None = None
    parent_id: str | None = None
    external_id: str | None = None
    external_source: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ExistingTodo":
        def opt(key: str) -> str | None:
            value = data.get(key)
            return None if value is None else str(value)

        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            due_date=opt("dueDate"),
            category=opt("category"),
            parent_id=opt("parentId"),
            external_id=opt("externalId"),
            external_source=opt("externalSource"),
        )


class StageProgress(SQLModel):
    total: int = 0
    processed: int = 0
    imported: int = 0
    skipped: int = 0


class ImportStatus(SQLModel):
    stage: ImportStage = ImportStage.READY
    parents: StageProgress = Field(default_factory=StageProgress)
    children: StageProgress = Field(default_factory=StageProgress)
