"""
Pydantic models for tasks, workers, areas, assets and API payloads.
"""

import uuid
from enum import Enum
from datetime import date, datetime, timezone
from typing import Annotated, Any, ClassVar, Generic, Optional, TypeVar

from pydantic import (
    BaseModel, BeforeValidator, ConfigDict, Field, computed_field, field_validator, model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_tags(tags) -> list[str]:
    """Strip, drop empties and de-duplicate skill tags (sorted for stable storage)."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return sorted({t.strip() for t in tags if t and t.strip()})


SkillTags = Annotated[list[str], BeforeValidator(_normalize_tags)]


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AvailabilityStatus(str, Enum):
    AVAILABLE = "Available"
    BUSY = "Busy"
    UNAVAILABLE = "Unavailable"


class Record(BaseModel):
    """Base for every stored entity. `version` drives optimistic concurrency."""
    kind: ClassVar[str] = "record"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Task(Record):
    """A unit of field work with an optional single assigned worker."""
    kind: ClassVar[str] = "task"

    title: str = Field(min_length=1)
    description: str = ""
    task_type: str = Field(min_length=1)
    task_subtype: Optional[str] = None
    required_skills: SkillTags = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[str] = None
    start_date: date
    end_date: date
    progress: int = Field(default=0, ge=0, le=100)
    area_id: Optional[str] = None
    asset_id: Optional[str] = None
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def check_invariants(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.status is TaskStatus.PENDING:
            if self.progress != 0:
                raise ValueError("a Pending task must have progress 0")
            if self.assigned_to is not None:
                raise ValueError("a Pending task cannot have an assigned worker")
        elif self.status is TaskStatus.IN_PROGRESS:
            if self.progress >= 100:
                raise ValueError("an In Progress task must have progress below 100")
            if self.assigned_to is None:
                raise ValueError("an In Progress task must have an assigned worker")
        elif self.status is TaskStatus.COMPLETED:
            if self.progress != 100:
                raise ValueError("a Completed task must have progress 100")
        elif self.progress == 100:
            raise ValueError("only a Completed task can have progress 100")
        return self


class AvailabilityWindow(BaseModel):
    """Inclusive date range in which a worker is available."""
    start: date
    end: date

    @model_validator(mode="after")
    def check_order(self):
        if self.end < self.start:
            raise ValueError("availability window end must not be before start")
        return self


class Availability(BaseModel):
    status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    windows: list[AvailabilityWindow] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_plain_status(cls, value):
        # "Available" / "Busy" strings are accepted as shorthand
        if isinstance(value, (str, AvailabilityStatus)):
            return {"status": value}
        return value


class Worker(Record):
    """A field operative. Suitability is computed per task, never stored here."""
    kind: ClassVar[str] = "worker"

    name: str = Field(min_length=1)
    expertise: SkillTags = Field(default_factory=list)
    availability: Availability = Field(default_factory=Availability)
    experience: float = Field(default=0.0, ge=0.0)
    current_tasks: list[str] = Field(default_factory=list)

    @field_validator("current_tasks")
    @classmethod
    def unique_tasks(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("current_tasks must not contain duplicates")
        return value

    @property
    def load(self) -> int:
        return len(self.current_tasks)


class Area(Record):
    kind: ClassVar[str] = "area"

    name: str = Field(min_length=1)
    description: str = ""


class Asset(Record):
    kind: ClassVar[str] = "asset"

    name: str = Field(min_length=1)
    type: Optional[str] = None
    status: str = "Available"


# ---------------------------------------------------------------------------
# Request payloads (camelCase on the wire)
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskCreate(CamelModel):
    """HTTP request to POST /tasks."""
    title: str = Field(min_length=1)
    description: str = ""
    task_type: str = Field(min_length=1)
    task_subtype: Optional[str] = None
    required_skills: list[str] = Field(default_factory=list)
    priority: TaskPriority
    start_date: date
    end_date: date
    area_id: Optional[str] = None
    asset_id: Optional[str] = None
    created_by: Optional[str] = "Supervisor"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Tree Pruning - Block A",
                "taskType": "Harvesting",
                "requiredSkills": ["Pruning"],
                "priority": "High",
                "startDate": "2024-11-29",
                "endDate": "2024-12-01",
            }
        }
    )


class TaskUpdate(CamelModel):
    """HTTP request to PATCH /tasks/{id}. Only fields that are sent are applied."""
    status: Optional[TaskStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    task_type: Optional[str] = Field(default=None, min_length=1)
    task_subtype: Optional[str] = None
    required_skills: Optional[list[str]] = None
    priority: Optional[TaskPriority] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    area_id: Optional[str] = None
    asset_id: Optional[str] = None

    def edits(self) -> dict:
        """Descriptive fields that were explicitly sent (status/progress excluded)."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name not in ("status", "progress")
        }


class ReassignRequest(CamelModel):
    worker_id: str = Field(min_length=1)


class WorkerCreate(CamelModel):
    name: str = Field(min_length=1)
    expertise: list[str] = Field(default_factory=list)
    availability: Availability = Field(default_factory=Availability)
    experience: float = Field(default=0.0, ge=0.0)


class WorkerUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    expertise: Optional[list[str]] = None
    availability: Optional[Availability] = None
    experience: Optional[float] = Field(default=None, ge=0.0)


class AreaCreate(CamelModel):
    name: str = Field(min_length=1)
    description: str = ""


class AreaUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


class AssetCreate(CamelModel):
    name: str = Field(min_length=1)
    type: Optional[str] = None
    status: str = "Available"


class AssetUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[str] = None
    status: Optional[str] = Field(default=None, min_length=1)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class TaskView(Task):
    """Task joined with display names of its worker, area and asset."""
    assigned_to_name: Optional[str] = None
    area_name: Optional[str] = None
    asset_name: Optional[str] = None


class WorkerView(Worker):
    load_cap: int = 0

    @computed_field
    @property
    def current_load(self) -> int:
        return len(self.current_tasks)

    @computed_field
    @property
    def capacity_remaining(self) -> int:
        return max(0, self.load_cap - len(self.current_tasks))


class ScoreBreakdown(BaseModel):
    """Suitability of one worker for one task, with each weighted component."""
    worker_id: str
    task_id: str
    expertise: float
    availability: float
    load: float
    experience: float
    total: float


class Recommendation(BaseModel):
    worker_id: str
    worker_name: str
    score: ScoreBreakdown
    current_load: int
    eligible: bool


class AssignmentOutcome(str, Enum):
    ASSIGNED = "assigned"
    NO_ELIGIBLE_WORKER = "no_eligible_worker"


class AssignmentResult(BaseModel):
    task_id: str
    outcome: AssignmentOutcome
    worker_id: Optional[str] = None
    score: Optional[float] = None
    candidates_considered: int = 0
    attempts: int = 1

    @property
    def assigned(self) -> bool:
        return self.outcome is AssignmentOutcome.ASSIGNED


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int


class ApiResponse(BaseModel):
    """Response envelope shared by every endpoint."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None
    pagination: Optional[Pagination] = None


class TaskSummary(BaseModel):
    tasks_by_status: dict[str, int]
    tasks_by_priority: dict[str, int]
    total_tasks: int
    total_workers: int
    available_workers: int
    workers_at_capacity: int
