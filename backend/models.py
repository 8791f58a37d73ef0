import time
import uuid
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_EVENT_COLOR = "#3b82f6"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_subtasks(items: Any) -> list[dict]:
    """Turn ["Buy milk", {"title": "Call"}] into subtask records with fresh ids."""
    if not isinstance(items, list):
        return []
    subtasks = []
    for item in items:
        title = item.get("title") if isinstance(item, dict) else item
        if isinstance(title, str) and title.strip():
            subtasks.append({"id": new_id(), "title": title.strip(), "completed": False})
    return subtasks


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: int = Field(default_factory=now_ms)  # epoch milliseconds


# Entity drafts: the shape the assistant's create commands are normalized into.
# Field names are camelCase on the wire (dueDate, startTime, ...) and unknown fields
# the model adds are kept as-is.

class _Draft(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(default_factory=new_id)
    title: str

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Subtask(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    completed: bool = False


class TaskDraft(_Draft):
    completed: bool = False
    urgent: bool = False
    important: bool = False
    due_date: Optional[str] = None  # YYYY-MM-DD
    due_time: Optional[str] = None  # HH:MM, 24-hour
    estimated_time: Optional[int] = None  # minutes
    list_id: str = "inbox"
    tags: list[str] = []
    subtasks: list[Subtask] = []
    created_at: int = Field(default_factory=now_ms)

    @field_validator("subtasks", mode="before")
    @classmethod
    def _coerce_subtasks(cls, value: Any) -> list[dict]:
        return normalize_subtasks(value)

    @field_validator("estimated_time", mode="before")
    @classmethod
    def _whole_minutes(cls, value: Any) -> Any:
        return round(value) if isinstance(value, float) else value


class Recurrence(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    frequency: str = "weekly"
    days_of_week: list[int] = []  # 0=Sunday .. 6=Saturday
    end_date: Optional[str] = None


class EventDraft(_Draft):
    type: str = "other"  # appointment | class | meeting | other
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    color: str = DEFAULT_EVENT_COLOR
    recurring: Optional[Recurrence] = None
    created_at: int = Field(default_factory=now_ms)


class GoalDraft(_Draft):
    description: Optional[str] = None
    target_date: Optional[str] = None
    status: str = "not-started"  # not-started | in-progress | completed
    created_at: int = Field(default_factory=now_ms)


class NoteDraft(_Draft):
    title: str = "Untitled Note"
    content: str = ""
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        return value.strip() or "Untitled Note"


class EntitySnapshot(BaseModel):
    """The user's live data as the host application holds it at call time."""
    tasks: list[dict[str, Any]] = []
    events: list[dict[str, Any]] = []
    notes: list[dict[str, Any]] = []
    goals: list[dict[str, Any]] = []
    projects: list[dict[str, Any]] = []


class CommandKind(str, Enum):
    CREATE_TASKS = "create_tasks"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    DELETE_ALL_TASKS = "delete_all_tasks"
    DELETE_COMPLETED_TASKS = "delete_completed_tasks"
    CREATE_EVENTS = "create_events"
    UPDATE_EVENT = "update_event"
    DELETE_EVENT = "delete_event"
    CREATE_GOALS = "create_goals"
    UPDATE_GOAL = "update_goal"
    DELETE_GOAL = "delete_goal"
    CREATE_NOTE = "create_note"


class ActionCommand(BaseModel):
    kind: CommandKind
    marker: str
    payload: Any
    literal: str  # payload exactly as it appears in the response
    start: int  # offset of the marker in the response
    end: int  # offset just past the payload (or the closing delimiter)
    duplicate: bool = False  # a later instance of a marker already seen; redacted, not executed


class SideEffect(BaseModel):
    action: str
    entity_id: Optional[str] = None
    title: Optional[str] = None


class AssistantResult(BaseModel):
    display_text: str
    side_effects_applied: list[SideEffect] = []
    clarifications: list[str] = []


class ChatRequest(BaseModel):
    message: str
    current_page: str = "Dashboard"


class ChatResponse(BaseModel):
    response: str
    side_effects: list[SideEffect] = []
    messages: list[ChatMessage] = []


class SpeakRequest(BaseModel):
    text: str
    voice_id: Optional[str] = None
