from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Literal
from enum import Enum


class TaskState(str, Enum):
    active = "active"
    deleted = "deleted"


# Member schemas
class MemberBase(BaseModel):
    name: str
    push_token: Optional[str] = None


class MemberCreate(MemberBase):
    id: str = Field(..., min_length=1, max_length=64)


class Member(MemberBase):
    id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PushTokenUpdate(BaseModel):
    token: str = Field(..., min_length=1)


# Task schemas
class TaskBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    detail: str = ""
    due_at: datetime
    penalty: Optional[float] = Field(0.0, ge=0, description="Scheduler weight (must be >= 0)")
    expected_duration: Optional[float] = Field(None, gt=0, description="Effort estimate in seconds (must be > 0)")


class TaskCreate(TaskBase):
    parent: Optional[str] = None


class TaskUpdate(BaseModel):
    """
    Field edits. Unknown keys are kept so the edit layer can reject them
    explicitly instead of silently dropping them.
    """
    name: Optional[str] = None
    detail: Optional[str] = None
    due_at: Optional[datetime] = None
    penalty: Optional[float] = None
    expected_duration: Optional[float] = None

    class Config:
        extra = "allow"


class Task(TaskBase):
    id: str
    owner: str
    state: TaskState
    parent: Optional[str] = None
    children: List[str] = Field(default_factory=list)
    members: List[str] = Field(default_factory=list)
    unfinished_members: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    is_leaf: Optional[bool] = None  # Relative to the requesting member

    class Config:
        from_attributes = True


class TaskList(BaseModel):
    tasks: List[Task] = []
    warnings: List[str] = []


class JoinRequest(BaseModel):
    member_id: Optional[str] = None


class ResumeRequest(BaseModel):
    """Continue a walk from the ``pending`` list returned with a 503 partial-propagation error."""
    operation: Literal["complete", "uncomplete", "delete", "join"]
    task_id: str
    pending: List[str] = Field(..., min_length=1)
    member_id: Optional[str] = None


class PropagationResult(BaseModel):
    operation: str
    task_id: str
    member_id: Optional[str] = None
    visited: List[str] = []
    updated: List[str] = []
    skipped: List[str] = []

    class Config:
        from_attributes = True


# Meeting schemas
class MeetingBase(BaseModel):
    start_time: datetime
    duration: int = Field(..., gt=0, description="Duration in seconds")


class MeetingCreate(MeetingBase):
    task_id: str


class Meeting(MeetingBase):
    id: str
    task_id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Schedule schemas
class ScheduleRequest(BaseModel):
    """Payload sent to the external optimizer. Index i of every list describes the same task."""
    expected_duration: List[float] = Field(default_factory=list, alias="expectedDuration")
    penalty: List[float] = Field(default_factory=list)
    seconds_until_due: List[float] = Field(default_factory=list, alias="secondsUntilDue")
    task_ids: List[str] = Field(default_factory=list, alias="taskIds")
    algorithm_id: int = Field(0, alias="algorithmId")

    class Config:
        populate_by_name = True


class ScheduleCreate(BaseModel):
    algorithm_id: int = 0


class ScheduleEntry(BaseModel):
    task_id: str
    start_offset: float
    duration: float


class ScheduleResponse(BaseModel):
    entries: List[ScheduleEntry] = []
    warnings: List[str] = []


# Notification schemas
class PushTestRequest(BaseModel):
    token: str = Field(..., min_length=1)


class DueNotificationRequest(BaseModel):
    token: Optional[str] = None  # Missing token is answered with 400, not a validation error
    until_due: float = Field(..., gt=0, description="Seconds until the task is due")
    task_name: str


class DueCheckResult(BaseModel):
    checked: int
    reminders_sent: int
    failures: int
    skipped: int
    windows: Dict[str, int] = {}
