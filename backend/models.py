from sqlalchemy import Column, String, Text, ForeignKey, DateTime, Enum, Float, Integer, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
import enum
import uuid
from database import Base

# List-valued columns: JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONList = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return uuid.uuid4().hex


class TaskState(str, enum.Enum):
    active = "active"
    deleted = "deleted"


class Member(Base):
    __tablename__ = "members"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    push_token = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True, index=True, default=new_id)
    owner = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    detail = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    due_at = Column(DateTime(timezone=True), nullable=False)
    state = Column(Enum(TaskState, name="task_state"), nullable=False, default=TaskState.active, index=True)

    # Tree edges are identifier references; the engine resolves them one node at a time
    parent = Column(String(64), ForeignKey("tasks.id"), nullable=True, index=True)
    children = Column(JSONList, nullable=False, default=list)

    members = Column(JSONList, nullable=False, default=list)
    unfinished_members = Column(JSONList, nullable=False, default=list)

    # Scheduler inputs
    penalty = Column(Float, nullable=True, default=0.0)
    expected_duration = Column(Float, nullable=True)

    meetings = relationship("Meeting", back_populates="task")

    @property
    def is_active(self) -> bool:
        return self.state == TaskState.active


class Meeting(Base):
    __tablename__ = "meetings"

    id = Column(String(64), primary_key=True, index=True, default=new_id)
    task_id = Column(String(64), ForeignKey("tasks.id"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    duration = Column(Integer, nullable=False)  # seconds
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    task = relationship("Task", back_populates="meetings")
