from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from typing import List, Optional
import asyncio
import contextlib
import logging

import config
from database import get_db, init_db
import models
import schemas
from auth.dependencies import get_current_member
from errors import (
    TaskTreeError,
    NotFound,
    StoreError,
    InvalidField,
    TaskNotActive,
    PartialPropagation,
    OptimizerError,
    DispatchError,
)
from task_store import TaskStore
from propagation import PropagationEngine
from leaf_classifier import LeafClassifier
from task_service import create_task as create_task_record, edit_task_fields
from scheduling import OptimizerClient, schedule_tasks
from notifications import PushDispatcher, run_due_check, due_check_loop
from time_utils import to_utc_datetime

# Configure logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Tree API",
    description="Shared hierarchical tasks with membership and completion propagation",
    version="1.0.0"
)

# CORS middleware for the mobile/web frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Startup / Shutdown ==============

@app.on_event("startup")
async def startup():
    """Create missing tables and start the due reminder loop."""
    init_db()

    if config.DUE_CHECK_INTERVAL_SECONDS > 0:
        app.state.due_check_task = asyncio.create_task(due_check_loop(config.DUE_CHECK_INTERVAL_SECONDS))
    else:
        app.state.due_check_task = None
        logger.info("Due reminder loop disabled (DUE_CHECK_INTERVAL_SECONDS=0)")


@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "due_check_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Due reminder loop stopped")


# ============== Dependencies ==============

def get_store(db: Session = Depends(get_db)) -> TaskStore:
    return TaskStore(db)


def get_optimizer() -> OptimizerClient:
    return OptimizerClient()


def get_dispatcher() -> PushDispatcher:
    return PushDispatcher()


# ============== Helper Functions ==============

def http_error(e: TaskTreeError) -> HTTPException:
    """Map a domain error onto the HTTP status the API documents for it."""
    if isinstance(e, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, TaskNotActive):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, InvalidField):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, PartialPropagation):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())
    if isinstance(e, StoreError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, (OptimizerError, DispatchError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    logger.error(f"Unmapped domain error: {e!r}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def task_response(task: models.Task, is_leaf: Optional[bool] = None) -> schemas.Task:
    response = schemas.Task.model_validate(task)
    if is_leaf is not None:
        response.is_leaf = is_leaf
    return response


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Members ==============

@app.post("/api/members", response_model=schemas.Member, status_code=status.HTTP_201_CREATED)
def create_member(member: schemas.MemberCreate, db: Session = Depends(get_db)):
    """Register a member (identity comes from the upstream auth provider)."""
    logger.info(f"Registering member {member.id}")

    existing = db.query(models.Member).filter(models.Member.id == member.id).first()
    if existing:
        logger.info(f"Member {member.id} already registered")
        raise HTTPException(status_code=400, detail="Member already registered")

    db_member = models.Member(**member.model_dump())
    db.add(db_member)
    db.commit()
    db.refresh(db_member)
    return db_member


@app.get("/api/members/{member_id}", response_model=schemas.Member)
def get_member(member_id: str, db: Session = Depends(get_db)):
    member = db.query(models.Member).filter(models.Member.id == member_id).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member


@app.put("/api/members/{member_id}/push-token", response_model=schemas.Member)
def register_push_token(
    member_id: str,
    body: schemas.PushTokenUpdate,
    current_member: str = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    """Store the device push token reminders are delivered to."""
    logger.info(f"Member {current_member} registering push token for {member_id}")

    if current_member != member_id:
        raise HTTPException(status_code=403, detail="Members can only register their own push token")

    member = db.query(models.Member).filter(models.Member.id == member_id).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")

    member.push_token = body.token
    db.commit()
    db.refresh(member)
    return member


# ============== Tasks ==============

@app.post("/api/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Create a task owned by the acting member, optionally as a subtask."""
    logger.info(f"Member {current_member} creating task: {task.name} (parent={task.parent})")
    try:
        db_task = create_task_record(store, current_member, task)
    except TaskTreeError as e:
        raise http_error(e) from e
    return task_response(db_task, is_leaf=True)


@app.get("/api/tasks/root", response_model=schemas.TaskList)
def list_root_tasks(
    finished: bool = Query(False, description="Return root tasks the member already finished"),
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Active root tasks the acting member takes part in."""
    logger.debug(f"Member {current_member} listing root tasks (finished={finished})")
    try:
        selection = LeafClassifier(store).root_tasks_for(current_member, finished=finished)
    except TaskTreeError as e:
        raise http_error(e) from e
    return schemas.TaskList(
        tasks=[task_response(t) for t in selection.tasks],
        warnings=selection.warnings
    )


@app.get("/api/tasks/leaf", response_model=schemas.TaskList)
def list_leaf_tasks(
    finished: bool = Query(False, description="Return leaf tasks the member already finished"),
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """
    Actionable tasks: active tasks that are leaves for the acting member.
    Warnings list child reads that failed while deciding leaf-ness.
    """
    logger.debug(f"Member {current_member} listing leaf tasks (finished={finished})")
    try:
        selection = LeafClassifier(store).leaf_tasks_for(current_member, finished=finished)
    except TaskTreeError as e:
        raise http_error(e) from e
    return schemas.TaskList(
        tasks=[task_response(t, is_leaf=True) for t in selection.tasks],
        warnings=selection.warnings
    )


@app.get("/api/tasks/{task_id}", response_model=schemas.Task)
def get_task(
    task_id: str,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Get task by ID, with leaf-ness computed for the acting member."""
    logger.debug(f"Member {current_member} requesting task {task_id}")
    try:
        task = store.get(task_id)
        check = LeafClassifier(store).is_leaf_for(task, current_member)
    except TaskTreeError as e:
        raise http_error(e) from e

    for warning in check.warnings:
        logger.warning(f"Leaf check for task {task_id} is partial: {warning}")
    return task_response(task, is_leaf=check.is_leaf)


@app.get("/api/tasks/{task_id}/children", response_model=schemas.TaskList)
def get_task_children(
    task_id: str,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Active children of a task, in insertion order."""
    logger.debug(f"Member {current_member} fetching children of task {task_id}")
    try:
        task = store.get(task_id)
    except TaskTreeError as e:
        raise http_error(e) from e

    result = schemas.TaskList()
    for child_id in task.children or []:
        try:
            child = store.get(child_id)
        except (NotFound, StoreError) as e:
            logger.warning(f"Could not load child {child_id} of task {task_id}: {e}")
            result.warnings.append(str(e))
            continue
        if child.is_active:
            result.tasks.append(task_response(child))

    logger.debug(f"Task {task_id} has {len(result.tasks)} active child task(s)")
    return result


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: str,
    task_update: schemas.TaskUpdate,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Edit name, detail, due_at, penalty or expected_duration of one task."""
    logger.info(f"Member {current_member} updating task {task_id}")
    updates = task_update.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        task = edit_task_fields(store, task_id, updates)
    except TaskTreeError as e:
        raise http_error(e) from e
    return task_response(task)


@app.post("/api/tasks/{task_id}/complete", response_model=schemas.PropagationResult)
def complete_task(
    task_id: str,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Mark the task and all of its descendants finished for the acting member."""
    try:
        report = PropagationEngine(store).complete_for_member(task_id, current_member)
    except TaskTreeError as e:
        raise http_error(e) from e
    return report


@app.post("/api/tasks/{task_id}/uncomplete", response_model=schemas.PropagationResult)
def uncomplete_task(
    task_id: str,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Mark the task (and its descendants) unfinished again for the acting member."""
    try:
        report = PropagationEngine(store).uncomplete_for_member(task_id, current_member)
    except TaskTreeError as e:
        raise http_error(e) from e
    return report


@app.post("/api/tasks/{task_id}/join", response_model=schemas.PropagationResult)
def join_task(
    task_id: str,
    body: Optional[schemas.JoinRequest] = None,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Add a member (default: the acting member) to the task and all of its ancestors."""
    member_id = (body.member_id or "").strip() if body else ""
    if not member_id:
        member_id = current_member
    logger.info(f"Member {current_member} joining {member_id} to task {task_id}")
    try:
        report = PropagationEngine(store).join_ancestors(task_id, member_id)
    except TaskTreeError as e:
        raise http_error(e) from e
    return report


@app.delete("/api/tasks/{task_id}", response_model=schemas.PropagationResult)
def delete_task(
    task_id: str,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """Delete the task and its whole subtree. Records are kept in Deleted state."""
    logger.debug(f"Member {current_member} deleting task {task_id}")
    try:
        report = PropagationEngine(store).delete_cascade(task_id)
    except TaskTreeError as e:
        raise http_error(e) from e

    logger.info(f"Task {task_id} deleted by member {current_member}")
    return report


@app.post("/api/propagation/resume", response_model=schemas.PropagationResult)
def resume_propagation(
    body: schemas.ResumeRequest,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store)
):
    """
    Continue a complete/uncomplete/delete/join walk that stopped part-way.
    Completion walks act for the acting member only.
    """
    member_id = current_member
    if body.operation == "join" and (body.member_id or "").strip():
        member_id = body.member_id.strip()
    elif body.operation == "delete":
        member_id = None

    logger.info(f"Member {current_member} resuming {body.operation} of task {body.task_id} at {len(body.pending)} node(s)")
    error = PartialPropagation(
        operation=body.operation,
        task_id=body.task_id,
        stopped_at=body.pending[0],
        last_success=None,
        visited=[],
        member_id=member_id,
        pending=body.pending,
    )
    try:
        report = PropagationEngine(store).resume(error)
    except TaskTreeError as e:
        raise http_error(e) from e
    return report


# ============== Meetings ==============

@app.post("/api/meetings", response_model=schemas.Meeting, status_code=status.HTTP_201_CREATED)
def create_meeting(
    meeting: schemas.MeetingCreate,
    current_member: str = Depends(get_current_member),
    db: Session = Depends(get_db),
    store: TaskStore = Depends(get_store)
):
    """Schedule a meeting for an active task."""
    logger.info(f"Member {current_member} creating meeting for task {meeting.task_id}")
    try:
        task = store.get(meeting.task_id)
    except TaskTreeError as e:
        raise http_error(e) from e
    if not task.is_active:
        raise http_error(TaskNotActive(task.id))

    data = meeting.model_dump()
    data["start_time"] = to_utc_datetime(meeting.start_time, "start_time")
    db_meeting = models.Meeting(id=models.new_id(), **data)
    db.add(db_meeting)
    db.commit()
    db.refresh(db_meeting)
    logger.info(f"Meeting created: id={db_meeting.id}")
    return db_meeting


@app.get("/api/meetings/{meeting_id}", response_model=schemas.Meeting)
def get_meeting(
    meeting_id: str,
    current_member: str = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    meeting = db.query(models.Meeting).filter(models.Meeting.id == meeting_id).first()
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return meeting


@app.get("/api/tasks/{task_id}/meetings", response_model=List[schemas.Meeting])
def list_task_meetings(
    task_id: str,
    current_member: str = Depends(get_current_member),
    db: Session = Depends(get_db),
    store: TaskStore = Depends(get_store)
):
    """Meetings attached to a task, earliest first."""
    try:
        store.get(task_id)
    except TaskTreeError as e:
        raise http_error(e) from e

    meetings = db.query(models.Meeting)\
        .filter(models.Meeting.task_id == task_id)\
        .order_by(models.Meeting.start_time)\
        .all()
    logger.debug(f"Task {task_id} has {len(meetings)} meeting(s)")
    return meetings


@app.delete("/api/meetings/{meeting_id}")
def delete_meeting(
    meeting_id: str,
    current_member: str = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    meeting = db.query(models.Meeting).filter(models.Meeting.id == meeting_id).first()
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")

    db.delete(meeting)
    db.commit()
    logger.info(f"Meeting {meeting_id} deleted by member {current_member}")
    return {"message": "Meeting deleted"}


# ============== Scheduling ==============

@app.post("/api/schedule", response_model=schemas.ScheduleResponse)
def create_schedule(
    body: Optional[schemas.ScheduleCreate] = None,
    current_member: str = Depends(get_current_member),
    store: TaskStore = Depends(get_store),
    optimizer: OptimizerClient = Depends(get_optimizer)
):
    """Order the acting member's actionable tasks with the external optimizer."""
    algorithm_id = body.algorithm_id if body else 0
    logger.info(f"Member {current_member} requesting schedule (algorithm {algorithm_id})")
    try:
        selection = LeafClassifier(store).leaf_tasks_for(current_member)
        entries = schedule_tasks(selection.tasks, algorithm_id, client=optimizer)
    except TaskTreeError as e:
        raise http_error(e) from e
    return schemas.ScheduleResponse(entries=entries, warnings=selection.warnings)


# ============== Notifications ==============

@app.post("/api/notifications/test")
def send_test_notification(
    body: schemas.PushTestRequest,
    dispatcher: PushDispatcher = Depends(get_dispatcher)
):
    """Send a test push to the given device token."""
    logger.info("Received request to send test notification")
    try:
        result = dispatcher.send_test(body.token)
    except DispatchError as e:
        logger.error(f"Error sending test push notification: {e}")
        raise http_error(e) from e
    return {"success": True, "result": result}


@app.post("/api/notifications/due")
def send_due_notification(
    body: schemas.DueNotificationRequest,
    dispatcher: PushDispatcher = Depends(get_dispatcher)
):
    """Send one due reminder for a task to the given device token."""
    logger.info(f"Received request to send due notification for task '{body.task_name}'")
    token = (body.token or "").strip()
    if not token:
        raise HTTPException(status_code=400, detail="Missing push token")

    try:
        result = dispatcher.send_due_reminder(token, body.until_due, body.task_name)
    except DispatchError as e:
        logger.error(f"Error sending due push notification: {e}")
        raise http_error(e) from e
    return {"success": True, "result": result}


@app.post("/api/notifications/due-check", response_model=schemas.DueCheckResult)
def trigger_due_check(
    db: Session = Depends(get_db),
    dispatcher: PushDispatcher = Depends(get_dispatcher)
):
    """Run one due-reminder pass immediately."""
    try:
        return run_due_check(db, dispatcher)
    except TaskTreeError as e:
        raise http_error(e) from e
