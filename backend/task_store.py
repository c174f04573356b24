"""
Key-value access to task records.

The propagation engine and the classifiers only ever talk to tasks through
this class: one ``get`` and one ``put`` per node visit, each committed on its
own. There are no multi-node transactions.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import NotFound, StoreError

logger = logging.getLogger(__name__)


class TaskStore:
    """SQLAlchemy-backed task store bound to a single session."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, task_id: str) -> models.Task:
        """
        Fetch one task by identifier.

        Raises:
            NotFound: if no task has this identifier
            StoreError: if the database read fails
        """
        try:
            task = self.db.query(models.Task).filter(models.Task.id == task_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Store read failed for task {task_id}: {e}")
            self.db.rollback()
            raise StoreError(f"Failed to read task {task_id}", task_id=task_id) from e

        if task is None:
            raise NotFound("Task", task_id)
        return task

    def put(self, task: models.Task) -> models.Task:
        """
        Persist one task record and commit immediately.

        Raises:
            StoreError: if the write fails (the session is rolled back)
        """
        try:
            self.db.add(task)
            self.db.commit()
            self.db.refresh(task)
        except SQLAlchemyError as e:
            logger.error(f"Store write failed for task {task.id}: {e}")
            self.db.rollback()
            raise StoreError(f"Failed to write task {task.id}", task_id=task.id) from e

        logger.debug(f"Stored task {task.id}")
        return task

    def query(self, *criteria, order_by: Optional[list] = None) -> List[models.Task]:
        """
        Return every task matching the given SQLAlchemy filter expressions.

        Membership filters over the JSON list columns are applied by callers
        in Python; only scalar columns are filtered here.
        """
        try:
            query = self.db.query(models.Task).filter(*criteria)
            for clause in order_by or [models.Task.created_at, models.Task.id]:
                query = query.order_by(clause)
            return query.all()
        except SQLAlchemyError as e:
            logger.error(f"Store query failed: {e}")
            self.db.rollback()
            raise StoreError("Failed to query tasks") from e
