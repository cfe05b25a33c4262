"""
Task Lifecycle Manager.

Owns the task status state machine:

    Pending --assign--> In Progress --progress 100--> Completed
       |                    |
       +------cancel--------+--------> Cancelled

Completed and Cancelled are terminal. Pending -> In Progress only happens
through the assignment engine, which asks this module for the write set.
Every transition is a single version-checked commit covering the task and
the worker whose load changes with it.
"""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from common.errors import InvalidState, InvalidTransition, ValidationError
from common.models import Area, Asset, Task, TaskCreate, TaskStatus, TaskUpdate, Worker
from common.store import EntityStore, Write, apply_patch, put


logger = logging.getLogger(__name__)

MAX_OPEN_PROGRESS = 99

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

_missing = set(TaskStatus) - set(ALLOWED_TRANSITIONS)
if _missing:
    raise RuntimeError(f"Transition table does not cover statuses: {sorted(s.value for s in _missing)}")


def with_task(worker: Worker, task_id: str) -> Worker:
    """Copy of `worker` holding one more task."""
    return worker.model_copy(update={"current_tasks": [*worker.current_tasks, task_id]})


def without_task(worker: Worker, task_id: str) -> Worker:
    """Copy of `worker` with `task_id` released."""
    return worker.model_copy(
        update={"current_tasks": [t for t in worker.current_tasks if t != task_id]}
    )


class TaskLifecycleManager:
    """Validates and applies every task state change."""

    def __init__(self, store: EntityStore):
        self.store = store

    # ------------------------------------------------------------------
    # Creation / deletion
    # ------------------------------------------------------------------

    def create_task(self, payload: TaskCreate) -> Task:
        self._check_references(payload.area_id, payload.asset_id)
        try:
            task = Task(**payload.model_dump())
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid task: {e}")
        task = self.store.create(task)
        logger.info(f"Task {task.id} created ({task.title!r}, priority={task.priority.value})")
        return task

    def delete_task(self, task_id: str) -> None:
        """Remove a task; an In Progress task gives its worker's slot back in the same commit."""
        task = self.store.get(Task, task_id)
        writes = [Write(Task, task.id, task.version, None)]
        writes.extend(self._release_writes(task))
        self.store.commit(writes)
        logger.info(f"Task {task_id} deleted (was {task.status.value})")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """
        Apply a status/progress change and/or descriptive edits.

        Raises:
            InvalidState: the task is Completed or Cancelled
            InvalidTransition: the requested change breaks a lifecycle rule
            Conflict: the task or its worker changed concurrently
        """
        task = self.store.get(Task, task_id)
        if task.status.is_terminal:
            raise InvalidState(f"Task {task_id} is {task.status.value} and can no longer change")

        target = update.status or task.status
        if target not in ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransition(f"Cannot move task from {task.status.value} to {target.value}")
        if task.status is TaskStatus.PENDING and target is TaskStatus.IN_PROGRESS:
            raise InvalidTransition("A Pending task starts only through assignment")

        patch = update.edits()
        if "area_id" in patch or "asset_id" in patch:
            self._check_references(patch.get("area_id"), patch.get("asset_id"))
        release = False

        if target is TaskStatus.PENDING:
            if update.progress not in (None, 0):
                raise InvalidTransition("A Pending task cannot make progress")

        elif target is TaskStatus.IN_PROGRESS:
            if update.progress is not None:
                progress = min(update.progress, MAX_OPEN_PROGRESS)
                if progress < task.progress:
                    raise InvalidTransition(
                        f"Progress cannot decrease ({task.progress} -> {update.progress})"
                    )
                patch["progress"] = progress

        elif target is TaskStatus.COMPLETED:
            if update.progress != 100:
                raise InvalidTransition("Completing a task requires progress 100 in the same update")
            patch.update(status=TaskStatus.COMPLETED, progress=100)
            release = True

        elif target is TaskStatus.CANCELLED:
            if update.progress is not None and update.progress != task.progress:
                raise InvalidTransition("Progress is frozen when a task is cancelled")
            patch["status"] = TaskStatus.CANCELLED
            release = True

        if not patch:
            return task

        updated = apply_patch(task, patch)
        writes = [put(updated)]
        if release:
            writes.extend(self._release_writes(task))

        (stored, *_) = self.store.commit(writes)
        if stored.status is not task.status:
            logger.info(f"Task {task_id}: {task.status.value} -> {stored.status.value}")
        return stored

    def start_writes(self, task: Task, worker: Worker) -> list[Write]:
        """
        Write set for Pending -> In Progress: the task gets the worker and the
        worker gets the task. Both records are version-checked on commit.
        """
        if task.status is not TaskStatus.PENDING:
            raise InvalidState(f"Task {task.id} is {task.status.value}, not Pending")
        started = apply_patch(task, {
            "status": TaskStatus.IN_PROGRESS,
            "assigned_to": worker.id,
            "progress": 0,
        })
        return [put(started), put(with_task(worker, task.id))]

    def handover_writes(self, task: Task, old_worker: Optional[Worker], new_worker: Worker) -> list[Write]:
        """Write set for moving an In Progress task from one worker to another."""
        if task.status is not TaskStatus.IN_PROGRESS:
            raise InvalidState(f"Task {task.id} is {task.status.value}, not In Progress")
        moved = apply_patch(task, {"assigned_to": new_worker.id})
        writes = [put(moved), put(with_task(new_worker, task.id))]
        if old_worker is not None:
            writes.append(put(without_task(old_worker, task.id)))
        return writes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _release_writes(self, task: Task) -> list[Write]:
        if task.status is not TaskStatus.IN_PROGRESS or not task.assigned_to:
            return []
        worker = self.store.find(Worker, task.assigned_to)
        if worker is None or task.id not in worker.current_tasks:
            logger.warning(f"Task {task.id}: worker {task.assigned_to} holds no slot to release")
            return []
        return [put(without_task(worker, task.id))]

    def _check_references(self, area_id: Optional[str], asset_id: Optional[str]) -> None:
        if area_id and self.store.find(Area, area_id) is None:
            raise ValidationError(f"Unknown area {area_id}")
        if asset_id and self.store.find(Asset, asset_id) is None:
            raise ValidationError(f"Unknown asset {asset_id}")
