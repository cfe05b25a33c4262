"""
Assignment Engine - binds workers to Pending tasks.

Responsibilities:
- rank candidate workers for a task with the suitability scorer
- exclude workers that are unavailable for the task window or at the load cap
- commit the winning assignment atomically (task and worker version-checked)
- manual reassignment with the same exclusivity and load-cap rules

Concurrency: nothing is locked while scoring. The commit checks the versions
of the task and of the chosen worker, so two dispatchers racing for the same
task, or for the same worker's last free slot, cannot both win. The loser
re-reads and either reports the task as taken or re-ranks and tries again.
"""

import time
import logging
import threading
from typing import Callable, Optional

from common.config import ScoringConfig
from common.errors import (
    AssignmentCancelled,
    Conflict,
    InvalidState,
    LoadCapExceeded,
    TaskAlreadyAssigned,
)
from common.models import (
    AssignmentOutcome,
    AssignmentResult,
    ScoreBreakdown,
    Task,
    TaskStatus,
    Worker,
)
from common.store import EntityStore
from dispatcher.lifecycle import TaskLifecycleManager
from dispatcher.scoring import is_eligible, rank_candidates


logger = logging.getLogger(__name__)

DecisionLogger = Callable[[str, Task, Worker, list[ScoreBreakdown]], None]

RETRY_BACKOFF_SECONDS = 0.01


class AssignmentEngine:
    """Chooses and commits worker assignments."""

    def __init__(
        self,
        store: EntityStore,
        lifecycle: TaskLifecycleManager,
        config: ScoringConfig,
        max_attempts: int = 5,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.config = config
        self.max_attempts = max_attempts
        self.decision_logger = decision_logger

    def assign(self, task_id: str, cancel_event: Optional[threading.Event] = None) -> AssignmentResult:
        """
        Assign the best eligible worker to a Pending task.

        Args:
            task_id: Task to assign
            cancel_event: Set by the caller to abandon the assignment; honoured
                up to the moment the write starts

        Returns:
            AssignmentResult; outcome NO_ELIGIBLE_WORKER leaves state untouched

        Raises:
            NotFound: unknown task
            InvalidState: task is Completed or Cancelled
            TaskAlreadyAssigned: task is already In Progress (possibly because
                a concurrent call won)
            Conflict: lost the race for workers on every attempt
            AssignmentCancelled: cancel_event was set before the write
        """
        attempt = 0
        while True:
            attempt += 1
            task = self.store.get(Task, task_id)
            self._require_pending(task)

            ranking = [
                (worker, breakdown)
                for worker, breakdown in rank_candidates(self._candidates(), task, self.config)
                if is_eligible(worker, breakdown, self.config)
            ]
            if not ranking:
                logger.info(f"Task {task_id}: no eligible worker")
                return AssignmentResult(
                    task_id=task_id,
                    outcome=AssignmentOutcome.NO_ELIGIBLE_WORKER,
                    candidates_considered=0,
                    attempts=attempt,
                )

            worker, breakdown = ranking[0]
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Task {task_id}: assignment cancelled before commit")
                raise AssignmentCancelled(f"Assignment of task {task_id} was cancelled")

            try:
                self.store.commit(self.lifecycle.start_writes(task, worker))
            except Conflict as e:
                logger.warning(f"Task {task_id}: commit to worker {worker.id} lost a race (attempt {attempt}): {e}")
                if attempt >= self.max_attempts:
                    # report a concurrent winner in preference to a plain conflict
                    self._require_pending(self.store.get(Task, task_id))
                    raise Conflict(f"Could not assign task {task_id} after {attempt} attempts")
                time.sleep(RETRY_BACKOFF_SECONDS * attempt)
                continue

            logger.info(
                f"Task {task_id} assigned to worker {worker.id} "
                f"(score={breakdown.total}, candidates={len(ranking)}, attempt={attempt})"
            )
            self._record("assign", task, worker, [b for _, b in ranking])
            return AssignmentResult(
                task_id=task_id,
                outcome=AssignmentOutcome.ASSIGNED,
                worker_id=worker.id,
                score=breakdown.total,
                candidates_considered=len(ranking),
                attempts=attempt,
            )

    def reassign(self, task_id: str, worker_id: str) -> Task:
        """
        Manually put a task on a specific worker, bypassing scoring.

        A Pending task is started on the worker; an In Progress task is moved
        off its current worker. Old and new worker loads change in one commit.

        Raises:
            NotFound: unknown task or worker
            InvalidState: task is Completed or Cancelled
            LoadCapExceeded: the new worker is at the load cap
            Conflict: task or either worker changed concurrently
        """
        task = self.store.get(Task, task_id)
        if task.status.is_terminal:
            raise InvalidState(f"Task {task_id} is {task.status.value} and cannot be reassigned")

        worker = self.store.get(Worker, worker_id)
        if task.assigned_to == worker.id and task.status is TaskStatus.IN_PROGRESS:
            logger.info(f"Task {task_id} already assigned to worker {worker_id}")
            return task
        if worker.load >= self.config.load_cap:
            raise LoadCapExceeded(
                f"Worker {worker_id} already holds {worker.load} task(s) (cap {self.config.load_cap})"
            )

        if task.status is TaskStatus.PENDING:
            writes = self.lifecycle.start_writes(task, worker)
        else:
            previous = self.store.find(Worker, task.assigned_to)
            writes = self.lifecycle.handover_writes(task, previous, worker)

        (stored, *_) = self.store.commit(writes)
        logger.info(f"Task {task_id} reassigned from {task.assigned_to or 'nobody'} to worker {worker_id}")
        self._record("reassign", stored, worker, [])
        return stored

    def _candidates(self) -> list[Worker]:
        return self.store.select(Worker, lambda w: w.load < self.config.load_cap)

    def _require_pending(self, task: Task) -> None:
        if task.status is TaskStatus.PENDING:
            return
        if task.status is TaskStatus.IN_PROGRESS:
            who = f" to worker {task.assigned_to}" if task.assigned_to else ""
            raise TaskAlreadyAssigned(f"Task {task.id} is already assigned{who}")
        raise InvalidState(f"Task {task.id} is {task.status.value}, not Pending")

    def _record(self, action: str, task: Task, worker: Worker, ranking: list[ScoreBreakdown]) -> None:
        if self.decision_logger is None:
            return
        self.decision_logger(action, task, worker, ranking)
