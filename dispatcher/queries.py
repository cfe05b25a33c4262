"""
Query/Reporting Facade - read-only views for API consumers.

Joins tasks with the display names of their worker, area and asset. Names
are resolved on every call; nothing is cached between calls.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from common.config import ScoringConfig
from common.models import (
    Area,
    Asset,
    AvailabilityStatus,
    Page,
    Recommendation,
    Task,
    TaskPriority,
    TaskStatus,
    TaskSummary,
    TaskView,
    Worker,
    WorkerView,
)
from common.store import EntityStore, validate_page
from dispatcher.scoring import is_eligible, rank_candidates


@dataclass
class TaskFilter:
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    area_id: Optional[str] = None
    start_from: Optional[date] = None
    end_to: Optional[date] = None
    search: Optional[str] = None

    def matches(self, task: Task, assignee_name: Optional[str] = None) -> bool:
        if self.status is not None and task.status is not self.status:
            return False
        if self.priority is not None and task.priority is not self.priority:
            return False
        if self.assigned_to is not None and task.assigned_to != self.assigned_to:
            return False
        if self.area_id is not None and task.area_id != self.area_id:
            return False
        # date range keeps tasks whose window overlaps it
        if self.start_from is not None and task.end_date < self.start_from:
            return False
        if self.end_to is not None and task.start_date > self.end_to:
            return False
        if self.search:
            needle = self.search.casefold()
            haystack = (task.title, task.description, assignee_name or "")
            if not any(needle in text.casefold() for text in haystack):
                return False
        return True


class QueryFacade:
    def __init__(self, store: EntityStore, config: ScoringConfig):
        self.store = store
        self.config = config

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def list_tasks(self, task_filter: Optional[TaskFilter] = None, limit: int = 50, offset: int = 0) -> Page:
        task_filter = task_filter or TaskFilter()
        validate_page(limit, offset)

        if task_filter.search:
            names = {w.id: w.name for w in self.store.select(Worker)}
            predicate = lambda t: task_filter.matches(t, names.get(t.assigned_to))
        else:
            predicate = task_filter.matches

        page = self.store.query(Task, predicate, limit=limit, offset=offset)
        return Page(items=self._views(page.items), total=page.total, limit=limit, offset=offset)

    def get_task(self, task_id: str) -> TaskView:
        return self._views([self.store.get(Task, task_id)])[0]

    def _views(self, tasks: Iterable[Task]) -> list[TaskView]:
        names: dict[tuple, Optional[str]] = {}

        def name_of(model, entity_id):
            if not entity_id:
                return None
            key = (model.kind, entity_id)
            if key not in names:
                record = self.store.find(model, entity_id)
                names[key] = record.name if record else None
            return names[key]

        return [
            TaskView(
                **task.model_dump(),
                assigned_to_name=name_of(Worker, task.assigned_to),
                area_name=name_of(Area, task.area_id),
                asset_name=name_of(Asset, task.asset_id),
            )
            for task in tasks
        ]

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def list_workers(
        self,
        expertise: Optional[list[str]] = None,
        availability: Optional[AvailabilityStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """Workers having every tag in `expertise` and the given availability status."""
        wanted = {tag.casefold() for tag in expertise or []}

        def predicate(worker: Worker) -> bool:
            if wanted and not wanted <= {tag.casefold() for tag in worker.expertise}:
                return False
            if availability is not None and worker.availability.status is not availability:
                return False
            return True

        page = self.store.query(Worker, predicate, limit=limit, offset=offset)
        return Page(
            items=[self._worker_view(w) for w in page.items],
            total=page.total,
            limit=limit,
            offset=offset,
        )

    def get_worker(self, worker_id: str) -> WorkerView:
        return self._worker_view(self.store.get(Worker, worker_id))

    def _worker_view(self, worker: Worker) -> WorkerView:
        return WorkerView(**worker.model_dump(), load_cap=self.config.load_cap)

    def recommend_workers(self, task_id: str, limit: int = 10) -> list[Recommendation]:
        """Ranked suitability of every worker for a task, ineligible ones flagged."""
        task = self.store.get(Task, task_id)
        ranking = rank_candidates(self.store.select(Worker), task, self.config)
        return [
            Recommendation(
                worker_id=worker.id,
                worker_name=worker.name,
                score=breakdown,
                current_load=worker.load,
                eligible=is_eligible(worker, breakdown, self.config),
            )
            for worker, breakdown in ranking[:limit]
        ]

    # ------------------------------------------------------------------
    # Reference data and reporting
    # ------------------------------------------------------------------

    def list_areas(self, limit: int = 50, offset: int = 0) -> Page:
        return self.store.query(Area, limit=limit, offset=offset)

    def list_assets(self, limit: int = 50, offset: int = 0) -> Page:
        return self.store.query(Asset, limit=limit, offset=offset)

    def summary(self) -> TaskSummary:
        tasks = self.store.select(Task)
        workers = self.store.select(Worker)
        by_status = {status.value: 0 for status in TaskStatus}
        by_priority = {priority.value: 0 for priority in TaskPriority}
        for task in tasks:
            by_status[task.status.value] += 1
            by_priority[task.priority.value] += 1
        return TaskSummary(
            tasks_by_status=by_status,
            tasks_by_priority=by_priority,
            total_tasks=len(tasks),
            total_workers=len(workers),
            available_workers=sum(
                1 for w in workers if w.availability.status is AvailabilityStatus.AVAILABLE
            ),
            workers_at_capacity=sum(1 for w in workers if w.load >= self.config.load_cap),
        )
