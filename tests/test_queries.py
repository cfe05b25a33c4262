"""
Query/Reporting facade tests.

Run with:
    pytest tests/test_queries.py -v
"""

import pytest
from datetime import date

from common.errors import NotFound
from common.models import Asset, AvailabilityStatus, Task, TaskStatus, TaskUpdate, WorkerUpdate
from dispatcher.queries import TaskFilter


@pytest.fixture
def board(engine, lifecycle, store, make_worker, make_task, area):
    """Three tasks: one In Progress on Ahmad, one Pending, one Cancelled."""
    ahmad = make_worker(name="Ahmad", expertise=["Pruning"])
    pruning = make_task(title="Prune apple trees", required_skills=["Pruning"], priority="High", area_id=area.id)
    engine.assign(pruning.id)
    spraying = make_task(
        title="Spray Block B",
        description="Weekly pest control",
        start_date=date(2024, 12, 10),
        end_date=date(2024, 12, 12),
    )
    cancelled = make_task(title="Old request", priority="Low")
    lifecycle.update_task(cancelled.id, TaskUpdate(status=TaskStatus.CANCELLED))
    return {"worker": ahmad, "pruning": pruning, "spraying": spraying, "cancelled": cancelled}


# ============================================================================
# Task Views
# ============================================================================

class TestListTasks:
    """Tests for filtered task listing."""

    def test_unfiltered(self, queries, board):
        page = queries.list_tasks()

        assert page.total == 3
        assert {t.title for t in page.items} == {"Prune apple trees", "Spray Block B", "Old request"}

    def test_filter_by_status(self, queries, board):
        page = queries.list_tasks(TaskFilter(status=TaskStatus.IN_PROGRESS))

        assert [t.id for t in page.items] == [board["pruning"].id]

    def test_filter_by_assignee_and_area(self, queries, board, area):
        by_worker = queries.list_tasks(TaskFilter(assigned_to=board["worker"].id))
        by_area = queries.list_tasks(TaskFilter(area_id=area.id))

        assert by_worker.total == 1
        assert by_area.items[0].id == board["pruning"].id

    def test_date_range_matches_overlap(self, queries, board):
        """Tasks whose window overlaps the requested range are returned."""
        page = queries.list_tasks(TaskFilter(start_from=date(2024, 12, 11), end_to=date(2024, 12, 20)))

        assert [t.id for t in page.items] == [board["spraying"].id]

    def test_search_covers_description_and_assignee(self, queries, board):
        assert queries.list_tasks(TaskFilter(search="pest")).items[0].id == board["spraying"].id
        assert queries.list_tasks(TaskFilter(search="ahmad")).items[0].id == board["pruning"].id

    def test_pagination(self, queries, board):
        page = queries.list_tasks(limit=1, offset=1)

        assert page.total == 3
        assert page.limit == 1
        assert len(page.items) == 1

    def test_view_carries_display_names(self, queries, board, area):
        view = queries.get_task(board["pruning"].id)

        assert view.assigned_to_name == "Ahmad"
        assert view.area_name == area.name
        assert view.asset_name is None

    def test_view_reflects_renamed_worker(self, queries, registry, board):
        """Names are resolved per call, never cached."""
        registry.update_worker(board["worker"].id, WorkerUpdate(name="Ahmad Rahman"))

        assert queries.get_task(board["pruning"].id).assigned_to_name == "Ahmad Rahman"

    def test_get_missing_task(self, queries):
        with pytest.raises(NotFound):
            queries.get_task("missing")


# ============================================================================
# Worker Views and Recommendations
# ============================================================================

class TestWorkers:
    """Tests for worker listing and recommendations."""

    def test_expertise_filter_requires_all_tags(self, queries, make_worker):
        make_worker(name="Ahmad", expertise=["Harvesting", "Pruning"])
        make_worker(name="Faiz", expertise=["Harvesting"])

        names = [w.name for w in queries.list_workers(["harvesting", "pruning"]).items]

        assert names == ["Ahmad"]

    def test_availability_filter(self, queries, make_worker):
        make_worker(name="Ahmad")
        make_worker(name="Siti", availability="Busy")

        page = queries.list_workers(availability=AvailabilityStatus.BUSY)

        assert [w.name for w in page.items] == ["Siti"]

    def test_worker_view_shows_capacity(self, queries, make_worker):
        worker = make_worker(current_tasks=["t1"])

        view = queries.get_worker(worker.id)

        assert view.current_load == 1
        assert view.capacity_remaining == 2
        assert view.load_cap == 3

    def test_recommendations_rank_and_flag(self, queries, make_worker, make_task):
        """Every worker is ranked; unavailable and full workers are flagged ineligible."""
        expert = make_worker(name="Expert", expertise=["Pruning"])
        make_worker(name="Away", expertise=["Pruning"], availability="Unavailable")
        make_worker(name="Full", expertise=["Pruning"], current_tasks=["a", "b", "c"])
        task = make_task(required_skills=["Pruning"])

        recommendations = queries.recommend_workers(task.id)

        assert recommendations[0].worker_id == expert.id
        assert recommendations[0].eligible is True
        assert {r.worker_name: r.eligible for r in recommendations} == {
            "Expert": True, "Away": False, "Full": False,
        }

    def test_recommendations_limit(self, queries, make_worker, make_task):
        for i in range(5):
            make_worker(name=f"W{i}")
        task = make_task()

        assert len(queries.recommend_workers(task.id, limit=2)) == 2


# ============================================================================
# Reference Data and Summary
# ============================================================================

class TestReporting:
    """Tests for areas, assets and the dashboard summary."""

    def test_list_areas_and_assets(self, queries, store, area):
        store.create(Asset(name="Tractor", type="Vehicle"))

        assert queries.list_areas().items == [area]
        assert queries.list_assets().items[0].name == "Tractor"

    def test_summary_counts(self, queries, board, make_worker):
        make_worker(name="Siti", availability="Busy")

        summary = queries.summary()

        assert summary.total_tasks == 3
        assert summary.tasks_by_status == {
            "Pending": 1, "In Progress": 1, "Completed": 0, "Cancelled": 1,
        }
        assert summary.tasks_by_priority == {"Low": 1, "Medium": 1, "High": 1}
        assert summary.total_workers == 2
        assert summary.available_workers == 1
        assert summary.workers_at_capacity == 0

    def test_queries_do_not_mutate(self, queries, store, board):
        before = [t.version for t in store.select(Task)]

        queries.list_tasks(TaskFilter(search="x"))
        queries.recommend_workers(board["spraying"].id)
        queries.summary()

        assert [t.version for t in store.select(Task)] == before
