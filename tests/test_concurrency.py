"""
Concurrent assignment tests against the in-memory store.

Many threads race to assign the same task, or many tasks to a small crew;
the store's version checks must keep the task-exclusivity and load-cap
rules intact.

Run with:
    pytest tests/test_concurrency.py -v
"""

from concurrent.futures import ThreadPoolExecutor

from common.errors import Conflict, TaskAlreadyAssigned
from common.models import AssignmentOutcome, Task, TaskStatus, Worker
from dispatcher.engine import AssignmentEngine


def _run(fn, args, workers=8):
    """Run fn over args in a thread pool, returning results or raised exceptions."""
    def call(arg):
        try:
            return fn(arg)
        except Conflict as e:
            return e

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(call, args))


class TestConcurrentAssignment:
    """Races between concurrent assign() calls."""

    def test_same_task_assigned_exactly_once(self, engine, store, make_worker, make_task):
        """Of N concurrent assigns on one task exactly one wins."""
        crew = [make_worker(name=f"W{i}") for i in range(4)]
        task = make_task()

        results = _run(lambda _: engine.assign(task.id), range(20))

        wins = [r for r in results if not isinstance(r, Exception) and r.assigned]
        losses = [r for r in results if isinstance(r, Exception)]
        assert len(wins) == 1
        assert len(losses) == 19
        assert all(isinstance(e, TaskAlreadyAssigned) for e in losses)

        stored = store.get(Task, task.id)
        assert stored.status is TaskStatus.IN_PROGRESS
        holders = [w for w in store.select(Worker) if task.id in w.current_tasks]
        assert [w.id for w in holders] == [stored.assigned_to]
        assert sum(store.get(Worker, w.id).load for w in crew) == 1

    def test_load_cap_holds_under_storm(self, store, lifecycle, config, make_worker, make_task):
        """Assigning many tasks at once never pushes a worker past the cap."""
        engine = AssignmentEngine(store, lifecycle, config, max_attempts=50)
        crew = [make_worker(name=f"W{i}") for i in range(3)]
        tasks = [make_task(title=f"Task {i}") for i in range(15)]

        results = _run(lambda t: engine.assign(t.id), tasks, workers=10)

        assigned = [r for r in results if not isinstance(r, Exception) and r.assigned]
        skipped = [
            r for r in results
            if not isinstance(r, Exception) and r.outcome is AssignmentOutcome.NO_ELIGIBLE_WORKER
        ]
        assert len(assigned) <= 3 * config.load_cap
        assert len(assigned) + len(skipped) + sum(isinstance(r, Exception) for r in results) == 15

        workers = {w.id: w for w in store.select(Worker)}
        assert all(w.load <= config.load_cap for w in workers.values())
        assert sum(w.load for w in workers.values()) == len(assigned)

        # every In Progress task is held by exactly the worker it names
        for task in store.select(Task):
            if task.status is TaskStatus.IN_PROGRESS:
                assert task.id in workers[task.assigned_to].current_tasks
            else:
                assert task.status is TaskStatus.PENDING
                assert all(task.id not in w.current_tasks for w in workers.values())
        assert {w.id for w in crew} == set(workers)
