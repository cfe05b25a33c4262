"""
Suitability scoring of a worker for a task.

Pure functions only: no store access, no mutation, safe to call from any
number of threads. The score is never persisted on the worker.
"""

from datetime import date
from typing import Iterable

from common.config import ScoringConfig
from common.models import AvailabilityStatus, AvailabilityWindow, ScoreBreakdown, Task, Worker

BUSY_FACTOR = 0.5
SCORE_PRECISION = 6


def expertise_score(worker: Worker, task: Task) -> float:
    """Fraction of the task's required skills the worker has (1.0 if none required)."""
    required = {s.casefold() for s in task.required_skills}
    if not required:
        return 1.0
    have = {s.casefold() for s in worker.expertise}
    return len(required & have) / len(required)


def _covered_days(windows: Iterable[AvailabilityWindow], start: date, end: date) -> int:
    """Days of [start, end] inside at least one window, both ends inclusive."""
    clipped = sorted(
        (max(w.start, start), min(w.end, end))
        for w in windows
        if w.start <= end and w.end >= start
    )
    covered = 0
    run_start = run_end = None
    for lo, hi in clipped:
        if run_end is not None and (lo - run_end).days <= 1:
            run_end = max(run_end, hi)
            continue
        if run_end is not None:
            covered += (run_end - run_start).days + 1
        run_start, run_end = lo, hi
    if run_end is not None:
        covered += (run_end - run_start).days + 1
    return covered


def availability_score(worker: Worker, task: Task) -> float:
    """
    1.0 when the worker is free for the whole task window, 0.0 when known
    unavailable, and the covered fraction of the window in between.
    A Busy worker gets half of that.
    """
    availability = worker.availability
    if availability.status is AvailabilityStatus.UNAVAILABLE:
        return 0.0

    if availability.windows:
        span = (task.end_date - task.start_date).days + 1
        coverage = _covered_days(availability.windows, task.start_date, task.end_date) / span
    else:
        coverage = 1.0

    if availability.status is AvailabilityStatus.BUSY:
        coverage *= BUSY_FACTOR
    return coverage


def load_score(worker: Worker, load_cap: int) -> float:
    """Decreases linearly with current load, reaching 0 at the cap."""
    return max(0.0, 1.0 - worker.load / load_cap)


def experience_score(worker: Worker, threshold: float) -> float:
    """Linear up to `threshold` years, flat afterwards."""
    return min(worker.experience, threshold) / threshold


def score_breakdown(worker: Worker, task: Task, config: ScoringConfig) -> ScoreBreakdown:
    weights = config.weights
    expertise = expertise_score(worker, task)
    availability = availability_score(worker, task)
    load = load_score(worker, config.load_cap)
    experience = experience_score(worker, config.experience_threshold)

    total = (
        weights.expertise * expertise
        + weights.availability * availability
        + weights.load * load
        + weights.experience * experience
    )
    total = round(min(1.0, max(0.0, total)), SCORE_PRECISION)

    return ScoreBreakdown(
        worker_id=worker.id,
        task_id=task.id,
        expertise=expertise,
        availability=availability,
        load=load,
        experience=experience,
        total=total,
    )


def score(worker: Worker, task: Task, config: ScoringConfig) -> float:
    """Suitability of `worker` for `task` in [0, 1]."""
    return score_breakdown(worker, task, config).total


def is_eligible(worker: Worker, breakdown: ScoreBreakdown, config: ScoringConfig) -> bool:
    """Hard exclusion: known-unavailable for the window, or already at the load cap."""
    return breakdown.availability > 0.0 and worker.load < config.load_cap


def rank_candidates(
    workers: Iterable[Worker],
    task: Task,
    config: ScoringConfig,
) -> list[tuple[Worker, ScoreBreakdown]]:
    """
    Score every worker and order best first.

    Ties are broken by lower current load, then by worker id, so the ranking
    is reproducible for identical inputs.
    """
    scored = [(worker, score_breakdown(worker, task, config)) for worker in workers]
    scored.sort(key=lambda pair: (-pair[1].total, pair[0].load, pair[0].id))
    return scored
