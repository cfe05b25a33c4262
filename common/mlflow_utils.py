"""
MLflow utilities for tracking assignment decisions.

Each decision becomes one run tagged with the task and the chosen worker;
the full candidate ranking is stored as a JSON artifact. Tracking problems
are logged and never interrupt dispatching.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import mlflow

from common.models import ScoreBreakdown, Task, Worker

logger = logging.getLogger(__name__)

EXPERIMENT_NAME = "Field_Dispatch_Assignments"


def setup_mlflow(tracking_uri: Optional[str] = None) -> bool:
    """Point MLflow at the tracking server and select the experiment."""
    try:
        if tracking_uri:
            mlflow.set_tracking_uri(tracking_uri)
        mlflow.set_experiment(EXPERIMENT_NAME)
        return True
    except Exception as e:
        logger.warning(f"Failed to setup MLflow experiment: {e}")
        return False


def log_assignment_decision(
    action: str,
    task: Task,
    worker: Worker,
    ranking: list[ScoreBreakdown],
) -> None:
    """
    Log a single assignment decision to MLflow.

    Args:
        action: "assign" or "reassign"
        task: The task that was assigned
        worker: The worker it went to
        ranking: Eligible candidates best first (empty for manual reassignment)
    """
    try:
        run_name = f"{action}_{task.id}_{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}"
        tags = {
            "task_id": task.id,
            "worker_id": worker.id,
            "action": action,
            "priority": task.priority.value,
            "task_type": task.task_type,
        }

        with mlflow.start_run(run_name=run_name, tags=tags) as run:
            mlflow.log_param("required_skills", ",".join(task.required_skills) or "-")
            mlflow.log_metric("candidate_count", len(ranking))
            if ranking:
                mlflow.log_metric("winning_score", ranking[0].total)
                if len(ranking) > 1:
                    mlflow.log_metric("score_margin", ranking[0].total - ranking[1].total)
                mlflow.log_dict(
                    {"ranking": [b.model_dump() for b in ranking]},
                    "ranking.json",
                )

            logger.info(f"Logged MLflow run {run.info.run_id} for {action} of task {task.id}")

    except Exception as e:
        logger.error(f"Failed to log to MLflow: {e}")
