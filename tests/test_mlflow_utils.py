"""
MLflow decision tracking tests with a mocked mlflow module.

Run with:
    pytest tests/test_mlflow_utils.py -v
"""

import pytest
from datetime import date
from unittest.mock import MagicMock, patch

from common.mlflow_utils import EXPERIMENT_NAME, log_assignment_decision, setup_mlflow
from common.models import ScoreBreakdown, Task, Worker


@pytest.fixture
def mock_mlflow():
    with patch("common.mlflow_utils.mlflow") as mock:
        run = MagicMock()
        run.info.run_id = "run-1"
        mock.start_run.return_value.__enter__.return_value = run
        yield mock


def _breakdown(worker_id, total):
    return ScoreBreakdown(
        worker_id=worker_id, task_id="t1",
        expertise=1.0, availability=1.0, load=1.0, experience=1.0, total=total,
    )


@pytest.fixture
def decision():
    task = Task(
        id="t1",
        title="Prune",
        task_type="Harvesting",
        required_skills=["Pruning"],
        start_date=date(2024, 12, 1),
        end_date=date(2024, 12, 1),
    )
    worker = Worker(id="w1", name="Ahmad")
    return task, worker


class TestSetup:
    def test_sets_uri_and_experiment(self, mock_mlflow):
        assert setup_mlflow("http://mlflow:5000") is True

        mock_mlflow.set_tracking_uri.assert_called_once_with("http://mlflow:5000")
        mock_mlflow.set_experiment.assert_called_once_with(EXPERIMENT_NAME)

    def test_failure_is_reported_not_raised(self, mock_mlflow):
        mock_mlflow.set_experiment.side_effect = RuntimeError("no server")

        assert setup_mlflow("http://mlflow:5000") is False


class TestLogDecision:
    def test_logs_tags_metrics_and_ranking(self, mock_mlflow, decision):
        task, worker = decision
        ranking = [_breakdown("w1", 0.9), _breakdown("w2", 0.6)]

        log_assignment_decision("assign", task, worker, ranking)

        tags = mock_mlflow.start_run.call_args.kwargs["tags"]
        assert tags["task_id"] == "t1"
        assert tags["worker_id"] == "w1"
        assert tags["action"] == "assign"
        mock_mlflow.log_metric.assert_any_call("candidate_count", 2)
        mock_mlflow.log_metric.assert_any_call("winning_score", 0.9)
        artifact, name = mock_mlflow.log_dict.call_args.args
        assert name == "ranking.json"
        assert [r["worker_id"] for r in artifact["ranking"]] == ["w1", "w2"]

    def test_manual_reassign_has_no_ranking(self, mock_mlflow, decision):
        task, worker = decision

        log_assignment_decision("reassign", task, worker, [])

        mock_mlflow.log_metric.assert_called_once_with("candidate_count", 0)
        mock_mlflow.log_dict.assert_not_called()

    def test_tracking_errors_are_swallowed(self, mock_mlflow, decision):
        """Dispatching continues when the tracking server is down."""
        mock_mlflow.start_run.side_effect = ConnectionError("refused")
        task, worker = decision

        log_assignment_decision("assign", task, worker, [])
