"""Unit tests for MLflow tracking helpers."""
import logging
import pytest
import mlflow

from integrative_survival.tracking import (
    flatten_params,
    safe_log_artifact,
    safe_log_metrics,
    safe_log_params,
    start_run,
)


@pytest.fixture
def tracking_uri(tmp_path):
    return "file:" + str(tmp_path / "mlruns")


class TestFlattenParams:
    """Tests for flatten_params."""

    def test_nested(self):
        flat = flatten_params({"control": {"gradtol": 1e-6, "iterlim": 100}, "id_column": "ID"})
        assert flat == {"control.gradtol": 1e-6, "control.iterlim": 100, "id_column": "ID"}


class TestSafeLogging:
    """Tests for the graceful-degradation wrappers."""

    def test_logs_to_active_run(self, tracking_uri, tmp_path):
        artifact = tmp_path / "coefficients.csv"
        artifact.write_text("covariate,coef\nx1,0.5\n")

        with start_run("unit_test", tracking_uri=tracking_uri) as run:
            assert safe_log_params({"control": {"gradtol": 1e-6}, "censor_rate": [0.1, 0.2]})
            assert safe_log_metrics({"loglik": -12.5, "bad": float("nan"), "label": "x"})
            assert safe_log_artifact(str(artifact))
            run_id = run.info.run_id

        data = mlflow.get_run(run_id).data
        assert data.params["control.gradtol"] == "1e-06"
        assert data.params["censor_rate"] == "[0.1, 0.2]"
        assert data.metrics == {"loglik": -12.5}

    def test_missing_artifact(self, caplog):
        logger = logging.getLogger("integrative_survival.test")
        with caplog.at_level(logging.WARNING, logger="integrative_survival"):
            assert not safe_log_artifact("does/not/exist.csv", logger=logger)
        assert "Artifact not found" in caplog.text

    def test_failure_returns_false(self, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise mlflow.exceptions.MlflowException("tracking server unavailable")

        monkeypatch.setattr(mlflow, "log_metrics", broken)
        logger = logging.getLogger("integrative_survival.test")
        with caplog.at_level(logging.WARNING, logger="integrative_survival"):
            assert safe_log_metrics({"loglik": -1.0}, logger=logger) is False
        assert "MLflow metrics logging failed" in caplog.text
