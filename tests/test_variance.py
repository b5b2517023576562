"""Unit tests for SECM variance estimation."""
import pytest
import numpy as np

from integrative_survival.config import ECMControl, ExecutionConfig
from integrative_survival.ecm import StartConfig, run_ecm
from integrative_survival.multistart import empirical_censor_rate, initial_pi
from integrative_survival.variance import (
    VarianceResult,
    dm_matrix,
    dm_row,
    estimate_variance,
    secm_covariance,
)


def fitted_run(records, control):
    rate = empirical_censor_rate(records)
    control = control.resolve(rate)
    run = run_ecm(records, np.zeros(records.n_covariates), initial_pi(rate, records), control,
                  StartConfig(censor_rate=rate))
    return run, control


class TestSecmCovariance:
    """Tests for the covariance formula."""

    def test_zero_dm_gives_inverse_information(self):
        information = np.array([[4.0, 1.0], [1.0, 3.0]])
        cov = secm_covariance(information, np.zeros((2, 2)))
        assert np.allclose(cov, np.linalg.inv(information))

    def test_scalar_formula(self):
        # V = 1/I + (1/I) d / (1 - d) = 1 / (I (1 - d))
        cov = secm_covariance(np.array([[5.0]]), np.array([[0.2]]))
        assert cov[0, 0] == pytest.approx(1.0 / (5.0 * 0.8))

    def test_symmetrized(self):
        information = np.array([[4.0, 1.0], [1.0, 3.0]])
        dm = np.array([[0.1, 0.05], [0.0, 0.2]])
        cov = secm_covariance(information, dm)
        assert np.allclose(cov, cov.T)

    def test_singular_id_minus_dm_raises(self):
        with pytest.raises(np.linalg.LinAlgError):
            secm_covariance(np.eye(2), np.eye(2))


class TestDmMatrix:
    """Tests for the numerically differentiated ECM map."""

    def test_unambiguous_map_is_flat(self, unambiguous_records):
        records = unambiguous_records
        run, control = fitted_run(records, ECMControl(no_se=False))
        dm = dm_matrix(run.last_step.beta, run.last_step.posterior, records, control)
        assert dm.shape == (1, 1)
        assert np.allclose(dm, 0.0, atol=1e-3)

    def test_row_matches_matrix(self, two_covariate_records):
        records = two_covariate_records
        run, control = fitted_run(records, ECMControl(no_se=False))
        beta, prior = run.last_step.beta, run.last_step.posterior

        dm = dm_matrix(beta, prior, records, control)
        assert dm.shape == (2, 2)
        assert np.allclose(dm[1], dm_row(1, beta, prior, records, control))

    def test_parallel_rows(self, two_covariate_records):
        records = two_covariate_records
        run, control = fitted_run(records, ECMControl(no_se=False))
        beta, prior = run.last_step.beta, run.last_step.posterior

        sequential = dm_matrix(beta, prior, records, control)
        parallel = dm_matrix(beta, prior, records, control, ExecutionConfig(n_jobs=2, backend="threading"))
        assert np.allclose(sequential, parallel)


class TestEstimateVariance:
    """Tests for estimate_variance."""

    def test_unambiguous_matches_naive(self, unambiguous_records):
        records = unambiguous_records
        run, control = fitted_run(records, ECMControl(no_se=False))
        step = run.last_step
        result = estimate_variance(step.beta, step.posterior, step.maximizer.hessian, records, control)

        assert isinstance(result, VarianceResult)
        assert result.available
        naive = np.diag(result.naive_covariance)
        assert np.all(np.diag(result.covariance) >= naive * (1 - 1e-3))
        assert np.allclose(result.standard_errors, np.sqrt(naive), rtol=1e-2)

    @pytest.mark.parametrize("fixture", ["ambiguous_records", "two_covariate_records"])
    def test_ambiguous_variance_not_below_naive(self, fixture, request):
        records = request.getfixturevalue(fixture)
        run, control = fitted_run(records, ECMControl(no_se=False))
        step = run.last_step
        result = estimate_variance(step.beta, step.posterior, step.maximizer.hessian, records, control)

        assert result.dm is not None
        assert result.available
        assert np.all(np.isfinite(result.standard_errors))
        assert np.all(np.diag(result.covariance) >= np.diag(result.naive_covariance) - 1e-12)

    def test_singular_information(self, unambiguous_records):
        records = unambiguous_records
        control = ECMControl(no_se=False).resolve(0.3)
        result = estimate_variance(np.zeros(1), np.ones(records.n_records), np.zeros((1, 1)), records, control)
        assert not result.available
        assert result.covariance is None
        assert result.standard_errors is None
        assert "singular" in result.reason
