"""Unit tests for starting-coefficient strategies."""
import pytest
import numpy as np
from lifelines import CoxPHFitter

from integrative_survival.data import prepare_records
from integrative_survival.initializers import (
    FixedInitializer,
    LifelinesCoxInitializer,
    SksurvCoxInitializer,
    ZeroInitializer,
    get_initializer,
)


class TestCoxInitializers:
    """Tests for Cox-fit based initializers."""

    def test_lifelines_uses_unambiguous_subjects(self, ambiguous_df, ambiguous_records):
        beta = LifelinesCoxInitializer().initial_beta(ambiguous_records)

        counts = ambiguous_df["ID"].value_counts()
        singles = ambiguous_df[ambiguous_df["ID"].map(counts) == 1]
        cph = CoxPHFitter().fit(singles[["x1", "time", "event"]], duration_col="time", event_col="event")
        assert beta[0] == pytest.approx(cph.params_["x1"], abs=1e-5)

    def test_sksurv_agrees_with_lifelines(self, two_covariate_records):
        lifelines_beta = LifelinesCoxInitializer().initial_beta(two_covariate_records)
        sksurv_beta = SksurvCoxInitializer().initial_beta(two_covariate_records)
        assert np.allclose(lifelines_beta, sksurv_beta, atol=1e-3)

    @pytest.mark.parametrize("initializer", [LifelinesCoxInitializer(), SksurvCoxInitializer()])
    def test_no_unambiguous_subjects(self, initializer):
        records = prepare_records([[0.1], [0.3], [0.2], [0.5]], [1, 1, 2, 2], [1.0, 2.0, 3.0, 4.0], [1, 0, 1, 0])
        assert np.array_equal(initializer.initial_beta(records), np.zeros(1))

    @pytest.mark.parametrize("initializer", [LifelinesCoxInitializer(), SksurvCoxInitializer()])
    def test_too_few_events(self, initializer, simulate):
        df = simulate(n_subjects=150, seed=4, shuffle=False)
        df["event"] = 0
        df.loc[0, "event"] = 1
        records = prepare_records(df[["x1"]], df["ID"], df["time"], df["event"])
        assert np.array_equal(initializer.initial_beta(records), np.zeros(1))

    def test_separation_falls_back_to_zeros(self):
        # event times ordered exactly by the covariate: the Cox MLE is infinite
        n = 30
        x = np.arange(n, dtype=float)
        records = prepare_records(x.reshape(-1, 1), np.arange(n), np.arange(n, 0, -1, dtype=float), np.ones(n))
        beta = LifelinesCoxInitializer().initial_beta(records)
        assert np.all(np.isfinite(beta))


class TestSimpleInitializers:
    """Tests for zero and fixed initializers."""

    def test_zero(self, two_covariate_records):
        assert np.array_equal(ZeroInitializer().initial_beta(two_covariate_records), np.zeros(2))

    def test_fixed(self, two_covariate_records):
        assert np.array_equal(FixedInitializer(beta=[0.1, 0.2]).initial_beta(two_covariate_records), [0.1, 0.2])

    def test_fixed_wrong_length(self, two_covariate_records):
        with pytest.raises(ValueError, match="expected 2"):
            FixedInitializer(beta=[0.1]).initial_beta(two_covariate_records)

    def test_registry(self):
        assert isinstance(get_initializer("zeros"), ZeroInitializer)
        assert isinstance(get_initializer("sksurv_cox"), SksurvCoxInitializer)
        with pytest.raises(KeyError, match="Unknown initializer"):
            get_initializer("ridge")
