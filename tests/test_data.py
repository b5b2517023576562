"""Unit tests for integrative_survival.data module.

Tests file loading, column selection and construction of the sorted record table.
"""
import pytest
import numpy as np
import pandas as pd

from integrative_survival.data import load_data, split_design, prepare_records


class TestLoadData:
    """Tests for load_data function."""

    def test_load_csv(self, tmp_path, tiny_frame):
        path = tmp_path / "records.csv"
        tiny_frame.to_csv(path, index=False)
        df = load_data(str(path))
        pd.testing.assert_frame_equal(df, tiny_frame)

    def test_load_pickle(self, tmp_path, tiny_frame):
        path = tmp_path / "records.pkl"
        tiny_frame.to_pickle(path)
        df = load_data(str(path))
        pd.testing.assert_frame_equal(df, tiny_frame)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_data(str(tmp_path / "missing.csv"))

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "records.parquet"
        path.write_text("")
        with pytest.raises(ValueError, match="Unsupported file format"):
            load_data(str(path))


class TestSplitDesign:
    """Tests for split_design function."""

    def test_default_covariates_are_remaining_columns(self, tiny_frame):
        X, ids, time, event = split_design(tiny_frame)
        assert list(X.columns) == ["x1"]
        assert len(ids) == len(time) == len(event) == 6

    def test_explicit_columns(self):
        df = pd.DataFrame({
            "subject": [1, 2], "t": [1.0, 2.0], "d": [1, 0], "a": [0.1, 0.2], "b": [1.0, 2.0],
        })
        X, ids, time, event = split_design(df, "subject", "t", "d", covariates=["b"])
        assert list(X.columns) == ["b"]
        assert ids.tolist() == [1, 2]

    def test_missing_column(self, tiny_frame):
        with pytest.raises(KeyError, match="not found"):
            split_design(tiny_frame, covariates=["x9"])

    def test_dropna(self, tiny_frame):
        df = tiny_frame.copy()
        df.loc[0, "x1"] = np.nan
        X, _, _, _ = split_design(df)
        assert len(X) == 5

        X, _, _, _ = split_design(df, dropna=False)
        assert len(X) == 6


class TestPrepareRecords:
    """Tests for prepare_records and RecordTable."""

    def test_sorted_by_time_then_id(self, tiny_records):
        assert tiny_records.time.tolist() == [1.0, 2.0, 2.0, 3.0, 4.0, 5.0]
        ids = tiny_records.subject_ids[tiny_records.subject]
        assert ids.tolist() == [2, 1, 3, 1, 4, 3]

    def test_event_is_boolean(self, tiny_records):
        assert tiny_records.event.dtype == bool
        assert tiny_records.event.tolist() == [True, True, False, False, True, True]

    def test_duplicate_flags(self, tiny_records):
        assert tiny_records.has_duplicates.tolist() == [False, True, True, True, False, True]
        assert tiny_records.n_subjects == 4
        assert tiny_records.n_per_subject.tolist() == [2, 1, 2, 1]

    def test_tie_grouping(self, tiny_records):
        assert tiny_records.first_at_time.tolist() == [True, True, False, True, True, True]
        assert tiny_records.time_group.tolist() == [0, 1, 1, 2, 3, 4]
        assert tiny_records.unique_times.tolist() == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert tiny_records.unique_times.shape[0] < tiny_records.n_records

    def test_input_order_round_trip(self, tiny_frame, tiny_records):
        restored = tiny_records.to_input(tiny_records.time)
        assert restored.tolist() == tiny_frame["time"].tolist()
        assert tiny_records.to_sorted(tiny_frame["time"]).tolist() == tiny_records.time.tolist()

    def test_subject_sum(self, tiny_records):
        totals = tiny_records.subject_sum(np.ones(tiny_records.n_records))
        assert totals.tolist() == [2.0, 1.0, 2.0, 1.0]

    def test_covariate_names_from_frame(self, tiny_records):
        assert tiny_records.covariate_names == ("x1",)
        assert tiny_records.n_covariates == 1

    def test_default_covariate_names(self):
        records = prepare_records(np.zeros((3, 2)), [1, 2, 3], [1.0, 2.0, 3.0], [1, 0, 1])
        assert records.covariate_names == ("x1", "x2")

    def test_string_ids(self):
        records = prepare_records([[0.0], [1.0], [2.0]], ["b", "a", "b"], [3.0, 2.0, 1.0], [1, 1, 0])
        assert set(records.subject_ids.tolist()) == {"a", "b"}
        assert records.has_duplicates.sum() == 2

    @pytest.mark.parametrize("kwargs, message", [
        ({"time": [1.0, np.nan, 3.0]}, "Non-finite"),
        ({"event": [1, 2, 0]}, "binary"),
        ({"ids": [1, 2]}, "does not match"),
        ({"X": [[0.0], [np.inf], [1.0]]}, "Non-finite"),
    ])
    def test_invalid_inputs(self, kwargs, message):
        args = {"X": [[0.0], [1.0], [2.0]], "ids": [1, 2, 3], "time": [1.0, 2.0, 3.0], "event": [1, 0, 1]}
        args.update(kwargs)
        with pytest.raises(ValueError, match=message):
            prepare_records(**args)

    def test_no_covariates(self):
        with pytest.raises(ValueError, match="Covariates"):
            prepare_records(np.empty((3, 0)), [1, 2, 3], [1.0, 2.0, 3.0], [1, 0, 1])

    def test_no_records(self):
        with pytest.raises(ValueError, match="at least 1 record"):
            prepare_records(np.empty((0, 1)), [], [], [])

    def test_missing_ids(self):
        with pytest.raises(ValueError, match="subject identifiers"):
            prepare_records([[0.0], [1.0]], [1, None], [1.0, 2.0], [1, 0])

    def test_records_are_immutable(self, tiny_records):
        with pytest.raises(Exception):
            tiny_records.time = np.zeros(6)
