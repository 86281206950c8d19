"""Tests for input conversion and Polars compatibility."""

import numpy as np
import pandas as pd
import pytest

from zinb_associations._compat import _ensure_1d, _ensure_pandas_df


class TestEnsurePandasDf:
    def test_pandas_passthrough(self):
        df = pd.DataFrame({"a": [1, 2, 3]})
        assert _ensure_pandas_df(df) is df

    def test_rejects_invalid_type(self):
        with pytest.raises(TypeError, match="must be a pandas DataFrame"):
            _ensure_pandas_df([1, 2, 3])

    def test_error_includes_name(self):
        with pytest.raises(TypeError, match="'features'"):
            _ensure_pandas_df({"a": 1}, name="features")


class TestEnsure1d:
    def test_list(self):
        np.testing.assert_array_equal(_ensure_1d([1, 2, 3]), [1, 2, 3])

    def test_series(self):
        out = _ensure_1d(pd.Series(["a", "b"]))
        assert isinstance(out, np.ndarray)
        assert out.tolist() == ["a", "b"]

    def test_single_column_frame(self):
        out = _ensure_1d(pd.DataFrame({"libSize": [10, 20]}))
        assert out.tolist() == [10, 20]

    def test_wide_frame_rejected(self):
        with pytest.raises(ValueError, match="one-dimensional"):
            _ensure_1d(pd.DataFrame({"a": [1], "b": [2]}), name="libSize")

    def test_matrix_rejected(self):
        with pytest.raises(ValueError, match="'ID' must be one-dimensional"):
            _ensure_1d(np.ones((2, 2)), name="ID")


class TestPolars:
    """Polars inputs are converted at the boundary."""

    @pytest.fixture(autouse=True)
    def _polars(self):
        self.pl = pytest.importorskip("polars")

    def test_polars_converted(self):
        result = _ensure_pandas_df(self.pl.DataFrame({"a": [1, 2, 3]}))
        assert isinstance(result, pd.DataFrame)
        assert result["a"].tolist() == [1, 2, 3]

    def test_lazyframe_collected(self):
        result = _ensure_pandas_df(self.pl.DataFrame({"a": [1, 2]}).lazy())
        assert result["a"].tolist() == [1, 2]

    def test_polars_series(self):
        out = _ensure_1d(self.pl.Series("ID", ["p1", "p2"]))
        assert out.tolist() == ["p1", "p2"]

    def test_fit_zinb_accepts_polars(self, fake_fitter, small_dataset):
        from zinb_associations import fit_zinb

        features, metadata, lib_size, ids = small_dataset
        table = fit_zinb(
            self.pl.from_pandas(features),
            self.pl.from_pandas(metadata),
            self.pl.Series(lib_size),
            ids,
            fitter=fake_fitter(),
        )
        assert len(table) == 8
