"""Tests for the fixed-effects and random-intercept ZINB likelihoods."""

from types import SimpleNamespace

import numpy as np
import pytest
from statsmodels.discrete.count_model import ZeroInflatedNegativeBinomialP

from zinb_associations.models import (
    ZeroInflatedNegativeBinomialFixed,
    ZeroInflatedNegativeBinomialMixed,
    _inverse_information,
    zinb_logpmf,
)


@pytest.fixture()
def clustered(rng):
    n_groups, per_group = 12, 5
    n = n_groups * per_group
    groups = np.repeat(np.arange(n_groups), per_group)
    X = np.column_stack([np.ones(n), rng.standard_normal(n)])
    offset = np.log(rng.uniform(0.5, 1.5, n))
    mu = np.exp(X @ [1.0, 0.5] + offset)
    y = rng.poisson(mu).astype(float)
    y[rng.random(n) < 0.15] = 0.0
    return y, X, groups, offset


class TestZinbLogpmf:
    def test_sums_to_one(self):
        y = np.arange(0, 400)
        total = np.exp(zinb_logpmf(y, np.log(6.0), -1.0, 0.4)).sum()
        assert total == pytest.approx(1.0)

    def test_zero_mass_includes_inflation(self):
        gamma = 0.0  # π = 0.5
        p0 = np.exp(zinb_logpmf(np.array([0.0]), np.array([5.0]), gamma, 0.1))[0]
        assert p0 > 0.5


class TestFixedLikelihood:
    def test_matches_statsmodels_zinb(self, clustered):
        y, X, _, offset = clustered
        beta, gamma, alpha = np.array([0.9, 0.4]), -1.2, 0.6

        ours = ZeroInflatedNegativeBinomialFixed(y, X, offset=offset)
        reference = ZeroInflatedNegativeBinomialP(
            y, X, offset=offset, inflation="logit", p=2
        )
        assert ours.loglike(np.r_[beta, gamma, np.log(alpha)]) == pytest.approx(
            reference.loglike(np.r_[gamma, beta, alpha]), rel=1e-8
        )

    def test_parameter_names(self, clustered):
        y, X, _, _ = clustered
        model = ZeroInflatedNegativeBinomialFixed(y, X)
        assert model.exog_names[-2:] == ["inflate_const", "lnalpha"]
        assert model.k_exog == 2

    def test_loglikeobs_shape(self, clustered):
        y, X, _, offset = clustered
        model = ZeroInflatedNegativeBinomialFixed(y, X, offset=offset)
        obs = model.loglikeobs(np.array([1.0, 0.5, -1.5, np.log(0.3)]))
        assert obs.shape == y.shape
        assert np.all(np.isfinite(obs))

    def test_equidispersed_counts_fit(self, rng):
        n = 10
        x = np.tile([0.0, 1.0], n // 2)
        X = np.column_stack([np.ones(n), x])
        y = rng.poisson(8.0, n).astype(float)
        result = ZeroInflatedNegativeBinomialFixed(y, X).fit()
        params = np.asarray(result.params)
        assert np.all(np.isfinite(params[:2]))
        assert np.all(np.isfinite(np.asarray(result.bse)[:2]))
        # The count mean is close to the sample mean.
        assert np.exp(params[0]) == pytest.approx(y[x == 0].mean(), rel=0.25)


class TestMixedLikelihood:
    def test_one_term_per_group(self, clustered):
        y, X, groups, offset = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups, offset=offset)
        params = np.array([1.0, 0.5, -1.5, np.log(0.3), np.log(0.4)])
        ll = model.loglike_groups(params)
        assert ll.shape == (12,)
        assert np.all(np.isfinite(ll))
        assert model.loglike(params) == pytest.approx(ll.sum())

    def test_vanishing_variance_matches_fixed_model(self, clustered):
        y, X, groups, offset = clustered
        params = np.array([0.9, 0.4, -1.2, np.log(0.6)])

        mixed = ZeroInflatedNegativeBinomialMixed(y, X, groups, offset=offset)
        fixed = ZeroInflatedNegativeBinomialFixed(y, X, offset=offset)

        assert mixed.loglike(np.r_[params, -20.0]) == pytest.approx(
            fixed.loglike(params), rel=1e-8
        )

    def test_random_effect_variance_changes_likelihood(self, clustered):
        y, X, groups, offset = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups, offset=offset)
        base = np.array([1.0, 0.5, -1.5, np.log(0.3)])
        assert model.loglike(np.r_[base, -20.0]) != pytest.approx(
            model.loglike(np.r_[base, 0.0])
        )

    def test_extreme_linear_predictor_stays_finite(self, clustered):
        y, X, groups, offset = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups, offset=offset)
        ll = model.loglike(np.array([800.0, 0.0, 0.0, 0.0, 0.0]))
        assert not np.isnan(ll)


class TestMixedConstruction:
    def test_parameter_names(self, clustered):
        y, X, groups, _ = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups, group_name="subject")
        assert model.exog_names[-3:] == ["inflate_const", "lnalpha", "subject_lnsd"]
        assert model.k_exog == 2
        assert model.n_groups == 12

    def test_string_groups(self, clustered):
        y, X, groups, _ = clustered
        labels = np.array([f"p{g}" for g in groups])
        model = ZeroInflatedNegativeBinomialMixed(y, X, labels)
        assert model.n_groups == 12

    def test_missing_ids_form_their_own_subject(self):
        groups = ["a", "a", "b", "b", None, None, "c", "d"]
        model = ZeroInflatedNegativeBinomialMixed(np.ones(8), np.ones((8, 1)), groups)
        assert model.n_groups == 5
        assert model.group_codes.min() == 0
        codes = model.group_codes
        assert codes[4] == codes[5]
        assert codes[4] not in {codes[0], codes[2], codes[6], codes[7]}

    def test_missing_ids_behave_like_a_labelled_subject(self):
        y, X = np.array([1.0, 2.0, 6.0, 9.0]), np.ones((4, 1))
        params = np.array([1.0, -2.0, np.log(0.5), 0.0])
        missing = ZeroInflatedNegativeBinomialMixed(y, X, ["a", "a", None, None])
        labelled = ZeroInflatedNegativeBinomialMixed(y, X, ["a", "a", "z", "z"])
        assert missing.loglike(params) == pytest.approx(labelled.loglike(params))

    def test_group_length_mismatch_raises(self, clustered):
        y, X, groups, _ = clustered
        with pytest.raises(ValueError, match="groups has"):
            ZeroInflatedNegativeBinomialMixed(y, X, groups[:-1])

    def test_quadrature_points_override(self, clustered):
        y, X, groups, _ = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups, quadrature_points=7)
        assert model._nodes.shape == (7,)

    def test_quadrature_weights_normalised(self, clustered):
        y, X, groups, _ = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups)
        assert np.exp(model._log_weights).sum() == pytest.approx(1.0)

    def test_start_params_layout(self, clustered):
        y, X, groups, offset = clustered
        model = ZeroInflatedNegativeBinomialMixed(y, X, groups, offset=offset)
        start = model._start_params()
        assert start.shape == (5,)
        assert np.all(np.isfinite(start))


class TestInverseInformation:
    @staticmethod
    def _model(info):
        return SimpleNamespace(
            k_exog=2,
            exog_names=["Intercept", "x", "inflate_const", "lnalpha"],
            hessian=lambda params: -np.asarray(info),
        )

    def test_regular_information_is_inverted(self):
        info = np.diag([4.0, 2.0, 1.0, 0.5])
        info[0, 1] = info[1, 0] = 0.5
        cov = _inverse_information(self._model(info), np.zeros(4))
        np.testing.assert_allclose(cov, np.linalg.inv(info))

    def test_collapsed_dispersion_is_held_fixed(self):
        info = np.array(
            [
                [40.0, 5.0, 0.1, 1e-4],
                [5.0, 20.0, 0.1, 1e-4],
                [0.1, 0.1, 3.0, 0.0],
                [1e-4, 1e-4, 0.0, -1e-6],
            ]
        )
        cov = _inverse_information(self._model(info), np.zeros(4))
        assert np.isnan(cov[3]).all()
        assert np.isnan(cov[:, 3]).all()
        np.testing.assert_allclose(cov[:3, :3], np.linalg.inv(info[:3, :3]))

    def test_singular_count_block_gives_nan(self):
        info = np.diag([1.0, -1.0, 1.0, 1.0])
        cov = _inverse_information(self._model(info), np.zeros(4))
        assert np.isnan(cov).all()
