"""
===============================================================================
TEST: Cluster Models (Gaussian Normal-Gamma, Categorical Dirichlet)
===============================================================================

Coverage:
- Marginal likelihood is order independent
- Chain rule: marginal = Σ sequential predictives
- Feature mask gates add() and log_predictive()
- copy() is a value copy
- Family resolution by name / enum / class
"""

import numpy as np
import pytest
import sys
import os

# Add parent directory to path for relative imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pmdi.clusters import (
    CLUSTER_FAMILIES,
    CategoricalCluster,
    ClusterFamily,
    GaussianCluster,
    get_cluster_family,
)


@pytest.fixture
def gaussian_data():
    """Generate reproducible continuous data."""
    rng = np.random.default_rng(42)
    return rng.normal(loc=[0.0, 5.0, -3.0], scale=[1.0, 2.0, 0.5], size=(20, 3))


@pytest.fixture
def categorical_data():
    """Generate reproducible categorical data with 2, 3 and 4 levels."""
    rng = np.random.default_rng(7)
    return np.column_stack([
        rng.integers(0, 2, size=20),
        rng.integers(0, 3, size=20),
        rng.integers(0, 4, size=20),
    ])


def _fill(model, rows, mask=None):
    if mask is None:
        mask = np.ones(model.n_features, dtype=bool)
    for row in rows:
        model.add(row, mask)
    return model


class TestGaussianCluster:
    """Tests for the Normal-Gamma cluster."""

    def test_empty_cluster_marginal_is_zero(self, gaussian_data):
        model = GaussianCluster(gaussian_data)
        np.testing.assert_allclose(model.log_marginal_features(), 0.0, atol=1e-12)

    def test_marginal_order_independent(self, gaussian_data):
        forward = _fill(GaussianCluster(gaussian_data), gaussian_data[:10])
        backward = _fill(GaussianCluster(gaussian_data), gaussian_data[:10][::-1])
        assert forward.log_marginal() == pytest.approx(backward.log_marginal(), rel=1e-10)

    def test_chain_rule(self, gaussian_data):
        """log p(x1..xm) equals the sum of sequential predictive densities."""
        model = GaussianCluster(gaussian_data)
        mask = np.ones(3, dtype=bool)
        total = 0.0
        for row in gaussian_data[:6]:
            total += model.log_predictive(row, mask)
            model.add(row, mask)
        assert model.log_marginal() == pytest.approx(total, rel=1e-8)

    def test_predictive_prefers_nearby_points(self, gaussian_data):
        model = _fill(GaussianCluster(gaussian_data), gaussian_data[:10])
        mask = np.ones(3, dtype=bool)
        centre = gaussian_data[:10].mean(axis=0)
        assert model.log_predictive(centre, mask) > model.log_predictive(centre + 20.0, mask)

    def test_mask_gates_add_and_predictive(self, gaussian_data):
        model = GaussianCluster(gaussian_data)
        mask = np.array([True, False, True])
        model.add(gaussian_data[0], mask)
        assert model.counts.tolist() == [1.0, 0.0, 1.0]

        none = np.zeros(3, dtype=bool)
        assert model.log_predictive(gaussian_data[1], none) == 0.0

    def test_copy_is_independent(self, gaussian_data):
        model = _fill(GaussianCluster(gaussian_data), gaussian_data[:3])
        clone = model.copy()
        clone.add(gaussian_data[5], np.ones(3, dtype=bool))
        assert model.counts[0] == 3
        assert clone.counts[0] == 4
        assert model.log_marginal() != clone.log_marginal()

    def test_rejects_1d_data(self):
        with pytest.raises(ValueError):
            GaussianCluster(np.arange(5.0))

    def test_constant_column_is_finite(self):
        data = np.column_stack([np.ones(8), np.arange(8.0)])
        model = _fill(GaussianCluster(data), data)
        assert np.all(np.isfinite(model.log_marginal_features()))


class TestCategoricalCluster:
    """Tests for the Dirichlet-multinomial cluster."""

    def test_levels_read_from_data(self, categorical_data):
        model = CategoricalCluster(categorical_data)
        assert model.n_levels.tolist() == [
            categorical_data[:, 0].max() + 1,
            categorical_data[:, 1].max() + 1,
            categorical_data[:, 2].max() + 1,
        ]

    def test_empty_predictive_is_uniform(self, categorical_data):
        model = CategoricalCluster(categorical_data)
        mask = np.ones(3, dtype=bool)
        expected = -np.sum(np.log(model.n_levels))
        assert model.log_predictive(categorical_data[0], mask) == pytest.approx(expected)

    def test_marginal_order_independent(self, categorical_data):
        forward = _fill(CategoricalCluster(categorical_data), categorical_data)
        backward = _fill(CategoricalCluster(categorical_data), categorical_data[::-1])
        assert forward.log_marginal() == pytest.approx(backward.log_marginal(), rel=1e-12)

    def test_chain_rule(self, categorical_data):
        model = CategoricalCluster(categorical_data)
        mask = np.ones(3, dtype=bool)
        total = 0.0
        for row in categorical_data[:8]:
            total += model.log_predictive(row, mask)
            model.add(row, mask)
        assert model.log_marginal() == pytest.approx(total, rel=1e-10)

    def test_mask_gates_add(self, categorical_data):
        model = CategoricalCluster(categorical_data)
        model.add(categorical_data[0], np.array([False, True, False]))
        assert model.totals.tolist() == [0.0, 1.0, 0.0]
        assert model.counts.sum() == 1

    def test_copy_is_independent(self, categorical_data):
        model = _fill(CategoricalCluster(categorical_data), categorical_data[:4])
        clone = model.copy()
        clone.add(categorical_data[4], np.ones(3, dtype=bool))
        assert model.totals[0] == 4
        assert clone.totals[0] == 5

    def test_rejects_negative_codes(self):
        with pytest.raises(ValueError):
            CategoricalCluster(np.array([[0, 1], [-1, 2]]))

    def test_rejects_non_integer_codes(self):
        with pytest.raises(ValueError):
            CategoricalCluster(np.array([[0.5, 1.0], [1.0, 2.0]]))


class TestFamilyRegistry:
    """Tests for family lookup."""

    def test_builtin_families_registered(self):
        assert CLUSTER_FAMILIES[ClusterFamily.GAUSSIAN] is GaussianCluster
        assert CLUSTER_FAMILIES[ClusterFamily.CATEGORICAL] is CategoricalCluster

    @pytest.mark.parametrize("name,expected", [
        ("gaussian", GaussianCluster),
        ("Categorical", CategoricalCluster),
        (ClusterFamily.GAUSSIAN, GaussianCluster),
        (CategoricalCluster, CategoricalCluster),
    ])
    def test_resolution(self, name, expected):
        assert get_cluster_family(name) is expected

    def test_unknown_family(self):
        with pytest.raises(ValueError, match="Unknown cluster family"):
            get_cluster_family("poisson")
