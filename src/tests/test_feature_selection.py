"""
===============================================================================
TEST: Feature Selection
===============================================================================
"""

import numpy as np
import pytest
import sys
import os

# Add parent directory to path for relative imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pmdi.clusters import CategoricalCluster, GaussianCluster
from pmdi.feature_selection import FeatureSelector


@pytest.fixture
def separated():
    """Feature 0 separates two groups, feature 1 is noise."""
    rng = np.random.default_rng(31)
    labels = np.repeat([0, 1], 20)
    informative = np.where(labels == 0, -10.0, 10.0) + rng.normal(scale=0.1, size=40)
    noise = rng.normal(size=40)
    return np.column_stack([informative, noise]), labels


class TestFeatureSelector:
    """Tests for FeatureSelector."""

    def test_disabled_keeps_every_feature(self, separated):
        data, labels = separated
        selector = FeatureSelector([data], [GaussianCluster], np.random.default_rng(0), enabled=False)
        assert selector.flags[0].tolist() == [True, True]

        flags = selector.update(labels[:, None], np.random.default_rng(1))
        assert flags[0].tolist() == [True, True]
        assert selector.null_log_marginal == []

    def test_initial_flags_shape(self, separated):
        data, _ = separated
        cat = np.random.default_rng(2).integers(0, 3, size=(40, 5))
        selector = FeatureSelector([data, cat], [GaussianCluster, CategoricalCluster],
                                   np.random.default_rng(3))
        assert [len(f) for f in selector.flags] == [2, 5]
        assert all(f.dtype == bool for f in selector.flags)

    def test_informative_feature_scores_high(self, separated):
        data, labels = separated
        selector = FeatureSelector([data], [GaussianCluster], np.random.default_rng(4))
        scores = selector.feature_scores(0, labels)
        assert scores[0] > 20.0
        assert scores[0] > scores[1]

    def test_informative_feature_always_selected(self, separated):
        data, labels = separated
        rng = np.random.default_rng(5)
        selector = FeatureSelector([data], [GaussianCluster], rng)
        for _ in range(25):
            flags = selector.update(labels[:, None], rng)
            assert flags[0][0]

    def test_single_cluster_scores_zero(self, separated):
        data, _ = separated
        selector = FeatureSelector([data], [GaussianCluster], np.random.default_rng(6))
        scores = selector.feature_scores(0, np.zeros(40, dtype=int))
        np.testing.assert_allclose(scores, 0.0, atol=1e-8)
