"""
===============================================================================
TEST: Particle MDI End to End
===============================================================================

Coverage:
- Output layout (header, rows, field counts, 1-based labels)
- Thinning and feature selection files
- Fail-fast validation (no output file on bad input)
- Reproducibility under a fixed seed
- Concordance Φ drives cross-dataset agreement on uninformative data
- CLI front end
"""

import numpy as np
import pandas as pd
import pytest
import sys
import os

# Add parent directory to path for relative imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pmdi.sampler as sampler_module
from pmdi import (
    GaussianCluster,
    HyperpriorConfig,
    ParticleMDI,
    SamplerConfig,
    SamplerResult,
    read_chain,
    run,
)
from pmdi.hyperparameters import update_hyperparameters, update_partition_function
from pmdi.pmdi_cli import main


@pytest.fixture
def small_data():
    rng = np.random.default_rng(101)
    return np.concatenate([
        rng.normal(-3.0, 0.3, size=(5, 2)),
        rng.normal(3.0, 0.3, size=(5, 2)),
    ])


@pytest.fixture
def shared_structure():
    """Two datasets measured on the same 30 units with three groups."""
    rng = np.random.default_rng(102)
    groups = np.repeat([0, 1, 2], 10)
    centres = np.array([-6.0, 0.0, 6.0])[groups]
    gaussian = centres[:, None] + rng.normal(scale=0.4, size=(30, 3))
    categorical = np.column_stack([groups, groups, rng.integers(0, 2, size=30)])
    return gaussian, categorical


class TestEndToEnd:
    """Single dataset runs."""

    def test_output_layout(self, small_data, tmp_path):
        out = tmp_path / "output.csv"
        result = run([small_data], ["gaussian"], max_clusters=2, particles=5, rho=0.5,
                     iterations=50, output_path=str(out), seed=1)

        assert isinstance(result, SamplerResult)
        lines = out.read_text().splitlines()
        assert len(lines) == 51
        assert lines[0].split(",")[:3] == ["MassParameter_1", "phi_1_1", "ll"]
        assert lines[0].split(",")[3] == "K1_n1"
        for line in lines[1:]:
            fields = line.split(",")
            assert len(fields) == 13
            assert {int(v) for v in fields[3:]} <= {1, 2}

        chain = read_chain(out)
        assert (chain["ll"].diff().dropna() >= 0).all()
        assert (chain["MassParameter_1"] > 0).all()
        assert result.rows_written == 50

    def test_thinning(self, small_data, tmp_path):
        out = tmp_path / "thinned.csv"
        result = run([small_data], ["gaussian"], max_clusters=2, particles=4, rho=0.5,
                     iterations=10, output_path=str(out), thin=3, seed=2)
        assert result.rows_written == 3
        assert len(read_chain(out)) == 3

    def test_feature_file(self, small_data, tmp_path):
        out = tmp_path / "output.csv"
        features = tmp_path / "features.csv"
        result = run([small_data], ["gaussian"], max_clusters=2, particles=4, rho=0.5,
                     iterations=6, output_path=str(out), feature_select_path=str(features),
                     dataset_names=["expr"], seed=3)

        frame = read_chain(features)
        assert list(frame.columns) == ["expr_d1", "expr_d2"]
        assert len(frame) == 7
        assert set(frame.to_numpy().ravel()) <= {0, 1}
        assert result.feature_path == str(features)

    def test_reproducible(self, small_data, tmp_path):
        kwargs = dict(max_clusters=2, particles=5, rho=0.5, iterations=15, seed=42)
        a = run([small_data], ["gaussian"], output_path=str(tmp_path / "a.csv"), **kwargs)
        b = run([small_data], ["gaussian"], output_path=str(tmp_path / "b.csv"), **kwargs)

        np.testing.assert_array_equal(a.state.allocations, b.state.allocations)
        np.testing.assert_array_equal(a.state.mass, b.state.mass)
        chain_a = read_chain(tmp_path / "a.csv").drop(columns="ll")
        chain_b = read_chain(tmp_path / "b.csv").drop(columns="ll")
        pd.testing.assert_frame_equal(chain_a, chain_b)

    def test_custom_hyperpriors(self, small_data, tmp_path):
        priors = HyperpriorConfig(initial_mass=0.5, mass_step=0.1)
        result = run([small_data], ["gaussian"], max_clusters=2, particles=3, rho=0.5,
                     iterations=3, output_path=str(tmp_path / "o.csv"), seed=4,
                     hyperpriors=priors)
        assert result.state.mass[0] > 0


class TestValidation:
    """Bad inputs fail before any output is written."""

    @pytest.mark.parametrize("overrides,match", [
        (dict(rho=1.5), "rho"),
        (dict(rho=0.0), "rho"),
        (dict(max_clusters=1), "clusters"),
        (dict(max_clusters=11), "clusters"),
        (dict(particles=1), "particles"),
        (dict(rho=0.1), "seeded"),
        (dict(iterations=0), "iterations"),
        (dict(thin=0), "thin"),
    ])
    def test_bad_settings(self, small_data, tmp_path, overrides, match):
        out = tmp_path / "never.csv"
        kwargs = dict(max_clusters=2, particles=5, rho=0.5, iterations=5, output_path=str(out))
        kwargs.update(overrides)
        with pytest.raises(ValueError, match=match):
            run([small_data], ["gaussian"], **kwargs)
        assert not out.exists()

    def test_mismatched_rows(self, small_data, tmp_path):
        out = tmp_path / "never.csv"
        with pytest.raises(ValueError, match="same number of observations"):
            run([small_data, small_data[:8]], ["gaussian", "gaussian"], max_clusters=2,
                particles=5, rho=0.5, iterations=5, output_path=str(out))
        assert not out.exists()

    def test_mismatched_types(self, small_data, tmp_path):
        with pytest.raises(ValueError, match="datatypes"):
            run([small_data], ["gaussian", "gaussian"], max_clusters=2, particles=5,
                rho=0.5, iterations=5, output_path=str(tmp_path / "never.csv"))

    def test_mismatched_names(self, small_data, tmp_path):
        with pytest.raises(ValueError, match="names"):
            run([small_data], ["gaussian"], max_clusters=2, particles=5, rho=0.5,
                iterations=5, output_path=str(tmp_path / "never.csv"), dataset_names=["a", "b"])

    def test_non_numeric_data(self, tmp_path):
        out = tmp_path / "never.csv"
        text = np.array([["a", "b"]] * 10, dtype=object)
        with pytest.raises(ValueError, match="numeric"):
            run([text], ["categorical"], max_clusters=2, particles=5, rho=0.5,
                iterations=5, output_path=str(out))
        assert not out.exists()

    def test_unknown_family(self, small_data, tmp_path):
        out = tmp_path / "never.csv"
        with pytest.raises(ValueError, match="Unknown cluster family"):
            run([small_data], ["poisson"], max_clusters=2, particles=5, rho=0.5,
                iterations=5, output_path=str(out))
        assert not out.exists()


class TestIntegration:
    """Two datasets measured on the same units."""

    def test_shared_structure_run(self, shared_structure, tmp_path):
        gaussian, categorical = shared_structure
        out = tmp_path / "output.csv"
        result = run([gaussian, categorical], ["gaussian", "categorical"], max_clusters=3,
                     particles=10, rho=0.5, iterations=40, output_path=str(out),
                     dataset_names=["expr", "cnv"], seed=7)

        assert result.state.allocations.shape == (30, 2)
        assert result.state.phi[0] > 0
        assert len(result.swaps) == 40

        header = out.read_text().splitlines()[0].split(",")
        assert header[:4] == ["MassParameter_1", "MassParameter_2", "phi_1_2", "ll"]
        assert header[4] == "expr_n1"
        assert header[34] == "cnv_n1"
        assert len(header) == 4 + 60

    @staticmethod
    def _agreement_with_fixed_phi(monkeypatch, phi_value, seed, n_sweeps=30):
        """Final cross-dataset agreement of a run on pure noise with Φ pinned."""
        def pinned(state, rng, priors=None):
            update_hyperparameters(state, rng, priors)
            state.phi[:] = phi_value
            state.Z = update_partition_function(state)
            return state

        monkeypatch.setattr(sampler_module, "update_hyperparameters", pinned)

        rng = np.random.default_rng(1000 + seed)
        datasets = [rng.normal(size=(30, 2)), rng.normal(size=(30, 2))]
        config = SamplerConfig(max_clusters=3, n_particles=10, rho=0.5,
                               iterations=n_sweeps, seed=seed)
        mdi = ParticleMDI(datasets, [GaussianCluster, GaussianCluster], config, ["a", "b"])
        flags = [np.ones(2, dtype=bool), np.ones(2, dtype=bool)]
        for _ in range(n_sweeps):
            mdi.iterate(flags)
        allocations = mdi.state.allocations
        return float(np.mean(allocations[:, 0] == allocations[:, 1]))

    def test_concordance_drives_agreement(self, monkeypatch):
        """With uninformative data, agreement comes from Φ alone."""
        seeds = range(4)
        high = np.mean([self._agreement_with_fixed_phi(monkeypatch, 50.0, s) for s in seeds])
        baseline = np.mean([self._agreement_with_fixed_phi(monkeypatch, 0.0, s) for s in seeds])

        assert high > baseline + 0.25
        assert high > 0.6


class TestCLI:
    """Tests for the pmdi command line."""

    def test_run_command(self, small_data, tmp_path):
        data_path = tmp_path / "expr.csv"
        pd.DataFrame(small_data, columns=["a", "b"]).to_csv(data_path, index=False)
        out = tmp_path / "chain.csv"

        main(["run", str(data_path), "--types", "gaussian", "--clusters", "2",
              "--particles", "4", "--rho", "0.5", "--iterations", "3",
              "--output", str(out), "--seed", "1", "--quiet"])

        chain = read_chain(out)
        assert len(chain) == 3
        assert "expr_n10" in chain.columns

    def test_invalid_input_exits(self, small_data, tmp_path):
        data_path = tmp_path / "expr.csv"
        pd.DataFrame(small_data).to_csv(data_path, index=False)
        with pytest.raises(SystemExit) as exc:
            main(["run", str(data_path), "--clusters", "1", "--rho", "0.5",
                  "--output", str(tmp_path / "never.csv"), "--quiet"])
        assert exc.value.code == 2

    def test_text_columns_exit(self, tmp_path):
        data_path = tmp_path / "labels.csv"
        pd.DataFrame({"a": list("xyxyxyxyxy"), "b": list("pqrpqrpqrp")}).to_csv(data_path, index=False)
        out = tmp_path / "never.csv"
        with pytest.raises(SystemExit) as exc:
            main(["run", str(data_path), "--types", "categorical", "--clusters", "2",
                  "--particles", "4", "--rho", "0.5", "--iterations", "2",
                  "--output", str(out), "--quiet"])
        assert exc.value.code == 2
        assert not out.exists()

    def test_unwritable_output_exits(self, small_data, tmp_path):
        data_path = tmp_path / "expr.csv"
        pd.DataFrame(small_data).to_csv(data_path, index=False)
        out = tmp_path / "missing" / "dir" / "chain.csv"
        with pytest.raises(SystemExit) as exc:
            main(["run", str(data_path), "--clusters", "2", "--particles", "4",
                  "--rho", "0.5", "--iterations", "2", "--output", str(out), "--quiet"])
        assert exc.value.code == 1

    def test_summary_command(self, small_data, tmp_path, capsys):
        out = tmp_path / "chain.csv"
        run([small_data], ["gaussian"], max_clusters=2, particles=3, rho=0.5,
            iterations=4, output_path=str(out), seed=5)
        main(["summary", str(out), "--burn-in", "1"])
        assert "MassParameter_1" in capsys.readouterr().out
