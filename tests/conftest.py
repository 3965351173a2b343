"""Shared fixtures: coefficient models, model files and atom clusters."""

import numpy as np
import pytest

from mlpcore.ml.basis import CutoffFunction, RadialBasis
from mlpcore.ml.descriptor import descriptor_size
from mlpcore.ml.model import CoefficientLayout, CoefficientModel


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(20240917)


@pytest.fixture
def make_model(rng):
    """Factory for random coefficient models."""

    def _make(
        n_species=1,
        n_max=2,
        l_max=1,
        cutoff=3.0,
        cutoff_function=CutoffFunction.QUADRATIC,
        layout=CoefficientLayout.PER_SPECIES,
        positive=False,
        symmetric=True,
    ):
        nd = descriptor_size(n_species, n_max, l_max)
        n_blocks = layout.n_blocks(n_species)
        if positive and layout is CoefficientLayout.PER_SPECIES_PAIR:
            # Blocks of one positive semi-definite covariance matrix
            factor = rng.normal(size=(n_species * nd, n_species * nd))
            full = factor @ factor.T / (n_species * nd)
            matrices = (
                full.reshape(n_species, nd, n_species, nd)
                .transpose(0, 2, 1, 3)
                .reshape(n_blocks, nd, nd)
            )
        else:
            matrices = rng.normal(size=(n_blocks, nd, nd))
            if positive:
                matrices = matrices @ matrices.transpose(0, 2, 1) / nd
            elif symmetric:
                matrices = 0.5 * (matrices + matrices.transpose(0, 2, 1))

        return CoefficientModel(
            radial_basis=RadialBasis.CHEBYSHEV,
            cutoff_function=cutoff_function,
            n_species=n_species,
            n_max=n_max,
            l_max=l_max,
            cutoff=cutoff,
            matrices=matrices,
            layout=layout,
        )

    return _make


@pytest.fixture
def model_file(tmp_path):
    """Factory writing a model file from header values and coefficients."""

    def _write(
        coefficients,
        n_species=1,
        n_max=1,
        l_max=0,
        beta_size=None,
        basis="chebyshev",
        cutoff_function="quadratic",
        cutoff="3.0",
        per_line=4,
        name="model.txt",
    ):
        coefficients = [str(c) for c in coefficients]
        if beta_size is None:
            nd = descriptor_size(n_species, n_max, l_max)
            beta_size = nd * nd
        lines = [
            "DATE: today UNITS: metal CONTRIBUTOR: tests",
            basis,
            f"{n_species} {n_max} {l_max} {beta_size}",
            cutoff_function,
            str(cutoff),
        ]
        for start in range(0, len(coefficients), per_line):
            lines.append(" ".join(coefficients[start : start + per_line]))

        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n")
        return path

    return _write


@pytest.fixture
def cluster(rng):
    """Random 8-atom cluster with two species and no close contacts."""
    positions = []
    while len(positions) < 8:
        trial = rng.uniform(0.0, 3.5, size=3)
        if all(np.linalg.norm(trial - p) > 0.9 for p in positions):
            positions.append(trial)
    species = np.array([0, 1, 0, 1, 1, 0, 0, 1])
    return np.array(positions), species
