#!/usr/bin/env python
"""
Quick start example - evaluate a coefficient model on a small crystal.

A random two-species model and a matching covariance model are written
to a temporary directory, loaded back and evaluated on a periodic cell.

Usage:
    python examples/quickstart.py
"""

import tempfile
from pathlib import Path

import numpy as np

from mlpcore import Box, CoefficientLayout, CoefficientModel, evaluate
from mlpcore.ml import CutoffFunction, RadialBasis, UncertaintyOutput, descriptor_size
from mlpcore.ml.model import write_model


def random_model(rng, n_species, n_max, l_max, cutoff, layout):
    """Random symmetric positive semi-definite blocks."""
    nd = descriptor_size(n_species, n_max, l_max)
    blocks = rng.normal(size=(layout.n_blocks(n_species), nd, nd))
    return CoefficientModel(
        radial_basis=RadialBasis.CHEBYSHEV,
        cutoff_function=CutoffFunction.COSINE,
        n_species=n_species,
        n_max=n_max,
        l_max=l_max,
        cutoff=cutoff,
        matrices=blocks @ blocks.transpose(0, 2, 1) / nd,
        layout=layout,
    )


def main():
    print("=" * 60)
    print("mlpcore Quick Start")
    print("=" * 60)

    rng = np.random.default_rng(7)

    # Rock-salt-like cell: 8 atoms, alternating species
    a = 4.2
    frac = np.array(
        [[i, j, k] for i in (0, 0.5) for j in (0, 0.5) for k in (0, 0.5)]
    )
    positions = frac * a + rng.normal(scale=0.05, size=frac.shape)
    species = (2 * frac.sum(axis=1)).astype(int) % 2
    box = Box.cubic(a)

    with tempfile.TemporaryDirectory() as tmp:
        model_path = Path(tmp) / "model.txt"
        covariance_path = Path(tmp) / "covariance.txt"

        write_model(
            model_path,
            random_model(rng, 2, 3, 2, 3.5, CoefficientLayout.PER_SPECIES),
        )
        write_model(
            covariance_path,
            random_model(rng, 2, 3, 2, 3.5, CoefficientLayout.PER_SPECIES_PAIR),
        )

        # 1. Energy, forces and stress
        print("\n1. Energy and forces:")
        print("-" * 40)
        result = evaluate(model_path, positions, species, box=box)
        print(f"   Energy:          {result.energy:.6f}")
        print(f"   Ghost atoms:     {result.n_ghosts}")
        print(f"   Net force:       {np.abs(result.forces.sum(axis=0)).max():.2e}")
        print(f"   Stress (xx):     {result.stress[0]:.6f}")

        # 2. Force uncertainties
        print("\n2. Force uncertainties (standard deviation):")
        print("-" * 40)
        result = evaluate(
            model_path,
            positions,
            species,
            box=box,
            covariance=covariance_path,
            output=UncertaintyOutput.STD,
            directional=True,
        )
        for i, sigma in enumerate(result.uncertainty):
            print(f"   atom {i} (species {species[i]}): {np.round(sigma, 4)}")

    print("\n" + "=" * 60)
    print("Done.")
    print("=" * 60)


if __name__ == "__main__":
    main()
