"""
Simple high-level evaluation API.

This module evaluates energies, forces and uncertainties of a single
configuration with minimal setup: ghosts, the neighbor list and the
shared per-atom environments are built internally.

Example:
    >>> from mlpcore import evaluate
    >>> result = evaluate("model.txt", positions, species, box=Box.cubic(10.0))
    >>> print(result.energy, result.forces.shape)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .ml.model import CoefficientLayout, CoefficientModel, load_model
from .ml.potential import MLPotential
from .ml.uncertainty import CovarianceUncertainty, UncertaintyOutput
from .neighborlists import FullNeighborList
from .parallel.dispatcher import get_backend
from .parallel.ghosts import build_periodic_ghosts
from .system import AtomFrame

if TYPE_CHECKING:
    from .parallel.backends.base import ParallelBackend
    from .system import Box


@dataclass
class EvaluationResult:
    """Results of one evaluation."""

    energy: float
    energies: NDArray[np.floating]
    forces: NDArray[np.floating]

    # Periodic cells only (virial also for clusters when requested)
    virial: NDArray[np.floating] | None = None
    stress: NDArray[np.floating] | None = None

    # Covariance model only
    uncertainty: NDArray[np.floating] | None = None
    local_energy_uncertainty: NDArray[np.floating] | None = None

    n_atoms: int = 0
    n_ghosts: int = 0


def _as_model(
    model: CoefficientModel | str | os.PathLike,
    layout: CoefficientLayout,
    backend: ParallelBackend,
) -> CoefficientModel:
    """Load ``model`` if it is a path."""
    if isinstance(model, CoefficientModel):
        return model
    return load_model(model, layout=layout, backend=backend)


def make_frame(
    positions: ArrayLike,
    species: ArrayLike | None,
    box: Box | None,
    ghost_width: float,
) -> AtomFrame:
    """Build a frame, adding periodic ghost images when the box is periodic."""
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    if species is None:
        species = np.zeros(len(positions), dtype=np.int64)

    if box is not None and any(box.pbc):
        return build_periodic_ghosts(positions, species, box, ghost_width)
    return AtomFrame.create(positions, species=species, box=box)


def evaluate(
    model: CoefficientModel | str | os.PathLike,
    positions: ArrayLike,
    species: ArrayLike | None = None,
    box: Box | None = None,
    covariance: CoefficientModel | str | os.PathLike | None = None,
    covariance_layout: CoefficientLayout = CoefficientLayout.PER_SPECIES_PAIR,
    output: UncertaintyOutput = UncertaintyOutput.VARIANCE,
    directional: bool = False,
    compute_virial: bool = False,
    n_threads: int = 1,
    skin: float = 0.0,
    backend: ParallelBackend | str | None = None,
) -> EvaluationResult:
    """
    Evaluate one configuration.

    Args:
        model: Coefficient model or path to a model file.
        positions: Atomic positions, shape (N, 3).
        species: Species indices, shape (N,). Defaults to all zeros.
        box: Periodic cell. Periodic axes get ghost images.
        covariance: Covariance model (or path) for uncertainties.
        covariance_layout: Block layout of a covariance file.
        output: Report uncertainties as variances or standard deviations.
        directional: Per-component uncertainties.
        compute_virial: Compute the virial (always on for periodic cells).
        n_threads: Threads for per-atom descriptors.
        skin: Extra neighbor list distance.
        backend: Parallel backend.

    Returns:
        EvaluationResult with energies, forces and optional extras.
    """
    backend = get_backend(backend)
    model = _as_model(model, CoefficientLayout.PER_SPECIES, backend)

    periodic = box is not None and any(box.pbc)
    potential = MLPotential(
        model,
        compute_virial=compute_virial or periodic,
        n_threads=n_threads,
        backend=backend,
    )

    frame = make_frame(positions, species, box, ghost_width=model.cutoff + skin)
    neighbors = FullNeighborList(model.cutoff, skin=skin)
    neighbors.build(frame)

    environments = potential.environments(frame, neighbors)
    forces = potential.evaluate(frame, environments=environments)

    result = EvaluationResult(
        energy=forces.energy,
        energies=forces.energies,
        forces=forces.forces,
        virial=forces.virial,
        n_atoms=frame.n_local,
        n_ghosts=frame.n_ghost,
    )
    if periodic and forces.virial is not None:
        result.stress = -forces.virial / box.volume

    if covariance is not None:
        covariance = _as_model(covariance, covariance_layout, backend)
        if not covariance.same_descriptor(model):
            raise ValueError("covariance model uses a different descriptor than model")
        estimator = CovarianceUncertainty(
            covariance,
            output=output,
            directional=directional,
            backend=backend,
            descriptor=potential.descriptor,
        )
        result.uncertainty = estimator.evaluate(frame, environments=environments)
        result.local_energy_uncertainty = estimator.local_energy_uncertainty(
            frame, environments=environments
        )

    return result
