"""Normalized quadratic-form potential on power-spectrum descriptors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from ..forcefields.base import ForceProvider
from ..parallel.dispatcher import get_backend
from ..parallel.reverse_comm import reverse_frame
from .descriptor import PowerSpectrumDescriptor
from .environment import AtomEnvironment, compute_environments
from .scratch import ScratchArena

if TYPE_CHECKING:
    from ..neighborlists import NeighborList
    from ..parallel.backends.base import ParallelBackend
    from ..system import AtomFrame
    from .base import Descriptor
    from .model import CoefficientModel

log = logging.getLogger(__name__)

# Virial components in output order: xx, yy, zz, xy, xz, yz
VIRIAL_INDEX = ((0, 0), (1, 1), (2, 2), (0, 1), (0, 2), (1, 2))


@dataclass
class ForceResult:
    """
    Output of one force evaluation.

    Attributes:
        energy: Total energy summed over local atoms of all ranks.
        energies: Energy of each local atom, shape (n_local,).
        forces: Forces on local atoms, shape (n_local, 3).
        virial: Virial ``sum d_ij (x) f_ij`` summed over ranks, components
            ``xx, yy, zz, xy, xz, yz``; None unless requested.
    """

    energy: float
    energies: NDArray[np.floating]
    forces: NDArray[np.floating]
    virial: NDArray[np.floating] | None = None


class MLPotential(ForceProvider):
    """
    Machine learning potential as a ForceProvider.

    The local energy of atom ``i`` with species ``s`` is the normalized
    quadratic form

        E_i = B^T M_s B / (B . B)

    of its power-spectrum descriptor ``B``. Forces come from the quotient
    rule; every pair contribution is added to the neighbor and subtracted
    from the central atom, so the total force vanishes exactly.

    Example:
        model = load_model("model.txt")
        potential = MLPotential(model, compute_virial=True)
        result = potential.evaluate(frame, neighbors)
    """

    def __init__(
        self,
        model: CoefficientModel,
        compute_virial: bool = False,
        n_threads: int = 1,
        backend: ParallelBackend | str | None = None,
        descriptor: Descriptor | None = None,
    ) -> None:
        """
        Initialize ML potential.

        Args:
            model: Coefficient model.
            compute_virial: Accumulate the 6-component virial.
            n_threads: Threads used for per-atom descriptors.
            backend: Parallel backend for reverse communication and sums.
            descriptor: Descriptor matching ``model``. Built from the model
                hyperparameters when omitted.
        """
        if n_threads < 1:
            raise ValueError(f"n_threads must be >= 1, got {n_threads}")

        self.model = model
        self.descriptor = descriptor or PowerSpectrumDescriptor.from_model(model)
        if self.descriptor.n_features != model.n_descriptors:
            raise ValueError(
                f"descriptor has {self.descriptor.n_features} features, model "
                f"expects {model.n_descriptors}"
            )
        self.compute_virial = compute_virial
        self.n_threads = n_threads
        self.backend = get_backend(backend)
        self._scratch = ScratchArena()

    @property
    def cutoff(self) -> float:
        """Cutoff radius of the model."""
        return self.model.cutoff

    def environments(
        self, frame: AtomFrame, neighbors: NeighborList | None = None
    ) -> list[AtomEnvironment]:
        """
        Filter neighborhoods and compute descriptors of all local atoms.

        The result can be shared with a :class:`CovarianceUncertainty` built
        on the same descriptor.
        """
        self.model.check_species(frame.species)
        return compute_environments(frame, neighbors, self.descriptor, self.n_threads)

    def compute(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
    ) -> NDArray[np.floating]:
        """
        Compute ML forces.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``.

        Returns:
            Forces array, shape (n_local, 3).
        """
        return self.evaluate(frame, neighbors).forces

    def compute_with_energy(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
    ) -> tuple[NDArray[np.floating], float]:
        """
        Compute ML forces and energy.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``.

        Returns:
            Tuple of (forces, energy).
        """
        result = self.evaluate(frame, neighbors)
        return result.forces, result.energy

    def evaluate(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
        environments: list[AtomEnvironment] | None = None,
    ) -> ForceResult:
        """
        Compute energies, forces and (optionally) the virial.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``.
            environments: Precomputed environments of ``frame``.

        Returns:
            ForceResult for the local atoms.
        """
        if environments is None:
            environments = self.environments(frame, neighbors)
        if len(environments) != frame.n_local:
            raise RuntimeError(
                f"got {len(environments)} environments for "
                f"{frame.n_local} local atoms"
            )

        self._scratch.begin_step(frame.n_all)
        forces = self._scratch.get("forces", 3)
        energies = np.zeros(frame.n_local)
        virial = np.zeros((3, 3)) if self.compute_virial else None

        for env in environments:
            energy, pair_forces = self.atom_terms(env)
            energies[env.index] = energy
            if pair_forces is None:
                continue

            np.add.at(forces, env.neighborhood.indices, pair_forces)
            forces[env.index] -= pair_forces.sum(axis=0)

            if virial is not None:
                virial += env.neighborhood.displacements.T @ pair_forces

        reverse_frame(self.backend, frame, forces)

        energy = float(self.backend.allreduce_sum(np.array([energies.sum()]))[0])
        if virial is not None:
            virial = self.backend.allreduce_sum(
                np.array([virial[a, b] for a, b in VIRIAL_INDEX])
            )

        log.debug(
            "evaluated %d local atoms (%d ghosts), energy %.8g",
            frame.n_local,
            frame.n_ghost,
            energy,
        )
        return ForceResult(
            energy=energy,
            energies=energies,
            forces=forces[: frame.n_local].copy(),
            virial=virial,
        )

    def atom_terms(
        self, env: AtomEnvironment
    ) -> tuple[float, NDArray[np.floating] | None]:
        """
        Local energy and pair forces of one atom.

        Args:
            env: Environment of the central atom.

        Returns:
            Tuple of energy and pair forces ``f_ij`` on each neighbor,
            shape (K, 3). Isolated atoms give ``(0.0, None)``.
        """
        desc = env.descriptor
        if desc.norm_squared == 0.0:
            return 0.0, None

        matrix = self.model.matrix_for(env.species)
        b = desc.values
        norm = desc.norm_squared

        mb = matrix @ b
        energy = float(b @ mb) / norm

        # d(B^T M B) = dB^T (M + M^T) B
        grad_b = mb + matrix.T @ b
        pair_forces = (
            -(desc.derivatives @ grad_b) + 2.0 * energy * desc.norm_derivatives
        ) / norm
        return energy, pair_forces
