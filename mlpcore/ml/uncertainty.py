"""Uncertainty estimation for ML potentials."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

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


class UncertaintyOutput(Enum):
    """Quantity reported per atom."""

    VARIANCE = "variance"
    STD = "std"


class UncertaintyEstimator(ABC):
    """
    Abstract base class for uncertainty estimation.

    Uncertainty estimation is critical for:
    - Active learning (identifying when to add training data)
    - Knowing when ML predictions are unreliable
    - Triggering fallback to reference calculations
    """

    @abstractmethod
    def estimate(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
    ) -> float:
        """
        Estimate uncertainty for the current configuration.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``.

        Returns:
            Scalar uncertainty value (higher = less confident).
        """
        ...

    @abstractmethod
    def estimate_per_atom(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
    ) -> NDArray[np.floating]:
        """
        Estimate per-atom uncertainties.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``.

        Returns:
            Per-atom uncertainties of the local atoms.
        """
        ...


class CovarianceUncertainty(UncertaintyEstimator):
    """
    Force-uncertainty proxy from a descriptor-space covariance model.

    The descriptor of each atom is normalized, ``b = B / |B|``. The
    Jacobian of the summed normalized descriptors with respect to every
    atom position is accumulated per central-atom species block,

        J[k, c, s] = -d(sum_{i: s_i = s} b_i) / d x_k,c

    folded from ghosts onto owners, and contracted with the block
    covariance matrix:

        v[k, c] = sum_{s1, s2} J[k, c, s1]^T C[s1, s2] J[k, c, s2]

    Example:
        covariance = load_model("covariance.txt", CoefficientLayout.PER_SPECIES_PAIR)
        estimator = CovarianceUncertainty(covariance, directional=True)
        variances = estimator.estimate_per_atom(frame, neighbors)
    """

    def __init__(
        self,
        model: CoefficientModel,
        output: UncertaintyOutput = UncertaintyOutput.VARIANCE,
        directional: bool = False,
        n_threads: int = 1,
        backend: ParallelBackend | str | None = None,
        descriptor: Descriptor | None = None,
    ) -> None:
        """
        Initialize covariance uncertainty estimator.

        Args:
            model: Covariance model (per species or per species pair).
            output: Report variances or standard deviations.
            directional: One value per Cartesian component instead of
                their sum.
            n_threads: Threads used for per-atom descriptors.
            backend: Parallel backend for reverse communication.
            descriptor: Descriptor matching ``model``.
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
        self.output = UncertaintyOutput(output)
        self.directional = directional
        self.n_threads = n_threads
        self.backend = get_backend(backend)

        self._covariance = model.covariance_matrix()
        self._scratch = ScratchArena()

    @property
    def comm_reverse(self) -> int:
        """Number of uncertainty values per atom."""
        return 3 if self.directional else 1

    @property
    def jacobian_comm_size(self) -> int:
        """Number of Jacobian values per atom folded back from ghosts."""
        return 3 * self.model.n_species * self.model.n_descriptors

    def environments(
        self, frame: AtomFrame, neighbors: NeighborList | None = None
    ) -> list[AtomEnvironment]:
        """Filter neighborhoods and compute descriptors of all local atoms."""
        self.model.check_species(frame.species)
        return compute_environments(frame, neighbors, self.descriptor, self.n_threads)

    def estimate(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
    ) -> float:
        """Return the largest per-atom uncertainty over all ranks."""
        per_atom = self.estimate_per_atom(frame, neighbors)
        return self.backend.allreduce_max(float(np.max(per_atom, initial=0.0)))

    def estimate_per_atom(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
    ) -> NDArray[np.floating]:
        """Per-atom uncertainty, shape (n_local, 3) or (n_local,)."""
        return self.evaluate(frame, neighbors)

    def evaluate(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
        environments: list[AtomEnvironment] | None = None,
    ) -> NDArray[np.floating]:
        """
        Compute the uncertainty of every local atom.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``.
            environments: Precomputed environments of ``frame``.

        Returns:
            Shape (n_local, 3) when directional, otherwise (n_local,).
        """
        jacobian = self.jacobian(frame, neighbors, environments)

        n_local = frame.n_local
        flat = jacobian[:n_local].reshape(n_local, 3, -1)
        variance = np.abs(np.einsum("kcp,pq,kcq->kc", flat, self._covariance, flat))

        if not self.directional:
            variance = variance.sum(axis=1)
        if self.output is UncertaintyOutput.STD:
            return np.sqrt(variance)
        return variance

    def jacobian(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
        environments: list[AtomEnvironment] | None = None,
    ) -> NDArray[np.floating]:
        """
        Accumulate the normalized-descriptor Jacobian and fold ghosts.

        Returns:
            Array of shape (n_all, 3, n_species, n_descriptors); ghost rows
            are zero on return.
        """
        if environments is None:
            environments = self.environments(frame, neighbors)
        if len(environments) != frame.n_local:
            raise RuntimeError(
                f"got {len(environments)} environments for "
                f"{frame.n_local} local atoms"
            )

        self._scratch.begin_step(frame.n_all)
        jacobian = self._scratch.get(
            "jacobian", 3, self.model.n_species, self.model.n_descriptors
        )

        for env in environments:
            grads = normalized_gradients(env)
            if grads is None:
                continue
            block = jacobian[:, :, env.species]
            block[env.index] += grads.sum(axis=0)
            np.add.at(block, env.neighborhood.indices, -grads)

        reverse_frame(self.backend, frame, jacobian)
        return jacobian

    def local_energy_uncertainty(
        self,
        frame: AtomFrame,
        neighbors: NeighborList | None = None,
        environments: list[AtomEnvironment] | None = None,
    ) -> NDArray[np.floating]:
        """
        Per-atom local-energy uncertainty ``sqrt(|b^T C_ss b|)``.

        Isolated atoms get zero.

        Returns:
            Shape (n_local,).
        """
        if environments is None:
            environments = self.environments(frame, neighbors)

        result = np.zeros(frame.n_local)
        for env in environments:
            desc = env.descriptor
            if desc.norm_squared == 0.0:
                continue
            block = self.model.block(env.species, env.species)
            quad = desc.values @ block @ desc.values
            result[env.index] = np.sqrt(abs(quad) / desc.norm_squared)
        return result


def normalized_gradients(env: AtomEnvironment) -> NDArray[np.floating] | None:
    """
    Derivatives of ``B / |B|`` with respect to each neighbor displacement.

    Returns:
        Shape (K, 3, n_descriptors), or None for an isolated atom.
    """
    desc = env.descriptor
    norm = desc.norm_squared
    if norm == 0.0:
        return None
    return (
        desc.derivatives - desc.norm_derivatives[:, :, None] * desc.values / norm
    ) / np.sqrt(norm)
