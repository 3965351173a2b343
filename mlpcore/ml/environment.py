"""
Cutoff-filtered neighborhoods and per-atom environments.

The cutoff filter runs exactly once per atom and step. The resulting
ordered neighbor subset is shared by the descriptor, force and
uncertainty passes, so derivative row ``k`` always refers to the same
neighbor everywhere.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..neighborlists import FullNeighborList
from .base import Descriptor, DescriptorResult

if TYPE_CHECKING:
    from ..neighborlists import NeighborList
    from ..system import AtomFrame

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Neighborhood:
    """
    Ordered neighbors of one atom strictly inside the cutoff.

    Attributes:
        center: Row of the central atom.
        indices: Rows of the neighbors, shape (K,).
        displacements: x_j - x_center, shape (K, 3).
        distances: |x_j - x_center|, shape (K,).
        species: Species of each neighbor, shape (K,).
    """

    center: int
    indices: NDArray[np.integer]
    displacements: NDArray[np.floating]
    distances: NDArray[np.floating]
    species: NDArray[np.integer]

    @property
    def n_neighbors(self) -> int:
        """Number of neighbors inside the cutoff."""
        return len(self.indices)

    @classmethod
    def from_candidates(
        cls,
        center: int,
        candidates: ArrayLike,
        positions: NDArray[np.floating],
        species: NDArray[np.integer],
        cutoff: float,
    ) -> Neighborhood:
        """
        Filter host-provided candidate neighbors by the cutoff.

        The candidate order is preserved.

        Args:
            center: Row of the central atom.
            candidates: Candidate neighbor rows (not cutoff-filtered).
            positions: Local + ghost positions.
            species: Local + ghost species.
            cutoff: Cutoff radius; neighbors need ``r^2 < cutoff^2``.

        Returns:
            Filtered neighborhood.
        """
        candidates = np.asarray(candidates, dtype=np.int64)
        displacements = positions[candidates] - positions[center]
        r_sq = np.einsum("kc,kc->k", displacements, displacements)
        inside = r_sq < cutoff * cutoff

        return cls(
            center=center,
            indices=candidates[inside],
            displacements=displacements[inside],
            distances=np.sqrt(r_sq[inside]),
            species=species[candidates[inside]],
        )


@dataclass(frozen=True)
class AtomEnvironment:
    """
    Neighborhood of a local atom and its descriptor.

    Attributes:
        index: Row of the central atom.
        species: Species of the central atom.
        neighborhood: Filtered neighbors.
        descriptor: Descriptor computed from ``neighborhood``.
    """

    index: int
    species: int
    neighborhood: Neighborhood
    descriptor: DescriptorResult

    def __post_init__(self) -> None:
        """Check that descriptor rows match the neighborhood."""
        if self.descriptor.n_neighbors != self.neighborhood.n_neighbors:
            raise RuntimeError(
                f"atom {self.index}: descriptor has "
                f"{self.descriptor.n_neighbors} derivative rows but the "
                f"neighborhood has {self.neighborhood.n_neighbors} neighbors"
            )

    @property
    def is_isolated(self) -> bool:
        """True when the descriptor has zero norm."""
        return self.descriptor.norm_squared == 0.0


def compute_environments(
    frame: AtomFrame,
    neighbors: NeighborList | None,
    descriptor: Descriptor,
    n_threads: int = 1,
) -> list[AtomEnvironment]:
    """
    Build the environment of every local atom.

    Atoms are independent, so with ``n_threads > 1`` they are evaluated in
    a thread pool. Results come back in atom order.

    Args:
        frame: Local + ghost atoms.
        neighbors: Host neighbor list built for ``frame``. A full list at
            the descriptor cutoff is built when omitted.
        descriptor: Descriptor to evaluate.
        n_threads: Number of worker threads.

    Returns:
        One environment per local atom.
    """
    if n_threads < 1:
        raise ValueError(f"n_threads must be >= 1, got {n_threads}")

    if neighbors is None:
        neighbors = FullNeighborList(descriptor.cutoff, skin=0.0)
        neighbors.build(frame)

    positions = frame.positions
    species = frame.species
    cutoff = descriptor.cutoff

    def environment(i: int) -> AtomEnvironment:
        neighborhood = Neighborhood.from_candidates(
            i, neighbors.get_neighbors(i), positions, species, cutoff
        )
        return AtomEnvironment(
            index=i,
            species=int(species[i]),
            neighborhood=neighborhood,
            descriptor=descriptor.compute(neighborhood),
        )

    if n_threads == 1 or frame.n_local < 2:
        environments = [environment(i) for i in range(frame.n_local)]
    else:
        with ThreadPoolExecutor(max_workers=n_threads) as executor:
            environments = list(executor.map(environment, range(frame.n_local)))

    log.debug(
        "built %d environments (%d neighbors inside cutoff)",
        len(environments),
        sum(env.neighborhood.n_neighbors for env in environments),
    )
    return environments
