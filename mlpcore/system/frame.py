"""Per-step atom data handed over by the host engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .box import Box

if TYPE_CHECKING:
    from ..parallel.reverse_comm import ReversePlan


@dataclass
class AtomFrame:
    """
    Snapshot of the atoms visible to one process during one step.

    The first ``n_local`` rows are atoms owned by this process; the
    remaining rows are ghost copies of atoms owned elsewhere (or periodic
    images of local atoms). Ghost rows are read-only inputs: partial
    results accumulated on them are folded back through ``plan``.

    Attributes:
        positions: Positions of local + ghost atoms, shape (N, 3).
        species: Species index per atom (0-based), shape (N,).
        tags: Global atom ids, shape (N,). Ghosts carry their owner's tag.
        n_local: Number of owned atoms.
        box: Periodic cell, if any.
        plan: Reverse-communication plan for the ghost rows.
    """

    positions: NDArray[np.floating]
    species: NDArray[np.integer]
    tags: NDArray[np.integer]
    n_local: int
    box: Box | None = None
    plan: ReversePlan | None = None

    def __post_init__(self) -> None:
        """Validate and convert arrays."""
        self.positions = np.asarray(self.positions, dtype=np.float64)
        self.species = np.asarray(self.species, dtype=np.int64)
        self.tags = np.asarray(self.tags, dtype=np.int64)

        n_atoms = len(self.species)
        if self.positions.shape != (n_atoms, 3):
            raise ValueError(
                f"positions shape {self.positions.shape} incompatible with "
                f"{n_atoms} atoms"
            )
        if self.tags.shape != (n_atoms,):
            raise ValueError(
                f"tags shape {self.tags.shape} incompatible with {n_atoms} atoms"
            )
        if not 0 <= self.n_local <= n_atoms:
            raise ValueError(f"n_local={self.n_local} outside [0, {n_atoms}]")
        if n_atoms and self.species.min() < 0:
            raise ValueError("species indices must be non-negative")

    @property
    def n_all(self) -> int:
        """Return number of local + ghost atoms."""
        return len(self.species)

    @property
    def n_ghost(self) -> int:
        """Return number of ghost atoms."""
        return self.n_all - self.n_local

    @classmethod
    def create(
        cls,
        positions: ArrayLike,
        species: ArrayLike | None = None,
        tags: ArrayLike | None = None,
        n_local: int | None = None,
        box: Box | None = None,
    ) -> AtomFrame:
        """
        Create a frame with optional species/tag initialization.

        Args:
            positions: Atomic positions, shape (N, 3).
            species: Species indices, shape (N,). Defaults to zeros.
            tags: Global atom ids, shape (N,). Defaults to 0..N-1.
            n_local: Number of owned atoms. Defaults to N (no ghosts).
            box: Periodic cell.

        Returns:
            New AtomFrame instance.
        """
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        n_atoms = len(positions)

        if species is None:
            species = np.zeros(n_atoms, dtype=np.int64)
        if tags is None:
            tags = np.arange(n_atoms, dtype=np.int64)
        if n_local is None:
            n_local = n_atoms

        return cls(
            positions=positions,
            species=species,
            tags=tags,
            n_local=n_local,
            box=box,
        )
