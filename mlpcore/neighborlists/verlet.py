"""Full Verlet neighbor list over local and ghost atoms."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .base import NeighborList

if TYPE_CHECKING:
    from ..system import AtomFrame


class FullNeighborList(NeighborList):
    """
    Full Verlet neighbor list with skin distance.

    Every local atom gets every atom (local or ghost) within
    ``cutoff + skin``, so each pair appears once per local endpoint.
    Periodicity is carried by ghost images in the frame, so distances
    are plain Cartesian differences.

    The list is rebuilt when any atom has moved more than skin/2.

    Attributes:
        _cutoff: Interaction cutoff distance.
        skin: Additional buffer distance.
        _neighbors: Per-local-atom neighbor index arrays.
        _positions_at_build: Positions when list was last built.
    """

    def __init__(self, cutoff: float, skin: float = 0.3) -> None:
        """
        Initialize full neighbor list.

        Args:
            cutoff: Interaction cutoff distance.
            skin: Buffer distance for neighbor list validity.
        """
        if cutoff <= 0:
            raise ValueError(f"cutoff must be positive, got {cutoff}")
        if skin < 0:
            raise ValueError(f"skin must be non-negative, got {skin}")

        self._cutoff = cutoff
        self.skin = skin
        self._list_cutoff = cutoff + skin

        self._neighbors: list[NDArray[np.integer]] = []
        self._positions_at_build: NDArray[np.floating] | None = None
        self._frame: AtomFrame | None = None

    @property
    def cutoff(self) -> float:
        """Return the interaction cutoff distance."""
        return self._cutoff

    @property
    def list_cutoff(self) -> float:
        """Return the neighbor list cutoff (cutoff + skin)."""
        return self._list_cutoff

    @property
    def n_pairs(self) -> int:
        """Return the number of directed neighbor pairs."""
        return sum(len(nbrs) for nbrs in self._neighbors)

    @property
    def n_local(self) -> int:
        """Return the number of local atoms the list was built for."""
        return len(self._neighbors)

    def build(self, frame: AtomFrame) -> None:
        """
        Build the neighbor list from scratch.

        Uses O(N_local * N_all) distance calculations.

        Args:
            frame: Local + ghost atoms.
        """
        positions = frame.positions
        self._positions_at_build = positions.copy()
        self._frame = frame

        cutoff_sq = self._list_cutoff**2
        self._neighbors = []
        for i in range(frame.n_local):
            dr = positions - positions[i]
            r_sq = np.einsum("ij,ij->i", dr, dr)
            mask = r_sq < cutoff_sq
            mask[i] = False
            self._neighbors.append(np.flatnonzero(mask).astype(np.int64))

    def update_if_needed(self, positions: ArrayLike) -> bool:
        """
        Rebuild neighbor list if atoms have moved too far.

        The list is rebuilt if any atom has moved more than skin/2
        since the list was last built.

        Args:
            positions: Current local + ghost positions.

        Returns:
            True if the list was rebuilt.
        """
        if self._positions_at_build is None or self._frame is None:
            raise RuntimeError("Neighbor list has not been built yet")

        positions = np.asarray(positions, dtype=np.float64)
        if positions.shape != self._positions_at_build.shape:
            raise RuntimeError(
                f"positions shape {positions.shape} differs from build shape "
                f"{self._positions_at_build.shape}; rebuild with a new frame"
            )

        dr = positions - self._positions_at_build
        max_displacement = np.max(np.linalg.norm(dr, axis=1), initial=0.0)

        # Factor of 2 because two atoms could move toward each other
        if max_displacement > self.skin / 2:
            self.build(replace(self._frame, positions=positions))
            return True

        return False

    def get_neighbors(self, atom_index: int) -> NDArray[np.integer]:
        """
        Get neighbors of a specific local atom.

        Args:
            atom_index: Index of the local atom to query.

        Returns:
            Array of neighbor atom indices into the local + ghost arrays.
        """
        if self._positions_at_build is None:
            raise RuntimeError("Neighbor list has not been built yet")
        return self._neighbors[atom_index]
