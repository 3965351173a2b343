"""Base interface for neighbor lists."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

if TYPE_CHECKING:
    from ..system import AtomFrame


class NeighborList(ABC):
    """
    Abstract base class for neighbor list implementations.

    This is the host-engine side of the neighbor query: for every local
    atom it returns the indices (into the local + ghost arrays) of its
    geometric neighbors. The list is not filtered by the model cutoff;
    evaluators apply the cutoff themselves.
    """

    @abstractmethod
    def build(self, frame: AtomFrame) -> None:
        """
        Build the neighbor list from scratch.

        Args:
            frame: Local + ghost atoms of the current step.
        """
        ...

    @abstractmethod
    def update_if_needed(self, positions: ArrayLike) -> bool:
        """
        Update neighbor list if atoms have moved significantly.

        Args:
            positions: Current local + ghost positions, shape (N, 3).

        Returns:
            True if the list was rebuilt, False if it was still valid.
        """
        ...

    @abstractmethod
    def get_neighbors(self, atom_index: int) -> NDArray[np.integer]:
        """
        Get neighbors of a specific local atom.

        Args:
            atom_index: Index of the atom to query.

        Returns:
            Array of neighbor atom indices.
        """
        ...

    @property
    @abstractmethod
    def n_pairs(self) -> int:
        """Return the number of (directed) neighbor pairs."""
        ...

    @property
    @abstractmethod
    def cutoff(self) -> float:
        """Return the cutoff distance."""
        ...
