"""Base interface for force providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from ..neighborlists import NeighborList
    from ..system import AtomFrame


class ForceProvider(ABC):
    """
    Abstract base class for all force computation modules.

    A force provider receives the atoms visible to this process (local
    atoms followed by ghosts) and returns forces on the local atoms only.
    Contributions that land on ghost rows are folded back onto their
    owners before returning.
    """

    @abstractmethod
    def compute(
        self, frame: AtomFrame, neighbors: NeighborList | None = None
    ) -> NDArray[np.floating]:
        """
        Compute forces on all local atoms.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list built for ``frame``. Built
                internally when omitted.

        Returns:
            Forces array of shape (n_local, 3).
        """
        ...

    def compute_with_energy(
        self, frame: AtomFrame, neighbors: NeighborList | None = None
    ) -> tuple[NDArray[np.floating], float]:
        """
        Compute forces and potential energy.

        Default implementation computes forces only; subclasses should
        override when they can provide the energy.

        Args:
            frame: Local + ghost atoms.
            neighbors: Host neighbor list.

        Returns:
            Tuple of (forces array, potential energy).
        """
        forces = self.compute(frame, neighbors)
        return forces, 0.0

    @property
    def comm_reverse(self) -> int:
        """Number of values per atom folded back from ghosts."""
        return 3
