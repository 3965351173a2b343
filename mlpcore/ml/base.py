"""Base classes for ML components."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from .environment import Neighborhood


@dataclass(frozen=True)
class DescriptorResult:
    """
    Descriptor of one atom together with its neighbor derivatives.

    Row ``k`` of the derivative arrays refers to neighbor ``k`` of the
    :class:`Neighborhood` the descriptor was computed from.

    Attributes:
        values: Descriptor vector B, shape (n_features,).
        norm_squared: B . B.
        derivatives: dB / d(displacement), shape (K, 3, n_features).
        norm_derivatives: B . dB, shape (K, 3); half the gradient of
            ``norm_squared``.
    """

    values: NDArray[np.floating]
    norm_squared: float
    derivatives: NDArray[np.floating]
    norm_derivatives: NDArray[np.floating]

    @classmethod
    def empty(cls, n_features: int) -> DescriptorResult:
        """Return the descriptor of an atom with no neighbors."""
        return cls(
            values=np.zeros(n_features),
            norm_squared=0.0,
            derivatives=np.zeros((0, 3, n_features)),
            norm_derivatives=np.zeros((0, 3)),
        )

    @property
    def n_neighbors(self) -> int:
        """Number of neighbors with derivative rows."""
        return len(self.derivatives)


class Descriptor(ABC):
    """
    Abstract base class for atomic environment descriptors.

    Descriptors transform a cutoff-filtered neighborhood into a feature
    vector invariant to rotation and neighbor permutation, together with
    its exact derivatives with respect to every neighbor displacement.
    """

    @abstractmethod
    def compute(self, neighborhood: Neighborhood) -> DescriptorResult:
        """
        Compute the descriptor of one atom.

        Args:
            neighborhood: Filtered neighbors of the central atom.

        Returns:
            Descriptor values and derivatives.
        """
        ...

    @property
    @abstractmethod
    def n_features(self) -> int:
        """Number of descriptor features per atom."""
        ...

    @property
    @abstractmethod
    def cutoff(self) -> float:
        """Cutoff radius of the neighborhood."""
        ...
