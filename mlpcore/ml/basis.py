"""
Radial basis sets and smooth cutoff envelopes.

Both are closed sets of strategies selected by name in the model file and
resolved once at load time. Each evaluation returns values together with
their derivatives with respect to the distance ``r``.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from numpy.typing import NDArray


class RadialBasis(Enum):
    """Supported radial basis sets."""

    CHEBYSHEV = "chebyshev"

    @classmethod
    def from_name(cls, name: str) -> RadialBasis:
        """
        Resolve a basis from its model-file name.

        Raises:
            ValueError: If the name is not a supported basis.
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            supported = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unknown radial basis '{name}'. Supported: {supported}"
            ) from None

    def evaluate(
        self,
        r: NDArray[np.floating],
        n_max: int,
        hyps: tuple[float, float],
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """
        Evaluate ``n_max`` basis functions at distances ``r``.

        Args:
            r: Distances, shape (K,).
            n_max: Number of basis functions.
            hyps: Support interval ``(r1, r2)``.

        Returns:
            Tuple of values and d/dr derivatives, each shape (K, n_max).
        """
        if self is RadialBasis.CHEBYSHEV:
            return _chebyshev(r, n_max, hyps)
        raise NotImplementedError(self)


class CutoffFunction(Enum):
    """Supported cutoff envelopes; value and slope vanish at the cutoff."""

    QUADRATIC = "quadratic"
    COSINE = "cosine"

    @classmethod
    def from_name(cls, name: str) -> CutoffFunction:
        """
        Resolve a cutoff envelope from its model-file name.

        Raises:
            ValueError: If the name is not a supported envelope.
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            supported = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unknown cutoff function '{name}'. Supported: {supported}"
            ) from None

    def evaluate(
        self, r: NDArray[np.floating], cutoff: float
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """
        Evaluate the envelope at distances ``r``.

        Args:
            r: Distances, shape (K,).
            cutoff: Cutoff radius.

        Returns:
            Tuple of values and d/dr derivatives, each shape (K,).
        """
        r = np.asarray(r, dtype=np.float64)
        inside = r <= cutoff

        if self is CutoffFunction.QUADRATIC:
            rdiff = cutoff - r
            values = rdiff * rdiff
            derivs = -2.0 * rdiff
        elif self is CutoffFunction.COSINE:
            arg = np.pi * r / cutoff
            values = 0.5 * (np.cos(arg) + 1.0)
            derivs = -np.pi * np.sin(arg) / (2.0 * cutoff)
        else:
            raise NotImplementedError(self)

        return np.where(inside, values, 0.0), np.where(inside, derivs, 0.0)


def _chebyshev(
    r: NDArray[np.floating], n_max: int, hyps: tuple[float, float]
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Chebyshev polynomials of the first kind on ``x = (r - r1) / (r2 - r1)``."""
    r = np.asarray(r, dtype=np.float64)
    r1, r2 = hyps
    scale = 1.0 / (r2 - r1)
    x = (r - r1) * scale

    values = np.zeros((len(r), n_max))
    derivs = np.zeros((len(r), n_max))

    for n in range(n_max):
        if n == 0:
            values[:, 0] = 1.0
        elif n == 1:
            values[:, 1] = x
            derivs[:, 1] = scale
        else:
            values[:, n] = 2.0 * x * values[:, n - 1] - values[:, n - 2]
            derivs[:, n] = (
                2.0 * values[:, n - 1] * scale
                + 2.0 * x * derivs[:, n - 1]
                - derivs[:, n - 2]
            )

    # Outside the support the basis is switched off
    outside = (r < r1) | (r > r2)
    values[outside] = 0.0
    derivs[outside] = 0.0
    return values, derivs
