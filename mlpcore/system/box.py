"""Simulation box representation."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True)
class Box:
    """
    Periodic cell used to build ghost images.

    Supports orthorhombic and triclinic cells via a 3x3 matrix representation.
    Periodicity can be switched off per axis, in which case no images are
    generated along that lattice vector.

    Attributes:
        vectors: 3x3 array where rows are box vectors [a, b, c].
        pbc: Periodicity flag per lattice vector.
    """

    vectors: NDArray[np.floating]
    pbc: tuple[bool, bool, bool] = (True, True, True)

    def __post_init__(self) -> None:
        """Validate and convert vectors to proper shape."""
        vectors = np.asarray(self.vectors, dtype=np.float64)
        if vectors.shape == (3,):
            # Orthorhombic box specified by lengths
            vectors = np.diag(vectors)
        if vectors.shape != (3, 3):
            raise ValueError(f"Box vectors must be (3,) or (3, 3), got {vectors.shape}")
        if abs(np.linalg.det(vectors)) < 1e-12:
            raise ValueError("Box vectors are linearly dependent")
        pbc = tuple(bool(p) for p in np.broadcast_to(self.pbc, (3,)))
        object.__setattr__(self, "vectors", vectors)
        object.__setattr__(self, "pbc", pbc)

    @classmethod
    def orthorhombic(cls, lx: float, ly: float, lz: float) -> Box:
        """Create an orthorhombic box with given side lengths."""
        return cls(np.array([lx, ly, lz]))

    @classmethod
    def cubic(cls, length: float) -> Box:
        """Create a cubic box with given side length."""
        return cls.orthorhombic(length, length, length)

    @classmethod
    def triclinic(cls, vectors: ArrayLike) -> Box:
        """Create a triclinic box from 3x3 matrix of box vectors."""
        return cls(np.asarray(vectors))

    @property
    def lengths(self) -> NDArray[np.floating]:
        """Return box vector lengths [|a|, |b|, |c|]."""
        return np.linalg.norm(self.vectors, axis=1)

    @property
    def volume(self) -> float:
        """Return box volume."""
        return float(np.abs(np.linalg.det(self.vectors)))

    @property
    def heights(self) -> NDArray[np.floating]:
        """
        Return the perpendicular widths of the cell.

        The width along lattice vector ``a`` is the distance between the
        two faces spanned by ``b`` and ``c``.
        """
        a, b, c = self.vectors
        areas = np.array(
            [
                np.linalg.norm(np.cross(b, c)),
                np.linalg.norm(np.cross(c, a)),
                np.linalg.norm(np.cross(a, b)),
            ]
        )
        return self.volume / areas

    @property
    def is_orthorhombic(self) -> bool:
        """Check if box is orthorhombic (diagonal matrix)."""
        off_diag = self.vectors.copy()
        np.fill_diagonal(off_diag, 0)
        return np.allclose(off_diag, 0)

    def to_fractional(self, positions: ArrayLike) -> NDArray[np.floating]:
        """Convert Cartesian positions to fractional coordinates."""
        return np.asarray(positions, dtype=np.float64) @ np.linalg.inv(self.vectors)

    def wrap_positions(self, positions: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Wrap positions into the primary cell along periodic axes.

        Args:
            positions: Positions array of shape (N, 3).

        Returns:
            Wrapped positions array of shape (N, 3).
        """
        positions = np.asarray(positions, dtype=np.float64)
        fractional = self.to_fractional(positions)
        periodic = np.array(self.pbc)
        fractional[:, periodic] -= np.floor(fractional[:, periodic])
        return fractional @ self.vectors
