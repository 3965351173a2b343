"""
Real spherical harmonics with Cartesian gradients.

The harmonics are built from the standard recurrence for real regular
solid harmonics (Racah normalization) evaluated on the unit bond vector,
then scaled to orthonormality. Gradients are propagated through the same
recurrence and finally projected onto the tangent plane of the sphere,
which gives the derivative with respect to the raw displacement.

Channel ordering is ``l * l + l + m`` for ``m = -l..l``.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray


def n_harmonics(l_max: int) -> int:
    """Return the number of (l, m) channels up to ``l_max``."""
    return (l_max + 1) ** 2


def harmonic_index(l: int, m: int) -> int:  # noqa: E741
    """Return the channel index of ``Y_lm``."""
    return l * l + l + m


def spherical_harmonics(
    displacements: ArrayLike, l_max: int
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """
    Evaluate orthonormal real spherical harmonics of bond directions.

    Args:
        displacements: Bond vectors, shape (K, 3). Must be non-zero.
        l_max: Maximum angular momentum.

    Returns:
        Tuple of:
        - values ``Y_lm(r̂)``, shape (K, (l_max+1)^2)
        - gradients ``dY_lm / dr``, shape (K, (l_max+1)^2, 3)
    """
    if l_max < 0:
        raise ValueError(f"l_max must be non-negative, got {l_max}")

    displacements = np.asarray(displacements, dtype=np.float64).reshape(-1, 3)
    r = np.linalg.norm(displacements, axis=1)
    if np.any(r == 0.0):
        raise ValueError("spherical harmonics are undefined for zero-length bonds")

    unit = displacements / r[:, None]
    values, grads = _solid_harmonics(unit, l_max)

    for l in range(l_max + 1):  # noqa: E741
        block = slice(l * l, (l + 1) * (l + 1))
        norm = np.sqrt((2 * l + 1) / (4.0 * np.pi))
        values[:, block] *= norm
        grads[:, block] *= norm

    # d/dr S(r/|r|) = (I - u u^T) grad_u S / |r|
    radial_part = np.einsum("khc,kc->kh", grads, unit)
    grads = (grads - radial_part[:, :, None] * unit[:, None, :]) / r[:, None, None]

    return values, grads


def _solid_harmonics(
    unit: NDArray[np.floating], l_max: int
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Racah-normalized real solid harmonics of ``unit`` and their gradients."""
    n = len(unit)
    x, y, z = unit[:, 0], unit[:, 1], unit[:, 2]
    rsq = np.einsum("kc,kc->k", unit, unit)

    values = np.zeros((n, n_harmonics(l_max)))
    grads = np.zeros((n, n_harmonics(l_max), 3))
    values[:, 0] = 1.0

    for l in range(l_max):  # noqa: E741
        # Sectoral terms S_{l+1, +-(l+1)}
        top = harmonic_index(l + 1, l + 1)
        bottom = harmonic_index(l + 1, -(l + 1))
        cos_src = harmonic_index(l, l)
        sin_src = harmonic_index(l, -l)
        coef = np.sqrt((2.0 if l == 0 else 1.0) * (2 * l + 1) / (2 * l + 2))
        mix = 0.0 if l == 0 else 1.0

        sc, ss = values[:, cos_src], values[:, sin_src]
        gc, gs = grads[:, cos_src], grads[:, sin_src]

        values[:, top] = coef * (x * sc - mix * y * ss)
        grads[:, top] = coef * (x[:, None] * gc - mix * y[:, None] * gs)
        grads[:, top, 0] += coef * sc
        grads[:, top, 1] -= coef * mix * ss

        values[:, bottom] = coef * (y * sc + mix * x * ss)
        grads[:, bottom] = coef * (y[:, None] * gc + mix * x[:, None] * gs)
        grads[:, bottom, 1] += coef * sc
        grads[:, bottom, 0] += coef * mix * ss

        # Remaining terms S_{l+1, m} for |m| <= l
        for m in range(-l, l + 1):
            src = harmonic_index(l, m)
            dst = harmonic_index(l + 1, m)
            denom = np.sqrt((l + m + 1) * (l - m + 1))

            val = (2 * l + 1) * z * values[:, src]
            grad = (2 * l + 1) * z[:, None] * grads[:, src]
            grad[:, 2] += (2 * l + 1) * values[:, src]

            if abs(m) < l:
                prev = harmonic_index(l - 1, m)
                c1 = np.sqrt((l + m) * (l - m))
                val = val - c1 * rsq * values[:, prev]
                grad = grad - c1 * (
                    2.0 * unit * values[:, prev][:, None]
                    + rsq[:, None] * grads[:, prev]
                )

            values[:, dst] = val / denom
            grads[:, dst] = grad / denom

    return values, grads
