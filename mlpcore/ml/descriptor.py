"""Power-spectrum (B2) descriptor with analytic neighbor derivatives."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .base import Descriptor, DescriptorResult
from .basis import CutoffFunction, RadialBasis
from .harmonics import n_harmonics, spherical_harmonics

if TYPE_CHECKING:
    from .environment import Neighborhood
    from .model import CoefficientModel


def descriptor_size(n_species: int, n_max: int, l_max: int) -> int:
    """Return the B2 descriptor length for the given hyperparameters."""
    n_radial = n_max * n_species
    return (n_radial * (n_radial + 1) // 2) * (l_max + 1)


class PowerSpectrumDescriptor(Descriptor):
    """
    Rotation-invariant power spectrum of a species-resolved density.

    For every neighbor the radial functions ``g_n(r) = T_n(r) fc(r)`` are
    combined with the real spherical harmonics ``Y_lm(r̂)`` and summed into
    species channels:

        c[s*n_max + n, lm] = sum_{j: s_j = s} g_n(r_j) Y_lm(r̂_j)

    The invariant descriptor contracts every unordered pair of radial
    channels over ``m``:

        B[(n1, n2), l] = sum_m c[n1, lm] c[n2, lm],   n1 <= n2

    ordered by ``n1``, then ``n2``, then ``l``.

    Example:
        descriptor = PowerSpectrumDescriptor.from_model(model)
        result = descriptor.compute(neighborhood)
    """

    def __init__(
        self,
        n_species: int,
        n_max: int,
        l_max: int,
        cutoff: float,
        radial_basis: RadialBasis = RadialBasis.CHEBYSHEV,
        cutoff_function: CutoffFunction = CutoffFunction.QUADRATIC,
        radial_hyps: tuple[float, float] | None = None,
    ) -> None:
        """
        Initialize descriptor.

        Args:
            n_species: Number of species channels.
            n_max: Number of radial basis functions per species.
            l_max: Maximum angular momentum.
            cutoff: Cutoff radius.
            radial_basis: Radial basis set.
            cutoff_function: Cutoff envelope.
            radial_hyps: Support of the radial basis; defaults to (0, cutoff).
        """
        if n_species < 1 or n_max < 1 or l_max < 0:
            raise ValueError(
                f"invalid hyperparameters n_species={n_species}, "
                f"n_max={n_max}, l_max={l_max}"
            )
        if cutoff <= 0:
            raise ValueError(f"cutoff must be positive, got {cutoff}")

        self.n_species = n_species
        self.n_max = n_max
        self.l_max = l_max
        self._cutoff = float(cutoff)
        self.radial_basis = radial_basis
        self.cutoff_function = cutoff_function
        self.radial_hyps = radial_hyps if radial_hyps is not None else (0.0, cutoff)

        self.n_radial = n_species * n_max
        self._n_features = descriptor_size(n_species, n_max, l_max)
        self._pairs = np.triu_indices(self.n_radial)

    @classmethod
    def from_model(cls, model: CoefficientModel) -> PowerSpectrumDescriptor:
        """Create the descriptor a coefficient model was fitted with."""
        return cls(
            n_species=model.n_species,
            n_max=model.n_max,
            l_max=model.l_max,
            cutoff=model.cutoff,
            radial_basis=model.radial_basis,
            cutoff_function=model.cutoff_function,
            radial_hyps=model.radial_hyps,
        )

    @property
    def n_features(self) -> int:
        """Number of descriptor features per atom."""
        return self._n_features

    @property
    def cutoff(self) -> float:
        """Cutoff radius."""
        return self._cutoff

    def compute(self, neighborhood: Neighborhood) -> DescriptorResult:
        """
        Compute B2 descriptor and its derivatives for one atom.

        Args:
            neighborhood: Filtered neighbors of the central atom.

        Returns:
            Descriptor values and derivatives.
        """
        if neighborhood.n_neighbors == 0:
            return DescriptorResult.empty(self.n_features)

        if neighborhood.species.max() >= self.n_species:
            raise ValueError(
                f"neighbor species {neighborhood.species.max()} outside model "
                f"range 0..{self.n_species - 1}"
            )

        coeffs, dcoeffs = self._single_bond(neighborhood)
        values, derivs = self._power_spectrum(coeffs, dcoeffs)

        return DescriptorResult(
            values=values,
            norm_squared=float(values @ values),
            derivatives=derivs,
            norm_derivatives=derivs @ values,
        )

    def _single_bond(
        self, neighborhood: Neighborhood
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """
        Covariant expansion coefficients and their neighbor derivatives.

        Returns:
            Tuple of coefficients, shape (n_radial, H), and derivatives,
            shape (K, n_radial, H, 3).
        """
        r = neighborhood.distances
        disp = neighborhood.displacements
        unit = disp / r[:, None]
        k = neighborhood.n_neighbors

        basis, dbasis = self.radial_basis.evaluate(r, self.n_max, self.radial_hyps)
        fc, dfc = self.cutoff_function.evaluate(r, self._cutoff)
        g = basis * fc[:, None]
        dg = dbasis * fc[:, None] + basis * dfc[:, None]

        ylm, dylm = spherical_harmonics(disp, self.l_max)

        bond = g[:, :, None] * ylm[:, None, :]
        dbond = (
            dg[:, :, None, None] * ylm[:, None, :, None] * unit[:, None, None, :]
            + g[:, :, None, None] * dylm[:, None, :, :]
        )

        channels = neighborhood.species[:, None] * self.n_max + np.arange(self.n_max)

        coeffs = np.zeros((self.n_radial, n_harmonics(self.l_max)))
        np.add.at(coeffs, channels, bond)

        # Each neighbor only touches the channels of its own species
        dcoeffs = np.zeros((k, self.n_radial, n_harmonics(self.l_max), 3))
        dcoeffs[np.arange(k)[:, None], channels] = dbond

        return coeffs, dcoeffs

    def _power_spectrum(
        self, coeffs: NDArray[np.floating], dcoeffs: NDArray[np.floating]
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Contract channel pairs over m; returns (values, derivatives)."""
        k = len(dcoeffs)
        n_pairs = len(self._pairs[0])
        n_l = self.l_max + 1

        values = np.zeros((n_pairs, n_l))
        derivs = np.zeros((k, 3, n_pairs, n_l))

        for l in range(n_l):  # noqa: E741
            block = slice(l * l, (l + 1) * (l + 1))
            c_l = coeffs[:, block]
            dc_l = dcoeffs[:, :, block, :]

            power = c_l @ c_l.T
            half = np.einsum("kamc,bm->kcab", dc_l, c_l)
            dpower = half + half.transpose(0, 1, 3, 2)

            values[:, l] = power[self._pairs]
            derivs[:, :, :, l] = dpower[:, :, self._pairs[0], self._pairs[1]]

        return values.reshape(-1), derivs.reshape(k, 3, -1)
