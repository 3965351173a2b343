"""Tests for real spherical harmonics."""

import numpy as np
import pytest

from mlpcore.ml.harmonics import harmonic_index, n_harmonics, spherical_harmonics


def legendre(l, x):  # noqa: E741
    """Legendre polynomial P_l(x) by recurrence."""
    p_prev, p = np.ones_like(x), x
    if l == 0:
        return p_prev
    for n in range(1, l):
        p_prev, p = p, ((2 * n + 1) * x * p - n * p_prev) / (n + 1)
    return p


class TestSphericalHarmonics:
    """Tests for values and gradients."""

    def test_channel_count(self):
        """Test number of (l, m) channels."""
        assert n_harmonics(0) == 1
        assert n_harmonics(3) == 16
        assert harmonic_index(2, -2) == 4
        assert harmonic_index(2, 2) == 8

    def test_low_order_values(self):
        """Test l = 0 and l = 1 against closed forms."""
        vec = np.array([[1.0, -2.0, 0.5]])
        x, y, z = vec[0] / np.linalg.norm(vec[0])
        values, _ = spherical_harmonics(vec, 1)

        c0 = np.sqrt(1.0 / (4 * np.pi))
        c1 = np.sqrt(3.0 / (4 * np.pi))
        np.testing.assert_allclose(values[0], [c0, c1 * y, c1 * z, c1 * x])

    def test_scale_invariant(self):
        """Test that values depend on direction only."""
        vec = np.array([[0.3, 0.4, -1.1]])
        v1, _ = spherical_harmonics(vec, 4)
        v2, _ = spherical_harmonics(3.7 * vec, 4)
        np.testing.assert_allclose(v1, v2, atol=1e-14)

    def test_addition_theorem(self, rng):
        """Test sum_m Y_lm(u) Y_lm(v) = (2l+1)/(4 pi) P_l(u . v)."""
        l_max = 5
        u = rng.normal(size=(6, 3))
        v = rng.normal(size=(6, 3))
        yu, _ = spherical_harmonics(u, l_max)
        yv, _ = spherical_harmonics(v, l_max)
        cos = np.einsum(
            "kc,kc->k",
            u / np.linalg.norm(u, axis=1)[:, None],
            v / np.linalg.norm(v, axis=1)[:, None],
        )

        for l in range(l_max + 1):  # noqa: E741
            block = slice(l * l, (l + 1) * (l + 1))
            lhs = np.sum(yu[:, block] * yv[:, block], axis=1)
            rhs = (2 * l + 1) / (4 * np.pi) * legendre(l, cos)
            np.testing.assert_allclose(lhs, rhs, atol=1e-12)

    def test_orthonormal(self):
        """Test orthonormality by Gauss-Legendre x trapezoid quadrature."""
        l_max = 3
        cos_t, weights_t = np.polynomial.legendre.leggauss(16)
        phi = np.linspace(0.0, 2 * np.pi, 32, endpoint=False)
        ct, ph = np.meshgrid(cos_t, phi, indexing="ij")
        st = np.sqrt(1.0 - ct**2)
        points = np.stack([st * np.cos(ph), st * np.sin(ph), ct], axis=-1)
        weights = np.outer(weights_t, np.full(len(phi), 2 * np.pi / len(phi)))

        values, _ = spherical_harmonics(points.reshape(-1, 3), l_max)
        gram = values.T @ (values * weights.reshape(-1, 1))
        np.testing.assert_allclose(gram, np.eye(n_harmonics(l_max)), atol=1e-12)

    def test_gradients(self, rng):
        """Test Cartesian gradients against finite differences."""
        l_max = 4
        vec = rng.normal(size=(5, 3))
        _, grads = spherical_harmonics(vec, l_max)

        h = 1e-6
        for c in range(3):
            step = np.zeros(3)
            step[c] = h
            plus, _ = spherical_harmonics(vec + step, l_max)
            minus, _ = spherical_harmonics(vec - step, l_max)
            np.testing.assert_allclose(
                grads[:, :, c], (plus - minus) / (2 * h), atol=1e-7
            )

    def test_gradient_is_tangential(self, rng):
        """Test that gradients have no radial component."""
        vec = rng.normal(size=(4, 3))
        _, grads = spherical_harmonics(vec, 3)
        radial = np.einsum("khc,kc->kh", grads, vec)
        np.testing.assert_allclose(radial, 0.0, atol=1e-12)

    def test_zero_bond_raises(self):
        """Test that a zero-length bond is rejected."""
        with pytest.raises(ValueError, match="zero-length"):
            spherical_harmonics(np.zeros((1, 3)), 2)
