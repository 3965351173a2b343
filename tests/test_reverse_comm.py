"""Tests for reverse communication and periodic ghost images."""

import numpy as np
import pytest

from mlpcore.neighborlists import FullNeighborList
from mlpcore.parallel import (
    ReverseCommunicator,
    ReversePlan,
    ReverseSwap,
    SerialBackend,
    build_periodic_ghosts,
    pack_reverse,
    reverse_frame,
    unpack_reverse,
)
from mlpcore.system import AtomFrame, Box


class ScriptedBackend(SerialBackend):
    """Backend that records sends and answers with scripted buffers."""

    def __init__(self, replies):
        self.replies = dict(replies)
        self.sent = []

    def sendrecv(self, sendbuf, dest, source):
        self.sent.append((dest, source, sendbuf.copy()))
        return np.asarray(self.replies[source], dtype=np.float64)


class TestPackUnpack:
    """Tests for buffer packing and unpacking."""

    def test_pack_rows(self):
        """Test that a contiguous block is flattened row-major."""
        acc = np.arange(12.0).reshape(4, 3)
        np.testing.assert_array_equal(pack_reverse(acc, 1, 2), [3, 4, 5, 6, 7, 8])

    def test_pack_multi_dimensional(self):
        """Test packing of per-atom blocks with several axes."""
        acc = np.arange(2 * 3 * 2 * 4, dtype=float).reshape(2, 3, 2, 4)
        buffer = pack_reverse(acc, 1, 1)
        assert buffer.size == 24
        np.testing.assert_array_equal(buffer, acc[1].ravel())

    def test_pack_is_a_copy(self):
        """Test that the buffer does not alias the accumulator."""
        acc = np.ones((3, 3))
        buffer = pack_reverse(acc, 0, 3)
        acc[:] = 0.0
        np.testing.assert_array_equal(buffer, 1.0)

    def test_pack_out_of_range(self):
        """Test that packing past the end raises."""
        with pytest.raises(RuntimeError, match="outside accumulator"):
            pack_reverse(np.zeros((3, 3)), 2, 2)

    def test_unpack_adds(self):
        """Test that unpacking adds rather than overwrites."""
        acc = np.ones((3, 3))
        unpack_reverse(np.array([1.0, 2.0, 3.0]), [2], acc)
        np.testing.assert_array_equal(acc[2], [2.0, 3.0, 4.0])
        np.testing.assert_array_equal(acc[:2], 1.0)

    def test_unpack_repeated_indices(self):
        """Test that several images of one atom all accumulate."""
        acc = np.zeros((2, 3))
        buffer = np.array([1.0, 0.0, 0.0, 2.0, 0.0, 0.0, 0.0, 5.0, 0.0])
        unpack_reverse(buffer, [0, 0, 1], acc)
        np.testing.assert_array_equal(acc, [[3.0, 0.0, 0.0], [0.0, 5.0, 0.0]])

    def test_unpack_size_mismatch(self):
        """Test that a buffer of the wrong length raises."""
        with pytest.raises(RuntimeError, match="expected 2 atoms x 3 values"):
            unpack_reverse(np.zeros(5), [0, 1], np.zeros((3, 3)))


class TestReversePlan:
    """Tests for reverse plans."""

    def test_self_images(self):
        """Test the single-process plan."""
        plan = ReversePlan.self_images(3, [0, 2, 2])

        assert plan.n_all == 6
        (swap,) = plan.swaps
        assert (swap.send_rank, swap.recv_rank, swap.first, swap.n) == (0, 0, 3, 3)
        np.testing.assert_array_equal(swap.recv_indices, [0, 2, 2])
        assert not swap.recv_indices.flags.writeable

    def test_no_ghosts(self):
        """Test that a plan without ghosts has no swaps."""
        plan = ReversePlan.self_images(4, [])
        assert plan.swaps == ()
        assert plan.n_all == 4

    def test_owner_must_be_local(self):
        """Test that ghosts cannot be owned by ghost rows."""
        with pytest.raises(ValueError, match="local rows"):
            ReversePlan.self_images(2, [0, 2])


class TestReverseCommunicator:
    """Tests for executing reverse plans."""

    def test_fold_onto_owners(self):
        """Test ghost rows are added into owners and zeroed."""
        plan = ReversePlan.self_images(2, [1, 0, 1])
        acc = np.array(
            [
                [1.0, 0.0, 0.0],
                [0.0, 1.0, 0.0],
                [0.5, 0.0, 0.0],
                [0.0, 0.0, 2.0],
                [0.0, 0.5, 0.0],
            ]
        )
        total = acc.sum(axis=0)

        ReverseCommunicator(SerialBackend(), plan).reverse(acc)

        np.testing.assert_array_equal(acc[0], [1.0, 0.0, 2.0])
        np.testing.assert_array_equal(acc[1], [0.5, 1.5, 0.0])
        np.testing.assert_array_equal(acc[2:], 0.0)
        np.testing.assert_allclose(acc.sum(axis=0), total)

    def test_swap_order_does_not_matter(self, rng):
        """Test that splitting ghosts into swaps in any order gives one result."""
        acc = rng.normal(size=(7, 3, 2))
        owners = np.array([0, 2, 1, 0])
        first = ReverseSwap(0, 0, first=3, n=2, recv_indices=owners[:2])
        second = ReverseSwap(0, 0, first=5, n=2, recv_indices=owners[2:])

        forward = ReversePlan(n_local=3, n_all=7, swaps=(first, second))
        backward = ReversePlan(n_local=3, n_all=7, swaps=(second, first))
        single = ReversePlan.self_images(3, owners)

        a = ReverseCommunicator(SerialBackend(), forward).reverse(acc.copy())
        b = ReverseCommunicator(SerialBackend(), backward).reverse(acc.copy())
        c = ReverseCommunicator(SerialBackend(), single).reverse(acc.copy())

        np.testing.assert_allclose(a, b, atol=1e-15)
        np.testing.assert_allclose(a, c, atol=1e-15)

    def test_remote_exchange(self):
        """Test a swap that sends ghosts to another rank and receives from it."""
        plan = ReversePlan(
            n_local=2,
            n_all=3,
            swaps=(
                ReverseSwap(
                    send_rank=1, recv_rank=1, first=2, n=1, recv_indices=[1, 1]
                ),
            ),
        )
        backend = ScriptedBackend({1: [1.0, 0.0, 0.0, 0.0, 2.0, 0.0]})
        acc = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0], [7.0, 8.0, 9.0]])

        ReverseCommunicator(backend, plan).reverse(acc)

        ((dest, source, sent),) = backend.sent
        assert (dest, source) == (1, 1)
        np.testing.assert_array_equal(sent, [7.0, 8.0, 9.0])
        np.testing.assert_array_equal(acc[1], [2.0, 3.0, 1.0])
        np.testing.assert_array_equal(acc[2], 0.0)

    def test_row_count_mismatch(self):
        """Test that the accumulator must match the plan."""
        plan = ReversePlan.self_images(2, [0])
        with pytest.raises(RuntimeError, match="plan expects 3"):
            ReverseCommunicator(SerialBackend(), plan).reverse(np.zeros((2, 3)))

    def test_reverse_frame_without_ghosts(self):
        """Test that frames without ghosts are left untouched."""
        frame = AtomFrame.create(np.zeros((2, 3)))
        acc = np.ones((2, 3))
        assert reverse_frame(SerialBackend(), frame, acc) is acc
        np.testing.assert_array_equal(acc, 1.0)

    def test_reverse_frame_needs_plan(self):
        """Test that ghost rows without a plan are an error."""
        frame = AtomFrame.create(np.zeros((3, 3)), n_local=2)
        with pytest.raises(RuntimeError, match="no reverse-communication plan"):
            reverse_frame(SerialBackend(), frame, np.zeros((3, 3)))


class TestPeriodicGhosts:
    """Tests for periodic ghost construction."""

    def test_interior_atom_has_no_images(self):
        """Test that an atom far from every face is not imaged."""
        frame = build_periodic_ghosts([[5.0, 5.0, 5.0]], [0], Box.cubic(10.0), 2.0)
        assert frame.n_ghost == 0
        assert frame.plan.swaps == ()

    def test_corner_atom(self):
        """Test that a corner atom gets seven images."""
        frame = build_periodic_ghosts([[0.5, 0.5, 0.5]], [1], Box.cubic(10.0), 2.0)

        assert frame.n_local == 1
        assert frame.n_ghost == 7
        np.testing.assert_array_equal(frame.species, 1)
        np.testing.assert_array_equal(frame.tags, 0)
        offsets = frame.positions[1:] - frame.positions[0]
        assert np.any(np.all(np.isclose(offsets, [10.0, 0.0, 0.0]), axis=1))
        np.testing.assert_allclose(np.abs(offsets), np.where(offsets != 0, 10.0, 0.0))

    def test_mixed_periodicity(self):
        """Test that non-periodic axes get no images."""
        box = Box(np.array([10.0, 10.0, 10.0]), pbc=(True, False, True))
        frame = build_periodic_ghosts([[0.5, 0.5, 0.5]], [0], box, 2.0)

        assert frame.n_ghost == 3
        np.testing.assert_allclose(frame.positions[1:, 1], 0.5)

    def test_positions_wrapped(self):
        """Test that local atoms outside the cell are wrapped in."""
        frame = build_periodic_ghosts([[12.0, -1.0, 5.0]], [0], Box.cubic(10.0), 0.5)
        np.testing.assert_allclose(frame.positions[0], [2.0, 9.0, 5.0])

    def test_plan_maps_images_to_owners(self, rng):
        """Test that every ghost is a lattice translate of its owner."""
        box = Box.triclinic([[5.0, 0.0, 0.0], [1.0, 5.0, 0.0], [0.5, 0.3, 6.0]])
        positions = rng.uniform(0.0, 5.0, size=(10, 3))
        frame = build_periodic_ghosts(positions, np.zeros(10, int), box, 2.0)

        (swap,) = frame.plan.swaps
        owners = swap.recv_indices
        shifts = box.to_fractional(frame.positions[10:] - frame.positions[owners])
        np.testing.assert_allclose(shifts, np.round(shifts), atol=1e-10)
        np.testing.assert_array_equal(frame.tags[10:], owners)

    def test_neighbors_match_minimum_image(self, rng):
        """Test ghost neighborhoods agree with minimum-image distances."""
        box = Box.cubic(8.0)
        cutoff = 3.0
        positions = rng.uniform(0.0, 8.0, size=(20, 3))

        frame = build_periodic_ghosts(positions, np.zeros(20, int), box, cutoff)
        nlist = FullNeighborList(cutoff, skin=0.0)
        nlist.build(frame)

        for i in range(20):
            dr = positions - positions[i]
            dr -= 8.0 * np.round(dr / 8.0)
            expected = np.sort(np.linalg.norm(dr, axis=1))
            expected = expected[(expected > 0) & (expected < cutoff)]

            found = frame.positions[nlist.get_neighbors(i)] - frame.positions[i]
            np.testing.assert_allclose(
                np.sort(np.linalg.norm(found, axis=1)), expected, atol=1e-12
            )

    def test_negative_width_raises(self):
        """Test that the ghost width must be non-negative."""
        with pytest.raises(ValueError, match="ghost_width"):
            build_periodic_ghosts([[0.0, 0.0, 0.0]], [0], Box.cubic(5.0), -1.0)
