"""
Reverse communication of per-atom partial results.

Per-atom quantities accumulated on ghost rows (forces, descriptor
Jacobians) belong to the process that owns the atom. A reverse
communication packs the ghost rows, ships them to the owner and adds them
into the owner's rows. Addition is the only merge operation, so the
result does not depend on arrival order or on how many ghost replicas
contributed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

if TYPE_CHECKING:
    from ..system import AtomFrame
    from .backends.base import ParallelBackend

log = logging.getLogger(__name__)


def pack_reverse(
    accumulator: NDArray[np.floating], first: int, n: int
) -> NDArray[np.floating]:
    """
    Serialize a contiguous block of accumulator rows.

    Args:
        accumulator: Per-atom array, shape (N, ...).
        first: First row to pack.
        n: Number of rows to pack.

    Returns:
        Flat buffer of length ``n * comm_size`` where ``comm_size`` is the
        number of elements per atom.
    """
    last = first + n
    if first < 0 or last > len(accumulator):
        raise RuntimeError(
            f"pack range [{first}, {last}) outside accumulator of "
            f"{len(accumulator)} rows"
        )
    return np.ascontiguousarray(accumulator[first:last]).reshape(-1).copy()


def unpack_reverse(
    buffer: NDArray[np.floating],
    indices: ArrayLike,
    accumulator: NDArray[np.floating],
) -> None:
    """
    Add a received buffer into the accumulator rows named by ``indices``.

    Repeated indices accumulate (several ghost images of one atom).

    Args:
        buffer: Flat buffer produced by :func:`pack_reverse`.
        indices: Destination row for each packed atom.
        accumulator: Per-atom array updated in place.
    """
    indices = np.asarray(indices, dtype=np.int64)
    row_shape = accumulator.shape[1:]
    per_atom = comm_size(accumulator)
    if buffer.size != len(indices) * per_atom:
        raise RuntimeError(
            f"buffer holds {buffer.size} values, expected "
            f"{len(indices)} atoms x {per_atom} values"
        )
    if len(indices) == 0:
        return
    np.add.at(accumulator, indices, buffer.reshape((len(indices),) + row_shape))


def comm_size(accumulator: NDArray[np.floating]) -> int:
    """Return the number of exchanged elements per atom for an accumulator."""
    return int(np.prod(accumulator.shape[1:], dtype=np.int64))


@dataclass(frozen=True)
class ReverseSwap:
    """
    One leg of a reverse communication.

    The contiguous ghost rows ``[first, first + n)`` are sent to
    ``send_rank``; a buffer of ``len(recv_indices)`` atoms is received
    from ``recv_rank`` and added into ``recv_indices``.

    Attributes:
        send_rank: Rank that owns the packed ghost rows.
        recv_rank: Rank whose ghosts map onto local rows here.
        first: First ghost row sent.
        n: Number of ghost rows sent.
        recv_indices: Local rows receiving the incoming buffer.
    """

    send_rank: int
    recv_rank: int
    first: int
    n: int
    recv_indices: NDArray[np.integer] = field(
        default_factory=lambda: np.array([], dtype=np.int64)
    )

    def __post_init__(self) -> None:
        """Freeze index array."""
        indices = np.array(self.recv_indices, dtype=np.int64)
        indices.flags.writeable = False
        object.__setattr__(self, "recv_indices", indices)


@dataclass(frozen=True)
class ReversePlan:
    """
    Ordered list of swaps folding every ghost row onto its owner.

    Attributes:
        n_local: Number of owned rows.
        n_all: Number of local + ghost rows.
        swaps: Swaps executed in order.
    """

    n_local: int
    n_all: int
    swaps: tuple[ReverseSwap, ...] = ()

    @classmethod
    def self_images(cls, n_local: int, owners: ArrayLike) -> ReversePlan:
        """
        Build a single-process plan where every ghost is a periodic image.

        Args:
            n_local: Number of owned rows.
            owners: Owning local row of each ghost, in ghost order.

        Returns:
            Plan with one self-swap covering all ghosts.
        """
        owners = np.asarray(owners, dtype=np.int64)
        if len(owners) and (owners.min() < 0 or owners.max() >= n_local):
            raise ValueError("ghost owners must be local rows")
        swaps: tuple[ReverseSwap, ...] = ()
        if len(owners):
            swaps = (
                ReverseSwap(
                    send_rank=0,
                    recv_rank=0,
                    first=n_local,
                    n=len(owners),
                    recv_indices=owners,
                ),
            )
        return cls(n_local=n_local, n_all=n_local + len(owners), swaps=swaps)


class ReverseCommunicator:
    """
    Executes a :class:`ReversePlan` through a parallel backend.

    Example:
        comm = ReverseCommunicator(backend, frame.plan)
        forces = comm.reverse(forces)[: frame.n_local]
    """

    def __init__(self, backend: ParallelBackend, plan: ReversePlan) -> None:
        """
        Initialize communicator.

        Args:
            backend: Backend providing ``sendrecv``.
            plan: Swaps to execute.
        """
        self.backend = backend
        self.plan = plan

    def reverse(self, accumulator: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Fold ghost rows into their owners, in place.

        Ghost rows are zeroed once their contributions have been sent.

        Args:
            accumulator: Per-atom array with ``plan.n_all`` rows.

        Returns:
            The same accumulator.
        """
        if len(accumulator) != self.plan.n_all:
            raise RuntimeError(
                f"accumulator has {len(accumulator)} rows, plan expects "
                f"{self.plan.n_all}"
            )

        for swap in self.plan.swaps:
            sendbuf = pack_reverse(accumulator, swap.first, swap.n)
            recvbuf = self.backend.sendrecv(
                sendbuf, dest=swap.send_rank, source=swap.recv_rank
            )
            unpack_reverse(recvbuf, swap.recv_indices, accumulator)

        accumulator[self.plan.n_local :] = 0.0
        log.debug(
            "reverse comm: %d swaps, %d values per atom",
            len(self.plan.swaps),
            comm_size(accumulator),
        )
        return accumulator


def reverse_frame(
    backend: ParallelBackend,
    frame: AtomFrame,
    accumulator: NDArray[np.floating],
) -> NDArray[np.floating]:
    """
    Fold the ghost rows of a frame-sized accumulator onto their owners.

    Args:
        backend: Backend providing ``sendrecv``.
        frame: Frame the accumulator was filled for.
        accumulator: Per-atom array with ``frame.n_all`` rows.

    Returns:
        The same accumulator, ghost rows zeroed.
    """
    if frame.n_ghost == 0:
        return accumulator
    if frame.plan is None:
        raise RuntimeError(
            f"frame has {frame.n_ghost} ghost atoms but no reverse-communication plan"
        )
    return ReverseCommunicator(backend, frame.plan).reverse(accumulator)
