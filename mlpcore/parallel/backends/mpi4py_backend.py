"""MPI backend using mpi4py."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from .base import ParallelBackend

if TYPE_CHECKING:
    from mpi4py import MPI as MPI_TYPE


class MPI4PyBackend(ParallelBackend):
    """
    MPI backend using mpi4py for distributed-memory parallelism.

    This backend requires mpi4py to be installed and the program
    to be launched with mpirun/mpiexec.

    Example:
        mpirun -n 4 python run_step.py
    """

    def __init__(self, comm: MPI_TYPE.Comm | None = None) -> None:
        """
        Initialize MPI backend.

        Args:
            comm: Communicator to use. Defaults to ``MPI.COMM_WORLD``.
        """
        try:
            from mpi4py import MPI
        except ImportError as e:
            raise ImportError(
                "mpi4py is required for MPI backend. Install with: pip install mpi4py"
            ) from e

        self._MPI = MPI
        self._comm = comm if comm is not None else MPI.COMM_WORLD
        self._rank = self._comm.Get_rank()
        self._size = self._comm.Get_size()

    @property
    def name(self) -> str:
        """Return backend name."""
        return "mpi4py"

    @property
    def n_workers(self) -> int:
        """Return number of MPI processes."""
        return self._size

    @property
    def rank(self) -> int:
        """Return MPI rank of current process."""
        return self._rank

    @property
    def comm(self) -> MPI_TYPE.Comm:
        """Return MPI communicator."""
        return self._comm

    def broadcast(self, data: Any, root: int = 0) -> Any:
        """
        Broadcast data from root to all ranks.

        Args:
            data: Data to broadcast (only needed on root).
            root: Rank of the root process.

        Returns:
            Broadcasted data on all ranks.
        """
        return self._comm.bcast(data, root=root)

    def allreduce_sum(
        self,
        local_data: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """
        Sum-reduce data to all ranks.

        Args:
            local_data: Local data to reduce.

        Returns:
            Reduced sum on all ranks.
        """
        local_data = np.ascontiguousarray(local_data, dtype=np.float64)
        result = np.zeros_like(local_data)
        self._comm.Allreduce(local_data, result, op=self._MPI.SUM)
        return result

    def allreduce_max(self, local_value: float) -> float:
        """Max-reduce a scalar to all ranks."""
        return float(self._comm.allreduce(local_value, op=self._MPI.MAX))

    def sendrecv(
        self,
        sendbuf: NDArray[np.floating],
        dest: int,
        source: int,
    ) -> NDArray[np.floating]:
        """
        Send and receive data simultaneously.

        Uses the pickle-based ``sendrecv`` so the two directions may carry
        buffers of different lengths.

        Args:
            sendbuf: Data to send.
            dest: Destination rank.
            source: Source rank.

        Returns:
            Received data.
        """
        received = self._comm.sendrecv(
            np.ascontiguousarray(sendbuf), dest=dest, source=source
        )
        return np.asarray(received, dtype=np.float64)

    def barrier(self) -> None:
        """Synchronize all MPI processes."""
        self._comm.Barrier()
