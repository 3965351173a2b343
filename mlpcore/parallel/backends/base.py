"""Abstract base class for parallel backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import numpy as np
from numpy.typing import NDArray


class ParallelBackend(ABC):
    """
    Abstract base class for parallelization backends.

    All cross-process operations go through this interface, allowing
    transparent switching between serial and MPI execution. The evaluator
    core needs only three of them: a broadcast at model-load time, a
    pairwise exchange for ghost reduction, and a sum for global tallies.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return backend name."""
        ...

    @property
    @abstractmethod
    def n_workers(self) -> int:
        """Return number of parallel workers."""
        ...

    @property
    @abstractmethod
    def rank(self) -> int:
        """Return rank of current process (0 for serial)."""
        ...

    @property
    def is_root(self) -> bool:
        """Check if this is the root process."""
        return self.rank == 0

    @abstractmethod
    def broadcast(self, data: Any, root: int = 0) -> Any:
        """
        Broadcast data from root to all workers.

        Args:
            data: Data to broadcast (only needed on root).
            root: Rank of the root process.

        Returns:
            Broadcasted data on all ranks.
        """
        ...

    @abstractmethod
    def allreduce_sum(
        self,
        local_data: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """
        Sum-reduce data from all workers to all workers.

        Args:
            local_data: Local data to reduce.

        Returns:
            Reduced sum on all ranks.
        """
        ...

    @abstractmethod
    def allreduce_max(self, local_value: float) -> float:
        """
        Max-reduce a scalar from all workers to all workers.

        Args:
            local_value: Local value.

        Returns:
            Largest value over all ranks.
        """
        ...

    @abstractmethod
    def sendrecv(
        self,
        sendbuf: NDArray[np.floating],
        dest: int,
        source: int,
    ) -> NDArray[np.floating]:
        """
        Send a buffer to ``dest`` while receiving one from ``source``.

        Buffer lengths may differ between the two directions.

        Args:
            sendbuf: Data to send.
            dest: Destination rank.
            source: Source rank.

        Returns:
            Received data.
        """
        ...

    @abstractmethod
    def barrier(self) -> None:
        """Synchronize all workers."""
        ...
