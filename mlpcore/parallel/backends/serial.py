"""Serial (single-process) backend."""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray

from .base import ParallelBackend


class SerialBackend(ParallelBackend):
    """
    Serial backend for single-process execution.

    This is the default backend and provides a reference implementation.
    All collective operations are no-ops or simple pass-throughs; the only
    legal point-to-point partner is rank 0 itself (periodic self-images).
    """

    @property
    def name(self) -> str:
        """Return backend name."""
        return "serial"

    @property
    def n_workers(self) -> int:
        """Return number of parallel workers."""
        return 1

    @property
    def rank(self) -> int:
        """Return rank of current process."""
        return 0

    def broadcast(self, data: Any, root: int = 0) -> Any:
        """Broadcast is a no-op in serial; just return data."""
        if data is None:
            raise ValueError("Data must be provided in serial mode")
        return data

    def allreduce_sum(
        self,
        local_data: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Allreduce is a no-op in serial; just return local data."""
        return local_data

    def allreduce_max(self, local_value: float) -> float:
        """Allreduce is a no-op in serial; just return local value."""
        return local_value

    def sendrecv(
        self,
        sendbuf: NDArray[np.floating],
        dest: int,
        source: int,
    ) -> NDArray[np.floating]:
        """Exchange with self; return a copy of the send buffer."""
        if dest != 0 or source != 0:
            raise ValueError(
                f"Serial backend can only exchange with rank 0, got "
                f"dest={dest}, source={source}"
            )
        return np.array(sendbuf, copy=True)

    def barrier(self) -> None:
        """Barrier is a no-op in serial."""
        pass
