"""Grow-only per-atom scratch buffers."""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

log = logging.getLogger(__name__)


class ScratchArena:
    """
    Named per-atom accumulators reused across steps.

    Capacity only grows: buffers are reallocated in whole when a step sees
    more local + ghost atoms than ever before. Every buffer is zeroed at
    the start of each step, so nothing from a previous step (or from
    before a resize) is ever read.

    Example:
        arena = ScratchArena()
        arena.begin_step(frame.n_all)
        forces = arena.get("forces", 3)
    """

    def __init__(self) -> None:
        self._capacity = 0
        self._n_rows: int | None = None
        self._buffers: dict[str, NDArray[np.floating]] = {}

    @property
    def capacity(self) -> int:
        """Number of atom rows currently allocated."""
        return self._capacity

    def begin_step(self, n_all: int) -> None:
        """
        Prepare buffers for a step with ``n_all`` local + ghost atoms.

        Args:
            n_all: Number of rows needed this step.
        """
        if n_all < 0:
            raise ValueError(f"n_all must be non-negative, got {n_all}")

        if n_all > self._capacity:
            log.debug(
                "growing scratch arena from %d to %d atoms", self._capacity, n_all
            )
            self._capacity = n_all
            self._buffers.clear()

        for buffer in self._buffers.values():
            buffer.fill(0.0)
        self._n_rows = n_all

    def get(self, name: str, *row_shape: int) -> NDArray[np.floating]:
        """
        Return the zeroed buffer ``name`` for the current step.

        Args:
            name: Buffer name.
            *row_shape: Shape of one atom's row.

        Returns:
            View of shape ``(n_all, *row_shape)``.
        """
        if self._n_rows is None:
            raise RuntimeError("begin_step() must be called before get()")

        shape = (self._capacity, *row_shape)
        buffer = self._buffers.get(name)
        if buffer is None or buffer.shape != shape:
            buffer = np.zeros(shape)
            self._buffers[name] = buffer
        return buffer[: self._n_rows]
