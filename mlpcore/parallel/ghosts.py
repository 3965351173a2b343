"""Ghost images for single-domain periodic systems."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..system.frame import AtomFrame
from .reverse_comm import ReversePlan

if TYPE_CHECKING:
    from ..system import Box


def build_periodic_ghosts(
    positions: ArrayLike,
    species: ArrayLike,
    box: Box,
    ghost_width: float,
    tags: ArrayLike | None = None,
) -> AtomFrame:
    """
    Create a frame whose ghost rows are periodic images of local atoms.

    All images lying within ``ghost_width`` of the primary cell (measured
    perpendicular to each face) are appended after the local atoms. The
    returned frame carries a self-image :class:`ReversePlan`, so partial
    results on ghosts fold back onto the owning local atom.

    Args:
        positions: Local atom positions, shape (N, 3). Wrapped on input.
        species: Species index per local atom, shape (N,).
        box: Periodic cell; non-periodic axes get no images.
        ghost_width: Shell thickness, at least the neighbor list cutoff.
        tags: Global atom ids, shape (N,). Defaults to 0..N-1.

    Returns:
        AtomFrame with local atoms first, then ghost images.
    """
    if ghost_width < 0:
        raise ValueError(f"ghost_width must be non-negative, got {ghost_width}")

    positions = box.wrap_positions(np.asarray(positions, dtype=np.float64))
    species = np.asarray(species, dtype=np.int64)
    n_local = len(positions)
    if tags is None:
        tags = np.arange(n_local, dtype=np.int64)
    tags = np.asarray(tags, dtype=np.int64)

    fractional = box.to_fractional(positions)
    width_frac = ghost_width / box.heights
    periodic = np.array(box.pbc)

    # Number of cell repetitions needed along each periodic axis
    reps = [
        int(np.ceil(width_frac[axis])) if box.pbc[axis] else 0 for axis in range(3)
    ]

    ghost_positions: list[NDArray[np.floating]] = []
    owners: list[NDArray[np.integer]] = []

    for shift in itertools.product(*(range(-k, k + 1) for k in reps)):
        if shift == (0, 0, 0):
            continue

        shifted = fractional + np.array(shift, dtype=np.float64)
        in_shell = (shifted >= -width_frac) & (shifted < 1.0 + width_frac)
        inside = np.all(in_shell[:, periodic], axis=1)
        if not np.any(inside):
            continue

        ghost_positions.append(shifted[inside] @ box.vectors)
        owners.append(np.flatnonzero(inside))

    if owners:
        owner_index = np.concatenate(owners)
        all_positions = np.vstack([positions] + ghost_positions)
    else:
        owner_index = np.array([], dtype=np.int64)
        all_positions = positions

    frame = AtomFrame(
        positions=all_positions,
        species=np.concatenate([species, species[owner_index]]),
        tags=np.concatenate([tags, tags[owner_index]]),
        n_local=n_local,
        box=box,
    )
    frame.plan = ReversePlan.self_images(n_local, owner_index)
    return frame
