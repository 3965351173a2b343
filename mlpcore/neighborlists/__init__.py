"""Neighbor list implementations."""

from .base import NeighborList
from .verlet import FullNeighborList

__all__ = ["NeighborList", "FullNeighborList"]
