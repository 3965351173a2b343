"""Parallelization infrastructure: backends, ghosts and reverse communication."""

from .backends.base import ParallelBackend
from .backends.serial import SerialBackend
from .dispatcher import get_backend, set_default_backend
from .ghosts import build_periodic_ghosts
from .reverse_comm import (
    ReverseCommunicator,
    ReversePlan,
    ReverseSwap,
    pack_reverse,
    reverse_frame,
    unpack_reverse,
)

__all__ = [
    "ParallelBackend",
    "SerialBackend",
    "get_backend",
    "set_default_backend",
    "build_periodic_ghosts",
    "ReverseCommunicator",
    "ReversePlan",
    "ReverseSwap",
    "pack_reverse",
    "reverse_frame",
    "unpack_reverse",
]
