"""Atom frame and box management."""

from .box import Box
from .frame import AtomFrame

__all__ = ["Box", "AtomFrame"]
