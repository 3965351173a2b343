"""Force provider interface."""

from .base import ForceProvider

__all__ = ["ForceProvider"]
