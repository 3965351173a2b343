"""Adapters to external simulation toolkits."""

__all__ = ["HAS_ASE"]

# Optional ASE import
try:
    from .ase_calculator import MLPCalculator

    HAS_ASE = True
    __all__.append("MLPCalculator")
except ImportError:
    HAS_ASE = False
