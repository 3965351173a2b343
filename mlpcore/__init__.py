"""
mlpcore - Evaluation core for machine-learned interatomic potentials.

Design Principles:
- Immutable coefficient models, loaded once and broadcast
- Exact analytic descriptor derivatives
- Momentum-conserving force accumulation
- Ghost contributions folded back by reverse communication
- Explicit uncertainty contract (variance or standard deviation)

Quick Start:
    >>> from mlpcore import Box, evaluate
    >>> result = evaluate("model.txt", positions, species, box=Box.cubic(10.0))
    >>> print(f"Energy: {result.energy:.6f}")
"""

__version__ = "0.1.0"

# High-level APIs
from .evaluate import EvaluationResult, evaluate
from .ml import (
    CoefficientLayout,
    CoefficientModel,
    CovarianceUncertainty,
    MLPotential,
    UncertaintyOutput,
    load_model,
)
from .neighborlists import FullNeighborList

# Core components for advanced users
from .system import AtomFrame, Box

__all__ = [
    "evaluate",
    "EvaluationResult",
    "load_model",
    "CoefficientModel",
    "CoefficientLayout",
    "MLPotential",
    "CovarianceUncertainty",
    "UncertaintyOutput",
    "FullNeighborList",
    "AtomFrame",
    "Box",
]
