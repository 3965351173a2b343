"""Descriptor, model and evaluators of the machine-learned potential."""

from .base import Descriptor, DescriptorResult
from .basis import CutoffFunction, RadialBasis
from .descriptor import PowerSpectrumDescriptor, descriptor_size
from .environment import AtomEnvironment, Neighborhood, compute_environments
from .model import (
    CoefficientLayout,
    CoefficientModel,
    CoefficientPacking,
    ModelFileError,
    load_model,
    read_model,
    write_model,
)
from .potential import ForceResult, MLPotential
from .uncertainty import CovarianceUncertainty, UncertaintyEstimator, UncertaintyOutput

__all__ = [
    "Descriptor",
    "DescriptorResult",
    "RadialBasis",
    "CutoffFunction",
    "PowerSpectrumDescriptor",
    "descriptor_size",
    "Neighborhood",
    "AtomEnvironment",
    "compute_environments",
    "CoefficientModel",
    "CoefficientLayout",
    "CoefficientPacking",
    "ModelFileError",
    "load_model",
    "read_model",
    "write_model",
    "MLPotential",
    "ForceResult",
    "UncertaintyEstimator",
    "CovarianceUncertainty",
    "UncertaintyOutput",
]
