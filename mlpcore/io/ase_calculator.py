"""ASE calculator backed by an mlpcore coefficient model."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from ase.calculators.calculator import Calculator, all_changes

from ..evaluate import evaluate
from ..ml.model import CoefficientLayout, CoefficientModel, load_model
from ..ml.uncertainty import UncertaintyOutput
from ..system import Box

if TYPE_CHECKING:
    from ase import Atoms

# ASE Voigt order (xx, yy, zz, yz, xz, xy) from (xx, yy, zz, xy, xz, yz)
_VOIGT_ORDER = [0, 1, 2, 5, 4, 3]


class MLPCalculator(Calculator):
    """
    ASE calculator evaluating an mlpcore potential.

    Implemented properties are ``energy``, ``energies``, ``forces`` and
    ``stress`` (periodic cells). With a covariance model the per-atom
    ``uncertainties`` are stored in ``calc.results`` as well.

    Example:
        atoms.calc = MLPCalculator("model.txt", species_map={"Si": 0})
        energy = atoms.get_potential_energy()
        sigma = atoms.calc.results["uncertainties"]
    """

    name = "mlpcore"
    implemented_properties: ClassVar[list[str]] = [
        "energy",
        "free_energy",
        "energies",
        "forces",
        "stress",
        "uncertainties",
    ]

    def __init__(
        self,
        model: CoefficientModel | str | os.PathLike,
        covariance: CoefficientModel | str | os.PathLike | None = None,
        species_map: dict[str, int] | None = None,
        covariance_layout: CoefficientLayout = CoefficientLayout.PER_SPECIES_PAIR,
        output: UncertaintyOutput = UncertaintyOutput.VARIANCE,
        directional: bool = False,
        n_threads: int = 1,
        label: str = "mlpcore",
        **kwargs,
    ) -> None:
        """
        Initialize calculator.

        Args:
            model: Coefficient model or path to a model file.
            covariance: Covariance model or path, for uncertainties.
            species_map: Element symbol to species index. Optional for
                single-species models.
            covariance_layout: Block layout of a covariance file.
            output: Report uncertainties as variances or standard deviations.
            directional: Per-component uncertainties.
            n_threads: Threads for per-atom descriptors.
            label: Calculator label.
        """
        Calculator.__init__(self, label=label, **kwargs)

        if not isinstance(model, CoefficientModel):
            model = load_model(model)
        if covariance is not None and not isinstance(covariance, CoefficientModel):
            covariance = load_model(covariance, layout=covariance_layout)
        if species_map is None and model.n_species > 1:
            raise ValueError(
                f"species_map is required for a {model.n_species}-species model"
            )

        self.model = model
        self.covariance = covariance
        self.species_map = species_map
        self.output = output
        self.directional = directional
        self.n_threads = n_threads

    def _species(self, atoms: Atoms) -> np.ndarray:
        """Map chemical symbols onto model species indices."""
        symbols = atoms.get_chemical_symbols()
        if self.species_map is None:
            return np.zeros(len(symbols), dtype=np.int64)
        missing = sorted(set(symbols) - set(self.species_map))
        if missing:
            raise ValueError(f"no species index for elements {missing}")
        return np.array([self.species_map[s] for s in symbols], dtype=np.int64)

    def calculate(
        self,
        atoms: Atoms | None = None,
        properties: list[str] | None = None,
        system_changes: list[str] = all_changes,
    ) -> None:
        """
        Run calculation with the mlpcore model.

        Args:
            atoms: Atoms to run the calculation on.
            properties: Unused, all properties are computed together.
            system_changes: Passed to the ASE base class.
        """
        Calculator.calculate(self, atoms, properties or ["energy"], system_changes)

        pbc = tuple(bool(p) for p in self.atoms.get_pbc())
        box = None
        if any(pbc):
            # Slabs and wires leave the open axes of the cell as zero vectors
            box = Box(np.asarray(self.atoms.cell.complete()), pbc=pbc)

        result = evaluate(
            self.model,
            self.atoms.get_positions(),
            self._species(self.atoms),
            box=box,
            covariance=self.covariance,
            output=self.output,
            directional=self.directional,
            n_threads=self.n_threads,
        )

        self.results["energy"] = result.energy
        self.results["free_energy"] = result.energy
        self.results["energies"] = result.energies
        self.results["forces"] = result.forces
        if result.stress is not None:
            self.results["stress"] = result.stress[_VOIGT_ORDER]
        if result.uncertainty is not None:
            self.results["uncertainties"] = result.uncertainty
