"""
Coefficient model: persisted format, validation and broadcast.

File layout (text, line oriented)::

    <free comment>
    <radial basis name>
    <n_species> <n_max> <l_max> <beta_size>
    <cutoff function name>
    <cutoff radius>
    <beta_size * n_blocks coefficients, any number per line>

Only the root rank touches the file. The parsed header and coefficient
buffer are broadcast, and every rank builds the same immutable
:class:`CoefficientModel` from them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..parallel.dispatcher import get_backend
from .basis import CutoffFunction, RadialBasis
from .descriptor import descriptor_size

if TYPE_CHECKING:
    from ..parallel.backends.base import ParallelBackend

log = logging.getLogger(__name__)

PathLike = str | os.PathLike


class ModelFileError(ValueError):
    """Malformed or inconsistent model file."""

    def __init__(self, filename: PathLike, reason: str) -> None:
        self.filename = os.fspath(filename)
        self.reason = reason
        super().__init__(f"{reason} (model file: {self.filename})")


class CoefficientPacking(Enum):
    """Storage of each coefficient block in the file."""

    DENSE = "dense"
    PACKED = "packed"

    def beta_size(self, n_descriptors: int) -> int:
        """Number of stored values per block."""
        if self is CoefficientPacking.DENSE:
            return n_descriptors * n_descriptors
        return n_descriptors * (n_descriptors + 1) // 2

    @classmethod
    def infer(cls, beta_size: int, n_descriptors: int) -> CoefficientPacking:
        """
        Infer the packing from the stored block size.

        Dense wins when both match (``n_descriptors == 1``).

        Raises:
            ValueError: If ``beta_size`` matches neither packing.
        """
        for packing in (cls.DENSE, cls.PACKED):
            if packing.beta_size(n_descriptors) == beta_size:
                return packing
        raise ValueError(
            f"beta_size {beta_size} inconsistent with n_descriptors "
            f"{n_descriptors} (expected {cls.DENSE.beta_size(n_descriptors)} "
            f"dense or {cls.PACKED.beta_size(n_descriptors)} packed)"
        )


class CoefficientLayout(Enum):
    """How coefficient blocks map onto species."""

    PER_SPECIES = "per_species"
    PER_SPECIES_PAIR = "per_species_pair"

    def n_blocks(self, n_species: int) -> int:
        """Number of coefficient blocks for ``n_species`` species."""
        if self is CoefficientLayout.PER_SPECIES:
            return n_species
        return n_species * n_species


@dataclass(frozen=True)
class CoefficientModel:
    """
    Immutable coefficient (or covariance) model.

    Attributes:
        radial_basis: Radial basis set.
        cutoff_function: Cutoff envelope.
        n_species: Number of species.
        n_max: Radial functions per species.
        l_max: Maximum angular momentum.
        cutoff: Cutoff radius.
        matrices: Square blocks, shape (n_blocks, n_descriptors, n_descriptors).
            Read-only.
        packing: Storage of the blocks in the file.
        layout: Mapping of blocks onto species.
    """

    radial_basis: RadialBasis
    cutoff_function: CutoffFunction
    n_species: int
    n_max: int
    l_max: int
    cutoff: float
    matrices: NDArray[np.floating]
    packing: CoefficientPacking = CoefficientPacking.DENSE
    layout: CoefficientLayout = CoefficientLayout.PER_SPECIES

    def __post_init__(self) -> None:
        """Validate dimensions and freeze the coefficient array."""
        if self.n_species < 1 or self.n_max < 1 or self.l_max < 0:
            raise ValueError(
                f"invalid hyperparameters n_species={self.n_species}, "
                f"n_max={self.n_max}, l_max={self.l_max}"
            )
        if not self.cutoff > 0:
            raise ValueError(f"cutoff must be positive, got {self.cutoff}")
        object.__setattr__(self, "cutoff", float(self.cutoff))

        nd = self.n_descriptors
        expected = (self.layout.n_blocks(self.n_species), nd, nd)
        matrices = np.array(self.matrices, dtype=np.float64)
        if matrices.shape != expected:
            raise ValueError(
                f"coefficient blocks have shape {matrices.shape}, expected {expected}"
            )
        matrices.flags.writeable = False
        object.__setattr__(self, "matrices", matrices)

    @property
    def n_radial(self) -> int:
        """Number of radial channels (species x radial functions)."""
        return self.n_species * self.n_max

    @property
    def n_descriptors(self) -> int:
        """Descriptor length."""
        return descriptor_size(self.n_species, self.n_max, self.l_max)

    @property
    def beta_size(self) -> int:
        """Number of stored values per block."""
        return self.packing.beta_size(self.n_descriptors)

    @property
    def radial_hyps(self) -> tuple[float, float]:
        """Support of the radial basis."""
        return (0.0, self.cutoff)

    def check_species(self, species: ArrayLike) -> None:
        """Raise ValueError if any species lies outside the model range."""
        species = np.asarray(species)
        if len(species) and (species.min() < 0 or species.max() >= self.n_species):
            raise ValueError(
                f"species {species.min()}..{species.max()} outside model "
                f"range 0..{self.n_species - 1}"
            )

    def block(self, s1: int, s2: int) -> NDArray[np.floating]:
        """
        Return the block coupling species ``s1`` and ``s2``.

        A per-species model is block-diagonal: off-diagonal blocks are zero.
        """
        if self.layout is CoefficientLayout.PER_SPECIES_PAIR:
            return self.matrices[s1 * self.n_species + s2]
        if s1 == s2:
            return self.matrices[s1]
        return np.zeros((self.n_descriptors, self.n_descriptors))

    def matrix_for(self, species: int) -> NDArray[np.floating]:
        """Return the energy coefficient matrix of a central-atom species."""
        return self.block(species, species)

    def covariance_matrix(self) -> NDArray[np.floating]:
        """Assemble the full ``(n_species*n_descriptors)^2`` block matrix."""
        return np.block(
            [
                [self.block(s1, s2) for s2 in range(self.n_species)]
                for s1 in range(self.n_species)
            ]
        )

    def same_descriptor(self, other: CoefficientModel) -> bool:
        """True when both models were fitted on the same descriptor."""
        return (
            self.radial_basis is other.radial_basis
            and self.cutoff_function is other.cutoff_function
            and (self.n_species, self.n_max, self.l_max)
            == (other.n_species, other.n_max, other.l_max)
            and self.cutoff == other.cutoff
        )


def unpack_symmetric(packed: ArrayLike, n: int) -> NDArray[np.floating]:
    """
    Expand a row-major upper triangle into a symmetric matrix.

    Off-diagonal entries are halved so that ``B^T M B`` reproduces
    ``sum_{j <= k} beta_jk B_j B_k``.
    """
    upper = np.zeros((n, n))
    upper[np.triu_indices(n)] = packed
    return 0.5 * (upper + upper.T)


def pack_symmetric(matrix: NDArray[np.floating]) -> NDArray[np.floating]:
    """Inverse of :func:`unpack_symmetric` for a symmetric matrix."""
    n = len(matrix)
    full = 2.0 * matrix
    full[np.diag_indices(n)] = np.diag(matrix)
    return full[np.triu_indices(n)]


def _parse_header(lines: list[str], filename: PathLike) -> dict[str, Any]:
    """Parse the five header lines."""
    if len(lines) < 5:
        raise ModelFileError(filename, f"header needs 5 lines, found {len(lines)}")

    def first_token(lineno: int, what: str) -> str:
        tokens = lines[lineno - 1].split()
        if not tokens:
            raise ModelFileError(filename, f"line {lineno}: missing {what}")
        return tokens[0]

    basis_name = first_token(2, "radial basis name")
    cutoff_name = first_token(4, "cutoff function name")
    cutoff_token = first_token(5, "cutoff radius")
    try:
        radial_basis = RadialBasis.from_name(basis_name)
        cutoff_function = CutoffFunction.from_name(cutoff_name)
    except ValueError as exc:
        raise ModelFileError(filename, str(exc)) from None

    sizes = lines[2].split()
    if len(sizes) < 4:
        raise ModelFileError(
            filename, "line 3: expected 'n_species n_max l_max beta_size'"
        )
    try:
        n_species, n_max, l_max, beta_size = (int(tok) for tok in sizes[:4])
    except ValueError:
        raise ModelFileError(
            filename, f"line 3: non-integer size in {' '.join(sizes[:4])}"
        ) from None

    try:
        cutoff = float(cutoff_token)
    except ValueError:
        raise ModelFileError(
            filename, f"line 5: invalid cutoff '{cutoff_token}'"
        ) from None

    if n_species < 1 or n_max < 1 or l_max < 0 or not cutoff > 0:
        raise ModelFileError(
            filename,
            f"invalid hyperparameters n_species={n_species}, n_max={n_max}, "
            f"l_max={l_max}, cutoff={cutoff}",
        )

    return {
        "radial_basis": radial_basis.value,
        "cutoff_function": cutoff_function.value,
        "n_species": n_species,
        "n_max": n_max,
        "l_max": l_max,
        "beta_size": beta_size,
        "cutoff": cutoff,
    }


def parse_model(
    text: str,
    filename: PathLike = "<string>",
    layout: CoefficientLayout = CoefficientLayout.PER_SPECIES,
) -> dict[str, Any]:
    """
    Parse and validate model-file text into a broadcastable payload.

    Args:
        text: File contents.
        filename: Name used in error messages.
        layout: Block layout the file is expected to hold.

    Returns:
        Plain dict with header values and a flat ``coefficients`` array.

    Raises:
        ModelFileError: On any format or consistency problem.
    """
    lines = text.splitlines()
    header = _parse_header(lines, filename)

    n_descriptors = descriptor_size(
        header["n_species"], header["n_max"], header["l_max"]
    )
    try:
        packing = CoefficientPacking.infer(header["beta_size"], n_descriptors)
    except ValueError as exc:
        raise ModelFileError(filename, str(exc)) from None

    needed = header["beta_size"] * layout.n_blocks(header["n_species"])
    tokens = " ".join(lines[5:]).split()
    if len(tokens) < needed:
        raise ModelFileError(
            filename, f"expected {needed} coefficients, found {len(tokens)}"
        )
    if len(tokens) > needed:
        log.warning(
            "%s: ignoring %d values after the %d expected coefficients",
            os.fspath(filename),
            len(tokens) - needed,
            needed,
        )

    try:
        coefficients = np.array(tokens[:needed], dtype=np.float64)
    except ValueError as exc:
        raise ModelFileError(filename, f"invalid coefficient: {exc}") from None

    header["packing"] = packing.value
    header["layout"] = layout.value
    header["coefficients"] = coefficients
    return header


def model_from_payload(payload: dict[str, Any]) -> CoefficientModel:
    """Build a :class:`CoefficientModel` from a parsed payload."""
    n_species = payload["n_species"]
    nd = descriptor_size(n_species, payload["n_max"], payload["l_max"])
    packing = CoefficientPacking(payload["packing"])
    layout = CoefficientLayout(payload["layout"])

    blocks = np.asarray(payload["coefficients"], dtype=np.float64).reshape(
        layout.n_blocks(n_species), packing.beta_size(nd)
    )
    if packing is CoefficientPacking.DENSE:
        matrices = blocks.reshape(-1, nd, nd)
    else:
        matrices = np.stack([unpack_symmetric(b, nd) for b in blocks])

    return CoefficientModel(
        radial_basis=RadialBasis(payload["radial_basis"]),
        cutoff_function=CutoffFunction(payload["cutoff_function"]),
        n_species=n_species,
        n_max=payload["n_max"],
        l_max=payload["l_max"],
        cutoff=payload["cutoff"],
        matrices=matrices,
        packing=packing,
        layout=layout,
    )


def read_model(
    path: PathLike,
    layout: CoefficientLayout = CoefficientLayout.PER_SPECIES,
) -> CoefficientModel:
    """
    Read a model file on the calling process only.

    Args:
        path: Model file.
        layout: Block layout the file holds.

    Returns:
        Parsed model.

    Raises:
        ModelFileError: If the file cannot be read or is malformed.
    """
    return model_from_payload(_read_payload(path, layout))


def load_model(
    path: PathLike,
    layout: CoefficientLayout = CoefficientLayout.PER_SPECIES,
    backend: ParallelBackend | str | None = None,
) -> CoefficientModel:
    """
    Load a model file on the root rank and broadcast it.

    Every rank either returns an identical model or raises the same
    :class:`ModelFileError`.

    Args:
        path: Model file (only read on the root rank).
        layout: Block layout the file holds.
        backend: Parallel backend. Defaults to the global default.

    Returns:
        Parsed model.
    """
    backend = get_backend(backend)

    message: dict[str, Any] | None = None
    if backend.is_root:
        try:
            message = {"payload": _read_payload(path, layout), "error": None}
        except ModelFileError as exc:
            message = {"payload": None, "error": exc.reason}

    message = backend.broadcast(message, root=0)
    if message["error"] is not None:
        raise ModelFileError(path, message["error"])

    model = model_from_payload(message["payload"])
    if backend.is_root:
        log.info(
            "loaded %s: %s basis, %s cutoff %.4g, n_species=%d n_max=%d "
            "l_max=%d n_descriptors=%d (%s, %s)",
            os.fspath(path),
            model.radial_basis.value,
            model.cutoff_function.value,
            model.cutoff,
            model.n_species,
            model.n_max,
            model.l_max,
            model.n_descriptors,
            model.packing.value,
            model.layout.value,
        )
    return model


def write_model(
    path: PathLike,
    model: CoefficientModel,
    comment: str = "mlpcore coefficient model",
    packing: CoefficientPacking | None = None,
    per_line: int = 5,
) -> None:
    """
    Write a model in the format read by :func:`load_model`.

    Args:
        path: Output file.
        model: Model to write.
        comment: First-line comment.
        packing: Storage of the blocks. Defaults to ``model.packing``.
        per_line: Coefficients per line.
    """
    packing = packing or model.packing
    nd = model.n_descriptors

    if packing is CoefficientPacking.DENSE:
        values = model.matrices.reshape(-1)
    else:
        for matrix in model.matrices:
            if not np.allclose(matrix, matrix.T):
                raise ValueError("packed storage requires symmetric blocks")
        values = np.concatenate([pack_symmetric(m) for m in model.matrices])

    with open(path, "w") as f:
        f.write(comment.replace("\n", " ") + "\n")
        f.write(f"{model.radial_basis.value}\n")
        f.write(
            f"{model.n_species} {model.n_max} {model.l_max} "
            f"{packing.beta_size(nd)}\n"
        )
        f.write(f"{model.cutoff_function.value}\n")
        f.write(f"{float(model.cutoff)!r}\n")
        for start in range(0, len(values), per_line):
            chunk = values[start : start + per_line]
            f.write(" ".join(f"{v:.17g}" for v in chunk) + "\n")


def _read_payload(path: PathLike, layout: CoefficientLayout) -> dict[str, Any]:
    """Read and parse a model file, mapping I/O failures to ModelFileError."""
    try:
        with open(path) as f:
            text = f.read()
    except OSError as exc:
        raise ModelFileError(path, f"cannot read model file: {exc.strerror}") from exc
    return parse_model(text, path, layout)
