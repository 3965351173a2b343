"""Tests for coefficient model loading, validation and broadcast."""

import logging
from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from mlpcore.ml.basis import CutoffFunction, RadialBasis
from mlpcore.ml.model import (
    CoefficientLayout,
    CoefficientPacking,
    ModelFileError,
    load_model,
    pack_symmetric,
    read_model,
    unpack_symmetric,
    write_model,
)
from mlpcore.parallel import SerialBackend


class RecordingBackend(SerialBackend):
    """Serial backend that pretends to be a given rank and records broadcasts."""

    def __init__(self, rank=0, incoming=None):
        self._rank = rank
        self._incoming = incoming
        self.sent = []

    @property
    def rank(self):
        return self._rank

    def broadcast(self, data, root=0):
        self.sent.append(data)
        return data if self._rank == root else self._incoming


class TestReadModel:
    """Tests for parsing model files."""

    def test_dense_single_species(self, model_file):
        """Test the minimal one-descriptor model."""
        path = model_file([2.5])
        model = read_model(path)

        assert model.radial_basis is RadialBasis.CHEBYSHEV
        assert model.cutoff_function is CutoffFunction.QUADRATIC
        assert model.cutoff == 3.0
        assert model.n_descriptors == 1
        assert model.packing is CoefficientPacking.DENSE
        np.testing.assert_array_equal(model.matrices, [[[2.5]]])

    def test_row_major_fill_across_line_breaks(self, model_file):
        """Test coefficients spanning arbitrary line breaks fill row-major."""
        # n_species=1, n_max=1, l_max=1 -> n_descriptors = 2
        coefficients = [1.0, 2.0, 3.0, 4.0]
        path = model_file(coefficients, l_max=1, per_line=3)
        model = read_model(path)

        np.testing.assert_array_equal(model.matrices[0], [[1.0, 2.0], [3.0, 4.0]])

    def test_packed_expansion(self, model_file):
        """Test packed coefficients reproduce the packed polynomial."""
        # n_descriptors = 3 with n_max=1, l_max=2
        packed = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        path = model_file(packed, l_max=2, beta_size=6)
        model = read_model(path)

        assert model.packing is CoefficientPacking.PACKED
        matrix = model.matrices[0]
        np.testing.assert_allclose(matrix, matrix.T)

        b = np.array([0.3, -1.2, 0.7])
        polynomial = sum(
            beta * b[j] * b[k] for beta, (j, k) in zip(packed, zip(*np.triu_indices(3)))
        )
        assert b @ matrix @ b == pytest.approx(polynomial)

    def test_per_species_pair_layout(self, model_file):
        """Test that the pair layout reads n_species^2 blocks."""
        # n_species=2, n_max=1, l_max=0 -> n_radial=2, n_descriptors=3
        coefficients = np.arange(4 * 9, dtype=float)
        path = model_file(coefficients, n_species=2)
        model = read_model(path, layout=CoefficientLayout.PER_SPECIES_PAIR)

        assert model.matrices.shape == (4, 3, 3)
        expected = np.arange(18, 27).reshape(3, 3)
        np.testing.assert_array_equal(model.block(1, 0), expected)

    def test_matrices_read_only(self, model_file):
        """Test that the loaded model is immutable."""
        model = read_model(model_file([1.0]))

        with pytest.raises(ValueError):
            model.matrices[0, 0, 0] = 5.0
        with pytest.raises(FrozenInstanceError):
            model.cutoff = 4.0

    def test_surplus_tokens_warn(self, model_file, caplog):
        """Test that surplus coefficients are ignored with a warning."""
        path = model_file([1.0, 9.0, 9.0])

        with caplog.at_level(logging.WARNING, logger="mlpcore.ml.model"):
            model = read_model(path)

        np.testing.assert_array_equal(model.matrices, [[[1.0]]])
        assert "ignoring 2 values" in caplog.text


class TestModelFileErrors:
    """Tests for configuration errors."""

    def test_beta_size_mismatch(self, model_file):
        """Test beta_size inconsistent with the derived dimension."""
        path = model_file([1.0, 2.0], l_max=1, beta_size=5)

        with pytest.raises(ModelFileError, match="beta_size 5") as excinfo:
            read_model(path)
        assert str(path) in str(excinfo.value)

    def test_unknown_basis(self, model_file):
        """Test that an unknown radial basis name is fatal."""
        path = model_file([1.0], basis="gaussian")
        with pytest.raises(ModelFileError, match="Unknown radial basis 'gaussian'"):
            read_model(path)

    def test_unknown_cutoff_function(self, model_file):
        """Test that an unknown cutoff name is fatal."""
        path = model_file([1.0], cutoff_function="polynomial")
        with pytest.raises(ModelFileError, match="Unknown cutoff function"):
            read_model(path)

    def test_too_few_coefficients(self, model_file):
        """Test that a truncated coefficient block is fatal."""
        path = model_file([1.0, 2.0, 3.0], l_max=1)
        with pytest.raises(ModelFileError, match="expected 4 coefficients, found 3"):
            read_model(path)

    def test_non_numeric_coefficient(self, model_file):
        """Test that a non-float token is fatal."""
        path = model_file(["1.0", "abc", "3.0", "4.0"], l_max=1)
        with pytest.raises(ModelFileError, match="invalid coefficient"):
            read_model(path)

    def test_bad_cutoff(self, model_file):
        """Test that a non-numeric cutoff radius is fatal."""
        path = model_file([1.0], cutoff="far")
        with pytest.raises(ModelFileError, match="line 5"):
            read_model(path)

    def test_truncated_header(self, tmp_path):
        """Test that a file with a short header is fatal."""
        path = tmp_path / "short.txt"
        path.write_text("comment\nchebyshev\n1 1 0 1\n")
        with pytest.raises(ModelFileError, match="header needs 5 lines"):
            read_model(path)

    def test_missing_file(self, tmp_path):
        """Test that an unreadable file is a configuration error."""
        path = tmp_path / "missing.txt"
        with pytest.raises(ModelFileError, match="cannot read model file") as excinfo:
            read_model(path)
        assert excinfo.value.filename == str(path)

    def test_is_value_error(self, model_file):
        """Test that configuration errors are ValueErrors."""
        with pytest.raises(ValueError):
            read_model(model_file([1.0], basis="none"))


class TestLoadModel:
    """Tests for root-only reading and broadcast."""

    def test_serial_load(self, model_file, caplog):
        """Test loading through the serial backend logs a summary."""
        path = model_file([1.0])

        with caplog.at_level(logging.INFO, logger="mlpcore.ml.model"):
            model = load_model(path, backend=SerialBackend())

        assert model.n_descriptors == 1
        assert "loaded" in caplog.text

    def test_root_broadcasts_payload(self, model_file):
        """Test that the root rank sends the parsed payload."""
        backend = RecordingBackend(rank=0)
        model = load_model(model_file([1.5]), backend=backend)

        (message,) = backend.sent
        assert message["error"] is None
        np.testing.assert_array_equal(message["payload"]["coefficients"], [1.5])
        assert model.matrices[0, 0, 0] == 1.5

    def test_non_root_builds_from_broadcast(self, model_file, tmp_path):
        """Test that non-root ranks never open the file."""
        root = RecordingBackend(rank=0)
        load_model(model_file([0.75]), backend=root)

        worker = RecordingBackend(rank=1, incoming=root.sent[0])
        model = load_model(tmp_path / "does-not-exist.txt", backend=worker)

        assert worker.sent == [None]
        assert model.matrices[0, 0, 0] == 0.75

    def test_error_reaches_every_rank(self, model_file):
        """Test that a root-side error is raised on other ranks too."""
        path = model_file([1.0], basis="unknown")
        root = RecordingBackend(rank=0)
        with pytest.raises(ModelFileError):
            load_model(path, backend=root)

        worker = RecordingBackend(rank=1, incoming=root.sent[0])
        with pytest.raises(ModelFileError, match="Unknown radial basis") as excinfo:
            load_model(path, backend=worker)
        assert str(path) in str(excinfo.value)


class TestWriteModel:
    """Tests for writing model files."""

    @pytest.mark.parametrize("packing", list(CoefficientPacking))
    def test_write_then_read(self, make_model, tmp_path, packing):
        """Test that written files load back to the same matrices."""
        model = make_model(n_species=2, n_max=1, l_max=1, cutoff=4.25)
        path = tmp_path / "written.txt"

        write_model(path, model, packing=packing)
        loaded = read_model(path)

        assert loaded.packing is packing
        assert loaded.same_descriptor(model)
        np.testing.assert_allclose(loaded.matrices, model.matrices, rtol=1e-15)

    def test_packed_requires_symmetric(self, make_model, tmp_path):
        """Test that non-symmetric blocks cannot be packed."""
        model = make_model(symmetric=False)
        with pytest.raises(ValueError, match="symmetric"):
            write_model(tmp_path / "x.txt", model, packing=CoefficientPacking.PACKED)

    def test_pack_unpack_inverse(self, rng):
        """Test pack_symmetric inverts unpack_symmetric."""
        packed = rng.normal(size=10)
        np.testing.assert_allclose(pack_symmetric(unpack_symmetric(packed, 4)), packed)
