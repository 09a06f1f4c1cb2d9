"""
Verification Harness Tests
==========================
Plaintext references and tolerance reports. Reports are built from
synthetic decrypted values, so no encryption is needed here.
"""

import pytest

from fhe_tensor.errors import ShapeMismatchError
from fhe_tensor.polynomial_evaluator import SILU, SQUARE
from fhe_tensor.tensor_codec import Kernel, PlaintextTensor
from fhe_tensor.verification import (
    ToleranceReport,
    VerificationHarness,
    reference_convolve2d,
    reference_matmul,
    reference_polynomial,
)

X = PlaintextTensor([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0], [7.0, 8.0, 9.0]])
K = Kernel([[1.0, 0.0], [0.0, 1.0]])


class TestReferences:

    def test_matmul(self):
        a = PlaintextTensor([[1.0, 2.0], [3.0, 4.0]])
        b = PlaintextTensor([[5.0, 6.0], [7.0, 8.0]])
        assert reference_matmul(a, b) == PlaintextTensor([[19.0, 22.0], [43.0, 50.0]])

    def test_matmul_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            reference_matmul(PlaintextTensor([[1.0, 2.0]]), PlaintextTensor([[1.0, 2.0]]))

    def test_convolution(self):
        assert reference_convolve2d(X, K) == PlaintextTensor([[6.0, 8.0], [12.0, 14.0]])

    def test_convolution_stride(self):
        assert reference_convolve2d(X, K, stride=2) == PlaintextTensor([[6.0]])

    def test_polynomials(self):
        conv = reference_convolve2d(X, K)
        assert reference_polynomial(conv, SQUARE) == PlaintextTensor(
            [[36.0, 64.0], [144.0, 196.0]])
        assert reference_polynomial(conv, SILU).shape == (2, 2)


class TestToleranceReport:
    """Tests for VerificationHarness.compare and ToleranceReport"""

    @pytest.fixture
    def harness(self):
        # compare() works on decrypted values only
        return VerificationHarness(fhe_engine=None, secret_key=None)

    @pytest.fixture
    def expected(self):
        return PlaintextTensor([[19.0, 22.0], [43.0, 50.0]])

    def test_all_within_tolerance(self, harness, expected):
        decrypted = PlaintextTensor([[19.0000001, 21.9999999], [43.0, 50.0000004]])
        report = harness.compare("matmul", decrypted, expected, 1e-6)

        assert report.success
        assert len(report.entries) == 4
        assert [e.position for e in report.entries] == [(0, 0), (0, 1), (1, 0), (1, 1)]
        assert report.failures == []
        assert report.max_error == pytest.approx(4e-7, abs=1e-12)

    def test_one_bad_cell_fails_the_report(self, harness, expected):
        decrypted = PlaintextTensor([[19.0, 22.0], [43.01, 50.0]])
        report = harness.compare("matmul", decrypted, expected, 1e-6)

        assert not report.success
        assert [e.position for e in report.failures] == [(1, 0)]
        # Remaining cells are still reported
        assert sum(e.passed for e in report.entries) == 3

    def test_success_is_and_of_entries(self, harness, expected):
        for delta in (0.0, 1e-5, 1e-3):
            decrypted = PlaintextTensor(expected.values + delta)
            report = harness.compare("shifted", decrypted, expected, 1e-4)
            assert report.success == all(e.passed for e in report.entries)

    def test_shape_mismatch(self, harness, expected):
        with pytest.raises(ShapeMismatchError):
            harness.compare("matmul", PlaintextTensor([[19.0, 22.0]]), expected, 1e-6)

    def test_format_lines(self, harness, expected):
        decrypted = PlaintextTensor([[19.0, 22.0], [43.5, 50.0]])
        lines = harness.compare("C = A * B", decrypted, expected, 1e-6).format_lines()

        assert lines[0] == "C = A * B (tolerance 1e-06):"
        assert len(lines) == 6
        assert "[1][0]" in lines[3] and lines[3].endswith("[FAIL]")
        assert lines[1].endswith("[PASS]")
        assert "FAILED (1 of 4 cells" in lines[-1]

    def test_to_dict_and_grid(self, harness, expected):
        report = harness.compare("matmul", expected, expected, 1e-6)
        data = report.to_dict()

        assert data['success'] is True
        assert data['shape'] == [2, 2]
        assert len(data['entries']) == 4
        assert report.decrypted_values() == [[19.0, 22.0], [43.0, 50.0]]

    def test_empty_report_is_successful(self):
        assert ToleranceReport(name="empty", tolerance=1.0, shape=(0, 0)).success
