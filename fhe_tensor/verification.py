"""
Verification Harness
====================
Decrypts encrypted results and compares them with a plaintext reference
computed by running the same algorithm directly on plaintext values.

Mismatches are collected per output position, never raised: one bad cell
must not hide the state of the others. Only structural problems
(mismatched shapes) raise.
"""

import time
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from .errors import ShapeMismatchError
from .fhe_engine import TensorFHE
from .polynomial_evaluator import PolynomialApproximation
from .secure_linear_algebra import convolution_output_shape
from .tensor_codec import EncryptedTensor, Kernel, PlaintextTensor, TensorCodec


# ==================== PLAINTEXT REFERENCES ====================

def reference_matmul(a: PlaintextTensor, b: PlaintextTensor) -> PlaintextTensor:
    """C = A x B on plaintext"""
    if a.cols != b.rows:
        raise ShapeMismatchError(
            f"Cannot multiply {a.shape} by {b.shape}: inner dimensions differ")
    return PlaintextTensor(a.values @ b.values)


def reference_convolve2d(x: PlaintextTensor, kernel: Kernel, stride: int = 1) -> PlaintextTensor:
    """Valid (no padding) convolution on plaintext, same window order as the engine"""
    out_rows, out_cols = convolution_output_shape(x.shape, kernel.shape, stride)
    k_rows, k_cols = kernel.shape
    output = np.zeros((out_rows, out_cols))
    for i in range(out_rows):
        for j in range(out_cols):
            window = x.values[i * stride:i * stride + k_rows, j * stride:j * stride + k_cols]
            output[i, j] = float(np.sum(window * kernel.values))
    return PlaintextTensor(output)


def reference_polynomial(x: PlaintextTensor, polynomial: PolynomialApproximation) -> PlaintextTensor:
    """Element-wise polynomial on plaintext"""
    return PlaintextTensor(polynomial.evaluate(x.values))


# ==================== REPORT ====================

@dataclass
class ToleranceEntry:
    """Outcome for one output position"""
    position: Tuple[int, int]
    decrypted: float
    expected: float
    absolute_error: float
    passed: bool

    def to_dict(self) -> dict:
        return {
            'position': list(self.position),
            'decrypted': self.decrypted,
            'expected': self.expected,
            'absolute_error': self.absolute_error,
            'passed': self.passed,
        }


@dataclass
class ToleranceReport:
    """
    Terminal artifact of a run.

    Exactly one entry per output position; success is the logical AND of
    every entry's pass flag.
    """
    name: str
    tolerance: float
    shape: Tuple[int, int]
    entries: List[ToleranceEntry] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def success(self) -> bool:
        return all(entry.passed for entry in self.entries)

    @property
    def failures(self) -> List[ToleranceEntry]:
        return [entry for entry in self.entries if not entry.passed]

    @property
    def max_error(self) -> float:
        return max((entry.absolute_error for entry in self.entries), default=0.0)

    def decrypted_values(self) -> List[List[float]]:
        grid = [[0.0] * self.shape[1] for _ in range(self.shape[0])]
        for entry in self.entries:
            i, j = entry.position
            grid[i][j] = entry.decrypted
        return grid

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'tolerance': self.tolerance,
            'shape': list(self.shape),
            'success': self.success,
            'max_error': self.max_error,
            'failures': len(self.failures),
            'elapsed_ms': round(self.elapsed_ms, 2),
            'entries': [entry.to_dict() for entry in self.entries],
        }

    def format_lines(self) -> List[str]:
        """Human-readable decrypted-vs-expected lines plus a summary line"""
        lines = [f"{self.name} (tolerance {self.tolerance:g}):"]
        for entry in self.entries:
            i, j = entry.position
            status = "PASS" if entry.passed else "FAIL"
            lines.append(
                f"   [{i}][{j}] result: {entry.decrypted:.8f} | expected: "
                f"{entry.expected:.8f} | error: {entry.absolute_error:.2e} [{status}]")
        if self.success:
            lines.append(f"   {self.name}: PASSED ({len(self.entries)} cells, "
                         f"max error {self.max_error:.2e})")
        else:
            lines.append(f"   {self.name}: FAILED ({len(self.failures)} of "
                         f"{len(self.entries)} cells out of tolerance)")
        return lines


# ==================== HARNESS ====================

class VerificationHarness:
    """
    The only component that holds the secret key.

    Runs single-threaded at the end of a pipeline.
    """

    def __init__(self, fhe_engine: TensorFHE, secret_key):
        self.codec = TensorCodec(fhe_engine)
        self._secret_key = secret_key

    def decrypt(self, encrypted: EncryptedTensor) -> PlaintextTensor:
        return self.codec.decode(encrypted, self._secret_key)

    def compare(self,
                name: str,
                decrypted: PlaintextTensor,
                expected: PlaintextTensor,
                tolerance: float) -> ToleranceReport:
        """
        Compare decrypted values with the reference, position by position.

        Raises:
            ShapeMismatchError: If the two grids differ in shape
        """
        if decrypted.shape != expected.shape:
            raise ShapeMismatchError(
                f"Result shape {decrypted.shape} differs from expected {expected.shape}")

        report = ToleranceReport(name=name, tolerance=tolerance, shape=expected.shape)
        for position in expected.positions():
            value, target = decrypted[position], expected[position]
            error = abs(value - target)
            report.entries.append(ToleranceEntry(
                position=position,
                decrypted=value,
                expected=target,
                absolute_error=error,
                passed=error <= tolerance,
            ))
        return report

    def verify(self,
               name: str,
               encrypted: EncryptedTensor,
               expected: PlaintextTensor,
               tolerance: float) -> ToleranceReport:
        """Decrypt every cell and compare with the reference"""
        if encrypted.shape != expected.shape:
            raise ShapeMismatchError(
                f"Encrypted result shape {encrypted.shape} differs from "
                f"expected {expected.shape}")

        start = time.time()
        decrypted = self.decrypt(encrypted)
        report = self.compare(name, decrypted, expected, tolerance)
        report.elapsed_ms = (time.time() - start) * 1000
        return report
