"""
Encrypted Evaluation Pipelines
==============================
plaintext tensor -> TensorCodec -> EncryptedTensor
    -> SecureLinearAlgebra and/or EncryptedPolynomialEvaluator
    -> encrypted result -> VerificationHarness -> ToleranceReport

Each evaluation (matmul, convolution, activation) is an independent run
with its own key material. The depth its computation chain needs is
checked against the configured depth BEFORE keys are generated or
anything is encrypted.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .config import PipelineConfig
from .errors import InsufficientDepthError, ParameterInsufficientError
from .fhe_engine import TensorFHE
from .key_management import KeyMaterial, generate_keys
from .polynomial_evaluator import (
    EncryptedPolynomialEvaluator,
    PolynomialApproximation,
    SILU,
    SQUARE,
)
from .secure_linear_algebra import CONVOLUTION_DEPTH, MATMUL_DEPTH, SecureLinearAlgebra
from .security_logger import OperationLog
from .tensor_codec import Kernel, PlaintextTensor, TensorCodec
from .verification import (
    ToleranceReport,
    VerificationHarness,
    reference_convolve2d,
    reference_matmul,
    reference_polynomial,
)

logger = logging.getLogger(__name__)


# Literal inputs of the reference evaluations
MATMUL_A = PlaintextTensor([[1.0, 2.0], [3.0, 4.0]])
MATMUL_B = PlaintextTensor([[5.0, 6.0], [7.0, 8.0]])
CONV_INPUT = PlaintextTensor([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0], [7.0, 8.0, 9.0]])
CONV_KERNEL = Kernel([[1.0, 0.0], [0.0, 1.0]])


@dataclass
class EvaluationResult:
    """Reports of one run plus its audit summary"""
    name: str
    reports: List[ToleranceReport]
    required_depth: int
    computation_time_ms: float
    audit: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return all(report.success for report in self.reports)

    def format_lines(self) -> List[str]:
        lines = []
        for report in self.reports:
            lines.extend(report.format_lines())
            lines.append("")
        outcome = "completed successfully" if self.success else "FAILED verification"
        lines.append(f"{self.name}: {outcome} "
                     f"(depth {self.required_depth}, {self.computation_time_ms:.0f} ms)")
        return lines


class EvaluationPipeline:
    """
    Wires key material, codec, engine, evaluator and harness together.

    Components receive the configuration explicitly; nothing is global, so
    several pipelines with different parameters can coexist.
    """

    def __init__(self,
                 config: Optional[PipelineConfig] = None,
                 operation_log: Optional[OperationLog] = None,
                 log_callback: Optional[Callable[[str], None]] = None):
        self.config = config or PipelineConfig()
        self.operation_log = (operation_log if operation_log is not None
                              else OperationLog(self.config.audit_log_path))
        self.log_callback = log_callback

        self.keys: Optional[KeyMaterial] = None
        self.fhe: Optional[TensorFHE] = None
        self.codec: Optional[TensorCodec] = None
        self.engine: Optional[SecureLinearAlgebra] = None
        self.evaluator: Optional[EncryptedPolynomialEvaluator] = None
        self.harness: Optional[VerificationHarness] = None

    # ==================== SETUP ====================

    def check_depth(self, required_depth: int, computation: str):
        """
        Fail fast when the configured depth cannot cover the chain.

        Raises:
            InsufficientDepthError: Before any key generation or encryption
        """
        budget = self.config.scheme.multiplicative_depth
        if required_depth > budget:
            raise InsufficientDepthError(
                f"{computation} needs multiplicative depth {required_depth}, "
                f"configured depth is {budget}",
                required_level=required_depth,
                depth_budget=budget,
            )

    def check_value_range(self, computation: str, *references: PlaintextTensor):
        """
        Fail fast when results would not fit the scale's value headroom.

        Decrypted values must stay below 2^(first_mod_bits - scale_bits - 1);
        anything larger wraps around modulo the first prime.

        Raises:
            ParameterInsufficientError: Before any key generation or encryption
        """
        bound = self.config.scheme.value_bound
        largest = max(float(abs(ref.values).max()) for ref in references)
        if largest >= bound:
            raise ParameterInsufficientError(
                f"{computation} produces values up to {largest:g}, but "
                f"{self.config.scheme.scale_bits}-bit scale with "
                f"{self.config.scheme.first_mod_bits}-bit first prime only holds "
                f"|x| < {bound:g}; lower --scale-bits")

    def setup(self) -> KeyMaterial:
        """Generate keys and build the components (once per pipeline)"""
        if self.keys is not None:
            return self.keys

        self._narrate("Generating CKKS keys...")
        self.keys = generate_keys(self.config.scheme, self.operation_log)
        self.fhe = TensorFHE(self.keys, self.operation_log)
        self.codec = TensorCodec(self.fhe)
        self.engine = SecureLinearAlgebra(self.fhe, self.config.max_workers,
                                          self.log_callback)
        self.evaluator = EncryptedPolynomialEvaluator(self.fhe, self.config.max_workers,
                                                      self.log_callback)
        self.harness = VerificationHarness(self.fhe, self.keys.secret_key)

        logger.info("Pipeline ready: context %s, depth %d",
                    self.keys.context_id, self.keys.depth_budget)
        return self.keys

    def _narrate(self, message: str):
        logger.info(message)
        if self.log_callback:
            self.log_callback(message)

    def _finish(self, name: str, reports: List[ToleranceReport],
                required_depth: int, start: float) -> EvaluationResult:
        result = EvaluationResult(
            name=name,
            reports=reports,
            required_depth=required_depth,
            computation_time_ms=(time.time() - start) * 1000,
            audit=self.operation_log.generate_audit_report(),
        )
        logger.info("%s finished: success=%s", name, result.success)
        return result

    # ==================== EVALUATIONS ====================

    def run_matmul(self,
                   a: PlaintextTensor = MATMUL_A,
                   b: PlaintextTensor = MATMUL_B,
                   packed: bool = True) -> EvaluationResult:
        """
        Encrypted matrix multiplication C = A x B.

        Args:
            a: Left matrix (n x k)
            b: Right matrix (k x m)
            packed: Inner products over packed rows/columns (needs rotation
                keys) instead of element-wise ciphertext multiplications
        """
        self.check_depth(MATMUL_DEPTH, "Matrix multiplication")
        expected = reference_matmul(a, b)
        self.check_value_range("Matrix multiplication", expected)
        start = time.time()
        self.setup()

        if packed:
            self._narrate("Encrypting rows of A and columns of B...")
            enc_c = self.engine.matrix_multiply(self.codec.encode_rows(a),
                                                self.codec.encode_columns(b))
        else:
            self._narrate("Encrypting A and B element by element...")
            enc_c = self.engine.elementwise_matrix_multiply(self.codec.encode(a),
                                                            self.codec.encode(b))

        report = self.harness.verify("Matrix multiplication C = A * B", enc_c, expected,
                                     self.config.tolerances.matmul)
        return self._finish("Homomorphic matrix multiplication", [report],
                            MATMUL_DEPTH, start)

    def run_convolution(self,
                        x: PlaintextTensor = CONV_INPUT,
                        kernel: Kernel = CONV_KERNEL,
                        stride: int = 1) -> EvaluationResult:
        """Encrypted 2D convolution of X with a plaintext kernel"""
        self.check_depth(CONVOLUTION_DEPTH, "Convolution")
        expected = reference_convolve2d(x, kernel, stride)
        self.check_value_range("Convolution", expected)
        start = time.time()
        self.setup()

        self._narrate("Encrypting input matrix X...")
        enc_x = self.codec.encode(x)
        self._narrate("Computing 2D convolution...")
        enc_y = self.engine.convolve2d(enc_x, kernel, stride)

        report = self.harness.verify("2D convolution", enc_y, expected,
                                     self.config.tolerances.convolution)
        return self._finish("Encrypted convolution", [report], CONVOLUTION_DEPTH, start)

    def run_activation(self,
                       x: PlaintextTensor = CONV_INPUT,
                       kernel: Kernel = CONV_KERNEL,
                       polynomials: Sequence[PolynomialApproximation] = (SQUARE, SILU),
                       stride: int = 1) -> EvaluationResult:
        """
        Convolution followed by polynomial activations.

        Each polynomial is applied to the encrypted convolution output and
        verified against the same polynomial evaluated on the plaintext
        convolution result.
        """
        if not polynomials:
            raise ValueError("At least one polynomial is required")
        required_depth = CONVOLUTION_DEPTH + max(p.required_depth for p in polynomials)
        self.check_depth(required_depth, "Convolution + activation")

        expected_conv = reference_convolve2d(x, kernel, stride)
        expected_outputs = [reference_polynomial(expected_conv, p) for p in polynomials]
        self.check_value_range("Convolution + activation", expected_conv, *expected_outputs)
        for polynomial in polynomials:
            if not polynomial.in_range(expected_conv.values):
                logger.warning("%s inputs span [%g, %g], outside its approximation range %s",
                               polynomial.name, expected_conv.values.min(),
                               expected_conv.values.max(), polynomial.input_range)
        start = time.time()
        self.setup()

        self._narrate("Encrypting input matrix X...")
        enc_x = self.codec.encode(x)
        self._narrate("Computing convolution to get activation inputs...")
        enc_conv = self.engine.convolve2d(enc_x, kernel, stride)

        encrypted_outputs = []
        for polynomial in polynomials:
            self._narrate(f"Applying {polynomial.describe()}...")
            encrypted_outputs.append(
                (polynomial, self.evaluator.evaluate_tensor(enc_conv, polynomial)))

        reports = [self.harness.verify("2D convolution", enc_conv, expected_conv,
                                       self.config.tolerances.convolution)]
        for (polynomial, enc_out), expected in zip(encrypted_outputs, expected_outputs):
            reports.append(self.harness.verify(
                f"Polynomial {polynomial.describe()}",
                enc_out,
                expected,
                self.config.tolerances.polynomial))

        return self._finish("Encrypted non-linear functions", reports,
                            required_depth, start)
