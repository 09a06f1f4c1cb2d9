"""
Encrypted Tensor Evaluation over CKKS

Matrix multiplication, sliding-window 2D convolution and polynomial
activation surrogates evaluated entirely on encrypted operands, verified
against plaintext references.
"""
from .config import PipelineConfig, SchemeParameters, Tolerances
from .errors import (
    FHETensorError,
    KeyGenerationError,
    ParameterInsufficientError,
    DepthExhaustedError,
    InsufficientDepthError,
    ShapeMismatchError,
    ContextMismatchError,
)
from .key_management import KeyMaterial, KeyMetadata, generate_keys
from .security_logger import OperationLog, OperationType, DataType
from .fhe_engine import TensorFHE, CipherHandle
from .tensor_codec import (
    PlaintextTensor,
    Kernel,
    EncryptedTensor,
    EncryptedVectorSet,
    TensorCodec,
)
from .secure_linear_algebra import SecureLinearAlgebra, convolution_output_shape
from .polynomial_evaluator import (
    PolynomialApproximation,
    EncryptedPolynomialEvaluator,
    SQUARE,
    SILU,
)
from .verification import ToleranceReport, ToleranceEntry, VerificationHarness
from .pipeline import EvaluationPipeline, EvaluationResult

__version__ = "0.1.0"

__all__ = [
    # Configuration and errors
    'PipelineConfig', 'SchemeParameters', 'Tolerances',
    'FHETensorError', 'KeyGenerationError', 'ParameterInsufficientError',
    'DepthExhaustedError', 'InsufficientDepthError', 'ShapeMismatchError',
    'ContextMismatchError',
    # Scheme
    'KeyMaterial', 'KeyMetadata', 'generate_keys',
    'OperationLog', 'OperationType', 'DataType',
    'TensorFHE', 'CipherHandle',
    # Tensors
    'PlaintextTensor', 'Kernel', 'EncryptedTensor', 'EncryptedVectorSet', 'TensorCodec',
    # Algorithms
    'SecureLinearAlgebra', 'convolution_output_shape',
    'PolynomialApproximation', 'EncryptedPolynomialEvaluator', 'SQUARE', 'SILU',
    # Verification
    'ToleranceReport', 'ToleranceEntry', 'VerificationHarness',
    'EvaluationPipeline', 'EvaluationResult',
]
