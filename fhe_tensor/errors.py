"""
Error Types for Encrypted Tensor Evaluation
===========================================
Configuration and structural errors abort a run. Numeric tolerance
mismatches are NOT errors: they are collected in a ToleranceReport.
"""

from typing import Optional, Tuple


class FHETensorError(Exception):
    """Base class for every error raised by the pipeline"""

    def __init__(self, message: str, position: Optional[Tuple[int, int]] = None):
        super().__init__(message)
        self.position = position

    def at(self, position: Tuple[int, int]) -> 'FHETensorError':
        """Attach the output cell that was being computed"""
        self.position = position
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.position is not None:
            return f"{message} (output cell {self.position})"
        return message


class KeyGenerationError(FHETensorError):
    """Requested security/depth parameters cannot produce a CKKS context"""


class ParameterInsufficientError(FHETensorError):
    """Scheme parameters cannot cover the planned computation"""


class DepthExhaustedError(FHETensorError):
    """
    A computation chain needs more multiplicative levels than provisioned.

    Signals a configuration bug. Never retried.
    """

    def __init__(self,
                 message: str,
                 required_level: int = 0,
                 depth_budget: int = 0,
                 position: Optional[Tuple[int, int]] = None):
        super().__init__(message, position)
        self.required_level = required_level
        self.depth_budget = depth_budget


class InsufficientDepthError(ParameterInsufficientError, DepthExhaustedError):
    """Pre-flight check: the planned chain is deeper than the configured depth"""

    def __init__(self, message: str, required_level: int, depth_budget: int):
        DepthExhaustedError.__init__(self, message, required_level, depth_budget)


class ShapeMismatchError(FHETensorError):
    """Tensor, kernel or vector dimensions do not fit the operation"""


class ContextMismatchError(FHETensorError):
    """Operands were produced under different encryption contexts"""
