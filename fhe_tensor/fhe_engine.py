"""
FHE Engine for Encrypted Tensor Evaluation
==========================================
Scheme adapter over TenSEAL CKKS.

Exposes only the operations the encrypted algorithms may use:
    encrypt, decrypt, add, add_plain, multiply_plain, multiply_cipher,
    inner_product

Depth Accounting:
- Every handle carries its level (multiplications applied along its chain)
- add                  -> max(level_a, level_b)
- multiply_plain       -> level + 1   (a plaintext multiply still rescales)
- multiply_cipher      -> max(level_a, level_b) + 1
- inner_product        -> max(level_a, level_b) + 1 (rotations are free)
- A result level above the configured depth raises DepthExhaustedError
  BEFORE TenSEAL is called, so exhaustion is deterministic rather than a
  "scale out of bounds" failure deep inside SEAL.

All operations are pure: TenSEAL's non-inplace operators return new
ciphertexts and operands are never modified.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import tenseal as ts

from .errors import (
    ContextMismatchError,
    DepthExhaustedError,
    KeyGenerationError,
    ParameterInsufficientError,
    ShapeMismatchError,
)
from .key_management import KeyMaterial
from .security_logger import OperationLog, OperationType, DataType

logger = logging.getLogger(__name__)

Position = Tuple[int, int]


@dataclass(frozen=True)
class CipherHandle:
    """
    Opaque encrypted value.

    The ciphertext is a CKKS vector; `size` is how many of its slots carry
    data (1 for element-wise tensors, N for packed matmul rows/columns).
    No plaintext information is stored or derivable from this object.
    """
    ciphertext: ts.CKKSVector
    level: int
    size: int
    scale_bits: int
    context_id: str

    @property
    def scale(self) -> float:
        return float(2 ** self.scale_bits)

    def remaining_depth(self, depth_budget: int) -> int:
        """Multiplications still available along this handle's chain"""
        return depth_budget - self.level


class TensorFHE:
    """
    CKKS scheme adapter used by the codec, engine and polynomial evaluator.

    Holds the PUBLIC context only. Decryption requires the secret key to be
    passed in explicitly, which only the verification harness does.
    """

    def __init__(self,
                 keys: KeyMaterial,
                 operation_log: Optional[OperationLog] = None):
        """
        Args:
            keys: Key material of the run
            operation_log: Optional audit log of every scheme operation
        """
        self.keys = keys
        self.context = keys.public_context
        self.context_id = keys.context_id
        self.depth_budget = keys.depth_budget
        self.scale_bits = keys.parameters.scale_bits
        self.slot_count = keys.metadata.slot_count
        self.operation_log = operation_log

    # ==================== ENCRYPTION / DECRYPTION ====================

    def encrypt(self,
                values: Union[float, Sequence[float], np.ndarray],
                entity: str = 'encoder') -> CipherHandle:
        """
        Encrypt one value or a packed vector of values.

        Args:
            values: A scalar (one slot) or a sequence (packed slots)
            entity: Who encrypts, for the audit log

        Returns:
            Fresh CipherHandle at level 0
        """
        if isinstance(values, (int, float, np.integer, np.floating)):
            plain = [float(values)]
        else:
            plain = [float(v) for v in np.asarray(values, dtype=float).ravel()]

        if not plain:
            raise ShapeMismatchError("Cannot encrypt an empty vector")
        if len(plain) > self.slot_count:
            raise ParameterInsufficientError(
                f"Vector of length {len(plain)} exceeds {self.slot_count} slots")

        vector = ts.ckks_vector(self.context, plain)

        self._log(entity, OperationType.ENCRYPT,
                  [DataType.PLAINTEXT, DataType.CIPHERTEXT], 0,
                  {'size': len(plain)})

        return CipherHandle(
            ciphertext=vector,
            level=0,
            size=len(plain),
            scale_bits=self.scale_bits,
            context_id=self.context_id,
        )

    def decrypt(self,
                handle: CipherHandle,
                secret_key: "ts.enc_context.SecretKey",
                position: Optional[Position] = None) -> List[float]:
        """
        Decrypt a handle with the secret key.

        Only the verification harness holds the secret key. The recovered
        values are approximate (CKKS is lossy).

        Returns:
            The `handle.size` data slots
        """
        self._check_context(handle)
        if secret_key is None:
            raise ValueError("Cannot decrypt: no secret key supplied. "
                             "Only the verifier can decrypt.")

        decrypted = handle.ciphertext.decrypt(secret_key)

        self._log('verifier', OperationType.DECRYPT,
                  [DataType.CIPHERTEXT, DataType.PLAINTEXT], handle.level,
                  {'position': position, 'size': handle.size})

        return [float(v) for v in decrypted[:handle.size]]

    # ==================== HOMOMORPHIC OPERATIONS ====================

    def add(self,
            a: CipherHandle,
            b: CipherHandle,
            position: Optional[Position] = None) -> CipherHandle:
        """Homomorphic addition: E(a) + E(b) = E(a + b). No depth consumed."""
        self._check_context(a, b)
        if a.size != b.size:
            raise ShapeMismatchError(f"Cannot add vectors of size {a.size} and {b.size}")

        level = max(a.level, b.level)
        result = a.ciphertext + b.ciphertext

        self._log('evaluator', OperationType.ADD, [DataType.CIPHERTEXT], level,
                  {'position': position})
        return self._wrap(result, level, a.size)

    def add_plain(self,
                  a: CipherHandle,
                  scalar: float,
                  position: Optional[Position] = None) -> CipherHandle:
        """E(a) + c = E(a + c) for a public constant c. No depth consumed."""
        self._check_context(a)

        result = a.ciphertext + float(scalar)

        self._log('evaluator', OperationType.ADD_PLAIN,
                  [DataType.CIPHERTEXT, DataType.PUBLIC_PARAM], a.level,
                  {'position': position, 'scalar': float(scalar)})
        return self._wrap(result, a.level, a.size)

    def multiply_plain(self,
                       a: CipherHandle,
                       scalar: float,
                       position: Optional[Position] = None) -> CipherHandle:
        """
        E(a) x c = E(a x c) for a public scalar c.

        Consumes one level regardless of the scalar's value, including 0
        and 1, so every caller sees a uniform depth profile.
        """
        self._check_context(a)
        level = self._next_level('multiply_plain', a.level, position)

        result = a.ciphertext * float(scalar)

        self._log('evaluator', OperationType.MULTIPLY_PLAIN,
                  [DataType.CIPHERTEXT, DataType.PUBLIC_PARAM], level,
                  {'position': position, 'scalar': float(scalar)})
        return self._wrap(result, level, a.size)

    def multiply_cipher(self,
                        a: CipherHandle,
                        b: CipherHandle,
                        position: Optional[Position] = None) -> CipherHandle:
        """
        Homomorphic multiplication: E(a) x E(b) = E(a x b)

        Consumes one multiplicative level (relinearize + rescale).
        """
        self._check_context(a, b)
        if a.size != b.size:
            raise ShapeMismatchError(
                f"Cannot multiply vectors of size {a.size} and {b.size}")
        level = self._next_level('multiply_cipher', max(a.level, b.level), position)

        result = a.ciphertext * b.ciphertext

        self._log('evaluator', OperationType.MULTIPLY_CIPHER, [DataType.CIPHERTEXT],
                  level, {'position': position})
        return self._wrap(result, level, a.size)

    def inner_product(self,
                      a: CipherHandle,
                      b: CipherHandle,
                      length: int,
                      position: Optional[Position] = None) -> CipherHandle:
        """
        Encrypted dot product of two packed vectors.

        E(a) . E(b) = E(sum(a_i * b_i)), computed as one slot-wise
        multiplication followed by a rotate-and-add reduction. Rotations
        need Galois keys but consume no multiplicative depth.

        Returns:
            Single-slot handle holding the inner product
        """
        self._check_context(a, b)
        if not self.keys.has_rotation_keys:
            raise KeyGenerationError(
                "Inner products need rotation (Galois) keys; "
                "generate keys with rotation_keys=True")
        if a.size != length or b.size != length:
            raise ShapeMismatchError(
                f"Inner product of length {length} needs equal-length vectors, "
                f"got {a.size} and {b.size}")
        level = self._next_level('inner_product', max(a.level, b.level), position)

        result = a.ciphertext.dot(b.ciphertext)

        self._log('evaluator', OperationType.INNER_PRODUCT, [DataType.CIPHERTEXT],
                  level, {'position': position, 'length': length})
        return self._wrap(result, level, 1)

    # ==================== ACCOUNTING ====================

    def _next_level(self, operation: str, level: int,
                    position: Optional[Position]) -> int:
        next_level = level + 1
        if next_level > self.depth_budget:
            raise DepthExhaustedError(
                f"{operation} would reach level {next_level} but only "
                f"{self.depth_budget} multiplicative levels are provisioned",
                required_level=next_level,
                depth_budget=self.depth_budget,
                position=position,
            )
        return next_level

    def _check_context(self, *handles: CipherHandle):
        for handle in handles:
            if handle.context_id != self.context_id:
                raise ContextMismatchError(
                    f"Handle from context {handle.context_id} used with "
                    f"context {self.context_id}")

    def _wrap(self, vector: ts.CKKSVector, level: int, size: int) -> CipherHandle:
        return CipherHandle(
            ciphertext=vector,
            level=level,
            size=size,
            scale_bits=self.scale_bits,
            context_id=self.context_id,
        )

    def _log(self, entity: str, operation: OperationType,
             data_types: List[DataType], level: int, details: dict):
        logger.debug("%s %s level=%d %s", entity, operation.value, level, details)
        if self.operation_log is not None:
            self.operation_log.log(entity, operation, data_types, level, details)

    # ==================== UTILITY METHODS ====================

    def get_info(self) -> dict:
        """Get engine configuration information"""
        info = self.keys.metadata.to_dict()
        info['scheme'] = 'CKKS'
        info['has_secret_key'] = self.context.is_private()
        return info
