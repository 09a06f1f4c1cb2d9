"""
Key Management for Encrypted Tensor Evaluation
==============================================
Creates the CKKS context and key material for one run.

Key Distribution Model:
1. The verifier (party holding the secret) generates the keys
2. A public context (no secret key) is shared with every producer of
   ciphertexts and with the evaluator
3. The secret key never leaves the KeyMaterial; only the verification
   harness uses it

Key material is scoped to one run and never persisted.
"""

import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional

import tenseal as ts

from .config import SchemeParameters
from .errors import KeyGenerationError
from .security_logger import OperationLog, OperationType, DataType

logger = logging.getLogger(__name__)


@dataclass
class KeyMetadata:
    """Metadata about a key context"""
    context_id: str
    created_at: str
    poly_modulus_degree: int
    coeff_mod_bit_sizes: List[int]
    scale_bits: int
    multiplicative_depth: int
    slot_count: int
    has_rotation_keys: bool
    security_level: str = "128-bit"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class KeyMaterial:
    """
    Keys for one run.

    public_context is what producers and the evaluator hold: they can
    encrypt and compute but cannot decrypt. secret_key is used only by the
    verification harness.
    """
    private_context: ts.Context
    public_context: ts.Context
    secret_key: "ts.enc_context.SecretKey"
    parameters: SchemeParameters
    metadata: KeyMetadata

    @property
    def context_id(self) -> str:
        return self.metadata.context_id

    @property
    def depth_budget(self) -> int:
        return self.parameters.multiplicative_depth

    @property
    def has_rotation_keys(self) -> bool:
        return self.metadata.has_rotation_keys


def _configure(context: ts.Context, parameters: SchemeParameters):
    """Scale and automatic rescale/relin/mod-switch for a context"""
    context.global_scale = parameters.global_scale
    context.auto_rescale = True
    context.auto_relin = True
    context.auto_mod_switch = True


def generate_keys(parameters: SchemeParameters,
                  operation_log: Optional[OperationLog] = None) -> KeyMaterial:
    """
    Build a CKKS context and its keys.

    Args:
        parameters: Scheme parameters (depth, scale, batch size, ...)
        operation_log: Optional audit log

    Returns:
        KeyMaterial with the private context, a public copy and the secret key

    Raises:
        KeyGenerationError: If the parameters are infeasible
        ParameterInsufficientError: If the ring cannot hold batch_size slots
    """
    poly_modulus_degree = parameters.resolve_poly_modulus_degree()
    coeff_mod_bit_sizes = parameters.coeff_mod_bit_sizes

    logger.info("Generating CKKS keys: degree=%d chain=%s scale=2^%d",
                poly_modulus_degree, coeff_mod_bit_sizes, parameters.scale_bits)

    try:
        context = ts.context(
            ts.SCHEME_TYPE.CKKS,
            poly_modulus_degree=poly_modulus_degree,
            coeff_mod_bit_sizes=coeff_mod_bit_sizes
        )
        context.generate_relin_keys()
        if parameters.rotation_keys:
            context.generate_galois_keys()
        _configure(context, parameters)

        secret_key = context.secret_key()

        public_context = context.copy()
        public_context.make_context_public()
        _configure(public_context, parameters)
    except (ValueError, RuntimeError) as e:
        raise KeyGenerationError(f"CKKS context generation failed: {e}") from e

    metadata = KeyMetadata(
        context_id=secrets.token_hex(8),
        created_at=datetime.now().isoformat(),
        poly_modulus_degree=poly_modulus_degree,
        coeff_mod_bit_sizes=coeff_mod_bit_sizes,
        scale_bits=parameters.scale_bits,
        multiplicative_depth=parameters.multiplicative_depth,
        slot_count=poly_modulus_degree // 2,
        has_rotation_keys=parameters.rotation_keys,
    )

    if operation_log is not None:
        operation_log.log(
            entity='verifier',
            operation=OperationType.KEYGEN,
            data_types=[DataType.METADATA],
            details={'context_id': metadata.context_id,
                     'poly_modulus_degree': poly_modulus_degree,
                     'multiplicative_depth': parameters.multiplicative_depth}
        )

    return KeyMaterial(
        private_context=context,
        public_context=public_context,
        secret_key=secret_key,
        parameters=parameters,
        metadata=metadata,
    )
