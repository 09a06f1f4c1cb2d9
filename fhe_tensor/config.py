"""
Pipeline Configuration
======================
CKKS scheme parameters, per-algorithm tolerances and pipeline settings.

Parameters are passed explicitly to every component so independent
pipelines (e.g. different parameter sets under test) can coexist.

Modulus chain layout (TenSEAL / SEAL):
    [first_mod_bits] + [scale_bits] * multiplicative_depth + [first_mod_bits]

- The first prime holds the decrypted value after all rescales, so
  values must stay below 2^(first_mod_bits - scale_bits - 1).
- Each middle prime is consumed by one rescale (one multiplicative level).
- The last prime is the special key-switching prime.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from .errors import KeyGenerationError, ParameterInsufficientError


# Maximum total coefficient modulus bits for 128-bit security (SEAL defaults)
MAX_COEFF_BITS_128 = {
    1024: 27,
    2048: 54,
    4096: 109,
    8192: 218,
    16384: 438,
    32768: 881,
}

MAX_PRIME_BITS = 60
MIN_SCALE_BITS = 20


@dataclass
class SchemeParameters:
    """
    CKKS parameters passed once at context setup.

    Attributes:
        multiplicative_depth: Levels available before the chain is exhausted
        scale_bits: Bits of fixed-point precision (log2 of the global scale)
        first_mod_bits: Size of the first and special primes
        batch_size: Slots required per ciphertext (1 = one value per handle)
        poly_modulus_degree: Ring degree, chosen automatically when None
        rotation_keys: Generate Galois keys (needed by inner products)
    """
    multiplicative_depth: int = 2
    scale_bits: int = 40
    first_mod_bits: int = 60
    batch_size: int = 1
    poly_modulus_degree: Optional[int] = None
    rotation_keys: bool = True

    @property
    def coeff_mod_bit_sizes(self) -> List[int]:
        return ([self.first_mod_bits]
                + [self.scale_bits] * self.multiplicative_depth
                + [self.first_mod_bits])

    @property
    def global_scale(self) -> float:
        return float(2 ** self.scale_bits)

    @property
    def value_bound(self) -> float:
        """Largest magnitude that survives decryption at the last level"""
        return float(2 ** (self.first_mod_bits - self.scale_bits - 1))

    def validate(self):
        """
        Reject parameters no CKKS context can be built from.

        Raises:
            KeyGenerationError: If depth or prime sizes are infeasible
        """
        if self.multiplicative_depth < 1:
            raise KeyGenerationError(
                f"multiplicative depth must be >= 1, got {self.multiplicative_depth}")
        if not MIN_SCALE_BITS <= self.scale_bits <= MAX_PRIME_BITS:
            raise KeyGenerationError(
                f"scale bits must be within [{MIN_SCALE_BITS}, {MAX_PRIME_BITS}], "
                f"got {self.scale_bits}")
        if not self.scale_bits < self.first_mod_bits <= MAX_PRIME_BITS:
            raise KeyGenerationError(
                f"first modulus bits must be in ({self.scale_bits}, {MAX_PRIME_BITS}], "
                f"got {self.first_mod_bits}")
        if self.batch_size < 1:
            raise KeyGenerationError(f"batch size must be >= 1, got {self.batch_size}")

    def resolve_poly_modulus_degree(self) -> int:
        """
        Pick the ring degree for the modulus chain.

        An explicit degree is checked against the 128-bit security table.
        Otherwise the smallest secure degree is selected.

        Raises:
            KeyGenerationError: If the chain is too long for 128-bit security
            ParameterInsufficientError: If the ring has fewer slots than batch_size
        """
        self.validate()
        total_bits = sum(self.coeff_mod_bit_sizes)

        if self.poly_modulus_degree is not None:
            max_bits = MAX_COEFF_BITS_128.get(self.poly_modulus_degree)
            if max_bits is None:
                raise KeyGenerationError(
                    f"unsupported poly modulus degree {self.poly_modulus_degree}")
            if total_bits > max_bits:
                raise KeyGenerationError(
                    f"modulus chain of {total_bits} bits exceeds the 128-bit security "
                    f"limit of {max_bits} bits for degree {self.poly_modulus_degree}")
            degree = self.poly_modulus_degree
        else:
            candidates = [n for n, bits in sorted(MAX_COEFF_BITS_128.items())
                          if bits >= total_bits and n >= 4096]
            if not candidates:
                raise KeyGenerationError(
                    f"modulus chain of {total_bits} bits (depth "
                    f"{self.multiplicative_depth}) has no 128-bit secure ring degree")
            degree = candidates[0]

        if self.batch_size > degree // 2:
            raise ParameterInsufficientError(
                f"batch size {self.batch_size} exceeds the {degree // 2} slots "
                f"of ring degree {degree}")
        return degree

    def to_dict(self) -> dict:
        data = asdict(self)
        data['coeff_mod_bit_sizes'] = self.coeff_mod_bit_sizes
        return data


@dataclass
class Tolerances:
    """
    Absolute error accepted per algorithm.

    Linear operations only carry encoding noise. Polynomial surrogates also
    carry the truncation error of the approximation.
    """
    matmul: float = 1e-6
    convolution: float = 1e-4
    polynomial: float = 1e-3

    def for_algorithm(self, algorithm: str) -> float:
        try:
            return {
                'matmul': self.matmul,
                'convolution': self.convolution,
                'polynomial': self.polynomial,
            }[algorithm]
        except KeyError:
            raise ValueError(f"Unknown algorithm '{algorithm}'") from None


@dataclass
class PipelineConfig:
    """Everything one evaluation run needs"""
    scheme: SchemeParameters = field(default_factory=SchemeParameters)
    tolerances: Tolerances = field(default_factory=Tolerances)
    max_workers: Optional[int] = None
    audit_log_path: Optional[str] = None

    @classmethod
    def for_matmul(cls, **overrides) -> 'PipelineConfig':
        """Inner-product matmul: depth 1, 50-bit scale, rotation keys"""
        scheme = SchemeParameters(multiplicative_depth=1, scale_bits=50,
                                  batch_size=8, rotation_keys=True)
        return cls._with_overrides(scheme, overrides)

    @classmethod
    def for_convolution(cls, **overrides) -> 'PipelineConfig':
        """Plaintext-kernel convolution: depth 1, 50-bit scale, no rotations"""
        scheme = SchemeParameters(multiplicative_depth=1, scale_bits=50,
                                  rotation_keys=False)
        return cls._with_overrides(scheme, overrides)

    @classmethod
    def for_activation(cls, **overrides) -> 'PipelineConfig':
        """
        Convolution followed by polynomial activations.

        Depth 4 = 1 (convolution) + 2 (x^4 by squaring) + 1 (coefficients).
        A 45-bit scale keeps the SiLU output (|y| < 2^14) within the first prime.
        """
        scheme = SchemeParameters(multiplicative_depth=4, scale_bits=45,
                                  rotation_keys=False)
        return cls._with_overrides(scheme, overrides)

    @classmethod
    def _with_overrides(cls, scheme: SchemeParameters, overrides: Dict) -> 'PipelineConfig':
        config = cls(scheme=scheme)
        for key, value in overrides.items():
            if value is None:
                continue
            if hasattr(config.scheme, key):
                setattr(config.scheme, key, value)
            elif hasattr(config.tolerances, key):
                setattr(config.tolerances, key, value)
            elif hasattr(config, key):
                setattr(config, key, value)
            else:
                raise ValueError(f"Unknown configuration option '{key}'")
        return config
