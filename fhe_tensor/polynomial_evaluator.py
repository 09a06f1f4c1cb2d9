"""
Encrypted Polynomial Evaluation
===============================

CKKS supports addition and multiplication, but NOT transcendental or
piecewise functions. A nonlinear activation f(x) is therefore replaced by a
fixed polynomial surrogate over a bounded input range:

    f(x) ~ c0 + c1 * x^p1 + c2 * x^p2 + ...

Power Computation (repeated squaring):
--------------------------------------
    x^1 = x
    x^2 = x * x
    x^4 = x^2 * x^2
    x^p = x^(2^k) * x^(p - 2^k)      where 2^k < p <= 2^(k+1)

Previously computed powers are reused, so x^p costs ceil(log2 p) levels
instead of p - 1.

Depth Budget:
-------------
Each term multiplies x^p by its coefficient (one more level), so a
polynomial of maximum power p needs

    ceil(log2 p) + 1

levels on top of whatever its input already consumed (e.g. 1 for a
preceding convolution). The constant term is a plaintext addition and is
free.

Accuracy is bounded by the surrogate's own approximation error over the
input range plus CKKS noise; both go into the chosen tolerance.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from .fhe_engine import CipherHandle, TensorFHE
from .tensor_codec import EncryptedTensor
from .workers import map_cells


def power_depth(power: int) -> int:
    """Levels needed to reach x^power by repeated squaring"""
    if power <= 1:
        return 0
    # ceil(log2 p), exact on integers
    return (power - 1).bit_length()


@dataclass(frozen=True)
class PolynomialApproximation:
    """
    Fixed polynomial surrogate for a nonlinear function.

    terms are (power, coefficient) pairs; powers need not be consecutive.
    Power 0 is the constant term.
    """
    terms: Tuple[Tuple[int, float], ...]
    name: str = "polynomial"
    input_range: Optional[Tuple[float, float]] = None

    def __post_init__(self):
        terms = tuple((int(p), float(c)) for p, c in self.terms)
        if not terms:
            raise ValueError("A polynomial needs at least one term")
        if any(p < 0 for p, _ in terms):
            raise ValueError(f"Powers must be non-negative: {terms}")
        if len({p for p, _ in terms}) != len(terms):
            raise ValueError(f"Each power may appear once: {terms}")
        if not any(p > 0 for p, _ in terms):
            raise ValueError("A polynomial needs at least one positive power")
        object.__setattr__(self, 'terms', terms)

    @classmethod
    def from_coefficients(cls, coefficients: Sequence[float],
                          name: str = "polynomial") -> 'PolynomialApproximation':
        """Build from dense coefficients [c0, c1, c2, ...], skipping zeros"""
        terms = tuple((p, c) for p, c in enumerate(coefficients) if c != 0)
        return cls(terms, name=name)

    @property
    def max_power(self) -> int:
        return max(p for p, _ in self.terms)

    @property
    def powers(self) -> Tuple[int, ...]:
        return tuple(sorted(p for p, _ in self.terms if p > 0))

    @property
    def required_depth(self) -> int:
        """Levels consumed on top of the input's own level"""
        return power_depth(self.max_power) + 1

    def in_range(self, values) -> bool:
        """True when every value lies in input_range (always True without one)"""
        if self.input_range is None:
            return True
        low, high = self.input_range
        values = np.asarray(values, dtype=float)
        return bool(np.all((values >= low) & (values <= high)))

    def evaluate(self, x):
        """Direct plaintext evaluation (scalar or numpy array)"""
        x = np.asarray(x, dtype=float)
        result = np.zeros_like(x)
        for power, coefficient in self.terms:
            result = result + coefficient * np.power(x, power)
        return float(result) if result.ndim == 0 else result

    def describe(self) -> str:
        parts = []
        for power, coefficient in self.terms:
            if power == 0:
                parts.append(f"{coefficient:g}")
            elif power == 1:
                parts.append(f"{coefficient:g}x")
            else:
                parts.append(f"{coefficient:g}x^{power}")
        return f"{self.name}(x) = " + " + ".join(parts).replace("+ -", "- ")


SQUARE = PolynomialApproximation(((2, 1.0),), name="square")

# Degree-4 SiLU surrogate: x * sigmoid(x) ~ 0.5x + 0.25x^2 - x^4/48
SILU = PolynomialApproximation(
    ((1, 0.5), (2, 0.25), (4, -1.0 / 48.0)),
    name="silu",
    input_range=(-4.0, 4.0),
)


class EncryptedPolynomialEvaluator:
    """
    Evaluates polynomial surrogates on encrypted scalars.

    Operations used: multiply_cipher (powers), multiply_plain
    (coefficients), add and add_plain (accumulation).
    """

    def __init__(self,
                 fhe_engine: TensorFHE,
                 max_workers: Optional[int] = None,
                 log_callback: Optional[Callable[[str], None]] = None):
        self.fhe = fhe_engine
        self.max_workers = max_workers
        self.log_callback = log_callback

    def compute_powers(self,
                       x: CipherHandle,
                       powers: Sequence[int],
                       position=None) -> Dict[int, CipherHandle]:
        """
        Compute E(x^p) for every requested power by repeated squaring.

        x^2 is always computed before x^4, and any power is built from
        powers already in the cache.
        """
        cache: Dict[int, CipherHandle] = {1: x}

        def power_of(p: int) -> CipherHandle:
            if p in cache:
                return cache[p]
            half = 1 << (p.bit_length() - 1)
            if half == p:
                root = power_of(p // 2)
                result = self.fhe.multiply_cipher(root, root, position=position)
            else:
                result = self.fhe.multiply_cipher(power_of(half), power_of(p - half),
                                                  position=position)
            cache[p] = result
            return result

        return {p: power_of(p) for p in sorted(powers)}

    def evaluate(self,
                 x: CipherHandle,
                 polynomial: PolynomialApproximation,
                 position=None) -> CipherHandle:
        """
        Evaluate the polynomial on one encrypted scalar.

        Args:
            x: E(x)
            polynomial: Surrogate to evaluate
            position: Output cell (for the audit trail)

        Returns:
            E(f(x))
        """
        powers = self.compute_powers(x, polynomial.powers, position)

        result = None
        constant = 0.0
        for power, coefficient in polynomial.terms:
            if power == 0:
                constant += coefficient
                continue
            term = self.fhe.multiply_plain(powers[power], coefficient, position=position)
            result = term if result is None else self.fhe.add(result, term, position=position)

        if constant:
            result = self.fhe.add_plain(result, constant, position=position)
        return result

    def evaluate_tensor(self,
                        enc_input: EncryptedTensor,
                        polynomial: PolynomialApproximation) -> EncryptedTensor:
        """Apply the polynomial to every cell independently"""
        if self.log_callback:
            self.log_callback(f"Evaluating {polynomial.describe()} on "
                              f"{enc_input.rows}x{enc_input.cols} encrypted cells")

        def compute_cell(position) -> CipherHandle:
            return self.evaluate(enc_input.cell(*position), polynomial, position)

        positions = list(enc_input.positions())
        results = map_cells(compute_cell, positions, self.max_workers)
        return EncryptedTensor.from_grid(
            [[results[(i, j)] for j in range(enc_input.cols)]
             for i in range(enc_input.rows)])
