"""
Tensor Codec
============
Converts plaintext matrices to and from encrypted tensors.

Layouts:
- EncryptedTensor: one single-slot ciphertext per element (no packing).
  Simplifies indexing at the cost of slot parallelism.
- EncryptedVectorSet: one packed ciphertext per row or per column. The
  inner-product matmul needs A's rows and B's columns as equal-length
  vectors, so the regrouping happens at encode time.
"""

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple, Union

import numpy as np

from .errors import ContextMismatchError, ShapeMismatchError
from .fhe_engine import CipherHandle, TensorFHE

Position = Tuple[int, int]


class PlaintextTensor:
    """
    Immutable 2D grid of real numbers.

    Used both as algorithm input and as verification ground truth.
    """

    def __init__(self, values: Union[Sequence[Sequence[float]], np.ndarray]):
        try:
            array = np.array(values, dtype=float)
        except ValueError as e:
            raise ShapeMismatchError(f"Tensor rows must have equal length: {e}") from e

        if array.ndim != 2 or array.size == 0:
            raise ShapeMismatchError(
                f"Expected a non-empty 2D grid, got shape {array.shape}")

        array.setflags(write=False)
        self._values = array

    @property
    def values(self) -> np.ndarray:
        """Read-only numpy view"""
        return self._values

    @property
    def shape(self) -> Tuple[int, int]:
        return self._values.shape

    @property
    def rows(self) -> int:
        return self._values.shape[0]

    @property
    def cols(self) -> int:
        return self._values.shape[1]

    def __getitem__(self, position: Position) -> float:
        return float(self._values[position])

    def row(self, i: int) -> List[float]:
        return self._values[i, :].tolist()

    def column(self, j: int) -> List[float]:
        return self._values[:, j].tolist()

    def positions(self) -> Iterator[Position]:
        """Row-major positions"""
        for i in range(self.rows):
            for j in range(self.cols):
                yield (i, j)

    def to_list(self) -> List[List[float]]:
        return self._values.tolist()

    def __eq__(self, other) -> bool:
        if not isinstance(other, PlaintextTensor):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._values, other._values))

    def __repr__(self) -> str:
        return f"PlaintextTensor({self.to_list()})"


# A convolution stencil is a plaintext tensor whose weights are never encrypted
Kernel = PlaintextTensor


@dataclass(frozen=True)
class EncryptedTensor:
    """
    2D grid of single-slot ciphertext handles.

    Every handle was produced under the same encryption context.
    """
    handles: Tuple[Tuple[CipherHandle, ...], ...]

    def __post_init__(self):
        if not self.handles or not self.handles[0]:
            raise ShapeMismatchError("EncryptedTensor needs at least one cell")
        width = len(self.handles[0])
        if any(len(row) != width for row in self.handles):
            raise ShapeMismatchError("EncryptedTensor rows must have equal length")
        context_ids = {h.context_id for row in self.handles for h in row}
        if len(context_ids) != 1:
            raise ContextMismatchError(
                f"EncryptedTensor mixes handles from contexts {sorted(context_ids)}")

    @classmethod
    def from_grid(cls, grid: Sequence[Sequence[CipherHandle]]) -> 'EncryptedTensor':
        return cls(tuple(tuple(row) for row in grid))

    @property
    def shape(self) -> Tuple[int, int]:
        return (len(self.handles), len(self.handles[0]))

    @property
    def rows(self) -> int:
        return self.shape[0]

    @property
    def cols(self) -> int:
        return self.shape[1]

    @property
    def context_id(self) -> str:
        return self.handles[0][0].context_id

    @property
    def level(self) -> int:
        """Deepest level among the cells"""
        return max(h.level for row in self.handles for h in row)

    def cell(self, i: int, j: int) -> CipherHandle:
        return self.handles[i][j]

    def positions(self) -> Iterator[Position]:
        for i in range(self.rows):
            for j in range(self.cols):
                yield (i, j)

    def cells(self) -> Iterator[Tuple[Position, CipherHandle]]:
        for i, j in self.positions():
            yield (i, j), self.handles[i][j]


@dataclass(frozen=True)
class EncryptedVectorSet:
    """
    Packed rows or columns of a matrix, one ciphertext per vector.

    orientation is 'rows' (vector i = row i) or 'columns'
    (vector j = column j).
    """
    vectors: Tuple[CipherHandle, ...]
    orientation: str
    vector_length: int

    def __post_init__(self):
        if self.orientation not in ('rows', 'columns'):
            raise ValueError(f"Unknown orientation '{self.orientation}'")
        if any(v.size != self.vector_length for v in self.vectors):
            raise ShapeMismatchError("All packed vectors must have the same length")

    def __len__(self) -> int:
        return len(self.vectors)

    def __getitem__(self, index: int) -> CipherHandle:
        return self.vectors[index]

    @property
    def matrix_shape(self) -> Tuple[int, int]:
        """Shape of the matrix the vectors were taken from"""
        if self.orientation == 'rows':
            return (len(self.vectors), self.vector_length)
        return (self.vector_length, len(self.vectors))


class TensorCodec:
    """Encodes plaintext tensors into encrypted handles and back"""

    def __init__(self, fhe: TensorFHE):
        self.fhe = fhe

    def encode(self, tensor: PlaintextTensor) -> EncryptedTensor:
        """Encrypt each element independently, preserving grid shape"""
        grid = [
            [self.fhe.encrypt(tensor[i, j]) for j in range(tensor.cols)]
            for i in range(tensor.rows)
        ]
        return EncryptedTensor.from_grid(grid)

    def encode_rows(self, tensor: PlaintextTensor) -> EncryptedVectorSet:
        """Encrypt each row as one packed vector"""
        vectors = tuple(self.fhe.encrypt(tensor.row(i)) for i in range(tensor.rows))
        return EncryptedVectorSet(vectors, 'rows', tensor.cols)

    def encode_columns(self, tensor: PlaintextTensor) -> EncryptedVectorSet:
        """Encrypt each column as one packed vector"""
        vectors = tuple(self.fhe.encrypt(tensor.column(j)) for j in range(tensor.cols))
        return EncryptedVectorSet(vectors, 'columns', tensor.rows)

    def decode(self, encrypted: EncryptedTensor, secret_key) -> PlaintextTensor:
        """
        Decrypt every cell.

        The values are approximate: they carry the CKKS encoding noise.
        """
        values = [
            [self.fhe.decrypt(encrypted.cell(i, j), secret_key, (i, j))[0]
             for j in range(encrypted.cols)]
            for i in range(encrypted.rows)
        ]
        return PlaintextTensor(values)

    def decode_vectors(self, encrypted: EncryptedVectorSet, secret_key) -> PlaintextTensor:
        """Decrypt packed vectors back into the original matrix layout"""
        vectors = [self.fhe.decrypt(v, secret_key) for v in encrypted.vectors]
        if encrypted.orientation == 'rows':
            return PlaintextTensor(vectors)
        return PlaintextTensor(np.array(vectors).T)
