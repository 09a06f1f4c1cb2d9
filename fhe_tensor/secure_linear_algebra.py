"""
Secure Linear Algebra Operations
================================
Matrix multiplication and 2D convolution on encrypted tensors.

Contributions:
1. Fully Homomorphic Matrix Multiplication (encrypted A x encrypted B)
   via one encrypted inner product per output cell
2. Element-wise Matrix Multiplication for one-slot-per-element tensors
   (no rotation keys required)
3. Encrypted 2D Convolution with a plaintext kernel (windowed
   multiply-accumulate)

Every output cell consumes exactly one multiplicative level.
"""

from typing import Callable, Optional

from .errors import ShapeMismatchError
from .fhe_engine import CipherHandle, TensorFHE
from .tensor_codec import EncryptedTensor, EncryptedVectorSet, Kernel
from .workers import map_cells

MATMUL_DEPTH = 1
CONVOLUTION_DEPTH = 1


def convolution_output_shape(input_shape, kernel_shape, stride: int = 1):
    """
    Output shape of a valid (no padding) convolution.

    Raises:
        ShapeMismatchError: If the kernel does not fit the input
    """
    if stride < 1:
        raise ShapeMismatchError(f"Stride must be >= 1, got {stride}")
    (n_rows, n_cols), (k_rows, k_cols) = input_shape, kernel_shape
    if k_rows < 1 or k_cols < 1:
        raise ShapeMismatchError(f"Kernel shape {kernel_shape} is empty")
    if k_rows > n_rows or k_cols > n_cols:
        raise ShapeMismatchError(
            f"Kernel {kernel_shape} does not fit input {input_shape}")
    return ((n_rows - k_rows) // stride + 1, (n_cols - k_cols) // stride + 1)


class SecureLinearAlgebra:
    """
    Encrypted linear-algebra engine.

    Works on ciphertext only: kernel weights are public parameters and
    the engine never sees the secret key.
    """

    def __init__(self,
                 fhe_engine: TensorFHE,
                 max_workers: Optional[int] = None,
                 log_callback: Optional[Callable[[str], None]] = None):
        """
        Args:
            fhe_engine: Scheme adapter holding the public context
            max_workers: Worker pool size for independent output cells
            log_callback: Optional callback narrating each step
        """
        self.fhe = fhe_engine
        self.max_workers = max_workers
        self.log_callback = log_callback

    def _narrate(self, message: str):
        if self.log_callback:
            self.log_callback(message)

    def matrix_multiply(self,
                        enc_a_rows: EncryptedVectorSet,
                        enc_b_columns: EncryptedVectorSet) -> EncryptedTensor:
        """
        FULLY HOMOMORPHIC Matrix Multiplication.

        Both matrices are encrypted. Computes C = A x B where

            C[i][j] = InnerProduct(row_i(A), col_j(B), k)

        Args:
            enc_a_rows: A (n x k) encrypted row by row
            enc_b_columns: B (k x m) encrypted column by column

        Returns:
            EncryptedTensor (n x m), one single-slot handle per cell

        Raises:
            ShapeMismatchError: Wrong orientation or inner dimensions differ
        """
        if enc_a_rows.orientation != 'rows':
            raise ShapeMismatchError("Left operand must be encoded row by row")
        if enc_b_columns.orientation != 'columns':
            raise ShapeMismatchError("Right operand must be encoded column by column")

        inner = enc_a_rows.vector_length
        if enc_b_columns.vector_length != inner:
            raise ShapeMismatchError(
                f"Cannot multiply {enc_a_rows.matrix_shape} by "
                f"{enc_b_columns.matrix_shape}: inner dimensions differ")

        rows, cols = len(enc_a_rows), len(enc_b_columns)
        positions = [(i, j) for i in range(rows) for j in range(cols)]

        self._narrate(f"Computing {rows}x{cols} encrypted inner products of length {inner}")

        def compute_cell(position) -> CipherHandle:
            i, j = position
            self._narrate(f"        E(A[{i},:]) . E(B[:,{j}]) -> E(C[{i}][{j}])")
            return self.fhe.inner_product(enc_a_rows[i], enc_b_columns[j], inner,
                                          position=position)

        results = map_cells(compute_cell, positions, self.max_workers)
        return EncryptedTensor.from_grid(
            [[results[(i, j)] for j in range(cols)] for i in range(rows)])

    def elementwise_matrix_multiply(self,
                                    enc_a: EncryptedTensor,
                                    enc_b: EncryptedTensor) -> EncryptedTensor:
        """
        Matrix multiplication on one-slot-per-element tensors.

        C[i][j] = sum over t of E(A[i][t]) x E(B[t][j]), using ciphertext
        multiplications and additions only. No rotation keys needed.
        """
        if enc_a.cols != enc_b.rows:
            raise ShapeMismatchError(
                f"Cannot multiply {enc_a.shape} by {enc_b.shape}: inner dimensions differ")

        rows, inner, cols = enc_a.rows, enc_a.cols, enc_b.cols
        positions = [(i, j) for i in range(rows) for j in range(cols)]

        def compute_cell(position) -> CipherHandle:
            i, j = position
            total = None
            for t in range(inner):
                product = self.fhe.multiply_cipher(enc_a.cell(i, t), enc_b.cell(t, j),
                                                   position=position)
                total = product if total is None else self.fhe.add(total, product,
                                                                   position=position)
            return total

        results = map_cells(compute_cell, positions, self.max_workers)
        return EncryptedTensor.from_grid(
            [[results[(i, j)] for j in range(cols)] for i in range(rows)])

    def convolve2d(self,
                   enc_input: EncryptedTensor,
                   kernel: Kernel,
                   stride: int = 1) -> EncryptedTensor:
        """
        Encrypted 2D convolution with a plaintext kernel.

            Y[i][j] = sum over (m, n) of E(X[i*s + m][j*s + n]) x K[m][n]

        No padding. Every kernel weight goes through multiply_plain, zero
        weights included, so every output cell has the same depth profile.
        Partial products are accumulated in row-major window order.

        Args:
            enc_input: Encrypted input X (one handle per element)
            kernel: Plaintext stencil K
            stride: Window step in both directions

        Returns:
            EncryptedTensor of shape ((n-k)//s + 1, (m-k)//s + 1)
        """
        out_rows, out_cols = convolution_output_shape(enc_input.shape, kernel.shape, stride)
        k_rows, k_cols = kernel.shape
        positions = [(i, j) for i in range(out_rows) for j in range(out_cols)]

        self._narrate(f"Convolving {enc_input.shape} input with {kernel.shape} kernel "
                      f"(stride {stride}) -> {out_rows}x{out_cols}")

        def compute_cell(position) -> CipherHandle:
            i, j = position
            total = None
            for m in range(k_rows):
                for n in range(k_cols):
                    product = self.fhe.multiply_plain(
                        enc_input.cell(i * stride + m, j * stride + n),
                        kernel[m, n],
                        position=position)
                    total = product if total is None else self.fhe.add(
                        total, product, position=position)
            self._narrate(f"        window at ({i},{j}) -> E(Y[{i}][{j}])")
            return total

        results = map_cells(compute_cell, positions, self.max_workers)
        return EncryptedTensor.from_grid(
            [[results[(i, j)] for j in range(out_cols)] for i in range(out_rows)])
