from typing import Tuple

import jax_dataclasses as jdc
import numpy as onp
import scipy.sparse

from .. import hints


@jdc.pytree_dataclass
class SparseCooCoordinates:
    rows: hints.Array
    """Row indices of non-zero entries. Shape should be `(N,)`."""
    cols: hints.Array
    """Column indices of non-zero entries. Shape should be `(N,)`."""

    def __post_init__(self):
        assert self.rows.shape == self.cols.shape


@jdc.pytree_dataclass
class SparseCooMatrix:
    """Sparse matrix in COO form. Used to export the square-root information matrix
    and the stacked measurement Jacobian."""

    values: hints.Array
    """Non-zero matrix values. Shape should be `(N,)`."""
    coords: SparseCooCoordinates
    """Row and column indices of non-zero entries. Shapes should be `(N,)`."""
    shape: jdc.Static[Tuple[int, int]]
    """Shape of matrix."""

    def __matmul__(self, other: hints.Array) -> onp.ndarray:
        """Compute `Ax`, where `x` is a 1D vector."""
        assert other.shape == (
            self.shape[1],
        ), "Inner product only supported for 1D vectors!"
        out = onp.zeros(self.shape[0], dtype=onp.float64)
        onp.add.at(out, self.coords.rows, self.values * other[self.coords.cols])
        return out

    def as_dense(self) -> onp.ndarray:
        """Convert to a dense array. Duplicate entries are summed."""
        out = onp.zeros(self.shape, dtype=onp.float64)
        onp.add.at(out, (self.coords.rows, self.coords.cols), self.values)
        return out

    @staticmethod
    def from_scipy_coo_matrix(matrix: scipy.sparse.coo_matrix) -> "SparseCooMatrix":
        """Build from a sparse scipy matrix."""
        return SparseCooMatrix(
            values=matrix.data,
            coords=SparseCooCoordinates(
                rows=matrix.row,
                cols=matrix.col,
            ),
            shape=matrix.shape,
        )

    def as_scipy_coo_matrix(self) -> scipy.sparse.coo_matrix:
        """Convert to a sparse scipy matrix."""
        return scipy.sparse.coo_matrix(
            (self.values, (self.coords.rows, self.coords.cols)), shape=self.shape
        )

    @property
    def T(self) -> "SparseCooMatrix":
        """Return transpose of our sparse matrix."""
        return SparseCooMatrix(
            values=self.values,
            coords=SparseCooCoordinates(
                rows=self.coords.cols,
                cols=self.coords.rows,
            ),
            shape=self.shape[::-1],
        )

    @property
    def nnz(self) -> int:
        return int(self.values.shape[0])
