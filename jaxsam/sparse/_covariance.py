import dataclasses
import warnings
from typing import TYPE_CHECKING, Dict, List, Sequence, Tuple

import numpy as onp
import scipy.sparse
import scipy.sparse.linalg

from .._errors import RankDeficiencyWarning
from ..core import NodeBase
from ._column_layout import ColumnLayout

if TYPE_CHECKING:
    from ._square_root_system import SquareRootInformationSystem


@dataclasses.dataclass
class SparseCovariance:
    """Helper class for recovering marginal covariances from a square-root information
    matrix. Single entries are computed with the recursive algorithm described in [1];
    blocks with two sparse triangular solves.

    Columns with a (near-)zero pivot are conditioned out with a unit pivot: entries in
    their rows and columns are returned as NaN.

    [1] Covariance Recovery from a Square Root Information Matrix for Data Association
    http://www.cs.cmu.edu/~kaess/pub/Kaess09ras.pdf
    """

    R: scipy.sparse.csr_matrix
    R_T: scipy.sparse.csr_matrix
    R_diag_inv: onp.ndarray
    layout: ColumnLayout
    rank_deficient_columns: Tuple[int, ...]

    _value_cache: Dict[Tuple[int, int], float]

    @staticmethod
    def make(system: "SquareRootInformationSystem") -> "SparseCovariance":
        """Build the sparse covariance corresponding to a factorized system."""
        if system.needs_batch or system.has_pending:
            raise RuntimeError("Covariances require a fully factorized system")

        coo = system.get_R().as_scipy_coo_matrix()
        deficient = system.rank_deficient_columns()
        if len(deficient) > 0:
            warnings.warn(
                RankDeficiencyWarning(
                    f"Covariance undefined for {len(deficient)} rank-deficient"
                    " column(s)",
                    nodes=system.rank_deficient_nodes(),
                    columns=deficient,
                ),
                stacklevel=2,
            )
            deficient_array = onp.array(deficient, dtype=onp.int64)
            keep = ~(
                onp.isin(coo.row, deficient_array) | onp.isin(coo.col, deficient_array)
            )
            coo = scipy.sparse.coo_matrix(
                (
                    onp.concatenate([coo.data[keep], onp.ones(len(deficient))]),
                    (
                        onp.concatenate([coo.row[keep], deficient_array]),
                        onp.concatenate([coo.col[keep], deficient_array]),
                    ),
                ),
                shape=coo.shape,
            )

        R = coo.tocsr()
        R.sort_indices()
        R_T = R.T.tocsr()
        R_T.sort_indices()
        return SparseCovariance(
            R=R,
            R_T=R_T,
            R_diag_inv=1.0 / R.diagonal(),
            layout=system.layout,
            rank_deficient_columns=deficient,
            _value_cache={},
        )

    def as_dense(self, use_inverse: bool = True) -> onp.ndarray:
        """Return the full covariance as a dense array. Should only be used for
        debugging in small problems."""
        dim = self.R.shape[0]
        if use_inverse:
            R_inv = onp.linalg.inv(self.R.toarray())
            out = R_inv @ R_inv.T
        else:
            out = onp.array([[self[i, j] for j in range(dim)] for i in range(dim)])
        return self._mask_deficient(out, onp.arange(dim))

    def compute_marginal(self, *nodes: NodeBase) -> onp.ndarray:
        """Compute marginal covariance for a set of nodes. Input order matters.

        Output will be a square matrix."""

        indices: List[int] = []
        for node in nodes:
            start_index = self.layout.column_from_node[node]
            indices.extend(range(start_index, start_index + node.get_dim()))
        return self._compute_marginal(indices)

    def _compute_marginal(self, indices: Sequence[int]) -> onp.ndarray:
        """Compute marginal covariance using a set of indices.

        Extracts a square matrix, where the source row and column indices are specified
        by `indices`."""
        index_array = onp.asarray(indices, dtype=onp.int64)
        dim = index_array.shape[0]
        if dim == 0:
            return onp.zeros((0, 0))

        # Columns of the covariance: solve `R^T R X = E`.
        E = onp.zeros((self.R.shape[0], dim))
        E[index_array, onp.arange(dim)] = 1.0
        Y = scipy.sparse.linalg.spsolve_triangular(self.R_T, E, lower=True)
        X = scipy.sparse.linalg.spsolve_triangular(self.R, Y, lower=False)
        return self._mask_deficient(X[index_array, :], index_array)

    def _mask_deficient(self, matrix: onp.ndarray, indices: onp.ndarray) -> onp.ndarray:
        if len(self.rank_deficient_columns) == 0:
            return matrix
        mask = onp.isin(indices, onp.array(self.rank_deficient_columns))
        matrix = matrix.copy()
        matrix[mask, :] = onp.nan
        matrix[:, mask] = onp.nan
        return matrix

    def __getitem__(self, indices: Tuple[int, int]) -> float:
        """Get a single value in our sparse Covariance matrix."""

        # Enforce symmetry
        if indices[0] > indices[1]:
            indices = indices[::-1]
        row, col = indices

        if row in self.rank_deficient_columns or col in self.rank_deficient_columns:
            return onp.nan

        # Use cached value if available
        if indices in self._value_cache:
            return self._value_cache[indices]

        # Compute covariance value from square-root information matrix
        value: float

        if row == col:
            value = self.R_diag_inv[col] * (
                self.R_diag_inv[col] - self._sum_over_row(col, col)
            )
        else:
            value = -self.R_diag_inv[row] * self._sum_over_row(row, col)

        self._value_cache[indices] = value
        return value

    def _sum_over_row(self, row: int, col_l: int) -> float:
        start, end = self.R.indptr[row], self.R.indptr[row + 1]

        total: float = 0.0
        col: int
        val: float
        for col, val in zip(self.R.indices[start:end], self.R.data[start:end]):
            if col != row:  # Skip diagonal
                total += val * self[int(col), col_l]

        return total
