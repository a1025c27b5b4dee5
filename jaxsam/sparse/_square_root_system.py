import dataclasses
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as onp
import scipy.sparse

from ..core import Jacobian, NodeBase
from ._column_layout import ColumnLayout
from ._covariance import SparseCovariance
from ._sparse_matrix import SparseCooCoordinates, SparseCooMatrix


@dataclasses.dataclass
class _SparseRow:
    """One row of `[A | b]` or of `[R | d]`. Indices are sorted and unique; the first
    entry is the row's leading (pivot) column."""

    indices: onp.ndarray
    values: onp.ndarray
    rhs: float

    @staticmethod
    def make(indices: onp.ndarray, values: onp.ndarray, rhs: float) -> "_SparseRow":
        order = onp.argsort(indices, kind="stable")
        indices = indices[order]
        values = values[order]
        nonzero = values != 0.0
        return _SparseRow(indices=indices[nonzero], values=values[nonzero], rhs=rhs)

    def scatter(self, indices: onp.ndarray) -> onp.ndarray:
        """Values of this row at `indices`, which must be a superset of ours."""
        out = onp.zeros(indices.shape[0], dtype=onp.float64)
        out[onp.searchsorted(indices, self.indices)] = self.values
        return out


class SquareRootInformationSystem:
    """Sparse linear least-squares system `min |A delta - b|^2`, kept in square-root
    information form `R delta = d`, where `R` is upper triangular and `R^T R = A^T A`.

    Rows of `[A | b]` come from factor Jacobians: each factor contributes
    `[J | -r]`, where `J` and `r` are its weighted Jacobian and residual. `R` is
    stored row-wise, indexed by pivot column. New rows are folded in with Givens
    rotations; a rotation against pivot row `k` only touches the columns present in
    that row and in the incoming row, so work is proportional to the fill reached by
    the new rows.

    The system is versioned: `reorder()` changes every column index, bumps
    `version`, and discards `R`. Until `batch_factorize()` is called,
    `incremental_factorize()` and `solve()` raise.
    """

    def __init__(self, pivot_tolerance: float = 1e-10):
        self.pivot_tolerance = pivot_tolerance
        """Pivots with magnitude below `pivot_tolerance * max(1, max |diag(R)|)` are
        treated as zero."""

        self.version: int = 0
        """Incremented every time the column layout is replaced."""

        self.residual_norm_squared: float = 0.0
        """Squared norm of fully eliminated right-hand side entries. This is the cost
        of the linearized problem at its minimum."""

        self._layout = ColumnLayout.make()
        self._rows: List[Optional[_SparseRow]] = []
        self._jacobians: List[Jacobian] = []
        self._pending: List[Jacobian] = []
        self._needs_batch = False

    # Layout.

    @property
    def layout(self) -> ColumnLayout:
        return self._layout

    @property
    def dim(self) -> int:
        return self._layout.dim

    @property
    def needs_batch(self) -> bool:
        """Set after reordering, until the next batch factorization."""
        return self._needs_batch

    @property
    def has_pending(self) -> bool:
        """Whether rows have been inserted but not factorized yet."""
        return len(self._pending) > 0

    def add_nodes(self, nodes: Iterable[NodeBase]) -> None:
        """Append columns for nodes that aren't part of the system yet."""
        for node in self._layout.append(nodes):
            column = self._layout.column_from_node[node]
            node._set_column(column)
            self._rows.extend([None] * node.get_dim())

    def reorder(self, nodes: Sequence[NodeBase]) -> None:
        """Replace the column layout. `nodes` must be a permutation of the nodes
        currently in the system."""
        assert len(nodes) == len(self._layout) and all(
            node in self._layout for node in nodes
        ), "Reordering must be a permutation of the current nodes"

        self._layout = ColumnLayout.make(nodes)
        for node, column in self._layout.column_from_node.items():
            node._set_column(column)

        self.version += 1
        self._rows = [None] * self._layout.dim
        self.residual_norm_squared = 0.0
        self._pending = list(self._jacobians)
        self._needs_batch = True

    # Rows.

    def insert_rows(self, jacobian: Jacobian) -> None:
        """Queue the weighted rows of a linearized factor for factorization. Every node
        must already have columns."""
        for node in jacobian.get_nodes():
            if node not in self._layout:
                raise ValueError(f"{node} has no columns in this system")
            if self._layout.column_from_node[node] != node.column:
                raise ValueError(f"{node} has a stale column index")
        if not jacobian.is_finite():
            raise FloatingPointError("Jacobian contains non-finite entries")

        self._jacobians.append(jacobian)
        self._pending.append(jacobian)

    def clear_rows(self) -> None:
        """Drop every linearized row, eg. before relinearizing all factors."""
        self._jacobians = []
        self._pending = []
        self._rows = [None] * self._layout.dim
        self.residual_norm_squared = 0.0

    @property
    def num_rows(self) -> int:
        return sum(jacobian.get_dim() for jacobian in self._jacobians)

    def _rows_from_jacobian(self, jacobian: Jacobian) -> List[_SparseRow]:
        columns = onp.concatenate(
            [
                self._layout.column_from_node[node] + onp.arange(node.get_dim())
                for node in jacobian.get_nodes()
            ]
        )
        A = onp.concatenate([block for _, block in jacobian.terms], axis=1)
        return [
            _SparseRow.make(columns, A[i], -float(jacobian.residual[i]))
            for i in range(jacobian.get_dim())
        ]

    # Factorization.

    def _fold(self, row: _SparseRow) -> None:
        """Eliminate a row against `R` with Givens rotations."""
        while row.indices.shape[0] > 0:
            column = int(row.indices[0])
            pivot_row = self._rows[column]
            if pivot_row is None:
                self._rows[column] = row
                return

            a = pivot_row.values[0]
            b = row.values[0]
            r = onp.hypot(a, b)
            cos = a / r
            sin = b / r

            indices = onp.union1d(pivot_row.indices, row.indices)
            pa = pivot_row.scatter(indices)
            pb = row.scatter(indices)

            pivot_values = cos * pa + sin * pb
            nonzero = pivot_values != 0.0
            self._rows[column] = _SparseRow(
                indices=indices[nonzero],
                values=pivot_values[nonzero],
                rhs=cos * pivot_row.rhs + sin * row.rhs,
            )

            # Leading entry is eliminated exactly. Cancellation can leave round-off
            # in the next columns; the row must move on to its first significant one.
            remainder = (-sin * pa + cos * pb)[1:]
            nonzero = remainder != 0.0
            significant = onp.abs(remainder) > self.pivot_tolerance * max(1.0, r)
            if onp.any(significant):
                nonzero[: int(onp.argmax(significant))] = False
            else:
                nonzero[:] = False
            row = _SparseRow(
                indices=indices[1:][nonzero],
                values=remainder[nonzero],
                rhs=-sin * pivot_row.rhs + cos * row.rhs,
            )

        self.residual_norm_squared += row.rhs**2

    def incremental_factorize(self) -> None:
        """Fold pending rows into `R`."""
        if self._needs_batch:
            raise RuntimeError(
                "Column layout changed since the last factorization; call"
                " batch_factorize() first"
            )
        for jacobian in self._pending:
            for row in self._rows_from_jacobian(jacobian):
                self._fold(row)
        self._pending = []

    def batch_factorize(self) -> None:
        """Rebuild `R` from every stored row."""
        self._rows = [None] * self._layout.dim
        self.residual_norm_squared = 0.0

        rows = [
            row
            for jacobian in self._jacobians
            for row in self._rows_from_jacobian(jacobian)
        ]
        empty = [row for row in rows if row.indices.shape[0] == 0]
        rows = [row for row in rows if row.indices.shape[0] > 0]

        rows.sort(key=lambda row: int(row.indices[0]))
        for row in empty + rows:
            self._fold(row)

        self._pending = []
        self._needs_batch = False

    # Solving.

    def rank_deficient_columns(self) -> Tuple[int, ...]:
        """Columns whose pivot is missing or (near-)zero."""
        pivots = onp.array(
            [0.0 if row is None else abs(row.values[0]) for row in self._rows]
        )
        if pivots.shape[0] == 0:
            return ()
        threshold = self.pivot_tolerance * max(1.0, float(onp.max(pivots)))
        return tuple(int(column) for column in onp.nonzero(pivots < threshold)[0])

    def rank_deficient_nodes(self) -> Tuple[NodeBase, ...]:
        """Nodes with at least one rank-deficient column, in column order."""
        nodes: List[NodeBase] = []
        for column in self.rank_deficient_columns():
            node = self._layout.node_from_column(column)
            if len(nodes) == 0 or nodes[-1] is not node:
                nodes.append(node)
        return tuple(nodes)

    def solve(self) -> onp.ndarray:
        """Back-substitute `R delta = d`. Rank-deficient columns get a zero step.

        Rows that are still pending are not included."""
        if self._needs_batch:
            raise RuntimeError(
                "Column layout changed since the last factorization; call"
                " batch_factorize() first"
            )

        deficient = set(self.rank_deficient_columns())
        delta = onp.zeros(self._layout.dim, dtype=onp.float64)
        for column in reversed(range(self._layout.dim)):
            row = self._rows[column]
            if row is None or column in deficient:
                continue
            delta[column] = (
                row.rhs - row.values[1:] @ delta[row.indices[1:]]
            ) / row.values[0]
        return delta

    # Exports.

    def get_R(self) -> SparseCooMatrix:
        """Square-root information matrix, in COO form."""
        rows: List[onp.ndarray] = []
        cols: List[onp.ndarray] = []
        values: List[onp.ndarray] = []
        for column, row in enumerate(self._rows):
            if row is None:
                continue
            rows.append(onp.full(row.indices.shape, column, dtype=onp.int64))
            cols.append(row.indices.astype(onp.int64))
            values.append(row.values)
        return SparseCooMatrix(
            values=onp.concatenate(values) if values else onp.zeros(0),
            coords=SparseCooCoordinates(
                rows=onp.concatenate(rows) if rows else onp.zeros(0, onp.int64),
                cols=onp.concatenate(cols) if cols else onp.zeros(0, onp.int64),
            ),
            shape=(self._layout.dim, self._layout.dim),
        )

    def get_rhs(self) -> onp.ndarray:
        """Right-hand side `d`. Zero where `R` has no row."""
        return onp.array(
            [0.0 if row is None else row.rhs for row in self._rows],
            dtype=onp.float64,
        )

    def get_A(self) -> SparseCooMatrix:
        """Stacked weighted Jacobian of every stored row, in COO form."""
        rows: List[onp.ndarray] = []
        cols: List[onp.ndarray] = []
        values: List[onp.ndarray] = []
        row_index = 0
        for jacobian in self._jacobians:
            for row in self._rows_from_jacobian(jacobian):
                rows.append(onp.full(row.indices.shape, row_index, dtype=onp.int64))
                cols.append(row.indices.astype(onp.int64))
                values.append(row.values)
                row_index += 1
        return SparseCooMatrix(
            values=onp.concatenate(values) if values else onp.zeros(0),
            coords=SparseCooCoordinates(
                rows=onp.concatenate(rows) if rows else onp.zeros(0, onp.int64),
                cols=onp.concatenate(cols) if cols else onp.zeros(0, onp.int64),
            ),
            shape=(row_index, self._layout.dim),
        )

    def get_b(self) -> onp.ndarray:
        """Stacked right-hand side of every stored row; negated weighted residuals."""
        if len(self._jacobians) == 0:
            return onp.zeros(0)
        return -onp.concatenate([jacobian.residual for jacobian in self._jacobians])

    def as_scipy_csr_matrix(self) -> scipy.sparse.csr_matrix:
        return self.get_R().as_scipy_coo_matrix().tocsr()

    @property
    def nnz(self) -> int:
        """Number of stored entries in `R`."""
        return sum(row.indices.shape[0] for row in self._rows if row is not None)

    def recover_marginal_covariance(self, nodes: Sequence[NodeBase]) -> onp.ndarray:
        """Marginal covariance of a set of nodes, as a dense square matrix. Blocks
        follow the order of `nodes`."""
        return SparseCovariance.make(self).compute_marginal(*nodes)
