import contextlib
import dataclasses
import functools
import warnings
from typing import Any, List, Optional, TextIO, Tuple, Type

import jax
import numpy as onp
import termcolor
from tqdm.auto import tqdm

from .. import utils
from .._errors import ConvergenceWarning, RankDeficiencyWarning
from ..core import FactorBase, NodeBase
from ..sparse import SquareRootInformationSystem, compute_ordering
from ._properties import Properties


@dataclasses.dataclass(frozen=True)
class SolveReport:
    """Summary of an update or a batch optimization."""

    step: int
    """Number of `update()` calls so far."""

    iterations: int
    """Number of linear solves performed."""

    cost: float
    """Sum of squared weighted errors. After incremental steps, this is the cost of
    the linearized problem."""

    converged: bool
    """Whether termination criteria were met. Only meaningful for batch
    optimization."""

    batch: bool
    """Whether the whole graph was relinearized and refactorized."""

    rank_deficient_nodes: Tuple[NodeBase, ...]
    """Nodes that the current factors don't fully constrain. Their estimates were not
    moved along the unconstrained directions."""


@functools.partial(jax.jit, static_argnums=0)
def _retract(node_type: Type[NodeBase], x: Any, local_delta: onp.ndarray) -> Any:
    return node_type.manifold_retract(x, local_delta)


class Slam:
    """Incremental smoother over a graph of nodes and factors.

    Nodes and factors live in an arena owned by this object: each is given a stable
    integer index when registered. Only the engine moves node estimates.

    Example:
    ```
    slam = Slam()
    pose0 = Pose2dNode()
    slam.add(Pose2dFactor.make(pose0, Pose2d(), onp.eye(3)))
    pose1 = Pose2dNode()
    slam.add(Pose2dPose2dFactor.make(pose0, pose1, Pose2d(1.0, 0.0, 0.0), onp.eye(3)))
    slam.batch_optimize()
    ```
    """

    def __init__(self, properties: Optional[Properties] = None):
        self.properties = Properties() if properties is None else properties
        self._nodes: List[NodeBase] = []
        self._factors: List[FactorBase] = []
        self._system = SquareRootInformationSystem(
            pivot_tolerance=self.properties.pivot_tolerance
        )
        self._step = 0

    @property
    def nodes(self) -> Tuple[NodeBase, ...]:
        return tuple(self._nodes)

    @property
    def factors(self) -> Tuple[FactorBase, ...]:
        return tuple(self._factors)

    @property
    def system(self) -> SquareRootInformationSystem:
        return self._system

    @property
    def step(self) -> int:
        return self._step

    def _print(self, *args: Any) -> None:
        if self.properties.verbose:
            print(f"[{type(self).__name__}]", *args)

    # Graph construction.

    def add_node(self, node: NodeBase) -> int:
        """Register a node. Returns its index. Adding a node twice is a no-op."""
        if node._owner is self:
            assert node._index is not None
            return node._index
        if node._owner is not None:
            raise ValueError(f"{node} already belongs to another graph")

        node._owner = self
        node._index = len(self._nodes)
        self._nodes.append(node)
        return node._index

    def add_factor(self, factor: FactorBase) -> int:
        """Initialize, linearize, and insert a factor without solving. Returns the
        factor's index.

        If anything fails, nodes initialized by this call are reset and the graph is
        left untouched.
        """
        for node in factor.nodes:
            if node._owner is not None and node._owner is not self:
                raise ValueError(f"{node} already belongs to another graph")

        was_initialized = [node.initialized for node in factor.nodes]
        try:
            factor.initialize()
            jacobian = factor.jacobian(
                force_numerical=self.properties.force_numerical_jacobian
            )
            if not jacobian.is_finite():
                raise FloatingPointError(
                    f"Linearizing {factor.name} produced non-finite values"
                )
        except Exception:
            for node, initialized in zip(factor.nodes, was_initialized):
                if not initialized and node.initialized:
                    node._reset()
            raise

        for node in factor.nodes:
            self.add_node(node)
        self._system.add_nodes(factor.nodes)
        self._system.insert_rows(jacobian)

        self._factors.append(factor)
        return len(self._factors) - 1

    def add(self, factor: FactorBase) -> SolveReport:
        """Add a factor, then run an update step."""
        self.add_factor(factor)
        return self.update()

    # Optimization.

    def update(self) -> SolveReport:
        """Incremental update step. Depending on the step count, either folds new rows
        into the factorization and updates estimates, or relinearizes everything."""
        self._step += 1
        props = self.properties

        if (props.mod_batch > 0 and self._step % props.mod_batch == 0) or (
            self._system.needs_batch
        ):
            self._relinearize()
            return self._report(iterations=1, batch=True)

        if self._step % props.mod_update != 0:
            return self._report(iterations=0, batch=False)

        self._system.incremental_factorize()
        max_step = self._apply_delta(self._system.solve())
        if (
            props.relinearize_threshold is not None
            and max_step > props.relinearize_threshold
        ):
            self._print(
                f"Step #{self._step}: max step {max_step:.3e} exceeds threshold,"
                " relinearizing"
            )
            self._relinearize()
            return self._report(iterations=2, batch=True)

        return self._report(iterations=1, batch=False)

    def batch_optimize(self) -> SolveReport:
        """Gauss-Newton: relinearize, reorder, and refactorize until convergence."""
        props = self.properties

        with (
            utils.stopwatch("batch optimization")
            if props.verbose
            else contextlib.nullcontext()
        ):
            cost_prev = self.compute_cost()
            self._print(f"Starting cost={cost_prev}")

            converged = False
            iterations = 0
            cost = cost_prev
            while iterations < props.max_iterations:
                x_norm = self._estimate_norm()
                delta = self._relinearize()
                iterations += 1
                cost = self.compute_cost()

                converged_cost = (
                    cost_prev == 0.0
                    or abs(cost - cost_prev) / cost_prev < props.cost_tolerance
                )
                converged_parameters = (
                    onp.linalg.norm(delta)
                    < (x_norm + props.parameter_tolerance) * props.parameter_tolerance
                )
                converged = bool(converged_cost or converged_parameters)
                if converged:
                    break

                self._print(f"Iteration #{iterations}: cost={str(cost).ljust(15)}")
                cost_prev = cost

            self._print(
                termcolor.colored(
                    f"Terminated @ iteration #{iterations}: cost={str(cost).ljust(15)}",
                    attrs=["bold"],
                )
            )

        if not converged:
            warnings.warn(
                ConvergenceWarning(
                    f"Batch optimization did not converge in {iterations} iterations"
                    f" (cost={cost})",
                    iterations=iterations,
                    cost=cost,
                ),
                stacklevel=2,
            )

        return SolveReport(
            step=self._step,
            iterations=iterations,
            cost=cost,
            converged=converged,
            batch=True,
            rank_deficient_nodes=self._system.rank_deficient_nodes(),
        )

    def _relinearize(self) -> onp.ndarray:
        """Relinearize every factor at the current estimates, reorder, refactorize,
        then solve and apply. Returns the step."""
        nodes = tuple(self._system.layout.get_nodes())
        for node in nodes:
            node._linearize()

        self._system.clear_rows()
        self._system.reorder(
            compute_ordering(nodes, self._factors, method=self.properties.ordering)
        )
        for factor in tqdm(
            self._factors,
            desc=f"[{type(self).__name__}] Relinearizing",
            disable=not self.properties.verbose,
        ):
            self._system.insert_rows(
                factor.jacobian(
                    force_numerical=self.properties.force_numerical_jacobian
                )
            )
        self._system.batch_factorize()

        delta = self._system.solve()
        self._apply_delta(delta)
        return delta

    def _apply_delta(self, delta: onp.ndarray) -> float:
        """Set `estimate = linearization point (+) delta` for every node in the system.
        Returns the largest per-node step, as an infinity norm."""
        self._warn_rank_deficiency()

        max_step = 0.0
        for node in self._system.layout.get_nodes():
            column = node.column
            assert column is not None
            local_delta = delta[column : column + node.get_dim()]
            max_step = max(max_step, float(onp.max(onp.abs(local_delta))))
            node._update(_retract(type(node), node.value0, local_delta))
        return max_step

    def _warn_rank_deficiency(self) -> None:
        columns = self._system.rank_deficient_columns()
        if len(columns) == 0:
            return
        nodes = self._system.rank_deficient_nodes()
        warnings.warn(
            RankDeficiencyWarning(
                f"Underconstrained system: zero pivots in {len(columns)} column(s) of"
                f" {', '.join(str(node) for node in nodes)}",
                nodes=nodes,
                columns=columns,
            ),
            stacklevel=3,
        )

    def _estimate_norm(self) -> float:
        vectors = [
            onp.asarray(node.vector()) for node in self._system.layout.get_nodes()
        ]
        if len(vectors) == 0:
            return 0.0
        return float(onp.linalg.norm(onp.concatenate(vectors)))

    def _report(self, iterations: int, batch: bool) -> SolveReport:
        return SolveReport(
            step=self._step,
            iterations=iterations,
            cost=self._system.residual_norm_squared,
            converged=False,
            batch=batch,
            rank_deficient_nodes=self._system.rank_deficient_nodes(),
        )

    # Queries.

    def compute_errors(self) -> List[onp.ndarray]:
        """Weighted residual of every factor, at the current estimates."""
        return [factor.error() for factor in self._factors]

    def compute_cost(self) -> float:
        """Sum of squared weighted residuals at the current estimates."""
        return float(sum(onp.sum(error**2) for error in self.compute_errors()))

    def recover_marginal_covariance(self, *nodes: NodeBase) -> onp.ndarray:
        """Marginal covariance of a set of nodes at the current linearization point,
        as a dense matrix. Blocks follow the order of `nodes`."""
        for node in nodes:
            if node not in self._system.layout:
                raise ValueError(f"{node} is not part of the linear system")
        if self._system.needs_batch:
            self._system.batch_factorize()
        elif self._system.has_pending:
            self._system.incremental_factorize()
        return self._system.recover_marginal_covariance(nodes)

    def write(self, out: TextIO) -> None:
        """Write every node, then every factor, one per line."""
        for node in self._nodes:
            node.write(out)
            out.write("\n")
        for factor in self._factors:
            factor.write(out)
            out.write("\n")
