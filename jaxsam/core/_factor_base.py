import abc
import functools
import io
from typing import Any, TextIO, Tuple, TypeVar

import jax
import jax_dataclasses as jdc
import numpy as onp
from jax import numpy as jnp
from overrides import EnforceOverrides, final

from .. import hints, utils
from .._errors import DimensionMismatchError, UninitializedNodeError
from ..geometry import standard_rad
from ._jacobian import Jacobian
from ._nodes import NodeBase

FactorType = TypeVar("FactorType", bound="FactorBase")


@jdc.pytree_dataclass
class _FactorBase:
    # For why we have two classes:
    # https://github.com/python/mypy/issues/5374#issuecomment-650656381

    nodes: jdc.Static[Tuple[NodeBase, ...]]
    """Nodes connected to this factor. Fixed at construction; values are read from
    the nodes, never stored here."""

    sqrtinf: hints.Array
    """Upper-triangular square root information matrix. Shape should be
    `(dim, dim)`."""


class FactorBase(_FactorBase, abc.ABC, EnforceOverrides):
    """Base class for factors: constraints over an ordered set of nodes.

    Residuals are weighted by `sqrtinf`, so the contribution of a factor to the
    least-squares cost is `|sqrtinf @ basic_error(values)|^2`.
    """

    name = "Factor"
    """Type name, used for text serialization."""

    angular_error_indices: Tuple[int, ...] = ()
    """Residual components that are angles. Finite differences of these are
    wrapped into (-pi, pi]."""

    numerical_epsilon: float = 1e-5
    """Step size for central finite differences."""

    # (1) Functions that must be overriden in subclasses.

    @abc.abstractmethod
    def initialize(self) -> None:
        """Give uninitialized nodes a predicted value.

        Called exactly once, before the first linearization. Should check every
        precondition before initializing anything, and raise
        `UninitializedNodeError` when a required node has no value yet.
        """

    @abc.abstractmethod
    def basic_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        """Compute the unweighted residual, `predicted - measured`.

        Args:
            values: Values of `self.nodes`, in order. Not necessarily the current
                estimates: this is also evaluated at perturbed points.
        """

    @abc.abstractmethod
    def get_measurement(self) -> Any:
        """Measurement or prior value; used for serialization."""

    # (2) Function to override for analytical Jacobians. This is always optional.

    def compute_jacobians(self, values: Tuple[Any, ...]) -> Tuple[jnp.ndarray, ...]:
        """Compute unweighted Jacobians of `basic_error()` with respect to the local
        parameterization of each node, one `(dim, node_dim)` block per node.

        Falls back to finite differences unless overriden."""
        return self.compute_numerical_jacobians(values)

    def get_anchor_nodes(self) -> Tuple[NodeBase, ...]:
        """Trailing nodes that are written after the weight matrix."""
        return ()

    # (3) Shared implementations.

    @final
    def get_dim(self) -> int:
        """Residual dimensionality."""
        return self.sqrtinf.shape[-1]

    @final
    def compute_numerical_jacobians(
        self, values: Tuple[Any, ...]
    ) -> Tuple[jnp.ndarray, ...]:
        """Central finite differences of `basic_error()`, with each node perturbed on
        its manifold."""
        assert len(values) == len(self.nodes)
        eps = self.numerical_epsilon

        jacobians = []
        for i, node in enumerate(self.nodes):

            def perturbed_error(local_delta: jnp.ndarray, i=i, node=node):
                perturbed = (
                    values[:i]
                    + (node.manifold_retract(values[i], local_delta),)
                    + values[i + 1 :]
                )
                return self.basic_error(perturbed)

            basis = eps * jnp.eye(node.get_dim())
            difference = jax.vmap(perturbed_error)(basis) - jax.vmap(perturbed_error)(
                -basis
            )
            if len(self.angular_error_indices) > 0:
                angular = onp.array(self.angular_error_indices)
                difference = difference.at[:, angular].set(
                    standard_rad(difference[:, angular])
                )
            jacobians.append(difference.T / (2.0 * eps))

        return tuple(jacobians)

    @final
    def anonymize_nodes(self: FactorType) -> FactorType:
        """Returns a copy of this factor with all nodes replaced with their canonical
        instances. Factors of the same type then share compiled functions."""
        return jdc.replace(
            self, nodes=tuple(type(node).canonical_instance() for node in self.nodes)
        )

    @final
    def jacobian(self, force_numerical: bool = False) -> Jacobian:
        """Linearize around the nodes' linearization points."""
        for node in self.nodes:
            if not node.initialized:
                raise UninitializedNodeError(
                    f"{self.name} cannot be linearized: {node} is not initialized"
                )
        values = tuple(node.value0 for node in self.nodes)
        residual, blocks = self.anonymize_nodes()._linearize(
            values, numerical=force_numerical
        )
        return Jacobian(
            residual=onp.asarray(residual),
            terms=tuple(
                (node, onp.asarray(block)) for node, block in zip(self.nodes, blocks)
            ),
        )

    @final
    def error(self) -> onp.ndarray:
        """Weighted residual at the current estimates."""
        values = tuple(node.value for node in self.nodes)
        return onp.asarray(self.anonymize_nodes()._weighted_error(values))

    @functools.partial(jax.jit, static_argnames=("numerical",))
    def _linearize(
        self, values: Tuple[Any, ...], numerical: bool
    ) -> Tuple[jnp.ndarray, Tuple[jnp.ndarray, ...]]:
        error = self.basic_error(values)
        jacobians = (
            self.compute_numerical_jacobians(values)
            if numerical
            else self.compute_jacobians(values)
        )
        return self.sqrtinf @ error, tuple(self.sqrtinf @ J for J in jacobians)

    @jax.jit
    def _weighted_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        return self.sqrtinf @ self.basic_error(values)

    @final
    def write(self, out: TextIO) -> None:
        """Write `<name> <node ids> <measurement> <sqrtinf> [<anchor ids>]`."""
        anchors = self.get_anchor_nodes()
        primary = self.nodes[: len(self.nodes) - len(anchors)]
        out.write(self.name)
        for node in primary:
            out.write(f" {node.unique_id}")
        out.write(f" {self.get_measurement()} {utils.sqrtinf_to_string(self.sqrtinf)}")
        for node in anchors:
            out.write(f" {node.unique_id}")

    def __str__(self) -> str:
        out = io.StringIO()
        self.write(out)
        return out.getvalue()

    @staticmethod
    def _check_sqrtinf(sqrtinf: hints.Array, dim: int) -> onp.ndarray:
        """Validate a user-provided square root information matrix."""
        sqrtinf = onp.asarray(sqrtinf, dtype=onp.float64)
        if sqrtinf.shape != (dim, dim):
            raise DimensionMismatchError(
                f"Expected a {dim}x{dim} square root information matrix, got shape"
                f" {sqrtinf.shape}"
            )
        if onp.any(onp.tril(sqrtinf, k=-1) != 0.0):
            raise ValueError("Square root information matrix must be upper triangular")
        return sqrtinf
