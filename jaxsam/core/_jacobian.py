import dataclasses
from typing import Dict, Tuple

import numpy as onp

from .._errors import DimensionMismatchError
from ._nodes import NodeBase


@dataclasses.dataclass(frozen=True)
class Jacobian:
    """Linearization of a single factor: a weighted residual, and one weighted
    partial-derivative block per connected node.

    Recomputed on every linearization; never stored by factors.
    """

    residual: onp.ndarray
    """Weighted residual. Shape should be `(factor_dim,)`."""

    terms: Tuple[Tuple[NodeBase, onp.ndarray], ...]
    """`(node, block)` pairs, where each block has shape `(factor_dim, node_dim)`.
    Order matches the factor's nodes."""

    def __post_init__(self):
        (dim,) = self.residual.shape
        for node, block in self.terms:
            if block.shape != (dim, node.get_dim()):
                raise DimensionMismatchError(
                    f"Jacobian block for {node} should have shape"
                    f" {(dim, node.get_dim())}, got {block.shape}"
                )

    def get_dim(self) -> int:
        return self.residual.shape[0]

    def get_nodes(self) -> Tuple[NodeBase, ...]:
        return tuple(node for node, _ in self.terms)

    def as_dict(self) -> Dict[NodeBase, onp.ndarray]:
        return dict(self.terms)

    def is_finite(self) -> bool:
        return bool(
            onp.all(onp.isfinite(self.residual))
            and all(onp.all(onp.isfinite(block)) for _, block in self.terms)
        )
