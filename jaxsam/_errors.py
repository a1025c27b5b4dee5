from typing import Sequence, Tuple


class UninitializedNodeError(RuntimeError):
    """Raised when a node is used before it has a value. Most commonly: a factor's
    `initialize()` requires one of its nodes to already be initialized."""


class DimensionMismatchError(ValueError):
    """Raised when a weight matrix or a node value disagrees with a declared
    dimension."""


class RankDeficiencyWarning(RuntimeWarning):
    """Issued when factorization hits a (near-)zero pivot. The offending columns get
    a zero step; estimates of the corresponding nodes are not constrained by the
    current set of factors."""

    def __init__(
        self,
        message: str,
        nodes: Sequence[object] = (),
        columns: Sequence[int] = (),
    ):
        super().__init__(message)
        self.nodes: Tuple[object, ...] = tuple(nodes)
        self.columns: Tuple[int, ...] = tuple(columns)


class ConvergenceWarning(RuntimeWarning):
    """Issued when batch optimization hits its iteration cap before meeting its
    tolerances. The last iterate is kept."""

    def __init__(self, message: str, iterations: int = 0, cost: float = 0.0):
        super().__init__(message)
        self.iterations = iterations
        self.cost = cost
