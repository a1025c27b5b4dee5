import dataclasses
from typing import Optional

from ..sparse import OrderingMethod


@dataclasses.dataclass(frozen=True)
class Properties:
    """Configuration for `Slam`."""

    verbose: bool = False
    """Set to `True` to enable printing."""

    force_numerical_jacobian: bool = False
    """Use finite differences even for factors with analytical Jacobians."""

    # Termination criteria for batch optimization.

    max_iterations: int = 100
    """Maximum number of Gauss-Newton iterations."""

    cost_tolerance: float = 1e-8
    """We terminate if `|cost change| / cost < cost_tolerance`."""

    parameter_tolerance: float = 1e-9
    """We terminate if `norm_2(linear delta) < (norm2(x) + parameter_tolerance) * parameter_tolerance`."""

    # Incremental update policy.

    mod_update: int = 1
    """Solve and update estimates every `mod_update` steps."""

    mod_batch: int = 100
    """Relinearize, reorder, and refactorize every `mod_batch` steps. Set to 0 to
    disable periodic relinearization."""

    relinearize_threshold: Optional[float] = None
    """If set: relinearize whenever an incremental step moves any node by more than
    this, measured with the infinity norm of its local delta."""

    ordering: OrderingMethod = "minimum_degree"
    """Fill-reducing ordering used when reordering."""

    pivot_tolerance: float = 1e-10
    """Relative pivot magnitude treated as zero."""

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be positive")
        if self.mod_update < 1:
            raise ValueError("mod_update must be positive")
        if self.mod_batch < 0:
            raise ValueError("mod_batch must be non-negative")
        if self.ordering not in ("minimum_degree", "rcm", "natural"):
            raise ValueError(f"Unknown ordering method: {self.ordering}")
