from jax import config as _config

# Tolerances on the order of 1e-9 need double precision.
_config.update("jax_enable_x64", True)

from . import core, geometry, hints, slam, solvers, sparse, utils  # noqa: E402
from ._errors import (  # noqa: E402
    ConvergenceWarning,
    DimensionMismatchError,
    RankDeficiencyWarning,
    UninitializedNodeError,
)

__all__ = [
    "core",
    "geometry",
    "hints",
    "slam",
    "solvers",
    "sparse",
    "utils",
    "ConvergenceWarning",
    "DimensionMismatchError",
    "RankDeficiencyWarning",
    "UninitializedNodeError",
]
