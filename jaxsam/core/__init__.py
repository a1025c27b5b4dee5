from ._factor_base import FactorBase
from ._jacobian import Jacobian
from ._nodes import NodeBase, NodeState

__all__ = [
    "FactorBase",
    "Jacobian",
    "NodeBase",
    "NodeState",
]
