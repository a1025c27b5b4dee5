from ._properties import Properties
from ._slam import Slam, SolveReport

__all__ = [
    "Properties",
    "Slam",
    "SolveReport",
]
