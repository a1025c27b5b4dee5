from ._column_layout import ColumnLayout
from ._covariance import SparseCovariance
from ._ordering import OrderingMethod, compute_ordering
from ._sparse_matrix import SparseCooCoordinates, SparseCooMatrix
from ._square_root_system import SquareRootInformationSystem

__all__ = [
    "ColumnLayout",
    "SparseCovariance",
    "OrderingMethod",
    "compute_ordering",
    "SparseCooCoordinates",
    "SparseCooMatrix",
    "SquareRootInformationSystem",
]
