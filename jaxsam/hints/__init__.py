from ._aliases import Array, LocalNodeValue, NodeValue, Pytree, Scalar

__all__ = [
    "Array",
    "LocalNodeValue",
    "NodeValue",
    "Pytree",
    "Scalar",
]
