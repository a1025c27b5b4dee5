from typing import ClassVar

import jax_dataclasses as jdc
from jax import numpy as jnp

from .. import hints
from .._errors import DimensionMismatchError


@jdc.pytree_dataclass
class Point2d:
    """Point in the plane."""

    x: hints.Scalar = 0.0
    y: hints.Scalar = 0.0

    dim: ClassVar[int] = 2

    @staticmethod
    def from_vector(vector: hints.Array) -> "Point2d":
        vector = jnp.asarray(vector)
        if vector.shape != (2,):
            raise DimensionMismatchError(
                f"Point2d expects a vector of length 2, got shape {vector.shape}"
            )
        return Point2d(x=vector[0], y=vector[1])

    def vector(self) -> jnp.ndarray:
        return jnp.stack([self.x, self.y])

    def normalize(self) -> "Point2d":
        return self

    def __str__(self) -> str:
        return f"({float(self.x):g}, {float(self.y):g})"


@jdc.pytree_dataclass
class Point3d:
    """Point in space."""

    x: hints.Scalar = 0.0
    y: hints.Scalar = 0.0
    z: hints.Scalar = 0.0

    dim: ClassVar[int] = 3

    @staticmethod
    def from_vector(vector: hints.Array) -> "Point3d":
        vector = jnp.asarray(vector)
        if vector.shape != (3,):
            raise DimensionMismatchError(
                f"Point3d expects a vector of length 3, got shape {vector.shape}"
            )
        return Point3d(x=vector[0], y=vector[1], z=vector[2])

    def vector(self) -> jnp.ndarray:
        return jnp.stack([self.x, self.y, self.z])

    def normalize(self) -> "Point3d":
        return self

    def __str__(self) -> str:
        return f"({float(self.x):g}, {float(self.y):g}, {float(self.z):g})"
