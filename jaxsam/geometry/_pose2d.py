from typing import ClassVar

import jax_dataclasses as jdc
import jaxlie
from jax import numpy as jnp

from .. import hints
from .._errors import DimensionMismatchError
from ._angles import standard_rad
from ._points import Point2d


@jdc.pytree_dataclass
class Pose2d:
    """Planar pose: position `(x, y)` and heading `t` in radians.

    Composition is delegated to `jaxlie.SE2`; headings produced by any operation are
    wrapped into (-pi, pi].
    """

    x: hints.Scalar = 0.0
    y: hints.Scalar = 0.0
    t: hints.Scalar = 0.0

    dim: ClassVar[int] = 3
    angular_indices: ClassVar[tuple] = (2,)

    @staticmethod
    def from_vector(vector: hints.Array) -> "Pose2d":
        vector = jnp.asarray(vector)
        if vector.shape != (3,):
            raise DimensionMismatchError(
                f"Pose2d expects a vector of length 3, got shape {vector.shape}"
            )
        return Pose2d(x=vector[0], y=vector[1], t=vector[2])

    @staticmethod
    def from_se2(T: jaxlie.SE2) -> "Pose2d":
        translation = T.translation()
        return Pose2d(
            x=translation[0],
            y=translation[1],
            t=standard_rad(T.rotation().as_radians()),
        )

    def vector(self) -> jnp.ndarray:
        return jnp.stack([self.x, self.y, self.t])

    def as_se2(self) -> jaxlie.SE2:
        return jaxlie.SE2.from_xy_theta(self.x, self.y, self.t)

    def normalize(self) -> "Pose2d":
        return Pose2d(x=self.x, y=self.y, t=standard_rad(self.t))

    def oplus(self, relative: "Pose2d") -> "Pose2d":
        """Compose with a pose expressed in our own frame."""
        return Pose2d.from_se2(self.as_se2() @ relative.as_se2())

    def ominus(self, other: "Pose2d") -> "Pose2d":
        """Express `other` in our frame. Satisfies `a.oplus(a.ominus(b)) == b`."""
        return Pose2d.from_se2(self.as_se2().inverse() @ other.as_se2())

    def inverse(self) -> "Pose2d":
        return Pose2d.from_se2(self.as_se2().inverse())

    def transform_to(self, point: Point2d) -> Point2d:
        """Map a world point into our local frame."""
        return Point2d.from_vector(self.as_se2().inverse().apply(point.vector()))

    def transform_from(self, point: Point2d) -> Point2d:
        """Map a point in our local frame into the world frame."""
        return Point2d.from_vector(self.as_se2().apply(point.vector()))

    def __str__(self) -> str:
        return f"({float(self.x):g}, {float(self.y):g}, {float(self.t):g})"
