from typing import ClassVar

import jax_dataclasses as jdc
import jaxlie
from jax import numpy as jnp

from .. import hints
from .._errors import DimensionMismatchError
from ._angles import standard_rad
from ._points import Point3d


@jdc.pytree_dataclass
class Pose3d:
    """Pose in space: position `(x, y, z)` and Euler angles `(yaw, pitch, roll)`.

    The rotation is `Rz(yaw) @ Ry(pitch) @ Rx(roll)`. Vector encoding is
    `(x, y, z, yaw, pitch, roll)`. Composition is delegated to `jaxlie.SE3`, which
    returns angles in canonical form; note that this representation is singular at
    `pitch = +/- pi / 2`.
    """

    x: hints.Scalar = 0.0
    y: hints.Scalar = 0.0
    z: hints.Scalar = 0.0
    yaw: hints.Scalar = 0.0
    pitch: hints.Scalar = 0.0
    roll: hints.Scalar = 0.0

    dim: ClassVar[int] = 6
    angular_indices: ClassVar[tuple] = (3, 4, 5)

    @staticmethod
    def from_vector(vector: hints.Array) -> "Pose3d":
        vector = jnp.asarray(vector)
        if vector.shape != (6,):
            raise DimensionMismatchError(
                f"Pose3d expects a vector of length 6, got shape {vector.shape}"
            )
        return Pose3d(
            x=vector[0],
            y=vector[1],
            z=vector[2],
            yaw=vector[3],
            pitch=vector[4],
            roll=vector[5],
        )

    @staticmethod
    def from_se3(T: jaxlie.SE3) -> "Pose3d":
        translation = T.translation()
        rpy = T.rotation().as_rpy_radians()
        return Pose3d(
            x=translation[0],
            y=translation[1],
            z=translation[2],
            yaw=standard_rad(rpy.yaw),
            pitch=standard_rad(rpy.pitch),
            roll=standard_rad(rpy.roll),
        )

    def vector(self) -> jnp.ndarray:
        return jnp.stack([self.x, self.y, self.z, self.yaw, self.pitch, self.roll])

    def rotation(self) -> jaxlie.SO3:
        return jaxlie.SO3.from_rpy_radians(
            roll=self.roll, pitch=self.pitch, yaw=self.yaw
        )

    def translation(self) -> jnp.ndarray:
        return jnp.stack([self.x, self.y, self.z])

    def as_se3(self) -> jaxlie.SE3:
        return jaxlie.SE3.from_rotation_and_translation(
            rotation=self.rotation(), translation=self.translation()
        )

    def normalize(self) -> "Pose3d":
        # Round trip through the rotation to get canonical angles.
        return Pose3d.from_se3(self.as_se3())

    def oplus(self, relative: "Pose3d") -> "Pose3d":
        """Compose with a pose expressed in our own frame."""
        return Pose3d.from_se3(self.as_se3() @ relative.as_se3())

    def ominus(self, other: "Pose3d") -> "Pose3d":
        """Express `other` in our frame. Satisfies `a.oplus(a.ominus(b)) == b`."""
        return Pose3d.from_se3(self.as_se3().inverse() @ other.as_se3())

    def inverse(self) -> "Pose3d":
        return Pose3d.from_se3(self.as_se3().inverse())

    def transform_to(self, point: Point3d) -> Point3d:
        """Map a world point into our local frame."""
        return Point3d.from_vector(self.as_se3().inverse().apply(point.vector()))

    def transform_from(self, point: Point3d) -> Point3d:
        """Map a point in our local frame into the world frame."""
        return Point3d.from_vector(self.as_se3().apply(point.vector()))

    def __str__(self) -> str:
        return "({:g}, {:g}, {:g}; {:g}, {:g}, {:g})".format(
            *(float(v) for v in self.vector())
        )
