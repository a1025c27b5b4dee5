from typing import Any, Tuple

import jax_dataclasses as jdc
from jax import numpy as jnp
from overrides import overrides

from .. import hints
from .._errors import UninitializedNodeError
from ..core import FactorBase, NodeBase
from ..geometry import Point3d, Pose3d, standard_rad

# 3D factors are all linearized with finite differences.


class Pose3dNode(NodeBase[Pose3d]):
    name = "Pose3d"

    @staticmethod
    @overrides
    def get_value_type() -> type:
        return Pose3d


class Point3dNode(NodeBase[Point3d]):
    name = "Point3d"

    @staticmethod
    @overrides
    def get_value_type() -> type:
        return Point3d


def _wrap_angles(err: jnp.ndarray) -> jnp.ndarray:
    return err.at[3:].set(standard_rad(err[3:]))


@jdc.pytree_dataclass
class Pose3dFactor(FactorBase):
    prior: Pose3d

    name = "Pose3d_Factor"
    angular_error_indices = (3, 4, 5)

    @staticmethod
    def make(pose: Pose3dNode, prior: Pose3d, sqrtinf: hints.Array) -> "Pose3dFactor":
        return Pose3dFactor(
            nodes=(pose,),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 6),
            prior=prior,
        )

    @overrides
    def initialize(self) -> None:
        (pose,) = self.nodes
        if not pose.initialized:
            pose.init(self.prior)

    @overrides
    def basic_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        (pose,) = values
        return _wrap_angles(pose.vector() - self.prior.vector())

    @overrides
    def get_measurement(self) -> Any:
        return self.prior


@jdc.pytree_dataclass
class Point3dFactor(FactorBase):
    prior: Point3d

    name = "Point3d_Factor"

    @staticmethod
    def make(
        point: Point3dNode, prior: Point3d, sqrtinf: hints.Array
    ) -> "Point3dFactor":
        return Point3dFactor(
            nodes=(point,),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 3),
            prior=prior,
        )

    @overrides
    def initialize(self) -> None:
        (point,) = self.nodes
        if not point.initialized:
            point.init(self.prior)

    @overrides
    def basic_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        (point,) = values
        return point.vector() - self.prior.vector()

    @overrides
    def get_measurement(self) -> Any:
        return self.prior


@jdc.pytree_dataclass
class Pose3dPose3dFactor(FactorBase):
    """Relative pose constraint; `measure` is `pose2` in the frame of `pose1`."""

    measure: Pose3d

    name = "Pose3d_Pose3d_Factor"
    angular_error_indices = (3, 4, 5)

    @staticmethod
    def make(
        pose1: Pose3dNode,
        pose2: Pose3dNode,
        measure: Pose3d,
        sqrtinf: hints.Array,
    ) -> "Pose3dPose3dFactor":
        return Pose3dPose3dFactor(
            nodes=(pose1, pose2),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 6),
            measure=measure,
        )

    @overrides
    def initialize(self) -> None:
        pose1, pose2 = self.nodes
        if not pose1.initialized:
            raise UninitializedNodeError(
                f"{self.name} requires pose1 ({pose1}) to be initialized"
            )
        if not pose2.initialized:
            pose2.init(pose1.value.oplus(self.measure))

    @overrides
    def basic_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        pose1, pose2 = values
        return _wrap_angles(pose1.ominus(pose2).vector() - self.measure.vector())

    @overrides
    def get_measurement(self) -> Any:
        return self.measure


@jdc.pytree_dataclass
class Pose3dPoint3dFactor(FactorBase):
    """Landmark observation: position of `point` in the frame of `pose`."""

    measure: Point3d

    name = "Pose3d_Point3d_Factor"

    @staticmethod
    def make(
        pose: Pose3dNode,
        point: Point3dNode,
        measure: Point3d,
        sqrtinf: hints.Array,
    ) -> "Pose3dPoint3dFactor":
        return Pose3dPoint3dFactor(
            nodes=(pose, point),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 3),
            measure=measure,
        )

    @overrides
    def initialize(self) -> None:
        pose, point = self.nodes
        if not pose.initialized:
            raise UninitializedNodeError(
                f"{self.name} requires pose ({pose}) to be initialized"
            )
        if not point.initialized:
            point.init(pose.value.transform_from(self.measure))

    @overrides
    def basic_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        pose, point = values
        return pose.transform_to(point).vector() - self.measure.vector()

    @overrides
    def get_measurement(self) -> Any:
        return self.measure
