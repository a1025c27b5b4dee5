from typing import Any, NamedTuple, Optional, Tuple

import jax_dataclasses as jdc
from jax import numpy as jnp
from overrides import overrides

from .. import hints
from .._errors import UninitializedNodeError
from ..core import FactorBase, NodeBase
from ..geometry import Point2d, Pose2d, standard_rad


class Pose2dNode(NodeBase[Pose2d]):
    name = "Pose2d"

    @staticmethod
    @overrides
    def get_value_type() -> type:
        return Pose2d


class Point2dNode(NodeBase[Point2d]):
    name = "Point2d"

    @staticmethod
    @overrides
    def get_value_type() -> type:
        return Point2d


# To implement a factor, we define the residual with `basic_error()` and an
# initialization policy with `initialize()`. Analytical Jacobians are optional:
# finite differences are used when `compute_jacobians()` isn't overriden.


@jdc.pytree_dataclass
class Pose2dFactor(FactorBase):
    """Prior on a planar pose."""

    prior: Pose2d

    name = "Pose2d_Factor"
    angular_error_indices = (2,)

    @staticmethod
    def make(pose: Pose2dNode, prior: Pose2d, sqrtinf: hints.Array) -> "Pose2dFactor":
        return Pose2dFactor(
            nodes=(pose,),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 3),
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
        err = pose.vector() - self.prior.vector()
        return err.at[2].set(standard_rad(err[2]))

    @overrides
    def compute_jacobians(self, values: Tuple[Any, ...]) -> Tuple[jnp.ndarray, ...]:
        return (jnp.eye(3),)

    @overrides
    def get_measurement(self) -> Any:
        return self.prior


@jdc.pytree_dataclass
class Point2dFactor(FactorBase):
    """Prior on a point. Linearized with finite differences."""

    prior: Point2d

    name = "Point2d_Factor"

    @staticmethod
    def make(
        point: Point2dNode, prior: Point2d, sqrtinf: hints.Array
    ) -> "Point2dFactor":
        return Point2dFactor(
            nodes=(point,),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 2),
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


class Pose2dPose2dValues(NamedTuple):
    pose1: Pose2d
    pose2: Pose2d


@jdc.pytree_dataclass
class Pose2dPose2dFactor(FactorBase):
    """Odometry or loop closing constraint, from `pose1` to `pose2`.

    The measurement is `pose2` expressed in the frame of `pose1`. Optionally connects
    two anchor nodes: the offsets of the trajectories that `pose1` and `pose2`
    belong to, in which case the prediction is
    `(anchor1 (+) pose1) (-) (anchor2 (+) pose2)`.
    """

    measure: Pose2d

    name = "Pose2d_Pose2d_Factor"
    angular_error_indices = (2,)

    @staticmethod
    def make(
        pose1: Pose2dNode,
        pose2: Pose2dNode,
        measure: Pose2d,
        sqrtinf: hints.Array,
        anchor1: Optional[Pose2dNode] = None,
        anchor2: Optional[Pose2dNode] = None,
    ) -> "Pose2dPose2dFactor":
        if (anchor1 is None) != (anchor2 is None):
            raise ValueError("Pose2dPose2dFactor requires either 0 or 2 anchor nodes")
        nodes: Tuple[Pose2dNode, ...] = (pose1, pose2)
        if anchor1 is not None:
            assert anchor2 is not None
            nodes = nodes + (anchor1, anchor2)
        return Pose2dPose2dFactor(
            nodes=nodes,
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 3),
            measure=measure,
        )

    @property
    def anchored(self) -> bool:
        return len(self.nodes) == 4

    @overrides
    def get_anchor_nodes(self) -> Tuple[NodeBase, ...]:
        return self.nodes[2:]

    @overrides
    def initialize(self) -> None:
        pose1, pose2 = self.nodes[:2]
        if not pose1.initialized:
            raise UninitializedNodeError(
                f"{self.name} requires pose1 ({pose1}) to be initialized"
            )

        if not self.anchored:
            if not pose2.initialized:
                pose2.init(pose1.value.oplus(self.measure))
            return

        anchor1, anchor2 = self.nodes[2:]
        if not anchor1.initialized:
            raise UninitializedNodeError(
                f"{self.name} requires anchor1 ({anchor1}) to be initialized"
            )

        # Pose of `pose2` in the frame shared by both anchors, if the measurement
        # were exact.
        target = anchor1.value.oplus(pose1.value).oplus(self.measure)
        if not pose2.initialized:
            if anchor2.initialized:
                pose2.init(anchor2.value.inverse().oplus(target))
            else:
                pose2.init(pose1.value.oplus(self.measure))
        if not anchor2.initialized:
            anchor2.init(target.oplus(pose2.value.inverse()))

    @overrides
    def basic_error(self, values: Tuple[Any, ...]) -> jnp.ndarray:
        if len(values) == 4:
            pose1, pose2, anchor1, anchor2 = values
            predicted = anchor1.oplus(pose1).ominus(anchor2.oplus(pose2))
        else:
            pose1, pose2 = Pose2dPose2dValues(*values)
            predicted = pose1.ominus(pose2)
        err = predicted.vector() - self.measure.vector()
        return err.at[2].set(standard_rad(err[2]))

    @overrides
    def compute_jacobians(self, values: Tuple[Any, ...]) -> Tuple[jnp.ndarray, ...]:
        if len(values) == 4:
            # Closed form only available without anchors.
            return self.compute_numerical_jacobians(values)

        pose1, pose2 = Pose2dPose2dValues(*values)
        p = pose1.ominus(pose2)
        c = jnp.cos(pose1.t)
        s = jnp.sin(pose1.t)
        J1 = jnp.array(
            [
                [-c, -s, p.y],
                [s, -c, -p.x],
                [0.0, 0.0, -1.0],
            ]
        )
        J2 = jnp.array(
            [
                [c, s, 0.0],
                [-s, c, 0.0],
                [0.0, 0.0, 1.0],
            ]
        )
        return (J1, J2)

    @overrides
    def get_measurement(self) -> Any:
        return self.measure


@jdc.pytree_dataclass
class Pose2dPoint2dFactor(FactorBase):
    """Landmark observation: position of `point` in the frame of `pose`."""

    measure: Point2d

    name = "Pose2d_Point2d_Factor"

    @staticmethod
    def make(
        pose: Pose2dNode,
        point: Point2dNode,
        measure: Point2d,
        sqrtinf: hints.Array,
    ) -> "Pose2dPoint2dFactor":
        return Pose2dPoint2dFactor(
            nodes=(pose, point),
            sqrtinf=FactorBase._check_sqrtinf(sqrtinf, 2),
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
    def compute_jacobians(self, values: Tuple[Any, ...]) -> Tuple[jnp.ndarray, ...]:
        pose, point = values
        c = jnp.cos(pose.t)
        s = jnp.sin(pose.t)
        dx = point.x - pose.x
        dy = point.y - pose.y

        # Landmark position relative to the pose: forward, and to the left.
        x = c * dx + s * dy
        y = -s * dx + c * dy

        J_pose = jnp.array(
            [
                [-c, -s, y],
                [s, -c, -x],
            ]
        )
        J_point = jnp.array(
            [
                [c, s],
                [-s, c],
            ]
        )
        return (J_pose, J_point)

    @overrides
    def get_measurement(self) -> Any:
        return self.measure
