import io
from typing import Any, Callable, List, Tuple

import jax
import numpy as onp
import pytest
from jax import numpy as jnp

import jaxsam
from jaxsam.core import FactorBase, NodeState
from jaxsam.geometry import Point2d, Point3d, Pose2d, Pose3d
from jaxsam.slam import (
    Point2dFactor,
    Point2dNode,
    Point3dFactor,
    Point3dNode,
    Pose2dFactor,
    Pose2dNode,
    Pose2dPoint2dFactor,
    Pose2dPose2dFactor,
    Pose3dFactor,
    Pose3dNode,
    Pose3dPoint3dFactor,
    Pose3dPose3dFactor,
)


def _random_sqrtinf(rng: onp.random.Generator, dim: int) -> onp.ndarray:
    return onp.triu(rng.uniform(-0.5, 0.5, size=(dim, dim))) + 2.0 * onp.eye(dim)


def _random_pose2d(rng: onp.random.Generator) -> Pose2d:
    x, y = rng.uniform(-5.0, 5.0, size=2)
    return Pose2d(x=x, y=y, t=rng.uniform(-onp.pi, onp.pi))


def _random_point2d(rng: onp.random.Generator) -> Point2d:
    return Point2d(*rng.uniform(-5.0, 5.0, size=2))


def _random_pose3d(rng: onp.random.Generator) -> Pose3d:
    x, y, z = rng.uniform(-5.0, 5.0, size=3)
    return Pose3d(
        x=x,
        y=y,
        z=z,
        yaw=rng.uniform(-3.0, 3.0),
        pitch=rng.uniform(-1.0, 1.0),
        roll=rng.uniform(-3.0, 3.0),
    )


def _random_point3d(rng: onp.random.Generator) -> Point3d:
    return Point3d(*rng.uniform(-5.0, 5.0, size=3))


# Each entry builds a factor and a tuple of values for its nodes.
FactorBuilder = Callable[[onp.random.Generator], Tuple[FactorBase, Tuple[Any, ...]]]

_FACTOR_BUILDERS: List[FactorBuilder] = [
    lambda rng: (
        Pose2dFactor.make(Pose2dNode(), _random_pose2d(rng), _random_sqrtinf(rng, 3)),
        (_random_pose2d(rng),),
    ),
    lambda rng: (
        Point2dFactor.make(
            Point2dNode(), _random_point2d(rng), _random_sqrtinf(rng, 2)
        ),
        (_random_point2d(rng),),
    ),
    lambda rng: (
        Pose2dPose2dFactor.make(
            Pose2dNode(), Pose2dNode(), _random_pose2d(rng), _random_sqrtinf(rng, 3)
        ),
        (_random_pose2d(rng), _random_pose2d(rng)),
    ),
    lambda rng: (
        Pose2dPose2dFactor.make(
            Pose2dNode(),
            Pose2dNode(),
            _random_pose2d(rng),
            _random_sqrtinf(rng, 3),
            anchor1=Pose2dNode(),
            anchor2=Pose2dNode(),
        ),
        tuple(_random_pose2d(rng) for _ in range(4)),
    ),
    lambda rng: (
        Pose2dPoint2dFactor.make(
            Pose2dNode(), Point2dNode(), _random_point2d(rng), _random_sqrtinf(rng, 2)
        ),
        (_random_pose2d(rng), _random_point2d(rng)),
    ),
    lambda rng: (
        Pose3dFactor.make(Pose3dNode(), _random_pose3d(rng), _random_sqrtinf(rng, 6)),
        (_random_pose3d(rng),),
    ),
    lambda rng: (
        Point3dFactor.make(
            Point3dNode(), _random_point3d(rng), _random_sqrtinf(rng, 3)
        ),
        (_random_point3d(rng),),
    ),
    lambda rng: (
        Pose3dPose3dFactor.make(
            Pose3dNode(), Pose3dNode(), _random_pose3d(rng), _random_sqrtinf(rng, 6)
        ),
        (_random_pose3d(rng), _random_pose3d(rng)),
    ),
    lambda rng: (
        Pose3dPoint3dFactor.make(
            Pose3dNode(), Point3dNode(), _random_point3d(rng), _random_sqrtinf(rng, 3)
        ),
        (_random_pose3d(rng), _random_point3d(rng)),
    ),
]


def _autodiff_jacobians(
    factor: FactorBase, values: Tuple[Any, ...]
) -> Tuple[jnp.ndarray, ...]:
    """Jacobians of `basic_error()` with respect to each node's local delta."""
    jacobians = []
    for i, node in enumerate(factor.nodes):

        def error(local_delta: jnp.ndarray, i=i, node=node) -> jnp.ndarray:
            perturbed = (
                values[:i]
                + (node.manifold_retract(values[i], local_delta),)
                + values[i + 1 :]
            )
            return factor.basic_error(perturbed)

        jacobians.append(jax.jacfwd(error)(jnp.zeros(node.get_dim())))
    return tuple(jacobians)


@pytest.mark.parametrize("builder", _FACTOR_BUILDERS)
def test_jacobians_match_finite_differences(builder: FactorBuilder):
    """Jacobians (analytical where available) should match both finite differences
    and autodiff of `basic_error()`."""
    rng = onp.random.default_rng(0)
    for _ in range(5):
        factor, values = builder(rng)
        jacobians = factor.compute_jacobians(values)
        numerical = factor.compute_numerical_jacobians(values)
        autodiff = _autodiff_jacobians(factor, values)
        assert len(jacobians) == len(numerical) == len(factor.nodes)
        for J, J_numerical, J_autodiff in zip(jacobians, numerical, autodiff):
            onp.testing.assert_allclose(J, J_numerical, rtol=1e-6, atol=1e-5)
            onp.testing.assert_allclose(J, J_autodiff, rtol=1e-6, atol=1e-5)


@pytest.mark.parametrize("builder", _FACTOR_BUILDERS)
def test_jacobian_is_weighted(builder: FactorBuilder):
    rng = onp.random.default_rng(1)
    factor, values = builder(rng)
    for node, value in zip(factor.nodes, values):
        node.init(value)

    jacobian = factor.jacobian()
    assert jacobian.get_dim() == factor.get_dim()
    assert jacobian.get_nodes() == factor.nodes
    onp.testing.assert_allclose(
        jacobian.residual, factor.sqrtinf @ factor.basic_error(values), atol=1e-12
    )
    onp.testing.assert_allclose(jacobian.residual, factor.error(), atol=1e-12)
    for (node, block), J in zip(jacobian.terms, factor.compute_jacobians(values)):
        onp.testing.assert_allclose(block, factor.sqrtinf @ J, atol=1e-9)
        onp.testing.assert_array_equal(jacobian.as_dict()[node], block)
    assert jacobian.is_finite()

    # Forcing finite differences should give the same blocks.
    numerical = factor.jacobian(force_numerical=True)
    for (_, block), (_, block_numerical) in zip(jacobian.terms, numerical.terms):
        onp.testing.assert_allclose(block, block_numerical, rtol=1e-6, atol=1e-5)


def test_pose2d_symbolic_jacobians():
    pose1 = Pose2d(1.0, 2.0, 0.3)
    pose2 = Pose2d(-1.0, 0.5, 2.5)
    factor = Pose2dPose2dFactor.make(
        Pose2dNode(), Pose2dNode(), Pose2d(1.0, 0.0, 0.0), onp.eye(3)
    )
    J1, J2 = factor.compute_jacobians((pose1, pose2))

    c, s = onp.cos(0.3), onp.sin(0.3)
    relative = pose1.ominus(pose2)
    onp.testing.assert_allclose(
        J1,
        [[-c, -s, relative.y], [s, -c, -relative.x], [0.0, 0.0, -1.0]],
        atol=1e-12,
    )
    onp.testing.assert_allclose(
        J2, [[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]], atol=1e-12
    )


def test_angle_wrap_in_residual():
    pose = Pose2dNode()
    factor = Pose2dFactor.make(pose, Pose2d(0.0, 0.0, onp.pi - 0.01), onp.eye(3))
    error = factor.basic_error((Pose2d(0.0, 0.0, -onp.pi + 0.01),))
    onp.testing.assert_allclose(error, [0.0, 0.0, 0.02], atol=1e-9)

    odometry = Pose2dPose2dFactor.make(
        Pose2dNode(), Pose2dNode(), Pose2d(0.0, 0.0, onp.pi - 0.01), onp.eye(3)
    )
    error = odometry.basic_error(
        (Pose2d(0.0, 0.0, 0.0), Pose2d(0.0, 0.0, -onp.pi + 0.01))
    )
    onp.testing.assert_allclose(error, [0.0, 0.0, 0.02], atol=1e-9)


def test_landmark_initialization():
    pose = Pose2dNode()
    point = Point2dNode()
    pose.init(Pose2d(0.0, 0.0, 0.0))
    Pose2dPoint2dFactor.make(pose, point, Point2d(2.0, 0.0), onp.eye(2)).initialize()
    onp.testing.assert_allclose(point.vector(), [2.0, 0.0], atol=1e-12)


def test_odometry_initialization():
    pose1 = Pose2dNode()
    pose2 = Pose2dNode()
    pose1.init(Pose2d(1.0, 0.0, onp.pi / 2.0))
    Pose2dPose2dFactor.make(
        pose1, pose2, Pose2d(1.0, 0.0, 0.0), onp.eye(3)
    ).initialize()
    onp.testing.assert_allclose(pose2.vector(), [1.0, 1.0, onp.pi / 2.0], atol=1e-12)

    # Already initialized nodes are left alone.
    Pose2dPose2dFactor.make(
        pose1, pose2, Pose2d(5.0, 0.0, 0.0), onp.eye(3)
    ).initialize()
    onp.testing.assert_allclose(pose2.vector(), [1.0, 1.0, onp.pi / 2.0], atol=1e-12)


def test_anchored_initialization():
    rng = onp.random.default_rng(2)
    measure = _random_pose2d(rng)

    # Solve for the second anchor.
    pose1, pose2, anchor1, anchor2 = (Pose2dNode() for _ in range(4))
    pose1.init(_random_pose2d(rng))
    pose2.init(_random_pose2d(rng))
    anchor1.init(_random_pose2d(rng))
    factor = Pose2dPose2dFactor.make(
        pose1, pose2, measure, onp.eye(3), anchor1=anchor1, anchor2=anchor2
    )
    factor.initialize()
    assert anchor2.initialized
    onp.testing.assert_allclose(factor.error(), onp.zeros(3), atol=1e-9)

    # Solve for the second pose.
    pose1, pose2, anchor1, anchor2 = (Pose2dNode() for _ in range(4))
    pose1.init(_random_pose2d(rng))
    anchor1.init(_random_pose2d(rng))
    anchor2.init(_random_pose2d(rng))
    factor = Pose2dPose2dFactor.make(
        pose1, pose2, measure, onp.eye(3), anchor1=anchor1, anchor2=anchor2
    )
    factor.initialize()
    assert pose2.initialized
    onp.testing.assert_allclose(factor.error(), onp.zeros(3), atol=1e-9)

    # Both unknown.
    pose1, pose2, anchor1, anchor2 = (Pose2dNode() for _ in range(4))
    pose1.init(_random_pose2d(rng))
    anchor1.init(_random_pose2d(rng))
    factor = Pose2dPose2dFactor.make(
        pose1, pose2, measure, onp.eye(3), anchor1=anchor1, anchor2=anchor2
    )
    factor.initialize()
    onp.testing.assert_allclose(factor.error(), onp.zeros(3), atol=1e-9)


def test_initialization_preconditions():
    pose1 = Pose2dNode()
    pose2 = Pose2dNode()
    with pytest.raises(jaxsam.UninitializedNodeError):
        Pose2dPose2dFactor.make(
            pose1, pose2, Pose2d(1.0, 0.0, 0.0), onp.eye(3)
        ).initialize()
    assert not pose2.initialized

    point = Point2dNode()
    with pytest.raises(jaxsam.UninitializedNodeError):
        Pose2dPoint2dFactor.make(
            Pose2dNode(), point, Point2d(1.0, 0.0), onp.eye(2)
        ).initialize()
    assert not point.initialized

    # Anchored: preconditions are all checked before anything is initialized.
    pose1, pose2, anchor1, anchor2 = (Pose2dNode() for _ in range(4))
    pose1.init(Pose2d())
    with pytest.raises(jaxsam.UninitializedNodeError):
        Pose2dPose2dFactor.make(
            pose1, pose2, Pose2d(), onp.eye(3), anchor1=anchor1, anchor2=anchor2
        ).initialize()
    assert not pose2.initialized
    assert not anchor2.initialized


def test_uninitialized_linearization():
    factor = Pose2dFactor.make(Pose2dNode(), Pose2d(), onp.eye(3))
    with pytest.raises(jaxsam.UninitializedNodeError):
        factor.jacobian()


def test_sqrtinf_validation():
    with pytest.raises(jaxsam.DimensionMismatchError):
        Pose2dFactor.make(Pose2dNode(), Pose2d(), onp.eye(2))
    with pytest.raises(jaxsam.DimensionMismatchError):
        Pose2dPoint2dFactor.make(Pose2dNode(), Point2dNode(), Point2d(), onp.eye(3))
    with pytest.raises(jaxsam.DimensionMismatchError):
        Pose3dFactor.make(Pose3dNode(), Pose3d(), onp.ones((6, 5)))
    with pytest.raises(ValueError):
        Pose2dFactor.make(Pose2dNode(), Pose2d(), onp.ones((3, 3)))
    with pytest.raises(ValueError):
        Pose2dPose2dFactor.make(
            Pose2dNode(), Pose2dNode(), Pose2d(), onp.eye(3), anchor1=Pose2dNode()
        )


def test_node_lifecycle():
    node = Pose2dNode()
    assert node.state == NodeState.UNINITIALIZED
    assert not node.initialized
    assert node.column is None
    with pytest.raises(jaxsam.UninitializedNodeError):
        node.value

    with pytest.raises(TypeError):
        node.init(Point2d())
    node.init(Pose2d(1.0, 2.0, 3.0))
    assert node.state == NodeState.INITIALIZED
    onp.testing.assert_allclose(node.vector(), [1.0, 2.0, 3.0])
    onp.testing.assert_allclose(node.vector0(), [1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        node.init(Pose2d())

    # Unique ids are monotonic.
    assert Pose2dNode().unique_id > node.unique_id


def test_node_dimension_mismatch():
    node = Point2dNode()
    with pytest.raises(jaxsam.DimensionMismatchError):
        node.init(Point2d(onp.array([1.0, 2.0]), onp.array([3.0, 4.0])))
    assert not node.initialized


def test_node_types():
    assert Pose2dNode.get_dim() == 3
    assert Point2dNode.get_dim() == 2
    assert Pose3dNode.get_dim() == 6
    assert Point3dNode.get_dim() == 3
    assert Pose2dNode.canonical_instance() is Pose2dNode.canonical_instance()
    onp.testing.assert_allclose(Pose2dNode.get_default_value().vector(), onp.zeros(3))


def test_serialization():
    pose1 = Pose2dNode()
    pose2 = Pose2dNode()
    pose1.init(Pose2d(0.0, 0.0, 0.0))

    out = io.StringIO()
    pose1.write(out)
    assert out.getvalue() == f"Pose2d_Node {pose1.unique_id} (0, 0, 0)"

    sqrtinf = onp.array([[1.0, 2.0, 3.0], [0.0, 4.0, 5.0], [0.0, 0.0, 6.0]])
    factor = Pose2dPose2dFactor.make(pose1, pose2, Pose2d(1.0, 0.0, 0.5), sqrtinf)
    assert (
        str(factor)
        == f"Pose2d_Pose2d_Factor {pose1.unique_id} {pose2.unique_id} (1, 0, 0.5)"
        " {1,2,3,4,5,6}"
    )

    anchor1 = Pose2dNode()
    anchor2 = Pose2dNode()
    factor = Pose2dPose2dFactor.make(
        pose1, pose2, Pose2d(1.0, 0.0, 0.5), sqrtinf, anchor1=anchor1, anchor2=anchor2
    )
    assert str(factor).endswith(
        f"{{1,2,3,4,5,6}} {anchor1.unique_id} {anchor2.unique_id}"
    )

    point = Point2dNode()
    factor = Pose2dPoint2dFactor.make(pose1, point, Point2d(2.0, 0.0), onp.eye(2))
    assert (
        str(factor)
        == f"Pose2d_Point2d_Factor {pose1.unique_id} {point.unique_id} (2, 0)"
        " {1,0,1}"
    )
