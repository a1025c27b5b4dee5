import numpy as onp
import pytest
from jax import numpy as jnp

import jaxsam
from jaxsam.geometry import Point2d, Point3d, Pose2d, Pose3d, standard_rad


def _random_pose2d(rng: onp.random.Generator) -> Pose2d:
    x, y = rng.uniform(-10.0, 10.0, size=2)
    return Pose2d(x=x, y=y, t=rng.uniform(-onp.pi, onp.pi))


def _random_pose3d(rng: onp.random.Generator) -> Pose3d:
    x, y, z = rng.uniform(-10.0, 10.0, size=3)
    return Pose3d(
        x=x,
        y=y,
        z=z,
        yaw=rng.uniform(-onp.pi, onp.pi),
        # Stay away from the Euler angle singularity.
        pitch=rng.uniform(-1.2, 1.2),
        roll=rng.uniform(-onp.pi, onp.pi),
    )


@pytest.mark.parametrize(
    "angle,expected",
    [
        (0.0, 0.0),
        (onp.pi, onp.pi),
        (-onp.pi, onp.pi),
        (1.5 * onp.pi, -0.5 * onp.pi),
        (-1.5 * onp.pi, 0.5 * onp.pi),
        (7.0 * onp.pi + 0.1, -onp.pi + 0.1),
        (-2.0 * onp.pi + 0.02, 0.02),
    ],
)
def test_standard_rad(angle: float, expected: float):
    onp.testing.assert_allclose(standard_rad(angle), expected, atol=1e-12)


def test_standard_rad_vectorized():
    angles = jnp.array([0.1, 3.0 * onp.pi + 0.2, -3.0 * onp.pi - 0.1])
    onp.testing.assert_allclose(
        standard_rad(angles), [0.1, -onp.pi + 0.2, onp.pi - 0.1], atol=1e-12
    )


def test_pose2d_oplus_ominus_roundtrip():
    rng = onp.random.default_rng(0)
    for _ in range(10):
        a = _random_pose2d(rng)
        b = _random_pose2d(rng)
        onp.testing.assert_allclose(
            a.oplus(a.ominus(b)).vector(), b.vector(), atol=1e-9
        )


def test_pose2d_ominus_is_relative_pose():
    a = Pose2d(1.0, 1.0, onp.pi / 2.0)
    b = Pose2d(1.0, 3.0, onp.pi)

    # `b` is two meters ahead of `a`, and rotated left.
    onp.testing.assert_allclose(
        a.ominus(b).vector(), [2.0, 0.0, onp.pi / 2.0], atol=1e-12
    )
    onp.testing.assert_allclose(
        a.oplus(Pose2d(2.0, 0.0, onp.pi / 2.0)).vector(), b.vector(), atol=1e-12
    )


def test_pose2d_inverse():
    rng = onp.random.default_rng(1)
    a = _random_pose2d(rng)
    onp.testing.assert_allclose(a.oplus(a.inverse()).vector(), onp.zeros(3), atol=1e-9)


def test_pose2d_angles_are_wrapped():
    a = Pose2d(0.0, 0.0, 3.0)
    composed = a.oplus(Pose2d(0.0, 0.0, 3.0))
    assert -onp.pi < composed.t <= onp.pi
    onp.testing.assert_allclose(composed.t, 6.0 - 2.0 * onp.pi, atol=1e-12)


def test_pose2d_transform_roundtrip():
    rng = onp.random.default_rng(2)
    for _ in range(10):
        a = _random_pose2d(rng)
        p = Point2d(*rng.uniform(-10.0, 10.0, size=2))
        onp.testing.assert_allclose(
            a.transform_to(a.transform_from(p)).vector(), p.vector(), atol=1e-9
        )
        onp.testing.assert_allclose(
            a.transform_from(a.transform_to(p)).vector(), p.vector(), atol=1e-9
        )


def test_pose2d_transform_from():
    pose = Pose2d(1.0, 2.0, onp.pi / 2.0)
    onp.testing.assert_allclose(
        pose.transform_from(Point2d(2.0, 0.0)).vector(), [1.0, 4.0], atol=1e-12
    )


def test_vector_roundtrip():
    onp.testing.assert_allclose(
        Pose2d.from_vector(jnp.array([1.0, 2.0, 0.5])).vector(), [1.0, 2.0, 0.5]
    )
    onp.testing.assert_allclose(
        Point2d.from_vector(jnp.array([1.0, 2.0])).vector(), [1.0, 2.0]
    )
    onp.testing.assert_allclose(
        Point3d.from_vector(jnp.array([1.0, 2.0, 3.0])).vector(), [1.0, 2.0, 3.0]
    )
    vector = jnp.array([1.0, 2.0, 3.0, 0.1, -0.2, 0.3])
    onp.testing.assert_allclose(Pose3d.from_vector(vector).vector(), vector)
    onp.testing.assert_allclose(
        Pose3d.from_vector(vector).normalize().vector(), vector, atol=1e-12
    )


def test_pose3d_rotation_convention():
    yaw, pitch, roll = 0.3, -0.2, 0.1
    Rz = onp.array(
        [
            [onp.cos(yaw), -onp.sin(yaw), 0.0],
            [onp.sin(yaw), onp.cos(yaw), 0.0],
            [0.0, 0.0, 1.0],
        ]
    )
    Ry = onp.array(
        [
            [onp.cos(pitch), 0.0, onp.sin(pitch)],
            [0.0, 1.0, 0.0],
            [-onp.sin(pitch), 0.0, onp.cos(pitch)],
        ]
    )
    Rx = onp.array(
        [
            [1.0, 0.0, 0.0],
            [0.0, onp.cos(roll), -onp.sin(roll)],
            [0.0, onp.sin(roll), onp.cos(roll)],
        ]
    )
    pose = Pose3d(yaw=yaw, pitch=pitch, roll=roll)
    onp.testing.assert_allclose(
        pose.rotation().as_matrix(), Rz @ Ry @ Rx, atol=1e-12
    )


def test_pose3d_oplus_ominus_roundtrip():
    rng = onp.random.default_rng(3)
    for _ in range(10):
        a = _random_pose3d(rng)
        b = _random_pose3d(rng)
        onp.testing.assert_allclose(
            a.oplus(a.ominus(b)).vector(), b.vector(), atol=1e-9
        )


def test_pose3d_transform_roundtrip():
    rng = onp.random.default_rng(4)
    for _ in range(10):
        a = _random_pose3d(rng)
        p = Point3d(*rng.uniform(-10.0, 10.0, size=3))
        onp.testing.assert_allclose(
            a.transform_to(a.transform_from(p)).vector(), p.vector(), atol=1e-9
        )


def test_string_forms():
    assert str(Point2d(2.0, 0.0)) == "(2, 0)"
    assert str(Point3d(1.0, 2.5, -3.0)) == "(1, 2.5, -3)"
    assert str(Pose2d(1.0, 0.0, 0.5)) == "(1, 0, 0.5)"
    assert str(Pose3d(1.0, 2.0, 3.0, 0.1, 0.2, 0.3)) == "(1, 2, 3; 0.1, 0.2, 0.3)"


@pytest.mark.parametrize(
    "value_type,length", [(Point2d, 3), (Point3d, 2), (Pose2d, 2), (Pose3d, 3)]
)
def test_from_vector_length_mismatch(value_type, length: int):
    with pytest.raises(jaxsam.DimensionMismatchError):
        value_type.from_vector(jnp.zeros(length))
