from ._slam2d import (
    Point2dFactor,
    Point2dNode,
    Pose2dFactor,
    Pose2dNode,
    Pose2dPoint2dFactor,
    Pose2dPose2dFactor,
)
from ._slam3d import (
    Point3dFactor,
    Point3dNode,
    Pose3dFactor,
    Pose3dNode,
    Pose3dPoint3dFactor,
    Pose3dPose3dFactor,
)

__all__ = [
    "Point2dFactor",
    "Point2dNode",
    "Pose2dFactor",
    "Pose2dNode",
    "Pose2dPoint2dFactor",
    "Pose2dPose2dFactor",
    "Point3dFactor",
    "Point3dNode",
    "Pose3dFactor",
    "Pose3dNode",
    "Pose3dPoint3dFactor",
    "Pose3dPose3dFactor",
]
