from ._angles import standard_rad
from ._points import Point2d, Point3d
from ._pose2d import Pose2d
from ._pose3d import Pose3d

__all__ = [
    "standard_rad",
    "Point2d",
    "Point3d",
    "Pose2d",
    "Pose3d",
]
