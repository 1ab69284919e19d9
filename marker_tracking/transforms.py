"""SE(3) helpers and the OpenCV -> consumer axis conversion."""

import numpy as np
import cv2
from scipy.spatial.transform import Rotation


# OpenCV camera axes are x right, y down, z forward. Consumers use x right,
# y up, z backward: a 180 degree turn about x.
OPENCV_TO_CONSUMER = np.diag([1.0, -1.0, -1.0, 1.0])
CONSUMER_TO_OPENCV = OPENCV_TO_CONSUMER.T


def opencv_to_consumer(T: np.ndarray) -> np.ndarray:
    """
    Re-express a camera-to-marker transform in consumer camera axes.

    Args:
        T: 4x4 transform in OpenCV camera axes

    Returns:
        4x4 transform in consumer camera axes
    """
    return OPENCV_TO_CONSUMER @ np.asarray(T, dtype=np.float64)


def consumer_to_opencv(T: np.ndarray) -> np.ndarray:
    """Inverse of :func:`opencv_to_consumer`."""
    return CONSUMER_TO_OPENCV @ np.asarray(T, dtype=np.float64)


def rvec_tvec_to_matrix(rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """4x4 pose from an OpenCV (rvec, tvec) pair; either may be (3,) or (3,1)."""
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    pose = np.eye(4)
    pose[:3, :3] = R
    pose[:3, 3] = np.asarray(tvec, dtype=np.float64).ravel()
    return pose


def rotation_angle_deg(m1: np.ndarray, m2: np.ndarray) -> float:
    """Angle in degrees of the relative rotation between two transforms."""
    q1 = Rotation.from_matrix(np.asarray(m1)[:3, :3]).as_quat()
    q2 = Rotation.from_matrix(np.asarray(m2)[:3, :3]).as_quat()
    dot = min(1.0, abs(float(np.dot(q1, q2))))
    return float(np.degrees(2.0 * np.arccos(dot)))
