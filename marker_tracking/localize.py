from __future__ import annotations

import logging
import math
from typing import Optional

import cv2
import numpy as np

from .marker_types import CameraIntrinsics, Detection, RawPose
from .transforms import rvec_tvec_to_matrix


log = logging.getLogger(__name__)

_ZERO_DIST = np.zeros((5, 1), dtype=np.float64)

# Quads smaller than this (pixels) are too close to solve reliably.
MIN_EDGE_PX = 2.0
MIN_AREA_PX = 4.0


def marker_object_points(marker_length_m: float) -> np.ndarray:
    """Marker corners in the marker frame, TL, TR, BR, BL, centered, z = 0."""
    h = marker_length_m / 2.0
    return np.array(
        [
            [-h, h, 0.0],
            [h, h, 0.0],
            [h, -h, 0.0],
            [-h, -h, 0.0],
        ],
        dtype=np.float64,
    )


def _cross2(a: np.ndarray, b: np.ndarray) -> float:
    return float(a[0] * b[1] - a[1] * b[0])


def is_degenerate(corners: np.ndarray) -> bool:
    pts = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    if pts.shape != (4, 2) or not np.all(np.isfinite(pts)):
        return True

    edges = np.roll(pts, -1, axis=0) - pts
    if np.min(np.linalg.norm(edges, axis=1)) < MIN_EDGE_PX:
        return True

    # shoelace area
    area = 0.5 * abs(sum(_cross2(pts[i], pts[(i + 1) % 4]) for i in range(4)))
    if area < MIN_AREA_PX:
        return True

    # any three corners collinear
    for i in range(4):
        a, b, c = pts[i], pts[(i + 1) % 4], pts[(i + 2) % 4]
        tri = abs(_cross2(b - a, c - a))
        scale = np.linalg.norm(b - a) * np.linalg.norm(c - a)
        if tri <= 1e-6 * scale:
            return True
    return False


class MarkerPoseEstimator:
    """Square-marker pose from four corners (IPPE, zero distortion)."""

    def __init__(self, marker_length_m: float):
        if not (math.isfinite(marker_length_m) and marker_length_m > 0):
            raise ValueError("marker_length_m must be positive")
        self.L = float(marker_length_m)
        self.object_points = marker_object_points(self.L)

    def solve(self, det: Detection, intrinsics: CameraIntrinsics) -> Optional[RawPose]:
        if is_degenerate(det.corners):
            log.debug("marker %d: degenerate corners, skipped", det.marker_id)
            return None

        img_pts = np.asarray(det.corners, dtype=np.float64).reshape(4, 1, 2)
        try:
            ok, rvec, tvec = cv2.solvePnP(
                self.object_points,
                img_pts,
                intrinsics.matrix,
                _ZERO_DIST,
                flags=cv2.SOLVEPNP_IPPE_SQUARE,
            )
        except cv2.error as exc:
            log.debug("marker %d: solvePnP failed: %s", det.marker_id, exc)
            return None

        if not ok or not np.all(np.isfinite(rvec)) or not np.all(np.isfinite(tvec)):
            return None

        T = rvec_tvec_to_matrix(rvec, tvec)
        return RawPose(det.marker_id, T[:3, :3], T[:3, 3])

    def estimate(self, detections: list[Detection], intrinsics: CameraIntrinsics) -> list[RawPose]:
        poses = []
        for det in detections:
            pose = self.solve(det, intrinsics)
            if pose is not None:
                poses.append(pose)
        return poses
