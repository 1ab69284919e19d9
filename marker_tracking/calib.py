import math
from pathlib import Path
from typing import Tuple

import cv2

from .marker_types import CameraIntrinsics


def load_intrinsics(path: str) -> Tuple[CameraIntrinsics, Tuple[int, int]]:
    """
    Read camera_matrix, image_width and image_height from an OpenCV
    FileStorage (YAML/XML) calibration file. dist_coeffs, if present, are
    ignored: the tracker assumes an undistorted image.
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Calibration not found: {path}")
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    try:
        node = fs.getNode("camera_matrix")
        if node.empty():
            raise ValueError(f"{path}: missing camera_matrix")
        K = node.mat()
        w_node, h_node = fs.getNode("image_width"), fs.getNode("image_height")
        if w_node.empty() or h_node.empty():
            raise ValueError(f"{path}: missing image_width/image_height")
        w = int(w_node.real()); h = int(h_node.real())
    finally:
        fs.release()
    return CameraIntrinsics.from_matrix(K), (w, h)


def approximate_intrinsics(width: int, height: int, hfov_deg: float = 60.0) -> CameraIntrinsics:
    """Square-pixel intrinsics from a horizontal field of view, for dry runs."""
    f = (width / 2.0) / math.tan(math.radians(hfov_deg) / 2.0)
    return CameraIntrinsics(f, f, (width - 1) / 2.0, (height - 1) / 2.0)
