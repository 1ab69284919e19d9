import cv2
import numpy as np
import pytest

from marker_tracking.detect import get_dict
from marker_tracking.localize import marker_object_points
from marker_tracking.marker_types import CameraIntrinsics, Detection


MARKER_LENGTH_M = 0.05


@pytest.fixture
def intrinsics() -> CameraIntrinsics:
    """640x480 camera with the principal point at the image center."""
    return CameraIntrinsics(800.0, 800.0, 319.5, 239.5)


@pytest.fixture
def render_markers():
    """
    Build a white BGR canvas with upright markers pasted in.

    placements: iterable of (marker_id, x, y, side_px), x/y = top-left pixel.
    """

    def _render(placements, size=(640, 480), dict_name="aruco_mip_36h12"):
        w, h = size
        dictionary = get_dict(dict_name)
        canvas = np.full((h, w), 255, dtype=np.uint8)
        for marker_id, x, y, side in placements:
            tile = cv2.aruco.generateImageMarker(dictionary, marker_id, side)
            canvas[y:y + side, x:x + side] = tile
        return cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

    return _render


@pytest.fixture
def centered_marker_image(render_markers):
    """Marker 3, 160 px wide, centered: 0.25 m away for f=800 and L=0.05."""
    return render_markers([(3, 240, 160, 160)])


@pytest.fixture
def project_detection(intrinsics):
    """Detection whose corners are the exact projection of a known pose."""

    def _project(marker_id, rvec, tvec, marker_length=MARKER_LENGTH_M, K=None):
        K = intrinsics if K is None else K
        pts, _ = cv2.projectPoints(
            marker_object_points(marker_length),
            np.asarray(rvec, dtype=np.float64),
            np.asarray(tvec, dtype=np.float64),
            K.matrix,
            np.zeros(5),
        )
        return Detection(marker_id, pts.reshape(4, 2))

    return _project
