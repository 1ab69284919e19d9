import cv2
import numpy as np
import pytest

from marker_tracking.localize import MarkerPoseEstimator, is_degenerate, marker_object_points
from marker_tracking.marker_types import Detection
from marker_tracking.transforms import rvec_tvec_to_matrix


MARKER_LENGTH_M = 0.05


def test_object_points_are_centered_square():
    pts = marker_object_points(0.04)

    assert pts.shape == (4, 3)
    assert np.allclose(pts.mean(axis=0), 0.0)
    assert np.allclose(pts[:, 2], 0.0)
    # TL, TR, BR, BL
    assert np.allclose(pts[0, :2], [-0.02, 0.02])
    assert np.allclose(pts[2, :2], [0.02, -0.02])


def test_recovers_known_pose_from_exact_corners(intrinsics, project_detection):
    rvec = np.array([0.2, -0.1, 0.05])
    tvec = np.array([0.02, -0.01, 0.4])
    det = project_detection(3, rvec, tvec)

    pose = MarkerPoseEstimator(MARKER_LENGTH_M).solve(det, intrinsics)

    assert pose is not None
    assert pose.marker_id == 3
    R_expected, _ = cv2.Rodrigues(rvec)
    assert np.allclose(pose.rotation, R_expected, atol=1e-6)
    assert np.allclose(pose.translation, tvec, atol=1e-6)
    assert np.allclose(pose.as_matrix()[3], [0, 0, 0, 1])


def test_solve_is_deterministic(intrinsics, project_detection):
    det = project_detection(4, [0.1, 0.3, -0.2], [0.0, 0.05, 0.6])
    est = MarkerPoseEstimator(MARKER_LENGTH_M)

    a = est.solve(det, intrinsics)
    b = est.solve(det, intrinsics)

    assert np.array_equal(a.rotation, b.rotation)
    assert np.array_equal(a.translation, b.translation)


def test_translation_scales_with_marker_length(intrinsics, project_detection):
    det = project_detection(2, [0.0, 0.0, 0.0], [0.0, 0.0, 0.5])

    small = MarkerPoseEstimator(MARKER_LENGTH_M).solve(det, intrinsics)
    large = MarkerPoseEstimator(2 * MARKER_LENGTH_M).solve(det, intrinsics)

    assert np.isclose(large.translation[2] / small.translation[2], 2.0)


@pytest.mark.parametrize(
    "corners",
    [
        [[0, 0], [10, 0], [20, 0], [30, 0]],  # collinear
        [[100, 100], [100.5, 100], [100.5, 100.5], [100, 100.5]],  # too small
        [[0, 0], [10, 0], [10, 10], [np.nan, 10]],
        [[0, 0], [10, 0], [10, 10]],
    ],
)
def test_degenerate_corners(corners):
    assert is_degenerate(np.array(corners, dtype=float))


def test_degenerate_marker_is_skipped_others_kept(intrinsics, project_detection):
    good = project_detection(5, [0.0, 0.0, 0.0], [0.0, 0.0, 0.5])
    bad = Detection(6, np.array([[0, 0], [10, 0], [20, 0], [30, 0]], dtype=float))

    poses = MarkerPoseEstimator(MARKER_LENGTH_M).estimate([bad, good], intrinsics)

    assert [p.marker_id for p in poses] == [5]


def test_no_detections_no_poses(intrinsics):
    assert MarkerPoseEstimator(MARKER_LENGTH_M).estimate([], intrinsics) == []


@pytest.mark.parametrize("length", [0.0, -0.03, float("nan"), float("inf")])
def test_non_positive_marker_length_rejected(length):
    with pytest.raises(ValueError):
        MarkerPoseEstimator(length)


def test_raw_pose_matrix_matches_solver_output(intrinsics, project_detection):
    rvec = np.array([0.15, 0.05, -0.3])
    tvec = np.array([[0.01], [0.02], [0.5]])
    det = project_detection(6, rvec, tvec)

    pose = MarkerPoseEstimator(MARKER_LENGTH_M).solve(det, intrinsics)

    assert pose.translation.shape == (3,)
    assert np.allclose(pose.as_matrix(), rvec_tvec_to_matrix(rvec, tvec), atol=1e-6)
