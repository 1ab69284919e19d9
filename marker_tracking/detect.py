from __future__ import annotations

from typing import Iterable

import cv2
import numpy as np

from .marker_types import Detection
from .preprocess import to_bgr


DICTIONARIES = {
    "4x4_50": cv2.aruco.DICT_4X4_50,
    "4x4_100": cv2.aruco.DICT_4X4_100,
    "4x4_250": cv2.aruco.DICT_4X4_250,
    "4x4_1000": cv2.aruco.DICT_4X4_1000,
    "5x5_50": cv2.aruco.DICT_5X5_50,
    "5x5_100": cv2.aruco.DICT_5X5_100,
    "5x5_250": cv2.aruco.DICT_5X5_250,
    "5x5_1000": cv2.aruco.DICT_5X5_1000,
    "6x6_50": cv2.aruco.DICT_6X6_50,
    "6x6_100": cv2.aruco.DICT_6X6_100,
    "6x6_250": cv2.aruco.DICT_6X6_250,
    "6x6_1000": cv2.aruco.DICT_6X6_1000,
    "7x7_50": cv2.aruco.DICT_7X7_50,
    "7x7_100": cv2.aruco.DICT_7X7_100,
    "7x7_250": cv2.aruco.DICT_7X7_250,
    "7x7_1000": cv2.aruco.DICT_7X7_1000,
    "aruco_original": cv2.aruco.DICT_ARUCO_ORIGINAL,
    "aruco_mip_36h12": cv2.aruco.DICT_ARUCO_MIP_36h12,
    "apriltag_16h5": cv2.aruco.DICT_APRILTAG_16h5,
    "apriltag_25h9": cv2.aruco.DICT_APRILTAG_25h9,
    "apriltag_36h10": cv2.aruco.DICT_APRILTAG_36h10,
    "apriltag_36h11": cv2.aruco.DICT_APRILTAG_36h11,
}


def normalize_dict_name(name: str) -> str:
    key = (name or "").strip()
    if key.upper().startswith("DICT_"):
        key = key[5:]
    return key.lower()


def get_dict(name: str):
    """
    Resolve a predefined ArUco/AprilTag dictionary by name.

    Accepts "aruco_mip_36h12", "DICT_4X4_50", "4x4_50" and similar.
    Raises ValueError for unknown names.
    """
    key = normalize_dict_name(name)
    if key not in DICTIONARIES:
        raise ValueError(f"Unknown marker dictionary: {name!r}")
    return cv2.aruco.getPredefinedDictionary(DICTIONARIES[key])


class MarkerDetector:
    """
    Detect fiducial markers and keep only the allowed IDs.

    The underlying cv2.aruco.ArucoDetector is reused across frames and must
    not be called from two threads at once; the pipeline's single-flight
    scheduler guarantees that.
    """

    def __init__(self, dict_name: str, allowed_ids: Iterable[int]):
        self.dict_name = normalize_dict_name(dict_name)
        self.dictionary = get_dict(dict_name)
        self.params = cv2.aruco.DetectorParameters()
        self.allowed_ids = frozenset(int(i) for i in allowed_ids)
        self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

    def detect(self, image) -> list[Detection]:
        bgr = to_bgr(image)
        if bgr is None:
            return []

        corners, ids, _rej = self._detector.detectMarkers(bgr)

        dets: list[Detection] = []
        if ids is not None and len(ids) > 0:
            for i, mid in enumerate(ids.flatten()):
                if int(mid) not in self.allowed_ids:
                    continue
                pts = np.asarray(corners[i], dtype=np.float64).reshape(4, 2)
                dets.append(Detection(int(mid), pts))
        return dets
