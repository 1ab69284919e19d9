from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics (zero skew) at the resolution of the image buffer."""

    fx: float
    fy: float
    cx: float
    cy: float

    @property
    def matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    @classmethod
    def from_matrix(cls, K) -> "CameraIntrinsics":
        K = np.asarray(K, dtype=np.float64).reshape(3, 3)
        return cls(float(K[0, 0]), float(K[1, 1]), float(K[0, 2]), float(K[1, 2]))

    def scaled(self, src_size: tuple[int, int], dst_size: tuple[int, int]) -> "CameraIntrinsics":
        """
        Rescale for an image resized from src_size to dst_size (width, height).

        The principal point is scaled about pixel centers, not pixel corners.
        """
        sx = dst_size[0] / float(src_size[0])
        sy = dst_size[1] / float(src_size[1])
        return CameraIntrinsics(
            self.fx * sx,
            self.fy * sy,
            (self.cx + 0.5) * sx - 0.5,
            (self.cy + 0.5) * sy - 0.5,
        )


@dataclass
class ImageBuffer:
    data: Any  # bytes-like or numpy array
    width: int
    height: int
    stride: Optional[int] = None  # bytes per row; defaults to width * channels
    pixel_format: str = "BGR"  # "BGR" or "BGRA"


@dataclass
class Detection:
    marker_id: int
    corners: np.ndarray  # (4,2) TL, TR, BR, BL


@dataclass
class RawPose:
    """Camera-to-marker transform in OpenCV camera axes."""

    marker_id: int
    rotation: np.ndarray  # (3,3)
    translation: np.ndarray  # (3,)

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = np.asarray(self.translation, dtype=np.float64).reshape(3)
        return T


@dataclass(frozen=True)
class FilteredPose:
    marker_id: int
    transform: np.ndarray = field(repr=False)  # (4,4) consumer axes

    @property
    def rotation(self) -> np.ndarray:
        return self.transform[:3, :3]

    @property
    def translation(self) -> np.ndarray:
        return self.transform[:3, 3]


@dataclass
class Frame:
    idx: int
    timestamp: float  # seconds, monotonic clock
    image: Any  # numpy array
