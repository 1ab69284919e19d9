from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .marker_types import CameraIntrinsics, ImageBuffer


_CHANNELS = {"BGR": 3, "BGRA": 4}


def _buffer_to_array(buf: ImageBuffer) -> Optional[np.ndarray]:
    channels = _CHANNELS.get(str(buf.pixel_format).upper())
    if channels is None or buf.width <= 0 or buf.height <= 0:
        return None
    row_bytes = buf.width * channels
    stride = buf.stride if buf.stride is not None else row_bytes
    if stride < row_bytes:
        return None

    if isinstance(buf.data, np.ndarray):
        flat = np.ascontiguousarray(buf.data).reshape(-1).view(np.uint8)
    else:
        flat = np.frombuffer(buf.data, dtype=np.uint8)
    # the last row may be unpadded
    needed = stride * (buf.height - 1) + row_bytes
    if flat.size < needed:
        return None
    if flat.size < stride * buf.height:
        flat = np.concatenate([flat, np.zeros(stride * buf.height - flat.size, dtype=np.uint8)])

    rows = flat[: stride * buf.height].reshape(buf.height, stride)
    return rows[:, :row_bytes].reshape(buf.height, buf.width, channels)


def to_bgr(image) -> Optional[np.ndarray]:
    """
    Normalize an image buffer or array to a contiguous HxWx3 uint8 BGR array.

    Returns None for anything that cannot be read as an 8-bit image.
    """
    if image is None:
        return None
    if isinstance(image, ImageBuffer):
        try:
            arr = _buffer_to_array(image)
        except (TypeError, ValueError):
            return None
    else:
        arr = np.asarray(image)
    if arr is None or arr.size == 0 or arr.dtype != np.uint8:
        return None

    if arr.ndim == 2:
        return cv2.cvtColor(arr, cv2.COLOR_GRAY2BGR)
    if arr.ndim != 3:
        return None
    if arr.shape[2] == 4:
        return cv2.cvtColor(np.ascontiguousarray(arr), cv2.COLOR_BGRA2BGR)
    if arr.shape[2] == 3:
        return np.ascontiguousarray(arr)
    return None


def resize_frame(
    image: np.ndarray,
    intrinsics: CameraIntrinsics,
    width: int,
    height: int,
) -> tuple[np.ndarray, CameraIntrinsics]:
    """Downscale a frame for detection and rescale intrinsics to match."""
    h, w = image.shape[:2]
    if (w, h) == (width, height):
        return image, intrinsics
    resized = cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)
    return resized, intrinsics.scaled((w, h), (width, height))
