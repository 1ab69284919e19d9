"""Frame sources feeding a tracking session.

- OpenCV capture devices and video files
- Synthetic frames for dry runs and tests
"""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import cv2
import numpy as np

from .marker_types import Frame


class FrameSource(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def read(self) -> Frame | None:
        """Next frame, or None if none could be read."""
        ...

    @abstractmethod
    def stop(self) -> None: ...


class OpenCVFrameSource(FrameSource):
    """cv2.VideoCapture on a device index, /dev/videoN, or a video file/URL."""

    def __init__(self, device: int | str, fps: int = 0, width: int = 0, height: int = 0):
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None
        self.idx = 0

    def start(self) -> None:
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device)
        else:
            dev_str = str(self.device)
            match = re.match(r"^/dev/video(\d+)$", dev_str)
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            else:
                self.cap = cv2.VideoCapture(dev_str)

        if self.width and self.height:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        if self.fps:
            self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {self.device}")
        self.idx = 0

    def read(self) -> Frame | None:
        if self.cap is None:
            return None
        ok, img = self.cap.read()
        if not ok:
            return None
        self.idx += 1
        return Frame(self.idx, time.monotonic(), img)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class SyntheticFrameSource(FrameSource):
    """Paced copies of a fixed image (black by default)."""

    def __init__(self, fps: int, width: int, height: int, image: Optional[np.ndarray] = None):
        self.fps = fps
        self.width = width
        self.height = height
        self.image = image if image is not None else np.zeros((height, width, 3), dtype=np.uint8)
        self.idx = 0
        self._last = 0.0

    def start(self) -> None:
        self._last = time.monotonic()

    def read(self) -> Frame | None:
        now = time.monotonic()
        if self.fps > 0:
            wait = max(0.0, (1.0 / self.fps) - (now - self._last))
            if wait > 0:
                time.sleep(wait)
        self._last = time.monotonic()
        self.idx += 1
        return Frame(self.idx, self._last, self.image.copy())

    def stop(self) -> None:
        return None
