from __future__ import annotations

import csv
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

from scipy.spatial.transform import Rotation

from .marker_types import FilteredPose


class OutputSink(ABC):
    """Consumer of published pose snapshots. Called on the consumer thread."""

    @abstractmethod
    def open(self, output_dir: Path) -> None: ...

    @abstractmethod
    def write_poses(self, ts: float, frame_idx: int, poses: Sequence[FilteredPose]) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class CsvPoseOutput(OutputSink):
    HEADER = [
        "recorded_at",
        "frame_idx", "marker_id",
        "tx", "ty", "tz",
        "qx", "qy", "qz", "qw",
    ]

    def __init__(self, filename: str = "poses.csv"):
        self.filename = filename
        self.path: Optional[Path] = None
        self._fh = None
        self._w = None

    def open(self, output_dir: Path) -> None:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        self.path = output_dir / self.filename
        self._fh = open(self.path, "w", newline="", encoding="utf-8")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    @staticmethod
    def to_row(ts: float, frame_idx: int, pose: FilteredPose) -> list:
        t = pose.translation.tolist()
        q = Rotation.from_matrix(pose.rotation).as_quat().tolist()
        return [f"{ts:.6f}", frame_idx, pose.marker_id, *t, *q]

    def write_poses(self, ts: float, frame_idx: int, poses: Sequence[FilteredPose]) -> None:
        if self._w is None:
            return
        for pose in poses:
            self._w.writerow(self.to_row(ts, frame_idx, pose))
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._w = None


class NullOutput(OutputSink):
    def open(self, output_dir: Path) -> None:
        return None

    def write_poses(self, ts: float, frame_idx: int, poses: Sequence[FilteredPose]) -> None:
        return None

    def close(self) -> None:
        return None
