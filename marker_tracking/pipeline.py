from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .config import TrackerConfig
from .detect import MarkerDetector
from .filters import PoseFilterChain
from .localize import MarkerPoseEstimator
from .logging_utils import setup_logger
from .marker_types import CameraIntrinsics, FilteredPose
from .output import OutputSink
from .scheduler import SingleFlightScheduler
from .transforms import opencv_to_consumer


PoseCallback = Callable[[tuple[FilteredPose, ...]], None]


@dataclass(frozen=True)
class PoseSnapshot:
    frame_idx: int
    timestamp: float
    poses: tuple[FilteredPose, ...]


EMPTY_SNAPSHOT = PoseSnapshot(0, 0.0, ())


class MarkerPosePipeline:
    """
    Frame in, filtered marker poses out.

    ``submit_frame`` is the producer entry point: it returns immediately and
    drops the frame if a previous one is still being processed. Finished
    passes are published as an immutable snapshot on a separate consumer
    thread; read it with ``latest_poses`` or receive it with ``subscribe``.

    ``process_frame`` runs the same pass and waits for its result. It is
    serialized with submitted passes on the worker thread and publishes
    nothing.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        detector: Optional[MarkerDetector] = None,
        estimator: Optional[MarkerPoseEstimator] = None,
        pose_filter: Optional[PoseFilterChain] = None,
        outputs: Optional[Sequence[OutputSink]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = (config or TrackerConfig()).validate()
        self.logger = logger or setup_logger(self.config.tracker_name, self.config.log_level)
        self.allowed_ids = frozenset(int(i) for i in self.config.allowed_ids)

        self.detector = detector or MarkerDetector(self.config.aruco_dict, self.allowed_ids)
        self.estimator = estimator or MarkerPoseEstimator(self.config.marker_length_m)
        self.pose_filter = pose_filter or PoseFilterChain(self.config.filter)
        self.outputs = list(outputs or [])
        self.clock = clock

        self._subscribers: list[PoseCallback] = []
        self._sub_lock = threading.Lock()
        self._snapshot = EMPTY_SNAPSHOT
        self._frame_ids = itertools.count(1)

        self.scheduler = SingleFlightScheduler(
            self._worker_pass,
            on_result=self._publish,
            logger=self.logger,
            name=self.config.tracker_name,
        )

        self.logger.info(
            "pipeline ready: dict=%s ids=%s marker=%.3fm window=%d chained=%s",
            self.config.aruco_dict,
            sorted(self.allowed_ids),
            self.config.marker_length_m,
            self.config.filter.window_size,
            self.config.filter.chained,
        )

    # worker side

    def process_frame(
        self,
        image,
        intrinsics: CameraIntrinsics,
        timestamp: Optional[float] = None,
    ) -> list[FilteredPose]:
        """
        Run one pass synchronously and return its poses without publishing.

        The pass runs on the worker thread, after any in-flight submitted
        pass, so the detector and filter state never see two passes at once.
        Must not be called from the worker thread itself.
        """
        ts = self.clock() if timestamp is None else float(timestamp)
        return self.scheduler.run_exclusive(self._process, image, intrinsics, ts)

    def _process(self, image, intrinsics: CameraIntrinsics, ts: float) -> list[FilteredPose]:
        detections = self.detector.detect(image)
        raw_poses = self.estimator.estimate(detections, intrinsics)

        out: list[FilteredPose] = []
        for raw in raw_poses:
            if raw.marker_id not in self.allowed_ids:
                continue
            T = opencv_to_consumer(raw.as_matrix())
            filtered = self.pose_filter.update(raw.marker_id, T, ts)
            filtered.setflags(write=False)
            out.append(FilteredPose(raw.marker_id, filtered))

        self.logger.debug("dets=%d solved=%d published=%d", len(detections), len(raw_poses), len(out))
        return out

    def _worker_pass(self, frame_idx: int, image, intrinsics: CameraIntrinsics, timestamp: Optional[float]) -> PoseSnapshot:
        ts = self.clock() if timestamp is None else float(timestamp)
        poses = self._process(image, intrinsics, ts)
        return PoseSnapshot(frame_idx, ts, tuple(poses))

    # producer side

    def submit_frame(
        self,
        image,
        intrinsics: CameraIntrinsics,
        timestamp: Optional[float] = None,
    ) -> bool:
        """Offer a frame; False means it was dropped because a pass is in flight."""
        frame_idx = next(self._frame_ids)
        return self.scheduler.submit(frame_idx, image, intrinsics, timestamp)

    # consumer side

    def _publish(self, snapshot: PoseSnapshot) -> None:
        self._snapshot = snapshot

        with self._sub_lock:
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(snapshot.poses)
            except Exception as e:
                self.logger.warning("subscriber failed: %s", e)

        for out in self.outputs:
            try:
                out.write_poses(snapshot.timestamp, snapshot.frame_idx, snapshot.poses)
            except Exception as e:
                self.logger.warning("output write failed: %s", e)

    def latest_snapshot(self) -> PoseSnapshot:
        return self._snapshot

    def latest_poses(self) -> tuple[FilteredPose, ...]:
        return self._snapshot.poses

    def subscribe(self, callback: PoseCallback) -> None:
        with self._sub_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: PoseCallback) -> None:
        with self._sub_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # state management

    def clear_marker_state(self, marker_id: int) -> None:
        """
        Forget all filter history of one marker.

        Runs on the worker thread after any in-flight pass, so it never
        interleaves with a filter update. Must not be called from the worker
        thread itself.
        """
        self.scheduler.run_exclusive(self.pose_filter.clear, int(marker_id))
        self.logger.debug("cleared filter state for marker %d", int(marker_id))

    def tracked_marker_ids(self) -> list[int]:
        return self.scheduler.run_exclusive(lambda: self.pose_filter.marker_ids)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        return self.scheduler.wait_idle(timeout)

    def close(self) -> None:
        self.scheduler.shutdown(wait=True)
        stats = self.scheduler.stats
        self.logger.info(
            "pipeline closed: admitted=%d dropped=%d failed=%d",
            stats.admitted,
            stats.dropped,
            stats.failed,
        )

    def __enter__(self) -> "MarkerPosePipeline":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()
