from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .capture import FrameSource, OpenCVFrameSource, SyntheticFrameSource
from .config import TrackerConfig
from .logging_utils import file_logging, setup_logger
from .marker_types import CameraIntrinsics
from .output import CsvPoseOutput, OutputSink
from .pipeline import MarkerPosePipeline
from .preprocess import resize_frame

# give up on a source after this many failed reads in a row
MAX_CONSECUTIVE_READ_ERRORS = 30


@dataclass
class SessionSummary:
    frames_read: int
    frames_admitted: int
    frames_dropped: int
    frames_processed: int
    read_errors: int
    avg_fps: float
    output_dir: Optional[str]
    log_path: Optional[str]


class TrackingSession:
    """
    Producer loop: read frames, bring them to detection resolution, offer
    them to the pipeline. The pipeline drops whatever arrives while busy.
    """

    def __init__(
        self,
        config: TrackerConfig,
        intrinsics: CameraIntrinsics,
        calib_size: Optional[tuple[int, int]] = None,
        source: Optional[FrameSource] = None,
        pipeline: Optional[MarkerPosePipeline] = None,
        outputs: Optional[Sequence[OutputSink]] = None,
        logger=None,
    ):
        self.config = config.validate()
        self.logger = logger or setup_logger(config.tracker_name, config.log_level)
        self.intrinsics = intrinsics
        self.calib_size = calib_size
        self.source = source

        if pipeline is None:
            if outputs is None:
                outputs = [CsvPoseOutput()] if config.output_dir else []
            pipeline = MarkerPosePipeline(config, outputs=outputs, logger=self.logger)
        self.pipeline = pipeline
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def _build_source(self) -> FrameSource:
        if self.source is not None:
            return self.source
        width, height = self.calib_size or (0, 0)
        if self.config.dry_run:
            return SyntheticFrameSource(self.config.fps, width or 640, height or 480)
        return OpenCVFrameSource(self.config.device, self.config.fps, width, height)

    def _intrinsics_for(self, size: tuple[int, int]) -> CameraIntrinsics:
        if self.calib_size is None or tuple(self.calib_size) == size:
            return self.intrinsics
        return self.intrinsics.scaled(tuple(self.calib_size), size)

    def run(self) -> SessionSummary:
        cfg = self.config
        out_dir = Path(cfg.output_dir) if cfg.output_dir else None
        log_path = None
        if out_dir is not None:
            out_dir.mkdir(parents=True, exist_ok=True)
            log_path = str(out_dir / "session.log")

        with file_logging(self.logger, cfg.tracker_name, log_path):
            return self._run(out_dir, log_path)

    def _run(self, out_dir: Optional[Path], log_path: Optional[str]) -> SessionSummary:
        cfg = self.config
        self.logger.info("session started: %s", out_dir or "(no output dir)")
        self.logger.info("config: %s", cfg.as_dict())

        src = self._build_source()
        t0 = time.monotonic()
        frames = 0
        errors = 0
        consecutive_errors = 0

        try:
            if out_dir is not None:
                for out in self.pipeline.outputs:
                    out.open(out_dir)
            src.start()

            while True:
                if self._stop_event.is_set():
                    break
                if cfg.duration_sec and (time.monotonic() - t0) >= cfg.duration_sec:
                    break
                if cfg.max_frames and frames >= cfg.max_frames:
                    break

                f = src.read()
                if f is None:
                    errors += 1
                    consecutive_errors += 1
                    if consecutive_errors >= MAX_CONSECUTIVE_READ_ERRORS:
                        self.logger.warning("source stopped delivering frames after %d attempts", consecutive_errors)
                        break
                    continue
                consecutive_errors = 0
                frames += 1

                h, w = f.image.shape[:2]
                image, K = f.image, self._intrinsics_for((w, h))
                if cfg.target_width and cfg.target_height:
                    image, K = resize_frame(image, K, cfg.target_width, cfg.target_height)

                self.pipeline.submit_frame(image, K, f.timestamp)

        finally:
            try:
                src.stop()
            except Exception as e:
                self.logger.warning("source stop failed: %s", e)

            if not self.pipeline.wait_idle(timeout=5.0):
                self.logger.warning("pipeline still busy at shutdown, closing anyway")
            self.pipeline.close()

            for out in self.pipeline.outputs:
                try:
                    out.close()
                except Exception as e:
                    self.logger.warning("output close failed: %s", e)

        elapsed = max(1e-6, time.monotonic() - t0)
        stats = self.pipeline.scheduler.stats
        avg = frames / elapsed
        self.logger.info(
            "summary frames=%d processed=%d dropped=%d avg_fps=%.2f errors=%d",
            frames, stats.completed, stats.dropped, avg, errors,
        )
        return SessionSummary(
            frames,
            stats.admitted,
            stats.dropped,
            stats.completed,
            errors,
            avg,
            str(out_dir) if out_dir is not None else None,
            log_path,
        )
