import csv
import logging
from unittest.mock import MagicMock

import pytest

from marker_tracking.capture import FrameSource, SyntheticFrameSource
from marker_tracking.config import TrackerConfig
from marker_tracking.output import OutputSink
from marker_tracking.session import MAX_CONSECUTIVE_READ_ERRORS, TrackingSession


def make_config(tmp_path=None, **kwargs):
    params = dict(
        tracker_name="session_test",
        marker_length_m=0.05,
        fps=0,
        max_frames=15,
        target_width=None,
        target_height=None,
        log_level="WARNING",
    )
    if tmp_path is not None:
        params["output_dir"] = str(tmp_path / "out")
    params.update(kwargs)
    return TrackerConfig(**params)


def test_session_tracks_marker_and_writes_outputs(tmp_path, intrinsics, centered_marker_image):
    cfg = make_config(tmp_path)
    source = SyntheticFrameSource(0, 640, 480, image=centered_marker_image)

    summary = TrackingSession(cfg, intrinsics, calib_size=(640, 480), source=source).run()

    assert summary.frames_read == 15
    assert summary.frames_admitted + summary.frames_dropped == 15
    assert summary.frames_processed >= 1
    assert summary.read_errors == 0

    out_dir = tmp_path / "out"
    assert summary.output_dir == str(out_dir)
    assert (out_dir / "session.log").exists()
    with open(out_dir / "poses.csv", newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh))
    assert len(rows) == 1 + summary.frames_processed
    assert {r[2] for r in rows[1:]} == {"3"}
    assert float(rows[1][5]) == pytest.approx(-0.25, abs=0.01)


def test_session_without_output_dir(intrinsics):
    cfg = make_config(max_frames=3)
    source = SyntheticFrameSource(0, 640, 480)

    summary = TrackingSession(cfg, intrinsics, source=source).run()

    assert summary.frames_read == 3
    assert summary.output_dir is None
    assert summary.log_path is None


def test_frames_are_resized_with_scaled_intrinsics(intrinsics, centered_marker_image):
    cfg = make_config(max_frames=1, target_width=320, target_height=240)
    pipeline = MagicMock()
    pipeline.outputs = []
    pipeline.scheduler.stats.admitted = 1
    pipeline.scheduler.stats.dropped = 0
    pipeline.scheduler.stats.completed = 1
    source = SyntheticFrameSource(0, 640, 480, image=centered_marker_image)

    TrackingSession(cfg, intrinsics, calib_size=(640, 480), source=source, pipeline=pipeline).run()

    image, K, _ts = pipeline.submit_frame.call_args.args
    assert image.shape == (240, 320, 3)
    assert K.fx == pytest.approx(intrinsics.fx / 2)
    assert K.cx == pytest.approx(159.5)
    pipeline.close.assert_called_once()


def test_session_gives_up_on_dead_source(intrinsics):
    source = MagicMock(spec=FrameSource)
    source.read.return_value = None
    cfg = make_config(max_frames=None)

    summary = TrackingSession(cfg, intrinsics, source=source).run()

    assert summary.frames_read == 0
    assert summary.read_errors == MAX_CONSECUTIVE_READ_ERRORS
    source.start.assert_called_once()
    source.stop.assert_called_once()


def test_stop_ends_the_loop(intrinsics):
    cfg = make_config(max_frames=None)
    source = SyntheticFrameSource(0, 64, 48)
    session = TrackingSession(cfg, intrinsics, source=source)
    session.stop()

    summary = session.run()

    assert summary.frames_read == 0


def test_dry_run_builds_synthetic_source(intrinsics):
    session = TrackingSession(make_config(dry_run=True), intrinsics, calib_size=(320, 240))

    src = session._build_source()

    assert isinstance(src, SyntheticFrameSource)
    assert (src.width, src.height) == (320, 240)
    session.pipeline.close()


def _mock_pipeline(outputs):
    pipeline = MagicMock()
    pipeline.outputs = list(outputs)
    pipeline.scheduler.stats.admitted = 0
    pipeline.scheduler.stats.dropped = 0
    pipeline.scheduler.stats.completed = 0
    return pipeline


def test_failed_source_start_still_cleans_up(tmp_path, intrinsics):
    cfg = make_config(tmp_path, log_level="INFO")
    sink = MagicMock(spec=OutputSink)
    pipeline = _mock_pipeline([sink])
    source = MagicMock(spec=FrameSource)
    source.start.side_effect = RuntimeError("Failed to open video source: 9")
    session = TrackingSession(cfg, intrinsics, source=source, pipeline=pipeline)

    with pytest.raises(RuntimeError, match="video source"):
        session.run()

    sink.open.assert_called_once()
    sink.close.assert_called_once()
    pipeline.close.assert_called_once()
    assert not any(isinstance(h, logging.FileHandler) for h in session.logger.handlers)
    assert "session started" in (tmp_path / "out" / "session.log").read_text(encoding="utf-8")


def test_busy_pipeline_at_shutdown_still_closes_outputs(tmp_path, intrinsics):
    cfg = make_config(tmp_path, max_frames=2)
    sink = MagicMock(spec=OutputSink)
    pipeline = _mock_pipeline([sink])
    pipeline.wait_idle.return_value = False

    summary = TrackingSession(cfg, intrinsics, source=SyntheticFrameSource(0, 64, 48), pipeline=pipeline).run()

    assert summary.frames_read == 2
    pipeline.close.assert_called_once()
    sink.close.assert_called_once()
