import argparse
import signal
import sys

from .calib import approximate_intrinsics, load_intrinsics
from .config import ConfigError, TrackerConfig, load_config
from .session import TrackingSession


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Track fiducial marker poses from a camera or video")
    ap.add_argument("--config", help="Path to JSON/YAML config")

    ap.add_argument("--tracker-name")
    ap.add_argument("--device")
    ap.add_argument("--fps", type=int)
    ap.add_argument("--calib")
    ap.add_argument("--out")
    ap.add_argument("--duration", type=float)
    ap.add_argument("--dict")
    ap.add_argument("--marker-length-m", type=float)
    ap.add_argument("--allowed-ids", nargs="+", type=int)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--no-chain", action="store_true", help="OneEuro stage only, no window average")
    ap.add_argument("--log-level")

    return ap


def _apply_args(cfg: TrackerConfig, args: argparse.Namespace) -> TrackerConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    cfg.apply_overrides(
        tracker_name=args.tracker_name,
        device=device,
        fps=args.fps,
        calibration_path=args.calib,
        output_dir=args.out,
        duration_sec=args.duration,
        aruco_dict=args.dict,
        marker_length_m=args.marker_length_m,
        allowed_ids=args.allowed_ids,
        max_frames=args.max_frames,
        dry_run=args.dry_run if args.dry_run else None,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    if args.no_chain:
        cfg.filter.chained = False
    return cfg


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    try:
        cfg = load_config(args.config) if args.config else TrackerConfig()
        cfg = _apply_args(cfg, args).validate()
    except (ConfigError, FileNotFoundError) as e:
        ap.error(str(e))

    if cfg.calibration_path:
        intrinsics, calib_size = load_intrinsics(cfg.calibration_path)
    elif cfg.dry_run:
        calib_size = (640, 480)
        intrinsics = approximate_intrinsics(*calib_size)
    else:
        ap.error("--calib is required unless --dry-run is given")

    session = TrackingSession(cfg, intrinsics, calib_size=calib_size)

    def _handle_signal(_sig, _frame):
        session.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    summary = session.run()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
