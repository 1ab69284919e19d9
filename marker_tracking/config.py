from __future__ import annotations

import json
import math
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional

from .detect import DICTIONARIES, normalize_dict_name


class ConfigError(ValueError):
    """Raised when a tracker configuration cannot be used."""


@dataclass
class FilterConfig:
    """Tuning for the per-marker pose filter chain.

    Smaller min_cutoff is smoother but lags more; beta trades lag for
    responsiveness while moving; rotation_alpha is the per-frame SLERP step.
    """

    window_size: int = 5
    min_cutoff: float = 1.0  # OneEuro on its own
    chain_min_cutoff: float = 2.0  # OneEuro after the window average
    beta: float = 0.5
    d_cutoff: float = 2.0
    rotation_alpha: float = 0.25
    default_dt: float = 1.0 / 60.0
    chained: bool = True

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def validate(self) -> "FilterConfig":
        if int(self.window_size) < 1:
            raise ConfigError("filter.window_size must be >= 1")
        for name in ("min_cutoff", "chain_min_cutoff", "beta", "d_cutoff", "rotation_alpha", "default_dt"):
            if not math.isfinite(float(getattr(self, name))):
                raise ConfigError(f"filter.{name} must be finite")
        for name in ("min_cutoff", "chain_min_cutoff", "d_cutoff", "default_dt"):
            if not float(getattr(self, name)) > 0:
                raise ConfigError(f"filter.{name} must be > 0")
        if float(self.beta) < 0:
            raise ConfigError("filter.beta must be >= 0")
        if not 0.0 < float(self.rotation_alpha) < 1.0:
            raise ConfigError("filter.rotation_alpha must be in (0, 1)")
        return self


@dataclass
class TrackerConfig:
    tracker_name: str = "tracker"
    aruco_dict: str = "aruco_mip_36h12"
    allowed_ids: list[int] = field(default_factory=lambda: [2, 3, 4, 5, 6])
    marker_length_m: float = 0.03
    filter: FilterConfig = field(default_factory=FilterConfig)
    # detection resolution; None keeps the source resolution
    target_width: Optional[int] = 960
    target_height: Optional[int] = 540
    calibration_path: Optional[str] = None
    device: int | str = 0
    fps: int = 60
    duration_sec: Optional[float] = None
    max_frames: Optional[int] = None
    output_dir: Optional[str] = None
    dry_run: bool = False
    log_level: str = "INFO"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "TrackerConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def validate(self) -> "TrackerConfig":
        if normalize_dict_name(self.aruco_dict) not in DICTIONARIES:
            raise ConfigError(f"unknown aruco_dict: {self.aruco_dict!r}")
        if not self.allowed_ids:
            raise ConfigError("allowed_ids must not be empty")
        if not (math.isfinite(float(self.marker_length_m)) and float(self.marker_length_m) > 0):
            raise ConfigError("marker_length_m must be > 0")
        if (self.target_width is None) != (self.target_height is None):
            raise ConfigError("target_width and target_height must be set together")
        if self.target_width is not None and (self.target_width <= 0 or self.target_height <= 0):
            raise ConfigError("target resolution must be positive")
        if self.fps < 0:
            raise ConfigError("fps must be >= 0")
        self.filter.validate()
        return self


def _normalize_ids(value: Any) -> Optional[list[int]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set)):
        return sorted(int(v) for v in value)
    if isinstance(value, (int, float)):
        return [int(value)]
    raise ConfigError("allowed_ids must be an int or a list of ints")


def _optional(value: Any, cast):
    return None if value is None else cast(value)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _load_filter(raw: dict[str, Any]) -> FilterConfig:
    f = FilterConfig()
    f.window_size = int(raw.get("window_size", f.window_size))
    f.min_cutoff = float(raw.get("min_cutoff", f.min_cutoff))
    f.chain_min_cutoff = float(raw.get("chain_min_cutoff", f.chain_min_cutoff))
    f.beta = float(raw.get("beta", f.beta))
    f.d_cutoff = float(raw.get("d_cutoff", f.d_cutoff))
    f.rotation_alpha = float(raw.get("rotation_alpha", f.rotation_alpha))
    f.default_dt = float(raw.get("default_dt", f.default_dt))
    f.chained = bool(raw.get("chained", f.chained))
    return f


def config_from_dict(raw: dict[str, Any]) -> TrackerConfig:
    cfg = TrackerConfig()
    cfg.tracker_name = str(raw.get("tracker_name", cfg.tracker_name))
    cfg.aruco_dict = str(raw.get("aruco_dict", cfg.aruco_dict))
    ids = _normalize_ids(raw.get("allowed_ids", cfg.allowed_ids))
    cfg.allowed_ids = ids if ids is not None else []
    cfg.marker_length_m = float(raw.get("marker_length_m", cfg.marker_length_m))

    filter_raw = raw.get("filter")
    if filter_raw is not None:
        if not isinstance(filter_raw, dict):
            raise ConfigError("filter must be a mapping")
        cfg.filter = _load_filter(filter_raw)

    cfg.target_width = _optional(raw.get("target_width", cfg.target_width), int)
    cfg.target_height = _optional(raw.get("target_height", cfg.target_height), int)
    cfg.calibration_path = _optional(raw.get("calibration_path", cfg.calibration_path), str)
    cfg.device = raw.get("device", cfg.device)
    cfg.fps = int(raw.get("fps", cfg.fps))
    cfg.duration_sec = _optional(raw.get("duration_sec", cfg.duration_sec), float)
    cfg.max_frames = _optional(raw.get("max_frames", cfg.max_frames), int)
    cfg.output_dir = _optional(raw.get("output_dir", cfg.output_dir), str)
    cfg.dry_run = bool(raw.get("dry_run", cfg.dry_run))
    cfg.log_level = str(raw.get("log_level", cfg.log_level)).upper()
    return cfg


def load_config(path: str | Path) -> TrackerConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    return config_from_dict(raw).validate()
