"""Per-marker temporal pose filtering.

Two stages run on every processed frame of a marker:

1. :class:`WindowAverageFilter` averages the last ``W`` translations and
   passes the newest rotation through untouched.
2. :class:`OneEuroPoseFilter` low-passes translation with a cutoff that rises
   with the smoothed speed, and SLERPs rotation a fixed fraction of the way
   from the previous output toward the new measurement.

State lives in a :class:`FilterStateStore` owned by whoever builds the
:class:`PoseFilterChain`. Nothing is module-global.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

from .config import FilterConfig


def smoothing_alpha(cutoff: float, dt: float) -> float:
    """Exponential smoothing factor for a first-order low-pass at ``cutoff`` Hz."""
    tau = 1.0 / (2.0 * math.pi * cutoff)
    return 1.0 / (1.0 + tau / dt)


def lowpass(x: np.ndarray, prev: Optional[np.ndarray], alpha: float) -> np.ndarray:
    if prev is None:
        return x
    # same as prev*(1-alpha) + x*alpha, but exact when x == prev
    return prev + alpha * (x - prev)


@dataclass
class MarkerFilterState:
    window: deque
    pose: Optional[np.ndarray] = None  # last filtered 4x4
    velocity: Optional[np.ndarray] = None  # last smoothed translational velocity
    timestamp: Optional[float] = None
    cutoff: Optional[float] = None  # last adaptive cutoff, for inspection


class FilterStateStore:
    """marker_id -> MarkerFilterState. Entries live until explicitly cleared."""

    def __init__(self, window_size: int):
        if int(window_size) < 1:
            raise ValueError("window_size must be >= 1")
        self.window_size = int(window_size)
        self._states: dict[int, MarkerFilterState] = {}

    def get(self, marker_id: int) -> Optional[MarkerFilterState]:
        return self._states.get(int(marker_id))

    def get_or_create(self, marker_id: int) -> MarkerFilterState:
        key = int(marker_id)
        state = self._states.get(key)
        if state is None:
            state = MarkerFilterState(window=deque(maxlen=self.window_size))
            self._states[key] = state
        return state

    def discard(self, marker_id: int) -> None:
        self._states.pop(int(marker_id), None)

    def clear(self) -> None:
        self._states.clear()

    def __contains__(self, marker_id: object) -> bool:
        return marker_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._states))


class WindowAverageFilter:
    """Stage A: moving average of translation, rotation passed through."""

    def apply(self, state: MarkerFilterState, T: np.ndarray) -> np.ndarray:
        state.window.append(np.array(T[:3, 3], dtype=np.float64))

        buf = np.stack(state.window)
        # shifted mean: a window of identical samples averages to exactly that sample
        ref = buf[0]
        avg = ref + np.mean(buf - ref, axis=0)

        out = np.array(T, dtype=np.float64)
        out[:3, 3] = avg
        return out


class OneEuroPoseFilter:
    """Stage B: adaptive low-pass on translation plus rotation SLERP."""

    def __init__(
        self,
        min_cutoff: float,
        beta: float,
        d_cutoff: float,
        rotation_alpha: float,
        default_dt: float = 1.0 / 60.0,
    ):
        if not all(math.isfinite(v) for v in (min_cutoff, beta, d_cutoff, rotation_alpha, default_dt)):
            raise ValueError("filter parameters must be finite")
        if min_cutoff <= 0 or d_cutoff <= 0:
            raise ValueError("cutoff frequencies must be > 0")
        if beta < 0:
            raise ValueError("beta must be >= 0")
        if not 0.0 < rotation_alpha < 1.0:
            raise ValueError("rotation_alpha must be in (0, 1)")
        if default_dt <= 0:
            raise ValueError("default_dt must be > 0")
        self.min_cutoff = float(min_cutoff)
        self.beta = float(beta)
        self.d_cutoff = float(d_cutoff)
        self.rotation_alpha = float(rotation_alpha)
        self.default_dt = float(default_dt)

    def _dt(self, state: MarkerFilterState, timestamp: float) -> float:
        if state.timestamp is None:
            return self.default_dt
        dt = timestamp - state.timestamp
        return dt if dt > 0 else self.default_dt

    def _rotation(self, prev: Optional[np.ndarray], R: np.ndarray) -> np.ndarray:
        if prev is None:
            return Rotation.from_matrix(R).as_matrix()
        key_rots = Rotation.from_matrix(np.stack([prev[:3, :3], R]))
        return Slerp([0.0, 1.0], key_rots)(self.rotation_alpha).as_matrix()

    def apply(self, state: MarkerFilterState, T: np.ndarray, timestamp: float) -> np.ndarray:
        dt = self._dt(state, timestamp)
        prev = state.pose
        t = np.array(T[:3, 3], dtype=np.float64)
        prev_t = None if prev is None else prev[:3, 3]

        dx = np.zeros(3) if prev_t is None else (t - prev_t) / dt
        dx_hat = lowpass(dx, state.velocity, smoothing_alpha(self.d_cutoff, dt))

        cutoff = self.min_cutoff + self.beta * float(np.linalg.norm(dx_hat))
        filtered_t = lowpass(t, prev_t, smoothing_alpha(cutoff, dt))

        out = np.eye(4)
        out[:3, :3] = self._rotation(prev, np.asarray(T[:3, :3], dtype=np.float64))
        out[:3, 3] = filtered_t

        state.pose = out
        state.velocity = dx_hat
        state.timestamp = timestamp
        state.cutoff = cutoff
        return out.copy()


class PoseFilterChain:
    """
    The full per-marker filter.

    With ``config.chained`` (default) every pose goes through the window
    average and then the OneEuro stage at ``chain_min_cutoff``, the higher
    cutoff making up for the lag the window already adds. Otherwise only the
    OneEuro stage runs, at ``min_cutoff``.

    Not thread-safe: a chain is meant to be driven from a single worker.
    """

    def __init__(self, config: Optional[FilterConfig] = None, store: Optional[FilterStateStore] = None):
        self.config = (config or FilterConfig()).validate()
        if store is None:
            store = FilterStateStore(self.config.window_size)
        elif store.window_size != self.config.window_size:
            raise ValueError("store window_size does not match filter config")
        self.store = store

        self.window = WindowAverageFilter() if self.config.chained else None
        self.one_euro = OneEuroPoseFilter(
            self.config.chain_min_cutoff if self.config.chained else self.config.min_cutoff,
            self.config.beta,
            self.config.d_cutoff,
            self.config.rotation_alpha,
            self.config.default_dt,
        )

    def update(self, marker_id: int, transform: np.ndarray, timestamp: float) -> np.ndarray:
        state = self.store.get_or_create(marker_id)
        T = np.asarray(transform, dtype=np.float64)
        if self.window is not None:
            T = self.window.apply(state, T)
        return self.one_euro.apply(state, T, timestamp)

    def clear(self, marker_id: int) -> None:
        self.store.discard(marker_id)

    def reset(self) -> None:
        self.store.clear()

    def state_for(self, marker_id: int) -> Optional[MarkerFilterState]:
        return self.store.get(marker_id)

    @property
    def marker_ids(self) -> list[int]:
        return sorted(self.store)
