"""
Stillshot — Camera Frame Source
================================
Owns ALL camera interaction. No other file should touch
cv2.VideoCapture directly.

Delivers what the engine consumes per call:
  (RGBA buffer, width, height, monotonic timestamp in ms)

Features:
  - Frame validation (shape, dtype, channel count, brightness)
  - Optional horizontal mirroring (the preview users see is mirrored,
    so analysis runs on the same image)
  - Bounded wait for the first valid frame after open
  - Health monitoring (FPS, drop rate, connection status)
"""

from __future__ import annotations

import time
import logging
from collections import deque
from typing import Optional, Union

import cv2
import numpy as np


# ─── Module Logger ─────────────────────────────────────────────
_log = logging.getLogger("StillshotCamera")


class StillshotCamera:
    """Validated camera capture producing RGBA frames.

    Wraps cv2.VideoCapture with:
      - Requested resolution and a 1-frame buffer
      - Per-frame validation (shape, dtype, brightness, channels)
      - BGR -> RGBA conversion and optional mirroring
      - Monotonic millisecond timestamps
    """

    # ── Validation constants ──────────────────────────────────
    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    EXPECTED_CHANNELS: int = 3
    EXPECTED_DTYPE = np.uint8
    MIN_MEAN_BRIGHTNESS: float = 5.0    # lens cap / hw failure
    MAX_MEAN_BRIGHTNESS: float = 250.0  # sensor saturation
    FPS_WINDOW: int = 30

    def __init__(
        self,
        camera_id: Union[int, str] = 0,
        width: Optional[int] = 1280,
        height: Optional[int] = 720,
        mirror: bool = True,
        backend: int = cv2.CAP_ANY,
    ) -> None:
        """Open the camera.

        Args:
            camera_id: System camera index (default 0 = primary) or a
                       video file path.
            width: Requested frame width, or None for the driver default.
            height: Requested frame height, or None for the driver default.
            mirror: Flip frames horizontally before delivery.
            backend: OpenCV capture backend constant.
        """
        self._camera_id = camera_id
        self._backend = backend
        self._backend_name = self._resolve_backend_name(backend)
        self.mirror = mirror

        self._cap: cv2.VideoCapture = cv2.VideoCapture(camera_id, backend)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._resolution: tuple[int, int] = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

        self._frames_total: int = 0
        self._frames_dropped: int = 0
        self._last_valid_timestamp: float = 0.0
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

        _log.info(
            "StillshotCamera initialized — id=%s backend=%s resolution=%s mirror=%s",
            camera_id, self._backend_name, self._resolution, mirror,
        )

    @classmethod
    def from_config(cls, config: dict) -> "StillshotCamera":
        cam = config["camera"]
        return cls(
            camera_id=cam["camera_id"],
            width=cam["width"],
            height=cam["height"],
            mirror=cam["mirror"],
        )

    # ── Public API ────────────────────────────────────────────

    def read_rgba_frame(self) -> tuple[bool, Optional[np.ndarray], int, int, float]:
        """Read, validate and convert one frame.

        Returns:
            (success, rgba_or_None, width, height, timestamp_ms)
            rgba is an (H, W, 4) uint8 array in R, G, B, A order.
            On failure: (False, None, 0, 0, 0.0) and the drop counter
            is incremented.
        """
        self._frames_total += 1
        timestamp = time.monotonic()

        ret, frame = self._cap.read()
        if not self._validate_frame(ret, frame):
            self._frames_dropped += 1
            return False, None, 0, 0, 0.0

        self._last_valid_timestamp = timestamp
        self._frame_times.append(timestamp)

        if self.mirror:
            frame = cv2.flip(frame, 1)
        rgba = cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)
        h, w = rgba.shape[:2]
        return True, rgba, w, h, timestamp * 1000.0

    def wait_ready(self, timeout_ms: float = 10000.0, poll_ms: float = 50.0) -> bool:
        """Block until the camera delivers a valid frame.

        Returns:
            True once a valid frame was read, False on timeout or if
            the device never opened.
        """
        if not self._cap.isOpened():
            _log.error("Camera %s failed to open", self._camera_id)
            return False

        deadline = time.monotonic() + timeout_ms / 1000.0
        while time.monotonic() < deadline:
            ok, _, _, _, _ = self.read_rgba_frame()
            if ok:
                return True
            time.sleep(poll_ms / 1000.0)

        _log.error("Camera %s not ready after %.0f ms", self._camera_id, timeout_ms)
        return False

    def get_health_status(self) -> dict:
        """Return a snapshot of camera health metrics."""
        now = time.monotonic()
        last_age_ms = (
            (now - self._last_valid_timestamp) * 1000.0
            if self._last_valid_timestamp > 0
            else float("inf")
        )

        return {
            "connected": self._cap.isOpened(),
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
            "drop_rate_pct": (
                (self._frames_dropped / self._frames_total * 100.0)
                if self._frames_total > 0
                else 0.0
            ),
            "last_valid_frame_age_ms": round(last_age_ms, 2),
            "resolution": self._resolution,
            "backend": self._backend_name,
        }

    def is_opened(self) -> bool:
        return self._cap.isOpened()

    def release(self) -> None:
        """Release camera resources and log final statistics."""
        health = self.get_health_status()
        _log.info(
            "StillshotCamera releasing — total=%d dropped=%d (%.1f%%) avg_fps=%.1f",
            health["frames_total"],
            health["frames_dropped"],
            health["drop_rate_pct"],
            health["fps_actual"],
        )
        self._cap.release()

    # ── Context manager support ───────────────────────────────

    def __enter__(self) -> "StillshotCamera":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ── Private helpers ───────────────────────────────────────

    def _validate_frame(self, ret: bool, frame: Optional[np.ndarray]) -> bool:
        if not ret or frame is None:
            _log.debug("Validation FAIL: no frame (ret=%s)", ret)
            return False

        if frame.ndim != 3 or frame.shape[2] != self.EXPECTED_CHANNELS:
            _log.debug("Validation FAIL: shape=%s (expected HxWx3)", frame.shape)
            return False

        if frame.dtype != self.EXPECTED_DTYPE:
            _log.debug("Validation FAIL: dtype=%s (expected uint8)", frame.dtype)
            return False

        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            _log.debug(
                "Validation FAIL: resolution %dx%d below minimum %dx%d",
                w, h, self.MIN_WIDTH, self.MIN_HEIGHT,
            )
            return False

        mean_brightness = float(frame.mean())
        if mean_brightness <= self.MIN_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: all-black frame (mean=%.2f)", mean_brightness)
            return False
        if mean_brightness >= self.MAX_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: all-white frame (mean=%.2f)", mean_brightness)
            return False

        return True

    def _calculate_fps(self) -> float:
        """Rolling FPS over the last N valid frames."""
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed

    @staticmethod
    def _resolve_backend_name(backend: int) -> str:
        names = {
            cv2.CAP_ANY: "Auto",
            cv2.CAP_DSHOW: "DirectShow",
            cv2.CAP_MSMF: "MediaFoundation",
        }
        if hasattr(cv2, "CAP_V4L2"):
            names[cv2.CAP_V4L2] = "V4L2"
        return names.get(backend, f"Unknown({backend})")
