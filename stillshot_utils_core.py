"""
Stillshot — Shared Utility Module
==================================
Configuration, logging setup and frame preprocessing shared by every
Stillshot module.

Contains:
  A) load_config: config.yaml merged over built-in defaults
  B) setup_logger: console logger with the project format
  C) GrayscaleConverter: RGBA -> weighted luminance with buffer reuse
  D) rgba_image: (H, W, 4) view of a raw RGBA buffer for cropping

Grayscale formula:
  ═══════════════════════════════════════════════════════════
  gray = round((2*R + 7*G + 1*B) / 10)
  Green-weighted, NOT a plain channel average. The face cascade was
  trained on this distribution. Rounding is half-up, computed in
  integers as (2R + 7G + B + 5) // 10, so the output never leaves
  [0, 255].
  ═══════════════════════════════════════════════════════════
"""

from __future__ import annotations

import copy
import logging
import os
from typing import Optional, Union

import numpy as np
import yaml

from stillshot_types import GrayFrame


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, "config.yaml")

DEFAULT_CONFIG: dict = {
    "detection": {
        "shift_factor": 0.1,
        "scale_factor": 1.1,
        "min_size": 100,
        "max_size": 1000,
        "memory_size": 5,
        "min_confidence": 50.0,
        "iou_threshold": 0.2,
    },
    "eyes": {
        "vertical_offset": 0.075,
        "horizontal_offset": 0.175,
        "size_ratio": 0.35,
    },
    "pupil": {
        "perturbations": 63,
    },
    "capture": {
        "idle_time_ms": 3000,
        "evaluation_window_ms": 5000,
        "image_format": ".png",
    },
    "camera": {
        "camera_id": 0,
        "width": 1280,
        "height": 720,
        "mirror": True,
        "timeout_ms": 10000,
        "frame_interval_ms": 100,
    },
    "cascade": {
        "path": None,
        "min_neighbors": 3,
        "score_scale": 10.0,
    },
    "logging": {
        "level": "INFO",
        "audit_dir": "logs",
        "audit_enabled": False,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml, merged over DEFAULT_CONFIG.

    Args:
        path: Explicit YAML file. Must exist when given. When omitted,
              the project's config.yaml is used if present, otherwise the
              built-in defaults alone.

    Returns:
        Complete configuration dict (a fresh copy on every call).
    """
    if path is None:
        if not os.path.exists(_config_path):
            return copy.deepcopy(DEFAULT_CONFIG)
        path = _config_path
    elif not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config root must be a mapping, got {type(loaded).__name__}")
    return _deep_merge(DEFAULT_CONFIG, loaded)


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Create a configured logger for Stillshot modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)
    return logger


_log = logging.getLogger("StillshotUtils")


# ===================================================================
# Grayscale Conversion
# ===================================================================

# (R, G, B) weights, divided by 10 after summing
_LUMA_WEIGHTS = np.array([2, 7, 1], dtype=np.uint16)


class GrayscaleConverter:
    """RGBA -> single-channel luminance with an owned, reusable buffer.

    The output buffer is sized to width*height and reallocated only when
    the dimensions change. The returned GrayFrame shares that buffer, so
    it is only valid until the next ``convert`` call; it is marked
    read-only while handed out.
    """

    def __init__(self) -> None:
        self._pixels: Optional[np.ndarray] = None
        self._scratch: Optional[np.ndarray] = None
        self._shape: tuple[int, int] = (0, 0)
        self.reallocations: int = 0

    def convert(self, rgba, width: int, height: int) -> GrayFrame:
        """Convert one RGBA frame.

        Args:
            rgba: bytes-like or uint8 array holding at least
                  width*height*4 values in R, G, B, A order.
            width: Frame width in pixels.
            height: Frame height in pixels.

        Returns:
            GrayFrame with stride == width.

        Raises:
            ValueError: non-positive dimensions or a short buffer.
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid frame dimensions {width}x{height}")

        n = width * height
        data = _as_uint8(rgba)
        if data.size < n * 4:
            raise ValueError(
                f"RGBA buffer too short: {data.size} values for {width}x{height}"
            )

        if self._pixels is None or self._shape != (width, height):
            self._pixels = np.empty(n, dtype=np.uint8)
            self._scratch = np.empty(n, dtype=np.uint16)
            self._shape = (width, height)
            self.reallocations += 1
            _log.debug("Grayscale buffer allocated for %dx%d", width, height)

        channels = data[: n * 4].reshape(n, 4)
        np.matmul(channels[:, :3], _LUMA_WEIGHTS, out=self._scratch)
        self._scratch += 5
        self._scratch //= 10

        self._pixels.flags.writeable = True
        self._pixels[:] = self._scratch
        self._pixels.flags.writeable = False

        return GrayFrame(pixels=self._pixels, width=width, height=height, stride=width)

    def release(self) -> None:
        """Drop the scratch buffers."""
        self._pixels = None
        self._scratch = None
        self._shape = (0, 0)


def _as_uint8(rgba) -> np.ndarray:
    if isinstance(rgba, np.ndarray):
        if rgba.dtype != np.uint8:
            raise ValueError(f"RGBA array must be uint8, got {rgba.dtype}")
        return rgba.reshape(-1)
    return np.frombuffer(rgba, dtype=np.uint8)


def rgba_image(rgba, width: int, height: int) -> np.ndarray:
    """(height, width, 4) view of an RGBA buffer; no copy when possible."""
    data = _as_uint8(rgba)
    n = width * height * 4
    if width <= 0 or height <= 0 or data.size < n:
        raise ValueError(f"RGBA buffer does not hold a {width}x{height} frame")
    return data[:n].reshape(height, width, 4)
