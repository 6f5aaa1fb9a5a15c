"""
Stillshot -- Shared Utils Test Suite
=====================================
Covers: grayscale conversion, buffer reuse, config loading, logger setup.
"""

from __future__ import annotations

import copy
import logging
import sys
from pathlib import Path

import numpy as np
import pytest

# Project root
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from stillshot_utils import (
    DEFAULT_CONFIG,
    GrayscaleConverter,
    load_config,
    rgba_image,
    setup_logger,
)


# ── Helpers ───────────────────────────────────────────────────

def _rgba(pixels: list[tuple[int, int, int, int]]) -> np.ndarray:
    return np.array(pixels, dtype=np.uint8).reshape(-1)


# ── Grayscale ─────────────────────────────────────────────────

def test_grayscale_weighted_formula():
    """Green-weighted luminance, rounded half-up."""
    conv = GrayscaleConverter()
    data = _rgba([
        (255, 0, 0, 255),    # 510/10 = 51
        (0, 255, 0, 255),    # 1785/10 = 178.5 -> 179
        (0, 0, 255, 255),    # 255/10 = 25.5 -> 26
        (255, 255, 255, 0),  # 255
        (3, 0, 0, 255),      # 0.6 -> 1
        (0, 0, 5, 255),      # 0.5 -> 1
        (0, 0, 4, 255),      # 0.4 -> 0
        (0, 0, 0, 255),
    ])
    frame = conv.convert(data, width=4, height=2)
    assert frame.pixels.tolist() == [51, 179, 26, 255, 1, 1, 0, 0]
    assert frame.stride == 4


def test_grayscale_ignores_alpha():
    conv = GrayscaleConverter()
    a = conv.convert(_rgba([(10, 20, 30, 0)]), 1, 1).pixels.copy()
    b = conv.convert(_rgba([(10, 20, 30, 255)]), 1, 1).pixels.copy()
    assert a.tolist() == b.tolist()


def test_grayscale_length_and_range_random_frames():
    rng = np.random.default_rng(7)
    conv = GrayscaleConverter()
    for w, h in [(1, 1), (17, 9), (320, 240)]:
        data = rng.integers(0, 256, size=w * h * 4, dtype=np.uint8)
        frame = conv.convert(data, w, h)
        assert frame.pixels.shape == (w * h,)
        assert frame.pixels.dtype == np.uint8
        assert frame.as_image().shape == (h, w)
        # Matches the float formula everywhere
        px = data.reshape(-1, 4).astype(np.float64)
        expected = np.floor((2 * px[:, 0] + 7 * px[:, 1] + px[:, 2]) / 10 + 0.5)
        assert np.array_equal(frame.pixels, expected.astype(np.uint8))


def test_grayscale_buffer_reused_until_size_changes():
    conv = GrayscaleConverter()
    data = np.full(64 * 48 * 4, 100, dtype=np.uint8)

    f1 = conv.convert(data, 64, 48)
    f2 = conv.convert(data, 64, 48)
    assert f1.pixels is f2.pixels
    assert conv.reallocations == 1

    data2 = np.full(32 * 24 * 4, 100, dtype=np.uint8)
    f3 = conv.convert(data2, 32, 24)
    assert f3.pixels is not f1.pixels
    assert conv.reallocations == 2


def test_grayscale_output_is_read_only():
    conv = GrayscaleConverter()
    frame = conv.convert(np.zeros(16, dtype=np.uint8), 2, 2)
    assert frame.pixels.flags.writeable is False
    with pytest.raises(ValueError):
        frame.pixels[0] = 1


def test_grayscale_accepts_bytes_and_hwc_arrays():
    conv = GrayscaleConverter()
    raw = bytes([255, 0, 0, 255] * 4)
    assert conv.convert(raw, 2, 2).pixels.tolist() == [51] * 4

    hwc = np.zeros((2, 2, 4), dtype=np.uint8)
    hwc[..., 1] = 255
    assert conv.convert(hwc, 2, 2).pixels.tolist() == [179] * 4


def test_grayscale_rejects_malformed_input():
    conv = GrayscaleConverter()
    with pytest.raises(ValueError):
        conv.convert(np.zeros(15, dtype=np.uint8), 2, 2)
    with pytest.raises(ValueError):
        conv.convert(np.zeros(16, dtype=np.uint8), 0, 4)
    with pytest.raises(ValueError):
        conv.convert(np.zeros(16, dtype=np.float32), 2, 2)


def test_grayscale_release_drops_buffer():
    conv = GrayscaleConverter()
    conv.convert(np.zeros(16, dtype=np.uint8), 2, 2)
    conv.release()
    conv.convert(np.zeros(16, dtype=np.uint8), 2, 2)
    assert conv.reallocations == 2


def test_rgba_image_view_shape():
    data = np.arange(3 * 2 * 4, dtype=np.uint8)
    img = rgba_image(data, 3, 2)
    assert img.shape == (2, 3, 4)
    assert img[1, 2].tolist() == [20, 21, 22, 23]
    with pytest.raises(ValueError):
        rgba_image(data, 4, 2)


# ── Config ────────────────────────────────────────────────────

def test_load_config_defaults_complete():
    cfg = load_config()
    for section in ("detection", "eyes", "pupil", "capture", "camera", "cascade", "logging"):
        assert section in cfg
    assert cfg["detection"]["memory_size"] == 5
    assert cfg["detection"]["min_confidence"] == 50.0
    assert cfg["pupil"]["perturbations"] == 63
    assert cfg["capture"]["idle_time_ms"] == 3000
    assert cfg["capture"]["evaluation_window_ms"] == 5000


def test_load_config_partial_file_merges(tmp_path):
    path = tmp_path / "partial.yaml"
    path.write_text("detection:\n  iou_threshold: 0.35\ncapture:\n  idle_time_ms: 1000\n")
    cfg = load_config(str(path))
    assert cfg["detection"]["iou_threshold"] == 0.35
    assert cfg["detection"]["memory_size"] == 5
    assert cfg["capture"]["idle_time_ms"] == 1000
    assert cfg["capture"]["evaluation_window_ms"] == 5000


def test_load_config_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_load_config_missing_explicit_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_load_config_non_mapping_root_raises(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_load_config_returns_fresh_copy():
    before = copy.deepcopy(DEFAULT_CONFIG)
    cfg = load_config()
    cfg["detection"]["memory_size"] = 99
    assert DEFAULT_CONFIG == before
    assert load_config()["detection"]["memory_size"] == 5


# ── Logging ───────────────────────────────────────────────────

def test_setup_logger_accepts_string_level():
    log = setup_logger("StillshotTestLogger", "debug")
    assert log.level == logging.DEBUG
    handlers = len(log.handlers)
    setup_logger("StillshotTestLogger", logging.WARNING)
    assert len(log.handlers) == handlers
    assert log.level == logging.WARNING


def test_package_exports_resolve():
    import stillshot_utils
    for name in stillshot_utils.__all__:
        assert getattr(stillshot_utils, name) is not None
    assert "CaptureStabilityController" in stillshot_utils.__all__
    assert "CascadeFaceClassifier" in stillshot_utils.__all__
