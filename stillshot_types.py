"""
Stillshot — Shared Data Model
==============================
Plain dataclasses passed between the pipeline stages.

Coordinates follow the classifier's convention: ``row`` is the vertical
axis, ``col`` the horizontal axis, ``size`` a diameter in pixels.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict

import numpy as np


@dataclass
class GrayFrame:
    """Single-channel luminance buffer for one detection pass.

    Attributes:
        pixels: 1-D uint8 array of ``height * stride`` values.
        width: Columns per row.
        height: Number of rows.
        stride: Distance in pixels between the starts of two rows.
    """
    pixels: np.ndarray
    width: int
    height: int
    stride: int

    def as_image(self) -> np.ndarray:
        """(height, width) view of the pixel buffer; no copy."""
        return self.pixels[: self.height * self.stride].reshape(
            self.height, self.stride
        )[:, : self.width]

    def contains(self, row: float, col: float) -> bool:
        return 0 <= row < self.height and 0 <= col < self.width


@dataclass(frozen=True)
class FaceDetection:
    """One face candidate: center, diameter and classifier score."""
    row: float
    col: float
    size: float
    confidence: float


@dataclass(frozen=True)
class EyeRegion:
    """Eye search window derived from a FaceDetection."""
    row: float
    col: float
    size: float


@dataclass(frozen=True)
class PupilPosition:
    row: float
    col: float


@dataclass(frozen=True)
class ScanParams:
    """Fixed scan parameters handed to the face classifier."""
    shift_factor: float = 0.1
    scale_factor: float = 1.1
    min_size: int = 100
    max_size: int = 1000


@dataclass
class DetectionStats:
    """Snapshot of the statistics tracker after one frame."""
    current: int = 0
    max_by_threshold: Dict[str, int] = field(default_factory=dict)


@dataclass
class FrameResult:
    """Outcome of ``StillshotEngine.process_frame``.

    ``pupils[i]`` holds ``[left, right]`` for ``faces[i]``; an entry is
    None when the pupil was not found. ``captured`` stays None except on
    the single frame where the capture controller fires.
    """
    faces: List[FaceDetection]
    pupils: List[List[Optional[PupilPosition]]]
    stats: DetectionStats
    captured: Optional[List[bytes]] = None
    state: str = "WARMING"

    def to_dict(self) -> dict:
        out = asdict(self)
        if self.captured is not None:
            out["captured"] = [len(img) for img in self.captured]
        return out
