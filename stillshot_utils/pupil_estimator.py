"""
Stillshot -- Dark-Region Pupil Estimator
=========================================
Default LandmarkLocalizer backend. Model-free: the pupil is taken to be
the darkest blob inside the eye window.

Per window:
  1. Gaussian blur (suppresses sensor noise and eyelash edges)
  2. Threshold at the dark_percentile-th intensity percentile
  3. Centroid of the pixels at or below that threshold

Robustness comes from perturbation: the unperturbed window plus
`perturbation_count` windows jittered by up to +/-15% of the window size
and rescaled by 0.925..1.075 are each estimated, and the per-axis median
of all estimates is returned. The RNG is re-seeded on every call so the
same frame and window always give the same answer.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import numpy as np

from stillshot_backend import LandmarkLocalizer
from stillshot_types import GrayFrame

_log = logging.getLogger("PupilEstimator")

JITTER_FRACTION = 0.15
SCALE_RANGE = (0.925, 1.075)
MIN_WINDOW_PX = 3


class DarkPupilEstimator(LandmarkLocalizer):
    def __init__(self, seed: int = 0, dark_percentile: float = 10.0, blur_kernel: int = 5):
        if not 0 < dark_percentile < 100:
            raise ValueError(f"dark_percentile must be in (0, 100), got {dark_percentile}")
        if blur_kernel < 1 or blur_kernel % 2 == 0:
            raise ValueError(f"blur_kernel must be a positive odd integer, got {blur_kernel}")
        self.seed = seed
        self.dark_percentile = dark_percentile
        self.blur_kernel = blur_kernel

    def localize(
        self,
        row: float,
        col: float,
        size: float,
        perturbation_count: int,
        frame: GrayFrame,
    ) -> Optional[List[float]]:
        image = frame.as_image()
        rng = np.random.default_rng(self.seed)

        estimates = []
        first = self._estimate(image, row, col, size)
        if first is not None:
            estimates.append(first)

        for _ in range(max(0, int(perturbation_count))):
            dr, dc = rng.uniform(-JITTER_FRACTION, JITTER_FRACTION, size=2) * size
            scale = rng.uniform(*SCALE_RANGE)
            est = self._estimate(image, row + dr, col + dc, size * scale)
            if est is not None:
                estimates.append(est)

        if not estimates:
            _log.debug("No pupil window intersects the frame at (%.1f, %.1f)", row, col)
            return None

        med = np.median(np.asarray(estimates), axis=0)
        return [float(med[0]), float(med[1])]

    def _estimate(self, image: np.ndarray, row: float, col: float, size: float):
        h, w = image.shape[:2]
        half = size / 2.0
        r0 = max(0, int(round(row - half)))
        c0 = max(0, int(round(col - half)))
        r1 = min(h, int(round(row + half)))
        c1 = min(w, int(round(col + half)))
        if r1 - r0 < MIN_WINDOW_PX or c1 - c0 < MIN_WINDOW_PX:
            return None

        patch = np.ascontiguousarray(image[r0:r1, c0:c1])
        if min(patch.shape) >= self.blur_kernel:
            patch = cv2.GaussianBlur(patch, (self.blur_kernel, self.blur_kernel), 0)

        threshold = np.percentile(patch, self.dark_percentile)
        rows, cols = np.nonzero(patch <= threshold)
        if rows.size == 0:
            return None
        return (r0 + float(rows.mean()), c0 + float(cols.mean()))
