"""
Stillshot — Pupil Localization
===============================
Calls the landmark localizer on one validated eye window and turns its
raw answer into a PupilPosition.

Pupil absence is routine (closed eyes, glasses glare, head turned), so
nothing here raises. Every way of coming back empty-handed is logged
with its own reason so the cases can be told apart in diagnostics:

  not_ready     localizer missing or not loaded
  raised        localizer threw
  malformed     result is not a (row, col) pair
  non_numeric   pair holds non-numbers, NaN or inf
  out_of_bounds pair lies outside the frame
"""

from __future__ import annotations

import logging
import math
import numbers
from collections import Counter
from typing import Optional

from stillshot_backend import LandmarkLocalizer
from stillshot_types import EyeRegion, GrayFrame, PupilPosition

_log = logging.getLogger("StillshotPupil")

DEFAULT_PERTURBATIONS = 63


class PupilLocalizer:
    """Validating wrapper around a LandmarkLocalizer backend."""

    def __init__(
        self,
        localizer: Optional[LandmarkLocalizer] = None,
        perturbation_count: int = DEFAULT_PERTURBATIONS,
    ) -> None:
        if perturbation_count < 0:
            raise ValueError(f"perturbation_count must be >= 0, got {perturbation_count}")
        self._localizer = localizer
        self.perturbation_count = perturbation_count
        self.failures: Counter = Counter()
        self._warned_not_ready = False

    @property
    def ready(self) -> bool:
        return self._localizer is not None and self._localizer.ready

    def attach(self, localizer: LandmarkLocalizer) -> None:
        self._localizer = localizer
        self._warned_not_ready = False

    def localize(self, region: EyeRegion, frame: GrayFrame) -> Optional[PupilPosition]:
        """Locate the pupil inside an eye region.

        Args:
            region: Eye window; callers check is_region_valid() first.
            frame: Luminance buffer of the current pass.

        Returns:
            PupilPosition inside the frame, or None when not found.
        """
        if not self.ready:
            if not self._warned_not_ready:
                _log.warning("Landmark localizer not initialized — pupils skipped")
                self._warned_not_ready = True
            return self._fail("not_ready")
        self._warned_not_ready = False

        try:
            raw = self._localizer.localize(
                region.row, region.col, region.size, self.perturbation_count, frame,
            )
        except Exception as e:
            _log.error("Landmark localizer failed: %s", e, exc_info=True)
            return self._fail("raised")

        try:
            values = tuple(raw)
        except TypeError:
            _log.debug("Pupil not found at (%.1f, %.1f): %r", region.row, region.col, raw)
            return self._fail("malformed")
        if len(values) != 2:
            _log.warning("Malformed pupil result (expected 2 values): %r", raw)
            return self._fail("malformed")

        for v in values:
            if isinstance(v, bool) or not isinstance(v, numbers.Real) or not math.isfinite(v):
                _log.warning("Non-numeric pupil result: %r", raw)
                return self._fail("non_numeric")

        row, col = float(values[0]), float(values[1])
        if not frame.contains(row, col):
            _log.warning(
                "Pupil result (%.1f, %.1f) outside %dx%d frame",
                row, col, frame.width, frame.height,
            )
            return self._fail("out_of_bounds")

        return PupilPosition(row=row, col=col)

    def release(self) -> None:
        """Release the localizer; localize() returns None afterwards."""
        if self._localizer is not None:
            self._localizer.release()
            self._localizer = None

    def _fail(self, reason: str) -> None:
        self.failures[reason] += 1
        return None
