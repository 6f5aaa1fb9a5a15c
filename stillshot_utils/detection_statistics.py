"""
Stillshot -- Detection Statistics
==================================
Running face counts for the capture controller.

Per IoU threshold, keeps the highest face count observed this session.
Threshold keys are the value rounded half-up to exactly two decimals
("0.20"), so a threshold rebuilt from a slider or a config float still
hits the same entry. This is a narrow contract for the thresholds the
UI produces, not a general numeric policy: thresholds closer together
than 0.005 share a key.
"""

from __future__ import annotations

import logging
import math
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Dict, Sequence

from stillshot_types import DetectionStats

_log = logging.getLogger("DetectionStats")

_KEY_DECIMALS = 2
_KEY_QUANTUM = Decimal(1).scaleb(-_KEY_DECIMALS)
# wide enough for any finite float at two decimals
_KEY_CONTEXT = Context(prec=400)


def quantize_threshold(iou_threshold: float) -> str:
    """Map an IoU threshold to its statistics key.

    Rounds the exact binary value half away from zero, so 0.125 -> "0.13".
    Negative values that round to zero share the "0.00" key.
    """
    value = float(iou_threshold)
    if not math.isfinite(value):
        return f"{value:.{_KEY_DECIMALS}f}"
    q = Decimal(value).quantize(_KEY_QUANTUM, rounding=ROUND_HALF_UP, context=_KEY_CONTEXT)
    if q == 0:
        q = abs(q)
    return format(q, "f")


class DetectionStatisticsTracker:
    """Current face count plus historical max per threshold.

    Created empty at session start, updated once per frame, and cleared
    by reset() at session teardown only.
    """

    def __init__(self) -> None:
        self.current_count: int = 0
        self._max_by_threshold: Dict[str, int] = {}

    def update(self, faces: Sequence, iou_threshold: float) -> None:
        self.current_count = len(faces)
        key = quantize_threshold(iou_threshold)
        previous = self._max_by_threshold.get(key, 0)
        if key not in self._max_by_threshold or self.current_count > previous:
            self._max_by_threshold[key] = self.current_count
            if self.current_count > previous:
                _log.debug("New max face count %d at threshold %s", self.current_count, key)

    def get_max(self, iou_threshold: float) -> int:
        """Best count for this threshold; 0 if never seen."""
        return self._max_by_threshold.get(quantize_threshold(iou_threshold), 0)

    @property
    def max_by_threshold(self) -> Dict[str, int]:
        return dict(self._max_by_threshold)

    def snapshot(self) -> DetectionStats:
        return DetectionStats(
            current=self.current_count,
            max_by_threshold=self.max_by_threshold,
        )

    def reset(self) -> None:
        self.current_count = 0
        self._max_by_threshold.clear()
