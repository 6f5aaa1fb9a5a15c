from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, List

from stillshot_types import FaceDetection

_log = logging.getLogger("DetectionMemory")


class DetectionMemory:
    """
    Sliding window over the raw detections of the last N frames.

    Each call stores the current frame's candidates and returns the
    candidates of every frame still in the window, oldest first. The
    clustering step that follows sums the confidences of overlapping
    candidates, so a face seen weakly in several consecutive frames
    outscores one that flickers in for a single frame.
    """
    def __init__(self, window_size: int = 5):
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self.frame_buffer: deque[List[FaceDetection]] = deque(maxlen=window_size)

    def update(self, detections: Iterable[FaceDetection]) -> List[FaceDetection]:
        """Add this frame's detections and return the window's contents."""
        self.frame_buffer.append(list(detections))
        merged = [det for frame_dets in self.frame_buffer for det in frame_dets]
        _log.debug(
            "Memory window %d/%d frames, %d candidates",
            len(self.frame_buffer), self.window_size, len(merged),
        )
        return merged

    __call__ = update

    def __len__(self) -> int:
        return len(self.frame_buffer)

    def reset(self) -> None:
        self.frame_buffer.clear()
