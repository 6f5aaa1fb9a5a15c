"""
Stillshot -- Capture Stability Controller
==========================================
State machine that picks the single frame to freeze and crop.

States: WARMING -> VALIDATING -> CAPTURED (terminal)

  WARMING     Idle period after the session starts. Lets the detector's
              temporal memory fill and the camera exposure settle before
              any frame is trusted.
  VALIDATING  Sustained-evidence window. Every frame must report at least
              floor(max_count / 2) faces, where max_count is the best
              count seen this session at the current IoU threshold. One
              frame below that restarts the window at its timestamp.
  CAPTURED    The window completed. All further frames are ignored until
              reset().

Timestamps are caller-supplied milliseconds; nothing here reads a clock,
so frames may arrive at any cadence, including dt = 0.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

_log = logging.getLogger("CaptureDecision")


# ===================================================================
# Capture Stability Controller
# ===================================================================

class CaptureStabilityController:
    """Two-stage warm-up / validation state machine.

    Zero-face sessions: with no face ever seen, max_count stays 0 and
    the required minimum is 0, so an all-empty window still completes
    and fires a capture of an empty frame. This is kept as-is and logged
    at WARNING when it happens.
    """

    WARMING = "WARMING"
    VALIDATING = "VALIDATING"
    CAPTURED = "CAPTURED"

    def __init__(
        self,
        idle_time_ms: float = 3000.0,
        evaluation_window_ms: float = 5000.0,
        session_start_ms: Optional[float] = None,
    ):
        """Initialize controller.

        Args:
            idle_time_ms: Warm-up length before validation starts.
            evaluation_window_ms: Length of the unbroken window that
                                  must elapse before capturing.
            session_start_ms: Session start. When None, the timestamp
                              of the first observed frame is used.
        """
        if idle_time_ms < 0 or evaluation_window_ms < 0:
            raise ValueError(
                f"Windows must be non-negative, got idle={idle_time_ms} "
                f"evaluation={evaluation_window_ms}"
            )
        self.idle_time_ms = float(idle_time_ms)
        self.evaluation_window_ms = float(evaluation_window_ms)

        self.state: str = self.WARMING
        self.session_start: Optional[float] = session_start_ms
        self.baseline_window_elapsed: bool = False
        self.validation_start: Optional[float] = None
        self.validation_passed: bool = False
        self.captured: bool = False
        self.captured_at: Optional[float] = None
        self.history: deque = deque(maxlen=300)
        self._window_resets: int = 0

    def observe(self, now_ms: float, current_count: int, max_count: int) -> bool:
        """Feed one frame's counts.

        Args:
            now_ms: Frame timestamp in milliseconds.
            current_count: Faces detected in this frame.
            max_count: Best count seen this session at the IoU threshold
                       used for this frame.

        Returns:
            True on exactly one frame per session: the one on which the
            capture must be taken. False otherwise.
        """
        if self.captured:
            return False

        if self.session_start is None:
            self.session_start = now_ms
            _log.debug("Session start at %.1f ms", now_ms)

        if self.state == self.WARMING:
            if now_ms - self.session_start < self.idle_time_ms:
                return False
            self._transition(self.VALIDATING, now_ms)
            self.baseline_window_elapsed = True
            self.validation_start = now_ms
            self.validation_passed = True

        required = max_count // 2
        self.history.append({
            "timestamp": now_ms,
            "current": current_count,
            "required": required,
        })

        if current_count < required:
            self._window_resets += 1
            _log.debug(
                "Validation window reset at %.1f ms (count %d < %d)",
                now_ms, current_count, required,
            )
            self.validation_start = now_ms
            self.validation_passed = False
            return False

        if self.validation_start is None:
            self.validation_start = now_ms
        # A good frame after a reset re-arms the window opened at the reset.
        self.validation_passed = True

        if now_ms - self.validation_start >= self.evaluation_window_ms:
            self._transition(self.CAPTURED, now_ms)
            self.captured = True
            self.captured_at = now_ms
            if max_count == 0:
                _log.warning(
                    "Capturing at %.1f ms without any face seen this session",
                    now_ms,
                )
            return True
        return False

    def reset(self, session_start_ms: Optional[float] = None) -> None:
        """Start a new session."""
        self.state = self.WARMING
        self.session_start = session_start_ms
        self.baseline_window_elapsed = False
        self.validation_start = None
        self.validation_passed = False
        self.captured = False
        self.captured_at = None
        self.history.clear()
        self._window_resets = 0

    def elapsed_ms(self, now_ms: float) -> float:
        """Time since session start (0 before the first frame)."""
        if self.session_start is None:
            return 0.0
        return now_ms - self.session_start

    def _transition(self, new_state: str, now_ms: float) -> None:
        _log.info("Capture state: %s -> %s at %.1f ms", self.state, new_state, now_ms)
        self.state = new_state

    def get_summary(self) -> dict:
        """Return current state machine summary."""
        return {
            "state": self.state,
            "session_start_ms": self.session_start,
            "baseline_window_elapsed": self.baseline_window_elapsed,
            "validation_start_ms": self.validation_start,
            "validation_passed": self.validation_passed,
            "captured": self.captured,
            "captured_at_ms": self.captured_at,
            "window_resets": self._window_resets,
            "history_length": len(self.history),
        }
