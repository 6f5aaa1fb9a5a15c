"""
Stillshot — StillshotEngine (Frame Orchestrator)
=================================================
The central orchestrator. One call to process_frame() runs the whole
per-frame chain on the caller's thread:

  1. GrayscaleConverter       RGBA -> luminance
  2. FaceDetector             classify, temporal memory, cluster, filter
  3. Eye regions + pupils     per face, left then right
  4. Statistics               current count, max per IoU threshold
  5. Capture controller       WARMING -> VALIDATING -> CAPTURED
  6. FrameCropper             only on the frame the controller fires

The engine never raises for runtime conditions. Malformed frames,
missing backends and bad collaborator output all degrade to empty
results; see FrameResult for the per-frame outcome.

Backends default to the bundled Haar cascade and the dark-region pupil
estimator, and can be injected for tests or other models.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Optional

import cv2
import psutil

from stillshot_backend import FaceClassifier, LandmarkLocalizer
from stillshot_face_pipeline import FaceDetector, FrameCropper, derive_eye_regions, is_region_valid
from stillshot_logger import StillshotAuditLogger, get_logger
from stillshot_pupil import PupilLocalizer
from stillshot_types import FrameResult, GrayFrame
from stillshot_utils import (
    CaptureStabilityController,
    CascadeFaceClassifier,
    DarkPupilEstimator,
    DetectionStatisticsTracker,
)
from stillshot_utils_core import GrayscaleConverter, load_config, rgba_image

_log = logging.getLogger("StillshotEngine")


class StillshotEngine:
    """
    Frame-driven capture session.
    Feed frames with process_frame() until a result carries `captured`.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        classifier: Optional[FaceClassifier] = None,
        localizer: Optional[LandmarkLocalizer] = None,
        audit_logger: Optional[StillshotAuditLogger] = None,
    ):
        """Build the pipeline.

        Args:
            config: Full configuration dict (see load_config). None loads
                    config.yaml / defaults.
            classifier: Face classifier backend. None builds the Haar
                        cascade classifier from the `cascade` section.
            localizer: Pupil localizer backend. None builds the
                       dark-region estimator.
            audit_logger: JSONL audit trail. None uses the shared logger
                          when `logging.audit_enabled` is set.
        """
        self.config = config if config is not None else load_config()
        det_cfg = self.config["detection"]
        cap_cfg = self.config["capture"]
        log_cfg = self.config["logging"]

        if classifier is None:
            classifier = CascadeFaceClassifier.from_config(self.config)
        if localizer is None:
            localizer = DarkPupilEstimator()

        self.converter = GrayscaleConverter()
        self.detector = FaceDetector.from_config(self.config, classifier=classifier)
        self.pupils = PupilLocalizer(localizer, perturbation_count=self.config["pupil"]["perturbations"])
        self.stats = DetectionStatisticsTracker()
        self.controller = CaptureStabilityController(
            idle_time_ms=cap_cfg["idle_time_ms"],
            evaluation_window_ms=cap_cfg["evaluation_window_ms"],
        )
        self.cropper = FrameCropper(image_format=cap_cfg["image_format"])
        self.iou_threshold: float = det_cfg["iou_threshold"]

        if audit_logger is None and log_cfg.get("audit_enabled", False):
            audit_logger = get_logger(log_cfg["audit_dir"])
        self.audit = audit_logger

        self.frames_processed: int = 0
        self.frames_rejected: int = 0
        self.last_timing: dict = {}
        self._frame_times: deque = deque(maxlen=120)
        self._session_open = False
        self._released = False
        self._process = psutil.Process()
        self._memory_baseline = self._process.memory_info().rss

        _log.info(
            "StillshotEngine ready — classifier=%s localizer=%s iou=%.2f",
            type(classifier).__name__, type(localizer).__name__, self.iou_threshold,
        )

    # ── Public API ────────────────────────────────────────────

    def process_frame(
        self,
        rgba,
        width: int,
        height: int,
        timestamp_ms: float,
        iou_threshold: Optional[float] = None,
    ) -> FrameResult:
        """Run one detection pass.

        Args:
            rgba: RGBA pixels (bytes-like or uint8 array, row-major).
            width: Frame width in pixels.
            height: Frame height in pixels.
            timestamp_ms: Monotonic frame timestamp in milliseconds.
            iou_threshold: Clustering threshold for this frame. None uses
                           the configured default.

        Returns:
            FrameResult. `captured` is set only on the capture frame.
        """
        iou = self.iou_threshold if iou_threshold is None else iou_threshold
        t_start = time.monotonic()
        timing = {}

        # STAGE 1: Grayscale
        try:
            gray = self.converter.convert(rgba, width, height)
        except (ValueError, TypeError) as e:
            self.frames_rejected += 1
            _log.warning("Dropping malformed frame at %.1f ms: %s", timestamp_ms, e)
            return FrameResult(
                faces=[], pupils=[], stats=self.stats.snapshot(),
                captured=None, state=self.controller.state,
            )

        # STAGE 2: Faces
        t0 = time.monotonic()
        faces = self.detector.detect(gray, iou)
        timing["detect_ms"] = (time.monotonic() - t0) * 1000

        # STAGE 3: Pupils
        t0 = time.monotonic()
        pupils = [self._locate_pupils(face, gray) for face in faces]
        timing["pupil_ms"] = (time.monotonic() - t0) * 1000

        # STAGE 4: Statistics
        self.stats.update(faces, iou)

        # STAGE 5: Capture decision
        if not self._session_open:
            self._session_open = True
            self._audit("session_start", {"timestamp_ms": timestamp_ms, "iou_threshold": iou})

        prev_state = self.controller.state
        fire = self.controller.observe(timestamp_ms, self.stats.current_count, self.stats.get_max(iou))
        if self.controller.state != prev_state:
            self._audit("state_transition", {
                "from": prev_state,
                "to": self.controller.state,
                "timestamp_ms": timestamp_ms,
            })

        # STAGE 6: Crop
        captured = None
        if fire:
            captured = self._capture(rgba, width, height, faces, timestamp_ms)

        self.frames_processed += 1
        timing["total_ms"] = (time.monotonic() - t_start) * 1000
        self.last_timing = timing
        self._frame_times.append(timing["total_ms"])

        return FrameResult(
            faces=faces,
            pupils=pupils,
            stats=self.stats.snapshot(),
            captured=captured,
            state=self.controller.state,
        )

    def reset(self) -> None:
        """Session teardown; the next frame starts a new session."""
        self.stats.reset()
        self.detector.reset()
        self.controller.reset()
        if self._session_open:
            self._audit("session_reset", {"frames_processed": self.frames_processed})
        self._session_open = False
        _log.info("Session reset")

    def release(self) -> None:
        """Reset, then release backends and close the audit log."""
        if self._released:
            return
        self.reset()
        self.detector.release()
        self.pupils.release()
        self.converter.release()
        if self.audit is not None:
            self.audit.close()
        self._released = True
        _log.info("StillshotEngine released after %d frames", self.frames_processed)

    def get_summary(self) -> dict:
        avg_ms = sum(self._frame_times) / len(self._frame_times) if self._frame_times else 0.0
        rss = self._process.memory_info().rss
        return {
            "frames_processed": self.frames_processed,
            "frames_rejected": self.frames_rejected,
            "avg_frame_ms": round(avg_ms, 2),
            "memory_mb": round(rss / 1e6, 1),
            "memory_growth_mb": round((rss - self._memory_baseline) / 1e6, 1),
            "detector_ready": self.detector.ready,
            "localizer_ready": self.pupils.ready,
            "pupil_failures": dict(self.pupils.failures),
            "stats": {
                "current": self.stats.current_count,
                "max_by_threshold": self.stats.max_by_threshold,
            },
            "controller": self.controller.get_summary(),
        }

    # ── Context manager ───────────────────────────────────────

    def __enter__(self) -> "StillshotEngine":
        return self

    def __exit__(self, *args) -> None:
        self.release()

    # ── Private helpers ───────────────────────────────────────

    def _locate_pupils(self, face, gray: GrayFrame) -> list:
        found = []
        for region in derive_eye_regions(face):
            if not is_region_valid(region, gray.width, gray.height):
                _log.debug("Eye region (%.1f, %.1f) outside frame, skipped", region.row, region.col)
                found.append(None)
                continue
            found.append(self.pupils.localize(region, gray))
        return found

    def _capture(self, rgba, width, height, faces, timestamp_ms) -> list:
        try:
            captured = self.cropper.capture(rgba_image(rgba, width, height), faces)
        except cv2.error as e:
            _log.error("Crop failed at %.1f ms: %s", timestamp_ms, e)
            if self.audit is not None:
                self.audit.error(f"Crop failed at {timestamp_ms:.1f} ms", e)
            captured = []
        self._audit("capture", {
            "timestamp_ms": timestamp_ms,
            "faces": len(faces),
            "images": captured,
            "stats": self.stats.max_by_threshold,
        })
        return captured

    def _audit(self, event: str, data: dict) -> None:
        if self.audit is not None:
            self.audit.log(data, event=event)
