"""
Stillshot — Face Detection Pipeline
====================================
Owns ALL face detection, eye-window geometry and face cropping.
No other module should call the face classifier directly.

Per-frame detection pass:
  1. Classifier scan over the GrayFrame (fixed ScanParams)
  2. Temporal memory: candidates of the last N frames pooled together
  3. Clustering: overlapping candidates merged above the IoU threshold
  4. Confidence filter: clusters scoring <= min_confidence dropped

Clustering policy:
  ═══════════════════════════════════════════════════════════
  Candidates are visited by descending confidence (stable for ties).
  Each unvisited candidate seeds a cluster and absorbs every later
  unvisited candidate whose IoU with the seed exceeds the threshold.
  The cluster keeps the SEED's geometry and the SUM of its members'
  confidences. Summing is what turns the memory window into temporal
  smoothing: a face found in 5 consecutive frames scores ~5x a face
  found once. Seeds never overlap above the threshold, so clustering
  an already-clustered list returns it unchanged.

  IoU treats each detection as the axis-aligned square of side `size`
  centred on (row, col).
  ═══════════════════════════════════════════════════════════

Eye geometry (fractions of face size, fixed):
  row   = face.row - 0.075 * size     (eyes sit above the centre)
  col   = face.col -/+ 0.175 * size   (left -, right +)
  size  = 0.35 * size
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import Iterable, List, Optional, Sequence

import cv2
import numpy as np

from stillshot_backend import FaceClassifier
from stillshot_temporal.detection_memory import DetectionMemory
from stillshot_types import EyeRegion, FaceDetection, GrayFrame, ScanParams

_log = logging.getLogger("StillshotFacePipeline")


# ═══════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════

EYE_VERTICAL_OFFSET = 0.075
EYE_HORIZONTAL_OFFSET = 0.175
EYE_SIZE_RATIO = 0.35

DEFAULT_MIN_CONFIDENCE = 50.0


# ═══════════════════════════════════════════════════════════════
# Clustering
# ═══════════════════════════════════════════════════════════════

def detection_iou(a: FaceDetection, b: FaceDetection) -> float:
    """Intersection-over-union of two detection squares."""
    half_a, half_b = a.size / 2.0, b.size / 2.0
    overlap_r = max(0.0, min(a.row + half_a, b.row + half_b) - max(a.row - half_a, b.row - half_b))
    overlap_c = max(0.0, min(a.col + half_a, b.col + half_b) - max(a.col - half_a, b.col - half_b))
    inter = overlap_r * overlap_c
    union = a.size * a.size + b.size * b.size - inter
    if union <= 0:
        return 0.0
    return inter / union


def cluster_detections(
    detections: Iterable[FaceDetection],
    iou_threshold: float,
) -> List[FaceDetection]:
    """Merge overlapping detections (see module docstring for policy).

    Args:
        detections: Candidates in any order.
        iou_threshold: Merge when IoU with the seed is strictly above this.

    Returns:
        Representatives sorted by merged confidence, highest first.
    """
    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    assigned = [False] * len(ordered)
    clusters: list[FaceDetection] = []

    for i, seed in enumerate(ordered):
        if assigned[i]:
            continue
        assigned[i] = True
        total = seed.confidence
        for j in range(i + 1, len(ordered)):
            if assigned[j]:
                continue
            if detection_iou(seed, ordered[j]) > iou_threshold:
                assigned[j] = True
                total += ordered[j].confidence
        clusters.append(FaceDetection(seed.row, seed.col, seed.size, total))

    clusters.sort(key=lambda d: d.confidence, reverse=True)
    return clusters


# ═══════════════════════════════════════════════════════════════
# FaceDetector
# ═══════════════════════════════════════════════════════════════

class FaceDetector:
    """One detection pass per frame: classify, smooth, cluster, filter.

    The classifier is injected (see stillshot_backend.FaceClassifier).
    Until one is attached and ready, detect() returns an empty list.
    """

    def __init__(
        self,
        classifier: Optional[FaceClassifier] = None,
        memory_size: int = 5,
        min_size: int = 100,
        max_size: int = 1000,
        shift_factor: float = 0.1,
        scale_factor: float = 1.1,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ) -> None:
        """Initialize face detector.

        Args:
            classifier: Face classifier backend, or None to attach later.
            memory_size: Frames pooled by the temporal memory.
            min_size: Smallest face diameter scanned, in pixels.
            max_size: Largest face diameter scanned, in pixels.
            shift_factor: Scan window step as a fraction of window size.
            scale_factor: Ratio between consecutive scan window sizes.
            min_confidence: Clusters must score strictly above this.
        """
        if min_size <= 0 or max_size < min_size:
            raise ValueError(f"Invalid detection size range [{min_size}, {max_size}]")
        self._classifier = classifier
        self.memory = DetectionMemory(memory_size)
        self.params = ScanParams(
            shift_factor=shift_factor,
            scale_factor=scale_factor,
            min_size=min_size,
            max_size=max_size,
        )
        self.min_confidence = min_confidence
        self._warned_not_ready = False

        _log.info(
            "FaceDetector initialized — memory=%d size=[%d, %d] min_conf=%.1f",
            memory_size, min_size, max_size, min_confidence,
        )

    @classmethod
    def from_config(
        cls,
        config: dict,
        classifier: Optional[FaceClassifier] = None,
    ) -> "FaceDetector":
        det = config["detection"]
        return cls(
            classifier=classifier,
            memory_size=det["memory_size"],
            min_size=det["min_size"],
            max_size=det["max_size"],
            shift_factor=det["shift_factor"],
            scale_factor=det["scale_factor"],
            min_confidence=det["min_confidence"],
        )

    # ── Public API ────────────────────────────────────────────

    @property
    def ready(self) -> bool:
        return self._classifier is not None and self._classifier.ready

    def attach(self, classifier: FaceClassifier) -> None:
        """Attach (or replace) the classifier backend."""
        self._classifier = classifier
        self._warned_not_ready = False

    def detect(self, frame: GrayFrame, iou_threshold: float) -> List[FaceDetection]:
        """Detect faces in one frame.

        Args:
            frame: Luminance buffer; must not change during the call.
            iou_threshold: Clustering overlap threshold for this frame.

        Returns:
            Face detections, highest merged confidence first. Empty when
            nothing passes the filter or the classifier is not ready.
        """
        if not self.ready:
            if not self._warned_not_ready:
                _log.warning("Face classifier not initialized — detection skipped")
                self._warned_not_ready = True
            return []
        self._warned_not_ready = False

        try:
            raw = self._classifier.classify(frame, self.params)
        except Exception as e:
            _log.error("Face classifier failed: %s", e, exc_info=True)
            raw = []

        candidates = self._validate_candidates(raw)
        pooled = self.memory.update(candidates)
        clustered = cluster_detections(pooled, iou_threshold)
        faces = [f for f in clustered if f.confidence > self.min_confidence]

        _log.debug(
            "Detection pass: raw=%d pooled=%d clusters=%d kept=%d",
            len(candidates), len(pooled), len(clustered), len(faces),
        )
        return faces

    def reset(self) -> None:
        """Forget the temporal memory (session teardown)."""
        self.memory.reset()

    def release(self) -> None:
        """Release the classifier; detect() becomes a no-op."""
        if self._classifier is not None:
            self._classifier.release()
            self._classifier = None
        self.memory.reset()
        _log.info("FaceDetector released")

    # ── Context manager ───────────────────────────────────────

    def __enter__(self) -> "FaceDetector":
        return self

    def __exit__(self, *args) -> None:
        self.release()

    # ── Private Helpers ───────────────────────────────────────

    @staticmethod
    def _validate_candidates(raw) -> List[FaceDetection]:
        if raw is None:
            _log.warning("Face classifier returned None")
            return []
        try:
            rows = list(raw)
        except TypeError:
            _log.warning("Face classifier output is not a sequence: %r", raw)
            return []

        valid: list[FaceDetection] = []
        for item in rows:
            det = _coerce_candidate(item)
            if det is None:
                _log.warning("Dropping malformed face candidate: %r", item)
                continue
            valid.append(det)
        return valid


def _coerce_candidate(item) -> Optional[FaceDetection]:
    if isinstance(item, FaceDetection):
        values = (item.row, item.col, item.size, item.confidence)
    else:
        try:
            values = tuple(item)
        except TypeError:
            return None
        if len(values) != 4:
            return None

    for v in values:
        if isinstance(v, bool) or not isinstance(v, numbers.Real):
            return None
        if not math.isfinite(v):
            return None

    row, col, size, confidence = (float(v) for v in values)
    if size <= 0:
        return None
    return FaceDetection(row=row, col=col, size=size, confidence=confidence)


# ═══════════════════════════════════════════════════════════════
# Eye Regions
# ═══════════════════════════════════════════════════════════════

def derive_eye_regions(face: FaceDetection) -> tuple[EyeRegion, EyeRegion]:
    """Compute the (left, right) eye windows of a face."""
    row = face.row - EYE_VERTICAL_OFFSET * face.size
    size = EYE_SIZE_RATIO * face.size
    left = EyeRegion(row=row, col=face.col - EYE_HORIZONTAL_OFFSET * face.size, size=size)
    right = EyeRegion(row=row, col=face.col + EYE_HORIZONTAL_OFFSET * face.size, size=size)
    return left, right


def is_region_valid(region: EyeRegion, width: int, height: int) -> bool:
    """Centre inside [0, height) x [0, width) and a positive size."""
    if not all(math.isfinite(v) for v in (region.row, region.col, region.size)):
        return False
    return (
        0 <= region.row < height
        and 0 <= region.col < width
        and region.size > 0
    )


# ═══════════════════════════════════════════════════════════════
# FrameCropper
# ═══════════════════════════════════════════════════════════════

class FrameCropper:
    """Square crop around the first face, encoded as an image file.

    Crop window:
      x = max(0, col - size/2), y = max(0, row - size/2)
      w = min(size, frame_w - x), h = min(size, frame_h - y)
    A window pushed against the top/left edge is shifted, not shrunk.
    """

    def __init__(self, image_format: str = ".png") -> None:
        self.image_format = image_format

    def capture(self, frame: np.ndarray, faces: Sequence[FaceDetection]) -> List[bytes]:
        """Crop and encode.

        Args:
            frame: (H, W, 4) RGBA or (H, W, 3) RGB uint8 frame.
            faces: Detections in FaceDetector order; only faces[0] is used.

        Returns:
            [encoded_image] or [] when there is no face or the window
            falls outside the frame.
        """
        if not faces:
            return []

        face = faces[0]
        fh, fw = frame.shape[:2]
        radius = face.size / 2.0

        x = max(0, int(face.col - radius))
        y = max(0, int(face.row - radius))
        w = min(int(face.size), fw - x)
        h = min(int(face.size), fh - y)

        if w <= 0 or h <= 0:
            _log.warning(
                "Crop window empty for face at (%.1f, %.1f) size %.1f in %dx%d frame",
                face.row, face.col, face.size, fw, fh,
            )
            return []

        crop = np.ascontiguousarray(frame[y:y + h, x:x + w])
        if crop.ndim == 3 and crop.shape[2] == 4:
            crop = cv2.cvtColor(crop, cv2.COLOR_RGBA2BGRA)
        elif crop.ndim == 3 and crop.shape[2] == 3:
            crop = cv2.cvtColor(crop, cv2.COLOR_RGB2BGR)

        ok, encoded = cv2.imencode(self.image_format, crop)
        if not ok:
            _log.error("Failed to encode %dx%d crop as %s", w, h, self.image_format)
            return []

        _log.info("Captured %dx%d crop at (%d, %d)", w, h, x, y)
        return [encoded.tobytes()]
