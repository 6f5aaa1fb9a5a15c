"""
Stillshot -- Haar Cascade Face Classifier
==========================================
Default FaceClassifier backend built on OpenCV's bundled Haar cascades.
Needs no model download: the frontal-face cascade ships with
opencv-python 4.x under cv2.data.haarcascades. Builds without the legacy
CascadeClassifier leave the classifier not ready.

Output mapping:
  (x, y, w, h) window  ->  FaceDetection(row=y+h/2, col=x+w/2, size=w)
  confidence = stage level weight * score_scale

The level weight is the cascade's last-stage sum; scaled by 10 it lands
on the same 0..100-ish range the detector's 50.0 confidence floor is
tuned for. The shift factor has no Haar equivalent and is ignored.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

import cv2
import numpy as np

from stillshot_backend import FaceClassifier
from stillshot_types import FaceDetection, GrayFrame, ScanParams

_log = logging.getLogger("CascadeDetector")

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"


class CascadeFaceClassifier(FaceClassifier):
    def __init__(
        self,
        cascade_path: Optional[str] = None,
        min_neighbors: int = 3,
        score_scale: float = 10.0,
    ):
        """Load the cascade.

        Args:
            cascade_path: Cascade XML file. None uses OpenCV's bundled
                          frontal-face cascade.
            min_neighbors: Overlapping hits a window needs to be kept.
            score_scale: Multiplier from level weight to confidence.
        """
        if cascade_path is None:
            cascade_path = os.path.join(getattr(cv2.data, "haarcascades", ""), DEFAULT_CASCADE)
        self.cascade_path = cascade_path
        self.min_neighbors = min_neighbors
        self.score_scale = score_scale

        self._cascade = None
        if not hasattr(cv2, "CascadeClassifier"):
            _log.warning("OpenCV %s has no CascadeClassifier; face detection disabled",
                         cv2.__version__)
        elif not os.path.exists(cascade_path):
            _log.warning("Cascade file missing: %s", cascade_path)
        else:
            cascade = cv2.CascadeClassifier(cascade_path)
            if cascade.empty():
                _log.warning("Cascade failed to load: %s", cascade_path)
            else:
                self._cascade = cascade
                _log.info("Loaded face cascade %s", os.path.basename(cascade_path))

    @classmethod
    def from_config(cls, config: dict) -> "CascadeFaceClassifier":
        cas = config["cascade"]
        return cls(
            cascade_path=cas["path"],
            min_neighbors=cas["min_neighbors"],
            score_scale=cas["score_scale"],
        )

    @property
    def ready(self) -> bool:
        return self._cascade is not None

    def classify(self, frame: GrayFrame, params: ScanParams) -> List[FaceDetection]:
        if self._cascade is None:
            return []

        image = np.ascontiguousarray(frame.as_image())
        rects, _levels, weights = self._cascade.detectMultiScale3(
            image,
            scaleFactor=params.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(params.min_size, params.min_size),
            maxSize=(params.max_size, params.max_size),
            outputRejectLevels=True,
        )
        if len(rects) == 0:
            return []

        weights = np.asarray(weights, dtype=np.float64).reshape(-1)
        detections = []
        for (x, y, w, h), weight in zip(rects, weights):
            detections.append(FaceDetection(
                row=float(y + h / 2.0),
                col=float(x + w / 2.0),
                size=float(w),
                confidence=float(weight) * self.score_scale,
            ))
        return detections

    def release(self):
        self._cascade = None
