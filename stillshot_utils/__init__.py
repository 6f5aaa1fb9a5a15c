"""
Stillshot -- stillshot_utils package
=====================================
Re-exports the shared utilities from stillshot_utils_core.py so callers
can write `from stillshot_utils import X`.

Also exposes submodules:
  - stillshot_utils.capture_decision
  - stillshot_utils.detection_statistics
  - stillshot_utils.cascade_detector
  - stillshot_utils.pupil_estimator
"""

from __future__ import annotations

# Re-export everything from the core module
from stillshot_utils_core import (
    # Config
    DEFAULT_CONFIG,
    load_config,
    # Logging
    setup_logger,
    # Frame preprocessing
    GrayscaleConverter,
    rgba_image,
)

from .capture_decision import CaptureStabilityController
from .detection_statistics import DetectionStatisticsTracker, quantize_threshold
from .cascade_detector import CascadeFaceClassifier
from .pupil_estimator import DarkPupilEstimator

__all__ = [
    "DEFAULT_CONFIG", "load_config",
    "setup_logger",
    "GrayscaleConverter", "rgba_image",
    "CaptureStabilityController",
    "DetectionStatisticsTracker", "quantize_threshold",
    "CascadeFaceClassifier",
    "DarkPupilEstimator",
]
