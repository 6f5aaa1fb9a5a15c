"""
Stillshot — Model Backend Interfaces
=====================================
Defines the strategy objects the detection core calls into. The core
never loads model files itself; a backend is built elsewhere and
injected into FaceDetector / PupilLocalizer.

Backends:
  - FaceClassifier: scores a GrayFrame and returns raw face candidates
  - LandmarkLocalizer: refines one eye window into a pupil coordinate

Both are plain synchronous calls on the caller's thread. Test suites
substitute deterministic stubs.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from stillshot_types import GrayFrame, ScanParams


class FaceClassifier(ABC):
    """
    Abstract base class for face region classifiers.
    """

    @property
    def ready(self) -> bool:
        """False while the underlying model is unavailable."""
        return True

    @abstractmethod
    def classify(self, frame: GrayFrame, params: ScanParams) -> Sequence[Any]:
        """
        Scan the frame for faces.

        Args:
            frame: Luminance buffer for this pass (read-only).
            params: Shift/scale factors and min/max window size.

        Returns:
            Sequence of candidates, each either a FaceDetection or a
            4-sequence (row, col, size, confidence). Candidates are
            validated by the caller; malformed rows are dropped.
        """
        pass

    def release(self):
        """Optional cleanup logic on shutdown."""
        pass


class LandmarkLocalizer(ABC):
    """
    Abstract base class for pupil landmark localizers.
    """

    @property
    def ready(self) -> bool:
        return True

    @abstractmethod
    def localize(
        self,
        row: float,
        col: float,
        size: float,
        perturbation_count: int,
        frame: GrayFrame,
    ) -> Any:
        """
        Locate the pupil inside the window centred at (row, col).

        Returns:
            A (row, col) pair on success. Anything else is treated as
            "not found" by PupilLocalizer.
        """
        pass

    def release(self):
        """Optional cleanup logic on shutdown."""
        pass
