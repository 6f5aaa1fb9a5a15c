"""
Stillshot — Pupil Localization Tests
=====================================
Validation of raw localizer output and failure bookkeeping.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from stillshot_backend import LandmarkLocalizer
from stillshot_pupil import PupilLocalizer
from stillshot_types import EyeRegion, GrayFrame, PupilPosition


class FixedLocalizer(LandmarkLocalizer):
    def __init__(self, answer, ready=True):
        self.answer = answer
        self._ready = ready
        self.calls = []
        self.released = False

    @property
    def ready(self):
        return self._ready

    def localize(self, row, col, size, perturbation_count, frame):
        self.calls.append((row, col, size, perturbation_count))
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer

    def release(self):
        self.released = True


FRAME = GrayFrame(np.zeros(100 * 80, dtype=np.uint8), width=100, height=80, stride=100)
REGION = EyeRegion(40.0, 50.0, 20.0)


def test_valid_pair_becomes_position():
    loc = PupilLocalizer(FixedLocalizer([41.5, 52.25]))
    assert loc.localize(REGION, FRAME) == PupilPosition(41.5, 52.25)


def test_numpy_result_accepted():
    loc = PupilLocalizer(FixedLocalizer(np.array([10.0, 20.0])))
    assert loc.localize(REGION, FRAME) == PupilPosition(10.0, 20.0)


def test_localizer_receives_region_and_perturbations():
    backend = FixedLocalizer([1, 1])
    PupilLocalizer(backend).localize(REGION, FRAME)
    assert backend.calls == [(40.0, 50.0, 20.0, 63)]

    backend = FixedLocalizer([1, 1])
    PupilLocalizer(backend, perturbation_count=7).localize(REGION, FRAME)
    assert backend.calls[0][3] == 7


@pytest.mark.parametrize("answer, reason", [
    (None, "malformed"),
    (5.0, "malformed"),
    ([1.0], "malformed"),
    ([1.0, 2.0, 3.0], "malformed"),
    (["a", "b"], "non_numeric"),
    ([float("nan"), 1.0], "non_numeric"),
    ([1.0, float("inf")], "non_numeric"),
    ([True, 1.0], "non_numeric"),
    ([-1.0, 5.0], "out_of_bounds"),
    ([5.0, -0.5], "out_of_bounds"),
    ([80.0, 5.0], "out_of_bounds"),
    ([5.0, 100.0], "out_of_bounds"),
])
def test_invalid_results_yield_none(answer, reason):
    loc = PupilLocalizer(FixedLocalizer(answer))
    assert loc.localize(REGION, FRAME) is None
    assert loc.failures[reason] == 1
    assert sum(loc.failures.values()) == 1


def test_localizer_exception_yields_none():
    loc = PupilLocalizer(FixedLocalizer(RuntimeError("boom")))
    assert loc.localize(REGION, FRAME) is None
    assert loc.failures["raised"] == 1


def test_missing_or_unready_localizer_yields_none():
    loc = PupilLocalizer()
    assert loc.ready is False
    assert loc.localize(REGION, FRAME) is None

    backend = FixedLocalizer([1, 1], ready=False)
    loc = PupilLocalizer(backend)
    assert loc.localize(REGION, FRAME) is None
    assert backend.calls == []
    assert loc.failures["not_ready"] == 1


def test_attach_and_release():
    loc = PupilLocalizer()
    backend = FixedLocalizer([3, 4])
    loc.attach(backend)
    assert loc.localize(REGION, FRAME) == PupilPosition(3.0, 4.0)
    loc.release()
    assert backend.released is True
    assert loc.localize(REGION, FRAME) is None


def test_negative_perturbations_rejected():
    with pytest.raises(ValueError):
        PupilLocalizer(perturbation_count=-1)
