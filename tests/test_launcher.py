"""
Stillshot — Launcher Tests
===========================
Argument parsing and the capture loop with mocked camera and engine.
"""

import sys
import os
from unittest.mock import MagicMock, patch

import numpy as np

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import start_stillshot
from stillshot_types import DetectionStats, FaceDetection, FrameResult


def _result(captured=None, state="VALIDATING"):
    return FrameResult(
        faces=[FaceDetection(100, 100, 80, 70.0)],
        pupils=[[None, None]],
        stats=DetectionStats(1, {"0.20": 1}),
        captured=captured,
        state=state,
    )


def _mock_camera(ready=True):
    cam = MagicMock()
    cam.wait_ready.return_value = ready
    cam.read_rgba_frame.return_value = (True, np.zeros((4, 4, 4), np.uint8), 4, 4, 1000.0)
    return cam


def test_parser_defaults_and_overrides():
    args = start_stillshot.build_parser().parse_args([])
    assert args.source is None and args.iou is None and args.max_seconds == 30.0

    args = start_stillshot.build_parser().parse_args(
        ["--source", "clip.mp4", "--iou", "0.3", "--max-seconds", "5", "--audit"])
    assert args.source == "clip.mp4"
    assert args.iou == 0.3
    assert args.max_seconds == 5.0
    assert args.audit is True


def test_camera_unavailable_returns_2():
    cam = _mock_camera(ready=False)
    with patch("start_stillshot.StillshotCamera") as cam_cls, \
         patch("start_stillshot.StillshotEngine") as eng_cls:
        cam_cls.from_config.return_value = cam
        assert start_stillshot.main(["--max-seconds", "1"]) == 2
    eng_cls.return_value.release.assert_called_once()
    cam.release.assert_called_once()


def test_capture_returns_0_and_passes_iou():
    cam = _mock_camera()
    with patch("start_stillshot.StillshotCamera") as cam_cls, \
         patch("start_stillshot.StillshotEngine") as eng_cls, \
         patch("start_stillshot.time.sleep"):
        cam_cls.from_config.return_value = cam
        engine = eng_cls.return_value
        engine.process_frame.side_effect = [_result(), _result([b"png"], "CAPTURED")]
        engine.get_summary.return_value = {}

        assert start_stillshot.main(["--source", "1", "--iou", "0.4"]) == 0

    config = cam_cls.from_config.call_args.args[0]
    assert config["camera"]["camera_id"] == 1
    assert engine.process_frame.call_count == 2
    assert engine.process_frame.call_args.kwargs["iou_threshold"] == 0.4


def test_timeout_without_capture_returns_1():
    cam = _mock_camera()
    with patch("start_stillshot.StillshotCamera") as cam_cls, \
         patch("start_stillshot.StillshotEngine") as eng_cls:
        cam_cls.from_config.return_value = cam
        eng_cls.return_value.process_frame.return_value = _result()
        eng_cls.return_value.get_summary.return_value = {}
        assert start_stillshot.main(["--max-seconds", "0.05"]) == 1


def test_log_level_applies_to_every_module_logger():
    import stillshot_camera
    import stillshot_engine
    import stillshot_face_pipeline
    import stillshot_logger
    import stillshot_pupil
    import stillshot_utils_core
    from stillshot_temporal import detection_memory
    from stillshot_utils import capture_decision, cascade_detector, detection_statistics, pupil_estimator

    modules = (stillshot_camera, stillshot_engine, stillshot_face_pipeline, stillshot_logger,
               stillshot_pupil, stillshot_utils_core, detection_memory, capture_decision,
               cascade_detector, detection_statistics, pupil_estimator)
    expected = {m._log.name for m in modules}

    with patch("start_stillshot.StillshotCamera") as cam_cls, \
         patch("start_stillshot.StillshotEngine"), \
         patch("start_stillshot.setup_logger") as setup:
        cam_cls.from_config.return_value = _mock_camera(ready=False)
        assert start_stillshot.main(["--log-level", "DEBUG", "--max-seconds", "1"]) == 2

    configured = {c.args[0]: c.args[1] for c in setup.call_args_list}
    assert expected <= set(configured)
    assert set(configured.values()) == {"DEBUG"}
