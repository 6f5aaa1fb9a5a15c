"""
Stillshot — Launcher
====================
Runs one capture session from a webcam or a video file: frames are fed
to the engine until it captures, the time limit passes, or Ctrl-C.
Reports the outcome; the crop itself stays in memory.

Usage:
  python start_stillshot.py --source 0
  python start_stillshot.py --source clip.mp4 --iou 0.3 --max-seconds 20
"""

import argparse
import logging
import sys
import os
import time

# Add root
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from stillshot_camera import StillshotCamera
from stillshot_engine import StillshotEngine
from stillshot_utils_core import load_config, setup_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stillshot face capture")
    parser.add_argument("--source", type=str, default=None, help="Camera ID (0, 1, etc.) or video file path")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--iou", type=float, default=None, help="IoU clustering threshold (default from config)")
    parser.add_argument("--max-seconds", type=float, default=30.0, help="Give up after this many seconds")
    parser.add_argument("--audit", action="store_true", help="Write the JSONL audit trail")
    parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ...")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)

    if args.source is not None:
        config["camera"]["camera_id"] = int(args.source) if args.source.isdigit() else args.source
    if args.audit:
        config["logging"]["audit_enabled"] = True

    level = args.log_level or config["logging"]["level"]
    for name in ("StillshotEngine", "StillshotFacePipeline", "StillshotPupil",
                 "StillshotCamera", "StillshotUtils", "StillshotAudit",
                 "DetectionMemory", "DetectionStats", "CaptureDecision",
                 "CascadeDetector", "PupilEstimator"):
        setup_logger(name, level)
    log = setup_logger("Stillshot", level)

    print("=" * 60)
    print("  Stillshot — Starting...")
    print(f"  Source: {config['camera']['camera_id']}")
    print(f"  IoU:    {args.iou if args.iou is not None else config['detection']['iou_threshold']}")
    print(f"  Limit:  {args.max_seconds:.0f} s")
    print("=" * 60)

    camera = StillshotCamera.from_config(config)
    engine = StillshotEngine(config)
    interval = config["camera"]["frame_interval_ms"] / 1000.0
    result = None
    captured = None

    try:
        if not camera.wait_ready(config["camera"]["timeout_ms"]):
            print("[STILLSHOT] Camera not available.")
            return 2

        deadline = time.monotonic() + args.max_seconds
        while time.monotonic() < deadline:
            ok, rgba, width, height, ts_ms = camera.read_rgba_frame()
            if not ok:
                time.sleep(0.01)
                continue

            result = engine.process_frame(rgba, width, height, ts_ms, iou_threshold=args.iou)
            if result.captured is not None:
                captured = result.captured
                break
            time.sleep(interval)

    except KeyboardInterrupt:
        print("\n[STILLSHOT] Interrupted by user.")
    finally:
        summary = engine.get_summary()
        engine.release()
        camera.release()
        log.debug("Session summary: %s", summary)

    if captured is None:
        state = result.state if result is not None else "WARMING"
        print(f"[STILLSHOT] No capture (state={state}).")
        return 1

    print(f"[STILLSHOT] Captured {len(captured)} image(s): "
          f"{[len(img) for img in captured]} bytes, "
          f"{len(result.faces)} face(s), "
          f"{sum(p is not None for pair in result.pupils for p in pair)} pupil(s).")
    if not captured:
        logging.getLogger("Stillshot").warning("Capture fired with no face in frame")
    return 0


if __name__ == "__main__":
    sys.exit(main())
