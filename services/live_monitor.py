"""
MultiRec Live Monitor
Runs the action recognition pipeline on a camera or video file and shows
the latest detection with a pose overlay.

Pipeline:
    Stage 1: YOLOv8s-pose — keypoint extraction (per frame, on capture thread)
    Stage 2: Feature window — (60, 3, 18) tensor
    Stage 3: Classifier ensemble — one binary model per action, in parallel
    Stage 4: Arbitration → ActionEvent → overlay / log

Usage:
    python -m services.live_monitor --source 0
    python -m services.live_monitor --source clip.mp4 --headless
"""

import sys
import os

# Ensure parent directory is in path for imports
if __name__ == '__main__':
    parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if parent_dir not in sys.path:
        sys.path.insert(0, parent_dir)

import argparse
import dataclasses
import logging
import time

import cv2

from config import Config
from engines.action_recognition import (
    ActionPipeline, ClassifierEnsemble, EventDispatcher, FeatureWindowBuilder,
    InferencePolicy, KeypointExtractor, ModelUnavailable, YoloPoseModel, load_classifiers,
)
from services.camera_source import CameraSource
from services.overlay import LiveOverlay

logger = logging.getLogger("live-monitor")

WINDOW_NAME = 'MultiRec'
STATS_INTERVAL = 10.0  # seconds between stats lines in headless mode


def setup_logging(level, log_file):
    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Live pose-based action recognition')
    parser.add_argument('--source', default=Config.CAMERA_SOURCE,
                        help='Camera index or video path')
    parser.add_argument('--models-dir', default=Config.MODELS_DIR,
                        help='Directory holding <category>.pt classifiers')
    parser.add_argument('--pose-model', default=Config.POSE_MODEL)
    parser.add_argument('--threshold', type=float, default=Config.DETECTION_THRESHOLD)
    parser.add_argument('--policy', default=Config.INFERENCE_POLICY,
                        choices=[p.value for p in InferencePolicy])
    parser.add_argument('--temporal', action=argparse.BooleanOptionalAction,
                        default=Config.TEMPORAL_WINDOW,
                        help='Use a rolling window of frames instead of single-frame encoding')
    parser.add_argument('--headless', action='store_true',
                        help='Log events only, no preview window')
    parser.add_argument('--log-level', default=Config.LOG_LEVEL)
    return parser.parse_args(argv)


def build_pipeline(args):
    """Load models and assemble the pipeline. Raises ModelUnavailable without a pose model."""
    rules = dataclasses.replace(
        Config.build_rules(),
        detection_threshold=args.threshold,
        temporal_window=args.temporal,
    )

    pose_model = YoloPoseModel(
        model_name=args.pose_model,
        gpu_id=Config.GPU_ID,
        conf_threshold=Config.POSE_CONF_THRESHOLD,
        min_keypoint_conf=Config.MIN_KEYPOINT_CONFIDENCE,
        use_half=Config.USE_FP16,
    )
    specs = load_classifiers(args.models_dir, rules.category_priority, rules)

    return ActionPipeline(
        extractor=KeypointExtractor(pose_model),
        builder=FeatureWindowBuilder(rules),
        ensemble=ClassifierEnsemble(specs, rules),
        dispatcher=EventDispatcher(),
        rules=rules,
        policy=InferencePolicy(args.policy),
        max_workers=Config.INFERENCE_WORKERS,
    )


def run(pipeline, source, overlay, headless=False):
    """Main-thread loop: preview window or periodic stats until the source ends."""
    last_stats = time.time()
    while pipeline.running and source.running:
        if headless:
            time.sleep(0.2)
            if time.time() - last_stats >= STATS_INTERVAL:
                logger.info(f"📊 {pipeline.get_stats()}")
                last_stats = time.time()
            continue

        frame = overlay.latest_frame
        if frame is not None:
            cv2.imshow(WINDOW_NAME, overlay.render(frame.image))
        if cv2.waitKey(1) & 0xFF == ord('q'):
            break


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_level, Config.LOG_FILE)

    try:
        pipeline = build_pipeline(args)
    except (ModelUnavailable, ValueError) as e:
        logger.error(f"❌ {e}")
        return 1

    overlay = LiveOverlay()
    pipeline.dispatcher.subscribe(overlay.on_event, name='overlay')
    pipeline.add_pose_observer(overlay.on_pose)

    source = CameraSource(args.source, tap=overlay.on_frame)

    logger.info("=" * 60)
    logger.info("MultiRec Live Monitor")
    logger.info(f"  Source:      {args.source}")
    logger.info(f"  Classifiers: {pipeline.ensemble.categories}")
    logger.info(f"  Threshold:   {pipeline.rules.detection_threshold}")
    logger.info(f"  Policy:      {pipeline.policy.value}")
    logger.info("=" * 60)

    try:
        pipeline.start(source)
        run(pipeline, source, overlay, headless=args.headless)
    except IOError as e:
        logger.error(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Live monitor interrupted.")
    finally:
        pipeline.stop(wait=True)
        pipeline.dispatcher.close(timeout=2.0)
        pipeline.ensemble.close()
        if not args.headless:
            cv2.destroyAllWindows()

    logger.info(f"Final stats: {pipeline.get_stats()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
