"""
Live Overlay - last-value presentation state for the monitor window.

Subscribes to ActionEvents and pose updates, keeps only the most recent of
each, and draws them onto preview frames.
"""
import logging
import threading

import cv2

from engines.action_recognition.joints import SKELETON_EDGES

logger = logging.getLogger(__name__)

# BGR colours for OpenCV
COLOR_NORMAL = (0, 200, 0)
COLOR_DETECTED = (0, 0, 255)
COLOR_SKELETON = (255, 200, 0)
COLOR_JOINT = (0, 255, 255)


class LiveOverlay:
    """Holds the latest event, pose and frame; renders them on demand."""

    def __init__(self):
        self._lock = threading.Lock()
        self.latest_event = None
        self.latest_keypoints = None
        self.latest_bbox = None
        self.latest_frame = None

    # Subscriber / observer hooks

    def on_event(self, event):
        with self._lock:
            self.latest_event = event

    def on_pose(self, keypoints, bbox):
        with self._lock:
            self.latest_keypoints = keypoints
            self.latest_bbox = bbox

    def on_frame(self, frame):
        with self._lock:
            self.latest_frame = frame

    @property
    def summary(self):
        """Text shown for the latest event."""
        with self._lock:
            event = self.latest_event
        if event is None:
            return 'Waiting for detections...'
        return event.message

    def render(self, image):
        """Return a copy of image with skeleton, bounding box and event text drawn on."""
        with self._lock:
            keypoints = self.latest_keypoints
            bbox = self.latest_bbox
            event = self.latest_event

        canvas = image.copy()
        height, width = canvas.shape[:2]

        if keypoints:
            points = {
                name: (int(x * width), int(y * height))
                for name, (x, y) in keypoints.items()
            }
            for a, b in SKELETON_EDGES:
                if a in points and b in points:
                    cv2.line(canvas, points[a], points[b], COLOR_SKELETON, 2)
            for pt in points.values():
                cv2.circle(canvas, pt, 4, COLOR_JOINT, -1)

        detected = event is not None and event.detected
        color = COLOR_DETECTED if detected else COLOR_NORMAL

        if bbox is not None and bbox.width > 0 and bbox.height > 0:
            x1, y1, x2, y2 = bbox.to_pixels(width, height)
            cv2.rectangle(canvas, (x1, y1), (x2, y2), color, 2)

        cv2.putText(canvas, self.summary, (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
        return canvas
