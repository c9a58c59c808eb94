"""Camera Source - pushes frames from an OpenCV capture device to the pipeline"""
import logging
import threading
import time

import cv2

from engines.action_recognition.detector import Frame

logger = logging.getLogger(__name__)


class CameraSource:
    """
    Reads frames on a dedicated thread and pushes each one to a callback.

    `source` is a device index ("0") or a video file / stream URL. Video files
    end the capture when exhausted; live devices retry on read failures.
    """

    def __init__(self, source='0', tap=None, retry_delay=0.01):
        self.source = int(source) if str(source).isdigit() else source
        self.tap = tap  # optional preview hook, called before the frame callback
        self.retry_delay = retry_delay
        self.frame_count = 0
        self.read_failures = 0
        self._cap = None
        self._callback = None
        self._thread = None
        self._running = False

    @property
    def running(self):
        return self._running

    @property
    def is_file(self):
        return isinstance(self.source, str) and not self.source.startswith(('rtsp://', 'http://', 'https://'))

    def start(self, callback):
        """Open the device and start delivering frames to callback(frame)."""
        self._cap = cv2.VideoCapture(self.source)
        if not self._cap.isOpened():
            raise IOError(f"Cannot open camera source: {self.source}")

        self._callback = callback
        self._running = True
        self._thread = threading.Thread(target=self._run, name='camera-source', daemon=True)
        self._thread.start()
        logger.info(f"Camera source started: {self.source}")

    def stop(self, timeout=2.0):
        self._running = False
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        logger.info(f"Camera source stopped after {self.frame_count} frames")

    def _run(self):
        while self._running:
            ret, image = self._cap.read()
            if not ret:
                if self.is_file:
                    logger.info(f"End of video: {self.source}")
                    self._running = False
                    break
                self.read_failures += 1
                time.sleep(self.retry_delay)  # Avoid busy-waiting on error
                continue

            self.frame_count += 1
            frame = Frame(image=image, timestamp=time.time(), frame_id=self.frame_count)

            try:
                if self.tap:
                    self.tap(frame)
                self._callback(frame)
            except Exception as e:
                logger.error(f"Frame callback error: {e}", exc_info=True)

    def get_stats(self):
        return {
            'source': self.source,
            'running': self._running,
            'frames': self.frame_count,
            'read_failures': self.read_failures,
        }
