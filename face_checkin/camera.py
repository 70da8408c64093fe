import time
from typing import Optional

import cv2

from .config import CAMERA_PROBE_READS, FRAME_FPS, FRAME_HEIGHT, FRAME_WIDTH
from .exceptions import CameraError
from .logger import setup_logger
from .types import Frame


class CameraStream:
    """Webcam acquisition scoped to a ``with`` block.

    ``open()`` first asks for the ideal width/height/fps and, if the device
    cannot deliver frames that way, reopens it with its own defaults.
    """

    def __init__(
        self,
        camera_index: int = 0,
        width: int = FRAME_WIDTH,
        height: int = FRAME_HEIGHT,
        fps: int = FRAME_FPS,
    ):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.fps = fps
        self.cap: Optional[cv2.VideoCapture] = None
        self.constrained = False
        self.logger = setup_logger(self.__class__.__name__)

    def __enter__(self) -> "CameraStream":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        cv2.setUseOptimized(True)

        cap = self._try_open(constrained=True)
        if cap is None:
            self.logger.warning(
                "Camera %d rejected %dx%d@%d, retrying with device defaults",
                self.camera_index,
                self.width,
                self.height,
                self.fps,
            )
            cap = self._try_open(constrained=False)
        if cap is None:
            raise CameraError(f"Unable to open webcam index {self.camera_index}.")
        self.cap = cap

    def _try_open(self, constrained: bool) -> Optional[cv2.VideoCapture]:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            return None

        if constrained:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)

        # Some backends report opened=True but never deliver frames.
        for _ in range(max(1, CAMERA_PROBE_READS)):
            ok, frame = cap.read()
            if ok and frame is not None:
                self.constrained = constrained
                return cap
            time.sleep(0.03)

        cap.release()
        return None

    def read(self) -> Frame:
        if self.cap is None:
            raise CameraError("Webcam stream is not initialized.")

        success, image = self.cap.read()
        if not success or image is None:
            raise CameraError("Failed to read frame from webcam.")
        return Frame.from_image(image)

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
