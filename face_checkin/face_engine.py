from typing import Optional

import cv2
import numpy as np
import torch
import torch.nn.functional as f
import torchvision.models as models
from torchvision.models import ResNet18_Weights

from .config import FACE_DETECTION_THRESHOLD, MIN_FACE_SIZE
from .exceptions import FaceEngineError
from .types import BoundingBox, Detection, Frame

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - runtime dependency guard
    mp = None

DEVICE = "cuda" if torch.cuda.is_available() else "cpu"
CROP_SIZE = 224


class FaceEngine:
    """mediapipe face detection + ResNet-18 descriptors for the single largest face."""

    def __init__(
        self,
        device: str = DEVICE,
        detection_threshold: float = FACE_DETECTION_THRESHOLD,
        min_face_size: int = MIN_FACE_SIZE,
    ):
        if mp is None:
            raise FaceEngineError("mediapipe is required. Install the project dependencies.")

        self.device = torch.device(device)
        self.detection_threshold = detection_threshold
        self.min_face_size = min_face_size

        if self.device.type == "cuda":
            torch.backends.cudnn.benchmark = True

        try:
            self.detector = mp.solutions.face_detection.FaceDetection(
                model_selection=0,
                min_detection_confidence=detection_threshold,
            )

            backbone = models.resnet18(weights=ResNet18_Weights.DEFAULT)
            backbone.fc = torch.nn.Identity()
            self.embedder = backbone.eval().to(self.device)

            self.mean = torch.tensor([0.485, 0.456, 0.406], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
            self.std = torch.tensor([0.229, 0.224, 0.225], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
            self.clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        except Exception as exc:
            raise FaceEngineError(f"Failed to initialize face models: {exc}") from exc

    def detect(self, frame: Frame) -> Optional[Detection]:
        try:
            rgb = cv2.cvtColor(frame.image, cv2.COLOR_BGR2RGB)
            result = self.detector.process(rgb)
        except Exception as exc:
            raise FaceEngineError(f"Face detection failed: {exc}") from exc

        if not result.detections:
            return None

        h, w = frame.image.shape[:2]
        best = None
        best_area = 0
        for det in result.detections:
            score = float(det.score[0]) if det.score else 0.0
            if score < self.detection_threshold:
                continue

            rel = det.location_data.relative_bounding_box
            x1 = max(0, int(rel.xmin * w))
            y1 = max(0, int(rel.ymin * h))
            x2 = min(w, x1 + int(rel.width * w))
            y2 = min(h, y1 + int(rel.height * h))
            if (x2 - x1) < self.min_face_size or (y2 - y1) < self.min_face_size:
                continue

            area = (x2 - x1) * (y2 - y1)
            if area > best_area:
                best, best_area = (det, score, (x1, y1, x2, y2)), area

        if best is None:
            return None

        det, score, (x1, y1, x2, y2) = best
        landmarks = np.array(
            [[kp.x * w, kp.y * h] for kp in det.location_data.relative_keypoints],
            dtype=np.float32,
        )
        crop = self._extract_square_crop(rgb, x1, y1, x2, y2)
        if crop.size == 0:
            return None

        return Detection(
            box=BoundingBox(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1)),
            landmarks=landmarks,
            descriptor=self._embed(crop),
            confidence=score,
        )

    def _embed(self, crop: np.ndarray) -> np.ndarray:
        try:
            tensor = torch.from_numpy(self._preprocess_crop(crop)).permute(2, 0, 1).float() / 255.0
            batch = tensor.unsqueeze(0).to(self.device)
            batch = (batch - self.mean) / self.std
            with torch.inference_mode():
                raw = self.embedder(batch)
                normed = f.normalize(raw, p=2, dim=1)
            return normed.detach().cpu().numpy().astype(np.float32)[0]
        except Exception as exc:
            raise FaceEngineError(f"Embedding generation failed: {exc}") from exc

    @staticmethod
    def _extract_square_crop(rgb: np.ndarray, x1: int, y1: int, x2: int, y2: int) -> np.ndarray:
        h, w = rgb.shape[:2]
        side = int(max(max(1, x2 - x1), max(1, y2 - y1)) * 1.05)
        cx = int((x1 + x2) * 0.5)
        cy = int((y1 + y2) * 0.5)

        sx1 = max(0, cx - side // 2)
        sy1 = max(0, cy - side // 2)
        sx2 = min(w, sx1 + side)
        sy2 = min(h, sy1 + side)
        if sx2 <= sx1 or sy2 <= sy1:
            return np.empty((0, 0, 3), dtype=rgb.dtype)
        return rgb[sy1:sy2, sx1:sx2]

    def _preprocess_crop(self, crop: np.ndarray) -> np.ndarray:
        interpolation = cv2.INTER_CUBIC if min(crop.shape[:2]) < CROP_SIZE else cv2.INTER_AREA
        resized = cv2.resize(crop, (CROP_SIZE, CROP_SIZE), interpolation=interpolation)

        # Equalise luminance only, keep chroma.
        ycrcb = cv2.cvtColor(resized, cv2.COLOR_RGB2YCrCb)
        y_channel, cr_channel, cb_channel = cv2.split(ycrcb)
        y_channel = self.clahe.apply(y_channel)
        return cv2.cvtColor(cv2.merge([y_channel, cr_channel, cb_channel]), cv2.COLOR_YCrCb2RGB)

    def close(self) -> None:
        self.detector.close()
