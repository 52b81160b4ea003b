from __future__ import annotations

import math
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from urllib.parse import urlparse

import cv2
import numpy as np
import torch
import torch.nn.functional as f
import torchvision.models as models
from torchvision.models import ResNet18_Weights

from .config import (
    DESCRIPTOR_LENGTH,
    DEVICE,
    EMBEDDER_FILENAME,
    FACE_DETECTION_THRESHOLD,
    MIN_FACE_SIZE,
    MODEL_DIR,
    MODEL_MIRRORS,
)
from .exceptions import FaceEngineError, ModelUnavailable
from .logger import setup_logger

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - runtime dependency guard
    mp = None


# Eye corners in the mediapipe face mesh topology.
LEFT_EYE_OUTER = 33
RIGHT_EYE_OUTER = 263


class FaceModels:
    """A loaded detector, landmark refiner and embedding network."""

    source = "unknown"

    def describe(self, frame_bgr: np.ndarray) -> Optional[np.ndarray]:
        raise NotImplementedError

    def close(self) -> None:
        return None


class MediapipeTorchModels(FaceModels):
    def __init__(
        self,
        embedder: torch.nn.Module,
        source: str,
        device: str = DEVICE,
        detection_threshold: float = FACE_DETECTION_THRESHOLD,
        min_face_size: int = MIN_FACE_SIZE,
        descriptor_length: int = DESCRIPTOR_LENGTH,
    ):
        if mp is None:
            raise FaceEngineError("mediapipe is required. Install the project dependencies first.")

        self.source = source
        self.device = torch.device(device)
        self.detection_threshold = detection_threshold
        self.min_face_size = min_face_size
        self.descriptor_length = descriptor_length

        try:
            self.detector = mp.solutions.face_detection.FaceDetection(
                model_selection=0,
                min_detection_confidence=detection_threshold,
            )
        except Exception as exc:
            raise FaceEngineError(f"Failed to load face detector: {exc}") from exc

        try:
            self.landmarker = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=True,
                max_num_faces=1,
                refine_landmarks=True,
                min_detection_confidence=0.5,
            )
        except Exception as exc:
            self.detector.close()
            raise FaceEngineError(f"Failed to load face landmark model: {exc}") from exc

        self.embedder = embedder.eval().to(self.device)
        self.mean = torch.tensor([0.485, 0.456, 0.406], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
        self.std = torch.tensor([0.229, 0.224, 0.225], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
        self.clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))

    def describe(self, frame_bgr: np.ndarray) -> Optional[np.ndarray]:
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        result = self.detector.process(rgb)
        if not result.detections:
            return None

        detection = max(result.detections, key=lambda det: float(det.score[0]) if det.score else 0.0)
        score = float(detection.score[0]) if detection.score else 0.0
        if score < self.detection_threshold:
            return None

        h, w = rgb.shape[:2]
        rel = detection.location_data.relative_bounding_box
        x1 = max(0, int(rel.xmin * w))
        y1 = max(0, int(rel.ymin * h))
        x2 = min(w, x1 + int(rel.width * w))
        y2 = min(h, y1 + int(rel.height * h))
        if (x2 - x1) < self.min_face_size or (y2 - y1) < self.min_face_size:
            return None

        crop = self._extract_stable_crop(rgb, x1, y1, x2, y2)
        if crop.size == 0:
            return None
        crop = self._align_crop(crop)

        tensor = torch.from_numpy(self._preprocess_crop(crop)).permute(2, 0, 1).float() / 255.0
        batch = (tensor.unsqueeze(0).to(self.device) - self.mean) / self.std
        with torch.inference_mode():
            raw = self.embedder(batch).reshape(1, -1).float()
            raw = self._fit_length(raw)
            normed = f.normalize(raw, p=2, dim=1)
        return normed[0].detach().cpu().numpy().astype(np.float32)

    def close(self) -> None:
        self.detector.close()
        self.landmarker.close()

    def _fit_length(self, raw: torch.Tensor) -> torch.Tensor:
        size = raw.shape[1]
        if size == self.descriptor_length:
            return raw
        if size % self.descriptor_length != 0:
            raise FaceEngineError(
                f"Embedding network produced {size} values; expected a multiple of {self.descriptor_length}."
            )
        # Average adjacent features down to the descriptor length.
        return raw.view(1, self.descriptor_length, size // self.descriptor_length).mean(dim=2)

    def _align_crop(self, crop: np.ndarray) -> np.ndarray:
        mesh = self.landmarker.process(crop)
        if not mesh.multi_face_landmarks:
            return crop
        landmarks = mesh.multi_face_landmarks[0].landmark
        h, w = crop.shape[:2]
        left = landmarks[LEFT_EYE_OUTER]
        right = landmarks[RIGHT_EYE_OUTER]
        angle = math.degrees(math.atan2((right.y - left.y) * h, (right.x - left.x) * w))
        if abs(angle) < 1.0:
            return crop
        matrix = cv2.getRotationMatrix2D((w * 0.5, h * 0.5), angle, 1.0)
        return cv2.warpAffine(crop, matrix, (w, h), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REFLECT)

    @staticmethod
    def _extract_stable_crop(rgb: np.ndarray, x1: int, y1: int, x2: int, y2: int) -> np.ndarray:
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
        return np.ascontiguousarray(rgb[sy1:sy2, sx1:sx2])

    def _preprocess_crop(self, crop: np.ndarray) -> np.ndarray:
        if crop.shape[0] < 224 or crop.shape[1] < 224:
            resized = cv2.resize(crop, (224, 224), interpolation=cv2.INTER_CUBIC)
        else:
            resized = cv2.resize(crop, (224, 224), interpolation=cv2.INTER_AREA)

        # Normalize illumination and suppress background corners.
        ycrcb = cv2.cvtColor(resized, cv2.COLOR_RGB2YCrCb)
        y_channel, cr_channel, cb_channel = cv2.split(ycrcb)
        y_channel = self.clahe.apply(y_channel)
        balanced = cv2.cvtColor(cv2.merge([y_channel, cr_channel, cb_channel]), cv2.COLOR_YCrCb2RGB)

        mask = np.zeros((224, 224), dtype=np.float32)
        cv2.ellipse(mask, (112, 112), (84, 100), 0, 0, 360, 1.0, -1)
        mask = cv2.GaussianBlur(mask, (0, 0), sigmaX=6.0, sigmaY=6.0)[..., None]

        balanced_f = balanced.astype(np.float32)
        mean_color = balanced_f.mean(axis=(0, 1), keepdims=True)
        focused = (balanced_f * mask) + (mean_color * (1.0 - mask))
        return np.clip(focused, 0.0, 255.0).astype(np.uint8)


@dataclass
class ModelSource:
    name: str
    load: Callable[[], FaceModels]


def _load_scripted_embedder(path: Path, device: str) -> torch.nn.Module:
    if not path.exists():
        raise FaceEngineError(f"Embedding model not found at {path}")
    return torch.jit.load(str(path), map_location=device)


def _load_local(path: Path, device: str) -> FaceModels:
    embedder = _load_scripted_embedder(path, device)
    return MediapipeTorchModels(embedder, source=f"local:{path}", device=device)


def _load_mirror(url: str, model_dir: Path, device: str) -> FaceModels:
    filename = Path(urlparse(url).path).name or EMBEDDER_FILENAME
    target = model_dir / "mirrors" / filename
    if not target.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
        torch.hub.download_url_to_file(url, str(target), progress=False)
    embedder = _load_scripted_embedder(target, device)
    return MediapipeTorchModels(embedder, source=f"mirror:{url}", device=device)


def _load_torchvision(device: str) -> FaceModels:
    backbone = models.resnet18(weights=ResNet18_Weights.DEFAULT)
    backbone.fc = torch.nn.Identity()
    return MediapipeTorchModels(backbone, source="torchvision:resnet18", device=device)


def default_model_sources(
    model_dir: Path = MODEL_DIR,
    mirrors: Sequence[str] = MODEL_MIRRORS,
    device: str = DEVICE,
) -> List[ModelSource]:
    local_path = model_dir / EMBEDDER_FILENAME
    sources = [ModelSource(name=f"local:{local_path}", load=partial(_load_local, local_path, device))]
    for url in mirrors:
        sources.append(ModelSource(name=f"mirror:{url}", load=partial(_load_mirror, url, model_dir, device)))
    sources.append(ModelSource(name="torchvision:resnet18", load=partial(_load_torchvision, device)))
    return sources


class ModelLoadGuard:
    """Single-flight loader: concurrent callers share one load.

    A successful load is cached for the lifetime of the guard. A failed load
    is not cached, so the next call starts a fresh attempt.
    """

    def __init__(self, loader: Callable[[], FaceModels]):
        self._loader = loader
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def loaded(self) -> bool:
        with self._lock:
            future = self._future
        return future is not None and future.done() and future.exception() is None

    def get(self) -> FaceModels:
        with self._lock:
            future = self._future
            owner = future is None
            if owner:
                future = Future()
                self._future = future

        if not owner:
            return future.result()

        try:
            loaded = self._loader()
        except BaseException as exc:
            with self._lock:
                self._future = None
            future.set_exception(exc)
            raise
        future.set_result(loaded)
        return loaded

    def reset(self) -> None:
        with self._lock:
            future = self._future
            self._future = None
        if future is not None and future.done() and future.exception() is None:
            future.result().close()


class FaceEngine:
    def __init__(
        self,
        sources: Optional[Sequence[ModelSource]] = None,
        descriptor_length: int = DESCRIPTOR_LENGTH,
    ):
        self.sources = list(sources) if sources is not None else default_model_sources()
        self.descriptor_length = descriptor_length
        self.logger = setup_logger(self.__class__.__name__)
        self._guard = ModelLoadGuard(self._load_first_available)

    @property
    def models_loaded(self) -> bool:
        return self._guard.loaded

    def ensure_models_loaded(self) -> FaceModels:
        return self._guard.get()

    def extract(self, frame: Optional[np.ndarray]) -> Optional[np.ndarray]:
        """Descriptor of the single most confident face, or None.

        Raises ModelUnavailable when no model source loads; any failure on
        the frame itself is logged and reported as None.
        """
        loaded = self.ensure_models_loaded()
        if frame is None or frame.size == 0:
            return None

        try:
            descriptor = loaded.describe(frame)
        except Exception as exc:
            self.logger.warning("Error extracting face descriptor: %s", exc)
            return None

        if descriptor is None:
            return None
        vector = np.asarray(descriptor, dtype=np.float32).reshape(-1)
        if vector.size != self.descriptor_length:
            self.logger.warning(
                "Discarding descriptor of length %d (expected %d)",
                vector.size,
                self.descriptor_length,
            )
            return None
        return vector

    def extract_from_image(self, image: bytes | str | Path) -> Optional[np.ndarray]:
        if isinstance(image, (bytes, bytearray)):
            frame = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
        else:
            frame = cv2.imread(str(image), cv2.IMREAD_COLOR)
        if frame is None:
            self.logger.warning("Error extracting face descriptor from image: unreadable image")
            return None
        return self.extract(frame)

    def close(self) -> None:
        self._guard.reset()

    def _load_first_available(self) -> FaceModels:
        self.logger.info("Loading face detection models...")
        failures: List[str] = []
        for source in self.sources:
            try:
                loaded = source.load()
            except Exception as exc:
                self.logger.warning("Model source %s failed: %s", source.name, exc)
                failures.append(f"{source.name}: {exc}")
                continue
            self.logger.info("Face detection models loaded from %s", source.name)
            return loaded

        details = " | ".join(failures) if failures else "no model sources configured"
        raise ModelUnavailable(f"Unable to load face detection models. {details}")
