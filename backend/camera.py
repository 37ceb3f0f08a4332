import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import cv2  # type: ignore

from backend import config
from backend.errors import ResourceError

logger = logging.getLogger(__name__)

# (x, y, width, height) in frame pixels
BoundingBox = tuple[int, int, int, int]


@dataclass(frozen=True)
class FaceDetection:
    embedding: Sequence[float]
    box: BoundingBox | None = None


class EmbeddingProvider(Protocol):
    """Black-box face model: frame -> zero or more embeddings."""

    def load(self) -> None:
        """Prepare the model. Raising here keeps the session Idle."""

    def detect(self, frame: Any) -> list[FaceDetection]:
        ...


class FrameSource(Protocol):
    """Exclusively owned for the lifetime of an Active session."""

    def open(self) -> None:
        ...

    def read(self) -> Any:
        ...

    def close(self) -> None:
        ...


class CameraFrameSource:
    def __init__(self, device: int | str):
        self.device = device
        self._capture = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def open(self) -> None:
        if self._capture is not None:
            return
        capture = cv2.VideoCapture(self.device)
        if not capture.isOpened():
            capture.release()
            logger.error("Could not open camera device %r", self.device)
            raise ResourceError("Camera access denied. Please check permissions.")
        self._capture = capture
        logger.info("Camera device %r opened", self.device)

    def read(self):
        if self._capture is None:
            raise ResourceError("Camera is not open.")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise ResourceError("Camera stopped delivering frames.")
        return frame

    def close(self) -> None:
        if self._capture is None:
            return
        self._capture.release()
        self._capture = None
        logger.info("Camera device %r released", self.device)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def camera_for_facing_mode(facing_mode: str) -> CameraFrameSource:
    """Front ("user") or rear ("environment") camera; not opened yet."""
    if facing_mode == "environment":
        return CameraFrameSource(config.CAMERA_REAR_DEVICE)
    return CameraFrameSource(config.CAMERA_FRONT_DEVICE)
