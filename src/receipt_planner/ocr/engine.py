"""Tesseract-backed OCR engine and its process-wide lifecycle holder."""

from __future__ import annotations

import io
import os
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Union

import pytesseract
from PIL import Image, ImageOps

from ..domain.errors import EngineNotReady
from ..logging import get_logger

LOG = get_logger("ocr-engine")

ImageSource = Union[bytes, bytearray, str, os.PathLike, Image.Image]
ProgressCallback = Callable[[float], None]


class OcrEngine(Protocol):
    def load(self) -> None:
        ...

    def recognize(self, image: ImageSource, language: str, on_progress: ProgressCallback) -> str:
        """Return recognized text; ``on_progress`` receives fractions in [0, 1]."""
        ...


def open_image(image: ImageSource) -> Image.Image:
    """Open bytes, a path or an existing PIL image without touching the source."""
    if isinstance(image, Image.Image):
        return image
    if isinstance(image, (bytes, bytearray)):
        img = Image.open(io.BytesIO(bytes(image)))
    else:
        img = Image.open(os.fspath(image))
    img.load()
    return img


def preprocess(img: Image.Image) -> Image.Image:
    """Grayscale + autocontrast; receipts are thermal prints with low contrast."""
    gray = ImageOps.exif_transpose(img).convert("L")
    return ImageOps.autocontrast(gray)


class TesseractEngine:
    """OCR engine on top of the local Tesseract binary via pytesseract."""

    def __init__(self, *, tesseract_cmd: Optional[str] = None, config: str = "--psm 4") -> None:
        self.tesseract_cmd = tesseract_cmd
        self.config = config

    def load(self) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        version = pytesseract.get_tesseract_version()
        LOG.info(f"Tesseract {version} available")

    def recognize(self, image: ImageSource, language: str, on_progress: ProgressCallback) -> str:
        on_progress(0.0)
        img = open_image(image)
        on_progress(0.2)
        prepared = preprocess(img)
        on_progress(0.4)
        text = pytesseract.image_to_string(prepared, lang=language, config=self.config)
        on_progress(1.0)
        return text


class EngineStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class EngineHolder:
    """Lazily initialized engine with an observable ready/unavailable/pending state.

    ``load`` makes at most one attempt for the life of the holder; a failed
    load leaves the holder UNAVAILABLE until the process restarts.
    """

    def __init__(self, engine: OcrEngine) -> None:
        self._engine = engine
        self._status = EngineStatus.PENDING
        self._error: Optional[BaseException] = None
        self._attempted = False
        self._lock = threading.Lock()

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def load(self) -> EngineStatus:
        with self._lock:
            if self._attempted:
                return self._status
            self._attempted = True
        try:
            self._engine.load()
        except Exception as exc:
            self._error = exc
            self._status = EngineStatus.UNAVAILABLE
            LOG.error(f"OCR engine failed to load: {exc}")
            return self._status
        self._status = EngineStatus.READY
        return self._status

    def require(self) -> OcrEngine:
        if self._status is EngineStatus.READY:
            return self._engine
        if self._status is EngineStatus.UNAVAILABLE:
            raise EngineNotReady(f"engine unavailable: {self._error}")
        raise EngineNotReady("engine is still loading")

    def describe(self) -> Dict[str, Any]:
        return {"status": self._status.value, "error": str(self._error) if self._error else None}


_default_holder: Optional[EngineHolder] = None
_default_lock = threading.Lock()


def default_holder() -> EngineHolder:
    """Return the process-wide holder around :class:`TesseractEngine`."""
    global _default_holder
    with _default_lock:
        if _default_holder is None:
            _default_holder = EngineHolder(TesseractEngine())
        return _default_holder
