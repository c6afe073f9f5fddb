"""OCR engine lifecycle and the progress-reporting recognition pipeline."""

from .engine import EngineHolder, EngineStatus, OcrEngine, TesseractEngine, default_holder, open_image
from .pipeline import OcrCompleted, OcrPipeline, ProgressEvent

__all__ = [
    "EngineHolder",
    "EngineStatus",
    "OcrEngine",
    "TesseractEngine",
    "default_holder",
    "open_image",
    "OcrCompleted",
    "OcrPipeline",
    "ProgressEvent",
]
