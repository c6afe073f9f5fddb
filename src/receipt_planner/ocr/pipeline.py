"""Turn an image into text plus an ordered stream of progress events."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Union

from ..config import DEFAULT_OCR_LANGUAGE
from ..domain.errors import RecognitionFailed
from ..logging import get_logger
from .engine import EngineHolder, ImageSource, OcrEngine

LOG = get_logger("ocr-pipeline")


@dataclass(frozen=True)
class ProgressEvent:
    percent: int


@dataclass(frozen=True)
class OcrCompleted:
    text: str


OcrEvent = Union[ProgressEvent, OcrCompleted]


def _to_percent(fraction: float) -> int:
    try:
        pct = int(round(float(fraction) * 100))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(100, pct))


class OcrPipeline:
    """Stateless per call; only the engine holder carries process-wide state."""

    def __init__(self, holder: EngineHolder, *, language: str = DEFAULT_OCR_LANGUAGE) -> None:
        self.holder = holder
        self.language = language

    def stream(self, image: ImageSource) -> AsyncIterator[OcrEvent]:
        """Return the event stream for one recognition.

        Raises EngineNotReady right away (before any event) when the engine
        has not loaded. The stream yields non-decreasing ProgressEvents in
        [0, 100] and ends with exactly one OcrCompleted, or raises
        RecognitionFailed with the engine's exception as cause.
        """
        engine = self.holder.require()
        return self._run(engine, image)

    async def _run(self, engine: OcrEngine, image: ImageSource) -> AsyncIterator[OcrEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(fraction: float) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, _to_percent(fraction))

        LOG.info(f"Recognizing receipt image (lang={self.language})")
        task = asyncio.ensure_future(asyncio.to_thread(engine.recognize, image, self.language, on_progress))
        # progress callbacks are queued before the task resolves, so the sentinel arrives last
        task.add_done_callback(lambda _t: queue.put_nowait(None))

        last = -1
        while True:
            pct = await queue.get()
            if pct is None:
                break
            if pct > last:
                last = pct
                yield ProgressEvent(pct)

        try:
            text = task.result()
        except Exception as exc:
            LOG.error(f"Recognition failed: {exc}")
            raise RecognitionFailed(str(exc) or type(exc).__name__, cause=exc) from exc
        text = text if isinstance(text, str) else ""
        LOG.info(f"Recognized {len(text)} characters")
        yield OcrCompleted(text)

    async def extract_text(
        self,
        image: ImageSource,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> str:
        """Consume :meth:`stream` and return the recognized text (possibly empty)."""
        text = ""
        async for event in self.stream(image):
            if isinstance(event, ProgressEvent):
                if on_progress is not None:
                    on_progress(event)
            else:
                text = event.text
        return text
