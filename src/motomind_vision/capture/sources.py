"""
Capture Sources - Image Acquisition Adapters
============================================

A capture source produces the raw CaptureResult for one attempt. The
session calls acquire() again on every retry.

Sources:
- StaticCaptureSource: replays prepared results (tests, typed-in text)
- ImageFileCaptureSource: OpenCV image + quality analysis + text reader

Text readers:
- PaddleOCRReader: PaddleOCR backend (optional 'paddle' extra)

Author: MotoMind Project
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import cv2
import numpy as np

from ..config import CaptureConfig
from ..core.vin_utils import extract_vin_from_text
from ..exceptions import CaptureSourceError
from ..plugins.types import CaptureResult, VisionPluginContext

logger = logging.getLogger(__name__)

ImageInput = Union[str, Path, np.ndarray]


class CaptureSource(ABC):
    """Abstract base class for capture sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def acquire(self, context: VisionPluginContext) -> CaptureResult:
        """Produce a fresh raw result for the current attempt."""
        ...


# =============================================================================
# STATIC SOURCE
# =============================================================================

class StaticCaptureSource(CaptureSource):
    """
    Replays queued results in order, one per attempt.

    Items may be CaptureResult instances or exceptions (raised when their
    turn comes). The last item repeats once the queue is exhausted.
    """

    def __init__(self, results: Iterable[Union[CaptureResult, BaseException]], delay: float = 0.0):
        self._results = list(results)
        if not self._results:
            raise ValueError("StaticCaptureSource needs at least one result")
        self.delay = delay
        self.calls = 0

    @property
    def name(self) -> str:
        return "static"

    async def acquire(self, context: VisionPluginContext) -> CaptureResult:
        item = self._results[min(self.calls, len(self._results) - 1)]
        self.calls += 1
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        if isinstance(item, BaseException):
            raise item
        # Each attempt gets its own copy; hooks mutate results in place
        return copy.deepcopy(item)


# =============================================================================
# TEXT READERS
# =============================================================================

@dataclass
class TextReading:
    """Text recognized in an image."""
    text: str
    confidence: float
    boxes: List[Dict[str, Any]] = field(default_factory=list)


class TextReader(ABC):
    """Recognizes text in a BGR image."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def read(self, image: np.ndarray) -> TextReading:
        ...


class PaddleOCRReader(TextReader):
    """
    PaddleOCR text reader.

    Requires the 'paddle' extra (pip install motomind-vision[paddle]). The
    engine is created on first use.
    """

    def __init__(self, lang: str = 'en', ocr_version: str = 'PP-OCRv5', **ocr_kwargs):
        self.lang = lang
        self.ocr_version = ocr_version
        self.ocr_kwargs = ocr_kwargs
        self._ocr = None

    @property
    def name(self) -> str:
        return "paddleocr"

    def initialize(self) -> None:
        if self._ocr is not None:
            return
        try:
            from paddleocr import PaddleOCR

            logger.info(f"Initializing PaddleOCR with {self.ocr_version}...")
            self._ocr = PaddleOCR(
                lang=self.lang,
                ocr_version=self.ocr_version,
                use_doc_orientation_classify=False,
                use_doc_unwarping=False,
                use_textline_orientation=False,
                **self.ocr_kwargs,
            )
            logger.info("PaddleOCR initialized successfully")
        except Exception as e:
            raise CaptureSourceError(
                f"Failed to initialize PaddleOCR: {e}",
                source=self.name,
                details="install with: pip install motomind-vision[paddle]",
            ) from e

    def read(self, image: np.ndarray) -> TextReading:
        self.initialize()
        try:
            result = self._ocr.predict(image)
        except Exception as e:
            raise CaptureSourceError(f"OCR prediction failed: {e}", source=self.name) from e
        text, confidence, boxes = self._parse_result(result)
        return TextReading(text=text, confidence=confidence, boxes=boxes)

    @staticmethod
    def _parse_result(result: Any) -> Tuple[str, float, List[Dict[str, Any]]]:
        """Parse the PaddleOCR 3.x predict() output."""
        if not result:
            return "", 0.0, []

        if isinstance(result, list):
            result = result[0]

        if isinstance(result, dict) or hasattr(result, 'get'):
            texts = list(result.get('rec_texts', []) or [])
            scores = list(result.get('rec_scores', []) or [])
            dt_polys = result.get('dt_polys', []) or []

            if texts:
                boxes = []
                for i, poly in enumerate(dt_polys):
                    boxes.append({
                        "text": texts[i] if i < len(texts) else "",
                        "confidence": float(scores[i]) if i < len(scores) else 0.0,
                        "polygon": poly.tolist() if hasattr(poly, 'tolist') else poly,
                    })
                return ' '.join(texts), float(np.mean(scores)) if scores else 0.0, boxes

        return "", 0.0, []


# =============================================================================
# IMAGE QUALITY
# =============================================================================

def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def analyze_image_quality(image: np.ndarray, sharpness_reference: float = 300.0) -> Dict[str, Any]:
    """
    Measure image characteristics relevant to OCR.

    Returns:
        Dict with width, height, contrast (gray std), brightness (gray
        mean), sharpness (Laplacian variance) and a 0-100 quality_score
        (40 contrast + 40 sharpness + 20 exposure)
    """
    gray = _to_gray(image)
    contrast = float(np.std(gray))
    brightness = float(np.mean(gray))
    sharpness = float(cv2.Laplacian(gray, cv2.CV_64F).var())

    contrast_score = min(contrast / 64.0, 1.0) * 40.0
    sharpness_score = min(sharpness / sharpness_reference, 1.0) * 40.0 if sharpness_reference > 0 else 0.0
    exposure_score = max(0.0, 1.0 - abs(brightness - 128.0) / 128.0) * 20.0

    return {
        'width': int(image.shape[1]),
        'height': int(image.shape[0]),
        'contrast': contrast,
        'brightness': brightness,
        'sharpness': sharpness,
        'quality_score': round(contrast_score + sharpness_score + exposure_score, 1),
    }


def enhance_contrast(image: np.ndarray, clip_limit: float = 2.0, attempt: int = 0) -> np.ndarray:
    """
    CLAHE contrast enhancement, stronger on later attempts.

    Returns a 3-channel BGR image.
    """
    gray = _to_gray(image)
    if attempt > 0:
        clahe = cv2.createCLAHE(clipLimit=clip_limit * 2, tileGridSize=(4, 4))
    else:
        clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(8, 8))
    enhanced = clahe.apply(gray)
    return cv2.cvtColor(enhanced, cv2.COLOR_GRAY2BGR)


# =============================================================================
# IMAGE SOURCE
# =============================================================================

class ImageFileCaptureSource(CaptureSource):
    """
    Reads an image file (or array) and recognizes its text.

    Quality metrics go to metadata['capture'] and context.image_quality.
    For 'vin' captures the best VIN candidate is extracted from the text
    into data['vin']; other captures get data['text'].

    Args:
        image: Image path or BGR numpy array
        reader: Text reader (PaddleOCRReader if None)
        config: Capture settings (pipeline config if None)
    """

    def __init__(
        self,
        image: ImageInput,
        reader: Optional[TextReader] = None,
        config: Optional[CaptureConfig] = None,
    ):
        if config is None:
            from ..config import get_config
            config = get_config().capture
        self.image = image
        self.reader = reader or PaddleOCRReader()
        self.config = config

    @property
    def name(self) -> str:
        return "image"

    def _load_image(self) -> np.ndarray:
        if isinstance(self.image, np.ndarray):
            return self.image
        path = Path(self.image)
        if not path.exists():
            raise CaptureSourceError(f"Image not found: {path}", source=self.name)
        image = cv2.imread(str(path))
        if image is None:
            raise CaptureSourceError(f"Failed to load image: {path}", source=self.name)
        return image

    async def acquire(self, context: VisionPluginContext) -> CaptureResult:
        image = await asyncio.to_thread(self._load_image)
        quality = analyze_image_quality(image, self.config.sharpness_reference)
        context.image_quality = quality['quality_score']
        logger.debug(
            f"Image analysis: contrast={quality['contrast']:.1f}, "
            f"brightness={quality['brightness']:.1f}, sharpness={quality['sharpness']:.1f}"
        )

        preprocessed = False
        if self.config.preprocess_enabled and (
            quality['contrast'] < self.config.low_contrast_threshold or context.retry_count > 0
        ):
            image = enhance_contrast(image, self.config.clahe_clip_limit, attempt=context.retry_count)
            preprocessed = True

        reading = await asyncio.to_thread(self.reader.read, image)
        logger.info(f"{self.reader.name} read {len(reading.text)} chars (confidence={reading.confidence:.3f})")

        if context.capture_type == 'vin':
            data = {'vin': extract_vin_from_text(reading.text), 'raw_text': reading.text}
        else:
            data = {'text': reading.text}

        metadata = {
            'capture': {
                **quality,
                'source': self.name,
                'path': None if isinstance(self.image, np.ndarray) else str(self.image),
                'reader': self.reader.name,
                'preprocessed': preprocessed,
                'boxes': reading.boxes,
            }
        }
        return CaptureResult(data=data, confidence=reading.confidence, metadata=metadata)
