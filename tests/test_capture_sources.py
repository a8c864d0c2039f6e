"""
Tests for Capture Sources Module
================================

Unit tests for capture sources, image quality analysis and PaddleOCR
result parsing. Images are synthetic numpy arrays; OCR is replaced by a
fake text reader.
"""

import sys
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from motomind_vision.capture import (
    CaptureSession,
    CaptureStatus,
    ImageFileCaptureSource,
    PaddleOCRReader,
    StaticCaptureSource,
    TextReader,
    TextReading,
    analyze_image_quality,
    enhance_contrast,
)
from motomind_vision.config import CaptureConfig
from motomind_vision.exceptions import CaptureSourceError
from motomind_vision.plugins import CaptureResult, VisionPluginContext, vin_validation

from conftest import VALID_VIN


class FakeReader(TextReader):
    """Returns fixed text and records the images it was given."""

    def __init__(self, text=f"VIN:{VALID_VIN}", confidence=0.93):
        self.text = text
        self.confidence = confidence
        self.images = []

    @property
    def name(self):
        return "fake"

    def read(self, image):
        self.images.append(image)
        return TextReading(text=self.text, confidence=self.confidence)


@pytest.fixture
def gray_image():
    return np.full((100, 200, 3), 128, dtype=np.uint8)


@pytest.fixture
def checkerboard():
    rows, cols = np.indices((120, 240))
    board = (((rows // 8) + (cols // 8)) % 2 * 255).astype(np.uint8)
    return cv2.cvtColor(board, cv2.COLOR_GRAY2BGR)


# =============================================================================
# Static Source Tests
# =============================================================================

class TestStaticCaptureSource:
    """Tests for the replaying source."""

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            StaticCaptureSource([])

    @pytest.mark.asyncio
    async def test_replays_then_repeats_last(self, vin_context):
        source = StaticCaptureSource([CaptureResult(confidence=0.5), CaptureResult(confidence=0.9)])
        confidences = [(await source.acquire(vin_context)).confidence for _ in range(3)]
        assert confidences == [0.5, 0.9, 0.9]
        assert source.calls == 3

    @pytest.mark.asyncio
    async def test_results_are_copies(self, vin_context):
        source = StaticCaptureSource([CaptureResult(data={'vin': VALID_VIN})])
        first = await source.acquire(vin_context)
        first.data['vin'] = 'CHANGED'
        second = await source.acquire(vin_context)
        assert second.data['vin'] == VALID_VIN

    @pytest.mark.asyncio
    async def test_exceptions_raised(self, vin_context):
        source = StaticCaptureSource([RuntimeError("lens covered"), CaptureResult(confidence=0.9)])
        with pytest.raises(RuntimeError, match="lens covered"):
            await source.acquire(vin_context)
        assert (await source.acquire(vin_context)).confidence == 0.9


# =============================================================================
# Image Quality Tests
# =============================================================================

class TestImageQuality:
    """Tests for image analysis and enhancement."""

    def test_flat_image(self, gray_image):
        quality = analyze_image_quality(gray_image)
        assert quality['width'] == 200
        assert quality['height'] == 100
        assert quality['contrast'] == 0.0
        assert quality['sharpness'] == 0.0
        assert quality['brightness'] == 128.0
        assert quality['quality_score'] == 20.0

    def test_sharp_high_contrast_image(self, checkerboard):
        quality = analyze_image_quality(checkerboard)
        assert quality['contrast'] > 100
        assert quality['sharpness'] > 300
        assert quality['quality_score'] > 90

    def test_grayscale_input(self, checkerboard):
        gray = cv2.cvtColor(checkerboard, cv2.COLOR_BGR2GRAY)
        assert analyze_image_quality(gray)['width'] == 240

    def test_enhance_contrast_returns_bgr(self, checkerboard):
        gray = cv2.cvtColor(checkerboard, cv2.COLOR_BGR2GRAY)
        for attempt in (0, 2):
            enhanced = enhance_contrast(gray, attempt=attempt)
            assert enhanced.shape == (120, 240, 3)
            assert enhanced.dtype == np.uint8


# =============================================================================
# PaddleOCR Parsing Tests
# =============================================================================

class TestPaddleOCRParsing:
    """Tests for PaddleOCR 3.x result parsing."""

    def test_parse_result(self):
        polys = [np.array([[0, 0], [10, 0], [10, 5], [0, 5]]), np.array([[0, 10], [80, 10], [80, 20], [0, 20]])]
        result = [{'rec_texts': ['VIN', VALID_VIN], 'rec_scores': [0.9, 0.8], 'dt_polys': polys}]

        text, confidence, boxes = PaddleOCRReader._parse_result(result)

        assert text == f"VIN {VALID_VIN}"
        assert confidence == pytest.approx(0.85)
        assert len(boxes) == 2
        assert boxes[1]['text'] == VALID_VIN
        assert boxes[0]['polygon'] == [[0, 0], [10, 0], [10, 5], [0, 5]]

    def test_empty_result(self):
        assert PaddleOCRReader._parse_result([]) == ("", 0.0, [])
        assert PaddleOCRReader._parse_result([{'rec_texts': []}]) == ("", 0.0, [])

    def test_read_uses_engine(self):
        reader = PaddleOCRReader()
        reader._ocr = MagicMock()
        reader._ocr.predict.return_value = [{'rec_texts': [VALID_VIN], 'rec_scores': [0.91], 'dt_polys': []}]

        reading = reader.read(np.zeros((10, 10, 3), dtype=np.uint8))

        assert reading.text == VALID_VIN
        assert reading.confidence == pytest.approx(0.91)
        reader._ocr.predict.assert_called_once()

    def test_prediction_failure(self):
        reader = PaddleOCRReader()
        reader._ocr = MagicMock()
        reader._ocr.predict.side_effect = RuntimeError("GPU lost")
        with pytest.raises(CaptureSourceError, match="OCR prediction failed"):
            reader.read(np.zeros((10, 10, 3), dtype=np.uint8))

    def test_missing_paddleocr(self):
        with patch.dict(sys.modules, {'paddleocr': None}):
            with pytest.raises(CaptureSourceError, match="Failed to initialize PaddleOCR"):
                PaddleOCRReader().initialize()


# =============================================================================
# Image Source Tests
# =============================================================================

class TestImageFileCaptureSource:
    """Tests for the image capture source."""

    @pytest.mark.asyncio
    async def test_vin_capture(self, checkerboard, vin_context):
        reader = FakeReader()
        source = ImageFileCaptureSource(checkerboard, reader=reader, config=CaptureConfig())

        result = await source.acquire(vin_context)

        assert result.data == {'vin': VALID_VIN, 'raw_text': f"VIN:{VALID_VIN}"}
        assert result.confidence == 0.93
        capture = result.metadata['capture']
        assert capture['reader'] == 'fake'
        assert capture['path'] is None
        assert capture['preprocessed'] is False
        assert vin_context.image_quality == capture['quality_score']

    @pytest.mark.asyncio
    async def test_document_capture(self, checkerboard):
        context = VisionPluginContext(capture_type="document")
        source = ImageFileCaptureSource(checkerboard, reader=FakeReader(text="INVOICE 42"), config=CaptureConfig())
        result = await source.acquire(context)
        assert result.data == {'text': "INVOICE 42"}

    @pytest.mark.asyncio
    async def test_low_contrast_preprocessed(self, gray_image, vin_context):
        reader = FakeReader()
        source = ImageFileCaptureSource(gray_image, reader=reader, config=CaptureConfig())

        result = await source.acquire(vin_context)

        assert result.metadata['capture']['preprocessed'] is True
        assert reader.images[0].shape == (100, 200, 3)

    @pytest.mark.asyncio
    async def test_retry_forces_preprocessing(self, checkerboard, vin_context):
        source = ImageFileCaptureSource(checkerboard, reader=FakeReader(), config=CaptureConfig())
        vin_context.retry_count = 1
        result = await source.acquire(vin_context)
        assert result.metadata['capture']['preprocessed'] is True

    @pytest.mark.asyncio
    async def test_preprocessing_disabled(self, gray_image, vin_context):
        config = CaptureConfig(preprocess_enabled=False)
        source = ImageFileCaptureSource(gray_image, reader=FakeReader(), config=config)
        result = await source.acquire(vin_context)
        assert result.metadata['capture']['preprocessed'] is False

    @pytest.mark.asyncio
    async def test_image_file(self, tmp_path, checkerboard, vin_context):
        path = tmp_path / "vin.png"
        cv2.imwrite(str(path), checkerboard)
        source = ImageFileCaptureSource(path, reader=FakeReader(), config=CaptureConfig())

        result = await source.acquire(vin_context)

        assert result.metadata['capture']['path'] == str(path)
        assert result.metadata['capture']['width'] == 240

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, vin_context):
        source = ImageFileCaptureSource(tmp_path / "missing.png", reader=FakeReader(), config=CaptureConfig())
        with pytest.raises(CaptureSourceError, match="Image not found"):
            await source.acquire(vin_context)

    @pytest.mark.asyncio
    async def test_unreadable_file(self, tmp_path, vin_context):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")
        source = ImageFileCaptureSource(path, reader=FakeReader(), config=CaptureConfig())
        with pytest.raises(CaptureSourceError, match="Failed to load image"):
            await source.acquire(vin_context)

    @pytest.mark.asyncio
    async def test_session_with_image_source(self, checkerboard, manager):
        await manager.register(vin_validation())
        source = ImageFileCaptureSource(checkerboard, reader=FakeReader(), config=CaptureConfig())

        outcome = await CaptureSession(manager, source).run()

        assert outcome.status == CaptureStatus.SUCCESS
        assert outcome.result.data['vin'] == VALID_VIN
        assert 'capture' in outcome.result.metadata
