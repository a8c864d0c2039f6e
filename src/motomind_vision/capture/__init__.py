"""
Capture Module
==============

Capture session host, batch capture and capture sources.
"""

from .sources import (
    CaptureSource,
    StaticCaptureSource,
    ImageFileCaptureSource,
    TextReader,
    TextReading,
    PaddleOCRReader,
    analyze_image_quality,
    enhance_contrast,
)
from .session import (
    CaptureOutcome,
    CaptureSession,
    CaptureStatus,
    capture_batch,
)

__all__ = [
    # Sources
    "CaptureSource",
    "StaticCaptureSource",
    "ImageFileCaptureSource",
    "TextReader",
    "TextReading",
    "PaddleOCRReader",
    "analyze_image_quality",
    "enhance_contrast",
    # Session
    "CaptureOutcome",
    "CaptureSession",
    "CaptureStatus",
    "capture_batch",
]
