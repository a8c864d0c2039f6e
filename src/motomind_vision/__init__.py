"""
MotoMind Vision Pipeline
========================

Vision capture and plugin pipeline for vehicle documents (VIN plates,
odometers, receipts, license plates).

Package Structure:
    motomind_vision/
    ├── core/           # VIN constants, ISO 3779 validation
    ├── decoding/       # VIN decode providers and cache
    ├── plugins/        # Plugin contract, manager, built-in plugins
    ├── capture/        # Capture session host and sources
    ├── config.py       # Pipeline configuration
    ├── exceptions.py   # Error taxonomy
    └── cli.py          # Command line interface

Quick Start:
    from motomind_vision.plugins import (
        VisionPluginContext, VisionPluginManager,
        vin_validation, confidence_scoring,
    )
    from motomind_vision.capture import CaptureSession, ImageFileCaptureSource

    async with VisionPluginManager(VisionPluginContext(capture_type="vin")) as manager:
        await manager.register_all([vin_validation(), confidence_scoring()])
        outcome = await CaptureSession(manager, ImageFileCaptureSource("plate.jpg")).run()
        print(outcome.status, outcome.result.data["vin"])

    # Validation only
    from motomind_vision.core import validate_vin
    print(validate_vin("1HGCM82633A004352").valid)

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "MotoMind Team"

# Core exports (lightweight, always available)
from .core import (
    VINConstants,
    VIN_LENGTH,
    VINValidationOptions,
    VINValidationResult,
    validate_vin,
    calculate_check_digit,
    extract_vin_from_text,
)
from .exceptions import VisionPipelineError

__all__ = [
    "__version__",
    "__author__",
    # Core
    "VINConstants",
    "VIN_LENGTH",
    "VINValidationOptions",
    "VINValidationResult",
    "validate_vin",
    "calculate_check_digit",
    "extract_vin_from_text",
    # Errors
    "VisionPipelineError",
]
