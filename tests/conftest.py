"""
Shared fixtures for the MotoMind Vision test suite.
"""

import os

import pytest

from motomind_vision.config import reset_config
from motomind_vision.plugins import (
    CaptureResult,
    VisionPluginContext,
    VisionPluginManager,
)


# Check digit 3 (weighted sum 311)
VALID_VIN = "1HGCM82633A004352"
# Check digit X (weighted sum 351)
VALID_VIN_X = "1M8GDM9AXKP042788"
# Same as VALID_VIN with a wrong check digit
BAD_CHECK_DIGIT_VIN = "1HGCM82643A004352"


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Each test starts from default configuration."""
    for key in list(os.environ):
        if key.startswith('MOTOMIND_'):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def vin_context():
    return VisionPluginContext(capture_type="vin")


@pytest.fixture
def manager(vin_context):
    return VisionPluginManager(vin_context)


@pytest.fixture
def vin_result():
    return CaptureResult(data={"vin": VALID_VIN}, confidence=0.95)
