"""
Vision Pipeline Exceptions
==========================

Structured error types shared by every layer of the capture pipeline.

Each exception carries a machine-readable ``error_code`` and a ``context``
dict so the CLI (or any host) can serialize failures without string parsing.

Author: MotoMind Project
"""

from typing import Any, Dict, List, Optional


class VisionPipelineError(Exception):
    """
    Base exception for vision pipeline errors.

    Provides structured error information with error codes for programmatic handling.
    """

    def __init__(self, message: str, error_code: str = "PIPELINE_ERROR", context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(VisionPipelineError):
    """Raised when the pipeline is misconfigured."""

    def __init__(self, message: str, config_key: Optional[str] = None, expected: Optional[str] = None):
        super().__init__(
            message=f"Configuration error: {message}",
            error_code="CONFIG_ERROR",
            context={"config_key": config_key, "expected": expected}
        )
        self.config_key = config_key
        self.expected = expected


# =============================================================================
# PLUGIN ERRORS
# =============================================================================

class PluginError(VisionPipelineError):
    """Base class for plugin related failures."""

    def __init__(self, message: str, plugin_id: Optional[str] = None, error_code: str = "PLUGIN_ERROR"):
        super().__init__(message, error_code=error_code, context={"plugin_id": plugin_id})
        self.plugin_id = plugin_id


class PluginRegistrationError(PluginError):
    """Raised when a plugin cannot be registered or its init() fails."""

    def __init__(self, plugin_id: Optional[str], reason: str):
        super().__init__(
            f"Failed to register plugin {plugin_id!r}: {reason}",
            plugin_id=plugin_id,
            error_code="PLUGIN_REGISTRATION_ERROR",
        )
        self.reason = reason


class MetadataNamespaceError(PluginError):
    """Raised when a plugin writes outside its own metadata namespace."""

    def __init__(self, plugin_id: str, key: str):
        super().__init__(
            f"Plugin {plugin_id!r} may only write metadata[{plugin_id!r}], not metadata[{key!r}]",
            plugin_id=plugin_id,
            error_code="METADATA_NAMESPACE_ERROR",
        )
        self.key = key


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationFailedError(VisionPipelineError):
    """Raised when a validate-result handler rejects the capture."""

    def __init__(self, message: str = "Validation failed", plugin_id: Optional[str] = None):
        super().__init__(message, error_code="VALIDATION_FAILED", context={"plugin_id": plugin_id})
        self.plugin_id = plugin_id


class VINValidationError(ValidationFailedError):
    """Raised by the VIN validation plugin when a captured VIN is invalid."""

    def __init__(
        self,
        vin: str,
        errors: List[str],
        warnings: Optional[List[str]] = None,
        strict: bool = False,
    ):
        super().__init__(f"Invalid VIN: {'; '.join(errors) or 'validation failed'}")
        self.error_code = "INVALID_VIN"
        self.vin = vin
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        self.strict = strict
        self.context.update({"vin": vin, "errors": self.errors, "warnings": self.warnings, "strict": strict})


class LowConfidenceError(ValidationFailedError):
    """Raised in strict mode when a capture is below its confidence threshold."""

    def __init__(self, confidence: float, threshold: float):
        super().__init__(
            f"Confidence {confidence * 100:.1f}% below required {threshold * 100:.1f}%"
        )
        self.error_code = "LOW_CONFIDENCE"
        self.confidence = confidence
        self.threshold = threshold
        self.context.update({"confidence": confidence, "threshold": threshold})


# =============================================================================
# DECODING ERRORS
# =============================================================================

class DecodingError(VisionPipelineError):
    """Raised when a VIN decode provider fails."""

    def __init__(self, message: str, provider: str = "unknown", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            error_code="DECODING_ERROR",
            context={"provider": provider, "details": details or {}},
        )
        self.provider = provider


class DecodingTimeoutError(DecodingError):
    """Raised when a decode provider does not answer within the timeout."""

    def __init__(self, provider: str = "unknown", timeout: Optional[float] = None):
        super().__init__("VIN decoding timeout", provider=provider, details={"timeout": timeout})
        self.error_code = "DECODING_TIMEOUT"
        self.timeout = timeout


# =============================================================================
# CAPTURE ERRORS
# =============================================================================

class CaptureSourceError(VisionPipelineError):
    """Raised when an image cannot be acquired or read."""

    def __init__(self, message: str, source: str = "unknown", details: Optional[str] = None):
        super().__init__(
            message=f"Capture source error ({source}): {message}",
            error_code="CAPTURE_SOURCE_ERROR",
            context={"source": source, "details": details}
        )
        self.source = source
        self.details = details
