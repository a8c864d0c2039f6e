"""
Vision Plugins Module
=====================

Plugin contract, the plugin manager and the built-in plugins.

Built-in plugins:
- vin_validation: ISO 3779 VIN validation
- confidence_scoring: confidence thresholds and retry policy
- vin_decoding: VIN to vehicle information enrichment
"""

from .types import (
    HOOK_CATEGORIES,
    CaptureResult,
    CaptureState,
    FrozenResultError,
    HookCategory,
    HookName,
    ManagerEvent,
    NamespacedMetadata,
    PluginRegistration,
    PluginResultView,
    PluginState,
    PluginType,
    RetryDecision,
    VisionPlugin,
    VisionPluginContext,
)
from .manager import VisionPluginManager
from .vin_validation import VINValidationPlugin, vin_validation
from .confidence_scoring import (
    ConfidenceBadge,
    ConfidenceCheckResult,
    ConfidenceScoringOptions,
    ConfidenceScoringPlugin,
    ConfidenceState,
    ConfidenceTrendTracker,
    RetryStrategy,
    Trend,
    check_confidence,
    confidence_scoring,
    get_confidence_label,
    get_confidence_level,
)
from .vin_decoding import VINDecodingPlugin, vin_decoding

__all__ = [
    # Contract
    "HOOK_CATEGORIES",
    "CaptureResult",
    "CaptureState",
    "FrozenResultError",
    "HookCategory",
    "HookName",
    "ManagerEvent",
    "NamespacedMetadata",
    "PluginRegistration",
    "PluginResultView",
    "PluginState",
    "PluginType",
    "RetryDecision",
    "VisionPlugin",
    "VisionPluginContext",
    # Manager
    "VisionPluginManager",
    # VIN validation
    "VINValidationPlugin",
    "vin_validation",
    # Confidence scoring
    "ConfidenceBadge",
    "ConfidenceCheckResult",
    "ConfidenceScoringOptions",
    "ConfidenceScoringPlugin",
    "ConfidenceState",
    "ConfidenceTrendTracker",
    "RetryStrategy",
    "Trend",
    "check_confidence",
    "confidence_scoring",
    "get_confidence_label",
    "get_confidence_level",
    # VIN decoding
    "VINDecodingPlugin",
    "vin_decoding",
]
