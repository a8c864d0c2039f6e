"""
Confidence Scoring Plugin
=========================

Enforces minimum confidence thresholds and drives the retry decision:
- Per capture type thresholds with a global fallback
- Retry recommendation while attempts remain (non-strict mode)
- Confidence trend over recent attempts
- Confidence badge for render hooks
- Score summary written to the plugin's metadata namespace

The attempt counter and trend tracker belong to one plugin instance, so
create one plugin per capture session.

Usage:
    plugin = confidence_scoring(min_confidence=0.9, thresholds={'vin': 0.95})

Author: MotoMind Project
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, Optional, Union

import numpy as np

from ..exceptions import LowConfidenceError, ValidationFailedError
from .types import (
    CaptureResult,
    HookName,
    PluginResultView,
    PluginType,
    RetryDecision,
    VisionPlugin,
    VisionPluginContext,
)

logger = logging.getLogger(__name__)

PLUGIN_ID = "motomind.confidence-scoring"

DEFAULT_MIN_CONFIDENCE = 0.85
DEFAULT_MAX_RETRIES = 3


# =============================================================================
# OPTIONS AND RESULTS
# =============================================================================

class RetryStrategy(str, Enum):
    IMMEDIATE = "immediate"
    WITH_DELAY = "with-delay"
    MANUAL = "manual"


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class ConfidenceState(str, Enum):
    """Per-document scoring state."""
    PENDING = "pending"
    PASSED = "passed"
    FAILED_RETRY = "failed-retry"
    FAILED_TERMINAL = "failed-terminal"


@dataclass
class ConfidenceScoringOptions:
    """
    Options for the confidence scoring plugin.

    Attributes:
        min_confidence: Threshold used when no per-type threshold matches
        max_retries: Attempts allowed before the failure becomes terminal
        strict_mode: Fail immediately on low confidence
        thresholds: Per capture type thresholds, e.g. {'vin': 0.95}
        retry_strategy: immediate, with-delay or manual
        retry_delay: Seconds to wait between retries (with-delay)
        show_badge: Return a ConfidenceBadge from render hooks
        on_confidence_check: Called with every ConfidenceCheckResult
        on_low_confidence: Called with (confidence, threshold) below threshold
    """
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    max_retries: int = DEFAULT_MAX_RETRIES
    strict_mode: bool = False
    thresholds: Dict[str, float] = field(default_factory=dict)
    retry_strategy: Union[str, RetryStrategy] = RetryStrategy.WITH_DELAY
    retry_delay: float = 1.0
    show_badge: bool = True
    on_confidence_check: Optional[Callable[['ConfidenceCheckResult'], None]] = None
    on_low_confidence: Optional[Callable[[float, float], None]] = None

    def __post_init__(self):
        self.retry_strategy = RetryStrategy(self.retry_strategy)

    @classmethod
    def from_config(cls, config=None, **overrides) -> 'ConfidenceScoringOptions':
        """Build options from the pipeline ConfidenceConfig section."""
        if config is None:
            from ..config import get_config
            config = get_config().confidence
        values = {
            'min_confidence': config.min_confidence,
            'max_retries': config.max_retries,
            'strict_mode': config.strict_mode,
            'thresholds': dict(config.thresholds),
            'retry_strategy': config.retry_strategy,
            'retry_delay': config.retry_delay,
        }
        values.update(overrides)
        return cls(**values)

    def threshold_for(self, capture_type: Optional[str] = None) -> float:
        """Per-type threshold, then min_confidence, then the 0.85 default."""
        if capture_type and capture_type in self.thresholds:
            return self.thresholds[capture_type]
        if self.min_confidence is not None:
            return self.min_confidence
        return DEFAULT_MIN_CONFIDENCE


@dataclass
class ConfidenceCheckResult:
    passed: bool
    confidence: float
    threshold: float
    attempt: int
    should_retry: bool
    message: str


def get_confidence_label(confidence: float) -> str:
    if confidence >= 0.95:
        return 'Excellent'
    if confidence >= 0.9:
        return 'Very Good'
    if confidence >= 0.8:
        return 'Good'
    if confidence >= 0.7:
        return 'Fair'
    if confidence >= 0.5:
        return 'Low'
    return 'Very Low'


def get_confidence_level(confidence: float) -> str:
    """Coarse level for display: high, medium, low or critical."""
    if confidence >= 0.9:
        return 'high'
    if confidence >= 0.75:
        return 'medium'
    if confidence >= 0.5:
        return 'low'
    return 'critical'


def check_confidence(
    result: Union[CaptureResult, PluginResultView],
    options: ConfidenceScoringOptions,
    attempt: int,
    capture_type: Optional[str] = None,
) -> ConfidenceCheckResult:
    """
    Check a capture's confidence against its threshold.

    Args:
        result: Capture result (None confidence reads as 0.0)
        options: Scoring options
        attempt: 1-based attempt number
        capture_type: Selects a per-type threshold when configured

    Returns:
        ConfidenceCheckResult
    """
    confidence = float(result.confidence or 0.0)
    threshold = options.threshold_for(capture_type)

    passed = confidence >= threshold
    should_retry = not passed and not options.strict_mode and attempt < options.max_retries

    if passed:
        message = f"Confidence {confidence * 100:.1f}% meets threshold {threshold * 100:.1f}%"
    elif should_retry:
        message = (
            f"Low confidence {confidence * 100:.1f}% (need {threshold * 100:.1f}%). "
            f"Retry {attempt}/{options.max_retries}"
        )
    else:
        message = f"Confidence {confidence * 100:.1f}% below threshold {threshold * 100:.1f}%"

    return ConfidenceCheckResult(
        passed=passed,
        confidence=confidence,
        threshold=threshold,
        attempt=attempt,
        should_retry=should_retry,
        message=message,
    )


# =============================================================================
# TREND TRACKING
# =============================================================================

class ConfidenceTrendTracker:
    """Keeps the most recent confidence samples and reports their trend."""

    def __init__(self, max_history: int = 10, window: int = 3, tolerance: float = 0.05):
        self.window = window
        self.tolerance = tolerance
        self._history: Deque[float] = deque(maxlen=max_history)

    def add(self, confidence: float) -> None:
        self._history.append(float(confidence))

    def average(self) -> float:
        if not self._history:
            return 0.0
        return float(np.mean(self._history))

    def trend(self) -> Trend:
        if len(self._history) < self.window:
            return Trend.STABLE
        recent = list(self._history)[-self.window:]
        diff = recent[-1] - recent[0]
        if diff > self.tolerance:
            return Trend.IMPROVING
        if diff < -self.tolerance:
            return Trend.DECLINING
        return Trend.STABLE

    def clear(self) -> None:
        self._history.clear()

    @property
    def history(self):
        return list(self._history)

    def __len__(self) -> int:
        return len(self._history)


# =============================================================================
# RENDER NODE
# =============================================================================

@dataclass(frozen=True)
class ConfidenceBadge:
    """Opaque render node describing the confidence badge."""
    confidence: float
    threshold: float

    @property
    def percentage(self) -> int:
        return int(round(self.confidence * 100))

    @property
    def meets_threshold(self) -> bool:
        return self.confidence >= self.threshold

    @property
    def label(self) -> str:
        return get_confidence_label(self.confidence)

    @property
    def level(self) -> str:
        return get_confidence_level(self.confidence)

    def __str__(self) -> str:
        text = f"Confidence: {self.percentage}% ({self.label})"
        if not self.meets_threshold:
            text += f" (need {int(round(self.threshold * 100))}%)"
        return text


# =============================================================================
# PLUGIN
# =============================================================================

class ConfidenceScoringPlugin(VisionPlugin):
    """Confidence threshold validator and retry policy."""

    def __init__(self, options: Optional[ConfidenceScoringOptions] = None):
        super().__init__(
            id=PLUGIN_ID,
            name="Confidence Scoring",
            version="1.0.0",
            type=PluginType.VALIDATOR,
            options=options or ConfidenceScoringOptions(),
            hooks={
                HookName.BEFORE_CAPTURE: self.before_capture,
                HookName.AFTER_CAPTURE: self.after_capture,
                HookName.VALIDATE_RESULT: self.validate_result,
                HookName.ON_ERROR: self.on_error,
                HookName.ON_RETRY: self.on_retry,
                HookName.ON_SUCCESS: self.on_success,
                HookName.ON_CANCEL: self.on_cancel,
                HookName.ENRICH_RESULT: self.enrich_result,
                HookName.RENDER_OVERLAY: self.render_badge,
                HookName.RENDER_CONFIDENCE: self.render_badge,
            },
        )
        self.tracker = ConfidenceTrendTracker()
        self.attempts = 0
        self.state = ConfidenceState.PENDING
        self._capture_type: Optional[str] = None
        self.last_check: Optional[ConfidenceCheckResult] = None

    def reset(self) -> None:
        self.attempts = 0
        self.tracker.clear()
        self.state = ConfidenceState.PENDING
        self._capture_type = None
        self.last_check = None

    def check(self, result: Union[CaptureResult, PluginResultView]) -> ConfidenceCheckResult:
        return check_confidence(result, self.options, self.attempts, self._capture_type)

    def _record(self, check: ConfidenceCheckResult) -> None:
        self.last_check = check
        if check.passed:
            self.state = ConfidenceState.PASSED
        elif check.should_retry:
            self.state = ConfidenceState.FAILED_RETRY
        else:
            self.state = ConfidenceState.FAILED_TERMINAL

    async def before_capture(self, context: VisionPluginContext) -> bool:
        # new document: drop counters left by an earlier failed run
        self.reset()
        return True

    async def after_capture(self, result: PluginResultView, context: VisionPluginContext) -> PluginResultView:
        self.attempts += 1
        self._capture_type = context.capture_type
        self.tracker.add(result.score)

        check = self.check(result)
        self._record(check)
        logger.info(
            f"Confidence check: {check.confidence * 100:.1f}% vs {check.threshold * 100:.1f}% "
            f"passed={check.passed} attempt={check.attempt} trend={self.tracker.trend().value}"
        )

        if self.options.on_confidence_check:
            self.options.on_confidence_check(check)

        if not check.passed:
            logger.warning(f"Low confidence detected: {check.message}")
            if self.options.on_low_confidence:
                self.options.on_low_confidence(check.confidence, check.threshold)

        return result

    async def validate_result(self, result: PluginResultView, context: VisionPluginContext) -> bool:
        check = self.check(result)
        self._record(check)
        if check.passed:
            return True

        logger.error(f"Confidence validation failed: {check.message}")
        if check.should_retry:
            logger.info("Confidence below threshold, retry recommended")
            return False
        if self.options.strict_mode:
            raise LowConfidenceError(check.confidence, check.threshold)
        return False

    async def on_error(self, error: BaseException, context: VisionPluginContext) -> RetryDecision:
        # after-capture may not have run (an earlier plugin raised)
        attempt = max(self.attempts, context.retry_count + 1)
        should_retry = (
            attempt < self.options.max_retries
            and not self.options.strict_mode
            and self.options.retry_strategy != RetryStrategy.MANUAL
        )
        logger.info(
            f"Capture error on attempt {attempt}/{self.options.max_retries}: {error} "
            f"(retry={should_retry}, average={self.tracker.average() * 100:.1f}%, "
            f"trend={self.tracker.trend().value})"
        )

        if not should_retry:
            self.state = ConfidenceState.FAILED_TERMINAL
            message = None
            if isinstance(error, ValidationFailedError) and self.last_check and not self.last_check.passed:
                message = self.last_check.message
            return RetryDecision(retry=False, message=message)

        delay = self.options.retry_delay if self.options.retry_strategy == RetryStrategy.WITH_DELAY else 0.0
        return RetryDecision(
            retry=True,
            delay=delay,
            message=f"Low confidence. Retrying ({attempt}/{self.options.max_retries})...",
        )

    async def on_retry(self, context: VisionPluginContext, attempt: int) -> None:
        trend = self.tracker.trend()
        logger.info(f"Retry attempt {attempt}/{self.options.max_retries}, confidence trend: {trend.value}")
        if trend == Trend.DECLINING and self.attempts >= 2:
            logger.warning("Confidence declining, capture conditions may need improving (lighting, steadiness)")

    async def on_success(self, result: CaptureResult, context: VisionPluginContext) -> None:
        logger.info(
            f"Capture succeeded: confidence={result.score * 100:.1f}% attempts={self.attempts} "
            f"average={self.tracker.average() * 100:.1f}%"
        )
        self.reset()

    async def on_cancel(self, context: VisionPluginContext) -> None:
        logger.info("Capture cancelled, resetting confidence state")
        self.reset()

    async def enrich_result(self, result: PluginResultView, context: VisionPluginContext) -> PluginResultView:
        check = self.check(result)
        result.metadata[self.namespace] = {
            'score': check.confidence,
            'threshold': check.threshold,
            'passed': check.passed,
            'attempts': self.attempts,
            'average_confidence': self.tracker.average(),
            'trend': self.tracker.trend().value,
            'label': get_confidence_label(check.confidence),
        }
        return result

    def render_badge(self, context: VisionPluginContext) -> Optional[ConfidenceBadge]:
        if not self.options.show_badge or context.result is None or context.result.confidence is None:
            return None
        return ConfidenceBadge(
            confidence=context.result.score,
            threshold=self.options.threshold_for(context.capture_type),
        )


def confidence_scoring(options: Optional[ConfidenceScoringOptions] = None, **kwargs) -> ConfidenceScoringPlugin:
    """
    Create a confidence scoring plugin.

    Args:
        options: Scoring options; built from the pipeline config if None
        **kwargs: Overrides for ConfidenceScoringOptions fields
    """
    if options is None:
        options = ConfidenceScoringOptions.from_config(**kwargs)
    elif kwargs:
        raise TypeError("Pass either options or keyword overrides, not both")
    return ConfidenceScoringPlugin(options)
