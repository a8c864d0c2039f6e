"""
Tests for Built-in Plugins
==========================

Unit tests for the VIN validation, confidence scoring and VIN decoding
plugins, run through a VisionPluginManager the way a capture host would.
"""

import asyncio

import pytest

from motomind_vision.core import VINValidationOptions
from motomind_vision.decoding import (
    DecodedVehicleInfo,
    DecodingOptions,
    MockDecodeProvider,
    VINCache,
    VINDecodeProvider,
)
from motomind_vision.exceptions import (
    LowConfidenceError,
    ValidationFailedError,
    VINValidationError,
)
from motomind_vision.plugins import (
    CaptureResult,
    ConfidenceBadge,
    ConfidenceScoringOptions,
    ConfidenceState,
    ConfidenceTrendTracker,
    PluginResultView,
    RetryDecision,
    RetryStrategy,
    Trend,
    VisionPluginContext,
    VisionPluginManager,
    check_confidence,
    confidence_scoring,
    get_confidence_label,
    get_confidence_level,
    vin_decoding,
    vin_validation,
)

from conftest import BAD_CHECK_DIGIT_VIN, VALID_VIN


def view(plugin, result):
    return PluginResultView(result, plugin.id)


class SlowProvider(VINDecodeProvider):
    @property
    def name(self):
        return "slow"

    async def decode(self, vin):
        await asyncio.sleep(1.0)
        return DecodedVehicleInfo(vin=vin)


class BrokenProvider(VINDecodeProvider):
    @property
    def name(self):
        return "broken"

    async def decode(self, vin):
        raise ConnectionError("service unavailable")


# =============================================================================
# VIN Validation Plugin Tests
# =============================================================================

class TestVINValidationPlugin:
    """Tests for the VIN validation plugin."""

    @pytest.mark.asyncio
    async def test_valid_vin_normalized(self, manager):
        plugin = vin_validation()
        await manager.register(plugin)
        result = CaptureResult(data={'vin': VALID_VIN.lower()}, confidence=0.9)

        final = await manager.after_capture(result)

        assert final.data['vin'] == VALID_VIN
        metadata = final.metadata[plugin.id]
        assert metadata['validated'] is True
        assert metadata['structure']['wmi'] == '1HG'
        assert await manager.validate_result(final) is True

    @pytest.mark.asyncio
    async def test_missing_vin_recorded(self, manager):
        plugin = vin_validation()
        await manager.register(plugin)

        final = await manager.after_capture(CaptureResult(data={}, confidence=0.9))

        assert final.metadata[plugin.id]['validated'] is False
        assert final.metadata[plugin.id]['errors']
        with pytest.raises(ValidationFailedError):
            await manager.validate_result(final)

    @pytest.mark.asyncio
    async def test_invalid_vin_raises(self, manager):
        await manager.register(vin_validation())
        with pytest.raises(VINValidationError) as exc_info:
            await manager.after_capture(CaptureResult(data={'vin': 'SHORT'}, confidence=0.9))

        assert exc_info.value.error_code == "INVALID_VIN"
        assert not exc_info.value.strict
        assert await manager.on_error(exc_info.value) is None

    @pytest.mark.asyncio
    async def test_bad_check_digit_warns_only(self, manager):
        plugin = vin_validation()
        await manager.register(plugin)
        final = await manager.after_capture(CaptureResult(data={'vin': BAD_CHECK_DIGIT_VIN}, confidence=0.9))
        assert final.metadata[plugin.id]['warnings']

    @pytest.mark.asyncio
    async def test_strict_mode_declines_retry(self, manager):
        """Test a strict VIN failure yields a no-retry decision."""
        await manager.register(vin_validation(strict_mode=True))
        with pytest.raises(VINValidationError) as exc_info:
            await manager.after_capture(CaptureResult(data={'vin': BAD_CHECK_DIGIT_VIN}, confidence=0.9))

        decision = await manager.on_error(exc_info.value)
        assert decision.retry is False
        assert "check digit" in decision.message

    @pytest.mark.asyncio
    async def test_other_capture_types_skipped(self):
        manager = VisionPluginManager(VisionPluginContext(capture_type="document"))
        await manager.register(vin_validation())
        result = CaptureResult(data={'text': 'INVOICE'}, confidence=0.9)

        final = await manager.after_capture(result)

        assert final.metadata == {}
        assert await manager.validate_result(final) is True

    def test_options_and_overrides_exclusive(self):
        with pytest.raises(TypeError):
            vin_validation(VINValidationOptions(), strict_mode=True)


# =============================================================================
# Confidence Scoring Tests
# =============================================================================

class TestCheckConfidence:
    """Tests for the pure confidence check."""

    def test_retry_recommended_below_threshold(self):
        check = check_confidence(CaptureResult(confidence=0.82), ConfidenceScoringOptions(), attempt=1)
        assert check.passed is False
        assert check.should_retry is True
        assert check.threshold == 0.85

    def test_retries_exhausted(self):
        check = check_confidence(CaptureResult(confidence=0.82), ConfidenceScoringOptions(max_retries=3), attempt=3)
        assert check.passed is False
        assert check.should_retry is False

    def test_strict_never_retries(self):
        check = check_confidence(CaptureResult(confidence=0.5), ConfidenceScoringOptions(strict_mode=True), attempt=1)
        assert check.should_retry is False

    def test_threshold_is_inclusive(self):
        assert check_confidence(CaptureResult(confidence=0.85), ConfidenceScoringOptions(), attempt=1).passed

    def test_none_confidence_reads_zero(self):
        check = check_confidence(CaptureResult(), ConfidenceScoringOptions(), attempt=1)
        assert check.confidence == 0.0
        assert not check.passed

    def test_per_type_threshold(self):
        options = ConfidenceScoringOptions(min_confidence=0.80, thresholds={'vin': 0.95})
        assert options.threshold_for('vin') == 0.95
        assert options.threshold_for('document') == 0.80
        assert options.threshold_for(None) == 0.80

    def test_min_confidence_none_falls_back_to_default(self):
        assert ConfidenceScoringOptions(min_confidence=None).threshold_for('vin') == 0.85

    def test_options_from_config(self, monkeypatch):
        monkeypatch.setenv('MOTOMIND_MIN_CONFIDENCE', '0.7')
        monkeypatch.setenv('MOTOMIND_MAX_RETRIES', '5')
        options = ConfidenceScoringOptions.from_config()
        assert options.min_confidence == 0.7
        assert options.max_retries == 5
        assert options.retry_strategy == RetryStrategy.WITH_DELAY


class TestConfidenceHelpers:
    """Tests for labels, levels, trend and badge."""

    @pytest.mark.parametrize("confidence,label", [
        (0.97, 'Excellent'), (0.92, 'Very Good'), (0.85, 'Good'),
        (0.75, 'Fair'), (0.6, 'Low'), (0.3, 'Very Low'),
    ])
    def test_labels(self, confidence, label):
        assert get_confidence_label(confidence) == label

    def test_levels(self):
        assert get_confidence_level(0.95) == 'high'
        assert get_confidence_level(0.8) == 'medium'
        assert get_confidence_level(0.6) == 'low'
        assert get_confidence_level(0.2) == 'critical'

    def test_trend(self):
        tracker = ConfidenceTrendTracker()
        tracker.add(0.5)
        tracker.add(0.6)
        assert tracker.trend() == Trend.STABLE
        tracker.add(0.7)
        assert tracker.trend() == Trend.IMPROVING
        assert tracker.average() == pytest.approx(0.6)

    def test_declining_trend(self):
        tracker = ConfidenceTrendTracker()
        for value in (0.9, 0.85, 0.8):
            tracker.add(value)
        assert tracker.trend() == Trend.DECLINING

    def test_history_bounded(self):
        tracker = ConfidenceTrendTracker(max_history=3)
        for value in (0.1, 0.2, 0.3, 0.4):
            tracker.add(value)
        assert tracker.history == [0.2, 0.3, 0.4]

    def test_badge(self):
        badge = ConfidenceBadge(confidence=0.82, threshold=0.85)
        assert badge.percentage == 82
        assert not badge.meets_threshold
        assert str(badge) == "Confidence: 82% (Good) (need 85%)"


class TestConfidenceScoringPlugin:
    """Tests for the confidence scoring plugin hooks."""

    @pytest.mark.asyncio
    async def test_low_confidence_fails_validation_then_retries(self, manager):
        plugin = confidence_scoring(retry_delay=0.25)
        await manager.register(plugin)
        result = CaptureResult(data={'vin': VALID_VIN}, confidence=0.82)

        await manager.after_capture(result)
        with pytest.raises(ValidationFailedError) as exc_info:
            await manager.validate_result(result)
        decision = await manager.on_error(exc_info.value)

        assert plugin.attempts == 1
        assert plugin.state == ConfidenceState.FAILED_RETRY
        assert decision.retry is True
        assert decision.delay == 0.25

    @pytest.mark.asyncio
    async def test_exhausted_retries_decline_with_message(self, vin_context):
        plugin = confidence_scoring(max_retries=1)
        result = CaptureResult(data={'vin': VALID_VIN}, confidence=0.82)

        await plugin.after_capture(view(plugin, result), vin_context)
        assert await plugin.validate_result(view(plugin, result), vin_context) is False
        decision = await plugin.on_error(ValidationFailedError(), vin_context)

        assert decision.retry is False
        assert "below threshold" in decision.message
        assert plugin.state == ConfidenceState.FAILED_TERMINAL

    @pytest.mark.asyncio
    async def test_vin_threshold_applies(self, vin_context):
        plugin = confidence_scoring(min_confidence=0.80, thresholds={'vin': 0.95})
        result = CaptureResult(data={'vin': VALID_VIN}, confidence=0.9)

        await plugin.after_capture(view(plugin, result), vin_context)

        assert plugin.last_check.threshold == 0.95
        assert not plugin.last_check.passed

    @pytest.mark.asyncio
    async def test_strict_mode_raises(self, vin_context):
        plugin = confidence_scoring(strict_mode=True)
        result = CaptureResult(confidence=0.5)
        await plugin.after_capture(view(plugin, result), vin_context)

        with pytest.raises(LowConfidenceError) as exc_info:
            await plugin.validate_result(view(plugin, result), vin_context)
        assert exc_info.value.threshold == 0.85

        decision = await plugin.on_error(exc_info.value, vin_context)
        assert decision.retry is False

    @pytest.mark.asyncio
    async def test_retry_strategies(self, vin_context):
        immediate = confidence_scoring(retry_strategy="immediate")
        immediate.attempts = 1
        assert (await immediate.on_error(RuntimeError(), vin_context)).delay == 0.0

        manual = confidence_scoring(retry_strategy=RetryStrategy.MANUAL)
        manual.attempts = 1
        assert (await manual.on_error(RuntimeError(), vin_context)).retry is False

    @pytest.mark.asyncio
    async def test_callbacks(self, vin_context):
        checks = []
        low = []
        plugin = confidence_scoring(
            on_confidence_check=checks.append,
            on_low_confidence=lambda confidence, threshold: low.append((confidence, threshold)),
        )
        await plugin.after_capture(view(plugin, CaptureResult(confidence=0.6)), vin_context)
        await plugin.after_capture(view(plugin, CaptureResult(confidence=0.9)), vin_context)

        assert [c.attempt for c in checks] == [1, 2]
        assert low == [(0.6, 0.85)]

    @pytest.mark.asyncio
    async def test_enrich_writes_score_summary(self, manager):
        plugin = confidence_scoring()
        await manager.register(plugin)
        result = CaptureResult(data={'vin': VALID_VIN}, confidence=0.92)

        await manager.after_capture(result)
        final = await manager.enrich_result(result)

        summary = final.metadata[plugin.id]
        assert summary['passed'] is True
        assert summary['attempts'] == 1
        assert summary['label'] == 'Very Good'
        assert summary['trend'] == 'stable'

    @pytest.mark.asyncio
    async def test_success_and_cancel_reset(self, manager, vin_result):
        plugin = confidence_scoring()
        await manager.register(plugin)
        await manager.after_capture(vin_result)
        assert plugin.attempts == 1

        await manager.on_success(vin_result)
        assert plugin.attempts == 0
        assert len(plugin.tracker) == 0

        await manager.after_capture(vin_result)
        await manager.on_cancel()
        assert plugin.attempts == 0
        assert plugin.state == ConfidenceState.PENDING

    @pytest.mark.asyncio
    async def test_render_badge(self, manager, vin_context):
        await manager.register(confidence_scoring())
        assert manager.render_confidence() == []

        vin_context.result = CaptureResult(confidence=0.96)
        badges = manager.render_confidence()
        assert len(badges) == 1
        assert badges[0].meets_threshold
        assert manager.render_overlay() == badges

    @pytest.mark.asyncio
    async def test_badge_hidden(self, manager, vin_context):
        await manager.register(confidence_scoring(show_badge=False))
        vin_context.result = CaptureResult(confidence=0.96)
        assert manager.render_confidence() == []


# =============================================================================
# VIN Decoding Plugin Tests
# =============================================================================

class TestVINDecodingPlugin:
    """Tests for the VIN decoding plugin."""

    @pytest.mark.asyncio
    async def test_enriches_result(self, manager):
        plugin = vin_decoding(DecodingOptions(), provider=MockDecodeProvider(latency=0))
        await manager.register(plugin)
        result = CaptureResult(data={'vin': VALID_VIN}, confidence=0.95)

        final = await manager.enrich_result(result)

        assert final.data['make'] == 'Honda'
        assert final.data['model'] == 'Model X'
        assert final.data['year'] == 2003
        assert final.data['vin'] == VALID_VIN
        metadata = final.metadata[plugin.id]
        assert metadata['decoded'] is True
        assert metadata['provider'] == 'mock'
        assert metadata['vehicle_info']['manufacturer'] == 'Honda'

    @pytest.mark.asyncio
    async def test_extract_fields(self, manager):
        options = DecodingOptions(extract_fields=['make', 'year'])
        await manager.register(vin_decoding(options, provider=MockDecodeProvider(latency=0)))

        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))

        assert set(final.data) == {'vin', 'make', 'year'}

    @pytest.mark.asyncio
    async def test_enrichment_disabled(self, manager):
        plugin = vin_decoding(DecodingOptions(enrich_result=False), provider=MockDecodeProvider(latency=0))
        await manager.register(plugin)

        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))

        assert final.data == {'vin': VALID_VIN}
        assert final.metadata[plugin.id]['decoded'] is True

    @pytest.mark.asyncio
    async def test_provider_error_recorded(self, manager):
        errors = []
        options = DecodingOptions(on_decode_error=errors.append)
        plugin = vin_decoding(options, provider=BrokenProvider())
        await manager.register(plugin)

        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))

        metadata = final.metadata[plugin.id]
        assert metadata['decoded'] is False
        assert metadata['timeout'] is False
        assert "service unavailable" in metadata['error']
        assert errors == [metadata['error']]

    @pytest.mark.asyncio
    async def test_timeout_recorded(self, manager):
        plugin = vin_decoding(DecodingOptions(timeout=0.01), provider=SlowProvider())
        await manager.register(plugin)

        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))

        assert final.metadata[plugin.id] == {
            'decoded': False,
            'error': 'VIN decoding timeout',
            'timeout': True,
        }

    @pytest.mark.asyncio
    async def test_unknown_provider_recorded(self, manager):
        errors = []
        plugin = vin_decoding(DecodingOptions(api_provider="bogus", on_decode_error=errors.append))
        await manager.register(plugin)

        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))

        metadata = final.metadata[plugin.id]
        assert metadata['decoded'] is False
        assert metadata['timeout'] is False
        assert "Unknown decode provider" in metadata['error']
        assert errors == [metadata['error']]

    @pytest.mark.asyncio
    async def test_raising_callbacks_do_not_lose_metadata(self, manager):
        def boom(*args):
            raise RuntimeError("callback exploded")

        decoded = vin_decoding(DecodingOptions(on_decode=boom), provider=MockDecodeProvider(latency=0))
        failed = vin_decoding(DecodingOptions(on_decode_error=boom), provider=BrokenProvider())

        await manager.register(decoded)
        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))
        assert final.metadata[decoded.id]['decoded'] is True
        assert final.data['make'] == 'Honda'

        await manager.unregister(decoded.id)
        await manager.register(failed)
        final = await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))
        assert final.metadata[failed.id]['decoded'] is False
        assert "service unavailable" in final.metadata[failed.id]['error']

    @pytest.mark.asyncio
    async def test_no_vin_skipped(self, manager):
        provider = MockDecodeProvider(latency=0)
        await manager.register(vin_decoding(DecodingOptions(), provider=provider))

        final = await manager.enrich_result(CaptureResult(data={'text': 'x'}, confidence=0.95))

        assert provider.calls == 0
        assert final.metadata == {}

    @pytest.mark.asyncio
    async def test_session_cache_shared(self):
        """Test two sessions sharing a cache hit the provider once."""
        cache = VINCache()
        provider = MockDecodeProvider(latency=0)

        for _ in range(2):
            manager = VisionPluginManager(VisionPluginContext(capture_type="vin"))
            await manager.register(vin_decoding(DecodingOptions(), cache=cache, provider=provider))
            await manager.enrich_result(CaptureResult(data={'vin': VALID_VIN}, confidence=0.95))

        assert provider.calls == 1
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_options_from_config(self, monkeypatch):
        monkeypatch.setenv('MOTOMIND_DECODE_PROVIDER', 'mock')
        monkeypatch.setenv('MOTOMIND_DECODE_TIMEOUT', '2.5')
        plugin = vin_decoding()
        assert plugin.options.api_provider == 'mock'
        assert plugin.options.timeout == 2.5
        assert plugin.provider.name == 'mock'
        await plugin.destroy()

    def test_retry_decision_equality(self):
        assert RetryDecision(retry=False) == RetryDecision(retry=False, delay=None, message=None)
