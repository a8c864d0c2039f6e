"""
VIN Validation Plugin
=====================

Validates VIN captures against ISO 3779 (length, character set, check
digit, WMI) and normalizes the VIN in place.

Usage:
    plugin = vin_validation(strict_mode=True)
    await manager.register(plugin)

Author: MotoMind Project
"""

import logging
from typing import Any, Mapping, Optional

from ..core.vin_utils import (
    VINValidationOptions,
    VINValidationResult,
    parse_vin_structure,
    validate_vin,
)
from ..exceptions import VINValidationError
from .types import (
    HookName,
    PluginResultView,
    PluginType,
    RetryDecision,
    VisionPlugin,
    VisionPluginContext,
)

logger = logging.getLogger(__name__)

PLUGIN_ID = "motomind.vin-validation"


def _captured_vin(data: Any) -> Optional[str]:
    if isinstance(data, Mapping):
        vin = data.get('vin')
        if isinstance(vin, str) and vin:
            return vin
    return None


class VINValidationPlugin(VisionPlugin):
    """
    Validator for 'vin' captures.

    after-capture raises VINValidationError for an invalid VIN so the host
    can retry; in strict mode on-error declines the retry.
    """

    def __init__(self, options: Optional[VINValidationOptions] = None, capture_type: str = "vin"):
        self.capture_type = capture_type
        super().__init__(
            id=PLUGIN_ID,
            name="VIN Validation",
            version="1.0.0",
            type=PluginType.VALIDATOR,
            options=options or VINValidationOptions(),
            hooks={
                HookName.AFTER_CAPTURE: self.after_capture,
                HookName.VALIDATE_RESULT: self.validate_result,
                HookName.ON_ERROR: self.on_error,
            },
        )

    def _applies(self, context: VisionPluginContext) -> bool:
        return context.capture_type == self.capture_type

    def validate(self, vin: str) -> VINValidationResult:
        return validate_vin(vin, self.options)

    async def after_capture(self, result: PluginResultView, context: VisionPluginContext) -> PluginResultView:
        if not self._applies(context):
            logger.debug(f"Not a VIN capture ({context.capture_type}), skipping validation")
            return result

        vin = _captured_vin(result.data)
        if vin is None:
            logger.warning("No VIN found in capture result")
            result.metadata[self.namespace] = {
                'validated': False,
                'errors': ['No VIN found in image - OCR may have failed'],
            }
            return result

        validation = self.validate(vin)
        logger.info(
            f"VIN validation: vin={validation.vin} valid={validation.valid} "
            f"errors={len(validation.errors)} warnings={len(validation.warnings)}"
        )
        if validation.warnings:
            logger.warning(f"VIN validation warnings: {validation.warnings}")

        if not validation.valid:
            errors = validation.errors or validation.warnings
            logger.error(f"VIN validation failed: {'; '.join(errors)}")
            raise VINValidationError(
                vin=validation.vin,
                errors=errors,
                warnings=validation.warnings,
                strict=self.options.strict_mode,
            )

        if validation.normalized and validation.normalized != vin:
            logger.info(f"VIN normalized: {vin} -> {validation.normalized}")
            result.data['vin'] = validation.normalized

        result.metadata[self.namespace] = {
            'validated': True,
            'warnings': list(validation.warnings),
            'structure': parse_vin_structure(validation.vin),
        }
        return result

    async def validate_result(self, result: PluginResultView, context: VisionPluginContext) -> bool:
        if not self._applies(context):
            return True
        vin = _captured_vin(result.data)
        if vin is None:
            return False
        return self.validate(vin).valid

    async def on_error(self, error: BaseException, context: VisionPluginContext) -> Optional[RetryDecision]:
        if isinstance(error, VINValidationError) and error.strict:
            return RetryDecision(retry=False, message=error.message)
        return None


def vin_validation(options: Optional[VINValidationOptions] = None, **kwargs) -> VINValidationPlugin:
    """
    Create a VIN validation plugin.

    Args:
        options: Validation options; built from the pipeline config if None
        **kwargs: Overrides for VINValidationOptions fields
    """
    if options is None:
        options = VINValidationOptions.from_config(**kwargs)
    elif kwargs:
        raise TypeError("Pass either options or keyword overrides, not both")
    return VINValidationPlugin(options)
