"""
VIN Decoding Plugin
===================

Enriches VIN captures with decoded vehicle information (make, model, year,
engine, ...). Decoding failures never fail the capture; they are recorded
in the plugin's metadata namespace instead.

Usage:
    cache = VINCache()
    plugin = vin_decoding(api_provider="nhtsa", cache=cache)

Author: MotoMind Project
"""

import logging
import time
from collections.abc import Mapping
from typing import Optional

from ..decoding.vin_decoder import (
    DecodeProviderFactory,
    DecodingOptions,
    VINCache,
    VINDecodeProvider,
    decode_vin,
)
from ..exceptions import DecodingError, DecodingTimeoutError
from .types import HookName, PluginResultView, PluginType, VisionPlugin, VisionPluginContext

logger = logging.getLogger(__name__)

PLUGIN_ID = "motomind.vin-decoding"


class VINDecodingPlugin(VisionPlugin):
    """
    enrich-result plugin that decodes the captured VIN.

    Args:
        options: Decoding options
        cache: Cache shared by the session; a private one is created if None
        provider: Decode provider; built from options.api_provider if None
    """

    def __init__(
        self,
        options: Optional[DecodingOptions] = None,
        cache: Optional[VINCache] = None,
        provider: Optional[VINDecodeProvider] = None,
    ):
        super().__init__(
            id=PLUGIN_ID,
            name="VIN Decoding",
            version="1.0.0",
            type=PluginType.DECODER,
            options=options or DecodingOptions(),
            hooks={HookName.ENRICH_RESULT: self.enrich_result},
            on_destroy=self.close,
        )
        self.cache = cache if cache is not None else VINCache()
        self._provider = provider
        self._owns_provider = provider is None

    @property
    def provider(self) -> VINDecodeProvider:
        if self._provider is None:
            self._provider = DecodeProviderFactory.create(self.options.api_provider, options=self.options)
        return self._provider

    async def close(self) -> None:
        if self._owns_provider and self._provider is not None:
            await self._provider.close()
            self._provider = None

    async def enrich_result(self, result: PluginResultView, context: VisionPluginContext) -> PluginResultView:
        data = result.data
        vin = data.get('vin') if isinstance(data, Mapping) else None
        if not vin:
            logger.debug("No VIN in result, skipping decode")
            return result

        try:
            info = await decode_vin(vin, self.options, cache=self.cache, provider=self.provider)
        except DecodingError as e:
            return self._record_failure(result, e.message, isinstance(e, DecodingTimeoutError))
        except Exception as e:
            return self._record_failure(result, str(e) or type(e).__name__, False)

        logger.info(f"VIN decoded: make={info.make} model={info.model} year={info.year}")
        if self.options.on_decode:
            try:
                self.options.on_decode(info)
            except Exception as e:
                logger.error(f"on_decode callback failed: {e}")

        if self.options.enrich_result and isinstance(data, dict):
            decoded = info.to_dict()
            if self.options.extract_fields is not None:
                fields = self.options.extract_fields
            else:
                fields = [name for name in decoded if name not in info.extras]
            for name in fields:
                value = info.get(name)
                if value is not None and name != 'vin':
                    data[name] = value

        result.metadata[self.namespace] = {
            'decoded': True,
            'provider': self.provider.name,
            'vehicle_info': info.to_dict(),
            'timestamp': time.time(),
        }
        return result

    def _record_failure(self, result: PluginResultView, message: str, timeout: bool) -> PluginResultView:
        logger.error(f"VIN decoding error: {message}")
        if self.options.on_decode_error:
            try:
                self.options.on_decode_error(message)
            except Exception as e:
                logger.error(f"on_decode_error callback failed: {e}")
        result.metadata[self.namespace] = {
            'decoded': False,
            'error': message,
            'timeout': timeout,
        }
        return result


def vin_decoding(
    options: Optional[DecodingOptions] = None,
    cache: Optional[VINCache] = None,
    provider: Optional[VINDecodeProvider] = None,
    **kwargs
) -> VINDecodingPlugin:
    """
    Create a VIN decoding plugin.

    Args:
        options: Decoding options; built from the pipeline config if None
        cache: Session-owned cache
        provider: Pre-built decode provider
        **kwargs: Overrides for DecodingOptions fields
    """
    if options is None:
        options = DecodingOptions.from_config(**kwargs)
    elif kwargs:
        raise TypeError("Pass either options or keyword overrides, not both")
    return VINDecodingPlugin(options, cache=cache, provider=provider)
