"""
VIN Decoding Module
===================

Decode providers (NHTSA, custom API, offline tables, mock), the decode
cache and the decode_vin() entry point.
"""

from .vin_decoder import (
    MODEL_YEAR_CODES,
    WMI_DATABASE,
    DecodedVehicleInfo,
    DecodeProviderFactory,
    DecodeProviderType,
    DecodingOptions,
    VINCache,
    VINDecodeProvider,
    NHTSADecodeProvider,
    CustomAPIDecodeProvider,
    OfflineTableProvider,
    MockDecodeProvider,
    decode_vin,
    extract_manufacturer,
    extract_model_year,
    legacy_model_year,
    parse_nhtsa_response,
)

__all__ = [
    # Tables
    "MODEL_YEAR_CODES",
    "WMI_DATABASE",
    "extract_manufacturer",
    "extract_model_year",
    "legacy_model_year",
    # Types
    "DecodedVehicleInfo",
    "DecodingOptions",
    "VINCache",
    # Providers
    "DecodeProviderFactory",
    "DecodeProviderType",
    "VINDecodeProvider",
    "NHTSADecodeProvider",
    "CustomAPIDecodeProvider",
    "OfflineTableProvider",
    "MockDecodeProvider",
    "parse_nhtsa_response",
    # Entry point
    "decode_vin",
]
