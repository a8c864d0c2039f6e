"""
VIN Core Module
===============

Core VIN utilities, constants, and validation logic.
Single Source of Truth for all VIN-related functionality.
"""

from .vin_utils import (
    # Constants
    VINConstants,
    VIN_LENGTH,
    VIN_VALID_CHARS,
    VIN_INVALID_CHARS,
    # Validation
    VINValidationOptions,
    VINValidationResult,
    validate_vin,
    normalize_vin,
    validate_length,
    validate_characters,
    validate_check_digit,
    # Checksum
    calculate_check_digit,
    # Structure
    parse_vin_structure,
    # Extraction
    extract_vin_from_text,
)

__all__ = [
    # Constants
    "VINConstants",
    "VIN_LENGTH",
    "VIN_VALID_CHARS",
    "VIN_INVALID_CHARS",
    # Validation
    "VINValidationOptions",
    "VINValidationResult",
    "validate_vin",
    "normalize_vin",
    "validate_length",
    "validate_characters",
    "validate_check_digit",
    # Checksum
    "calculate_check_digit",
    # Structure
    "parse_vin_structure",
    # Extraction
    "extract_vin_from_text",
]
