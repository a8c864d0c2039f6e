"""
VIN Utilities - Single Source of Truth
======================================

VIN structure, check digit and validation logic (ISO 3779 / NHTSA).
Every other module calls into these functions rather than re-implementing
checksum or character rules.

Author: MotoMind Project
"""

import re
import logging
from typing import Optional, Dict, List, Tuple, FrozenSet, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


# =============================================================================
# VIN CONSTANTS
# =============================================================================

class VINConstants:
    """Immutable VIN specification constants per ISO 3779 / NHTSA."""

    LENGTH: int = 17

    # Valid characters (I, O, Q excluded to avoid confusion with 1, 0)
    VALID_CHARS: FrozenSet[str] = frozenset("0123456789ABCDEFGHJKLMNPRSTUVWXYZ")
    INVALID_CHARS: FrozenSet[str] = frozenset("IOQ")

    # Position indices (1-based, ISO 3779)
    CHECK_DIGIT_POSITION: int = 9
    YEAR_POSITION: int = 10
    PLANT_POSITION: int = 11

    # Checksum weights by position (NHTSA standard)
    CHECKSUM_WEIGHTS: Tuple[int, ...] = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)

    # Character to value mapping for checksum (ISO 3779)
    CHAR_VALUES: Dict[str, int] = {
        'A': 1, 'B': 2, 'C': 3, 'D': 4, 'E': 5, 'F': 6, 'G': 7, 'H': 8,
        'J': 1, 'K': 2, 'L': 3, 'M': 4, 'N': 5, 'P': 7, 'R': 9,
        'S': 2, 'T': 3, 'U': 4, 'V': 5, 'W': 6, 'X': 7, 'Y': 8, 'Z': 9,
        '0': 0, '1': 1, '2': 2, '3': 3, '4': 4, '5': 5, '6': 6, '7': 7, '8': 8, '9': 9
    }

    # Common World Manufacturer Identifiers (first 3 chars)
    COMMON_WMIS: Tuple[str, ...] = (
        'SAL', 'WVW', 'WBA', 'WDB', 'WDD', 'WAU', 'WP0', 'WVG',
        '1G1', '1GC', '1FA', '1FM', '1FT', '1HG', '1N4', '2HG', '2T1',
        '3VW', '4T1', '5YJ', 'JHM', 'JN1', 'JT2', 'JF1', 'KM8', 'KNA',
        'YV1', 'ZFF', 'ZAR',
    )


VIN_LENGTH = VINConstants.LENGTH
VIN_VALID_CHARS = VINConstants.VALID_CHARS
VIN_INVALID_CHARS = VINConstants.INVALID_CHARS

_VALID_CHAR_PATTERN = re.compile(r'^[A-HJ-NPR-Z0-9]$')
_WMI_PATTERN = re.compile(r'^[A-HJ-NPR-Z0-9]{3}$')


# =============================================================================
# VIN VALIDATION
# =============================================================================

@dataclass
class VINValidationOptions:
    """
    Options for validate_vin().

    Attributes:
        validate_check_digit: Verify position 9 against the computed check digit
        strict_mode: Treat every warning as blocking
        allow_lowercase: Upper-case the input before checking. When False,
            lowercase input is left as-is and rejected by the character check.
        custom_messages: Override messages for 'invalid_length',
            'invalid_characters' and 'invalid_check_digit'
        on_validation: Callback receiving every VINValidationResult
    """
    validate_check_digit: bool = True
    strict_mode: bool = False
    allow_lowercase: bool = True
    custom_messages: Dict[str, str] = field(default_factory=dict)
    on_validation: Optional[Callable[['VINValidationResult'], None]] = None

    @classmethod
    def from_config(cls, config=None, **overrides) -> 'VINValidationOptions':
        """Build options from the pipeline ValidationConfig section."""
        if config is None:
            from ..config import get_config
            config = get_config().validation
        values = {
            'validate_check_digit': config.validate_check_digit,
            'strict_mode': config.strict_mode,
            'allow_lowercase': config.allow_lowercase,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class VINValidationResult:
    """Result of VIN validation."""
    valid: bool
    vin: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    normalized: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'valid': self.valid,
            'vin': self.vin,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'normalized': self.normalized,
        }


def normalize_vin(vin: str, allow_lowercase: bool = True) -> str:
    """Trim whitespace and upper-case when lowercase input is allowed."""
    normalized = vin.strip()
    if allow_lowercase:
        normalized = normalized.upper()
    return normalized


def validate_length(vin: str) -> Tuple[bool, Optional[str]]:
    """Check that the VIN is exactly 17 characters."""
    if len(vin) != VIN_LENGTH:
        return False, f"VIN must be exactly {VIN_LENGTH} characters (got {len(vin)})"
    return True, None


def validate_characters(vin: str) -> Tuple[bool, List[str]]:
    """
    Check every position against the VIN alphabet.

    Returns:
        (valid, errors) with one message per offending position (1-based)
    """
    errors = []
    for i, char in enumerate(vin):
        if char in VIN_INVALID_CHARS:
            errors.append(f"Invalid character '{char}' at position {i + 1} (I, O, Q not allowed)")
        elif not _VALID_CHAR_PATTERN.match(char):
            errors.append(f"Invalid character '{char}' at position {i + 1} (only A-Z, 0-9 allowed)")
    return len(errors) == 0, errors


def calculate_check_digit(vin: str) -> str:
    """
    Calculate the expected check digit for a VIN.

    The check digit (position 9) is calculated by:
    1. Transliterating each character to a numeric value
    2. Multiplying by position weights (position 9 weighs 0)
    3. Summing and taking mod 11
    4. Result 10 becomes 'X'

    Args:
        vin: 17-character VIN (the check digit itself does not affect the sum)

    Returns:
        Expected check digit ('0'-'9' or 'X')

    Raises:
        ValueError: If the VIN has the wrong length or a character
            cannot be transliterated
    """
    if len(vin) != VIN_LENGTH:
        raise ValueError(f"Check digit requires {VIN_LENGTH} characters (got {len(vin)})")

    total = 0
    for i, char in enumerate(vin):
        value = VINConstants.CHAR_VALUES.get(char)
        if value is None:
            raise ValueError(f"Invalid character for check digit: {char}")
        total += value * VINConstants.CHECKSUM_WEIGHTS[i]

    remainder = total % 11
    return 'X' if remainder == 10 else str(remainder)


def validate_check_digit(vin: str) -> Tuple[bool, Optional[str]]:
    """Compare position 9 with the computed check digit."""
    actual = vin[8] if len(vin) > 8 else ''
    try:
        expected = calculate_check_digit(vin)
    except ValueError as e:
        return False, str(e)

    if actual != expected:
        return False, f"Invalid check digit: expected '{expected}', got '{actual}'"
    return True, None


def parse_vin_structure(vin: str) -> Dict[str, str]:
    """
    Split a VIN into its ISO 3779 sections.

    - Positions 1-3: WMI (World Manufacturer Identifier)
    - Positions 4-8: VDS (Vehicle Descriptor Section)
    - Position 9: Check digit
    - Position 10: Model year
    - Position 11: Plant code
    - Positions 12-17: Sequential number
    """
    return {
        'wmi': vin[0:3],
        'vds': vin[3:8],
        'check_digit': vin[8:9],
        'model_year': vin[9:10],
        'plant_code': vin[10:11],
        'sequential': vin[11:17],
    }


def validate_vin(vin: str, options: Optional[VINValidationOptions] = None) -> VINValidationResult:
    """
    Comprehensive VIN validation.

    Checks, in order:
    1. Length (must be 17); a wrong length stops all further checks
    2. Character validity (no I, O, Q); always blocking
    3. Check digit at position 9; blocking only in strict mode
    4. WMI shape; warning only

    Args:
        vin: VIN string to validate
        options: Validation options (defaults if None)

    Returns:
        VINValidationResult with errors and warnings
    """
    options = options or VINValidationOptions()
    messages = options.custom_messages
    errors: List[str] = []
    warnings: List[str] = []

    normalized = normalize_vin(vin, options.allow_lowercase)

    length_ok, length_error = validate_length(normalized)
    if not length_ok:
        errors.append(messages.get('invalid_length') or length_error)
        return _finish(VINValidationResult(valid=False, vin=vin, errors=errors, warnings=warnings), options)

    chars_ok, char_errors = validate_characters(normalized)
    if not chars_ok:
        errors.append(
            messages.get('invalid_characters')
            or f"Invalid characters found: {', '.join(char_errors)}"
        )
        if not options.strict_mode:
            warnings.extend(char_errors)

    if options.validate_check_digit:
        check_ok, check_error = validate_check_digit(normalized)
        if not check_ok:
            message = messages.get('invalid_check_digit') or check_error
            if options.strict_mode:
                errors.append(message)
            else:
                warnings.append(message)

    structure = parse_vin_structure(normalized)
    if not _WMI_PATTERN.match(structure['wmi']):
        warnings.append('World Manufacturer Identifier (WMI) may be invalid')

    valid = not errors and (not warnings if options.strict_mode else True)

    return _finish(
        VINValidationResult(
            valid=valid,
            vin=normalized,
            errors=errors,
            warnings=warnings,
            normalized=normalized,
        ),
        options,
    )


def _finish(result: VINValidationResult, options: VINValidationOptions) -> VINValidationResult:
    if options.on_validation is not None:
        try:
            options.on_validation(result)
        except Exception as e:
            logger.error(f"on_validation callback failed: {e}")
    return result


# =============================================================================
# VIN EXTRACTION FROM OCR TEXT
# =============================================================================

def extract_vin_from_text(text: str) -> str:
    """
    Pick the most VIN-like 17-character window out of OCR text.

    Whitespace is removed first. Text of 17 characters or fewer is returned
    cleaned but otherwise as read. Longer text is scanned one window at a
    time and the best scoring window wins (the earliest on ties).
    """
    cleaned = ''.join(text.upper().split())
    if len(cleaned) <= VIN_LENGTH:
        return cleaned
    windows = (cleaned[i:i + VIN_LENGTH] for i in range(len(cleaned) - VIN_LENGTH + 1))
    return max(windows, key=_vin_likeness)


def _vin_likeness(window: str) -> int:
    """Heuristic score for a 17-character window; higher is more VIN-like."""
    legal = sum(c in VIN_VALID_CHARS for c in window)
    illegal = sum(c in VIN_INVALID_CHARS for c in window)
    # serial section (positions 12-17) is mostly numeric
    serial_digits = sum(c.isdigit() for c in window[11:])

    score = 2 * legal - 5 * illegal + 3 * serial_digits
    if window[:3] in VINConstants.COMMON_WMIS:
        score += 10
    if validate_check_digit(window)[0]:
        score += 5
    return score
