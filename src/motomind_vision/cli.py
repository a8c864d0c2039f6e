#!/usr/bin/env python3
"""
MotoMind Vision CLI - Command Line Interface
============================================

Usage:
    motomind-vision validate <vin>                 Validate a VIN (ISO 3779)
    motomind-vision decode <vin>                   Decode a VIN to vehicle info
    motomind-vision scan --image <path>            Run the capture pipeline on an image
    motomind-vision scan --text <text>             Run the capture pipeline on OCR text
    motomind-vision providers                      List decode providers
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import get_config


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_validate(args):
    """Validate a VIN."""
    from .core import VINValidationOptions, parse_vin_structure, validate_vin

    overrides = {}
    if args.strict:
        overrides['strict_mode'] = True
    if args.no_check_digit:
        overrides['validate_check_digit'] = False
    options = VINValidationOptions.from_config(**overrides)

    result = validate_vin(args.vin, options)

    if args.json:
        data = result.to_dict()
        if result.valid:
            data['structure'] = parse_vin_structure(result.vin)
        _print_json(data)
    else:
        print(f"VIN: {result.vin}")
        print(f"Valid: {'yes' if result.valid else 'no'}")
        for error in result.errors:
            print(f"  error: {error}")
        for warning in result.warnings:
            print(f"  warning: {warning}")

    return 0 if result.valid else 1


def cmd_decode(args):
    """Decode a VIN."""
    from .decoding import DecodingOptions, VINCache, decode_vin
    from .exceptions import DecodingError

    overrides = {}
    if args.provider:
        overrides['api_provider'] = args.provider
    if args.timeout is not None:
        overrides['timeout'] = args.timeout
    options = DecodingOptions.from_config(**overrides)

    try:
        info = asyncio.run(decode_vin(args.vin, options, cache=VINCache()))
    except DecodingError as e:
        if args.json:
            _print_json(e.to_dict())
        else:
            print(f"Error: {e.message}")
        return 1

    if args.json:
        _print_json(info.to_dict())
    else:
        for key, value in info.to_dict().items():
            if key in info.extras:
                continue
            print(f"{key}: {value}")
    return 0


async def _scan(args):
    from .capture import CaptureSession, ImageFileCaptureSource, StaticCaptureSource
    from .core import extract_vin_from_text
    from .decoding import VINCache
    from .plugins import (
        CaptureResult,
        VisionPluginContext,
        VisionPluginManager,
        confidence_scoring,
        vin_decoding,
        vin_validation,
    )

    if args.image:
        source = ImageFileCaptureSource(args.image)
    else:
        if args.capture_type == 'vin':
            data = {'vin': extract_vin_from_text(args.text), 'raw_text': args.text}
        else:
            data = {'text': args.text}
        source = StaticCaptureSource([CaptureResult(data=data, confidence=args.confidence)])

    plugins = []
    if args.capture_type == 'vin':
        plugins.append(vin_validation())
    plugins.append(confidence_scoring())
    if args.capture_type == 'vin' and args.decode:
        plugins.append(vin_decoding(cache=VINCache()))

    context = VisionPluginContext(capture_type=args.capture_type)
    async with VisionPluginManager(context) as manager:
        await manager.register_all(plugins)
        return await CaptureSession(manager, source).run()


def cmd_scan(args):
    """Run the capture pipeline on an image or text."""
    outcome = asyncio.run(_scan(args))

    if args.json:
        _print_json(outcome.to_dict())
    else:
        print(f"Status: {outcome.status.value} ({outcome.attempts} attempt(s))")
        if outcome.message:
            print(f"Message: {outcome.message}")
        if outcome.result is not None and outcome.succeeded:
            print(f"Confidence: {outcome.result.score:.3f}")
            data = outcome.result.data
            for key in ('vin', 'text', 'make', 'model', 'year'):
                if hasattr(data, 'get') and data.get(key) is not None:
                    print(f"{key.capitalize()}: {data.get(key)}")

    return 0 if outcome.succeeded else 1


def cmd_providers(args):
    """List available decode providers."""
    from .decoding import DecodeProviderFactory

    default = get_config().decoding.api_provider
    for name in DecodeProviderFactory.list_available():
        marker = ' (default)' if name == default else ''
        print(f"{name}{marker}")
    return 0


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='motomind-vision',
        description='MotoMind Vision - VIN validation, decoding and capture pipeline',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate a VIN')
    validate_parser.add_argument('vin', help='VIN to validate')
    validate_parser.add_argument('--strict', action='store_true', help='Treat warnings as errors')
    validate_parser.add_argument('--no-check-digit', action='store_true', help='Skip check digit validation')
    validate_parser.add_argument('--json', '-j', action='store_true', help='Output as JSON')

    # Decode command
    decode_parser = subparsers.add_parser('decode', help='Decode a VIN to vehicle information')
    decode_parser.add_argument('vin', help='VIN to decode')
    decode_parser.add_argument('--provider', '-p', choices=['nhtsa', 'custom', 'offline', 'mock'],
                               help='Decode provider (default from config)')
    decode_parser.add_argument('--timeout', '-t', type=float, help='Timeout in seconds')
    decode_parser.add_argument('--json', '-j', action='store_true', help='Output as JSON')

    # Scan command
    scan_parser = subparsers.add_parser('scan', help='Run the capture pipeline')
    scan_input = scan_parser.add_mutually_exclusive_group(required=True)
    scan_input.add_argument('--image', '-i', help='Path to image file')
    scan_input.add_argument('--text', help='Recognized text to run through the pipeline')
    scan_parser.add_argument('--capture-type', '-c', default='vin',
                             help='Capture type (vin, odometer, license-plate, document)')
    scan_parser.add_argument('--confidence', type=float, default=1.0,
                             help='Confidence for --text input (0.0-1.0)')
    scan_parser.add_argument('--decode', action='store_true', help='Decode the VIN after validation')
    scan_parser.add_argument('--json', '-j', action='store_true', help='Output as JSON')

    # Providers command
    subparsers.add_parser('providers', help='List decode providers')

    args = parser.parse_args(argv)

    get_config()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        'validate': cmd_validate,
        'decode': cmd_decode,
        'scan': cmd_scan,
        'providers': cmd_providers,
    }

    return commands[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
