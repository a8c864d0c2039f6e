"""
VIN Decoder - Provider Abstraction Layer
========================================

Maps a VIN to vehicle information through a pluggable lookup provider:
- NHTSA vPIC (HTTP API)
- Custom HTTP API ({vin} URL template)
- Offline table lookup (WMI prefix + model year code, no network)
- Mock (deterministic data with simulated latency)

Usage:
    from motomind_vision.decoding import decode_vin, DecodingOptions, VINCache

    cache = VINCache()
    info = await decode_vin("1HGCM82633A004352", DecodingOptions(), cache=cache)
    print(info.make, info.year)

Author: MotoMind Project
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

import httpx

from ..core.vin_utils import VIN_LENGTH, normalize_vin
from ..exceptions import DecodingError, DecodingTimeoutError

logger = logging.getLogger(__name__)


# =============================================================================
# LOOKUP TABLES
# =============================================================================

# Model year codes (position 10). Letters skip I, O, Q, U and Z.
MODEL_YEAR_CODES: Dict[str, int] = {
    # 2001-2009 (digits)
    '1': 2001, '2': 2002, '3': 2003, '4': 2004, '5': 2005,
    '6': 2006, '7': 2007, '8': 2008, '9': 2009,
    # 2010-2030 (letters, also valid for 1980-2000)
    'A': 2010, 'B': 2011, 'C': 2012, 'D': 2013, 'E': 2014,
    'F': 2015, 'G': 2016, 'H': 2017, 'J': 2018, 'K': 2019,
    'L': 2020, 'M': 2021, 'N': 2022, 'P': 2023, 'R': 2024,
    'S': 2025, 'T': 2026, 'V': 2027, 'W': 2028, 'X': 2029,
    'Y': 2030,
}

# Letter codes read 30 years earlier in the previous cycle
MODEL_YEAR_CYCLE = 30

# World Manufacturer Identifier (WMI) database (sample, not an ISO 3780 registry)
WMI_DATABASE: Dict[str, Dict[str, str]] = {
    # United States
    '1G1': {'manufacturer': 'General Motors (Chevrolet)', 'country': 'USA', 'region': 'North America'},
    '1FA': {'manufacturer': 'Ford Motor Company', 'country': 'USA', 'region': 'North America'},
    '1FT': {'manufacturer': 'Ford Trucks', 'country': 'USA', 'region': 'North America'},
    '1HG': {'manufacturer': 'Honda', 'country': 'USA', 'region': 'North America'},
    '1N4': {'manufacturer': 'Nissan', 'country': 'USA', 'region': 'North America'},
    '4T1': {'manufacturer': 'Toyota', 'country': 'USA', 'region': 'North America'},
    '5YJ': {'manufacturer': 'Tesla', 'country': 'USA', 'region': 'North America'},
    # Canada / Mexico
    '2HG': {'manufacturer': 'Honda (Canada)', 'country': 'Canada', 'region': 'North America'},
    '2T1': {'manufacturer': 'Toyota', 'country': 'Canada', 'region': 'North America'},
    '3VW': {'manufacturer': 'Volkswagen', 'country': 'Mexico', 'region': 'North America'},
    # Japan
    'JHM': {'manufacturer': 'Honda', 'country': 'Japan', 'region': 'Asia'},
    'JN1': {'manufacturer': 'Nissan', 'country': 'Japan', 'region': 'Asia'},
    'JT2': {'manufacturer': 'Toyota', 'country': 'Japan', 'region': 'Asia'},
    'JF1': {'manufacturer': 'Subaru', 'country': 'Japan', 'region': 'Asia'},
    # Korea
    'KM8': {'manufacturer': 'Hyundai', 'country': 'South Korea', 'region': 'Asia'},
    'KNA': {'manufacturer': 'Kia', 'country': 'South Korea', 'region': 'Asia'},
    # Europe
    'SAL': {'manufacturer': 'Land Rover', 'country': 'United Kingdom', 'region': 'Europe'},
    'WAU': {'manufacturer': 'Audi', 'country': 'Germany', 'region': 'Europe'},
    'WBA': {'manufacturer': 'BMW', 'country': 'Germany', 'region': 'Europe'},
    'WDB': {'manufacturer': 'Mercedes-Benz', 'country': 'Germany', 'region': 'Europe'},
    'WVW': {'manufacturer': 'Volkswagen', 'country': 'Germany', 'region': 'Europe'},
    'WP0': {'manufacturer': 'Porsche', 'country': 'Germany', 'region': 'Europe'},
    'YV1': {'manufacturer': 'Volvo', 'country': 'Sweden', 'region': 'Europe'},
    'ZAR': {'manufacturer': 'Alfa Romeo', 'country': 'Italy', 'region': 'Europe'},
    'ZFF': {'manufacturer': 'Ferrari', 'country': 'Italy', 'region': 'Europe'},
    'ZLA': {'manufacturer': 'Lamborghini', 'country': 'Italy', 'region': 'Europe'},
}


def extract_model_year(vin: str, year_codes: Optional[Mapping[str, int]] = None) -> Optional[int]:
    """
    Decode the model year from position 10.

    Letter codes repeat every 30 years; the modern (2010-2030) reading is
    returned. Use legacy_model_year() for the 1980-2000 interpretation.
    """
    if len(vin) < 10:
        return None
    return (year_codes or MODEL_YEAR_CODES).get(vin[9].upper())


def legacy_model_year(vin: str) -> Optional[int]:
    """Return the previous-cycle reading for letter codes, None for digits."""
    if len(vin) < 10 or vin[9].isdigit():
        return None
    year = MODEL_YEAR_CODES.get(vin[9].upper())
    return year - MODEL_YEAR_CYCLE if year else None


def extract_manufacturer(vin: str, wmi_database: Optional[Mapping[str, Dict[str, str]]] = None) -> Dict[str, str]:
    """Look up the WMI (first 3 characters); unknown prefixes give an empty dict."""
    database = WMI_DATABASE if wmi_database is None else wmi_database
    return dict(database.get(vin[:3].upper(), {}))


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class DecodedVehicleInfo:
    """
    Decoded vehicle information.

    Well-known fields are optional; provider-specific fields live in extras.
    """
    vin: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    trim: Optional[str] = None
    body_type: Optional[str] = None
    engine_type: Optional[str] = None
    transmission: Optional[str] = None
    drive_type: Optional[str] = None
    fuel_type: Optional[str] = None
    manufacturer: Optional[str] = None
    plant_city: Optional[str] = None
    plant_country: Optional[str] = None
    region: Optional[str] = None
    vehicle_type: Optional[str] = None
    series: Optional[str] = None
    doors: Optional[int] = None
    cylinders: Optional[int] = None
    displacement: Optional[str] = None
    horsepower: Optional[int] = None
    weight: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a well-known field or a provider extra."""
        if key != 'extras' and key in _KNOWN_FIELDS:
            value = getattr(self, key)
            return default if value is None else value
        return self.extras.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """Flatten to a dict, dropping unset fields."""
        data = {
            name: getattr(self, name)
            for name in _KNOWN_FIELDS
            if name != 'extras' and getattr(self, name) is not None
        }
        for key, value in self.extras.items():
            data.setdefault(key, value)
        return data


_KNOWN_FIELDS = tuple(f.name for f in fields(DecodedVehicleInfo))


class DecodeProviderType(str, Enum):
    """Supported VIN decode providers."""
    NHTSA = "nhtsa"
    CUSTOM = "custom"
    OFFLINE = "offline"
    MOCK = "mock"


@dataclass
class DecodingOptions:
    """
    Options for decode_vin() and the VIN decoding plugin.

    Durations are in seconds.
    """
    api_provider: Union[str, DecodeProviderType] = DecodeProviderType.OFFLINE
    custom_api_url: Optional[str] = None
    api_key: Optional[str] = None
    nhtsa_base_url: str = 'https://vpic.nhtsa.dot.gov/api'
    cache_results: bool = True
    cache_duration: float = 3600.0
    timeout: float = 10.0
    mock_latency: float = 0.5

    # Plugin behaviour
    enrich_result: bool = True
    extract_fields: Optional[List[str]] = None
    on_decode: Optional[Callable[[DecodedVehicleInfo], None]] = None
    on_decode_error: Optional[Callable[[str], None]] = None

    @classmethod
    def from_config(cls, config=None, **overrides) -> 'DecodingOptions':
        """Build options from the pipeline DecodingConfig section."""
        if config is None:
            from ..config import get_config
            config = get_config().decoding
        values = {
            'api_provider': config.api_provider,
            'custom_api_url': config.custom_api_url,
            'api_key': config.api_key,
            'nhtsa_base_url': config.nhtsa_base_url,
            'cache_results': config.cache_results,
            'cache_duration': config.cache_duration,
            'timeout': config.timeout,
            'mock_latency': config.mock_latency,
        }
        values.update(overrides)
        return cls(**values)


# =============================================================================
# CACHE
# =============================================================================

@dataclass
class CacheEntry:
    """Cached decode with absolute expiry time."""
    data: DecodedVehicleInfo
    expires_at: float


class VINCache:
    """
    Time and size bounded cache of decoded VINs.

    Features:
    - Per-entry TTL, checked lazily on lookup (no background sweep)
    - LRU eviction beyond max_entries
    - Explicitly owned: pass one instance to each session or plugin
    """

    def __init__(self, max_entries: int = 500, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, vin: str) -> Optional[DecodedVehicleInfo]:
        key = normalize_vin(vin)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self.misses += 1
            logger.debug(f"Cache entry expired: {key}")
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return entry.data

    def set(self, vin: str, data: DecodedVehicleInfo, duration: float) -> None:
        key = normalize_vin(vin)
        self._entries[key] = CacheEntry(data=data, expires_at=self._clock() + duration)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted}")

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, vin: str) -> bool:
        return self.get(vin) is not None


# =============================================================================
# PROVIDERS
# =============================================================================

class VINDecodeProvider(ABC):
    """
    Abstract base class for VIN decode providers.

    Providers raise DecodingError on failure. The decode_vin() wrapper adds
    caching and the overall timeout.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name."""
        ...

    @abstractmethod
    async def decode(self, vin: str) -> DecodedVehicleInfo:
        """Decode a normalized 17-character VIN."""
        ...

    async def close(self) -> None:
        """Release network resources (no-op for local providers)."""
        return None


class OfflineTableProvider(VINDecodeProvider):
    """Deterministic lookup against the WMI and model year tables."""

    def __init__(
        self,
        wmi_database: Optional[Mapping[str, Dict[str, str]]] = None,
        year_codes: Optional[Mapping[str, int]] = None,
    ):
        self.wmi_database = WMI_DATABASE if wmi_database is None else wmi_database
        self.year_codes = MODEL_YEAR_CODES if year_codes is None else year_codes

    @property
    def name(self) -> str:
        return DecodeProviderType.OFFLINE.value

    async def decode(self, vin: str) -> DecodedVehicleInfo:
        info = extract_manufacturer(vin, self.wmi_database)
        manufacturer = info.get('manufacturer')
        return DecodedVehicleInfo(
            vin=vin,
            make=manufacturer.split('(')[0].strip() if manufacturer else None,
            year=extract_model_year(vin, self.year_codes),
            manufacturer=manufacturer,
            plant_country=info.get('country'),
            region=info.get('region'),
            extras={
                'wmi': vin[:3],
                'model_year_code': vin[9:10],
                'legacy_model_year': legacy_model_year(vin),
            },
        )


class MockDecodeProvider(VINDecodeProvider):
    """Mock decoder for development and tests (simulated API latency)."""

    def __init__(self, latency: float = 0.5, wmi_database: Optional[Mapping[str, Dict[str, str]]] = None):
        self.latency = latency
        self.wmi_database = wmi_database
        self.calls = 0

    @property
    def name(self) -> str:
        return DecodeProviderType.MOCK.value

    async def decode(self, vin: str) -> DecodedVehicleInfo:
        self.calls += 1
        if self.latency > 0:
            await asyncio.sleep(self.latency)

        info = extract_manufacturer(vin, self.wmi_database)
        manufacturer = info.get('manufacturer')
        return DecodedVehicleInfo(
            vin=vin,
            make=manufacturer.split('(')[0].strip() if manufacturer else 'Unknown Make',
            model='Model X',
            year=extract_model_year(vin),
            trim='Premium',
            body_type='Sedan',
            engine_type='V6',
            transmission='Automatic',
            drive_type='FWD',
            fuel_type='Gasoline',
            manufacturer=manufacturer,
            plant_country=info.get('country'),
            vehicle_type='Passenger Car',
            doors=4,
            cylinders=6,
            displacement='3.5L',
        )


class _HTTPDecodeProvider(VINDecodeProvider):
    """Shared httpx client handling for network-backed providers."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def _get_json(self, url: str) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise DecodingTimeoutError(provider=self.name, timeout=self.timeout) from e
        except httpx.RequestError as e:
            raise DecodingError(f"Request failed: {e}", provider=self.name) from e

        if response.status_code != 200:
            raise DecodingError(
                f"{self.name} API error: {response.status_code}",
                provider=self.name,
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            return response.json()
        except ValueError as e:
            raise DecodingError(f"Invalid JSON response: {e}", provider=self.name) from e

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# NHTSA variable name -> DecodedVehicleInfo field
NHTSA_FIELD_MAP: Dict[str, str] = {
    'Make': 'make',
    'Model': 'model',
    'Trim': 'trim',
    'BodyClass': 'body_type',
    'TransmissionStyle': 'transmission',
    'DriveType': 'drive_type',
    'FuelTypePrimary': 'fuel_type',
    'Manufacturer': 'manufacturer',
    'PlantCity': 'plant_city',
    'PlantCountry': 'plant_country',
    'VehicleType': 'vehicle_type',
    'Series': 'series',
    'DisplacementL': 'displacement',
    'GVWR': 'weight',
}

_NHTSA_INT_FIELDS: Dict[str, str] = {
    'ModelYear': 'year',
    'Doors': 'doors',
    'EngineCylinders': 'cylinders',
    'EngineHP': 'horsepower',
}


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_nhtsa_response(vin: str, payload: Mapping[str, Any]) -> DecodedVehicleInfo:
    """
    Parse a vPIC DecodeVin response.

    Empty and 'Not Applicable' values are dropped and unparseable numbers
    become None. The raw variables are kept in extras.
    """
    results = payload.get('Results') or []
    if not results:
        raise DecodingError("No results from NHTSA API", provider=DecodeProviderType.NHTSA.value)

    values: Dict[str, Any] = {}
    for item in results:
        variable = item.get('Variable')
        value = item.get('Value')
        if variable and value not in (None, '', 'Not Applicable'):
            values[variable] = value

    info = DecodedVehicleInfo(vin=vin)
    for source, target in NHTSA_FIELD_MAP.items():
        if source in values:
            setattr(info, target, values[source])
    for source, target in _NHTSA_INT_FIELDS.items():
        if source in values:
            setattr(info, target, _parse_int(values[source]))
    info.engine_type = values.get('EngineModel') or values.get('EngineConfiguration')
    info.extras = values
    return info


class NHTSADecodeProvider(_HTTPDecodeProvider):
    """
    NHTSA vPIC decoder.

    API Documentation: https://vpic.nhtsa.dot.gov/api/
    """

    def __init__(
        self,
        base_url: str = 'https://vpic.nhtsa.dot.gov/api',
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url.rstrip('/')

    @property
    def name(self) -> str:
        return DecodeProviderType.NHTSA.value

    async def decode(self, vin: str) -> DecodedVehicleInfo:
        logger.debug(f"Decoding VIN via NHTSA API: {vin}")
        payload = await self._get_json(f"{self.base_url}/vehicles/DecodeVin/{vin}?format=json")
        if not isinstance(payload, dict):
            raise DecodingError("Malformed NHTSA response", provider=self.name)
        return parse_nhtsa_response(vin, payload)


class CustomAPIDecodeProvider(_HTTPDecodeProvider):
    """Decoder for a custom endpoint; '{vin}' in the URL is substituted."""

    def __init__(
        self,
        url_template: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url_template:
            raise DecodingError("Custom API URL not provided", provider=DecodeProviderType.CUSTOM.value)
        super().__init__(timeout=timeout, transport=transport)
        self.url_template = url_template
        self.api_key = api_key

    @property
    def name(self) -> str:
        return DecodeProviderType.CUSTOM.value

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def decode(self, vin: str) -> DecodedVehicleInfo:
        payload = await self._get_json(self.url_template.replace('{vin}', vin))
        if not isinstance(payload, dict):
            raise DecodingError("Malformed custom API response", provider=self.name)

        info = DecodedVehicleInfo(vin=vin)
        extras = {}
        for key, value in payload.items():
            if key in _KNOWN_FIELDS and key not in ('vin', 'extras'):
                setattr(info, key, value)
            else:
                extras[key] = value
        info.extras = extras
        return info


# =============================================================================
# PROVIDER FACTORY
# =============================================================================

class DecodeProviderFactory:
    """
    Factory for creating VIN decode providers.

    Usage:
        provider = DecodeProviderFactory.create("offline")
        provider = DecodeProviderFactory.create(DecodeProviderType.NHTSA, options=opts)
    """

    _providers: Dict[DecodeProviderType, Type[VINDecodeProvider]] = {
        DecodeProviderType.NHTSA: NHTSADecodeProvider,
        DecodeProviderType.CUSTOM: CustomAPIDecodeProvider,
        DecodeProviderType.OFFLINE: OfflineTableProvider,
        DecodeProviderType.MOCK: MockDecodeProvider,
    }

    @classmethod
    def create(
        cls,
        provider_type: Union[str, DecodeProviderType],
        options: Optional[DecodingOptions] = None,
        **kwargs
    ) -> VINDecodeProvider:
        """
        Create a decode provider instance.

        Args:
            provider_type: Type of provider to create
            options: Decoding options supplying URLs, keys and timeouts
            **kwargs: Extra constructor arguments (e.g. transport, wmi_database)

        Raises:
            ValueError: If provider type is not supported
        """
        if isinstance(provider_type, str):
            try:
                provider_type = DecodeProviderType(provider_type.lower())
            except ValueError:
                available = [p.value for p in DecodeProviderType]
                raise ValueError(
                    f"Unknown decode provider: '{provider_type}'. "
                    f"Available: {available}"
                )

        provider_class = cls._providers.get(provider_type)
        if provider_class is None:
            raise ValueError(f"Provider not implemented: {provider_type.value}")

        options = options or DecodingOptions()

        if provider_type == DecodeProviderType.NHTSA:
            kwargs.setdefault('base_url', options.nhtsa_base_url)
            kwargs.setdefault('timeout', options.timeout)
        elif provider_type == DecodeProviderType.CUSTOM:
            kwargs.setdefault('url_template', options.custom_api_url)
            kwargs.setdefault('api_key', options.api_key)
            kwargs.setdefault('timeout', options.timeout)
        elif provider_type == DecodeProviderType.MOCK:
            kwargs.setdefault('latency', options.mock_latency)

        return provider_class(**kwargs)

    @classmethod
    def list_available(cls) -> List[str]:
        """List all registered provider types."""
        return [p.value for p in cls._providers.keys()]

    @classmethod
    def register(cls, provider_type: DecodeProviderType, provider_class: type) -> None:
        """Register (or replace) the class behind a provider type."""
        if not issubclass(provider_class, VINDecodeProvider):
            raise TypeError(
                f"Provider class must inherit from VINDecodeProvider, "
                f"got {provider_class.__name__}"
            )
        cls._providers[provider_type] = provider_class
        logger.info(f"Registered VIN decode provider: {provider_type.value}")


# =============================================================================
# DECODE ENTRY POINT
# =============================================================================

async def decode_vin(
    vin: str,
    options: Optional[DecodingOptions] = None,
    cache: Optional[VINCache] = None,
    provider: Optional[VINDecodeProvider] = None,
) -> DecodedVehicleInfo:
    """
    Decode a VIN into vehicle information.

    The cache (when given and cache_results is on) is consulted before any
    provider call. Exactly one provider is invoked on a miss, bounded by
    options.timeout.

    Args:
        vin: VIN to decode (normalized before lookup)
        options: Decoding options
        cache: Cache owned by the caller's session
        provider: Pre-built provider; created from options.api_provider if None

    Returns:
        DecodedVehicleInfo

    Raises:
        DecodingTimeoutError: If the provider exceeds the timeout
        DecodingError: For any other provider failure
    """
    options = options or DecodingOptions()
    vin = normalize_vin(vin)

    if len(vin) != VIN_LENGTH:
        raise DecodingError(f"Invalid VIN length: {len(vin)} (expected {VIN_LENGTH})")

    use_cache = options.cache_results and cache is not None
    if use_cache:
        cached = cache.get(vin)
        if cached is not None:
            logger.debug(f"VIN found in cache: {vin}")
            return cached

    owns_provider = provider is None
    if provider is None:
        provider = DecodeProviderFactory.create(options.api_provider, options=options)

    try:
        decoded = await asyncio.wait_for(provider.decode(vin), timeout=options.timeout)
    except asyncio.TimeoutError as e:
        raise DecodingTimeoutError(provider=provider.name, timeout=options.timeout) from e
    except DecodingError:
        raise
    except Exception as e:
        raise DecodingError(f"VIN decoding failed: {e}", provider=provider.name) from e
    finally:
        if owns_provider:
            await provider.close()

    logger.info(f"VIN decoded via {provider.name}: make={decoded.make} model={decoded.model} year={decoded.year}")

    if use_cache:
        cache.set(vin, decoded, options.cache_duration)

    return decoded
