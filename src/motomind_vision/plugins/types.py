"""
Vision Plugin Contract
======================

Shared types exchanged between the capture host, the plugin manager and
plugins: hook names, the capture result and context objects, retry
decisions and the VisionPlugin base class.

Hook signatures (handlers may be plain functions or coroutines, except
render hooks which are synchronous):

    before-capture     (context) -> bool
    after-capture      (result, context) -> Optional[CaptureResult]
    transform-result   (result, context) -> Optional[CaptureResult]
    validate-result    (result, context) -> bool
    enrich-result      (result, context) -> Optional[CaptureResult]
    on-error           (error, context) -> Optional[RetryDecision]
    on-retry           (context, attempt) -> None
    on-success         (result, context) -> None
    on-cancel          (context) -> None
    render-*           (context) -> Optional[node]

Author: MotoMind Project
"""

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterator, Mapping, Optional, Union

from ..exceptions import MetadataNamespaceError

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class HookName(str, Enum):
    """Closed set of lifecycle hooks a plugin may implement."""
    BEFORE_CAPTURE = "before-capture"
    AFTER_CAPTURE = "after-capture"
    TRANSFORM_RESULT = "transform-result"
    VALIDATE_RESULT = "validate-result"
    ENRICH_RESULT = "enrich-result"
    ON_ERROR = "on-error"
    ON_RETRY = "on-retry"
    ON_SUCCESS = "on-success"
    ON_CANCEL = "on-cancel"
    RENDER_OVERLAY = "render-overlay"
    RENDER_TOOLBAR = "render-toolbar"
    RENDER_RESULT = "render-result"
    RENDER_CONFIDENCE = "render-confidence"

    @classmethod
    def coerce(cls, value: Union[str, 'HookName']) -> 'HookName':
        """Accept 'before-capture', 'before_capture' or a HookName."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).replace('_', '-').lower())
        except ValueError:
            raise ValueError(
                f"Unknown hook: '{value}'. Available: {[h.value for h in cls]}"
            )


class HookCategory(str, Enum):
    """How the handlers of one hook are composed."""
    GATE = "gate"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    FIRST_WINS = "first-wins"
    NOTIFY = "notify"
    COLLECT = "collect"


HOOK_CATEGORIES: Dict[HookName, HookCategory] = {
    HookName.BEFORE_CAPTURE: HookCategory.GATE,
    HookName.AFTER_CAPTURE: HookCategory.TRANSFORM,
    HookName.TRANSFORM_RESULT: HookCategory.TRANSFORM,
    HookName.ENRICH_RESULT: HookCategory.TRANSFORM,
    HookName.VALIDATE_RESULT: HookCategory.VALIDATE,
    HookName.ON_ERROR: HookCategory.FIRST_WINS,
    HookName.ON_RETRY: HookCategory.NOTIFY,
    HookName.ON_SUCCESS: HookCategory.NOTIFY,
    HookName.ON_CANCEL: HookCategory.NOTIFY,
    HookName.RENDER_OVERLAY: HookCategory.COLLECT,
    HookName.RENDER_TOOLBAR: HookCategory.COLLECT,
    HookName.RENDER_RESULT: HookCategory.COLLECT,
    HookName.RENDER_CONFIDENCE: HookCategory.COLLECT,
}


class PluginType(str, Enum):
    """Plugin role."""
    VALIDATOR = "validator"
    ENHANCER = "enhancer"
    DECODER = "decoder"
    UI = "ui"
    ANALYTICS = "analytics"


class PluginState(str, Enum):
    """Plugin lifecycle state as tracked by the manager."""
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    INITIALIZED = "initialized"
    ACTIVE = "active"
    DESTROYED = "destroyed"


class CaptureState(str, Enum):
    """State of the capture session visible to hooks."""
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class ManagerEvent(str, Enum):
    """Lifecycle events emitted by the plugin manager."""
    PLUGIN_REGISTERED = "plugin-registered"
    PLUGIN_UNREGISTERED = "plugin-unregistered"


# =============================================================================
# RESULT AND CONTEXT
# =============================================================================

class FrozenResultError(AttributeError):
    """Raised when a frozen CaptureResult is modified."""


@dataclass
class CaptureResult:
    """
    Output of a capture, carried through the hook chain.

    Hooks mutate one shared instance in place. freeze() makes it read-only
    once it is handed to the success or cancel path.
    """
    data: Any = None
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get('_frozen'):
            raise FrozenResultError(f"CaptureResult is frozen, cannot set '{name}'")
        super().__setattr__(name, value)

    @property
    def score(self) -> float:
        """Confidence with None read as 0.0."""
        return float(self.confidence or 0.0)

    @property
    def frozen(self) -> bool:
        return bool(self.__dict__.get('_frozen'))

    def freeze(self) -> 'CaptureResult':
        if not self.frozen:
            if isinstance(self.data, dict):
                object.__setattr__(self, 'data', MappingProxyType(dict(self.data)))
            object.__setattr__(self, 'metadata', MappingProxyType(dict(self.metadata)))
            object.__setattr__(self, '_frozen', True)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': dict(self.data) if isinstance(self.data, Mapping) else self.data,
            'confidence': self.confidence,
            'metadata': dict(self.metadata),
        }


@dataclass
class VisionPluginContext:
    """
    Ambient information available to every hook call.

    Built once per capture session by the host and passed by reference.
    Host-specific fields (vehicle id, UI references) go in extras.
    """
    capture_type: str = "document"
    state: CaptureState = CaptureState.IDLE
    retry_count: int = 0
    last_error: Optional[BaseException] = None
    duration: Optional[float] = None  # seconds since capture start
    image_quality: Optional[float] = None  # 0-100
    result: Optional[CaptureResult] = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryDecision:
    """Returned by an on-error hook to tell the host whether and how to retry."""
    retry: bool
    delay: Optional[float] = None  # seconds
    message: Optional[str] = None


@dataclass
class PluginRegistration:
    """Handle returned by VisionPluginManager.register()."""
    id: str
    unregister: Callable[[], Awaitable[None]]


# =============================================================================
# METADATA NAMESPACING
# =============================================================================

class NamespacedMetadata(MutableMapping):
    """
    Metadata view for one plugin.

    Every key can be read, only the plugin's own key can be written or
    deleted. Other plugins' dict entries are returned read-only.
    """

    def __init__(self, metadata: Dict[str, Any], owner: str):
        self._metadata = metadata
        self._owner = owner

    def __getitem__(self, key: str) -> Any:
        value = self._metadata[key]
        if key != self._owner and isinstance(value, dict):
            return MappingProxyType(value)
        return value

    def __setitem__(self, key: str, value: Any) -> None:
        if key != self._owner:
            raise MetadataNamespaceError(self._owner, key)
        self._metadata[key] = value

    def __delitem__(self, key: str) -> None:
        if key != self._owner:
            raise MetadataNamespaceError(self._owner, key)
        del self._metadata[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._metadata)

    def __len__(self) -> int:
        return len(self._metadata)

    def own(self) -> Dict[str, Any]:
        """Return the plugin's namespace dict, creating it if needed."""
        if not isinstance(self._metadata.get(self._owner), dict):
            self._metadata[self._owner] = {}
        return self._metadata[self._owner]

    def __repr__(self) -> str:
        return f"NamespacedMetadata(owner={self._owner!r}, keys={list(self._metadata)})"


class PluginResultView:
    """
    What a hook sees in place of the shared CaptureResult.

    data and confidence pass through to the underlying result; metadata is
    a NamespacedMetadata bound to the plugin id.
    """

    __slots__ = ('_result', '_owner', 'metadata')

    def __init__(self, result: CaptureResult, owner: str):
        object.__setattr__(self, '_result', result)
        object.__setattr__(self, '_owner', owner)
        object.__setattr__(self, 'metadata', NamespacedMetadata(result.metadata, owner))

    @property
    def data(self) -> Any:
        return self._result.data

    @data.setter
    def data(self, value: Any) -> None:
        self._result.data = value

    @property
    def confidence(self) -> Optional[float]:
        return self._result.confidence

    @confidence.setter
    def confidence(self, value: Optional[float]) -> None:
        self._result.confidence = value

    @property
    def score(self) -> float:
        return self._result.score

    @property
    def result(self) -> CaptureResult:
        """The underlying result (for identity checks only)."""
        return self._result

    def __setattr__(self, name: str, value: Any) -> None:
        if name == 'metadata':
            raise AttributeError("metadata cannot be replaced, write to metadata[plugin_id]")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return f"PluginResultView(owner={self._owner!r}, confidence={self.confidence})"


# =============================================================================
# PLUGIN BASE
# =============================================================================

HookHandler = Callable[..., Any]


class VisionPlugin:
    """
    Base class for vision plugins.

    Subclasses either pass a hooks mapping to __init__ or implement hook
    methods and list them in the mapping. Hook keys are validated against
    HookName; unknown names raise ValueError.

    Args:
        id: Globally unique id, also the plugin's metadata namespace
        name: Display name
        version: Plugin version
        type: Plugin role
        hooks: Sparse mapping of hook name to handler
        options: Plugin options object
        on_init: Optional callable run by init(context)
        on_destroy: Optional callable run by destroy()
    """

    def __init__(
        self,
        id: str,
        name: Optional[str] = None,
        version: str = "1.0.0",
        type: Union[str, PluginType] = PluginType.ENHANCER,
        hooks: Optional[Mapping[Union[str, HookName], HookHandler]] = None,
        options: Any = None,
        on_init: Optional[Callable[[VisionPluginContext], Any]] = None,
        on_destroy: Optional[Callable[[], Any]] = None,
    ):
        if not id:
            raise ValueError("Plugin id is required")
        self.id = id
        self.name = name or id
        self.version = version
        self.type = PluginType(type)
        self.options = options
        self._on_init = on_init
        self._on_destroy = on_destroy
        self.hooks: Dict[HookName, HookHandler] = {}
        for hook, handler in (hooks or {}).items():
            self.add_hook(hook, handler)

    @property
    def namespace(self) -> str:
        """Metadata key this plugin may write."""
        return self.id

    def add_hook(self, hook: Union[str, HookName], handler: HookHandler) -> None:
        if not callable(handler):
            raise TypeError(f"Handler for {hook} in plugin {self.id} is not callable")
        self.hooks[HookName.coerce(hook)] = handler

    def init(self, context: VisionPluginContext) -> Any:
        """Called once at registration, may return an awaitable."""
        if self._on_init is not None:
            return self._on_init(context)
        return None

    def destroy(self) -> Any:
        """Called once at unregistration, may return an awaitable."""
        if self._on_destroy is not None:
            return self._on_destroy()
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r}, version={self.version!r}, type={self.type.value})"
