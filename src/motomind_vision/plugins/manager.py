"""
Vision Plugin Manager
=====================

Registers plugins and runs their lifecycle hooks with the composition rule
of each hook category:

- Gate (before-capture): sequential, False or an exception blocks
- Transform (after/transform/enrich): sequential, output chained
- Validate (validate-result): all must pass
- First-wins (on-error): first RetryDecision wins
- Notify (on-retry/success/cancel): concurrent, errors logged
- Collect (render-*): synchronous, non-None returns collected in order

One manager per capture session. Plugins never see each other; they are
indexed by hook in registration order.

Usage:
    manager = VisionPluginManager(VisionPluginContext(capture_type="vin"))
    await manager.register(vin_validation())
    if await manager.before_capture():
        result = await manager.after_capture(raw)

Author: MotoMind Project
"""

import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..exceptions import PluginRegistrationError, ValidationFailedError
from .types import (
    CaptureResult,
    HookHandler,
    HookName,
    ManagerEvent,
    PluginRegistration,
    PluginResultView,
    PluginState,
    PluginType,
    RetryDecision,
    VisionPlugin,
    VisionPluginContext,
)

logger = logging.getLogger(__name__)

_MISSING = object()


async def _invoke(handler: HookHandler, *args: Any) -> Any:
    """Call a sync or async handler and return its value."""
    value = handler(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


class VisionPluginManager:
    """
    Plugin registry and hook executor for one capture session.

    Args:
        context: Session context passed to every hook call
    """

    def __init__(self, context: Optional[VisionPluginContext] = None):
        self.context = context or VisionPluginContext()
        self._plugins: Dict[str, VisionPlugin] = {}
        self._registrations: Dict[str, PluginRegistration] = {}
        self._states: Dict[str, PluginState] = {}
        self._hooks: Dict[HookName, List[Tuple[str, HookHandler]]] = {hook: [] for hook in HookName}
        self._listeners: Dict[ManagerEvent, List[Callable[..., Any]]] = {event: [] for event in ManagerEvent}

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def register(self, plugin: VisionPlugin) -> PluginRegistration:
        """
        Register a plugin and index its hooks.

        Registering an id twice logs a warning and returns the existing
        handle. init(context) runs before any hook is indexed.

        Raises:
            PluginRegistrationError: If the plugin's init fails
        """
        if plugin.id in self._plugins:
            logger.warning(f"Plugin {plugin.id} is already registered")
            return self._registrations[plugin.id]

        registration = PluginRegistration(id=plugin.id, unregister=partial(self.unregister, plugin.id))
        self._plugins[plugin.id] = plugin
        self._registrations[plugin.id] = registration
        self._states[plugin.id] = PluginState.REGISTERED

        try:
            await _invoke(plugin.init, self.context)
        except Exception as e:
            del self._plugins[plugin.id]
            del self._registrations[plugin.id]
            self._states[plugin.id] = PluginState.UNREGISTERED
            logger.error(f"Failed to initialize plugin {plugin.id}: {e}")
            raise PluginRegistrationError(plugin.id, str(e)) from e

        self._states[plugin.id] = PluginState.INITIALIZED

        for hook, handler in plugin.hooks.items():
            self._hooks[hook].append((plugin.id, handler))

        self._states[plugin.id] = PluginState.ACTIVE
        logger.info(f"Registered plugin {plugin.id} v{plugin.version} ({len(plugin.hooks)} hooks)")
        self._emit(ManagerEvent.PLUGIN_REGISTERED, plugin)
        return registration

    async def register_all(self, plugins: Sequence[VisionPlugin]) -> List[PluginRegistration]:
        """Register several plugins; a failing plugin is logged and skipped."""
        registrations = []
        for plugin in plugins:
            try:
                registrations.append(await self.register(plugin))
            except PluginRegistrationError as e:
                logger.error(f"Skipping plugin {plugin.id}: {e.message}")
        return registrations

    async def unregister(self, plugin_id: str) -> None:
        """Remove a plugin's hooks and destroy it. Unknown ids are ignored."""
        plugin = self._plugins.pop(plugin_id, None)
        if plugin is None:
            return

        self._registrations.pop(plugin_id, None)
        for hook in plugin.hooks:
            self._hooks[hook] = [entry for entry in self._hooks[hook] if entry[0] != plugin_id]

        try:
            await _invoke(plugin.destroy)
        except Exception as e:
            logger.error(f"Error destroying plugin {plugin_id}: {e}")

        self._states[plugin_id] = PluginState.DESTROYED
        logger.info(f"Unregistered plugin {plugin_id}")
        self._emit(ManagerEvent.PLUGIN_UNREGISTERED, plugin)

    async def unregister_all(self) -> None:
        """Unregister every plugin; each destroy is attempted."""
        for plugin_id in list(self._plugins):
            await self.unregister(plugin_id)

    async def __aenter__(self) -> 'VisionPluginManager':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unregister_all()

    # =========================================================================
    # EVENTS
    # =========================================================================

    def on(self, event: ManagerEvent, listener: Callable[[VisionPlugin], Any]) -> None:
        self._listeners[ManagerEvent(event)].append(listener)

    def off(self, event: ManagerEvent, listener: Callable[[VisionPlugin], Any]) -> None:
        listeners = self._listeners[ManagerEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: ManagerEvent, plugin: VisionPlugin) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(plugin)
            except Exception as e:
                logger.error(f"Listener for {event.value} failed: {e}")

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_plugins(self) -> List[VisionPlugin]:
        """Registered plugins in registration order."""
        return list(self._plugins.values())

    def get_plugin(self, plugin_id: str) -> Optional[VisionPlugin]:
        return self._plugins.get(plugin_id)

    def has_plugin(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins

    def get_plugins_by_type(self, plugin_type: PluginType) -> List[VisionPlugin]:
        plugin_type = PluginType(plugin_type)
        return [p for p in self._plugins.values() if p.type == plugin_type]

    def get_state(self, plugin_id: str) -> PluginState:
        return self._states.get(plugin_id, PluginState.UNREGISTERED)

    @property
    def plugin_count(self) -> int:
        return len(self._plugins)

    def handler_count(self, hook: HookName) -> int:
        return len(self._hooks[HookName.coerce(hook)])

    def _handlers(self, hook: HookName) -> List[Tuple[str, HookHandler]]:
        # Snapshot so a hook that unregisters a plugin does not disturb iteration
        return list(self._hooks[hook])

    # =========================================================================
    # GATE
    # =========================================================================

    async def before_capture(self) -> bool:
        """True unless a handler returns False or raises."""
        for plugin_id, handler in self._handlers(HookName.BEFORE_CAPTURE):
            try:
                allowed = await _invoke(handler, self.context)
            except Exception as e:
                logger.warning(f"before-capture in {plugin_id} raised, blocking capture: {e}")
                return False
            if allowed is False:
                logger.info(f"Capture blocked by plugin {plugin_id}")
                return False
        return True

    # =========================================================================
    # SEQUENTIAL TRANSFORM
    # =========================================================================

    async def after_capture(self, result: CaptureResult) -> CaptureResult:
        """Chain after-capture handlers. Errors propagate to the host."""
        return await self._transform(HookName.AFTER_CAPTURE, result, propagate=True)

    async def transform_result(self, result: CaptureResult) -> CaptureResult:
        """Chain transform-result handlers. Errors are logged and skipped."""
        return await self._transform(HookName.TRANSFORM_RESULT, result, propagate=False)

    async def enrich_result(self, result: CaptureResult) -> CaptureResult:
        """Chain enrich-result handlers. Errors are logged and skipped."""
        return await self._transform(HookName.ENRICH_RESULT, result, propagate=False)

    async def _transform(self, hook: HookName, result: CaptureResult, propagate: bool) -> CaptureResult:
        current = result
        for plugin_id, handler in self._handlers(hook):
            view = PluginResultView(current, plugin_id)
            try:
                returned = await _invoke(handler, view, self.context)
            except Exception as e:
                if propagate:
                    raise
                logger.error(f"{hook.value} in {plugin_id} failed, keeping last good result: {e}")
                continue

            if not returned:
                continue
            current = self._adopt(plugin_id, current, returned)
        return current

    def _adopt(self, plugin_id: str, previous: CaptureResult, returned: Any) -> CaptureResult:
        """Take a handler's replacement result, keeping other plugins' metadata intact."""
        if isinstance(returned, PluginResultView):
            return returned.result
        if not isinstance(returned, CaptureResult):
            logger.warning(
                f"Plugin {plugin_id} returned {type(returned).__name__}, expected CaptureResult; ignored"
            )
            return previous
        if returned is previous:
            return previous

        restored = []
        for key in set(previous.metadata) | set(returned.metadata):
            if key == plugin_id:
                continue
            before = previous.metadata.get(key, _MISSING)
            after = returned.metadata.get(key, _MISSING)
            if after is before or after == before:
                continue
            if before is _MISSING:
                del returned.metadata[key]
            else:
                returned.metadata[key] = before
            restored.append(key)

        if restored:
            logger.warning(f"Plugin {plugin_id} changed foreign metadata {sorted(restored)}; restored")
        return returned

    # =========================================================================
    # ALL MUST PASS
    # =========================================================================

    async def validate_result(self, result: CaptureResult) -> bool:
        """
        Run every validate-result handler.

        Raises:
            ValidationFailedError: On the first falsy return
            Exception: Whatever a handler raised
        """
        for plugin_id, handler in self._handlers(HookName.VALIDATE_RESULT):
            passed = await _invoke(handler, PluginResultView(result, plugin_id), self.context)
            if not passed:
                logger.info(f"Validation failed in plugin {plugin_id}")
                raise ValidationFailedError("Validation failed", plugin_id=plugin_id)
        return True

    # =========================================================================
    # FIRST WINS
    # =========================================================================

    async def on_error(self, error: BaseException) -> Optional[RetryDecision]:
        """Return the first RetryDecision offered by an on-error handler."""
        for plugin_id, handler in self._handlers(HookName.ON_ERROR):
            try:
                decision = await _invoke(handler, error, self.context)
            except Exception as e:
                logger.error(f"on-error in {plugin_id} failed: {e}")
                continue
            if decision is None:
                continue
            if isinstance(decision, RetryDecision):
                logger.debug(f"Retry decision from {plugin_id}: {decision}")
                return decision
            logger.warning(f"Plugin {plugin_id} returned {type(decision).__name__} from on-error; ignored")
        return None

    # =========================================================================
    # NOTIFY
    # =========================================================================

    async def on_retry(self, attempt: int) -> None:
        await self._notify(HookName.ON_RETRY, self.context, attempt)

    async def on_success(self, result: CaptureResult) -> None:
        await self._notify(HookName.ON_SUCCESS, result, self.context)

    async def on_cancel(self) -> None:
        await self._notify(HookName.ON_CANCEL, self.context)

    async def _notify(self, hook: HookName, *args: Any) -> None:
        handlers = self._handlers(hook)
        if not handlers:
            return
        await asyncio.gather(*(self._notify_one(hook, plugin_id, handler, args) for plugin_id, handler in handlers))

    async def _notify_one(self, hook: HookName, plugin_id: str, handler: HookHandler, args: Tuple) -> None:
        try:
            await _invoke(handler, *args)
        except Exception as e:
            logger.error(f"{hook.value} in {plugin_id} failed: {e}")

    # =========================================================================
    # COLLECT
    # =========================================================================

    def render_overlay(self) -> List[Any]:
        return self._collect(HookName.RENDER_OVERLAY)

    def render_toolbar(self) -> List[Any]:
        return self._collect(HookName.RENDER_TOOLBAR)

    def render_result(self) -> List[Any]:
        return self._collect(HookName.RENDER_RESULT)

    def render_confidence(self) -> List[Any]:
        return self._collect(HookName.RENDER_CONFIDENCE)

    def _collect(self, hook: HookName) -> List[Any]:
        nodes = []
        for plugin_id, handler in self._handlers(hook):
            try:
                node = handler(self.context)
            except Exception as e:
                logger.error(f"{hook.value} in {plugin_id} failed: {e}")
                continue
            if inspect.isawaitable(node):
                if inspect.iscoroutine(node):
                    node.close()
                logger.warning(f"{hook.value} in {plugin_id} is async; render hooks must be synchronous")
                continue
            if node is not None:
                nodes.append(node)
        return nodes

    def __repr__(self) -> str:
        return f"VisionPluginManager(plugins={list(self._plugins)})"

