"""
Capture Session - Orchestration Host
====================================

Drives one document through the plugin pipeline:

    before-capture -> [BLOCKED if False]
      -> acquire -> after-capture -> transform-result
      -> validate-result -> enrich-result -> freeze -> on-success

Any error in the chain goes to on-error. If the RetryDecision (default:
no retry) asks for a retry the session sleeps `delay` seconds, increments
the retry counter, fires on-retry and acquires again. cancel() abandons
the in-flight step and fires on-cancel.

Usage:
    manager = VisionPluginManager(VisionPluginContext(capture_type="vin"))
    await manager.register_all([vin_validation(), confidence_scoring()])
    outcome = await CaptureSession(manager, source).run()

Author: MotoMind Project
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from ..config import CaptureConfig
from ..exceptions import VisionPipelineError
from ..plugins.manager import VisionPluginManager
from ..plugins.types import (
    CaptureResult,
    CaptureState,
    RetryDecision,
    VisionPlugin,
    VisionPluginContext,
)
from .sources import CaptureSource

logger = logging.getLogger(__name__)


class CaptureStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


@dataclass
class CaptureOutcome:
    """Final state of a capture session."""
    status: CaptureStatus
    result: Optional[CaptureResult] = None
    attempts: int = 0
    message: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.status == CaptureStatus.SUCCESS

    def to_dict(self) -> dict:
        error = None
        if isinstance(self.error, VisionPipelineError):
            error = self.error.to_dict()
        elif self.error is not None:
            error = {'error': type(self.error).__name__, 'message': str(self.error)}
        return {
            'status': self.status.value,
            'attempts': self.attempts,
            'message': self.message,
            'result': self.result.to_dict() if self.result else None,
            'error': error,
        }


class CaptureCancelled(Exception):
    """Internal signal: the session was cancelled during a step."""


def _error_message(error: BaseException) -> str:
    if isinstance(error, VisionPipelineError):
        return error.message
    return str(error) or type(error).__name__


class CaptureSession:
    """
    One capture host bound to one plugin manager.

    Args:
        manager: Session-owned plugin manager (its context is the session context)
        source: Produces the raw result for each attempt
        config: Capture settings (pipeline config if None)
        max_attempts: Hard ceiling on attempts, overrides config.max_attempts
    """

    def __init__(
        self,
        manager: VisionPluginManager,
        source: CaptureSource,
        config: Optional[CaptureConfig] = None,
        max_attempts: Optional[int] = None,
    ):
        if config is None:
            from ..config import get_config
            config = get_config().capture
        self.manager = manager
        self.source = source
        self.config = config
        self.max_attempts = max_attempts if max_attempts is not None else config.max_attempts
        self._cancel_event = asyncio.Event()
        self._started_at: Optional[float] = None
        self._last_decision: Optional[RetryDecision] = None

    @property
    def context(self) -> VisionPluginContext:
        return self.manager.context

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation; run() returns a CANCELLED outcome."""
        if not self._cancel_event.is_set():
            logger.info("Capture cancellation requested")
            self._cancel_event.set()

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def run(self) -> CaptureOutcome:
        context = self.context
        context.retry_count = 0
        context.last_error = None
        self._started_at = time.monotonic()
        self._last_decision = None
        attempts = 0

        try:
            allowed = await self._step(self.manager.before_capture())
            if not allowed:
                context.state = CaptureState.IDLE
                return CaptureOutcome(CaptureStatus.BLOCKED, attempts=0, message="Capture blocked by plugin")

            while True:
                attempts += 1
                try:
                    result = await self._step(self._attempt())
                except CaptureCancelled:
                    raise
                except Exception as error:
                    decision = await self._handle_error(error, attempts)
                    if decision is None:
                        return self._failed(error, attempts)
                    await self._prepare_retry(decision)
                    continue

                return await self._succeed(result, attempts)

        except CaptureCancelled:
            return await self._cancelled(attempts)

    async def _attempt(self) -> CaptureResult:
        context = self.context
        context.state = CaptureState.CAPTURING
        raw = await self.source.acquire(context)
        context.result = raw
        context.state = CaptureState.PROCESSING

        result = await self.manager.after_capture(raw)
        context.result = result
        result = await self.manager.transform_result(result)
        context.result = result
        await self.manager.validate_result(result)
        result = await self.manager.enrich_result(result)
        context.result = result
        return result

    async def _handle_error(self, error: BaseException, attempts: int) -> Optional[RetryDecision]:
        """Return the decision when a retry should happen, None when the capture fails."""
        context = self.context
        context.state = CaptureState.ERROR
        context.last_error = error
        self._update_duration()
        logger.warning(f"Capture attempt {attempts} failed: {_error_message(error)}")

        decision = await self._step(self.manager.on_error(error)) or RetryDecision(retry=False)
        self._last_decision = decision
        if not decision.retry:
            return None
        if attempts >= self.max_attempts:
            logger.error(f"Giving up after {attempts} attempts (max_attempts={self.max_attempts})")
            return None
        return decision

    async def _prepare_retry(self, decision: RetryDecision) -> None:
        if decision.message:
            logger.info(decision.message)
        if decision.delay:
            await self._step(asyncio.sleep(decision.delay))
        self.context.retry_count += 1
        await self._step(self.manager.on_retry(self.context.retry_count))

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    async def _succeed(self, result: CaptureResult, attempts: int) -> CaptureOutcome:
        context = self.context
        result.freeze()
        context.result = result
        context.state = CaptureState.SUCCESS
        self._update_duration()
        logger.info(f"Capture succeeded after {attempts} attempt(s) in {context.duration:.2f}s")
        await self.manager.on_success(result)
        return CaptureOutcome(CaptureStatus.SUCCESS, result=result, attempts=attempts)

    def _failed(self, error: BaseException, attempts: int) -> CaptureOutcome:
        decision = self._last_decision
        message = _error_message(error)
        if decision is not None and decision.message and not decision.retry:
            message = decision.message
        elif decision is not None and decision.retry:
            message = f"Capture failed after {attempts} attempts: {message}"
        logger.error(f"Capture failed: {message}")
        return CaptureOutcome(
            CaptureStatus.FAILED,
            result=self.context.result,
            attempts=attempts,
            message=message,
            error=error,
        )

    async def _cancelled(self, attempts: int) -> CaptureOutcome:
        context = self.context
        context.state = CaptureState.CANCELLED
        if context.result is not None:
            context.result.freeze()
        self._update_duration()
        await self.manager.on_cancel()
        logger.info("Capture cancelled")
        return CaptureOutcome(CaptureStatus.CANCELLED, attempts=attempts, message="Capture cancelled")

    def _update_duration(self) -> None:
        if self._started_at is not None:
            self.context.duration = time.monotonic() - self._started_at

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    async def _step(self, awaitable: Awaitable[Any]) -> Any:
        """Await one step, abandoning it if cancel() is called first."""
        task = asyncio.ensure_future(awaitable)
        if self._cancel_event.is_set():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise CaptureCancelled()

        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise CaptureCancelled()


# =============================================================================
# BATCH
# =============================================================================

async def capture_batch(
    items: Sequence[Any],
    plugin_factory: Callable[[Any], Sequence[VisionPlugin]],
    source_factory: Callable[[Any], CaptureSource],
    context_factory: Optional[Callable[[Any], VisionPluginContext]] = None,
    concurrency: Optional[int] = None,
    config: Optional[CaptureConfig] = None,
) -> List[CaptureOutcome]:
    """
    Capture several documents concurrently.

    Every item gets its own context, plugin manager and plugin instances,
    so retry counters and trend trackers are never shared.

    Args:
        items: Arbitrary per-document descriptors
        plugin_factory: Builds fresh plugins for an item
        source_factory: Builds the capture source for an item
        context_factory: Builds the context for an item (default context if None)
        concurrency: Max sessions in flight (config.batch_concurrency if None)
        config: Capture settings (pipeline config if None)

    Returns:
        Outcomes in item order
    """
    if config is None:
        from ..config import get_config
        config = get_config().capture
    semaphore = asyncio.Semaphore(max(1, concurrency or config.batch_concurrency))

    async def run_one(index: int, item: Any) -> CaptureOutcome:
        async with semaphore:
            context = context_factory(item) if context_factory else VisionPluginContext()
            try:
                async with VisionPluginManager(context) as manager:
                    await manager.register_all(plugin_factory(item))
                    session = CaptureSession(manager, source_factory(item), config=config)
                    outcome = await session.run()
            except Exception as e:
                logger.error(f"Batch item {index} failed outside the pipeline: {e}")
                return CaptureOutcome(CaptureStatus.FAILED, message=_error_message(e), error=e)
            logger.info(f"Batch item {index}: {outcome.status.value} ({outcome.attempts} attempts)")
            return outcome

    logger.info(f"Starting batch capture of {len(items)} items")
    return list(await asyncio.gather(*(run_one(i, item) for i, item in enumerate(items))))
