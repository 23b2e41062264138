"""
Transition Events

Async event publishing for check status transitions.
Decouples the engine from whatever delivers notifications
(email, chat, webhooks); the engine only publishes.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable

import structlog

from pulsewatch.engine.models import StatusTransition

logger = structlog.get_logger(__name__)

# Type for transition handlers
TransitionHandler = Callable[[StatusTransition], Awaitable[None]]


class TransitionBus:
    """
    Async event bus for status transitions.

    Supports:
    - Registered handlers (awaited in order for every event)
    - Async iteration for streaming consumers
    """

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[StatusTransition]] = []
        self._handlers: list[TransitionHandler] = []
        self._published = 0

    async def publish(self, event: StatusTransition) -> None:
        """
        Publish a transition to all subscribers and handlers.

        Handler failures are logged and never propagate to the publisher.

        Args:
            event: The transition to publish
        """
        self._published += 1
        logger.debug(
            "Publishing transition",
            check_id=event.check_id,
            previous=event.previous_status.value,
            status=event.status.value,
        )

        for queue in self._queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Transition queue full, dropping event", check_id=event.check_id)

        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Transition handler failed",
                    error=str(e),
                    handler=getattr(handler, "__name__", repr(handler)),
                )

    async def subscribe(self, max_queue_size: int = 100) -> AsyncIterator[StatusTransition]:
        """
        Subscribe to transitions.

        Args:
            max_queue_size: Maximum events to buffer

        Yields:
            Transitions as they occur
        """
        queue: asyncio.Queue[StatusTransition] = asyncio.Queue(maxsize=max_queue_size)
        self._queues.append(queue)

        try:
            while True:
                yield await queue.get()
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def register_handler(self, handler: TransitionHandler) -> None:
        """Register an async handler called for every transition."""
        self._handlers.append(handler)

    def unregister_handler(self, handler: TransitionHandler) -> None:
        """Unregister a handler."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def published_count(self) -> int:
        """Number of transitions published so far."""
        return self._published

    @property
    def active_subscriptions(self) -> int:
        """Number of streaming subscribers."""
        return len(self._queues)


async def log_transition(event: StatusTransition) -> None:
    """Default handler: write every transition to the log."""
    log = logger.warning if event.went_down else logger.info
    log(
        "Check status changed",
        check_id=event.check_id,
        check_name=event.check_name,
        url=event.url,
        previous=event.previous_status.value,
        status=event.status.value,
        http_status=event.http_status,
        error=event.error,
    )
