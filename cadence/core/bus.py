"""
Cadence Event Bus.

Combines two patterns:
1. Observer (pub/sub): log sinks and the UI subscribe to event types
2. Middleware chain: events pass through middleware (transition log)
   before delivery

The engine never depends on who is listening. A failing subscriber is
logged and ignored.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import Awaitable, Callable

from cadence.core.events import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
MiddlewareNext = Callable[[Event], Awaitable[Event]]
MiddlewareFunc = Callable[[Event, MiddlewareNext], Awaitable[Event]]


class EventBus:
    """
    Publish/subscribe event bus with middleware pipeline.

    Usage:
        bus = EventBus()
        bus.on("schedule:executed", my_handler)
        bus.on("schedule:*", my_wildcard_handler)
        bus.use(transition_log.middleware)

        await bus.emit(Event(type="schedule:fired", message="..."))
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._middleware: list[MiddlewareFunc] = []

    # ━━━ Subscription ━━━

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to an event type. Supports wildcards: 'schedule:*', '*'."""
        self._subscribers.setdefault(event_type, []).append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._subscribers:
            self._subscribers[event_type] = [
                h for h in self._subscribers[event_type] if h != handler
            ]
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]

    # ━━━ Middleware ━━━

    def use(self, middleware: MiddlewareFunc) -> None:
        """
        Add middleware to the processing pipeline.

        Middleware signature:
            async def my_middleware(event: Event, next: MiddlewareNext) -> Event:
                result = await next(event)
                return result
        """
        self._middleware.append(middleware)

    # ━━━ Emission ━━━

    async def emit(self, event: Event) -> Event:
        """
        Emit an event through the middleware chain, then to subscribers.

        Middleware executes in registration order; subscribers concurrently.
        Errors anywhere in the chain are logged, never raised.
        """
        chain = self._build_chain()
        try:
            return await chain(event)
        except Exception as e:
            logger.error(f"Event pipeline error for {event.type}: {e}", exc_info=e)
            return event

    def emit_nowait(self, event: Event) -> None:
        """Fire-and-forget emit; skipped when no loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No event loop for nowait emit: {event.type}")
            return
        loop.create_task(self.emit(event))

    # ━━━ Internals ━━━

    def _build_chain(self) -> MiddlewareNext:
        async def dispatch(event: Event) -> Event:
            handlers = self._find_handlers(event.type)
            if handlers:
                results = await asyncio.gather(
                    *(h(event) for h in handlers),
                    return_exceptions=True,
                )
                for result in results:
                    if isinstance(result, Exception):
                        logger.error(
                            f"Subscriber error for {event.type}: {result}",
                            exc_info=result,
                        )
            return event

        handler: MiddlewareNext = dispatch
        for mw in reversed(self._middleware):
            next_handler = handler

            async def make_handler(
                event: Event,
                *,
                _mw: MiddlewareFunc = mw,
                _next: MiddlewareNext = next_handler,
            ) -> Event:
                return await _mw(event, _next)

            handler = make_handler

        return handler

    def _find_handlers(self, event_type: str) -> list[EventHandler]:
        handlers: list[EventHandler] = []
        for pattern, subs in self._subscribers.items():
            if pattern == event_type or pattern == "*":
                handlers.extend(subs)
            elif "*" in pattern and fnmatch.fnmatch(event_type, pattern):
                handlers.extend(subs)
        return handlers

    @property
    def subscriber_count(self) -> int:
        """Total number of subscriptions (for debugging)."""
        return sum(len(subs) for subs in self._subscribers.values())
