"""
Event Bus - observe runs without coupling the executor to its observers.

The executor, the variable IO layer and the storage manager publish
WorkflowEvents; hosts (a UI, the CLI, tests) subscribe by event type and,
optionally, by run or node. Delivery is best-effort: a handler that raises
is logged and the publisher carries on.

Example:
    bus = EventBus()

    async def on_node_failed(event: WorkflowEvent):
        print(f"{event.node_id} failed: {event.data['error']}")

    bus.subscribe([EventType.NODE_FAILED], on_node_failed)
"""

import asyncio
import itertools
import logging
from collections import Counter, deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_STOPPED = "execution_stopped"

    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"

    VARIABLE_CHANGED = "variable_changed"

    INTERACTION_REQUESTED = "interaction_requested"
    INTERACTION_RESOLVED = "interaction_resolved"


# terminal run status → event type; anything else is a failure
_FINISH_EVENTS = {
    "completed": EventType.EXECUTION_COMPLETED,
    "stopped": EventType.EXECUTION_STOPPED,
}


@dataclass
class WorkflowEvent:
    type: EventType
    run_id: str | None = None
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    event_types: frozenset[EventType]
    handler: EventHandler
    filter_run: str | None = None
    filter_node: str | None = None

    def matches(self, event: WorkflowEvent) -> bool:
        return (
            event.type in self.event_types
            and (self.filter_run is None or self.filter_run == event.run_id)
            and (self.filter_node is None or self.filter_node == event.node_id)
        )


class EventBus:
    """
    Async pub/sub with a bounded history.

    Handlers for one event run concurrently, at most ``max_concurrent_handlers``
    at a time.
    """

    def __init__(self, max_history: int = 1000, max_concurrent_handlers: int = 10):
        self._subscriptions: dict[str, Subscription] = {}
        self._ids = itertools.count(1)
        self._history: deque[WorkflowEvent] = deque(maxlen=max_history)
        self._slots = asyncio.Semaphore(max_concurrent_handlers)

    # === SUBSCRIPTIONS ===

    def subscribe(
        self,
        event_types: Iterable[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Register ``handler`` for ``event_types``.

        Args:
            filter_run: Only deliver events of this run
            filter_node: Only deliver events of this node

        Returns:
            Subscription id for unsubscribe()
        """
        sub_id = f"sub_{next(self._ids)}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=frozenset(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"{sub_id} listening for {sorted(self._subscriptions[sub_id].event_types)}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    # === PUBLISHING ===

    async def publish(self, event: WorkflowEvent) -> None:
        self._history.append(event)
        handlers = [sub.handler for sub in list(self._subscriptions.values()) if sub.matches(event)]
        if handlers:
            await asyncio.gather(*(self._deliver(handler, event) for handler in handlers))

    async def _deliver(self, handler: EventHandler, event: WorkflowEvent) -> None:
        async with self._slots:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"✗ Event handler failed on {event.type}: {e}")

    async def _emit(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        **data: Any,
    ) -> None:
        await self.publish(WorkflowEvent(type=event_type, run_id=run_id, node_id=node_id, data=data))

    async def emit_execution_started(self, run_id: str, graph_id: str, node_count: int) -> None:
        await self._emit(
            EventType.EXECUTION_STARTED, run_id, graph_id=graph_id, node_count=node_count
        )

    async def emit_execution_finished(
        self,
        run_id: str,
        status: str,
        errors: list[str] | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Publish the terminal event that matches ``status``."""
        await self._emit(
            _FINISH_EVENTS.get(status, EventType.EXECUTION_FAILED),
            run_id,
            status=status,
            errors=errors or [],
            duration_ms=duration_ms,
        )

    async def emit_node_started(self, run_id: str, node_id: str) -> None:
        await self._emit(EventType.NODE_STARTED, run_id, node_id)

    async def emit_node_completed(
        self, run_id: str, node_id: str, outputs: list[str] | None = None
    ) -> None:
        await self._emit(EventType.NODE_COMPLETED, run_id, node_id, outputs=outputs or [])

    async def emit_node_failed(self, run_id: str, node_id: str, error: str) -> None:
        await self._emit(EventType.NODE_FAILED, run_id, node_id, error=error)

    async def emit_variable_changed(
        self,
        name: str,
        action: str,
        var_type: str | None = None,
        tier: str | None = None,
    ) -> None:
        await self._emit(EventType.VARIABLE_CHANGED, name=name, action=action, type=var_type, tier=tier)

    async def emit_interaction_requested(
        self,
        node_id: str,
        variable: str,
        direction: str,
        timeout_ms: int,
        request_id: str | None = None,
    ) -> None:
        await self._emit(
            EventType.INTERACTION_REQUESTED,
            node_id=node_id,
            variable=variable,
            direction=direction,
            timeout_ms=timeout_ms,
            request_id=request_id,
        )

    async def emit_interaction_resolved(
        self, node_id: str, variable: str, direction: str, action: str
    ) -> None:
        await self._emit(
            EventType.INTERACTION_RESOLVED,
            node_id=node_id,
            variable=variable,
            direction=direction,
            action=action,
        )

    # === INSPECTION ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowEvent]:
        """Recorded events, newest first."""
        selected = [
            event
            for event in reversed(self._history)
            if (event_type is None or event.type == event_type)
            and (run_id is None or event.run_id == run_id)
        ]
        return selected[:limit]

    def get_stats(self) -> dict[str, Any]:
        counts = Counter(event.type.value for event in self._history)
        return {
            "total_events": len(self._history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": dict(counts),
        }

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> WorkflowEvent | None:
        """
        Wait for the next matching event.

        Returns:
            The event, or None if ``timeout`` seconds pass first
        """
        received: asyncio.Future[WorkflowEvent] = asyncio.get_running_loop().create_future()

        async def capture(event: WorkflowEvent) -> None:
            if not received.done():
                received.set_result(event)

        sub_id = self.subscribe([event_type], capture, filter_run=run_id, filter_node=node_id)
        try:
            return await asyncio.wait_for(received, timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(sub_id)
