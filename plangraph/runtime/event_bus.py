"""
Event Bus - Pub/sub for graph lifecycle and plan progress notifications.

Notifications are one-way and best-effort: a failing handler is logged and
dropped, and nothing in plan/todo state depends on delivery.

Progress events carry the shape `{phase, thread_id, data}`.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_STOPPED = "run_stopped"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    EDGE_TRAVERSED = "edge_traversed"

    # Plan/todo progress
    PROGRESS = "progress"


class ProgressPhase(StrEnum):
    PLAN_CREATED = "plan_created"
    PLAN_REVISED = "plan_revised"
    PLAN_COMPLETED = "plan_completed"
    TODO_CREATED = "todo_created"
    TODO_STATUS = "todo_status"
    TODO_DELETED = "todo_deleted"
    REVISION_REQUESTED = "revision_requested"
    CRITIC_DECISION = "critic_decision"
    FINAL_REVIEW = "final_review"
    NOTICE = "notice"


@dataclass
class AgentEvent:
    """An event in the agent system."""

    type: EventType
    thread_id: str
    node_id: str | None = None
    phase: str | None = None  # Only set for PROGRESS events
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "phase": self.phase,
            "thread_id": self.thread_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[AgentEvent], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_thread: str | None = None


class EventBus:
    """
    Async pub/sub event bus.

    Example:
        bus = EventBus()

        async def on_progress(event: AgentEvent):
            print(event.phase, event.data)

        bus.subscribe([EventType.PROGRESS], on_progress)

        await bus.emit_progress("thread-1", ProgressPhase.PLAN_CREATED, {"plan_id": 1})
    """

    def __init__(self, max_history: int = 1000, max_concurrent_handlers: int = 10):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[AgentEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_thread: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_thread=filter_thread,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: AgentEvent) -> None:
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            sub.handler for sub in self._subscriptions.values() if self._matches(sub, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: AgentEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_thread and subscription.filter_thread != event.thread_id:
            return False
        return True

    async def _execute_handlers(self, event: AgentEvent, handlers: list[EventHandler]) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_progress(
        self,
        thread_id: str,
        phase: ProgressPhase | str,
        data: dict[str, Any] | None = None,
        node_id: str | None = None,
    ) -> None:
        """Emit a plan/todo progress notification."""
        await self.publish(
            AgentEvent(
                type=EventType.PROGRESS,
                thread_id=thread_id,
                node_id=node_id,
                phase=str(phase),
                data=data or {},
            )
        )

    async def emit_run_started(self, thread_id: str, entry_node: str) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.RUN_STARTED,
                thread_id=thread_id,
                node_id=entry_node,
                data={"entry_node": entry_node},
            )
        )

    async def emit_run_completed(
        self, thread_id: str, path: list[str], iterations: int, error: str | None = None
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.RUN_COMPLETED,
                thread_id=thread_id,
                data={"path": list(path), "iterations": iterations, "error": error},
            )
        )

    async def emit_run_stopped(self, thread_id: str, node_id: str | None, reason: str) -> None:
        """Emit a forced-stop event (loop protection or abort)."""
        await self.publish(
            AgentEvent(
                type=EventType.RUN_STOPPED,
                thread_id=thread_id,
                node_id=node_id,
                data={"reason": reason},
            )
        )

    async def emit_node_started(self, thread_id: str, node_id: str, iteration: int) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.NODE_STARTED,
                thread_id=thread_id,
                node_id=node_id,
                data={"iteration": iteration},
            )
        )

    async def emit_node_completed(self, thread_id: str, node_id: str, decision: str) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.NODE_COMPLETED,
                thread_id=thread_id,
                node_id=node_id,
                data={"decision": decision},
            )
        )

    async def emit_node_failed(self, thread_id: str, node_id: str, error: str) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.NODE_FAILED,
                thread_id=thread_id,
                node_id=node_id,
                data={"error": error},
            )
        )

    async def emit_edge_traversed(
        self, thread_id: str, source_node: str, target_node: str, edge_condition: str = ""
    ) -> None:
        await self.publish(
            AgentEvent(
                type=EventType.EDGE_TRAVERSED,
                thread_id=thread_id,
                node_id=source_node,
                data={
                    "source_node": source_node,
                    "target_node": target_node,
                    "edge_condition": edge_condition,
                },
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        thread_id: str | None = None,
        phase: str | None = None,
        limit: int = 100,
    ) -> list[AgentEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if thread_id:
            events = [e for e in events if e.thread_id == thread_id]
        if phase:
            events = [e for e in events if e.phase == phase]
        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }
