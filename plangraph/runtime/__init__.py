"""Runtime primitives: event bus and cancellation.

Thread and runtime composition live in `plangraph.runtime.thread` and
`plangraph.runtime.agent_runtime`.
"""

from plangraph.runtime.abort import AbortSignal
from plangraph.runtime.event_bus import AgentEvent, EventBus, EventType, ProgressPhase

__all__ = ["AbortSignal", "AgentEvent", "EventBus", "EventType", "ProgressPhase"]
