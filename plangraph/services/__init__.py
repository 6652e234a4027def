"""Plan lifecycle and awareness services."""

from plangraph.services.awareness import (
    ActivePlanRegistry,
    AwarenessRecord,
    AwarenessService,
    ConversationSummary,
)
from plangraph.services.strategic_state import (
    StrategicState,
    has_blocked_prerequisite,
    has_remaining_todos,
    pick_next_todo,
)

__all__ = [
    "ActivePlanRegistry",
    "AwarenessRecord",
    "AwarenessService",
    "ConversationSummary",
    "StrategicState",
    "has_blocked_prerequisite",
    "has_remaining_todos",
    "pick_next_todo",
]
