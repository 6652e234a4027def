"""Plan persistence backends."""

from plangraph.storage.plan_store import (
    DocumentPlanStore,
    FilePlanStore,
    InMemoryPlanStore,
    PlanStore,
)

__all__ = ["DocumentPlanStore", "FilePlanStore", "InMemoryPlanStore", "PlanStore"]
