"""Node decisions: the tagged outcome a node returns to steer the graph."""

from enum import StrEnum

from pydantic import BaseModel


class DecisionType(StrEnum):
    CONTINUE = "continue"  # Follow the default/conditional edges
    NEXT = "next"  # Follow the declared "next" edge (same resolution as continue)
    REVISE = "revise"  # Follow the revision edge back to planning
    END = "end"  # Terminate the run
    GOTO = "goto"  # Route directly to `target`


class NodeDecision(BaseModel):
    """Exactly one variant is set per node invocation."""

    type: DecisionType
    target: str | None = None

    @classmethod
    def cont(cls) -> "NodeDecision":
        return cls(type=DecisionType.CONTINUE)

    @classmethod
    def next(cls) -> "NodeDecision":
        return cls(type=DecisionType.NEXT)

    @classmethod
    def revise(cls) -> "NodeDecision":
        return cls(type=DecisionType.REVISE)

    @classmethod
    def end(cls) -> "NodeDecision":
        return cls(type=DecisionType.END)

    @classmethod
    def goto(cls, node_id: str) -> "NodeDecision":
        return cls(type=DecisionType.GOTO, target=node_id)

    def __str__(self) -> str:
        if self.type == DecisionType.GOTO:
            return f"goto:{self.target}"
        return self.type.value
