"""Domain models for the investigation phase machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(str, Enum):
    """Investigation phases in execution order."""

    PLAN = "PLAN"
    BOOTSTRAP = "BOOTSTRAP"
    QUESTION = "QUESTION"
    FOLLOW = "FOLLOW"
    WRITE = "WRITE"
    VERIFY = "VERIFY"
    COMPLETE = "COMPLETE"

    @classmethod
    def parse(cls, value: Any) -> Phase | None:
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


class ContinueStatus(str, Enum):
    """Outcome class of one ``check-continue`` evaluation."""

    CONTINUE = "CONTINUE"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"

    @property
    def exit_code(self) -> int:
        return {"COMPLETE": 0, "ERROR": 1, "CONTINUE": 2}[self.value]


WRITE_PREREQUISITES = ("planning", "questions", "curiosity", "reconciliation")
PROCESS_GATES = (
    "planning",
    "questions",
    "curiosity",
    "reconciliation",
    "article",
    "sources",
    "integrity",
    "legal",
)
QUALITY_GATE_ACTIONS = (
    ("balance", "/action balance-audit"),
    ("completeness", "/action completeness-audit"),
    ("significance", "/action significance-audit"),
)


@dataclass(slots=True)
class CaseState:
    """``state.json`` contents; keys this package does not own are kept in ``extra``."""

    case: str
    phase: str = Phase.PLAN.value
    iteration: int = 1
    gates: dict[str, bool] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.extra)
        payload.update(
            {
                "case": self.case,
                "phase": self.phase,
                "iteration": self.iteration,
                "gates": dict(self.gates),
            },
        )
        return payload


@dataclass(slots=True)
class LeadInfo:
    """Lead selected for the next follow action."""

    id: str
    lead: str
    priority: str
    depth: int


@dataclass(slots=True)
class BatchRecommendation:
    """Parallel follow-up hint for batch mode."""

    lead_ids: list[str]
    count: int
    available: int
    message: str


@dataclass(slots=True)
class NextAction:
    """Single decision produced by the phase machine."""

    status: ContinueStatus
    phase: str
    next: str | None
    reason: str
    lead: LeadInfo | None = None
    batch: BatchRecommendation | None = None
    missing_prerequisites: list[str] | None = None
    failing_gates: list[str] | None = None
    lead_counts: dict[str, int] | None = None
    parallel_review: bool = False
    transitions: list[tuple[str, str]] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return self.status.exit_code
