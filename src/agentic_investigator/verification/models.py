"""Domain models for verifier runs, gaps and termination gates."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


GATE_NAMES = (
    "planning",
    "questions",
    "curiosity",
    "reconciliation",
    "article",
    "sources",
    "integrity",
    "legal",
    "balance",
    "completeness",
    "significance",
)


class GapSeverity(str, Enum):
    """Gap severities; only BLOCKER prevents termination."""

    BLOCKER = "BLOCKER"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class GapType(str, Enum):
    """Gap vocabulary shared by verifiers and the gate engine."""

    MISSING_EVIDENCE = "MISSING_EVIDENCE"
    INSUFFICIENT_CORROBORATION = "INSUFFICIENT_CORROBORATION"
    GATE_FAILED = "GATE_FAILED"
    STATE_INCONSISTENT = "STATE_INCONSISTENT"
    SCHEMA_INVALID = "SCHEMA_INVALID"
    TASK_INCOMPLETE = "TASK_INCOMPLETE"
    ADVERSARIAL_INCOMPLETE = "ADVERSARIAL_INCOMPLETE"
    CURIOSITY_DEFICIT = "CURIOSITY_DEFICIT"
    PERSPECTIVE_MISSING = "PERSPECTIVE_MISSING"
    LEGAL_REVIEW_MISSING = "LEGAL_REVIEW_MISSING"
    LEGAL_DEFAMATION_RISK = "LEGAL_DEFAMATION_RISK"
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"
    DUPLICATE_SOURCE_URL = "DUPLICATE_SOURCE_URL"
    UNCITED_ASSERTION = "UNCITED_ASSERTION"
    CIRCULAR_REPORTING_RISK = "CIRCULAR_REPORTING_RISK"


DEFAULT_GAP_SEVERITIES: dict[str, GapSeverity] = {
    GapType.MISSING_EVIDENCE.value: GapSeverity.BLOCKER,
    GapType.INSUFFICIENT_CORROBORATION.value: GapSeverity.BLOCKER,
    GapType.GATE_FAILED.value: GapSeverity.BLOCKER,
    GapType.STATE_INCONSISTENT.value: GapSeverity.BLOCKER,
    GapType.SCHEMA_INVALID.value: GapSeverity.BLOCKER,
    GapType.LEGAL_DEFAMATION_RISK.value: GapSeverity.BLOCKER,
    GapType.TASK_INCOMPLETE.value: GapSeverity.HIGH,
    GapType.LEGAL_REVIEW_MISSING.value: GapSeverity.HIGH,
    GapType.INTEGRITY_VIOLATION.value: GapSeverity.HIGH,
    GapType.UNCITED_ASSERTION.value: GapSeverity.HIGH,
    GapType.ADVERSARIAL_INCOMPLETE.value: GapSeverity.MEDIUM,
    GapType.PERSPECTIVE_MISSING.value: GapSeverity.MEDIUM,
    GapType.DUPLICATE_SOURCE_URL.value: GapSeverity.MEDIUM,
    GapType.CIRCULAR_REPORTING_RISK.value: GapSeverity.MEDIUM,
    GapType.CURIOSITY_DEFICIT.value: GapSeverity.LOW,
}


@dataclass(slots=True)
class Gap:
    """Normalized defect record with a content-derived id."""

    gap_id: str
    type: str
    severity: GapSeverity
    object: dict[str, Any]
    message: str
    suggested_actions: list[str]
    verifier: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "gap_id": self.gap_id,
            "type": self.type,
            "severity": self.severity.value,
            "object": self.object,
            "message": self.message,
            "suggested_actions": list(self.suggested_actions),
            "verifier": self.verifier,
        }


@dataclass(slots=True)
class VerifierOutcome:
    """What a verifier reports; gaps are raw mappings normalized later."""

    passed: bool
    gaps: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class VerifierRun:
    """One verifier invocation inside a gap-generation pass."""

    name: str
    script: str
    ok: bool
    passed: bool
    gaps: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    failed_gates: list[str] | None = None

    def to_record(self, gap_count: int) -> dict[str, Any]:
        record: dict[str, Any] = {
            "name": self.name,
            "script": self.script,
            "ok": self.ok,
            "passed": self.passed,
            "gap_count": gap_count,
            "error": self.error,
        }
        if self.failed_gates is not None:
            record["failed_gates"] = list(self.failed_gates)
        return record


@dataclass(slots=True)
class GateResult:
    """One named gate outcome; ``reason`` is only set on failure."""

    name: str
    passed: bool
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "reason": self.reason, "details": self.details}


@dataclass(slots=True)
class GateReport:
    """All gate outcomes of one evaluation, in gate order."""

    case_dir: str
    timestamp: str
    duration_ms: int
    gates: list[GateResult]

    @property
    def overall(self) -> bool:
        return all(gate.passed for gate in self.gates)

    @property
    def blocking_gates(self) -> list[str]:
        return [gate.name for gate in self.gates if not gate.passed]

    def gate_map(self) -> dict[str, bool]:
        return {gate.name: gate.passed for gate in self.gates}

    def get(self, name: str) -> GateResult | None:
        for gate in self.gates:
            if gate.name == name:
                return gate
        return None

    def to_dict(self) -> dict[str, Any]:
        passed = sum(1 for gate in self.gates if gate.passed)
        return {
            "timestamp": self.timestamp,
            "case_dir": self.case_dir,
            "duration_ms": self.duration_ms,
            "thresholds": "100% (no exceptions)",
            "gates": {gate.name: gate.to_dict() for gate in self.gates},
            "summary": {
                "passed": passed,
                "failed": len(self.gates) - passed,
                "total": len(self.gates),
            },
            "overall": self.overall,
            "blocking_gates": self.blocking_gates,
        }


@dataclass(slots=True)
class GapReport:
    """Deduplicated gaps of one generation pass."""

    case_dir: str
    iteration: int
    generated_at: str
    duration_ms: int
    verifiers: list[dict[str, Any]]
    blocking: list[Gap]
    non_blocking: list[Gap]
    gate_report: GateReport | None = None

    @property
    def total_gaps(self) -> int:
        return len(self.blocking) + len(self.non_blocking)

    @property
    def can_terminate(self) -> bool:
        return not self.blocking

    def stats(self) -> dict[str, int]:
        def count(severity: GapSeverity) -> int:
            return sum(1 for gap in self.non_blocking if gap.severity is severity)

        return {
            "total_gaps": self.total_gaps,
            "blocking_count": len(self.blocking),
            "high_count": count(GapSeverity.HIGH),
            "medium_count": count(GapSeverity.MEDIUM),
            "low_count": count(GapSeverity.LOW),
        }

    def to_dict(self, paths: dict[str, str]) -> dict[str, Any]:
        return {
            "case_dir": self.case_dir,
            "iteration": self.iteration,
            "generated_at": self.generated_at,
            "duration_ms": self.duration_ms,
            "verifiers": self.verifiers,
            "blocking": [gap.to_dict() for gap in self.blocking],
            "non_blocking": [gap.to_dict() for gap in self.non_blocking],
            "stats": self.stats(),
            "paths": paths,
        }

    def digest(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "timestamp": self.generated_at,
            "blocking_gaps": len(self.blocking),
            "total_gaps": self.total_gaps,
            "can_terminate": self.can_terminate,
        }
