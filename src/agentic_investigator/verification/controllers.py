"""Controllers for the ``gates``, ``gaps`` and ``verify`` CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agentic_investigator.config import Settings
from agentic_investigator.orchestrator.state import load_state, resolve_case_dir, save_state
from agentic_investigator.verification.gaps import gap_paths
from agentic_investigator.verification.gates import GATE_RESULTS_PATH
from agentic_investigator.verification.models import GapReport, GateReport
from agentic_investigator.verification.services import VerificationService

TOP_BLOCKING = 10
MESSAGE_PREVIEW_CHARS = 200
REASON_PREVIEW_CHARS = 240


@dataclass(slots=True)
class GatesCommand:
    """CLI input for a gate evaluation."""

    case_dir: Path | None
    write_state: bool = False
    fix: bool = False
    as_json: bool = False


@dataclass(slots=True)
class GapsCommand:
    """CLI input for a gap-generation pass."""

    case_dir: Path | None
    as_json: bool = False


@dataclass(slots=True)
class VerifyCommand:
    """CLI input for gap generation followed by gate verification."""

    case_dir: Path | None
    as_json: bool = False


@dataclass(slots=True)
class VerificationCommandResult:
    """Verification outcome to render in CLI."""

    lines: list[str]
    success: bool


class VerificationCliController:
    """Runs verification passes and renders human or JSON output."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()
        self.service = VerificationService(self.settings)

    def gates(self, command: GatesCommand) -> VerificationCommandResult:
        case_dir = self._case_dir(command.case_dir)
        report, created = self.service.run_gates(case_dir, fix=command.fix)
        if command.write_state:
            state = load_state(case_dir)
            state.gates = report.gate_map()
            save_state(case_dir, state)

        if command.as_json:
            payload = report.to_dict()
            if command.fix:
                payload["remediation_tasks"] = created
            return VerificationCommandResult(
                lines=[json.dumps(payload, ensure_ascii=False, indent=2)],
                success=report.overall,
            )

        lines = [f"Case: {case_dir}"]
        for gate in report.gates:
            mark = "PASS" if gate.passed else "FAIL"
            lines.append(f"  [{mark}] {gate.name}" + ("" if gate.passed else f": {gate.reason}"))
        passed = len(report.gates) - len(report.blocking_gates)
        lines.append(f"Gates: {passed}/{len(report.gates)} passing")
        if command.write_state:
            lines.append("state.json gates updated")
        if created:
            lines.append("Remediation tasks created: " + ", ".join(created))
        lines.append(f"gate_results.json: {case_dir / GATE_RESULTS_PATH}")
        return VerificationCommandResult(lines=lines, success=report.overall)

    def gaps(self, command: GapsCommand) -> VerificationCommandResult:
        case_dir = self._case_dir(command.case_dir)
        report = self.service.generate_gaps(case_dir)
        if command.as_json:
            return VerificationCommandResult(
                lines=[
                    json.dumps(report.to_dict(gap_paths(case_dir)), ensure_ascii=False, indent=2),
                ],
                success=report.can_terminate,
            )

        stats = report.stats()
        lines = [
            f"Case: {case_dir}",
            f"Time: {report.generated_at}",
            f"Total gaps: {stats['total_gaps']}",
            f"  Blocking: {stats['blocking_count']}",
            f"  High: {stats['high_count']}",
            f"  Medium: {stats['medium_count']}",
            f"  Low: {stats['low_count']}",
        ]
        if report.blocking:
            lines.append("Blocking gaps (must fix before termination):")
            lines.extend(_blocking_lines(report))
        else:
            lines.append("No blocking gaps - ready for termination check")
        lines.append(f"gaps.json: {gap_paths(case_dir)['gaps_json']}")
        lines.append(f"Duration: {report.duration_ms}ms")
        return VerificationCommandResult(lines=lines, success=report.can_terminate)

    def verify(self, command: VerifyCommand) -> VerificationCommandResult:
        case_dir = self._case_dir(command.case_dir)
        summary = self.service.verify(case_dir)
        paths = gap_paths(case_dir)
        paths["gate_results_json"] = str(case_dir / GATE_RESULTS_PATH)

        if command.as_json:
            payload = {
                "case_dir": str(case_dir),
                "gaps": _gap_summary(summary.gaps),
                "gates": _gate_summary(summary.gates),
                "paths": paths,
            }
            return VerificationCommandResult(
                lines=[json.dumps(payload, ensure_ascii=False, indent=2)],
                success=summary.passed,
            )

        lines = [
            f"Case: {case_dir}",
            f"Blocking gaps: {len(summary.gaps.blocking)} (total {summary.gaps.total_gaps})",
        ]
        lines.extend(_blocking_lines(summary.gaps))
        lines.append(f"Gates: {'PASS' if summary.gates.overall else 'FAIL'}")
        for failure in _gate_summary(summary.gates)["failures"]:
            lines.append(f"- {failure['gate']}: {failure['reason'] or 'failed'}")
        lines.append(f"gaps.json: {paths['gaps_json']}")
        lines.append(f"gate_results.json: {paths['gate_results_json']}")
        return VerificationCommandResult(lines=lines, success=summary.passed)

    def _case_dir(self, provided: Path | None) -> Path:
        case_dir = resolve_case_dir(
            provided,
            self.settings.orchestrator.cases_root,
            require_state=False,
        )
        if case_dir is None:
            raise ValueError("No case directory found; pass one or set cases/.active")
        return case_dir


def _blocking_lines(report: GapReport) -> list[str]:
    lines = [
        f"- [{gap.gap_id}] {gap.type}: {gap.message[:MESSAGE_PREVIEW_CHARS]}"
        for gap in report.blocking[:TOP_BLOCKING]
    ]
    if len(report.blocking) > TOP_BLOCKING:
        lines.append(f"  ... and {len(report.blocking) - TOP_BLOCKING} more")
    return lines


def _gap_summary(report: GapReport) -> dict[str, Any]:
    by_type: dict[str, int] = {}
    for gap in [*report.blocking, *report.non_blocking]:
        by_type[gap.type] = by_type.get(gap.type, 0) + 1
    stats = report.stats()
    return {
        "total": stats["total_gaps"],
        "blocking": stats["blocking_count"],
        "high": stats["high_count"],
        "medium": stats["medium_count"],
        "low": stats["low_count"],
        "top_blocking": [
            {"gap_id": gap.gap_id, "type": gap.type, "message": gap.message[:MESSAGE_PREVIEW_CHARS]}
            for gap in report.blocking[:TOP_BLOCKING]
        ],
        "by_type": by_type,
    }


def _gate_summary(report: GateReport) -> dict[str, Any]:
    failures = []
    for name in report.blocking_gates:
        gate = report.get(name)
        reason = gate.reason if gate is not None else None
        failures.append(
            {"gate": name, "reason": reason[:REASON_PREVIEW_CHARS] if reason else None},
        )
    return {"overall": report.overall, "failed_gates": report.blocking_gates, "failures": failures}
