"""Controller for the ``check-continue`` CLI command."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from agentic_investigator.config import Settings
from agentic_investigator.orchestrator.machine import PhaseOrchestrator
from agentic_investigator.orchestrator.models import CaseState, ContinueStatus, NextAction
from agentic_investigator.orchestrator.state import resolve_case_dir
from agentic_investigator.verification.models import GATE_NAMES

RULE = "=" * 55
THIN_RULE = "-" * 55
LEAD_PREVIEW_CHARS = 50


@dataclass(slots=True)
class CheckContinueCommand:
    """CLI input for one orchestrator decision."""

    case_dir: Path | None
    batch: bool = False
    batch_size: int | None = None
    refresh_gates: bool | None = None


@dataclass(slots=True)
class CheckContinueResult:
    """Rendered orchestrator signal and its process exit code."""

    lines: list[str]
    exit_code: int


class CheckContinueController:
    """Resolves the case, runs the phase machine and renders the signal block."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()

    def check_continue(self, command: CheckContinueCommand) -> CheckContinueResult:
        case_dir = resolve_case_dir(command.case_dir, self.settings.orchestrator.cases_root)
        if case_dir is None:
            return CheckContinueResult(
                lines=_no_case_lines(),
                exit_code=ContinueStatus.ERROR.exit_code,
            )

        orchestrator = PhaseOrchestrator(self.settings)
        state, action = orchestrator.check_continue(
            case_dir,
            batch=command.batch,
            batch_size=command.batch_size,
            refresh_gates=command.refresh_gates,
        )
        return CheckContinueResult(lines=render_signal(state, action), exit_code=action.exit_code)


def render_signal(state: CaseState, action: NextAction) -> list[str]:
    passing = sum(1 for name in GATE_NAMES if state.gates.get(name) is True)
    lines = [
        "",
        RULE,
        "ORCHESTRATOR SIGNAL",
        RULE,
        f"Case: {state.case}",
        f"Phase: {state.phase}",
        f"Iteration: {state.iteration}",
        f"Gates: {passing}/{len(GATE_NAMES)} passing",
    ]
    lines.extend(f"Phase transition: {old} -> {new}" for old, new in action.transitions)

    if action.lead_counts is not None:
        counts = action.lead_counts
        lines.append(THIN_RULE)
        lines.append(
            f"Leads: {counts['pending']} pending, {counts['investigated']} investigated, "
            f"{counts['dead_end']} dead_end",
        )
        if action.batch is not None:
            lines.append(f"Batch: {action.batch.message}")
            lines.append(f"Available: {action.batch.available}")
            lines.extend(f"  - {lead_id}" for lead_id in action.batch.lead_ids)
        elif action.lead is not None:
            text = action.lead.lead
            if len(text) > LEAD_PREVIEW_CHARS:
                text = text[:LEAD_PREVIEW_CHARS] + "..."
            lead = action.lead
            lines.append(f"Lead: {lead.id} [{lead.priority}] depth={lead.depth}: {text}")

    if action.parallel_review:
        lines.append(THIN_RULE)
        lines.append("Parallel review: integrity + legal can run simultaneously")

    lines.append(THIN_RULE)
    if action.status is ContinueStatus.COMPLETE:
        lines.extend(
            [
                "Status: COMPLETE",
                f"Reason: {action.reason}",
                "",
                f"Investigation finished. All {len(GATE_NAMES)} gates pass.",
            ],
        )
    elif action.status is ContinueStatus.ERROR:
        lines.extend(
            [
                "Status: ERROR",
                f"Reason: {action.reason}",
                f"Next: {action.next}",
                "",
                "STOP. Fix the error before continuing.",
            ],
        )
        if action.missing_prerequisites:
            lines.append(f"Missing prerequisites: {', '.join(action.missing_prerequisites)}")
    else:
        lines.extend(
            [
                "Status: CONTINUE",
                f"Reason: {action.reason}",
                f"Next: {action.next}",
                "",
                "DO NOT STOP. Execute the next action immediately.",
            ],
        )
    lines.extend([RULE, ""])
    return lines


def _no_case_lines() -> list[str]:
    return [
        RULE,
        "ORCHESTRATOR SIGNAL",
        RULE,
        "Status: ERROR",
        "Reason: No active case found",
        "",
        "Pass a case directory, or name one in cases/.active.",
        RULE,
    ]
