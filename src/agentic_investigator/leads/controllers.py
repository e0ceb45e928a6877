"""Controllers for lead ledger CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agentic_investigator.config import Settings
from agentic_investigator.leads.ledger import LeadLedger
from agentic_investigator.leads.models import LedgerResult


@dataclass(slots=True)
class LeadClaimCommand:
    """CLI input for single and batch claims."""

    case_dir: Path
    lead_ids: tuple[str, ...]
    expected_version: int | None = None


@dataclass(slots=True)
class LeadReleaseCommand:
    """CLI input for claim release."""

    case_dir: Path
    lead_id: str
    expected_version: int | None = None


@dataclass(slots=True)
class LeadUpdateCommand:
    """CLI input for resolving a lead."""

    case_dir: Path
    lead_id: str
    status: str
    result: str
    sources_json: str | None = None
    expected_version: int | None = None


@dataclass(slots=True)
class LeadAddChildCommand:
    """CLI input for adding a follow-up lead."""

    case_dir: Path
    parent_id: str
    child_json: str
    expected_version: int | None = None


@dataclass(slots=True)
class LeadSelectCommand:
    """CLI input for advisory batch selection."""

    case_dir: Path
    count: int


@dataclass(slots=True)
class LeadCaseCommand:
    """CLI input for whole-ledger operations."""

    case_dir: Path


@dataclass(slots=True)
class LeadCommandResult:
    """Ledger outcome to render in CLI."""

    lines: list[str]
    success: bool


class LeadsCliController:
    """Runs ledger operations and renders their results as JSON."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()

    def claim(self, command: LeadClaimCommand) -> LeadCommandResult:
        ledger = self._ledger(command.case_dir)
        (lead_id,) = command.lead_ids
        return _render(ledger.claim(lead_id, expected_version=command.expected_version))

    def batch_claim(self, command: LeadClaimCommand) -> LeadCommandResult:
        ledger = self._ledger(command.case_dir)
        return _render(
            ledger.batch_claim(command.lead_ids, expected_version=command.expected_version),
        )

    def release(self, command: LeadReleaseCommand) -> LeadCommandResult:
        ledger = self._ledger(command.case_dir)
        return _render(ledger.release(command.lead_id, expected_version=command.expected_version))

    def update(self, command: LeadUpdateCommand) -> LeadCommandResult:
        sources = _parse_json_arg(command.sources_json, expected=list, label="sources")
        ledger = self._ledger(command.case_dir)
        return _render(
            ledger.update(
                command.lead_id,
                status=command.status,
                result=command.result,
                sources=sources or [],
                expected_version=command.expected_version,
            ),
        )

    def add_child(self, command: LeadAddChildCommand) -> LeadCommandResult:
        child = _parse_json_arg(command.child_json, expected=dict, label="child lead")
        ledger = self._ledger(command.case_dir)
        return _render(
            ledger.add_child(
                command.parent_id,
                child or {},
                expected_version=command.expected_version,
            ),
        )

    def batch_select(self, command: LeadSelectCommand) -> LeadCommandResult:
        return _render(self._ledger(command.case_dir).batch_select(command.count))

    def cleanup_stale(self, command: LeadCaseCommand) -> LeadCommandResult:
        return _render(self._ledger(command.case_dir).cleanup_stale())

    def stats(self, command: LeadCaseCommand) -> LeadCommandResult:
        return _render(self._ledger(command.case_dir).stats())

    def _ledger(self, case_dir: Path) -> LeadLedger:
        return LeadLedger.for_case(case_dir, settings=self.settings.leads)


def _render(outcome: LedgerResult) -> LeadCommandResult:
    return LeadCommandResult(
        lines=[json.dumps(outcome.to_payload(), ensure_ascii=False, indent=2)],
        success=outcome.success,
    )


def _parse_json_arg(raw: str | None, *, expected: type, label: str) -> Any:
    if raw is None or not raw.strip():
        return None
    try:
        value = json.loads(raw)
    except ValueError as error:
        raise ValueError(f"Invalid {label} JSON: {error}") from error
    if not isinstance(value, expected):
        raise ValueError(f"Invalid {label} JSON: expected {expected.__name__}")
    return value
