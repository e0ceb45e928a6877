"""Schema and state-consistency verifiers over the case control files."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from agentic_investigator.orchestrator.models import Phase
from agentic_investigator.schemas import LEDGER_SCHEMA, SOURCES_SCHEMA, STATE_SCHEMA, schema_errors
from agentic_investigator.verification.casefiles import read_json
from agentic_investigator.verification.models import GATE_NAMES, GapType, VerifierOutcome
from agentic_investigator.verification.verifiers.base import make_gap, outcome

SCHEMA_CHECKED_FILES: tuple[tuple[str, dict[str, Any]], ...] = (
    ("state.json", STATE_SCHEMA),
    ("sources.json", SOURCES_SCHEMA),
    ("leads.json", LEDGER_SCHEMA),
)
_POST_FOLLOW_PHASES = frozenset({Phase.WRITE, Phase.VERIFY, Phase.COMPLETE})


class SchemaVerifier:
    """Validates present control files against their JSON schemas."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        gaps: list[dict[str, Any]] = []
        for name, schema in SCHEMA_CHECKED_FILES:
            path = case_dir / name
            if not path.exists():
                continue
            parsed = read_json(path)
            if not parsed.ok:
                gaps.append(
                    make_gap(
                        GapType.SCHEMA_INVALID,
                        f"{name} is not valid JSON: {parsed.message or parsed.error}",
                        object_={"file": name},
                        actions=("fix_json",),
                    ),
                )
                continue
            errors = (
                schema_errors(parsed.value, schema)
                if isinstance(parsed.value, dict)
                else ["<root>: expected a JSON object"]
            )
            if errors:
                gaps.append(
                    make_gap(
                        GapType.SCHEMA_INVALID,
                        f"{name} does not match its schema: {errors[0]}",
                        object_={"file": name, "errors": errors[:10]},
                        actions=("fix_schema",),
                    ),
                )
        return outcome(gaps)


class StateConsistencyVerifier:
    """Cross-checks ``state.json`` against the phase enum, gate names and lead queue."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        state_path = case_dir / "state.json"
        if not state_path.exists():
            return outcome(
                [
                    make_gap(
                        GapType.STATE_INCONSISTENT,
                        "state.json not found",
                        object_={"file": "state.json"},
                        actions=("initialize_case",),
                    ),
                ],
            )
        parsed = read_json(state_path)
        if not parsed.ok or not isinstance(parsed.value, dict):
            # Unreadable state is reported by the schema verifier.
            return outcome([])
        state = parsed.value

        gaps: list[dict[str, Any]] = []
        phase = Phase.parse(state.get("phase"))
        if phase is None:
            gaps.append(
                make_gap(
                    GapType.STATE_INCONSISTENT,
                    f"state.json phase {state.get('phase')!r} is not a known phase",
                    object_={"file": "state.json", "phase": state.get("phase")},
                    actions=("fix_state_phase",),
                ),
            )

        gates = state.get("gates")
        if isinstance(gates, dict):
            unknown = sorted(str(name) for name in gates if name not in GATE_NAMES)
            if unknown:
                gaps.append(
                    make_gap(
                        GapType.STATE_INCONSISTENT,
                        "state.json gates contain unknown names: " + ", ".join(unknown),
                        object_={"file": "state.json", "gates": unknown},
                        actions=("fix_state_gates",),
                    ),
                )
            non_boolean = sorted(
                str(name) for name, value in gates.items() if not isinstance(value, bool)
            )
            if non_boolean:
                gaps.append(
                    make_gap(
                        GapType.STATE_INCONSISTENT,
                        "state.json gate values are not booleans: " + ", ".join(non_boolean),
                        object_={"file": "state.json", "gates": non_boolean},
                        actions=("fix_state_gates",),
                    ),
                )
        elif gates is not None:
            gaps.append(
                make_gap(
                    GapType.STATE_INCONSISTENT,
                    "state.json gates is not an object",
                    object_={"file": "state.json"},
                    actions=("fix_state_gates",),
                ),
            )

        if phase in _POST_FOLLOW_PHASES:
            pending = _pending_lead_ids(case_dir)
            if pending:
                gaps.append(
                    make_gap(
                        GapType.STATE_INCONSISTENT,
                        f"Phase {phase.value} but {len(pending)} lead(s) still pending",
                        object_={"file": "state.json", "phase": phase.value, "pending": pending},
                        actions=("follow_pending_leads", "revert_phase"),
                    ),
                )
        return outcome(gaps)


def _pending_lead_ids(case_dir: Path) -> list[str]:
    parsed = read_json(case_dir / "leads.json")
    if not parsed.ok or not isinstance(parsed.value, dict):
        return []
    leads = parsed.value.get("leads")
    if not isinstance(leads, list):
        return []
    return [
        str(lead.get("id"))
        for lead in leads
        if isinstance(lead, dict) and lead.get("status") == "pending"
    ]
