from __future__ import annotations

import json
import os
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from agentic_investigator.config import Settings
from agentic_investigator.contracts import to_iso
from agentic_investigator.orchestrator.machine import WRITE_ERROR, PhaseOrchestrator
from agentic_investigator.orchestrator.models import ContinueStatus
from agentic_investigator.orchestrator.state import (
    StateSchemaError,
    load_state,
    resolve_case_dir,
)
from agentic_investigator.verification.models import GATE_NAMES

pytestmark = [
    allure.epic("Orchestrator"),
    allure.feature("Phase Machine"),
]

NOW = datetime(2026, 4, 2, 15, 0, tzinfo=UTC)


@pytest.fixture()
def orchestrator() -> PhaseOrchestrator:
    return PhaseOrchestrator(Settings(), clock=lambda: NOW)


def _decide(orchestrator: PhaseOrchestrator, case_dir: Path, **kwargs):
    kwargs.setdefault("refresh_gates", False)
    return orchestrator.check_continue(case_dir, **kwargs)


def _stored_phase(case_dir: Path) -> str:
    return json.loads((case_dir / "state.json").read_text("utf-8"))["phase"]


def _gates(*passing: str) -> dict[str, bool]:
    return {name: name in passing for name in GATE_NAMES}


def test_plan_phase_asks_for_planning(orchestrator, case_dir: Path) -> None:
    _state, action = _decide(orchestrator, case_dir)

    assert action.status is ContinueStatus.CONTINUE
    assert action.exit_code == 2
    assert action.next == "/action plan-investigation"
    assert action.transitions == []


def test_passed_planning_advances_to_bootstrap(orchestrator, case_dir, write_state) -> None:
    write_state(case_dir, phase="PLAN", gates={"planning": True})

    state, action = _decide(orchestrator, case_dir)

    assert action.next == "/action research"
    assert action.transitions == [("PLAN", "BOOTSTRAP")]
    assert state.phase == "BOOTSTRAP"
    assert _stored_phase(case_dir) == "BOOTSTRAP"


def test_question_phase_waits_for_questions_gate(orchestrator, case_dir, write_state) -> None:
    write_state(case_dir, phase="QUESTION", gates={"planning": True})

    _state, action = _decide(orchestrator, case_dir)

    assert action.next == "/action question"


def test_follow_picks_highest_priority_lead(
    orchestrator,
    case_dir,
    write_state,
    write_leads,
    make_lead,
) -> None:
    write_state(case_dir, phase="QUESTION", gates={"planning": True, "questions": True})
    write_leads(
        case_dir,
        [
            make_lead("L001", priority="LOW"),
            make_lead("L002", priority="HIGH", lead="Trace the shell company", depth=1),
            make_lead("L003", status="investigated"),
        ],
    )

    _state, action = _decide(orchestrator, case_dir)

    assert action.transitions == [("QUESTION", "FOLLOW")]
    assert action.next == "/action follow L002"
    assert action.reason == 'Pending lead: "Trace the shell company"'
    assert (action.lead.id, action.lead.priority, action.lead.depth) == ("L002", "HIGH", 1)
    assert action.lead_counts == {"pending": 2, "investigated": 1, "dead_end": 0, "total": 3}
    assert action.batch is None


def test_follow_skips_fresh_claims_but_reclaims_stale_ones(
    orchestrator,
    case_dir,
    write_state,
    write_leads,
    make_lead,
) -> None:
    write_state(case_dir, phase="FOLLOW")
    write_leads(
        case_dir,
        [
            make_lead(
                "L001",
                priority="HIGH",
                claimed_by="busy",
                claimed_at=to_iso(NOW - timedelta(minutes=1)),
            ),
            make_lead(
                "L002",
                priority="MEDIUM",
                claimed_by="crashed",
                claimed_at=to_iso(NOW - timedelta(hours=3)),
            ),
            make_lead("L003", priority="LOW"),
        ],
    )

    _state, action = _decide(orchestrator, case_dir)

    assert action.next == "/action follow L002"


def test_batch_mode_recommends_parallel_leads(
    orchestrator,
    case_dir,
    write_state,
    write_leads,
    make_lead,
) -> None:
    write_state(case_dir, phase="FOLLOW")
    write_leads(
        case_dir,
        [make_lead(f"L00{index}", priority="MEDIUM") for index in range(1, 7)],
    )

    _state, action = _decide(orchestrator, case_dir, batch=True, batch_size=3)

    assert action.next == "/action follow-batch L001 L002 L003"
    assert action.batch.lead_ids == ["L001", "L002", "L003"]
    assert (action.batch.count, action.batch.available) == (3, 6)
    assert action.lead.id == "L001"


def test_batch_mode_with_single_lead_falls_back_to_follow(
    orchestrator,
    case_dir,
    write_state,
    write_leads,
    make_lead,
) -> None:
    write_state(case_dir, phase="FOLLOW")
    write_leads(case_dir, [make_lead("L001")])

    _state, action = _decide(orchestrator, case_dir, batch=True)

    assert action.next == "/action follow L001"
    assert action.batch is None


@pytest.mark.parametrize(
    ("gates", "expected"),
    [
        ({}, "/action reconcile"),
        ({"reconciliation": True}, "/action curiosity"),
    ],
)
def test_follow_without_leads_reconciles_then_checks_curiosity(
    orchestrator,
    case_dir,
    write_state,
    gates: dict[str, bool],
    expected: str,
) -> None:
    write_state(case_dir, phase="FOLLOW", gates=gates)

    _state, action = _decide(orchestrator, case_dir)

    assert action.next == expected
    assert action.lead_counts["total"] == 0


@pytest.mark.parametrize(
    ("gates", "reason"),
    [
        (
            {},
            "2 pending lead(s) claimed by other workers - reconcile finished results with summary",
        ),
        (
            _gates("curiosity", "reconciliation"),
            "2 pending lead(s) still claimed by other workers - reconcile once they finish",
        ),
    ],
)
def test_follow_reports_leads_claimed_by_other_workers(
    orchestrator,
    case_dir,
    write_state,
    write_leads,
    make_lead,
    gates: dict[str, bool],
    reason: str,
) -> None:
    write_state(case_dir, phase="FOLLOW", gates=gates)
    fresh = to_iso(NOW - timedelta(minutes=2))
    write_leads(
        case_dir,
        [
            make_lead("L001", claimed_by="worker_A", claimed_at=fresh),
            make_lead("L002", claimed_by="worker_B", claimed_at=fresh),
        ],
    )

    _state, action = _decide(orchestrator, case_dir)

    assert action.next == "/action reconcile"
    assert action.reason == reason
    assert action.transitions == []
    assert _stored_phase(case_dir) == "FOLLOW"


def test_follow_walks_into_write_when_exhausted(orchestrator, case_dir, write_state) -> None:
    write_state(
        case_dir,
        phase="FOLLOW",
        gates=_gates("planning", "questions", "curiosity", "reconciliation"),
    )

    _state, action = _decide(orchestrator, case_dir)

    assert action.transitions == [("FOLLOW", "WRITE")]
    assert action.next == "/action article"
    assert _stored_phase(case_dir) == "WRITE"


def test_write_without_prerequisites_is_an_error(orchestrator, case_dir, write_state) -> None:
    write_state(case_dir, phase="WRITE", gates={"planning": True, "questions": True})

    _state, action = _decide(orchestrator, case_dir)

    assert action.status is ContinueStatus.ERROR
    assert action.exit_code == 1
    assert action.next == WRITE_ERROR
    assert action.missing_prerequisites == ["curiosity", "reconciliation"]
    assert action.reason == "Missing gates: curiosity, reconciliation. Return to FOLLOW phase."


def test_write_with_article_moves_to_verify(orchestrator, case_dir, write_state) -> None:
    write_state(
        case_dir,
        phase="WRITE",
        gates=_gates("planning", "questions", "curiosity", "reconciliation", "article", "sources"),
    )

    _state, action = _decide(orchestrator, case_dir)

    assert action.transitions == [("WRITE", "VERIFY")]
    assert action.next == "/action parallel-review"
    assert action.parallel_review is True


def test_verify_runs_quality_audits_in_order(orchestrator, case_dir, write_state) -> None:
    process = (
        "planning",
        "questions",
        "curiosity",
        "reconciliation",
        "article",
        "sources",
        "integrity",
        "legal",
    )
    write_state(case_dir, phase="VERIFY", gates=_gates(*process))
    _state, first = _decide(orchestrator, case_dir)

    write_state(case_dir, phase="VERIFY", gates=_gates(*process, "balance"))
    _state, second = _decide(orchestrator, case_dir)

    assert first.next == "/action balance-audit"
    assert first.reason == "Quality gate balance - audit needed"
    assert second.next == "/action completeness-audit"


def test_verify_lists_failing_gates(orchestrator, case_dir, write_state) -> None:
    passing = [name for name in GATE_NAMES if name not in {"sources", "legal"}]
    write_state(case_dir, phase="VERIFY", gates=_gates(*passing))

    _state, action = _decide(orchestrator, case_dir)

    assert action.next == "/action verify (failing: sources, legal)"
    assert action.failing_gates == ["sources", "legal"]


def test_all_gates_passing_completes_from_any_phase(
    orchestrator,
    case_dir,
    write_state,
    all_gates,
) -> None:
    write_state(case_dir, phase="BOOTSTRAP", gates=all_gates)

    _state, action = _decide(orchestrator, case_dir)

    assert action.status is ContinueStatus.COMPLETE
    assert action.exit_code == 0
    assert action.reason == "All 11 gates passing"
    assert action.next is None


def test_complete_phase_and_unknown_phase(orchestrator, case_dir, write_state) -> None:
    write_state(case_dir, phase="COMPLETE")
    _state, complete = _decide(orchestrator, case_dir)

    write_state(case_dir, phase="LIMBO")
    _state, unknown = _decide(orchestrator, case_dir)

    assert complete.status is ContinueStatus.COMPLETE
    assert complete.reason == "Investigation complete"
    assert unknown.next == "/action verify"
    assert unknown.reason == "Unknown phase: LIMBO"


def test_refresh_recomputes_gates_into_state(orchestrator, passing_case: Path) -> None:
    state, action = orchestrator.check_continue(passing_case, refresh_gates=True)

    assert action.status is ContinueStatus.COMPLETE
    stored = json.loads((passing_case / "state.json").read_text("utf-8"))
    assert stored["gates"] == {name: True for name in GATE_NAMES}
    assert state.gates == stored["gates"]


def test_unknown_state_keys_survive_transitions(orchestrator, case_dir, write_state) -> None:
    write_state(case_dir, phase="PLAN", gates={"planning": True}, owner="desk-3")

    _decide(orchestrator, case_dir)

    stored = json.loads((case_dir / "state.json").read_text("utf-8"))
    assert stored["owner"] == "desk-3"
    assert stored["phase"] == "BOOTSTRAP"


@pytest.mark.parametrize("content", [None, "{oops", '{"gates": []}'])
def test_load_state_rejects_missing_or_malformed(tmp_path: Path, content: str | None) -> None:
    if content is not None:
        (tmp_path / "state.json").write_text(content, "utf-8")

    with pytest.raises(StateSchemaError):
        load_state(tmp_path)


def test_resolve_case_dir_prefers_explicit_then_active_then_recent(
    cases_root: Path,
    write_state,
) -> None:
    older = cases_root / "older"
    newer = cases_root / "newer"
    write_state(older)
    write_state(newer)
    past = time.time() - 3_600
    os.utime(older, (past, past))

    assert resolve_case_dir(older, cases_root) == older
    assert resolve_case_dir(Path("older"), cases_root) == cases_root / "older"
    assert resolve_case_dir(None, cases_root) == newer

    (cases_root / ".active").write_text("older\n", "utf-8")
    assert resolve_case_dir(None, cases_root) == older
    assert resolve_case_dir(Path("missing"), cases_root) == older


def test_resolve_case_dir_without_cases(tmp_path: Path) -> None:
    assert resolve_case_dir(None, tmp_path / "nowhere") is None
    bare = tmp_path / "bare"
    bare.mkdir()
    assert resolve_case_dir(bare, tmp_path, require_state=False) == bare
    assert resolve_case_dir(None, tmp_path) is None
