from __future__ import annotations

import json
from pathlib import Path

import allure
from click.testing import CliRunner

from agentic_investigator import __version__
from agentic_investigator.main import agentic_investigator
from agentic_investigator.verification.models import GATE_NAMES

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Orchestrator and Verification Commands"),
]


def _invoke(*args: str):
    return CliRunner().invoke(agentic_investigator, list(args))


def test_version_option() -> None:
    result = _invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_invalid_settings_are_reported(cases_root: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_BATCH_SIZE", "0")

    result = _invoke("check-continue")

    assert result.exit_code == 1
    assert "AGENTIC_INVESTIGATOR_BATCH_SIZE" in result.output


def test_check_continue_without_case_exits_one(cases_root: Path) -> None:
    result = _invoke("check-continue")

    assert result.exit_code == 1
    assert "Status: ERROR" in result.output
    assert "Reason: No active case found" in result.output


def test_check_continue_signals_continue_with_exit_two(case_dir: Path) -> None:
    result = _invoke("check-continue", str(case_dir), "--no-refresh-gates")

    assert result.exit_code == 2
    assert "ORCHESTRATOR SIGNAL" in result.output
    assert "Phase: PLAN" in result.output
    assert "Gates: 0/11 passing" in result.output
    assert "Status: CONTINUE" in result.output
    assert "Next: /action plan-investigation" in result.output


def test_check_continue_uses_active_case(cases_root: Path, case_dir: Path) -> None:
    (cases_root / ".active").write_text("demo", "utf-8")

    result = _invoke("check-continue", "--no-refresh-gates")

    assert result.exit_code == 2
    assert "Case: demo" in result.output


def test_check_continue_refreshes_gates_and_completes(passing_case: Path) -> None:
    result = _invoke("check-continue", str(passing_case))

    assert result.exit_code == 0, result.output
    assert "Status: COMPLETE" in result.output
    assert "Gates: 11/11 passing" in result.output
    state = json.loads((passing_case / "state.json").read_text("utf-8"))
    assert all(state["gates"][name] for name in GATE_NAMES)


def test_check_continue_error_lists_missing_prerequisites(case_dir: Path, write_state) -> None:
    write_state(case_dir, phase="WRITE", gates={"planning": True})

    result = _invoke("check-continue", str(case_dir), "--no-refresh-gates")

    assert result.exit_code == 1
    assert "Status: ERROR" in result.output
    assert "Missing prerequisites: questions, curiosity, reconciliation" in result.output


def test_check_continue_batch_lists_leads(
    case_dir: Path,
    write_state,
    write_leads,
    make_lead,
) -> None:
    write_state(case_dir, phase="FOLLOW")
    write_leads(case_dir, [make_lead("L001"), make_lead("L002"), make_lead("L003")])

    result = _invoke(
        "check-continue",
        str(case_dir),
        "--batch",
        "--batch-size",
        "2",
        "--no-refresh-gates",
    )

    assert result.exit_code == 2
    assert "Next: /action follow-batch L001 L002" in result.output
    assert "Leads: 3 pending, 0 investigated, 0 dead_end" in result.output
    assert "  - L002" in result.output


def test_check_continue_reports_transitions(case_dir: Path, write_state) -> None:
    write_state(case_dir, phase="PLAN", gates={"planning": True})

    result = _invoke("check-continue", str(case_dir), "--no-refresh-gates")

    assert "Phase transition: PLAN -> BOOTSTRAP" in result.output
    assert "Next: /action research" in result.output


def test_gates_command_passes_on_passing_case(passing_case: Path) -> None:
    result = _invoke("gates", str(passing_case))

    assert result.exit_code == 0, result.output
    assert "Gates: 11/11 passing" in result.output
    assert (passing_case / "control" / "gate_results.json").exists()


def test_gates_command_fix_and_write_state(passing_case: Path) -> None:
    (passing_case / "legal-review.md").unlink()

    result = _invoke("gates", str(passing_case), "--fix", "--write-state")

    assert result.exit_code == 1
    assert "[FAIL] legal: legal-review.md not found" in result.output
    assert "Remediation tasks created: TGATE01" in result.output
    assert "state.json gates updated" in result.output
    state = json.loads((passing_case / "state.json").read_text("utf-8"))
    assert state["gates"]["legal"] is False
    assert state["gates"]["planning"] is True


def test_gates_command_json(passing_case: Path) -> None:
    result = _invoke("gates", str(passing_case), "--json")

    payload = json.loads(result.output)
    assert payload["overall"] is True
    assert payload["summary"]["total"] == 11
    assert "remediation_tasks" not in payload


def test_gaps_command_writes_report(passing_case: Path) -> None:
    result = _invoke("gaps", str(passing_case))

    assert result.exit_code == 0, result.output
    assert "No blocking gaps - ready for termination check" in result.output
    assert (passing_case / "control" / "gaps.json").exists()
    assert (passing_case / "control" / "digest.json").exists()


def test_gaps_command_fails_on_blocking_gaps(case_dir: Path) -> None:
    result = _invoke("gaps", str(case_dir), "--json")

    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["stats"]["blocking_count"] >= 11
    assert payload["paths"]["digest_json"].endswith("digest.json")


def test_verify_command_summarizes_both_passes(passing_case: Path) -> None:
    result = _invoke("verify", str(passing_case), "--json")

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["gaps"]["blocking"] == 0
    assert payload["gates"] == {"overall": True, "failed_gates": [], "failures": []}
    assert payload["paths"]["gate_results_json"].endswith("gate_results.json")


def test_verify_command_lists_failures(passing_case: Path) -> None:
    (passing_case / "balance-audit.md").write_text("**FAIL**\n", "utf-8")

    result = _invoke("verify", str(passing_case))

    assert result.exit_code == 1
    assert "Gates: FAIL" in result.output
    assert "- balance: balance-audit.md status is FAIL" in result.output
    assert "GATE_FAILED: Gate balance failed" in result.output


def test_verification_without_case_is_usage_error(cases_root: Path) -> None:
    result = _invoke("gates")

    assert result.exit_code == 1
    assert "No case directory found" in result.output
