from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from agentic_investigator.config import GapSettings, Settings
from agentic_investigator.verification.gaps import GapAggregator, compute_gap_id
from agentic_investigator.verification.models import (
    GapSeverity,
    GateReport,
    GateResult,
    VerifierOutcome,
    VerifierRun,
)
from agentic_investigator.verification.runner import VerifierRunner
from agentic_investigator.verification.services import VerificationService
from agentic_investigator.verification.verifiers import VerifierSpec, default_verifier_specs

pytestmark = [
    allure.epic("Verification"),
    allure.feature("Gap Generation"),
]

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


class _Fixed:
    def __init__(self, result) -> None:
        self.result = result
        self.calls: list[dict] = []

    def verify(self, case_dir: Path, options):
        self.calls.append(dict(options))
        return self.result


class _Crashing:
    def verify(self, case_dir: Path, options):
        raise RuntimeError("disk on fire")


class _BrokenGateEngine:
    def run(self, case_dir: Path) -> GateReport:
        raise OSError("gate engine unavailable")


def _raw(gap_type: str, message: str, **extra) -> dict:
    return {"type": gap_type, "object": {"k": 1}, "message": message, **extra}


def test_gap_id_is_stable_and_key_order_independent() -> None:
    first = compute_gap_id("MISSING_EVIDENCE", {"a": 1, "b": {"y": 2, "x": 1}}, "msg")
    second = compute_gap_id("MISSING_EVIDENCE", {"b": {"x": 1, "y": 2}, "a": 1}, "msg")

    assert first == second
    assert first.startswith("G")
    assert len(first) == 9
    assert first[1:] == first[1:].upper()
    assert compute_gap_id("MISSING_EVIDENCE", {"a": 1}, "other") != compute_gap_id(
        "MISSING_EVIDENCE",
        {"a": 1},
        "msg",
    )


def test_runner_isolates_crashing_verifier() -> None:
    healthy = _Fixed(VerifierOutcome(passed=True))
    runs = VerifierRunner(
        [
            VerifierSpec(name="boom", verifier=_Crashing()),
            VerifierSpec(name="healthy", verifier=healthy, options={"limit": 3}),
        ],
    ).run(Path("/nonexistent"))

    crashed, ok = runs
    assert (crashed.ok, crashed.passed, crashed.error) == (False, False, "disk on fire")
    assert crashed.gaps[0]["type"] == "STATE_INCONSISTENT"
    assert crashed.gaps[0]["message"] == "Verifier boom failed: disk on fire"
    assert crashed.gaps[0]["verifier"] == "generate-gaps"
    assert ok.ok and ok.passed
    assert healthy.calls == [{"limit": 3}]


def test_runner_drops_non_mapping_gaps_and_keeps_going() -> None:
    sloppy = _Fixed(VerifierOutcome(passed=False, gaps=[None, _raw("TASK_INCOMPLETE", "T001"), 7]))
    healthy = _Fixed(VerifierOutcome(passed=True))

    first, second = VerifierRunner(
        [
            VerifierSpec(name="sloppy", verifier=sloppy),
            VerifierSpec(name="healthy", verifier=healthy),
        ],
    ).run(Path("."))

    assert first.ok
    assert [gap["message"] for gap in first.gaps] == ["T001"]
    assert second.ok and second.passed
    assert healthy.calls == [{}]


def test_unserializable_gap_becomes_verifier_failure(tmp_path: Path) -> None:
    runs = [
        VerifierRun(
            name="sources",
            script="pkg.Sources",
            ok=True,
            passed=False,
            gaps=[
                {"type": "MISSING_EVIDENCE", "object": {"path": Path("x")}, "message": "bad"},
                _raw("MISSING_EVIDENCE", "S002 missing"),
            ],
        ),
        VerifierRun(
            name="legal",
            script="pkg.Legal",
            ok=True,
            passed=False,
            gaps=[_raw("LEGAL_REVIEW_MISSING", "legal-review.md not found")],
        ),
    ]

    report = GapAggregator().aggregate(
        case_dir=tmp_path,
        iteration=1,
        generated_at="2026-03-01T09:30:00.000Z",
        duration_ms=1,
        runs=runs,
    )

    crash, missing = report.blocking
    assert crash.type == "STATE_INCONSISTENT"
    assert crash.verifier == "generate-gaps"
    assert crash.object == {"verifier": "sources", "script": "pkg.Sources"}
    assert crash.message.startswith("Verifier sources failed: unusable gap:")
    assert missing.message == "S002 missing"
    assert [gap.type for gap in report.non_blocking] == ["LEGAL_REVIEW_MISSING"]


def test_runner_rejects_object_without_verify() -> None:
    (run,) = VerifierRunner([VerifierSpec(name="odd", verifier=object())]).run(Path("."))

    assert not run.ok
    assert run.error == "does not expose a callable verify()"


@pytest.mark.parametrize(
    ("result", "passed", "gap_count"),
    [
        ({"passed": True, "gaps": []}, True, 0),
        ({"overall": False, "gaps": [{"type": "GATE_FAILED"}, "junk"]}, False, 1),
        ({"gaps": "not-a-list"}, False, 0),
    ],
)
def test_runner_accepts_mapping_results(result: dict, passed: bool, gap_count: int) -> None:
    (run,) = VerifierRunner([VerifierSpec(name="m", verifier=_Fixed(result))]).run(Path("."))

    assert run.ok
    assert run.passed is passed
    assert len(run.gaps) == gap_count


def test_runner_treats_non_mapping_result_as_crash() -> None:
    (run,) = VerifierRunner([VerifierSpec(name="m", verifier=_Fixed(42))]).run(Path("."))

    assert not run.ok
    assert "expected a mapping" in run.error


def test_aggregate_dedupes_and_partitions_by_severity(tmp_path: Path) -> None:
    duplicate = _raw("MISSING_EVIDENCE", "S001 missing")
    runs = [
        VerifierRun(name="sources", script="s", ok=True, passed=False, gaps=[duplicate]),
        VerifierRun(
            name="other",
            script="o",
            ok=True,
            passed=False,
            gaps=[
                dict(duplicate),
                _raw("CURIOSITY_DEFICIT", "few tasks"),
                _raw("MADE_UP", "custom", severity="low"),
                _raw("ALSO_MADE_UP", "custom"),
                {"message": "no type"},
            ],
        ),
    ]

    report = GapAggregator().aggregate(
        case_dir=tmp_path,
        iteration=2,
        generated_at="2026-03-01T09:30:00.000Z",
        duration_ms=5,
        runs=runs,
    )

    assert [gap.type for gap in report.blocking] == ["MISSING_EVIDENCE"]
    assert report.blocking[0].verifier == "sources"
    assert [(gap.type, gap.severity) for gap in report.non_blocking] == [
        ("CURIOSITY_DEFICIT", GapSeverity.LOW),
        ("MADE_UP", GapSeverity.LOW),
        ("ALSO_MADE_UP", GapSeverity.MEDIUM),
    ]
    assert [record["gap_count"] for record in report.verifiers] == [1, 4]
    assert not report.can_terminate
    assert report.stats() == {
        "total_gaps": 4,
        "blocking_count": 1,
        "high_count": 0,
        "medium_count": 1,
        "low_count": 2,
    }


def test_severity_override_beats_default_table() -> None:
    aggregator = GapAggregator({"curiosity_deficit": "BLOCKER", "MISSING_EVIDENCE": "LOW"})

    assert aggregator.resolve_severity("CURIOSITY_DEFICIT", None) is GapSeverity.BLOCKER
    assert aggregator.resolve_severity("MISSING_EVIDENCE", "BLOCKER") is GapSeverity.LOW
    assert aggregator.resolve_severity("GATE_FAILED", "LOW") is GapSeverity.BLOCKER


def test_gate_gaps_cover_each_failing_gate() -> None:
    report = GateReport(
        case_dir="x",
        timestamp="t",
        duration_ms=0,
        gates=[
            GateResult(name="planning", passed=True),
            GateResult(name="legal", passed=False, reason="legal-review.md not found"),
        ],
    )

    (gap,) = GapAggregator().gate_gaps(report)

    assert gap["type"] == "GATE_FAILED"
    assert gap["object"] == {"gate": "legal"}
    assert gap["message"] == "Gate legal failed: legal-review.md not found"
    assert gap["verifier"] == "verify-all-gates"


def test_generate_gaps_writes_report_and_digest(passing_case: Path) -> None:
    service = VerificationService(Settings(), clock=lambda: NOW)

    report = service.generate_gaps(passing_case)

    assert report.can_terminate
    assert report.iteration == 1
    stored = json.loads((passing_case / "control" / "gaps.json").read_text("utf-8"))
    digest = json.loads((passing_case / "control" / "digest.json").read_text("utf-8"))
    assert stored["blocking"] == []
    assert stored["generated_at"] == "2026-03-01T09:30:00.000Z"
    assert stored["verifiers"][-1]["name"] == "termination_gates"
    assert stored["verifiers"][-1]["failed_gates"] == []
    assert stored["paths"]["gaps_json"].endswith("gaps.json")
    assert digest == {
        "iteration": 1,
        "timestamp": "2026-03-01T09:30:00.000Z",
        "blocking_gaps": 0,
        "total_gaps": report.total_gaps,
        "can_terminate": True,
    }


def test_generate_gaps_is_repeatable(passing_case: Path) -> None:
    service = VerificationService(Settings(), clock=lambda: NOW)

    first = service.generate_gaps(passing_case)
    second = service.generate_gaps(passing_case)

    assert [gap.gap_id for gap in first.non_blocking] == [
        gap.gap_id for gap in second.non_blocking
    ]


def test_generate_gaps_reports_failing_gates_as_blockers(case_dir: Path) -> None:
    report = VerificationService(Settings()).generate_gaps(case_dir)

    gate_gaps = [gap for gap in report.blocking if gap.type == "GATE_FAILED"]
    assert {gap.object["gate"] for gap in gate_gaps} == {
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
    }
    assert not report.can_terminate


def test_gate_engine_crash_becomes_a_gap(case_dir: Path) -> None:
    service = VerificationService(
        Settings(),
        specs=[],
        gate_engine=_BrokenGateEngine(),
    )

    report = service.generate_gaps(case_dir)

    (gap,) = report.blocking
    assert gap.type == "STATE_INCONSISTENT"
    assert gap.message == "Verifier termination_gates failed: gate engine unavailable"
    assert report.verifiers == [
        {
            "name": "termination_gates",
            "script": f"{__name__}._BrokenGateEngine",
            "ok": False,
            "passed": False,
            "gap_count": 1,
            "error": "gate engine unavailable",
        },
    ]


def test_severity_overrides_flow_from_settings(passing_case: Path) -> None:
    settings = Settings(gaps=GapSettings(severity_overrides={"INTEGRITY_VIOLATION": "BLOCKER"}))

    report = VerificationService(settings).generate_gaps(passing_case)

    assert [gap.type for gap in report.blocking] == ["INTEGRITY_VIOLATION"]


def test_default_registry_runs_verifiers_in_order() -> None:
    names = [spec.name for spec in default_verifier_specs(Settings())]

    assert names == [
        "schema",
        "sources",
        "sources_dedup",
        "citation_density",
        "corroboration",
        "circular_reporting",
        "tasks",
        "state_consistency",
        "legal",
        "integrity",
    ]
