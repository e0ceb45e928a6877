"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agentic_investigator.verification.models import GATE_NAMES

CaseWriter = Callable[..., Path]


def _write(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(payload, str):
        path.write_text(payload, "utf-8")
    else:
        path.write_text(json.dumps(payload, indent=2), "utf-8")
    return path


def lead_record(lead_id: str, **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": lead_id,
        "lead": f"Follow up {lead_id}",
        "from": None,
        "priority": "MEDIUM",
        "depth": 0,
        "parent": None,
        "status": "pending",
        "result": None,
        "sources": [],
    }
    record.update(overrides)
    return record


@pytest.fixture()
def cases_root(tmp_path: Path, monkeypatch) -> Path:
    """Isolated ``cases/`` root wired through AGENTIC_INVESTIGATOR_CASES_ROOT."""

    root = tmp_path / "cases"
    root.mkdir()
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_CASES_ROOT", str(root))
    for name in list(os.environ):
        if name.startswith("AGENTIC_INVESTIGATOR_") and name != "AGENTIC_INVESTIGATOR_CASES_ROOT":
            monkeypatch.delenv(name)
    return root


@pytest.fixture()
def case_dir(cases_root: Path) -> Path:
    """Minimal case in PLAN phase with an empty lead ledger."""

    directory = cases_root / "demo"
    _write(
        directory / "state.json",
        {"case": "demo", "phase": "PLAN", "iteration": 1, "gates": {}},
    )
    return directory


@pytest.fixture()
def write_leads() -> CaseWriter:
    def _write_leads(
        directory: Path,
        leads: list[dict[str, Any]],
        *,
        version: int = 1,
        max_depth: int = 3,
    ) -> Path:
        return _write(
            directory / "leads.json",
            {"version": version, "max_depth": max_depth, "leads": leads},
        )

    return _write_leads


@pytest.fixture()
def write_state() -> CaseWriter:
    def _write_state(
        directory: Path,
        *,
        phase: str = "PLAN",
        gates: dict[str, bool] | None = None,
        **extra: Any,
    ) -> Path:
        payload = {"case": directory.name, "phase": phase, "iteration": 1, "gates": gates or {}}
        payload.update(extra)
        return _write(directory / "state.json", payload)

    return _write_state


@pytest.fixture()
def all_gates() -> dict[str, bool]:
    return {name: True for name in GATE_NAMES}


@pytest.fixture()
def passing_case(case_dir: Path) -> Path:
    """Case whose artifacts satisfy all eleven gates and raise no blocking gap."""

    for name in ("refined_prompt.md", "strategic_context.md", "investigation_plan.md"):
        _write(case_dir / name, f"# {name}\n")
    _write(case_dir / "questions" / "01-who.md", "# Who\n\n**Status:** investigated\n")
    _write(case_dir / "questions" / "02-money.md", "# Money\n\n**Status:** not-applicable\n")
    _write(
        case_dir / "leads.json",
        {
            "version": 4,
            "max_depth": 3,
            "leads": [
                lead_record(
                    "L001",
                    status="investigated",
                    result="Filed 3 permits in 2024",
                    sources=["S001"],
                ),
                lead_record("L002", status="dead_end", result="No record"),
            ],
        },
    )
    _write(
        case_dir / "sources.json",
        {"sources": [{"id": "S001", "url": "https://example.com/permits", "captured": True}]},
    )
    _write(case_dir / "evidence" / "web" / "S001" / "capture.html", "<html>permits</html>")
    _write(case_dir / "findings" / "T001-findings.md", "Permit filings confirmed [S001].\n")
    _write(case_dir / "summary.md", "Three permits were filed [S001].\n")
    _write(case_dir / "articles" / "full.md", "# Story\n\nThe city filed three permits [S001].\n")
    _write(case_dir / "articles" / "full.pdf", "%PDF-1.4 stub")
    _write(
        case_dir / "semantic-verification.json",
        {
            "summary": {
                "total": 3,
                "verified": 3,
                "unverified": 0,
                "skipped": 1,
                "noSource": 0,
                "sourceMissing": 0,
                "sourceInvalid": 0,
                "noResponse": 0,
                "parseErrors": 0,
                "invalidResponses": 0,
                "citationUrlMismatches": 0,
            },
        },
    )
    _write(
        case_dir / "compute-verification.json",
        {
            "summary": {
                "total": 0,
                "verified": 0,
                "discrepancies": 0,
                "dataNotFound": 0,
                "noSource": 0,
                "sourceMissing": 0,
                "sourceInvalid": 0,
                "noResponse": 0,
                "parseErrors": 0,
                "errors": 0,
            },
        },
    )
    _write(case_dir / "integrity-review.md", "# Integrity\n\n**READY**\n")
    _write(case_dir / "legal-review.md", "# Legal\n\n**READY**\n")
    for name in ("balance-audit.md", "completeness-audit.md", "significance-audit.md"):
        _write(case_dir / name, "# Audit\n\n**PASS**\n")
    log = _write(case_dir / "reconciliation-log.md", "# Reconciliation\n\nAll leads merged.\n")
    touch_newer(log)
    return case_dir


def touch_newer(path: Path, seconds: float = 60.0) -> Path:
    """Push ``path`` mtime ahead so mtime-ordering checks do not depend on clock resolution."""

    stamp = time.time() + seconds
    os.utime(path, (stamp, stamp))
    return path


@pytest.fixture()
def make_lead() -> Callable[..., dict[str, Any]]:
    return lead_record
