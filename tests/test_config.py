from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agentic_investigator.config import (
    DEFAULT_FILES_TO_SCAN,
    GapSettings,
    LeadLedgerSettings,
    OrchestratorSettings,
    Settings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_defaults(monkeypatch) -> None:
    for name in (
        "AGENTIC_INVESTIGATOR_LOG_LEVEL",
        "AGENTIC_INVESTIGATOR_CASES_ROOT",
        "AGENTIC_INVESTIGATOR_FILES_TO_SCAN",
        "AGENTIC_INVESTIGATOR_GAP_SEVERITY",
        "AGENTIC_INVESTIGATOR_REFRESH_GATES",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.log_level == "WARNING"
    assert settings.leads.stale_claim_seconds == 1_800
    assert settings.leads.default_max_depth == 3
    assert settings.gates.files_to_scan == DEFAULT_FILES_TO_SCAN
    assert settings.gaps.severity_overrides == {}
    assert settings.orchestrator.cases_root == Path("cases")
    assert settings.orchestrator.batch_size == 4
    assert settings.orchestrator.refresh_gates is True
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_LOG_LEVEL", "debug")
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_STALE_CLAIM_SECONDS", "60")
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_FILES_TO_SCAN", "summary.md, brief.md,summary.md")
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_REQUIRED_PERSPECTIVES", "money,legal")
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_BATCH_SIZE", "2")
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_REFRESH_GATES", "off")

    settings = Settings.from_env(cases_root=tmp_path)

    assert settings.log_level == "DEBUG"
    assert settings.leads.stale_claim_seconds == 60
    assert settings.gates.files_to_scan == ("summary.md", "brief.md")
    assert settings.gaps.required_perspectives == ("money", "legal")
    assert settings.orchestrator.cases_root == tmp_path
    assert settings.orchestrator.batch_size == 2
    assert settings.orchestrator.refresh_gates is False


def test_gap_severity_overrides_are_parsed(monkeypatch) -> None:
    monkeypatch.setenv(
        "AGENTIC_INVESTIGATOR_GAP_SEVERITY",
        "integrity_violation|blocker, CURIOSITY_DEFICIT|medium",
    )

    settings = Settings.from_env()

    assert settings.gaps.severity_overrides == {
        "INTEGRITY_VIOLATION": "BLOCKER",
        "CURIOSITY_DEFICIT": "MEDIUM",
    }


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("INTEGRITY_VIOLATION", "Expected format"),
        ("INTEGRITY_VIOLATION|URGENT", "expected one of"),
    ],
)
def test_gap_severity_overrides_reject_malformed_entries(
    monkeypatch,
    raw: str,
    message: str,
) -> None:
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_GAP_SEVERITY", raw)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_invalid_boolean_env_names_the_variable(monkeypatch) -> None:
    monkeypatch.setenv("AGENTIC_INVESTIGATOR_REFRESH_GATES", "maybe")

    with pytest.raises(ValueError, match="AGENTIC_INVESTIGATOR_REFRESH_GATES"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(log_level="LOUD"), "AGENTIC_INVESTIGATOR_LOG_LEVEL"),
        (
            Settings(leads=LeadLedgerSettings(stale_claim_seconds=0)),
            "AGENTIC_INVESTIGATOR_STALE_CLAIM_SECONDS",
        ),
        (
            Settings(leads=LeadLedgerSettings(lock_timeout_seconds=5.0, lock_stale_seconds=5.0)),
            "AGENTIC_INVESTIGATOR_LOCK_STALE_SECONDS",
        ),
        (
            Settings(orchestrator=OrchestratorSettings(batch_size=0)),
            "AGENTIC_INVESTIGATOR_BATCH_SIZE",
        ),
        (
            Settings(gaps=GapSettings(severity_overrides={"GATE_FAILED": "URGENT"})),
            "Invalid severity override",
        ),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
