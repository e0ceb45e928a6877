"""Runtime configuration for the lead ledger, verification and orchestration layers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

SEVERITIES = ("BLOCKER", "HIGH", "MEDIUM", "LOW")

DEFAULT_FILES_TO_SCAN = (
    "summary.md",
    "articles/full.md",
    "articles/short.md",
    "articles/medium.md",
    "fact-check.md",
)


@dataclass(slots=True)
class LeadLedgerSettings:
    """Lead ledger locking and claim settings."""

    stale_claim_seconds: int = 1_800
    lock_timeout_seconds: float = 5.0
    lock_retry_seconds: float = 0.05
    lock_stale_seconds: float = 30.0
    default_max_depth: int = 3


@dataclass(slots=True)
class GateSettings:
    """Termination gate inputs."""

    files_to_scan: tuple[str, ...] = DEFAULT_FILES_TO_SCAN
    pending_details_limit: int = 25


@dataclass(slots=True)
class GapSettings:
    """Gap aggregation settings."""

    severity_overrides: dict[str, str] = field(default_factory=dict)
    required_perspectives: tuple[str, ...] = ()
    min_curiosity_tasks: int = 2


@dataclass(slots=True)
class OrchestratorSettings:
    """Phase orchestrator settings."""

    cases_root: Path = Path("cases")
    batch_size: int = 4
    refresh_gates: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    log_level: str = "WARNING"
    leads: LeadLedgerSettings = field(default_factory=LeadLedgerSettings)
    gates: GateSettings = field(default_factory=GateSettings)
    gaps: GapSettings = field(default_factory=GapSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)

    @classmethod
    def from_env(cls, cases_root: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the case layout conventions."""

        files_to_scan = _collect_csv("AGENTIC_INVESTIGATOR_FILES_TO_SCAN")
        return cls(
            log_level=os.getenv("AGENTIC_INVESTIGATOR_LOG_LEVEL", "WARNING").strip().upper(),
            leads=LeadLedgerSettings(
                stale_claim_seconds=int(
                    os.getenv("AGENTIC_INVESTIGATOR_STALE_CLAIM_SECONDS", "1800"),
                ),
                lock_timeout_seconds=float(
                    os.getenv("AGENTIC_INVESTIGATOR_LOCK_TIMEOUT_SECONDS", "5.0"),
                ),
                lock_retry_seconds=float(
                    os.getenv("AGENTIC_INVESTIGATOR_LOCK_RETRY_SECONDS", "0.05"),
                ),
                lock_stale_seconds=float(
                    os.getenv("AGENTIC_INVESTIGATOR_LOCK_STALE_SECONDS", "30.0"),
                ),
                default_max_depth=int(os.getenv("AGENTIC_INVESTIGATOR_DEFAULT_MAX_DEPTH", "3")),
            ),
            gates=GateSettings(
                files_to_scan=files_to_scan or DEFAULT_FILES_TO_SCAN,
                pending_details_limit=int(
                    os.getenv("AGENTIC_INVESTIGATOR_PENDING_DETAILS_LIMIT", "25"),
                ),
            ),
            gaps=GapSettings(
                severity_overrides=_collect_severity_overrides(),
                required_perspectives=_collect_csv("AGENTIC_INVESTIGATOR_REQUIRED_PERSPECTIVES"),
                min_curiosity_tasks=int(
                    os.getenv("AGENTIC_INVESTIGATOR_MIN_CURIOSITY_TASKS", "2"),
                ),
            ),
            orchestrator=OrchestratorSettings(
                cases_root=cases_root
                or Path(os.getenv("AGENTIC_INVESTIGATOR_CASES_ROOT", "cases")),
                batch_size=int(os.getenv("AGENTIC_INVESTIGATOR_BATCH_SIZE", "4")),
                refresh_gates=_env_bool("AGENTIC_INVESTIGATOR_REFRESH_GATES", default=True),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ValueError(f"Invalid AGENTIC_INVESTIGATOR_LOG_LEVEL: {self.log_level!r}")
        if self.leads.stale_claim_seconds <= 0:
            raise ValueError("AGENTIC_INVESTIGATOR_STALE_CLAIM_SECONDS must be > 0.")
        if self.leads.lock_timeout_seconds <= 0:
            raise ValueError("AGENTIC_INVESTIGATOR_LOCK_TIMEOUT_SECONDS must be > 0.")
        if self.leads.lock_retry_seconds <= 0:
            raise ValueError("AGENTIC_INVESTIGATOR_LOCK_RETRY_SECONDS must be > 0.")
        if self.leads.lock_stale_seconds <= self.leads.lock_timeout_seconds:
            raise ValueError(
                "AGENTIC_INVESTIGATOR_LOCK_STALE_SECONDS must exceed the lock timeout.",
            )
        if self.leads.default_max_depth < 0:
            raise ValueError("AGENTIC_INVESTIGATOR_DEFAULT_MAX_DEPTH must be >= 0.")
        if self.orchestrator.batch_size <= 0:
            raise ValueError("AGENTIC_INVESTIGATOR_BATCH_SIZE must be a positive integer.")
        if self.gaps.min_curiosity_tasks < 0:
            raise ValueError("AGENTIC_INVESTIGATOR_MIN_CURIOSITY_TASKS must be >= 0.")
        for gap_type, severity in self.gaps.severity_overrides.items():
            if severity not in SEVERITIES:
                raise ValueError(
                    f"Invalid severity override for {gap_type!r}: {severity!r}",
                )


def _collect_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _collect_severity_overrides() -> dict[str, str]:
    raw = os.getenv("AGENTIC_INVESTIGATOR_GAP_SEVERITY", "").strip()
    if not raw:
        return {}

    overrides: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                "Invalid AGENTIC_INVESTIGATOR_GAP_SEVERITY entry: "
                f"{token!r}. Expected format '<GAP_TYPE>|<SEVERITY>'.",
            )
        gap_type, severity = token.rsplit("|", 1)
        gap_type = gap_type.strip().upper()
        severity = severity.strip().upper()
        if not gap_type:
            raise ValueError(f"Invalid AGENTIC_INVESTIGATOR_GAP_SEVERITY entry: {token!r}")
        if severity not in SEVERITIES:
            raise ValueError(
                "Invalid AGENTIC_INVESTIGATOR_GAP_SEVERITY value for "
                f"{gap_type!r}: {severity!r} (expected one of {', '.join(SEVERITIES)})",
            )
        overrides[gap_type] = severity
    return overrides


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
