"""Gap generation and gate verification passes over one case directory."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from agentic_investigator.config import Settings
from agentic_investigator.contracts import load_json_or_none, to_iso, utc_now, write_json
from agentic_investigator.verification.gaps import (
    DIGEST_PATH,
    GAPS_PATH,
    GapAggregator,
    gap_paths,
)
from agentic_investigator.verification.gates import GateEngine
from agentic_investigator.verification.models import GapReport, GateReport, VerifierRun
from agentic_investigator.verification.runner import VerifierRunner, crash_gap
from agentic_investigator.verification.verifiers import VerifierSpec, default_verifier_specs

logger = logging.getLogger(__name__)

GATES_RUN_NAME = "termination_gates"


@dataclass(slots=True)
class VerificationSummary:
    """Combined gap and gate verdict for one case."""

    gaps: GapReport
    gates: GateReport
    remediation_tasks: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.gaps.can_terminate and self.gates.overall


class VerificationService:
    """Composes verifier runner, gate engine and gap aggregator."""

    def __init__(
        self,
        settings: Settings,
        *,
        specs: Sequence[VerifierSpec] | None = None,
        gate_engine: GateEngine | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        if specs is None:
            specs = default_verifier_specs(settings)
        self.runner = VerifierRunner(specs)
        self.gate_engine = gate_engine or GateEngine(settings.gates, clock=clock)
        self.aggregator = GapAggregator(settings.gaps.severity_overrides)
        self._clock = clock

    def run_gates(self, case_dir: Path, *, fix: bool = False) -> tuple[GateReport, list[str]]:
        report = self.gate_engine.run(case_dir)
        created = self.gate_engine.write_remediation_tasks(case_dir, report) if fix else []
        return report, created

    def generate_gaps(self, case_dir: Path) -> GapReport:
        """Run every verifier plus the gate engine and persist ``control/gaps.json``."""

        started = time.perf_counter()
        runs = self.runner.run(case_dir)
        gate_run, gate_report = self._gate_run(case_dir)
        runs.append(gate_run)

        report = self.aggregator.aggregate(
            case_dir=case_dir,
            iteration=read_iteration(case_dir),
            generated_at=to_iso(self._clock()),
            duration_ms=int((time.perf_counter() - started) * 1000),
            runs=runs,
        )
        report.gate_report = gate_report
        write_json(case_dir / GAPS_PATH, report.to_dict(gap_paths(case_dir)))
        write_json(case_dir / DIGEST_PATH, report.digest())
        logger.info(
            "Gap pass for %s: %d gaps, %d blocking",
            case_dir,
            report.total_gaps,
            len(report.blocking),
        )
        return report

    def verify(self, case_dir: Path, *, fix: bool = False) -> VerificationSummary:
        """Gap generation followed by an authoritative gate run."""

        gaps = self.generate_gaps(case_dir)
        gates, created = self.run_gates(case_dir, fix=fix)
        return VerificationSummary(gaps=gaps, gates=gates, remediation_tasks=created)

    def _gate_run(self, case_dir: Path) -> tuple[VerifierRun, GateReport | None]:
        script = f"{type(self.gate_engine).__module__}.{type(self.gate_engine).__qualname__}"
        try:
            gate_report = self.gate_engine.run(case_dir)
        except Exception as error:  # noqa: BLE001
            logger.warning("Gate engine failed for %s: %s", case_dir, error, exc_info=True)
            return (
                VerifierRun(
                    name=GATES_RUN_NAME,
                    script=script,
                    ok=False,
                    passed=False,
                    gaps=[crash_gap(GATES_RUN_NAME, script, str(error))],
                    error=str(error),
                ),
                None,
            )
        return (
            VerifierRun(
                name=GATES_RUN_NAME,
                script=script,
                ok=True,
                passed=gate_report.overall,
                gaps=self.aggregator.gate_gaps(gate_report),
                failed_gates=gate_report.blocking_gates,
            ),
            gate_report,
        )


def read_iteration(case_dir: Path) -> int:
    """Iteration counter from ``state.json``; 1 when it cannot be read."""

    state = load_json_or_none(case_dir / "state.json")
    if state is None:
        logger.warning("state.json unreadable in %s; assuming iteration 1", case_dir)
        return 1
    iteration = state.get("iteration", 1)
    if not isinstance(iteration, int) or isinstance(iteration, bool):
        return 1
    return iteration
