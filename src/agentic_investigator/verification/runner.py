"""Runs registered verifiers with per-verifier failure isolation."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from agentic_investigator.verification.models import GapType, VerifierOutcome, VerifierRun
from agentic_investigator.verification.verifiers.base import VerifierSpec, make_gap

logger = logging.getLogger(__name__)

CRASH_TAG = "generate-gaps"


def read_outcome(result: Any) -> VerifierOutcome:
    """Accept a ``VerifierOutcome`` or a mapping with ``passed``/``overall`` and ``gaps``."""

    if isinstance(result, VerifierOutcome):
        return VerifierOutcome(passed=bool(result.passed), gaps=_mapping_gaps(result.gaps))
    if not isinstance(result, Mapping):
        raise TypeError(f"verifier returned {type(result).__name__}, expected a mapping")
    if "passed" in result:
        passed = bool(result["passed"])
    elif "overall" in result:
        passed = bool(result["overall"])
    else:
        passed = False
    return VerifierOutcome(passed=passed, gaps=_mapping_gaps(result.get("gaps")))


def _mapping_gaps(gaps: Any) -> list[dict[str, Any]]:
    if not isinstance(gaps, list):
        return []
    return [dict(gap) for gap in gaps if isinstance(gap, Mapping)]


def crash_gap(name: str, script: str, error: str) -> dict[str, Any]:
    """Synthetic gap standing in for a verifier that could not produce a result."""

    gap = make_gap(
        GapType.STATE_INCONSISTENT,
        f"Verifier {name} failed: {error}",
        object_={"verifier": name, "script": script},
        actions=("fix_verifier",),
    )
    gap["verifier"] = CRASH_TAG
    return gap


class VerifierRunner:
    """Invokes each registered verifier in order; one crash never aborts the batch."""

    def __init__(self, specs: Sequence[VerifierSpec]) -> None:
        self.specs = list(specs)

    def run(self, case_dir: Path) -> list[VerifierRun]:
        return [self._run_one(spec, case_dir) for spec in self.specs]

    def _run_one(self, spec: VerifierSpec, case_dir: Path) -> VerifierRun:
        verify = getattr(spec.verifier, "verify", None)
        if not callable(verify):
            error = "does not expose a callable verify()"
            logger.error("Verifier %s %s", spec.name, error)
            return VerifierRun(
                name=spec.name,
                script=spec.script,
                ok=False,
                passed=False,
                gaps=[crash_gap(spec.name, spec.script, error)],
                error=error,
            )
        try:
            result = read_outcome(verify(case_dir, dict(spec.options)))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Verifier %s crashed: %s", spec.name, exc, exc_info=True)
            return VerifierRun(
                name=spec.name,
                script=spec.script,
                ok=False,
                passed=False,
                gaps=[crash_gap(spec.name, spec.script, str(exc))],
                error=str(exc),
            )
        return VerifierRun(
            name=spec.name,
            script=spec.script,
            ok=True,
            passed=result.passed,
            gaps=result.gaps,
        )
