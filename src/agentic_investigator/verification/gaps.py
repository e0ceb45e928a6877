"""Gap normalization, content-derived ids and the per-run gap digest."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from agentic_investigator.verification.models import (
    DEFAULT_GAP_SEVERITIES,
    Gap,
    GapReport,
    GapSeverity,
    GapType,
    GateReport,
    VerifierRun,
)
from agentic_investigator.verification.runner import crash_gap

logger = logging.getLogger(__name__)

GAPS_PATH = Path("control") / "gaps.json"
DIGEST_PATH = Path("control") / "digest.json"
GATE_VERIFIER_TAG = "verify-all-gates"


def canonical_json(value: Any) -> str:
    """Compact JSON with recursively sorted keys; equal values always serialize equally."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_gap_id(gap_type: str, object_: Mapping[str, Any] | None, message: str) -> str:
    """``G`` + first 8 upper-case hex chars of SHA-1 over ``{type, object, message}``."""

    payload = canonical_json(
        {
            "type": gap_type,
            "object": dict(object_) if object_ is not None else None,
            "message": message,
        },
    )
    digest = hashlib.sha1(payload.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324
    return "G" + digest[:8].upper()


class GapAggregator:
    """Flattens verifier and gate output into one deduplicated gap list."""

    def __init__(self, severity_overrides: Mapping[str, str] | None = None) -> None:
        self.severity_overrides = {
            key.upper(): GapSeverity(value) for key, value in (severity_overrides or {}).items()
        }

    def resolve_severity(self, gap_type: str, raw_severity: Any) -> GapSeverity:
        if gap_type in self.severity_overrides:
            return self.severity_overrides[gap_type]
        if gap_type in DEFAULT_GAP_SEVERITIES:
            return DEFAULT_GAP_SEVERITIES[gap_type]
        if isinstance(raw_severity, str) and raw_severity.upper() in GapSeverity.__members__:
            return GapSeverity(raw_severity.upper())
        return GapSeverity.MEDIUM

    def normalize(self, raw: Mapping[str, Any], verifier: str) -> Gap | None:
        """Canonical gap for ``raw``; ``None`` when it has no usable ``type``."""

        gap_type = raw.get("type")
        if not isinstance(gap_type, str) or not gap_type.strip():
            logger.warning("Dropping gap without type from verifier %s: %r", verifier, raw)
            return None
        gap_type = gap_type.strip()
        message = str(raw.get("message") or "")
        object_ = raw.get("object")
        object_ = dict(object_) if isinstance(object_, Mapping) else {}
        actions = raw.get("suggested_actions")
        suggested = [str(action) for action in actions] if isinstance(actions, list) else []
        tag = raw.get("verifier")
        return Gap(
            gap_id=compute_gap_id(gap_type, object_, message),
            type=gap_type,
            severity=self.resolve_severity(gap_type, raw.get("severity")),
            object=object_,
            message=message,
            suggested_actions=suggested,
            verifier=tag if isinstance(tag, str) and tag else verifier,
        )

    def gate_gaps(self, report: GateReport) -> list[dict[str, Any]]:
        """One ``GATE_FAILED`` raw gap per failing gate."""

        return [
            {
                "type": GapType.GATE_FAILED.value,
                "object": {"gate": gate.name},
                "message": f"Gate {gate.name} failed: {gate.reason}",
                "suggested_actions": ["fix_gate"],
                "verifier": GATE_VERIFIER_TAG,
            }
            for gate in report.gates
            if not gate.passed
        ]

    def aggregate(  # noqa: PLR0913
        self,
        *,
        case_dir: Path,
        iteration: int,
        generated_at: str,
        duration_ms: int,
        runs: Iterable[VerifierRun],
    ) -> GapReport:
        """Normalize, dedupe (first occurrence wins) and partition by severity."""

        seen: set[str] = set()
        blocking: list[Gap] = []
        non_blocking: list[Gap] = []
        records: list[dict[str, Any]] = []
        for run in runs:
            normalized = self._normalize_run(run)
            records.append(run.to_record(gap_count=len(normalized)))
            for gap in normalized:
                if gap.gap_id in seen:
                    continue
                seen.add(gap.gap_id)
                (blocking if gap.severity is GapSeverity.BLOCKER else non_blocking).append(gap)

        return GapReport(
            case_dir=str(case_dir),
            iteration=iteration,
            generated_at=generated_at,
            duration_ms=duration_ms,
            verifiers=records,
            blocking=blocking,
            non_blocking=non_blocking,
        )

    def _normalize_run(self, run: VerifierRun) -> list[Gap]:
        normalized: list[Gap] = []
        for raw in run.gaps:
            try:
                gap = self.normalize(raw, run.name)
            except (TypeError, ValueError) as exc:
                logger.warning("Verifier %s emitted an unusable gap: %s", run.name, exc)
                gap = self.normalize(
                    crash_gap(run.name, run.script, f"unusable gap: {exc}"),
                    run.name,
                )
            if gap is not None:
                normalized.append(gap)
        return normalized


def gap_paths(case_dir: Path) -> dict[str, str]:
    return {
        "gaps_json": str(case_dir / GAPS_PATH),
        "digest_json": str(case_dir / DIGEST_PATH),
    }
