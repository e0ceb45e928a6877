"""Legal review and audit-trail integrity verifiers."""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from agentic_investigator.verification.casefiles import parse_bold_status, read_json, safe_read_text
from agentic_investigator.verification.models import GapType, VerifierOutcome
from agentic_investigator.verification.verifiers.base import make_gap, outcome

REVIEW_VERDICTS = ("READY", "READY WITH CHANGES", "NOT READY")
_LEDGER_ENTRY_ID = re.compile(r"^L(\d+)$")


class LegalVerifier:
    """``legal-review.md`` must exist and must not block publication."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        text = safe_read_text(case_dir / "legal-review.md")
        if not text:
            return outcome(
                [
                    make_gap(
                        GapType.LEGAL_REVIEW_MISSING,
                        "legal-review.md not found (termination gate requires legal review)",
                        object_={"file": "legal-review.md"},
                        actions=("run_legal_review",),
                    ),
                ],
            )

        verdict = parse_bold_status(text, REVIEW_VERDICTS)
        not_ready = verdict == "NOT READY" if verdict else "NOT READY" in text.upper()
        if not not_ready:
            return outcome([])
        return outcome(
            [
                make_gap(
                    GapType.LEGAL_DEFAMATION_RISK,
                    "legal-review.md indicates NOT READY",
                    object_={"file": "legal-review.md"},
                    actions=("address_legal_review", "revise_language", "add_attribution"),
                ),
            ],
        )


class IntegrityVerifier:
    """Structural checks of the append-only ``ledger.json`` audit trail."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        path = case_dir / "ledger.json"
        if not path.exists():
            return outcome(
                [
                    make_gap(
                        GapType.INTEGRITY_VIOLATION,
                        "ledger.json not found (append-only audit trail is missing)",
                        object_={"file": "ledger.json"},
                        actions=("initialize_ledger",),
                    ),
                ],
            )
        parsed = read_json(path)
        if not parsed.ok:
            return outcome(
                [
                    make_gap(
                        GapType.INTEGRITY_VIOLATION,
                        f"ledger.json parse error: {parsed.message or parsed.error}",
                        object_={"file": "ledger.json"},
                        actions=("fix_ledger_json",),
                    ),
                ],
            )
        entries = parsed.value.get("entries") if isinstance(parsed.value, dict) else None
        if not isinstance(entries, list):
            return outcome(
                [
                    make_gap(
                        GapType.INTEGRITY_VIOLATION,
                        "ledger.json missing `entries` array",
                        object_={"file": "ledger.json"},
                        actions=("fix_ledger_schema",),
                    ),
                ],
            )
        entries = [entry for entry in entries if isinstance(entry, dict)]
        return outcome(_id_gaps(entries) + _lock_gaps(entries))


def _id_gaps(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    duplicates = 0
    numbers: list[int] = []
    for entry in entries:
        entry_id = entry.get("id")
        if not isinstance(entry_id, str):
            continue
        if entry_id in seen:
            duplicates += 1
        seen.add(entry_id)
        match = _LEDGER_ENTRY_ID.match(entry_id)
        if match:
            numbers.append(int(match.group(1)))

    gaps: list[dict[str, Any]] = []
    if duplicates:
        gaps.append(
            make_gap(
                GapType.INTEGRITY_VIOLATION,
                f"ledger.json contains {duplicates} duplicate entry id(s)",
                object_={"file": "ledger.json", "duplicates": duplicates},
                actions=("deduplicate_ledger_ids",),
            ),
        )
    ordered = sorted(set(numbers))
    discontinuities = sum(1 for prev, cur in zip(ordered, ordered[1:]) if cur != prev + 1)
    if discontinuities:
        gaps.append(
            make_gap(
                GapType.INTEGRITY_VIOLATION,
                f"ledger.json has {discontinuities} discontinuity gap(s) in L### ids",
                object_={"file": "ledger.json", "id_gaps": discontinuities},
                actions=("inspect_ledger_generation",),
            ),
        )
    return gaps


def _lock_gaps(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    held: dict[str, str | None] = {}
    for entry in entries:
        kind = entry.get("type")
        target = entry.get("file")
        if kind not in {"file_lock", "file_unlock"} or not isinstance(target, str) or not target:
            continue
        if kind == "file_lock":
            agent = entry.get("agent")
            held[target] = agent if isinstance(agent, str) else None
        else:
            held.pop(target, None)
    if not held:
        return []
    return [
        make_gap(
            GapType.INTEGRITY_VIOLATION,
            f"{len(held)} file lock(s) remain without matching unlock",
            object_={
                "file": "ledger.json",
                "locks": [{"file": name, "agent": agent} for name, agent in sorted(held.items())],
            },
            actions=("release_file_locks", "append_file_unlock"),
        ),
    ]
