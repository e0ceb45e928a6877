"""Evidence, source registry, citation and corroboration verifiers."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from agentic_investigator.config import DEFAULT_FILES_TO_SCAN
from agentic_investigator.verification.casefiles import (
    CITATION_PATTERN,
    EVIDENCE_WEB_DIR,
    canonicalize_source_url,
    collect_citations,
    evidence_status,
    list_files,
    read_json,
    safe_read_text,
    source_registry,
)
from agentic_investigator.verification.models import GapType, VerifierOutcome
from agentic_investigator.verification.verifiers.base import make_gap, outcome


class SourcesVerifier:
    """Capture before cite: every cited ``[S###]`` needs a non-empty evidence folder."""

    def __init__(self, files_to_scan: tuple[str, ...] = DEFAULT_FILES_TO_SCAN) -> None:
        self.files_to_scan = files_to_scan

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        files = tuple(options.get("files_to_scan", self.files_to_scan))
        gaps: list[dict[str, Any]] = []
        for source_id in sorted(collect_citations(case_dir, files)):
            status = evidence_status(case_dir, source_id)
            if status == "missing":
                gaps.append(
                    make_gap(
                        GapType.MISSING_EVIDENCE,
                        f"{source_id} cited but evidence/web/{source_id}/ does not exist",
                        object_={"source_id": source_id},
                        actions=("capture_source", "remove_citation"),
                    ),
                )
            elif status == "empty":
                gaps.append(
                    make_gap(
                        GapType.MISSING_EVIDENCE,
                        f"{source_id} evidence folder exists but is empty",
                        object_={"source_id": source_id},
                        actions=("recapture_source",),
                    ),
                )
        return outcome(gaps)


class SourcesDedupVerifier:
    """Flags one URL registered under several source ids without a recorded reason."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        parsed = read_json(case_dir / "sources.json")
        if not parsed.ok:
            # Missing or unreadable registry is reported by the schema verifier.
            return outcome([])

        registry = source_registry(parsed.value)
        groups: dict[str, list[str]] = {}
        for source_id in sorted(registry):
            canonical = canonicalize_source_url(registry[source_id].get("url"))
            if canonical is not None:
                groups.setdefault(canonical, []).append(source_id)

        gaps: list[dict[str, Any]] = []
        for canonical_url, source_ids in groups.items():
            if len(source_ids) < 2:
                continue
            if all(_allowed_duplicate(registry[sid], source_ids) for sid in source_ids):
                continue
            gaps.append(
                make_gap(
                    GapType.DUPLICATE_SOURCE_URL,
                    "Duplicate URL captured under multiple source IDs: " + ", ".join(source_ids),
                    object_={"canonical_url": canonical_url, "sources": source_ids},
                    actions=(
                        "merge_sources",
                        "deduplicate_sources_json",
                        "record_duplicate_reason",
                    ),
                ),
            )
        return outcome(gaps)


def _allowed_duplicate(record: dict[str, Any], group: list[str]) -> bool:
    reason = record.get("duplicate_reason")
    if not isinstance(reason, str) or not reason.strip():
        return False
    if record.get("allow_duplicate") is True:
        return True
    duplicate_of = record.get("duplicate_of")
    return isinstance(duplicate_of, str) and duplicate_of.strip() in group


class CorroborationVerifier:
    """Claims with a ``corroboration`` block must meet their source requirements."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        claim_files = [
            path
            for path in list_files(case_dir / "claims", (".json",))
            if path.name.startswith("C")
        ]
        if not claim_files:
            return outcome([])

        sources = read_json(case_dir / "sources.json")
        registry = source_registry(sources.value) if sources.ok else {}
        gaps: list[dict[str, Any]] = []
        for path in claim_files:
            claim = read_json(path)
            if not claim.ok or not isinstance(claim.value, dict):
                continue
            gaps.extend(_claim_gaps(claim.value, path.stem, registry))
        return outcome(gaps)


def _claim_gaps(
    claim: dict[str, Any],
    fallback_id: str,
    registry: dict[str, dict[str, Any]],
) -> list[dict[str, Any]]:
    requirement = claim.get("corroboration")
    if not isinstance(requirement, dict):
        return []
    claim_id = str(claim.get("id") or fallback_id)
    supporting = claim.get("supporting_sources")
    supporting_ids = [str(item) for item in supporting] if isinstance(supporting, list) else []
    min_sources = requirement.get("min_sources") or 1

    gaps: list[dict[str, Any]] = []
    if len(supporting_ids) < min_sources:
        gaps.append(
            make_gap(
                GapType.INSUFFICIENT_CORROBORATION,
                f"Claim {claim_id} has {len(supporting_ids)} source(s); requires >={min_sources}",
                object_={"claim_id": claim_id},
                actions=("find_independent_source", "capture", "update_claim_record"),
            ),
        )

    if requirement.get("requires_primary") and not claim.get("primary_source"):
        has_primary = any(
            registry.get(source_id, {}).get("category") == "primary" for source_id in supporting_ids
        )
        if not has_primary:
            gaps.append(
                make_gap(
                    GapType.INSUFFICIENT_CORROBORATION,
                    f"Claim {claim_id} requires primary source but none found",
                    object_={"claim_id": claim_id},
                    actions=("find_primary_document", "capture"),
                ),
            )
    return gaps


class CitationDensityVerifier:
    """``summary.md`` must exist and cite at least one ``[S###]`` source."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        text = safe_read_text(case_dir / "summary.md")
        if text is None:
            return outcome(
                [
                    make_gap(
                        GapType.UNCITED_ASSERTION,
                        "summary.md not found",
                        object_={"file": "summary.md"},
                        actions=("create_summary", "add_citations"),
                    ),
                ],
            )
        if CITATION_PATTERN.search(text):
            return outcome([])
        return outcome(
            [
                make_gap(
                    GapType.UNCITED_ASSERTION,
                    "summary.md has ZERO [SXXX] citations - sources must be cited",
                    object_={"file": "summary.md", "total_citations": 0, "unique_sources": 0},
                    actions=("add_citations", "recapture_sources", "revise_summary"),
                ),
            ],
        )


# Wire services whose copy other outlets republish.
WIRE_ORIGIN_DOMAINS: dict[str, str] = {
    "apnews.com": "AP",
    "ap.org": "AP",
    "reuters.com": "Reuters",
    "afp.com": "AFP",
    "upi.com": "UPI",
}
WIRE_ORIGIN_MARKERS: tuple[tuple[str, str], ...] = (
    ("associated press", "AP"),
    ("(ap)", "AP"),
    ("(reuters)", "Reuters"),
    ("agence france-presse", "AFP"),
    ("(afp)", "AFP"),
)
_EVIDENCE_TEXT_FILES = ("extracted_text.txt", "capture.html", "content.md")
_EVIDENCE_SNIPPET_CHARS = 300_000


class CircularReportingVerifier:
    """Flags claims whose supporting sources all trace back to a single origin."""

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:
        claim_files = [
            path
            for path in list_files(case_dir / "claims", (".json",))
            if path.name.startswith("C")
        ]
        if not claim_files:
            return outcome([])

        sources = read_json(case_dir / "sources.json")
        registry = source_registry(sources.value) if sources.ok else {}
        origins: dict[str, str | None] = {}
        gaps: list[dict[str, Any]] = []
        for path in claim_files:
            claim = read_json(path)
            if not claim.ok or not isinstance(claim.value, dict):
                continue
            supporting = claim.value.get("supporting_sources")
            if not isinstance(supporting, list) or len(supporting) < 2:
                continue
            supporting_ids = [str(item) for item in supporting]
            for source_id in supporting_ids:
                if source_id not in origins:
                    origins[source_id] = detect_source_origin(
                        case_dir,
                        source_id,
                        registry.get(source_id),
                    )
            known = [origins[sid] for sid in supporting_ids if origins[sid]]
            if len(known) < 2 or len(set(known)) != 1:
                continue
            raw_id = claim.value.get("id")
            claim_id = raw_id if isinstance(raw_id, str) else None
            origin = known[0]
            gaps.append(
                make_gap(
                    GapType.CIRCULAR_REPORTING_RISK,
                    f"Claim {claim_id or '(unknown)'}: supporting sources likely share the same "
                    f"origin ({origin}); treat as 1 independent source",
                    object_={"claim_id": claim_id, "origin": origin, "sources": supporting_ids},
                    actions=(
                        "add_truly_independent_source",
                        "update_claim_corroboration",
                        "record_origin_metadata",
                    ),
                ),
            )
        return outcome(gaps)


def detect_source_origin(
    case_dir: Path,
    source_id: str,
    record: Mapping[str, Any] | None,
) -> str | None:
    """Origin of a source: explicit ``origin``, then wire domain, then a wire byline in evidence."""

    if record is not None:
        explicit = record.get("origin")
        if isinstance(explicit, str) and explicit.strip():
            return explicit.strip()
        canonical = canonicalize_source_url(record.get("url"))
        if canonical is not None:
            domain = urlparse(canonical).hostname or ""
            for wire_domain, origin in WIRE_ORIGIN_DOMAINS.items():
                if domain == wire_domain or domain.endswith("." + wire_domain):
                    return origin

    haystack = _evidence_snippet(case_dir, source_id).lower()
    for marker, origin in WIRE_ORIGIN_MARKERS:
        if marker in haystack:
            return origin
    return None


def _evidence_snippet(case_dir: Path, source_id: str) -> str:
    folder = case_dir / EVIDENCE_WEB_DIR / source_id
    for name in _EVIDENCE_TEXT_FILES:
        text = safe_read_text(folder / name)
        if text is not None:
            return text[:_EVIDENCE_SNIPPET_CHARS]
    metadata = read_json(folder / "metadata.json")
    if metadata.ok and isinstance(metadata.value, dict):
        title = metadata.value.get("title")
        return title if isinstance(title, str) else ""
    return ""
