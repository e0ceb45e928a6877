"""Termination gates derived from on-disk case artifacts only."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from agentic_investigator.config import GateSettings
from agentic_investigator.contracts import to_iso, utc_now, write_json
from agentic_investigator.schemas import (
    COMPUTE_SUMMARY_FIELDS,
    COMPUTE_VERIFICATION_SCHEMA,
    SEMANTIC_SUMMARY_FIELDS,
    SEMANTIC_VERIFICATION_SCHEMA,
    schema_errors,
)
from agentic_investigator.verification.casefiles import (
    CITATION_PATTERN,
    SOURCE_ID_PATTERN,
    collect_citations,
    evidence_status,
    is_http_url,
    list_files,
    max_mtime,
    non_empty_file,
    parse_bold_status,
    read_json,
    safe_read_text,
    source_registry,
)
from agentic_investigator.verification.models import GATE_NAMES, GateReport, GateResult

logger = logging.getLogger(__name__)

GATE_RESULTS_PATH = Path("control") / "gate_results.json"
PLANNING_FILES = ("refined_prompt.md", "strategic_context.md", "investigation_plan.md")
QUESTION_DONE_STATUSES = frozenset({"investigated", "not-applicable"})
REVIEW_VERDICTS = ("READY", "READY WITH CHANGES", "NOT READY")
AUDIT_VERDICTS = ("PASS", "FAIL")
GATE_COMPUTE_ERROR = "GATE_COMPUTE_ERROR"

_STATUS_LINE = re.compile(r"\*\*Status:\*\*\s*([^\n\r]+)", re.IGNORECASE)
# Counters that must be zero; totals and "skipped" are informational.
_SEMANTIC_FAILURE_COUNTERS = tuple(
    name for name in SEMANTIC_SUMMARY_FIELDS if name not in {"total", "verified", "skipped"}
)
_COMPUTE_FAILURE_COUNTERS = tuple(
    name for name in COMPUTE_SUMMARY_FIELDS if name not in {"total", "verified"}
)
_REMEDIATION_PREFIX = "TGATE"


def _passed(name: str, **details: Any) -> GateResult:
    return GateResult(name=name, passed=True, details=details)


def _failed(name: str, reason: str, **details: Any) -> GateResult:
    return GateResult(name=name, passed=False, reason=reason, details=details)


class GateEngine:
    """Computes the eleven termination gates; thresholds are fixed at 100%."""

    def __init__(
        self,
        settings: GateSettings | None = None,
        *,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        self.settings = settings or GateSettings()
        self._clock = clock
        self._checks: dict[str, Callable[[Path], GateResult]] = {
            "planning": self.planning,
            "questions": self.questions,
            "curiosity": self.curiosity,
            "reconciliation": self.reconciliation,
            "article": self.article,
            "sources": self.sources,
            "integrity": lambda case_dir: self._review(
                case_dir,
                "integrity",
                "integrity-review.md",
            ),
            "legal": lambda case_dir: self._review(case_dir, "legal", "legal-review.md"),
            "balance": lambda case_dir: self._audit(case_dir, "balance", "balance-audit.md"),
            "completeness": lambda case_dir: self._audit(
                case_dir,
                "completeness",
                "completeness-audit.md",
            ),
            "significance": lambda case_dir: self._audit(
                case_dir,
                "significance",
                "significance-audit.md",
            ),
        }

    def evaluate(self, case_dir: Path) -> GateReport:
        """Recompute every gate; no files are written."""

        started = time.perf_counter()
        results = [self._evaluate_one(name, case_dir) for name in GATE_NAMES]
        return GateReport(
            case_dir=str(case_dir),
            timestamp=to_iso(self._clock()),
            duration_ms=int((time.perf_counter() - started) * 1000),
            gates=results,
        )

    def run(self, case_dir: Path) -> GateReport:
        """Evaluate and record the verdict in ``control/gate_results.json``."""

        report = self.evaluate(case_dir)
        write_json(case_dir / GATE_RESULTS_PATH, report.to_dict())
        if report.overall:
            logger.info("All %d gates passing for %s", len(report.gates), case_dir)
        else:
            logger.info("Failing gates for %s: %s", case_dir, ", ".join(report.blocking_gates))
        return report

    def _evaluate_one(self, name: str, case_dir: Path) -> GateResult:
        try:
            return self._checks[name](case_dir)
        except Exception as error:  # noqa: BLE001
            logger.warning("Gate %s could not be computed: %s", name, error, exc_info=True)
            return _failed(
                name,
                f"Error computing gate: {error}",
                error_code=GATE_COMPUTE_ERROR,
            )

    def planning(self, case_dir: Path) -> GateResult:
        missing = [name for name in PLANNING_FILES if not (case_dir / name).exists()]
        if missing:
            return _failed(
                "planning",
                "Missing planning files: " + ", ".join(missing),
                missing=missing,
            )
        return _passed("planning", missing=[])

    def questions(self, case_dir: Path) -> GateResult:
        questions_dir = case_dir / "questions"
        if not questions_dir.is_dir():
            return _failed(
                "questions",
                "questions/ directory not found",
                error="QUESTIONS_DIR_MISSING",
                total=0,
                failures=[],
            )
        files = list_files(questions_dir, (".md",))
        failures: list[dict[str, Any]] = []
        for path in files:
            match = _STATUS_LINE.search(safe_read_text(path) or "")
            status = match.group(1).strip().lower() if match else ""
            if not status:
                failures.append(
                    {"file": path.name, "status": None, "reason": 'Missing "**Status:**" line'},
                )
            elif status not in QUESTION_DONE_STATUSES:
                failures.append(
                    {
                        "file": path.name,
                        "status": status,
                        "reason": "Status is not investigated/not-applicable",
                    },
                )
        if failures:
            names = ", ".join(failure["file"] for failure in failures)
            return _failed(
                "questions",
                f"{len(failures)} of {len(files)} question file(s) not resolved: {names}",
                total=len(files),
                failures=failures,
            )
        return _passed("questions", total=len(files), failures=[])

    def curiosity(self, case_dir: Path) -> GateResult:
        parsed = read_json(case_dir / "leads.json")
        if not parsed.ok:
            return _failed(
                "curiosity",
                f"leads.json unreadable ({parsed.error})",
                error=parsed.error,
                message=parsed.message,
            )
        leads = parsed.value.get("leads") if isinstance(parsed.value, dict) else None
        pending = [
            lead
            for lead in (leads if isinstance(leads, list) else [])
            if isinstance(lead, dict) and lead.get("status") == "pending"
        ]
        pending_ids = [
            str(lead["id"])
            for lead in pending[: self.settings.pending_details_limit]
            if lead.get("id")
        ]
        if pending:
            return _failed(
                "curiosity",
                f"{len(pending)} pending lead(s): " + ", ".join(pending_ids),
                pending=len(pending),
                pending_ids=pending_ids,
            )
        return _passed("curiosity", pending=0, pending_ids=[])

    def reconciliation(self, case_dir: Path) -> GateResult:
        log_path = case_dir / "reconciliation-log.md"
        if not log_path.exists():
            return _failed(
                "reconciliation",
                "reconciliation-log.md not found",
                error="RECONCILIATION_LOG_MISSING",
            )
        inputs = [case_dir / "leads.json", case_dir / "sources.json"]
        inputs.extend(list_files(case_dir / "findings", (".md", ".json")))
        log_mtime = log_path.stat().st_mtime
        newer = [
            path.relative_to(case_dir).as_posix()
            for path in inputs
            if max_mtime([path]) > log_mtime
        ]
        hygiene = lead_hygiene(case_dir)

        reasons: list[str] = []
        if newer:
            reasons.append("reconciliation-log.md is older than " + ", ".join(newer))
        if not hygiene["ok"]:
            reasons.append(f"Lead hygiene failed: {hygiene['summary']}")
        details = {"stale": bool(newer), "newer_inputs": newer, "lead_hygiene": hygiene}
        if reasons:
            return _failed("reconciliation", "; ".join(reasons), **details)
        return _passed("reconciliation", **details)

    def article(self, case_dir: Path) -> GateResult:
        article_path = case_dir / "articles" / "full.md"
        pdf_path = case_dir / "articles" / "full.pdf"
        article_ok = non_empty_file(article_path)
        pdf_ok = non_empty_file(pdf_path)
        has_citations = bool(
            article_ok and CITATION_PATTERN.search(safe_read_text(article_path) or ""),
        )

        reasons: list[str] = []
        if not article_ok:
            reasons.append("articles/full.md missing or empty")
        if not pdf_ok:
            reasons.append("articles/full.pdf missing or empty")
        if article_ok and not has_citations:
            reasons.append("articles/full.md has no [S###] citations")
        details = {"article": article_ok, "pdf": pdf_ok, "has_citations": has_citations}
        if reasons:
            return _failed("article", "; ".join(reasons), **details)
        return _passed("article", **details)

    def sources(self, case_dir: Path) -> GateResult:
        cited = collect_citations(case_dir, self.settings.files_to_scan)
        uncaptured = {
            source_id: status
            for source_id in sorted(cited)
            if (status := evidence_status(case_dir, source_id)) != "captured"
        }
        semantic = _verification_summary(
            case_dir / "semantic-verification.json",
            SEMANTIC_VERIFICATION_SCHEMA,
            _SEMANTIC_FAILURE_COUNTERS,
            require_total=True,
        )
        compute = _verification_summary(
            case_dir / "compute-verification.json",
            COMPUTE_VERIFICATION_SCHEMA,
            _COMPUTE_FAILURE_COUNTERS,
            require_total=False,
        )

        reasons: list[str] = []
        if uncaptured:
            listing = ", ".join(f"{key} ({status})" for key, status in uncaptured.items())
            reasons.append(
                f"{len(uncaptured)} cited source(s) without captured evidence: {listing}",
            )
        if not semantic["ok"]:
            reasons.append(f"semantic-verification.json: {semantic['problem']}")
        if not compute["ok"]:
            reasons.append(f"compute-verification.json: {compute['problem']}")
        details = {
            "cited": len(cited),
            "uncaptured": uncaptured,
            "semantic": semantic,
            "compute": compute,
        }
        if reasons:
            return _failed("sources", "; ".join(reasons), **details)
        return _passed("sources", **details)

    def _review(self, case_dir: Path, name: str, filename: str) -> GateResult:
        path = case_dir / filename
        if not path.exists():
            return _failed(name, f"{filename} not found", error="MISSING", file=filename)
        verdict = parse_bold_status(safe_read_text(path), REVIEW_VERDICTS)
        if verdict == "READY":
            return _passed(name, status=verdict, file=filename)
        if verdict is None:
            return _failed(name, f"{filename} has no verdict line", status=None, file=filename)
        return _failed(name, f"{filename} verdict is {verdict}", status=verdict, file=filename)

    def _audit(self, case_dir: Path, name: str, filename: str) -> GateResult:
        path = case_dir / filename
        if not path.exists():
            return _failed(name, f"{filename} not found", error="MISSING", file=filename)
        status = parse_bold_status(safe_read_text(path), AUDIT_VERDICTS)
        if status == "PASS":
            return _passed(name, status=status, file=filename)
        if status is None:
            return _failed(name, f"{filename} has no PASS/FAIL status", status=None, file=filename)
        return _failed(name, f"{filename} status is {status}", status=status, file=filename)

    def write_remediation_tasks(self, case_dir: Path, report: GateReport) -> list[str]:
        """Create one HIGH priority ``TGATE##`` task per failed gate lacking one."""

        tasks_dir = case_dir / "tasks"
        existing = list_files(tasks_dir, (".json",))
        covered: set[str] = set()
        numbers = [0]
        for path in existing:
            if not path.stem.startswith(_REMEDIATION_PREFIX):
                continue
            suffix = path.stem.removeprefix(_REMEDIATION_PREFIX)
            if suffix.isdigit():
                numbers.append(int(suffix))
            parsed = read_json(path)
            if parsed.ok and isinstance(parsed.value, dict) and parsed.value.get("gate"):
                if parsed.value.get("status") != "completed":
                    covered.add(str(parsed.value["gate"]))

        created: list[str] = []
        next_number = max(numbers) + 1
        for gate in report.gates:
            if gate.passed or gate.name in covered:
                continue
            task_id = f"{_REMEDIATION_PREFIX}{next_number:02d}"
            next_number += 1
            write_json(
                tasks_dir / f"{task_id}.json",
                {
                    "id": task_id,
                    "description": f"Fix {gate.name} gate: {gate.reason}",
                    "priority": "HIGH",
                    "status": "pending",
                    "source": "gate_remediation",
                    "gate": gate.name,
                    "created_at": to_iso(self._clock()),
                },
            )
            created.append(task_id)
        if created:
            logger.info("Created remediation tasks: %s", ", ".join(created))
        return created


def lead_hygiene(case_dir: Path) -> dict[str, Any]:
    """Sourcing discipline for investigated leads.

    A result containing digits must cite sources; every cited id must be a
    well-formed ``S###`` present in ``sources.json`` with an http(s) URL and
    captured evidence on disk.
    """

    leads_read = read_json(case_dir / "leads.json")
    if not leads_read.ok or not isinstance(leads_read.value, dict):
        return {"ok": False, "summary": "leads.json unreadable", "errors": []}
    leads = leads_read.value.get("leads")
    investigated = [
        lead
        for lead in (leads if isinstance(leads, list) else [])
        if isinstance(lead, dict) and lead.get("status") == "investigated"
    ]

    registry: dict[str, dict[str, Any]] | None = None
    sources_read = read_json(case_dir / "sources.json")
    if sources_read.ok:
        registry = source_registry(sources_read.value)

    errors: list[dict[str, Any]] = []
    for lead in investigated:
        lead_errors: list[str] = []
        result_text = str(lead.get("result") or "")
        cited = lead.get("sources") if isinstance(lead.get("sources"), list) else []
        if re.search(r"\d", result_text) and not cited:
            lead_errors.append("result contains digits but sources[] is empty")
        for source_id in cited:
            if not isinstance(source_id, str) or not SOURCE_ID_PATTERN.match(source_id.strip()):
                lead_errors.append(f"invalid source id {source_id!r}")
                continue
            if registry is None:
                lead_errors.append(f"{source_id} cited but sources.json is unreadable")
                continue
            entry = registry.get(source_id)
            if entry is None:
                lead_errors.append(f"{source_id} not found in sources.json")
                continue
            if not is_http_url(entry.get("url")):
                lead_errors.append(f"{source_id} has a non-http(s) URL")
            if evidence_status(case_dir, source_id) != "captured":
                lead_errors.append(f"{source_id} has no captured evidence")
        if lead_errors:
            errors.append({"id": str(lead.get("id") or ""), "errors": lead_errors})

    if not errors:
        summary = f"{len(investigated)} investigated lead(s) clean"
        return {"ok": True, "summary": summary, "errors": []}
    first = errors[0]
    return {
        "ok": False,
        "summary": f"{len(errors)} lead(s) with problems, e.g. {first['id']}: {first['errors'][0]}",
        "errors": errors[:50],
    }


def _verification_summary(
    path: Path,
    schema: dict[str, Any],
    failure_counters: tuple[str, ...],
    *,
    require_total: bool,
) -> dict[str, Any]:
    parsed = read_json(path)
    if not parsed.ok or not isinstance(parsed.value, dict):
        return {"ok": False, "problem": "missing or invalid", "error": "MISSING_OR_INVALID"}
    errors = schema_errors(parsed.value, schema)
    if errors:
        return {
            "ok": False,
            "problem": "SCHEMA_MISMATCH (" + "; ".join(errors[:5]) + ")",
            "error": "SCHEMA_MISMATCH",
            "errors": errors,
        }
    summary = parsed.value["summary"]
    if require_total and summary["total"] <= 0:
        return {"ok": False, "problem": "EMPTY (total is 0)", "error": "EMPTY", "summary": summary}
    failing = {name: summary[name] for name in failure_counters if summary[name] != 0}
    if failing:
        listing = ", ".join(f"{name}={value}" for name, value in failing.items())
        return {"ok": False, "problem": f"failing counters {listing}", "summary": summary}
    return {"ok": True, "summary": summary}
