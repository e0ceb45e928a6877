"""Read-only helpers over a case directory shared by verifiers and gates."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

CITATION_PATTERN = re.compile(r"\[S(\d{3,4})\]")
SOURCE_ID_PATTERN = re.compile(r"^S\d{3,}$")
BOLD_LINE_PATTERN = re.compile(r"^\*\*(.+?)\*\*$", re.MULTILINE)
HTTP_URL_PATTERN = re.compile(r"^https?://.+", re.IGNORECASE)
_TRACKING_PREFIXES = ("utm_", "mc_", "fbclid", "gclid", "igshid")

EVIDENCE_WEB_DIR = Path("evidence") / "web"


@dataclass(slots=True)
class JsonRead:
    """Outcome of a tolerant JSON read."""

    ok: bool
    value: Any = None
    error: str | None = None
    message: str | None = None


def safe_read_text(path: Path) -> str | None:
    try:
        return path.read_text("utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def read_json(path: Path) -> JsonRead:
    """Read JSON without raising; ``error`` is ``READ_FAILED`` or ``INVALID_JSON``."""

    text = safe_read_text(path)
    if not text:
        return JsonRead(ok=False, error="READ_FAILED")
    try:
        return JsonRead(ok=True, value=json.loads(text))
    except ValueError as error:
        return JsonRead(ok=False, error="INVALID_JSON", message=str(error))


def list_files(directory: Path, suffixes: tuple[str, ...]) -> list[Path]:
    """Files directly inside ``directory`` with one of ``suffixes``, sorted by name."""

    if not directory.is_dir():
        return []
    return sorted(
        path for path in directory.iterdir() if path.is_file() and path.name.endswith(suffixes)
    )


def non_empty_file(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def max_mtime(paths: Iterable[Path]) -> float:
    newest = 0.0
    for path in paths:
        try:
            newest = max(newest, path.stat().st_mtime)
        except OSError:
            continue
    return newest


def parse_bold_status(text: str | None, allowed: Iterable[str]) -> str | None:
    """Last ``**VALUE**`` line whose value is one of ``allowed``."""

    if not text:
        return None
    allowed_values = set(allowed)
    for match in reversed(BOLD_LINE_PATTERN.findall(text)):
        candidate = match.strip()
        if candidate in allowed_values:
            return candidate
    return None


def extract_citations(text: str) -> list[str]:
    """``S###`` ids cited as ``[S###]`` in order of first appearance."""

    return list(dict.fromkeys(f"S{number}" for number in CITATION_PATTERN.findall(text)))


def scanned_files(case_dir: Path, files_to_scan: Iterable[str]) -> list[Path]:
    """Configured article files plus every ``findings/*.md``."""

    paths = [case_dir / name for name in files_to_scan]
    paths.extend(list_files(case_dir / "findings", (".md",)))
    return paths


def collect_citations(case_dir: Path, files_to_scan: Iterable[str]) -> dict[str, list[str]]:
    """Map each cited source id to the case-relative files citing it."""

    cited: dict[str, list[str]] = {}
    for path in scanned_files(case_dir, files_to_scan):
        text = safe_read_text(path)
        if text is None:
            continue
        relative = path.relative_to(case_dir).as_posix()
        for source_id in extract_citations(text):
            cited.setdefault(source_id, [])
            if relative not in cited[source_id]:
                cited[source_id].append(relative)
    return cited


def evidence_status(case_dir: Path, source_id: str) -> str:
    """``missing``, ``empty`` or ``captured`` for ``evidence/web/<source_id>/``."""

    folder = case_dir / EVIDENCE_WEB_DIR / source_id
    if not folder.is_dir():
        return "missing"
    if not any(folder.iterdir()):
        return "empty"
    return "captured"


def source_registry(payload: Any) -> dict[str, dict[str, Any]]:
    """Index ``sources.json`` by source id, accepting list and mapping layouts."""

    if not isinstance(payload, dict):
        return {}
    records = payload.get("sources")
    if isinstance(records, list):
        return {
            str(record["id"]): record
            for record in records
            if isinstance(record, dict) and record.get("id")
        }
    return {
        key: value
        for key, value in payload.items()
        if SOURCE_ID_PATTERN.match(key) and isinstance(value, dict)
    }


def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and bool(HTTP_URL_PATTERN.match(value.strip()))


def canonicalize_source_url(url: Any) -> str | None:
    """Normalize a source URL for duplicate detection; ``None`` when it is not a URL."""

    if not isinstance(url, str) or not url.strip():
        return None
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return None
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower().removeprefix("www.")
    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    if netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]
    path = parsed.path.rstrip("/") if len(parsed.path) > 1 else parsed.path
    query = urlencode(
        sorted(
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if not key.lower().startswith(_TRACKING_PREFIXES)
        ),
    )
    cleaned = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=path or "/",
        query=query,
        fragment="",
    )
    return str(urlunparse(cleaned))
