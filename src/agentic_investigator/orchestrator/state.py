"""Case ``state.json`` persistence and active-case resolution."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agentic_investigator.contracts import write_json_atomic
from agentic_investigator.orchestrator.models import CaseState
from agentic_investigator.schemas import STATE_SCHEMA, schema_errors

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
ACTIVE_CASE_FILENAME = ".active"

_OWNED_KEYS = ("case", "phase", "iteration", "gates")


class StateSchemaError(ValueError):
    """``state.json`` is unreadable or does not match the expected shape."""

    error_code = "SCHEMA_MISMATCH"


def parse_state(raw: Any, *, case_dir: Path, source: str = STATE_FILENAME) -> CaseState:
    if not isinstance(raw, dict):
        raise StateSchemaError(f"{source}: expected a JSON object")
    errors = schema_errors(raw, STATE_SCHEMA)
    if errors:
        raise StateSchemaError(f"{source}: " + "; ".join(errors))
    return CaseState(
        case=str(raw.get("case") or case_dir.name),
        phase=str(raw.get("phase") or "PLAN"),
        iteration=int(raw.get("iteration", 1)),
        gates=dict(raw.get("gates") or {}),
        extra={key: value for key, value in raw.items() if key not in _OWNED_KEYS},
    )


def load_state(case_dir: Path) -> CaseState:
    path = case_dir / STATE_FILENAME
    try:
        raw = json.loads(path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise StateSchemaError(f"{path} not found") from error
    except ValueError as error:
        raise StateSchemaError(f"{path}: invalid JSON ({error})") from error
    return parse_state(raw, case_dir=case_dir, source=str(path))


def save_state(case_dir: Path, state: CaseState) -> None:
    write_json_atomic(case_dir / STATE_FILENAME, state.to_dict())


def read_active_case(cases_root: Path) -> str | None:
    path = cases_root / ACTIVE_CASE_FILENAME
    try:
        value = path.read_text("utf-8").strip()
    except OSError:
        return None
    return value or None


def resolve_case_dir(
    provided: Path | None,
    cases_root: Path,
    *,
    require_state: bool = True,
) -> Path | None:
    """Find the case to operate on.

    Order: the given directory (or a case id under ``cases_root``), then the
    case named in ``cases_root/.active``, then the most recently modified case
    holding ``state.json``. ``None`` when nothing qualifies.
    """

    def usable(candidate: Path) -> bool:
        if not candidate.is_dir():
            return False
        return not require_state or (candidate / STATE_FILENAME).is_file()

    if provided is not None:
        for candidate in (provided, cases_root / provided):
            if usable(candidate):
                return candidate
        logger.info("Case %s not usable, falling back to active case", provided)

    active = read_active_case(cases_root)
    if active:
        candidate = cases_root / active
        if usable(candidate):
            return candidate
        logger.warning("%s points to missing case %s", cases_root / ACTIVE_CASE_FILENAME, active)

    if not cases_root.is_dir():
        return None
    candidates = [
        path
        for path in cases_root.iterdir()
        if path.is_dir() and (path / STATE_FILENAME).is_file()
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda path: path.stat().st_mtime)
