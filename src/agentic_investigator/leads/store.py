"""Persistence backends for the lead ledger document."""

from __future__ import annotations

import copy
import json
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol

from agentic_investigator.config import LeadLedgerSettings
from agentic_investigator.contracts import write_json_atomic
from agentic_investigator.leads.locking import FileLock, LockTimeoutError
from agentic_investigator.leads.models import (
    DEFAULT_MAX_DEPTH,
    Lead,
    LedgerDocument,
    LedgerSchemaError,
)
from agentic_investigator.schemas import LEDGER_SCHEMA, schema_errors

LEADS_FILENAME = "leads.json"
LOCK_SUFFIX = ".lock"


class LedgerStore(Protocol):
    """Load/save access to one ledger document behind a mutual-exclusion guard."""

    def locked(self) -> AbstractContextManager[Any]:
        """Hold exclusive access; raises ``LockTimeoutError`` when it cannot be obtained."""

    def load(self) -> LedgerDocument: ...

    def save(self, document: LedgerDocument) -> None: ...


def parse_ledger(
    raw: Any,
    *,
    default_max_depth: int = DEFAULT_MAX_DEPTH,
    source: str = LEADS_FILENAME,
) -> LedgerDocument:
    """Build a ledger document from decoded JSON, raising ``LedgerSchemaError`` on bad shape."""

    if not isinstance(raw, dict):
        raise LedgerSchemaError(f"{source}: expected a JSON object")
    errors = schema_errors(raw, LEDGER_SCHEMA)
    if errors:
        raise LedgerSchemaError(f"{source}: " + "; ".join(errors))

    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        version = 1
    max_depth = raw.get("max_depth", default_max_depth)
    return LedgerDocument(
        version=version,
        max_depth=max_depth,
        leads=[Lead.from_dict(item) for item in raw["leads"]],
        extra={
            key: value
            for key, value in raw.items()
            if key not in {"version", "max_depth", "leads"}
        },
    )


class JsonFileLedgerStore:
    """``leads.json`` inside a case directory guarded by ``leads.json.lock``."""

    def __init__(
        self,
        case_dir: Path,
        *,
        settings: LeadLedgerSettings | None = None,
        lock: FileLock | None = None,
    ) -> None:
        self.settings = settings or LeadLedgerSettings()
        self.path = case_dir / LEADS_FILENAME
        self.lock = lock or FileLock(
            self.path.with_name(LEADS_FILENAME + LOCK_SUFFIX),
            timeout_seconds=self.settings.lock_timeout_seconds,
            retry_seconds=self.settings.lock_retry_seconds,
            stale_after_seconds=self.settings.lock_stale_seconds,
        )

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self.lock.hold():
            yield

    def load(self) -> LedgerDocument:
        if not self.path.exists():
            return LedgerDocument(version=1, max_depth=self.settings.default_max_depth)
        try:
            raw = json.loads(self.path.read_text("utf-8"))
        except ValueError as error:
            raise LedgerSchemaError(f"{self.path}: invalid JSON ({error})") from error
        return parse_ledger(
            raw,
            default_max_depth=self.settings.default_max_depth,
            source=str(self.path),
        )

    def save(self, document: LedgerDocument) -> None:
        write_json_atomic(self.path, document.to_dict())


class InMemoryLedgerStore:
    """Process-local store for tests and embedded callers."""

    def __init__(
        self,
        document: LedgerDocument | None = None,
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._document = copy.deepcopy(document) if document is not None else LedgerDocument()
        self._mutex = threading.Lock()
        self.timeout_seconds = timeout_seconds
        self.saves = 0

    @contextmanager
    def locked(self) -> Iterator[None]:
        if not self._mutex.acquire(timeout=self.timeout_seconds):
            raise LockTimeoutError(
                f"Could not acquire in-memory ledger lock within {self.timeout_seconds:.2f}s",
            )
        try:
            yield
        finally:
            self._mutex.release()

    def load(self) -> LedgerDocument:
        return copy.deepcopy(self._document)

    def save(self, document: LedgerDocument) -> None:
        self._document = copy.deepcopy(document)
        self.saves += 1
