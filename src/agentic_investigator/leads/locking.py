"""Exclusive sentinel-file lock guarding ``leads.json`` read-modify-write cycles."""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agentic_investigator.contracts import to_iso, utc_now

logger = logging.getLogger(__name__)


class LockTimeoutError(RuntimeError):
    """Raised when the sentinel could not be created before the deadline."""


@dataclass(frozen=True, slots=True)
class LockPayload:
    """Diagnostic content written into the sentinel file."""

    pid: int
    host: str
    acquired_at: str

    def to_json(self) -> str:
        return json.dumps(
            {"pid": self.pid, "host": self.host, "acquired_at": self.acquired_at},
            sort_keys=True,
        )


class FileLock:
    """Advisory lock represented by a sentinel created with ``O_CREAT | O_EXCL``.

    A sentinel older than ``stale_after_seconds`` is considered abandoned by a
    crashed holder: it is removed and creation is retried immediately. Two
    waiters can both judge the same sentinel stale; the exclusive create still
    admits only one of them, while the loser may delete the winner's fresh
    sentinel on its next pass if the winner's mtime is already past the
    threshold. That window only exists when ``stale_after_seconds`` is shorter
    than a critical section, so keep it well above the acquire timeout.
    """

    def __init__(  # noqa: PLR0913
        self,
        path: Path,
        *,
        timeout_seconds: float = 5.0,
        retry_seconds: float = 0.05,
        stale_after_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.path = path
        self.timeout_seconds = timeout_seconds
        self.retry_seconds = retry_seconds
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock
        self._sleep = sleep

    def acquire(self) -> LockPayload:
        deadline = self._clock() + self.timeout_seconds
        self.path.parent.mkdir(parents=True, exist_ok=True)
        while self._clock() < deadline:
            payload = self._try_create()
            if payload is not None:
                return payload
            if self._remove_if_stale():
                continue
            self._sleep(self.retry_seconds)
        raise LockTimeoutError(
            f"Could not acquire {self.path} within {self.timeout_seconds:.2f}s",
        )

    def release(self) -> None:
        self.path.unlink(missing_ok=True)

    @contextmanager
    def hold(self) -> Iterator[LockPayload]:
        payload = self.acquire()
        try:
            yield payload
        finally:
            self.release()

    def _try_create(self) -> LockPayload | None:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None
        payload = LockPayload(
            pid=os.getpid(),
            host=socket.gethostname(),
            acquired_at=to_iso(utc_now()),
        )
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload.to_json() + "\n")
        return payload

    def _remove_if_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            # Holder released between our create attempt and stat; retry right away.
            return True
        if age <= self.stale_after_seconds:
            return False
        logger.warning(
            "Removing abandoned lock %s (age %.1fs, holder %s)",
            self.path,
            age,
            _read_holder(self.path),
        )
        self.path.unlink(missing_ok=True)
        return True


def _read_holder(path: Path) -> str:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except OSError:
        return "<unreadable>"
    return raw or "<empty>"
