"""Verifier protocol and registry entries."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from agentic_investigator.verification.models import GapType, VerifierOutcome


class Verifier(Protocol):
    """Independent check over a case directory.

    Implementations return a ``VerifierOutcome`` or a mapping carrying
    ``passed`` (or ``overall``) and ``gaps``.
    """

    def verify(
        self,
        case_dir: Path,
        options: Mapping[str, Any],
    ) -> VerifierOutcome | Mapping[str, Any]: ...


@dataclass(slots=True)
class VerifierSpec:
    """Registered verifier with the options it is invoked with."""

    name: str
    verifier: object
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def script(self) -> str:
        kind = type(self.verifier)
        return f"{kind.__module__}.{kind.__qualname__}"


def make_gap(
    gap_type: GapType,
    message: str,
    *,
    object_: Mapping[str, Any] | None = None,
    actions: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Raw gap mapping as verifiers emit it."""

    return {
        "type": gap_type.value,
        "object": dict(object_ or {}),
        "message": message,
        "suggested_actions": list(actions),
    }


def outcome(gaps: list[dict[str, Any]]) -> VerifierOutcome:
    return VerifierOutcome(passed=not gaps, gaps=gaps)
