"""Built-in verifiers and the default registry order."""

from __future__ import annotations

from agentic_investigator.config import Settings
from agentic_investigator.verification.verifiers.base import Verifier, VerifierSpec
from agentic_investigator.verification.verifiers.evidence import (
    CircularReportingVerifier,
    CitationDensityVerifier,
    CorroborationVerifier,
    SourcesDedupVerifier,
    SourcesVerifier,
)
from agentic_investigator.verification.verifiers.reviews import IntegrityVerifier, LegalVerifier
from agentic_investigator.verification.verifiers.state import (
    SchemaVerifier,
    StateConsistencyVerifier,
)
from agentic_investigator.verification.verifiers.tasks import TasksVerifier

__all__ = [
    "CircularReportingVerifier",
    "CitationDensityVerifier",
    "CorroborationVerifier",
    "IntegrityVerifier",
    "LegalVerifier",
    "SchemaVerifier",
    "SourcesDedupVerifier",
    "SourcesVerifier",
    "StateConsistencyVerifier",
    "TasksVerifier",
    "Verifier",
    "VerifierSpec",
    "default_verifier_specs",
]


def default_verifier_specs(settings: Settings) -> list[VerifierSpec]:
    """Registered verifiers in the order a gap-generation pass runs them."""

    return [
        VerifierSpec(name="schema", verifier=SchemaVerifier()),
        VerifierSpec(
            name="sources",
            verifier=SourcesVerifier(files_to_scan=settings.gates.files_to_scan),
        ),
        VerifierSpec(name="sources_dedup", verifier=SourcesDedupVerifier()),
        VerifierSpec(name="citation_density", verifier=CitationDensityVerifier()),
        VerifierSpec(name="corroboration", verifier=CorroborationVerifier()),
        VerifierSpec(name="circular_reporting", verifier=CircularReportingVerifier()),
        VerifierSpec(
            name="tasks",
            verifier=TasksVerifier(
                required_perspectives=settings.gaps.required_perspectives,
                min_curiosity_tasks=settings.gaps.min_curiosity_tasks,
            ),
        ),
        VerifierSpec(name="state_consistency", verifier=StateConsistencyVerifier()),
        VerifierSpec(name="legal", verifier=LegalVerifier()),
        VerifierSpec(name="integrity", verifier=IntegrityVerifier()),
    ]
