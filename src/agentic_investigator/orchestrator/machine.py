"""Phase state machine: maps case state, gates and leads to the next action."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from pathlib import Path

from agentic_investigator.config import Settings
from agentic_investigator.contracts import utc_now
from agentic_investigator.leads.ledger import rank_available_leads
from agentic_investigator.leads.models import Lead, LeadStatus
from agentic_investigator.leads.store import JsonFileLedgerStore, LedgerStore
from agentic_investigator.orchestrator.models import (
    PROCESS_GATES,
    QUALITY_GATE_ACTIONS,
    WRITE_PREREQUISITES,
    BatchRecommendation,
    CaseState,
    ContinueStatus,
    LeadInfo,
    NextAction,
    Phase,
)
from agentic_investigator.orchestrator.state import load_state, save_state
from agentic_investigator.verification.gates import GateEngine
from agentic_investigator.verification.models import GATE_NAMES

logger = logging.getLogger(__name__)

WRITE_ERROR = "ERROR: Cannot write articles - prerequisites not met"


def all_gates_pass(gates: Mapping[str, bool]) -> bool:
    """True only when every known gate is present and passing."""

    return all(gates.get(name) is True for name in GATE_NAMES)


def failing_gates(gates: Mapping[str, bool]) -> list[str]:
    return [name for name in GATE_NAMES if gates.get(name) is not True]


def count_leads(leads: list[Lead]) -> dict[str, int]:
    by_status = Counter(lead.status for lead in leads)
    return {
        "pending": by_status[LeadStatus.PENDING.value],
        "investigated": by_status[LeadStatus.INVESTIGATED.value],
        "dead_end": by_status[LeadStatus.DEAD_END.value],
        "total": len(leads),
    }


class PhaseOrchestrator:
    """Decides the single next action for a case and persists phase advances.

    Phases whose exit gate already passes are advanced in place (and written to
    ``state.json``) until a phase with outstanding work is reached, so one call
    can walk e.g. QUESTION -> FOLLOW -> WRITE.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        gate_engine: GateEngine | None = None,
        store_factory: Callable[[Path], LedgerStore] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.gate_engine = gate_engine or GateEngine(settings.gates, clock=clock)
        self._store_factory = store_factory or (
            lambda case_dir: JsonFileLedgerStore(case_dir, settings=settings.leads)
        )
        self._clock = clock

    def check_continue(
        self,
        case_dir: Path,
        *,
        batch: bool = False,
        batch_size: int | None = None,
        refresh_gates: bool | None = None,
    ) -> tuple[CaseState, NextAction]:
        """Load state, optionally refresh the gate matrix, then decide."""

        state = load_state(case_dir)
        if refresh_gates is None:
            refresh_gates = self.settings.orchestrator.refresh_gates
        if refresh_gates:
            report = self.gate_engine.run(case_dir)
            state.gates = report.gate_map()
            save_state(case_dir, state)
        action = self.determine_next_action(
            state,
            case_dir,
            batch=batch,
            batch_size=batch_size or self.settings.orchestrator.batch_size,
        )
        return state, action

    def determine_next_action(
        self,
        state: CaseState,
        case_dir: Path,
        *,
        batch: bool = False,
        batch_size: int = 4,
    ) -> NextAction:
        transitions: list[tuple[str, str]] = []
        while True:
            if all_gates_pass(state.gates):
                action = NextAction(
                    status=ContinueStatus.COMPLETE,
                    phase=state.phase,
                    next=None,
                    reason=f"All {len(GATE_NAMES)} gates passing",
                )
                break
            step = self._step(state, case_dir, batch=batch, batch_size=batch_size)
            if isinstance(step, NextAction):
                action = step
                break
            transitions.append((state.phase, step.value))
            logger.info("Phase transition for %s: %s -> %s", state.case, state.phase, step.value)
            state.phase = step.value
            save_state(case_dir, state)
        action.transitions = transitions
        return action

    def _step(
        self,
        state: CaseState,
        case_dir: Path,
        *,
        batch: bool,
        batch_size: int,
    ) -> NextAction | Phase:
        gates = state.gates
        phase = Phase.parse(state.phase)
        if phase is Phase.PLAN:
            if gates.get("planning") is not True:
                return self._continue(
                    state,
                    "/action plan-investigation",
                    "Plan phase - design investigation strategy",
                )
            return Phase.BOOTSTRAP
        if phase is Phase.BOOTSTRAP:
            return self._continue(
                state,
                "/action research",
                "Bootstrap phase - need initial research",
            )
        if phase is Phase.QUESTION:
            if gates.get("questions") is not True:
                return self._continue(
                    state,
                    "/action question",
                    "Questions phase - answer framework questions",
                )
            return Phase.FOLLOW
        if phase is Phase.FOLLOW:
            return self._follow(state, case_dir, batch=batch, batch_size=batch_size)
        if phase is Phase.WRITE:
            return self._write(state)
        if phase is Phase.VERIFY:
            return self._verify(state)
        if phase is Phase.COMPLETE:
            return NextAction(
                status=ContinueStatus.COMPLETE,
                phase=state.phase,
                next=None,
                reason="Investigation complete",
            )
        return self._continue(state, "/action verify", f"Unknown phase: {state.phase}")

    def _follow(
        self,
        state: CaseState,
        case_dir: Path,
        *,
        batch: bool,
        batch_size: int,
    ) -> NextAction | Phase:
        leads = self._store_factory(case_dir).load().leads
        counts = count_leads(leads)
        available = rank_available_leads(
            leads,
            now=self._clock(),
            stale_after=timedelta(seconds=self.settings.leads.stale_claim_seconds),
        )
        selected = available[:batch_size] if batch else available[:1]

        if len(selected) > 1:
            ids = [lead.id for lead in selected]
            action = self._continue(
                state,
                "/action follow-batch " + " ".join(ids),
                f"Batch processing {len(selected)} leads in parallel",
            )
            action.batch = BatchRecommendation(
                lead_ids=ids,
                count=len(selected),
                available=len(available),
                message=f"{len(selected)} leads selected for parallel processing",
            )
            action.lead = _lead_info(selected[0])
            action.lead_counts = counts
            return action
        if selected:
            lead = selected[0]
            action = self._continue(
                state,
                f"/action follow {lead.id}",
                f'Pending lead: "{lead.lead}"',
            )
            action.lead = _lead_info(lead)
            action.lead_counts = counts
            return action

        # Nothing is claimable, so every pending lead is held by a fresh claim.
        in_flight = counts["pending"]
        if state.gates.get("reconciliation") is not True:
            action = self._continue(
                state,
                "/action reconcile",
                f"{in_flight} pending lead(s) claimed by other workers - "
                "reconcile finished results with summary"
                if in_flight
                else "All leads terminal - reconcile results with summary",
            )
            action.lead_counts = counts
            return action
        if state.gates.get("curiosity") is not True:
            action = self._continue(
                state,
                "/action curiosity",
                f"Reconciled - {in_flight} pending lead(s) still claimed by other workers"
                if in_flight
                else "Reconciled - evaluate completeness",
            )
            action.lead_counts = counts
            return action
        if in_flight:
            action = self._continue(
                state,
                "/action reconcile",
                f"{in_flight} pending lead(s) still claimed by other workers - "
                "reconcile once they finish",
            )
            action.lead_counts = counts
            return action
        return Phase.WRITE

    def _write(self, state: CaseState) -> NextAction | Phase:
        missing = [name for name in WRITE_PREREQUISITES if state.gates.get(name) is not True]
        if missing:
            return NextAction(
                status=ContinueStatus.ERROR,
                phase=state.phase,
                next=WRITE_ERROR,
                reason=f"Missing gates: {', '.join(missing)}. Return to FOLLOW phase.",
                missing_prerequisites=missing,
            )
        if state.gates.get("article") is not True:
            return self._continue(state, "/action article", "Write phase - generate articles")
        return Phase.VERIFY

    def _verify(self, state: CaseState) -> NextAction:
        gates = state.gates
        failing = failing_gates(gates)
        if (
            gates.get("sources") is True
            and gates.get("integrity") is not True
            and gates.get("legal") is not True
        ):
            action = self._continue(
                state,
                "/action parallel-review",
                "Parallel integrity + legal review (sources gate passed)",
            )
            action.parallel_review = True
            action.failing_gates = failing
            return action
        if all(gates.get(name) is True for name in PROCESS_GATES):
            for gate, command in QUALITY_GATE_ACTIONS:
                if gates.get(gate) is not True:
                    return self._continue(state, command, f"Quality gate {gate} - audit needed")
        action = self._continue(
            state,
            f"/action verify (failing: {', '.join(failing)})",
            "Verify phase - fix failing gates",
        )
        action.failing_gates = failing
        return action

    @staticmethod
    def _continue(state: CaseState, next_action: str, reason: str) -> NextAction:
        return NextAction(
            status=ContinueStatus.CONTINUE,
            phase=state.phase,
            next=next_action,
            reason=reason,
        )


def _lead_info(lead: Lead) -> LeadInfo:
    return LeadInfo(id=lead.id, lead=lead.lead, priority=lead.priority, depth=lead.depth)
