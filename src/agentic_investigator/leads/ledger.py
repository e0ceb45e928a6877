"""Lead ledger operations with claim semantics over a locked store."""

from __future__ import annotations

import logging
import os
import uuid
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from agentic_investigator.config import LeadLedgerSettings
from agentic_investigator.contracts import from_iso, to_iso, utc_now
from agentic_investigator.leads.locking import LockTimeoutError
from agentic_investigator.leads.models import (
    TERMINAL_STATUSES,
    Lead,
    LeadPriority,
    LeadStatus,
    LedgerDocument,
    LedgerErrorCode,
    LedgerResult,
)
from agentic_investigator.leads.store import JsonFileLedgerStore, LedgerStore

logger = logging.getLogger(__name__)

LOCK_ERROR = "Could not acquire lock"


def new_claim_id() -> str:
    """Opaque claim token unique per process and call."""

    return f"pid_{os.getpid()}_{uuid.uuid4().hex[:12]}"


def is_claim_stale(lead: Lead, *, now: datetime, stale_after: timedelta) -> bool:
    """True when the lead's claim is older than ``stale_after``.

    A claim without a parseable ``claimed_at`` has no age and stays held until
    it is released.
    """

    if not lead.claimed_at:
        return False
    try:
        claimed_at = from_iso(lead.claimed_at)
    except ValueError:
        return False
    return now - claimed_at > stale_after


def rank_available_leads(
    leads: Iterable[Lead],
    *,
    now: datetime,
    stale_after: timedelta,
) -> list[Lead]:
    """Pending leads that are unclaimed or stale, HIGH first, then shallow first."""

    available = [
        lead
        for lead in leads
        if lead.is_pending
        and (not lead.is_claimed or is_claim_stale(lead, now=now, stale_after=stale_after))
    ]
    # sorted() is stable so ties keep ledger order.
    return sorted(available, key=lambda lead: (lead.priority_rank, lead.depth))


class LeadLedger:
    """Claim/release/update coordination for the leads work queue.

    Every mutating operation runs one read-modify-write cycle while holding the
    store lock and bumps ``version`` by exactly one. Expected failures are
    returned as ``LedgerResult`` values; a malformed ledger raises
    ``LedgerSchemaError``.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        settings: LeadLedgerSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
        claim_id_factory: Callable[[], str] = new_claim_id,
    ) -> None:
        self.store = store
        self.settings = settings or LeadLedgerSettings()
        self._clock = clock
        self._claim_id_factory = claim_id_factory

    @classmethod
    def for_case(cls, case_dir: Path, *, settings: LeadLedgerSettings | None = None) -> LeadLedger:
        settings = settings or LeadLedgerSettings()
        return cls(JsonFileLedgerStore(case_dir, settings=settings), settings=settings)

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.settings.stale_claim_seconds)

    def claim(self, lead_id: str, *, expected_version: int | None = None) -> LedgerResult:
        """Claim one pending lead unless another worker holds a fresh claim."""

        def mutate(document: LedgerDocument, now: datetime) -> LedgerResult:
            lead = document.find(lead_id)
            if lead is None:
                return LedgerResult.failure(LedgerErrorCode.NOT_FOUND, f"Lead {lead_id} not found")
            if not lead.is_pending:
                return LedgerResult.failure(
                    LedgerErrorCode.NOT_PENDING,
                    f"Lead {lead_id} is not pending (status: {lead.status})",
                )
            if lead.is_claimed and not is_claim_stale(lead, now=now, stale_after=self.stale_after):
                return LedgerResult.failure(
                    LedgerErrorCode.ALREADY_CLAIMED,
                    f"Lead {lead_id} already claimed by {lead.claimed_by}",
                )
            if lead.is_claimed:
                logger.info("Reclaiming stale claim %s on %s", lead.claimed_by, lead_id)
            claim_id = self._claim_id_factory()
            lead.claimed_by = claim_id
            lead.claimed_at = to_iso(now)
            return LedgerResult(success=True, lead=lead.to_dict(), claim_id=claim_id)

        return self._mutate(mutate, expected_version=expected_version)

    def batch_claim(
        self,
        lead_ids: Iterable[str],
        *,
        expected_version: int | None = None,
    ) -> LedgerResult:
        """Claim every requested lead or none of them."""

        requested = list(dict.fromkeys(lead_ids))
        if not requested:
            return LedgerResult.failure(LedgerErrorCode.INVALID_LEAD, "No lead ids provided")

        def mutate(document: LedgerDocument, now: datetime) -> LedgerResult:
            errors: list[str] = []
            codes: list[LedgerErrorCode] = []
            targets: list[Lead] = []
            for lead_id in requested:
                lead = document.find(lead_id)
                if lead is None:
                    errors.append(f"{lead_id}: not found")
                    codes.append(LedgerErrorCode.NOT_FOUND)
                elif not lead.is_pending:
                    errors.append(f"{lead_id}: not pending ({lead.status})")
                    codes.append(LedgerErrorCode.NOT_PENDING)
                elif lead.is_claimed and not is_claim_stale(
                    lead,
                    now=now,
                    stale_after=self.stale_after,
                ):
                    errors.append(f"{lead_id}: already claimed")
                    codes.append(LedgerErrorCode.ALREADY_CLAIMED)
                else:
                    targets.append(lead)

            if errors:
                return LedgerResult.failure(
                    codes[0],
                    f"Batch claim rejected: {len(errors)} of {len(requested)} leads unavailable",
                    errors=errors,
                )

            claim_id = self._claim_id_factory()
            claimed_at = to_iso(now)
            for lead in targets:
                lead.claimed_by = claim_id
                lead.claimed_at = claimed_at
            return LedgerResult(
                success=True,
                claim_id=claim_id,
                leads=[lead.to_dict() for lead in targets],
            )

        return self._mutate(mutate, expected_version=expected_version)

    def release(self, lead_id: str, *, expected_version: int | None = None) -> LedgerResult:
        """Drop any claim on the lead; releasing an unclaimed lead is a no-op success."""

        def mutate(document: LedgerDocument, _now: datetime) -> LedgerResult:
            lead = document.find(lead_id)
            if lead is None:
                return LedgerResult.failure(LedgerErrorCode.NOT_FOUND, f"Lead {lead_id} not found")
            lead.clear_claim()
            return LedgerResult(success=True, lead=lead.to_dict())

        return self._mutate(mutate, expected_version=expected_version)

    def update(  # noqa: PLR0913
        self,
        lead_id: str,
        *,
        status: str,
        result: str | None,
        sources: Iterable[str] = (),
        expected_version: int | None = None,
    ) -> LedgerResult:
        """Resolve a lead with a terminal status; this also clears its claim."""

        if status not in TERMINAL_STATUSES:
            return LedgerResult.failure(
                LedgerErrorCode.INVALID_STATUS,
                f"Invalid status {status!r}; expected one of "
                + ", ".join(sorted(TERMINAL_STATUSES)),
            )
        source_ids = [str(source) for source in sources]

        def mutate(document: LedgerDocument, _now: datetime) -> LedgerResult:
            lead = document.find(lead_id)
            if lead is None:
                return LedgerResult.failure(LedgerErrorCode.NOT_FOUND, f"Lead {lead_id} not found")
            lead.status = status
            lead.result = result
            lead.sources = source_ids
            lead.clear_claim()
            return LedgerResult(success=True, lead=lead.to_dict())

        return self._mutate(mutate, expected_version=expected_version)

    def add_child(
        self,
        parent_id: str,
        child: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> LedgerResult:
        """Append a pending follow-up lead one level below ``parent_id``."""

        text = child.get("lead")
        if not isinstance(text, str) or not text.strip():
            return LedgerResult.failure(
                LedgerErrorCode.INVALID_LEAD,
                "Child lead requires a non-empty 'lead' description",
            )
        priority = str(child.get("priority") or LeadPriority.MEDIUM.value).upper()

        def mutate(document: LedgerDocument, _now: datetime) -> LedgerResult:
            parent = document.find(parent_id)
            if parent is None:
                return LedgerResult.failure(
                    LedgerErrorCode.NOT_FOUND,
                    f"Parent lead {parent_id} not found",
                )
            new_depth = parent.depth + 1
            if new_depth > document.max_depth:
                return LedgerResult.failure(
                    LedgerErrorCode.EXCEEDS_MAX_DEPTH,
                    "exceeds_max_depth",
                    depth=new_depth,
                    max_depth=document.max_depth,
                    lead=dict(child),
                )
            lead = Lead(
                id=document.next_lead_id(),
                lead=text,
                origin=parent_id,
                priority=priority,
                depth=new_depth,
                parent=parent_id,
                status=LeadStatus.PENDING.value,
            )
            document.leads.append(lead)
            return LedgerResult(success=True, lead=lead.to_dict())

        return self._mutate(mutate, expected_version=expected_version)

    def batch_select(self, count: int) -> LedgerResult:
        """Advisory read of the next ``count`` leads worth claiming; takes no lock."""

        document = self.store.load()
        now = self._clock()
        available = rank_available_leads(document.leads, now=now, stale_after=self.stale_after)
        selected = available[: max(count, 0)]
        return LedgerResult(
            success=True,
            leads=[lead.to_dict() for lead in selected],
            available_count=len(available),
            total_pending=sum(1 for lead in document.leads if lead.is_pending),
            version=document.version,
        )

    def cleanup_stale(self) -> LedgerResult:
        """Clear every stale claim; the ledger is only rewritten when something changed."""

        try:
            with self.store.locked():
                document = self.store.load()
                now = self._clock()
                cleaned = 0
                for lead in document.leads:
                    if lead.is_claimed and is_claim_stale(
                        lead,
                        now=now,
                        stale_after=self.stale_after,
                    ):
                        lead.clear_claim()
                        cleaned += 1
                if cleaned == 0:
                    return LedgerResult(success=True, cleaned=0, version=document.version)
                document.version += 1
                self.store.save(document)
        except LockTimeoutError:
            return LedgerResult.failure(LedgerErrorCode.LOCK_TIMEOUT, LOCK_ERROR)
        logger.info("Released %d stale claims", cleaned)
        return LedgerResult(success=True, cleaned=cleaned, version=document.version)

    def stats(self) -> LedgerResult:
        document = self.store.load()
        now = self._clock()
        status_counts = Counter(lead.status for lead in document.leads)
        claimed = [lead for lead in document.leads if lead.is_claimed]
        by_depth = Counter(str(lead.depth) for lead in document.leads)
        stats = {
            "total": len(document.leads),
            "pending": status_counts[LeadStatus.PENDING.value],
            "investigated": status_counts[LeadStatus.INVESTIGATED.value],
            "dead_end": status_counts[LeadStatus.DEAD_END.value],
            "claimed": len(claimed),
            "stale_claims": sum(
                1
                for lead in claimed
                if is_claim_stale(lead, now=now, stale_after=self.stale_after)
            ),
            "by_priority": dict(Counter(lead.priority for lead in document.leads)),
            "by_depth": dict(sorted(by_depth.items(), key=lambda item: int(item[0]))),
            "max_depth": document.max_depth,
        }
        return LedgerResult(success=True, stats=stats, version=document.version)

    def _mutate(
        self,
        mutate: Callable[[LedgerDocument, datetime], LedgerResult],
        *,
        expected_version: int | None,
    ) -> LedgerResult:
        try:
            with self.store.locked():
                document = self.store.load()
                if expected_version is not None and document.version != expected_version:
                    return LedgerResult.failure(
                        LedgerErrorCode.VERSION_CONFLICT,
                        f"Ledger version is {document.version}, expected {expected_version}",
                        version=document.version,
                    )
                outcome = mutate(document, self._clock())
                if not outcome.success:
                    return outcome
                document.version += 1
                self.store.save(document)
        except LockTimeoutError:
            logger.warning("Ledger lock timed out")
            return LedgerResult.failure(LedgerErrorCode.LOCK_TIMEOUT, LOCK_ERROR)
        outcome.version = document.version
        return outcome
