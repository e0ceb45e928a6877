"""Domain models for the shared lead ledger."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

LEAD_ID_PATTERN = re.compile(r"^L(\d+)$")
DEFAULT_MAX_DEPTH = 3


class LeadStatus(str, Enum):
    """Durable lead lifecycle states."""

    PENDING = "pending"
    INVESTIGATED = "investigated"
    DEAD_END = "dead_end"


class LeadPriority(str, Enum):
    """Lead priorities in selection order."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


PRIORITY_RANK = {
    LeadPriority.HIGH.value: 0,
    LeadPriority.MEDIUM.value: 1,
    LeadPriority.LOW.value: 2,
}
UNKNOWN_PRIORITY_RANK = 3

TERMINAL_STATUSES = frozenset({LeadStatus.INVESTIGATED.value, LeadStatus.DEAD_END.value})


class LedgerErrorCode(str, Enum):
    """Typed failure codes returned by ledger operations."""

    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    NOT_PENDING = "NOT_PENDING"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    EXCEEDS_MAX_DEPTH = "EXCEEDS_MAX_DEPTH"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_LEAD = "INVALID_LEAD"
    VERSION_CONFLICT = "VERSION_CONFLICT"


class LedgerSchemaError(ValueError):
    """Raised when a persisted ledger document is not valid JSON or has the wrong shape."""

    error_code = "SCHEMA_MISMATCH"


_LEAD_KEYS = (
    "id",
    "lead",
    "from",
    "priority",
    "depth",
    "parent",
    "status",
    "result",
    "sources",
    "claimed_by",
    "claimed_at",
)


@dataclass(slots=True)
class Lead:
    """One unit of investigative work."""

    id: str
    lead: str = ""
    status: str = LeadStatus.PENDING.value
    priority: str = LeadPriority.MEDIUM.value
    depth: int = 0
    parent: str | None = None
    origin: str | None = None
    result: str | None = None
    sources: list[str] = field(default_factory=list)
    claimed_by: str | None = None
    claimed_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status == LeadStatus.PENDING.value

    @property
    def is_claimed(self) -> bool:
        return bool(self.claimed_by)

    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK.get(self.priority, UNKNOWN_PRIORITY_RANK)

    @property
    def numeric_id(self) -> int | None:
        match = LEAD_ID_PATTERN.match(self.id)
        return int(match.group(1)) if match else None

    def clear_claim(self) -> None:
        self.claimed_by = None
        self.claimed_at = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Lead:
        return cls(
            id=str(raw["id"]),
            lead=str(raw.get("lead") or ""),
            status=str(raw.get("status") or LeadStatus.PENDING.value),
            priority=str(raw.get("priority") or LeadPriority.MEDIUM.value),
            depth=int(raw.get("depth") or 0),
            parent=raw.get("parent"),
            origin=raw.get("from"),
            result=raw.get("result"),
            sources=list(raw.get("sources") or []),
            claimed_by=raw.get("claimed_by"),
            claimed_at=raw.get("claimed_at"),
            extra={key: value for key, value in raw.items() if key not in _LEAD_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "id": self.id,
                "lead": self.lead,
                "from": self.origin,
                "priority": self.priority,
                "depth": self.depth,
                "parent": self.parent,
                "status": self.status,
                "result": self.result,
                "sources": list(self.sources),
            },
        )
        # Claim fields are additive: absent rather than null when unclaimed.
        if self.claimed_by:
            payload["claimed_by"] = self.claimed_by
            payload["claimed_at"] = self.claimed_at
        return payload


@dataclass(slots=True)
class LedgerDocument:
    """The whole ``leads.json`` document."""

    version: int = 1
    max_depth: int = DEFAULT_MAX_DEPTH
    leads: list[Lead] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def find(self, lead_id: str) -> Lead | None:
        for lead in self.leads:
            if lead.id == lead_id:
                return lead
        return None

    def next_lead_id(self) -> str:
        """Allocate ``L###`` from the highest numeric suffix currently in use."""

        numbers = [number for lead in self.leads if (number := lead.numeric_id) is not None]
        return f"L{max(numbers, default=0) + 1:03d}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "version": self.version,
                "max_depth": self.max_depth,
                "leads": [lead.to_dict() for lead in self.leads],
            },
        )
        return payload


@dataclass(slots=True)
class LedgerResult:
    """Typed outcome of a ledger operation; failures carry ``code`` instead of raising."""

    success: bool
    error: str | None = None
    code: LedgerErrorCode | None = None
    version: int | None = None
    lead: dict[str, Any] | None = None
    leads: list[dict[str, Any]] | None = None
    claim_id: str | None = None
    errors: list[str] | None = None
    cleaned: int | None = None
    depth: int | None = None
    max_depth: int | None = None
    available_count: int | None = None
    total_pending: int | None = None
    stats: dict[str, Any] | None = None

    @classmethod
    def failure(cls, code: LedgerErrorCode, error: str, **extra: Any) -> LedgerResult:
        return cls(success=False, error=error, code=code, **extra)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready view omitting unset fields."""

        payload: dict[str, Any] = {"success": self.success}
        for name in (
            "error",
            "code",
            "version",
            "lead",
            "leads",
            "claim_id",
            "errors",
            "cleaned",
            "depth",
            "max_depth",
            "available_count",
            "total_pending",
            "stats",
        ):
            value = getattr(self, name)
            if value is None:
                continue
            payload[name] = value.value if isinstance(value, Enum) else value
        return payload
