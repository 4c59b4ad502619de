from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class ZoneKind(str, Enum):
    SPECIFIC = "specific"
    CATCH_ALL = "catch_all"


class ZoneStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PriceSource(str, Enum):
    ZONE = "zone"
    EVENT_OVERRIDE = "event_override"


@dataclass(frozen=True, order=True)
class PostalCodeRange:
    """Inclusive range of canonical 8-digit CEPs."""

    start: str
    end: str

    def contains(self, postal_code: str) -> bool:
        return self.start <= postal_code <= self.end

    def overlaps(self, other: PostalCodeRange) -> bool:
        return self.start <= other.end and self.end >= other.start

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}

    def __str__(self) -> str:
        return f"{self.start}...{self.end}"


@dataclass(frozen=True)
class ZoneSnapshot:
    """Read-only view of a zone row used by the resolver and validators."""

    zone_id: int
    name: str
    kind: ZoneKind
    status: ZoneStatus
    priority: int
    price: Decimal
    ranges: tuple[PostalCodeRange, ...] = field(default_factory=tuple)
    description: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ZoneStatus.ACTIVE

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.zone_id)
