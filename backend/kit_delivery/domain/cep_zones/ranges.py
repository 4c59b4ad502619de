"""Range parsing and the overlap checks run on the admin write path."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from kit_delivery.domain.cep_zones.errors import InvalidPostalCode, RangeFormatError
from kit_delivery.domain.cep_zones.models import PostalCodeRange, ZoneKind, ZoneSnapshot
from kit_delivery.domain.cep_zones.postal_codes import normalize_postal_code

logger = logging.getLogger(__name__)

RANGE_LINE_RE = re.compile(r"^([0-9]{8})\.\.\.([0-9]{8})$")
RANGE_TEXT_HINT = "Use one range per line, e.g. 58083000...58083500"


@dataclass(frozen=True)
class OverlapConflict:
    zone_id: int
    zone_name: str
    candidate: PostalCodeRange
    existing: PostalCodeRange

    def as_error(self) -> dict[str, Any]:
        return {
            "field": "ranges_text",
            "message": (
                f"Range {self.candidate} overlaps {self.existing} of zone '{self.zone_name}'"
            ),
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
        }


def parse_ranges_text(text: str) -> list[PostalCodeRange]:
    """Parse the admin textarea format, one ``STARTCEP...ENDCEP`` pair per line."""
    errors: list[dict[str, Any]] = []
    ranges: list[PostalCodeRange] = []
    for line_number, raw_line in enumerate((text or "").splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        match = RANGE_LINE_RE.match(line)
        if not match:
            errors.append({"field": "ranges_text", "line": line_number, "message": f"Malformed range '{line}'"})
            continue
        start, end = match.groups()
        if start > end:
            errors.append(
                {"field": "ranges_text", "line": line_number, "message": f"Range start {start} is after end {end}"}
            )
            continue
        ranges.append(PostalCodeRange(start=start, end=end))

    if errors:
        raise RangeFormatError(detail=f"Invalid CEP ranges. {RANGE_TEXT_HINT}", errors=errors)
    if not ranges:
        raise RangeFormatError(
            detail=f"At least one CEP range is required. {RANGE_TEXT_HINT}",
            errors=[{"field": "ranges_text", "message": "No ranges found"}],
        )

    ordered = sorted(ranges)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.overlaps(current):
            raise RangeFormatError(
                detail="CEP ranges of the same zone must not overlap",
                errors=[{"field": "ranges_text", "message": f"Range {previous} overlaps {current}"}],
            )
    return ranges


def format_ranges_text(ranges: Iterable[PostalCodeRange]) -> str:
    return "\n".join(str(item) for item in ranges)


def ranges_to_json(ranges: Iterable[PostalCodeRange]) -> list[dict[str, str]]:
    return [item.as_dict() for item in ranges]


def ranges_from_json(payload: Any, *, zone_id: int | None = None) -> tuple[PostalCodeRange, ...]:
    """Load the stored ``[{start, end}]`` list.

    Bounds are re-normalized with zero padding; malformed entries are logged and
    skipped so one bad row cannot break pricing for every other zone.
    """
    if not payload:
        return ()
    loaded: list[PostalCodeRange] = []
    for entry in payload:
        try:
            start = normalize_postal_code(str(entry["start"]), pad=True)
            end = normalize_postal_code(str(entry["end"]), pad=True)
        except (InvalidPostalCode, KeyError, TypeError):
            logger.warning(
                "cep_zone_range_unreadable",
                extra={"extra": {"zone_id": zone_id, "entry": repr(entry)}},
            )
            continue
        if start > end:
            logger.warning(
                "cep_zone_range_inverted",
                extra={"extra": {"zone_id": zone_id, "start": start, "end": end}},
            )
            continue
        loaded.append(PostalCodeRange(start=start, end=end))
    return tuple(loaded)


def zone_contains(zone: ZoneSnapshot, postal_code: str) -> bool:
    return any(item.contains(postal_code) for item in zone.ranges)


def find_overlap(
    candidate_ranges: Sequence[PostalCodeRange],
    zones: Iterable[ZoneSnapshot],
    exclude_zone_id: int | None = None,
) -> OverlapConflict | None:
    """Return the first active zone whose coverage intersects the candidate.

    Priority plays no part: active specific zones are meant to partition CEP space.
    """
    for zone in sorted(zones, key=lambda item: item.sort_key):
        if not zone.is_active or zone.kind != ZoneKind.SPECIFIC:
            continue
        if exclude_zone_id is not None and zone.zone_id == exclude_zone_id:
            continue
        for candidate in candidate_ranges:
            for existing in zone.ranges:
                if candidate.overlaps(existing):
                    return OverlapConflict(
                        zone_id=zone.zone_id,
                        zone_name=zone.name,
                        candidate=candidate,
                        existing=existing,
                    )
    return None


def find_priority_collision(
    priority: int,
    zones: Iterable[ZoneSnapshot],
    exclude_zone_id: int | None = None,
) -> ZoneSnapshot | None:
    for zone in sorted(zones, key=lambda item: item.sort_key):
        if not zone.is_active:
            continue
        if exclude_zone_id is not None and zone.zone_id == exclude_zone_id:
            continue
        if zone.priority == priority:
            return zone
    return None


def find_duplicate_priorities(zones: Iterable[ZoneSnapshot]) -> dict[int, list[int]]:
    """Map each priority shared by more than one active zone to those zone ids."""
    seen: dict[int, list[int]] = {}
    for zone in zones:
        if zone.is_active:
            seen.setdefault(zone.priority, []).append(zone.zone_id)
    return {priority: sorted(ids) for priority, ids in seen.items() if len(ids) > 1}
