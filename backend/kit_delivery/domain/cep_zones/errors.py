from dataclasses import dataclass

from kit_delivery.domain.errors import DomainError

PROBLEM_TYPE_INVALID_POSTAL_CODE = "https://example.com/problems/invalid-postal-code"
PROBLEM_TYPE_RANGE_FORMAT = "https://example.com/problems/cep-range-format"
PROBLEM_TYPE_ZONE_CONFLICT = "https://example.com/problems/cep-zone-conflict"
PROBLEM_TYPE_ZONE_NOT_FOUND = "https://example.com/problems/cep-zone-not-found"
PROBLEM_TYPE_REORDER = "https://example.com/problems/cep-zone-reorder"


@dataclass
class InvalidPostalCode(DomainError):
    title: str = "Invalid Postal Code"
    type: str = PROBLEM_TYPE_INVALID_POSTAL_CODE
    status: int = 400


@dataclass
class RangeFormatError(DomainError):
    title: str = "Invalid CEP Ranges"
    type: str = PROBLEM_TYPE_RANGE_FORMAT
    status: int = 422


@dataclass
class ZoneConflictError(DomainError):
    title: str = "CEP Zone Conflict"
    type: str = PROBLEM_TYPE_ZONE_CONFLICT
    status: int = 409
    zone_id: int | None = None


@dataclass
class ZoneNotFoundError(DomainError):
    title: str = "CEP Zone Not Found"
    type: str = PROBLEM_TYPE_ZONE_NOT_FOUND
    status: int = 404


@dataclass
class ReorderRequestError(DomainError):
    title: str = "Invalid Reorder Request"
    type: str = PROBLEM_TYPE_REORDER
    status: int = 422
