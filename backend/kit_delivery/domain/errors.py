from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    """Business rule violation rendered as RFC 7807 problem details.

    ``status`` is the HTTP status the API answers with; subclasses pin their own.
    """

    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None
    status: int = 400

    def __str__(self) -> str:
        return self.detail
