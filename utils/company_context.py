"""Explicit company/user scope passed into every billing operation."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class CompanyContext:
    """
    Who is acting, and on behalf of which company.

    Services take this as their first argument instead of reading an
    ambient "current company". Records belonging to another company are
    invisible to the operation.
    """

    company_id: UUID
    user_id: UUID | None = None

    def owns(self, record) -> bool:
        """Whether a record carrying company_id belongs to this context."""
        return getattr(record, "company_id", None) == self.company_id
