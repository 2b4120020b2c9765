"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, add_days, parse_iso
from utils.company_context import CompanyContext
