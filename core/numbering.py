"""Document number generation."""

from datetime import datetime
from typing import Iterable


def next_document_number(existing: Iterable[str], prefix: str, now: datetime) -> str:
    """
    Next number in a per-day sequence.

    Format: PREFIX-YYYYMMDD-XXXX where XXXX is a sequence number,
    e.g. FAC-20250408-0003.
    """
    day_prefix = f"{prefix}-{now.strftime('%Y%m%d')}-"

    sequences = []
    for number in existing:
        if not number.startswith(day_prefix):
            continue
        try:
            sequences.append(int(number.split("-")[-1]))
        except ValueError:
            continue

    return f"{day_prefix}{max(sequences, default=0) + 1:04d}"
