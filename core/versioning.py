"""
Quote version chain rules.

A chain is every version sharing a root quote (original_quote_id, or the
root's own id). Versions are numbered 1..N without gaps and exactly one of
them, the highest, is flagged latest. Older versions are frozen.
"""

from datetime import datetime
from typing import Iterable
from uuid import UUID, uuid4

from core.exceptions import ChainIntegrityError, NotEditableError
from core.models import Quote, QuoteStatus


def chain_key(quote: Quote) -> UUID:
    return quote.original_quote_id or quote.id


def next_version_number(versions: Iterable[Quote]) -> int:
    return max((v.version_number for v in versions), default=0) + 1


def ensure_revisable(quote: Quote, has_invoices: bool = False, chain: Iterable[Quote] = ()) -> None:
    """
    Raise NotEditableError unless a new version may be spawned from quote.

    Converted quotes are settled through credit notes or a fresh quote.
    A quote that already produced invoices is treated the same way. The
    rule holds for the whole chain: once any version is converted or
    invoiced, no version of it can be revised.
    """
    for version in [quote, *chain]:
        if version.status == QuoteStatus.CONVERTED:
            raise NotEditableError(
                f"Quote {version.quote_number} v{version.version_number} is converted; "
                "issue a credit note or a new quote instead"
            )
    if has_invoices:
        raise NotEditableError(
            f"Quote {quote.quote_number} has invoices; it can no longer be revised"
        )


def build_next_version(
    source: Quote,
    versions: list[Quote],
    now: datetime,
    expires_at: datetime,
) -> Quote:
    """
    New draft version cloned from source.

    Items get fresh ids, decision fields are cleared, and the version
    number follows the highest one already in the chain.
    """
    return source.model_copy(
        update={
            "id": uuid4(),
            "original_quote_id": chain_key(source),
            "version_number": next_version_number(versions),
            "is_latest_version": True,
            "status": QuoteStatus.DRAFT,
            "items": [item.clone() for item in source.items],
            "issued_at": now,
            "expires_at": expires_at,
            "validation_notes": None,
            "validated_at": None,
            "validated_by": None,
            "rejection_reason": None,
            "sent_at": None,
            "decided_at": None,
            "converted_at": None,
            "created_at": now,
            "updated_at": now,
        },
        deep=True,
    )


def verify_chain(versions: list[Quote]) -> None:
    """
    Check the chain invariants.

    Raises:
        ChainIntegrityError: if the chain mixes roots, numbering is not
            1..N, or the latest flag is not held by exactly the top version.
    """
    if not versions:
        return

    roots = {chain_key(v) for v in versions}
    if len(roots) != 1:
        raise ChainIntegrityError(f"Versions belong to several chains: {sorted(map(str, roots))}")

    numbers = sorted(v.version_number for v in versions)
    if numbers != list(range(1, len(versions) + 1)):
        raise ChainIntegrityError(f"Chain {roots.pop()} has version numbers {numbers}, expected 1..{len(versions)}")

    latest = [v for v in versions if v.is_latest_version]
    if len(latest) != 1:
        raise ChainIntegrityError(
            f"Chain {roots.pop()} has {len(latest)} latest versions, expected exactly one"
        )
    if latest[0].version_number != numbers[-1]:
        raise ChainIntegrityError(
            f"Chain {roots.pop()} flags v{latest[0].version_number} as latest but v{numbers[-1]} exists"
        )


def newest_first(versions: Iterable[Quote]) -> list[Quote]:
    """Display order for a chain."""
    return sorted(versions, key=lambda v: v.version_number, reverse=True)
