"""
Year-scoped sequential identifiers (INC-2026-0007, CAPA-2026-0003).

The next sequence is one greater than the highest sequence already issued for
the year, so numbers freed by deletion are never handed out again while a
higher number exists. Two callers reading the same maximum at the same time
will produce the same number; the store is not asked to arbitrate.
"""
import re
from typing import Optional

from safetyops.app.services.document_store import DocumentStore

SEQUENCE_WIDTH = 4


def next_identifier(prefix: str, year: int, existing_max_for_year: int) -> str:
    """Format the identifier following existing_max_for_year (0 when none exist)."""
    if existing_max_for_year < 0:
        raise ValueError(f"existing_max_for_year must be >= 0, got {existing_max_for_year}")
    sequence = existing_max_for_year + 1
    return f"{prefix}-{year}-{str(sequence).zfill(SEQUENCE_WIDTH)}"


def parse_sequence(identifier: str, prefix: str, year: int) -> Optional[int]:
    """Sequence number of an identifier issued for prefix/year, else None."""
    match = re.fullmatch(rf"{re.escape(prefix)}-{year}-(\d+)", identifier or "")
    if not match:
        return None
    return int(match.group(1))


async def current_max_sequence(store: DocumentStore, collection: str, field: str, prefix: str, year: int) -> int:
    year_prefix = f"{prefix}-{year}-"
    documents = await store.query(
        collection,
        predicate=lambda d: str(d.get(field) or "").startswith(year_prefix),
    )
    sequences = [parse_sequence(d.get(field), prefix, year) for d in documents]
    return max((s for s in sequences if s is not None), default=0)


async def generate_number(store: DocumentStore, collection: str, field: str, prefix: str, year: int) -> str:
    """Read the current maximum for the year from the store and format the next identifier."""
    existing_max = await current_max_sequence(store, collection, field, prefix, year)
    return next_identifier(prefix, year, existing_max)
