"""Idempotency fingerprint for COGS journal payloads.

The fingerprint is stored on the Odoo journal entry it produced. A later
request for the same SAP invoice is compared against it to decide whether the
journal entry must be created, rewritten, or left alone.
"""

from __future__ import annotations

import hashlib
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from syncbridge.schemas.documents import CogsJournalLine, CogsJournalRequest

_PLACES = Decimal("0.000001")


def _canonical(value: float | int | Decimal) -> str:
    # str() first so 80.0 and 80 and Decimal("80.000") all land on the same digits.
    number = value if isinstance(value, Decimal) else Decimal(str(value))
    return format(number.quantize(_PLACES, rounding=ROUND_HALF_UP), "f")


def line_cost(line: CogsJournalLine) -> Decimal:
    """Total cost of a line, whichever representation SAP supplied."""
    if line.unit_cost is not None:
        return Decimal(str(line.unit_cost)) * Decimal(str(line.quantity))
    if line.stock_sum is not None:
        return Decimal(str(line.stock_sum))
    return Decimal(0)


def ordered_lines(lines: Iterable[CogsJournalLine]) -> list[CogsJournalLine]:
    """Lines in canonical order.

    By line number when every line carries one, otherwise by item code so that
    payloads without line numbers still hash the same in any order.
    """
    lines = list(lines)
    if lines and all(line.line_num is not None for line in lines):
        return sorted(lines, key=lambda line: (line.line_num, line.item_code))
    return sorted(
        lines,
        key=lambda line: (line.item_code, _canonical(line.quantity), _canonical(line_cost(line))),
    )


def canonical_form(request: CogsJournalRequest) -> str:
    lines = ordered_lines(request.lines)
    numbered = all(line.line_num is not None for line in lines)
    parts = []
    for line in lines:
        key = f"{line.line_num}:{line.item_code}" if numbered else line.item_code
        parts.append(f"{key}:{_canonical(line.quantity)}:{_canonical(line_cost(line))}")
    return f"{request.doc_entry}|" + ";".join(parts)


def cogs_fingerprint(request: CogsJournalRequest) -> str:
    """SHA-256 hex digest (64 chars) of the request's identity-relevant content."""
    return hashlib.sha256(canonical_form(request).encode("utf-8")).hexdigest()


def total_cogs(request: CogsJournalRequest) -> Decimal:
    return sum((line_cost(line) for line in request.lines), Decimal(0))
