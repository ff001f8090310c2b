"""
Invoice and credit note numbering.

Numbers are ``{TYPE}-{YEAR}-{SEQ:05d}``, gapless per (type, year). The
sequence comes from a row-locked DocumentCounter taken inside the issuing
transaction, so an issuance that rolls back returns its number.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from funds.state_machines import DocumentType

if TYPE_CHECKING:
    from funds.protocols import InvoiceRepository

_NUMBER_RE = re.compile(r"^(?P<doc_type>[A-Z]+)-(?P<year>\d{4})-(?P<seq>\d{5,})$")


def format_document_number(doc_type: str, year: int, sequence: int) -> str:
    if sequence < 1:
        raise ValueError(f"Document sequence must be positive, got {sequence}")
    return f"{DocumentType(doc_type).value}-{year}-{sequence:05d}"


def parse_document_number(number: str) -> tuple[str, int, int]:
    """Split a document number into (type, year, sequence)."""
    match = _NUMBER_RE.match(number or "")
    if match is None or match["doc_type"] not in DocumentType.values:
        raise ValueError(f"Not a document number: {number!r}")
    return match["doc_type"], int(match["year"]), int(match["seq"])


def allocate_number(invoices: InvoiceRepository, doc_type: str, year: int) -> str:
    """Take the next number of the series. Call inside the issuing transaction."""
    return format_document_number(doc_type, year, invoices.next_sequence(doc_type, year))
