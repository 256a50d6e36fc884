# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

DOC_KOT = "KOT"
DOC_INVOICE = "INVOICE"
DOC_PURCHASE = "PURCHASE"

DOCUMENT_PREFIXES = {
    DOC_KOT: "KOT",
    DOC_INVOICE: "INV",
    DOC_PURCHASE: "PO",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def next_document_number(document_type: str, prefix: str | None = None, *, pad: int = 4) -> str:
    """
    Allocate the next document number for a document type.

    Runs inside the caller's transaction: the UPDATE takes the row lock, so
    two writers can never read the same value. The first allocation for a
    type inserts the sequence row; losing that insert race falls back to the
    UPDATE path inside a savepoint.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if prefix is None:
        prefix = DOCUMENT_PREFIXES.get(document_type, document_type)

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(document_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"
